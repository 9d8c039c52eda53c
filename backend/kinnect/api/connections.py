"""REST API surface for connection requests and the connection graph."""

from __future__ import annotations

from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, status

from kinnect.api.errors import to_http_error
from kinnect.api.pagination import decode_optional
from kinnect.domain.connections import service
from kinnect.domain.connections.schemas import (
	AcceptResponse,
	ConnectionPage,
	ConnectionRequestCreate,
	ConnectionRequestSummary,
	ConnectionStats,
	ConnectionStatusResponse,
	ConnectionSummary,
	DegreeResponse,
	MutualConnectionsResponse,
	RequestPage,
	SuggestionList,
)
from kinnect.domain.errors import DomainError
from kinnect.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/connections", tags=["connections"])


async def current_member(auth_user: AuthenticatedUser = Depends(get_current_user)) -> AuthenticatedUser:
	await service.ensure_user(auth_user.id, auth_user.display_name)
	return auth_user


@router.post("/requests", response_model=ConnectionRequestSummary, status_code=status.HTTP_201_CREATED)
async def send_request(
	payload: ConnectionRequestCreate,
	auth_user: AuthenticatedUser = Depends(current_member),
) -> ConnectionRequestSummary:
	try:
		request = await service.send_request(auth_user.id, payload.receiver_id, payload.message)
	except DomainError as exc:
		raise to_http_error(exc) from None
	return ConnectionRequestSummary.from_model(request)


@router.post("/requests/{request_id}/accept", response_model=AcceptResponse)
async def accept_request(
	request_id: str,
	auth_user: AuthenticatedUser = Depends(current_member),
) -> AcceptResponse:
	try:
		request, connection = await service.accept_request(request_id, auth_user.id)
	except DomainError as exc:
		raise to_http_error(exc) from None
	return AcceptResponse(
		request=ConnectionRequestSummary.from_model(request),
		connection=ConnectionSummary.from_model(connection),
	)


@router.post("/requests/{request_id}/ignore", response_model=ConnectionRequestSummary)
async def ignore_request(
	request_id: str,
	auth_user: AuthenticatedUser = Depends(current_member),
) -> ConnectionRequestSummary:
	try:
		return ConnectionRequestSummary.from_model(await service.ignore_request(request_id, auth_user.id))
	except DomainError as exc:
		raise to_http_error(exc) from None


@router.post("/requests/{request_id}/withdraw", response_model=ConnectionRequestSummary)
async def withdraw_request(
	request_id: str,
	auth_user: AuthenticatedUser = Depends(current_member),
) -> ConnectionRequestSummary:
	try:
		return ConnectionRequestSummary.from_model(await service.withdraw_request(request_id, auth_user.id))
	except DomainError as exc:
		raise to_http_error(exc) from None


@router.get("/requests/{direction}", response_model=RequestPage)
async def list_requests(
	direction: Literal["incoming", "outgoing"],
	limit: int = Query(default=20, ge=1, le=100),
	cursor: Optional[str] = Query(default=None),
	auth_user: AuthenticatedUser = Depends(current_member),
) -> RequestPage:
	try:
		return await service.list_requests(auth_user.id, direction, limit=limit, before=decode_optional(cursor))
	except DomainError as exc:
		raise to_http_error(exc) from None


@router.delete("/{connection_id}", response_model=ConnectionSummary)
async def remove_connection(
	connection_id: str,
	auth_user: AuthenticatedUser = Depends(current_member),
) -> ConnectionSummary:
	try:
		return ConnectionSummary.from_model(await service.remove_connection(connection_id, auth_user.id))
	except DomainError as exc:
		raise to_http_error(exc) from None


@router.get("", response_model=ConnectionPage)
async def my_connections(
	limit: int = Query(default=20, ge=1, le=100),
	cursor: Optional[str] = Query(default=None),
	auth_user: AuthenticatedUser = Depends(current_member),
) -> ConnectionPage:
	try:
		return await service.list_connections(auth_user.id, limit=limit, before=decode_optional(cursor))
	except DomainError as exc:
		raise to_http_error(exc) from None


@router.get("/users/{user_id}", response_model=ConnectionPage)
async def user_connections(
	user_id: str,
	limit: int = Query(default=20, ge=1, le=100),
	cursor: Optional[str] = Query(default=None),
	auth_user: AuthenticatedUser = Depends(current_member),
) -> ConnectionPage:
	try:
		return await service.list_connections(user_id, limit=limit, before=decode_optional(cursor))
	except DomainError as exc:
		raise to_http_error(exc) from None


@router.get("/status/{user_id}", response_model=ConnectionStatusResponse)
async def connection_status(
	user_id: str,
	auth_user: AuthenticatedUser = Depends(current_member),
) -> ConnectionStatusResponse:
	return await service.get_connection_status(auth_user.id, user_id)


@router.get("/degree/{user_id}", response_model=DegreeResponse)
async def degree(
	user_id: str,
	auth_user: AuthenticatedUser = Depends(current_member),
) -> DegreeResponse:
	value = await service.get_degree(auth_user.id, user_id)
	return DegreeResponse(user_id=user_id, degree=int(value))


@router.get("/mutual/{user_id}", response_model=MutualConnectionsResponse)
async def mutual_connections(
	user_id: str,
	limit: int = Query(default=10, ge=0, le=100),
	auth_user: AuthenticatedUser = Depends(current_member),
) -> MutualConnectionsResponse:
	total, items = await service.get_mutual_connections(auth_user.id, user_id, limit)
	return MutualConnectionsResponse(user_id=user_id, total=total, items=items)


@router.get("/suggestions", response_model=SuggestionList)
async def suggestions(
	limit: int = Query(default=10, ge=1, le=50),
	auth_user: AuthenticatedUser = Depends(current_member),
) -> SuggestionList:
	return SuggestionList(items=await service.get_suggestions(auth_user.id, limit))


@router.get("/stats", response_model=ConnectionStats)
async def stats(auth_user: AuthenticatedUser = Depends(current_member)) -> ConnectionStats:
	return await service.get_stats(auth_user.id)
