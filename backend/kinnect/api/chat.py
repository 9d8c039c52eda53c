"""REST endpoints for conversations, messages and presence snapshots."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status

from kinnect.api.errors import to_http_error
from kinnect.domain.chat import service
from kinnect.domain.chat.schemas import (
	ConversationOut,
	MessageOut,
	MessagePage,
	OnlineUsers,
	OpenConversationRequest,
	PresenceOut,
	ReadReceipt,
	SendMessageRequest,
	UnreadSummary,
)
from kinnect.domain.errors import DomainError
from kinnect.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/messages", tags=["messages"])


@router.get("/conversations", response_model=List[ConversationOut])
async def list_conversations(
	include_archived: bool = Query(default=False),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> List[ConversationOut]:
	return await service.list_conversations(auth_user.id, include_archived=include_archived)


@router.post("/conversations", response_model=ConversationOut)
async def open_conversation(
	payload: OpenConversationRequest,
	response: Response,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> ConversationOut:
	try:
		conversation, created = await service.open_direct_conversation(auth_user.id, payload.user_id)
	except DomainError as exc:
		raise to_http_error(exc) from None
	response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
	return ConversationOut.for_viewer(conversation, auth_user.id)


@router.get("/conversations/{conversation_id}/messages", response_model=MessagePage)
async def list_messages(
	conversation_id: str,
	limit: int = Query(default=50, ge=1, le=200),
	before: Optional[int] = Query(default=None, ge=1),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> MessagePage:
	try:
		return await service.get_messages(auth_user.id, conversation_id, limit=limit, before=before)
	except DomainError as exc:
		raise to_http_error(exc) from None


@router.post(
	"/conversations/{conversation_id}/messages",
	response_model=MessageOut,
	status_code=status.HTTP_201_CREATED,
)
async def send_message(
	conversation_id: str,
	payload: SendMessageRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> MessageOut:
	try:
		message, _ = await service.send_message(
			auth_user.id,
			conversation_id,
			payload.content,
			[item.to_model() for item in payload.attachments],
			temp_id=payload.temp_id,
			transport="rest",
		)
	except DomainError as exc:
		raise to_http_error(exc) from None
	return MessageOut.from_model(message)


@router.post("/conversations/{conversation_id}/read", response_model=ReadReceipt)
async def mark_read(
	conversation_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> ReadReceipt:
	try:
		return await service.mark_read(auth_user.id, conversation_id)
	except DomainError as exc:
		raise to_http_error(exc) from None


@router.post("/conversations/{conversation_id}/archive", response_model=ConversationOut)
async def archive(conversation_id: str, auth_user: AuthenticatedUser = Depends(get_current_user)) -> ConversationOut:
	try:
		return await service.set_archived(auth_user.id, conversation_id, True)
	except DomainError as exc:
		raise to_http_error(exc) from None


@router.delete("/conversations/{conversation_id}/archive", response_model=ConversationOut)
async def unarchive(conversation_id: str, auth_user: AuthenticatedUser = Depends(get_current_user)) -> ConversationOut:
	try:
		return await service.set_archived(auth_user.id, conversation_id, False)
	except DomainError as exc:
		raise to_http_error(exc) from None


@router.post("/conversations/{conversation_id}/mute", response_model=ConversationOut)
async def mute(conversation_id: str, auth_user: AuthenticatedUser = Depends(get_current_user)) -> ConversationOut:
	try:
		return await service.set_muted(auth_user.id, conversation_id, True)
	except DomainError as exc:
		raise to_http_error(exc) from None


@router.delete("/conversations/{conversation_id}/mute", response_model=ConversationOut)
async def unmute(conversation_id: str, auth_user: AuthenticatedUser = Depends(get_current_user)) -> ConversationOut:
	try:
		return await service.set_muted(auth_user.id, conversation_id, False)
	except DomainError as exc:
		raise to_http_error(exc) from None


@router.get("/unread", response_model=UnreadSummary)
async def unread(auth_user: AuthenticatedUser = Depends(get_current_user)) -> UnreadSummary:
	return await service.unread_summary(auth_user.id)


@router.get("/presence", response_model=OnlineUsers)
async def online_users(auth_user: AuthenticatedUser = Depends(get_current_user)) -> OnlineUsers:
	return OnlineUsers(items=service.get_online_users())


@router.get("/presence/{user_id}", response_model=PresenceOut)
async def user_presence(user_id: str, auth_user: AuthenticatedUser = Depends(get_current_user)) -> PresenceOut:
	return service.presence(user_id)


@router.delete(
	"/{message_id}",
	status_code=status.HTTP_204_NO_CONTENT,
	response_class=Response,
	response_model=None,
)
async def delete_message(message_id: str, auth_user: AuthenticatedUser = Depends(get_current_user)) -> None:
	try:
		await service.delete_message(auth_user.id, message_id)
	except DomainError as exc:
		raise to_http_error(exc) from None
	return None
