"""Connection graph engine: request lifecycle, degree and discovery queries."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Dict, List, Optional, Tuple

from kinnect.api.pagination import encode_cursor
from kinnect.domain.connections import audit, policy, sockets
from kinnect.domain.connections.models import (
	Connection,
	ConnectionRequest,
	ConnectionStatus,
	Degree,
	RequestStatus,
)
from kinnect.domain.connections.schemas import (
	ConnectionEntry,
	ConnectionPage,
	ConnectionRequestSummary,
	ConnectionStats,
	ConnectionStatusResponse,
	ConnectionSummary,
	RequestPage,
	Suggestion,
)
from kinnect.domain.connections.store import (
	ConnectionStore,
	Cursor,
	Direction,
	MemoryConnectionStore,
	PostgresConnectionStore,
)
from kinnect.domain.errors import (
	AlreadyConnectedError,
	AuthorizationError,
	DuplicateRequestError,
	InvalidStateError,
	NotFoundError,
)
from kinnect.domain.notifications import dispatcher as notifications
from kinnect.domain.notifications.models import ConnectionAcceptedPayload, ConnectionRequestPayload
from kinnect.infra.postgres import pool_or_none
from kinnect.obs import metrics as obs_metrics
from kinnect.settings import settings

logger = logging.getLogger(__name__)

_MEMORY_STORE = MemoryConnectionStore()


def _now() -> datetime:
	return datetime.now(timezone.utc)


async def _best_effort(label: str, awaitable: Awaitable[None]) -> None:
	try:
		await awaitable
	except Exception:
		logger.warning("connection side effect failed", extra={"effect": label}, exc_info=True)


class ConnectionService:
	def __init__(self, store: ConnectionStore | None = None) -> None:
		self._store = store
		self._known_users: set[str] = set()

	async def _repo(self) -> ConnectionStore:
		if self._store is None:
			pool = await pool_or_none()
			self._store = PostgresConnectionStore(pool) if pool is not None else _MEMORY_STORE
		return self._store

	# User registry

	async def ensure_user(self, user_id: str, display_name: Optional[str] = None) -> None:
		"""Record an authenticated user in the registry the graph checks against."""
		if user_id in self._known_users:
			return
		store = await self._repo()
		await store.add_user(user_id, display_name)
		self._known_users.add(user_id)

	# Request lifecycle

	async def send_request(self, sender_id: str, receiver_id: str, message: Optional[str] = None) -> ConnectionRequest:
		policy.guard_not_self(sender_id, receiver_id)
		note = policy.normalise_message(message)
		store = await self._repo()
		if await store.missing_users([sender_id, receiver_id]):
			raise NotFoundError("user_missing")
		if await store.find_active_connection(sender_id, receiver_id):
			audit.inc_request_reject("already_connected")
			raise AlreadyConnectedError()
		if await store.find_pending_between(sender_id, receiver_id):
			audit.inc_request_reject("duplicate_request")
			raise DuplicateRequestError()
		await policy.enforce_request_limits(sender_id)
		request = await store.create_request(sender_id, receiver_id, note, _now())
		audit.inc_request("sent")
		logger.info("connection request sent", extra={"request_id": request.id, "sender": sender_id, "receiver": receiver_id})
		payload = ConnectionRequestSummary.from_model(request).model_dump(mode="json")
		await _best_effort("socket", sockets.emit_request_new(receiver_id, payload))
		await _best_effort(
			"audit",
			audit.log_request_event("sent", {"request_id": request.id, "sender": sender_id, "receiver": receiver_id}),
		)
		notifications.dispatch(
			receiver_id,
			sender_id,
			ConnectionRequestPayload(request_id=request.id, message=request.message),
		)
		return request

	async def accept_request(self, request_id: str, acting_user_id: str) -> Tuple[ConnectionRequest, Connection]:
		store = await self._repo()
		request = await store.get_request(request_id)
		if request is None:
			raise NotFoundError("request_missing")
		if request.receiver_id != acting_user_id:
			raise AuthorizationError("not_receiver")
		if not request.is_pending:
			raise InvalidStateError(f"request_{request.status.value}")
		request, connection = await store.accept_request(request_id, _now())
		audit.inc_request("accepted")
		logger.info("connection request accepted", extra={"request_id": request.id, "connection_id": connection.id})
		summary = ConnectionSummary.from_model(connection).model_dump(mode="json")
		request_payload = ConnectionRequestSummary.from_model(request).model_dump(mode="json")
		await _best_effort("socket", sockets.emit_request_update(request.sender_id, request_payload))
		for user_id in (connection.user_a, connection.user_b):
			await _best_effort("socket", sockets.emit_connection_update(user_id, summary))
		await _best_effort(
			"audit",
			audit.log_connection_event("connected", {"connection_id": connection.id, "request_id": request.id}),
		)
		notifications.dispatch(
			request.sender_id,
			acting_user_id,
			ConnectionAcceptedPayload(connection_id=connection.id),
		)
		return request, connection

	async def ignore_request(self, request_id: str, acting_user_id: str) -> ConnectionRequest:
		return await self._close_request(request_id, acting_user_id, RequestStatus.IGNORED)

	async def withdraw_request(self, request_id: str, acting_user_id: str) -> ConnectionRequest:
		return await self._close_request(request_id, acting_user_id, RequestStatus.WITHDRAWN)

	async def _close_request(self, request_id: str, acting_user_id: str, status: RequestStatus) -> ConnectionRequest:
		store = await self._repo()
		request = await store.get_request(request_id)
		if request is None:
			raise NotFoundError("request_missing")
		if status is RequestStatus.IGNORED and request.receiver_id != acting_user_id:
			raise AuthorizationError("not_receiver")
		if status is RequestStatus.WITHDRAWN and request.sender_id != acting_user_id:
			raise AuthorizationError("not_sender")
		if not request.is_pending:
			raise InvalidStateError(f"request_{request.status.value}")
		updated = await store.transition_request(request_id, status, _now())
		if updated is None:
			# Lost a race with another transition of the same request.
			raise InvalidStateError("request_not_pending")
		audit.inc_request(status.value)
		payload = ConnectionRequestSummary.from_model(updated).model_dump(mode="json")
		counterpart = updated.sender_id if status is RequestStatus.IGNORED else updated.receiver_id
		await _best_effort("socket", sockets.emit_request_update(counterpart, payload))
		return updated

	async def remove_connection(self, connection_id: str, acting_user_id: str) -> Connection:
		store = await self._repo()
		connection = await store.get_connection(connection_id)
		if connection is None:
			raise NotFoundError("connection_missing")
		if not connection.involves(acting_user_id):
			raise AuthorizationError("not_party")
		if not connection.active:
			raise InvalidStateError("connection_inactive")
		removed = await store.deactivate_connection(connection_id, _now())
		if removed is None:
			raise InvalidStateError("connection_inactive")
		audit.inc_removed()
		logger.info("connection removed", extra={"connection_id": connection_id, "by": acting_user_id})
		summary = ConnectionSummary.from_model(removed).model_dump(mode="json")
		for user_id in (removed.user_a, removed.user_b):
			await _best_effort("socket", sockets.emit_connection_update(user_id, summary))
		await _best_effort(
			"audit",
			audit.log_connection_event("removed", {"connection_id": connection_id, "by": acting_user_id}),
		)
		return removed

	# Graph queries

	async def are_connected(self, user_one: str, user_two: str) -> bool:
		if user_one == user_two:
			return False
		store = await self._repo()
		return await store.find_active_connection(user_one, user_two) is not None

	async def get_degree(self, user_one: str, user_two: str) -> Degree:
		degree = await self._degree(await self._repo(), user_one, user_two)
		obs_metrics.inc_degree_lookup(degree)
		return degree

	async def _degree(self, store: ConnectionStore, user_one: str, user_two: str) -> Degree:
		if user_one == user_two:
			return Degree.SELF
		if await store.find_active_connection(user_one, user_two):
			return Degree.FIRST
		neighbors = [n.user_id for n in await store.neighbors(user_one)]
		if neighbors and await store.connected_to_any(user_two, neighbors):
			return Degree.SECOND
		return Degree.THIRD

	async def get_mutual_connections(self, user_one: str, user_two: str, limit: int = 10) -> Tuple[int, List[str]]:
		"""Return (total, slice) of shared neighbors, most recent on user_one's side first."""
		store = await self._repo()
		mutual = await self._mutual(store, user_one, user_two)
		return len(mutual), mutual[: max(0, limit)]

	async def _mutual(self, store: ConnectionStore, user_one: str, user_two: str) -> List[str]:
		if user_one == user_two:
			return []
		theirs = {n.user_id for n in await store.neighbors(user_two)}
		return [n.user_id for n in await store.neighbors(user_one) if n.user_id in theirs]

	async def get_suggestions(self, user_id: str, limit: Optional[int] = None) -> List[Suggestion]:
		limit = settings.suggestion_default_limit if limit is None else max(0, limit)
		store = await self._repo()
		own = await store.neighbors(user_id)
		excluded = {user_id, *(n.user_id for n in own), *(await store.pending_peers(user_id))}

		# Breadth-first over neighbors in recency order; first discovery fixes the position.
		order: List[str] = []
		via: Dict[str, List[str]] = {}
		for neighbor in own:
			for candidate in await store.neighbors(neighbor.user_id):
				if candidate.user_id in excluded:
					continue
				if candidate.user_id not in via:
					order.append(candidate.user_id)
					via[candidate.user_id] = []
				via[candidate.user_id].append(neighbor.user_id)

		suggestions = [
			Suggestion(
				user_id=candidate,
				degree=int(Degree.SECOND),
				mutual_count=len(via[candidate]),
				mutual_preview=via[candidate][: settings.mutual_preview_limit],
				source="second_degree",
			)
			for candidate in order[:limit]
		]
		shortfall = limit - len(suggestions)
		if shortfall > 0:
			padding = await store.sample_users(excluded | set(order), shortfall)
			suggestions.extend(
				Suggestion(user_id=candidate, degree=int(Degree.THIRD), source="discover") for candidate in padding
			)
		return suggestions

	async def get_connection_status(self, viewer_id: str, target_id: str) -> ConnectionStatusResponse:
		store = await self._repo()
		if viewer_id == target_id:
			return ConnectionStatusResponse(user_id=target_id, status=ConnectionStatus.OWN_PROFILE.value, degree=int(Degree.SELF))
		connection = await store.find_active_connection(viewer_id, target_id)
		if connection is not None:
			return ConnectionStatusResponse(
				user_id=target_id,
				status=ConnectionStatus.CONNECTED.value,
				degree=int(Degree.FIRST),
				connection_id=connection.id,
				connected_at=connection.connected_at,
			)
		degree = await self._degree(store, viewer_id, target_id)
		pending = await store.find_pending_between(viewer_id, target_id)
		if pending is not None:
			status = ConnectionStatus.PENDING_SENT if pending.sender_id == viewer_id else ConnectionStatus.PENDING_RECEIVED
			return ConnectionStatusResponse(user_id=target_id, status=status.value, degree=int(degree), request_id=pending.id)
		return ConnectionStatusResponse(user_id=target_id, status=ConnectionStatus.NOT_CONNECTED.value, degree=int(degree))

	async def list_connections(self, user_id: str, *, limit: int = 20, before: Optional[Cursor] = None) -> ConnectionPage:
		store = await self._repo()
		rows = await store.list_connections(user_id, limit + 1, before)
		page = rows[:limit]
		next_cursor = None
		if len(rows) > limit and page:
			next_cursor = encode_cursor(page[-1].connected_at, page[-1].connection_id)
		total = await store.count_connections(user_id)
		return ConnectionPage(items=[ConnectionEntry.from_neighbor(n) for n in page], total=total, next=next_cursor)

	async def list_requests(
		self,
		user_id: str,
		direction: Direction,
		*,
		limit: int = 20,
		before: Optional[Cursor] = None,
	) -> RequestPage:
		store = await self._repo()
		rows = await store.list_pending(user_id, direction, limit + 1, before)
		page = rows[:limit]
		next_cursor = None
		if len(rows) > limit and page:
			next_cursor = encode_cursor(page[-1].created_at, page[-1].id)
		total = await store.count_pending(user_id, direction)
		return RequestPage(items=[ConnectionRequestSummary.from_model(r) for r in page], total=total, next=next_cursor)

	async def get_stats(self, user_id: str) -> ConnectionStats:
		store = await self._repo()
		total = await store.count_connections(user_id)
		recent = await store.count_connections(user_id, since=_now() - timedelta(days=settings.growth_window_days))
		previous = total - recent
		if previous > 0:
			growth = round(recent / previous * 100, 1)
		else:
			growth = 100.0 if recent > 0 else 0.0
		return ConnectionStats(
			total_connections=total,
			pending_received=await store.count_pending(user_id, "incoming"),
			pending_sent=await store.count_pending(user_id, "outgoing"),
			recent_connections=recent,
			growth_percentage=growth,
		)


_SERVICE = ConnectionService()


def get_service() -> ConnectionService:
	return _SERVICE


async def ensure_user(user_id: str, display_name: Optional[str] = None) -> None:
	await _SERVICE.ensure_user(user_id, display_name)


async def send_request(sender_id: str, receiver_id: str, message: Optional[str] = None) -> ConnectionRequest:
	return await _SERVICE.send_request(sender_id, receiver_id, message)


async def accept_request(request_id: str, acting_user_id: str) -> Tuple[ConnectionRequest, Connection]:
	return await _SERVICE.accept_request(request_id, acting_user_id)


async def ignore_request(request_id: str, acting_user_id: str) -> ConnectionRequest:
	return await _SERVICE.ignore_request(request_id, acting_user_id)


async def withdraw_request(request_id: str, acting_user_id: str) -> ConnectionRequest:
	return await _SERVICE.withdraw_request(request_id, acting_user_id)


async def remove_connection(connection_id: str, acting_user_id: str) -> Connection:
	return await _SERVICE.remove_connection(connection_id, acting_user_id)


async def get_degree(user_one: str, user_two: str) -> Degree:
	return await _SERVICE.get_degree(user_one, user_two)


async def get_mutual_connections(user_one: str, user_two: str, limit: int = 10) -> Tuple[int, List[str]]:
	return await _SERVICE.get_mutual_connections(user_one, user_two, limit)


async def get_suggestions(user_id: str, limit: Optional[int] = None) -> List[Suggestion]:
	return await _SERVICE.get_suggestions(user_id, limit)


async def get_connection_status(viewer_id: str, target_id: str) -> ConnectionStatusResponse:
	return await _SERVICE.get_connection_status(viewer_id, target_id)


async def list_connections(user_id: str, *, limit: int = 20, before: Optional[Cursor] = None) -> ConnectionPage:
	return await _SERVICE.list_connections(user_id, limit=limit, before=before)


async def list_requests(user_id: str, direction: Direction, *, limit: int = 20, before: Optional[Cursor] = None) -> RequestPage:
	return await _SERVICE.list_requests(user_id, direction, limit=limit, before=before)


async def get_stats(user_id: str) -> ConnectionStats:
	return await _SERVICE.get_stats(user_id)
