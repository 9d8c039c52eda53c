"""Socket.IO namespace for realtime chat and presence."""

from __future__ import annotations

import logging
from typing import Any, Optional

import socketio
from pydantic import ValidationError as PayloadError
from socketio import exceptions as sio_exceptions

from kinnect.domain.chat import sockets
from kinnect.domain.chat.schemas import MessageOut, SocketSendPayload
from kinnect.domain.chat.service import ChatService, get_service
from kinnect.domain.errors import DomainError
from kinnect.infra.auth import InvalidCredential, authenticate_handshake
from kinnect.obs import logging as obs_logging
from kinnect.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

_EVENT_ALIASES = {
	"typing:start": "typing_start",
	"typing:stop": "typing_stop",
}
_LIFECYCLE = {"connect", "disconnect"}


def _conversation_id(payload: Any) -> Optional[str]:
	if not isinstance(payload, dict):
		return None
	value = payload.get("conversationId") or payload.get("conversation_id")
	return str(value) if value else None


def _failure(reason: str, **extra: Any) -> dict:
	return {"ok": False, "error": reason, **extra}


class ChatNamespace(socketio.AsyncNamespace):
	"""Each socket is one presence session; handlers acknowledge with {"ok": ...}."""

	def __init__(self, service: ChatService | None = None) -> None:
		super().__init__("/chat")
		self._service = service

	@property
	def service(self) -> ChatService:
		return self._service or get_service()

	async def trigger_event(self, event: str, *args):
		if event not in _LIFECYCLE:
			obs_metrics.socket_event(self.namespace, event)
		sid = args[0] if args else None
		token = obs_logging.bind_context(
			sid=sid,
			namespace=self.namespace,
			user_id=self._user(sid) if sid else None,
		)
		try:
			return await super().trigger_event(_EVENT_ALIASES.get(event, event), *args)
		finally:
			obs_logging.reset_context(token)

	def _user(self, sid: str) -> Optional[str]:
		return self.service.registry.user_of(sid)

	async def on_connect(self, sid: str, environ: dict, auth: Optional[dict] = None) -> None:
		try:
			user = authenticate_handshake(environ, auth)
		except InvalidCredential:
			raise sio_exceptions.ConnectionRefusedError("unauthorized") from None
		try:
			await self.service.activate_session(sid, user.id)
		except DomainError as exc:
			logger.warning("chat session rejected", extra={"sid": sid, "reason": exc.reason})
			raise sio_exceptions.ConnectionRefusedError(exc.reason) from None

	async def on_disconnect(self, sid: str, reason: Optional[str] = None) -> None:
		await self.service.close_session(sid)

	async def on_join_conversation(self, sid: str, payload: Any) -> dict:
		user_id = self._user(sid)
		conversation_id = _conversation_id(payload)
		if user_id is None:
			return _failure("unauthenticated")
		if conversation_id is None:
			return _failure("invalid_payload")
		try:
			result = await self.service.join_conversation(sid, user_id, conversation_id)
		except DomainError as exc:
			return _failure(exc.reason)
		return {"ok": True, **result}

	async def on_leave_conversation(self, sid: str, payload: Any) -> dict:
		user_id = self._user(sid)
		conversation_id = _conversation_id(payload)
		if user_id is None:
			return _failure("unauthenticated")
		if conversation_id is None:
			return _failure("invalid_payload")
		left = await self.service.leave_conversation(sid, user_id, conversation_id)
		return {"ok": True, "conversationId": conversation_id, "left": left}

	async def on_send_message(self, sid: str, payload: Any) -> dict:
		user_id = self._user(sid)
		temp_id = payload.get("tempId") if isinstance(payload, dict) else None
		if user_id is None:
			return _failure("unauthenticated", tempId=temp_id)
		try:
			request = SocketSendPayload.model_validate(payload)
		except PayloadError:
			await self._send_error(sid, "invalid_payload", "Message payload is malformed", temp_id)
			return _failure("invalid_payload", tempId=temp_id)
		try:
			message, _ = await self.service.send_message(
				user_id,
				request.conversation_id,
				request.content,
				[item.to_model() for item in request.attachments],
				temp_id=request.temp_id,
				transport="socket",
			)
		except DomainError as exc:
			await self._send_error(sid, exc.reason, str(exc), request.temp_id)
			return _failure(exc.reason, tempId=request.temp_id)
		body = MessageOut.from_model(message).model_dump(mode="json")
		await sockets.emit_to_sid(sid, "message:sent", {"tempId": request.temp_id, "message": body})
		return {"ok": True, "tempId": request.temp_id, "message": body}

	async def on_typing_start(self, sid: str, payload: Any) -> dict:
		return await self._typing(sid, _conversation_id(payload), True)

	async def on_typing_stop(self, sid: str, payload: Any) -> dict:
		return await self._typing(sid, _conversation_id(payload), False)

	async def on_typing(self, sid: str, payload: Any) -> dict:
		is_typing = bool(payload.get("isTyping")) if isinstance(payload, dict) else False
		return await self._typing(sid, _conversation_id(payload), is_typing)

	async def _typing(self, sid: str, conversation_id: Optional[str], is_typing: bool) -> dict:
		user_id = self._user(sid)
		if user_id is None:
			return _failure("unauthenticated")
		if conversation_id is None:
			return _failure("invalid_payload")
		try:
			changed = await self.service.set_typing(user_id, conversation_id, is_typing, sid=sid)
		except DomainError as exc:
			return _failure(exc.reason)
		return {"ok": True, "changed": changed}

	async def on_mark_as_read(self, sid: str, payload: Any) -> dict:
		user_id = self._user(sid)
		conversation_id = _conversation_id(payload)
		if user_id is None:
			return _failure("unauthenticated")
		if conversation_id is None:
			return _failure("invalid_payload")
		try:
			receipt = await self.service.mark_read(user_id, conversation_id)
		except DomainError as exc:
			return _failure(exc.reason)
		return {"ok": True, **receipt.model_dump(mode="json")}

	async def on_get_online_users(self, sid: str, payload: Any = None) -> dict:
		if self._user(sid) is None:
			return _failure("unauthenticated")
		users = self.service.get_online_users()
		await sockets.emit_to_sid(sid, "online_users", {"users": users})
		return {"ok": True, "users": users}

	async def _send_error(self, sid: str, code: str, message: str, temp_id: Optional[str]) -> None:
		await sockets.emit_to_sid(sid, "message:error", {"code": code, "message": message, "tempId": temp_id})
