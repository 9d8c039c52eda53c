"""Socket.IO namespace for connection graph updates."""

from __future__ import annotations

from typing import Dict, Optional

import socketio
from socketio import exceptions as sio_exceptions

from kinnect.infra.auth import AuthenticatedUser, InvalidCredential, authenticate_handshake
from kinnect.obs import metrics as obs_metrics

_namespace: Optional["SocialNamespace"] = None


class SocialNamespace(socketio.AsyncNamespace):
	"""Namespace that keeps each client in their personal room."""

	def __init__(self) -> None:
		super().__init__("/social")
		self._sessions: Dict[str, AuthenticatedUser] = {}

	async def on_connect(self, sid: str, environ: dict, auth: Optional[dict] = None) -> None:
		try:
			user = authenticate_handshake(environ, auth)
		except InvalidCredential:
			raise sio_exceptions.ConnectionRefusedError("unauthorized") from None
		obs_metrics.socket_connected(self.namespace)
		self._sessions[sid] = user
		await self.enter_room(sid, self.user_room(user.id))
		await self.emit("social:ack", {"ok": True}, room=sid)

	async def on_disconnect(self, sid: str, reason: Optional[str] = None) -> None:
		user = self._sessions.pop(sid, None)
		if user:
			obs_metrics.socket_disconnected(self.namespace)
			await self.leave_room(sid, self.user_room(user.id))

	@staticmethod
	def user_room(user_id: str) -> str:
		return f"user:{user_id}"


def set_namespace(ns: Optional[SocialNamespace]) -> None:
	global _namespace
	_namespace = ns


async def emit_request_new(user_id: str, payload: dict) -> None:
	if _namespace is None:
		return
	obs_metrics.socket_event(_namespace.namespace, "connection:request")
	await _namespace.emit("connection:request", payload, room=SocialNamespace.user_room(user_id))


async def emit_request_update(user_id: str, payload: dict) -> None:
	if _namespace is None:
		return
	obs_metrics.socket_event(_namespace.namespace, "connection:request_update")
	await _namespace.emit("connection:request_update", payload, room=SocialNamespace.user_room(user_id))


async def emit_connection_update(user_id: str, payload: dict) -> None:
	if _namespace is None:
		return
	obs_metrics.socket_event(_namespace.namespace, "connection:update")
	await _namespace.emit("connection:update", payload, room=SocialNamespace.user_room(user_id))
