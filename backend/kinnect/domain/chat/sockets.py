"""Emit helpers for the /chat Socket.IO namespace.

The namespace instance is installed at startup via `set_namespace`. Until then
(and in unit tests that do not install one) every helper is a no-op.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from kinnect.obs import metrics as obs_metrics

if TYPE_CHECKING:  # pragma: no cover - typing only
	from kinnect.domain.chat.namespace import ChatNamespace

_namespace: Optional["ChatNamespace"] = None


def set_namespace(namespace: Optional["ChatNamespace"]) -> None:
	global _namespace
	_namespace = namespace


def user_room(user_id: str) -> str:
	return f"user:{user_id}"


def conversation_room(conversation_id: str) -> str:
	return f"conversation:{conversation_id}"


async def enter_room(sid: str, room: str) -> None:
	if _namespace is None:
		return
	await _namespace.enter_room(sid, room)


async def leave_room(sid: str, room: str) -> None:
	if _namespace is None:
		return
	await _namespace.leave_room(sid, room)


async def emit_to_room(event: str, payload: dict, room: str, *, skip_sid: Optional[str] = None) -> None:
	if _namespace is None:
		return
	obs_metrics.socket_event(_namespace.namespace, event)
	await _namespace.emit(event, payload, room=room, skip_sid=skip_sid)


async def emit_to_user(user_id: str, event: str, payload: dict) -> None:
	await emit_to_room(event, payload, user_room(user_id))


async def emit_to_sid(sid: str, event: str, payload: dict) -> None:
	await emit_to_room(event, payload, sid)


async def broadcast(event: str, payload: dict, *, skip_sid: Optional[str] = None) -> None:
	if _namespace is None:
		return
	obs_metrics.socket_event(_namespace.namespace, event)
	await _namespace.emit(event, payload, skip_sid=skip_sid)
