"""In-process presence and typing registry.

Owns every piece of ephemeral realtime state: the per-socket session state
machine, the user -> sessions map that defines "online", room membership per
session and the per-conversation typing sets. All methods are synchronous so a
state transition can never interleave with another event on the same loop.

State lives for the lifetime of the process. Running several processes would
require moving this registry to a shared store behind the same interface.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Set, Tuple

from kinnect.domain.errors import InvalidStateError


class SessionState(str, Enum):
	CONNECTING = "connecting"
	AUTHENTICATED = "authenticated"
	ACTIVE = "active"
	DISCONNECTED = "disconnected"


_ALLOWED = {
	SessionState.CONNECTING: {SessionState.AUTHENTICATED, SessionState.DISCONNECTED},
	SessionState.AUTHENTICATED: {SessionState.ACTIVE, SessionState.DISCONNECTED},
	SessionState.ACTIVE: {SessionState.DISCONNECTED},
	SessionState.DISCONNECTED: set(),
}


@dataclass(slots=True)
class Session:
	sid: str
	state: SessionState = SessionState.CONNECTING
	user_id: Optional[str] = None
	rooms: Set[str] = field(default_factory=set)
	opened_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

	def advance(self, target: SessionState) -> None:
		if target not in _ALLOWED[self.state]:
			raise InvalidStateError(f"session_{self.state.value}_to_{target.value}")
		self.state = target


@dataclass(slots=True, frozen=True)
class Departure:
	"""What closing a session changed; the caller turns this into broadcasts."""

	sid: str
	user_id: Optional[str]
	went_offline: bool
	typing_cleared: Tuple[str, ...]
	rooms: Tuple[str, ...]
	last_seen: datetime


class PresenceRegistry:
	def __init__(self) -> None:
		self._sessions: Dict[str, Session] = {}
		self._by_user: Dict[str, Set[str]] = {}
		self._typing: Dict[str, Set[str]] = {}
		self._last_seen: Dict[str, datetime] = {}

	# Session lifecycle

	def open(self, sid: str) -> Session:
		if sid in self._sessions:
			raise InvalidStateError("session_exists")
		session = Session(sid=sid)
		self._sessions[sid] = session
		return session

	def authenticate(self, sid: str, user_id: str) -> Session:
		session = self._require(sid)
		session.advance(SessionState.AUTHENTICATED)
		session.user_id = str(user_id)
		return session

	def activate(self, sid: str) -> bool:
		"""Register the session for its user. Returns True if the user just came online."""
		session = self._require(sid)
		session.advance(SessionState.ACTIVE)
		assert session.user_id is not None
		sids = self._by_user.setdefault(session.user_id, set())
		came_online = not sids
		sids.add(sid)
		return came_online

	def close(self, sid: str) -> Optional[Departure]:
		"""Tear down one session. Unknown or already closed sids return None."""
		session = self._sessions.pop(sid, None)
		if session is None:
			return None
		was_active = session.state is SessionState.ACTIVE
		session.advance(SessionState.DISCONNECTED)
		now = datetime.now(timezone.utc)
		user_id = session.user_id
		went_offline = False
		cleared: List[str] = []
		if was_active and user_id is not None:
			sids = self._by_user.get(user_id, set())
			sids.discard(sid)
			if not sids:
				self._by_user.pop(user_id, None)
				went_offline = True
				self._last_seen[user_id] = now
			cleared = self._clear_typing(user_id)
		return Departure(
			sid=sid,
			user_id=user_id,
			went_offline=went_offline,
			typing_cleared=tuple(cleared),
			rooms=tuple(sorted(session.rooms)),
			last_seen=now,
		)

	def user_of(self, sid: str) -> Optional[str]:
		session = self._sessions.get(sid)
		if session is None or session.state is not SessionState.ACTIVE:
			return None
		return session.user_id

	# Rooms

	def join(self, sid: str, room: str) -> bool:
		"""Add a room to an active session. Returns False when already joined."""
		session = self._require_active(sid)
		if room in session.rooms:
			return False
		session.rooms.add(room)
		return True

	def leave(self, sid: str, room: str) -> bool:
		session = self._require_active(sid)
		if room not in session.rooms:
			return False
		session.rooms.discard(room)
		return True

	def in_room(self, user_id: str, room: str) -> bool:
		return any(room in self._sessions[sid].rooms for sid in self._by_user.get(user_id, ()) if sid in self._sessions)

	# Typing

	def set_typing(self, user_id: str, conversation_id: str, is_typing: bool) -> bool:
		"""Apply the latest typing signal. Returns True if the typing set changed."""
		typing = self._typing.setdefault(conversation_id, set())
		if is_typing:
			if user_id in typing:
				return False
			typing.add(user_id)
			return True
		if user_id not in typing:
			if not typing:
				self._typing.pop(conversation_id, None)
			return False
		typing.discard(user_id)
		if not typing:
			self._typing.pop(conversation_id, None)
		return True

	def typing_users(self, conversation_id: str) -> FrozenSet[str]:
		return frozenset(self._typing.get(conversation_id, ()))

	def _clear_typing(self, user_id: str) -> List[str]:
		cleared: List[str] = []
		for conversation_id in sorted(self._typing):
			if user_id in self._typing[conversation_id]:
				cleared.append(conversation_id)
		for conversation_id in cleared:
			self.set_typing(user_id, conversation_id, False)
		return cleared

	# Snapshots

	def is_online(self, user_id: str) -> bool:
		return bool(self._by_user.get(user_id))

	def online_users(self) -> List[str]:
		return sorted(self._by_user)

	def sessions_for(self, user_id: str) -> FrozenSet[str]:
		return frozenset(self._by_user.get(user_id, ()))

	def last_seen(self, user_id: str) -> Optional[datetime]:
		return self._last_seen.get(user_id)

	def reset(self) -> None:
		self._sessions.clear()
		self._by_user.clear()
		self._typing.clear()
		self._last_seen.clear()

	def _require(self, sid: str) -> Session:
		session = self._sessions.get(sid)
		if session is None:
			raise InvalidStateError("session_missing")
		return session

	def _require_active(self, sid: str) -> Session:
		session = self._require(sid)
		if session.state is not SessionState.ACTIVE:
			raise InvalidStateError(f"session_{session.state.value}")
		return session


_REGISTRY = PresenceRegistry()


def get_registry() -> PresenceRegistry:
	return _REGISTRY
