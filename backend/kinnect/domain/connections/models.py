"""Domain models for the connection graph."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum, IntEnum
from typing import Optional, Tuple

from kinnect.domain.errors import SelfReferenceError


class RequestStatus(str, Enum):
	"""Connection request lifecycle. Only PENDING is non-terminal."""

	PENDING = "pending"
	ACCEPTED = "accepted"
	IGNORED = "ignored"
	WITHDRAWN = "withdrawn"


class Degree(IntEnum):
	"""Distance classification between two users, capped at 2 hops."""

	SELF = 0
	FIRST = 1
	SECOND = 2
	THIRD = 3


class ConnectionStatus(str, Enum):
	OWN_PROFILE = "own_profile"
	CONNECTED = "connected"
	PENDING_SENT = "pending_sent"
	PENDING_RECEIVED = "pending_received"
	NOT_CONNECTED = "not_connected"


def canonical_pair(user_one: str, user_two: str) -> Tuple[str, str]:
	"""Return the single stored representation of an unordered pair."""
	first, second = str(user_one), str(user_two)
	if first == second:
		raise SelfReferenceError()
	return (first, second) if first < second else (second, first)


@dataclass(slots=True)
class ConnectionRequest:
	id: str
	sender_id: str
	receiver_id: str
	status: RequestStatus
	created_at: datetime
	message: Optional[str] = None
	responded_at: Optional[datetime] = None

	@classmethod
	def from_record(cls, record) -> "ConnectionRequest":
		return cls(
			id=str(record["id"]),
			sender_id=str(record["sender_id"]),
			receiver_id=str(record["receiver_id"]),
			status=RequestStatus(record["status"]),
			created_at=record["created_at"],
			message=record["message"],
			responded_at=record["responded_at"],
		)

	@property
	def is_pending(self) -> bool:
		return self.status is RequestStatus.PENDING

	def involves(self, user_id: str) -> bool:
		return user_id in (self.sender_id, self.receiver_id)


@dataclass(slots=True)
class Connection:
	"""One row per unordered pair; reactivated in place rather than duplicated."""

	id: str
	user_a: str
	user_b: str
	connected_at: datetime
	active: bool = True
	request_id: Optional[str] = None
	deactivated_at: Optional[datetime] = None

	@classmethod
	def from_record(cls, record) -> "Connection":
		return cls(
			id=str(record["id"]),
			user_a=str(record["user_a"]),
			user_b=str(record["user_b"]),
			connected_at=record["connected_at"],
			active=bool(record["active"]),
			request_id=str(record["request_id"]) if record["request_id"] else None,
			deactivated_at=record["deactivated_at"],
		)

	def involves(self, user_id: str) -> bool:
		return user_id in (self.user_a, self.user_b)


@dataclass(slots=True, frozen=True)
class Neighbor:
	"""An adjacency entry: `user_id` is connected to the owner via `connection_id`."""

	user_id: str
	connection_id: str
	connected_at: datetime


def recency_key(neighbor: Neighbor) -> Tuple[datetime, str]:
	"""Sort key for most-recent-first ordering; use with reverse=True."""
	return (neighbor.connected_at, neighbor.connection_id)
