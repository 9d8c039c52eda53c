"""Domain models for conversations and messages."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple


def direct_key(user_one: str, user_two: str) -> str:
	"""Canonical key for a 1:1 conversation, independent of who opened it."""
	first, second = sorted((str(user_one), str(user_two)))
	return f"dm:{first}:{second}"


@dataclass(slots=True)
class Participant:
	user_id: str
	unread_count: int = 0
	archived: bool = False
	muted: bool = False
	last_read_at: Optional[datetime] = None


@dataclass(slots=True)
class Conversation:
	id: str
	direct_key: str
	participants: Dict[str, Participant]
	created_at: datetime
	last_message_id: Optional[str] = None
	last_message_at: Optional[datetime] = None
	last_message_preview: Optional[str] = None
	last_sender_id: Optional[str] = None
	last_seq: int = 0

	def participant_ids(self) -> Tuple[str, ...]:
		return tuple(sorted(self.participants))

	def is_participant(self, user_id: str) -> bool:
		return user_id in self.participants

	def others(self, user_id: str) -> List[str]:
		return [uid for uid in self.participant_ids() if uid != user_id]

	def unread_for(self, user_id: str) -> int:
		participant = self.participants.get(user_id)
		return participant.unread_count if participant else 0

	@property
	def sort_key(self) -> datetime:
		return self.last_message_at or self.created_at


@dataclass(slots=True, frozen=True)
class Attachment:
	url: str
	type: str = "file"
	name: Optional[str] = None
	size: Optional[int] = None

	@classmethod
	def from_dict(cls, raw: dict) -> "Attachment":
		return cls(
			url=str(raw["url"]),
			type=str(raw.get("type") or "file"),
			name=raw.get("name"),
			size=int(raw["size"]) if raw.get("size") is not None else None,
		)

	def to_dict(self) -> dict:
		return {"url": self.url, "type": self.type, "name": self.name, "size": self.size}


def attach_iterable(items: Iterable[Attachment]) -> Tuple[Attachment, ...]:
	return tuple(items)


@dataclass(slots=True)
class Message:
	id: str
	conversation_id: str
	seq: int
	sender_id: str
	content: str
	created_at: datetime
	attachments: Tuple[Attachment, ...] = ()
	read_by: Dict[str, datetime] = field(default_factory=dict)
	deleted_for: FrozenSet[str] = frozenset()

	def is_visible_to(self, user_id: str) -> bool:
		return user_id not in self.deleted_for

	def preview(self, length: int = 80) -> str:
		text = self.content.strip()
		if not text and self.attachments:
			return "[attachment]"
		return text if len(text) <= length else f"{text[: length - 1]}…"
