"""Notification payloads as a tagged union over known kinds.

Each known kind has a fixed payload shape. Anything else, including kinds
written by newer deployments, parses as `OtherPayload` so stored rows never
fail to load.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


class _Payload(BaseModel):
	model_config = ConfigDict(frozen=True)


class ConnectionRequestPayload(_Payload):
	kind: Literal["connection_request"] = "connection_request"
	request_id: str
	message: Optional[str] = None


class ConnectionAcceptedPayload(_Payload):
	kind: Literal["connection_accepted"] = "connection_accepted"
	connection_id: str


class MessagePayload(_Payload):
	kind: Literal["message"] = "message"
	conversation_id: str
	message_id: str
	preview: str = ""


class PostReactionPayload(_Payload):
	kind: Literal["post_reaction"] = "post_reaction"
	target_type: str
	target_id: str
	reaction: str


class PostCommentPayload(_Payload):
	kind: Literal["post_comment"] = "post_comment"
	post_id: str
	comment_id: str


class MentionPayload(_Payload):
	kind: Literal["mention"] = "mention"
	target_type: str
	target_id: str


class ProfileViewPayload(_Payload):
	kind: Literal["profile_view"] = "profile_view"


class SkillEndorsementPayload(_Payload):
	kind: Literal["skill_endorsement"] = "skill_endorsement"
	skill: str


class PostSharePayload(_Payload):
	kind: Literal["post_share"] = "post_share"
	post_id: str


class OtherPayload(_Payload):
	kind: str
	data: Dict[str, Any] = Field(default_factory=dict)


KnownPayload = Annotated[
	Union[
		ConnectionRequestPayload,
		ConnectionAcceptedPayload,
		MessagePayload,
		PostReactionPayload,
		PostCommentPayload,
		MentionPayload,
		ProfileViewPayload,
		SkillEndorsementPayload,
		PostSharePayload,
	],
	Field(discriminator="kind"),
]

NotificationPayload = Union[
	ConnectionRequestPayload,
	ConnectionAcceptedPayload,
	MessagePayload,
	PostReactionPayload,
	PostCommentPayload,
	MentionPayload,
	ProfileViewPayload,
	SkillEndorsementPayload,
	PostSharePayload,
	OtherPayload,
]

KNOWN_KINDS = frozenset(
	{
		"connection_request",
		"connection_accepted",
		"message",
		"post_reaction",
		"post_comment",
		"mention",
		"profile_view",
		"skill_endorsement",
		"post_share",
	}
)

_KNOWN_ADAPTER: TypeAdapter = TypeAdapter(KnownPayload)


def parse_payload(data: Any) -> NotificationPayload:
	"""Validate a raw payload dict into its variant, falling back to OtherPayload."""
	if isinstance(data, _Payload):
		return data  # type: ignore[return-value]
	if not isinstance(data, dict):
		raise TypeError("notification payload must be a mapping")
	kind = str(data.get("kind") or "other")
	if kind in KNOWN_KINDS:
		return _KNOWN_ADAPTER.validate_python(data)
	extra = {key: value for key, value in data.items() if key not in ("kind", "data")}
	nested = data.get("data") if isinstance(data.get("data"), dict) else {}
	return OtherPayload(kind=kind, data={**nested, **extra})


class Notification(BaseModel):
	id: str
	recipient_id: str
	actor_id: Optional[str] = None
	payload: NotificationPayload
	title: str
	body: str
	link: Optional[str] = None
	read: bool = False
	created_at: datetime

	@field_validator("payload", mode="before")
	@classmethod
	def _coerce_payload(cls, value: Any) -> Any:
		return parse_payload(value)

	@property
	def kind(self) -> str:
		return self.payload.kind


def render(payload: NotificationPayload, actor_name: Optional[str] = None) -> tuple[str, str, Optional[str]]:
	"""Return (title, body, link) for a payload."""
	who = actor_name or "Someone"
	if isinstance(payload, ConnectionRequestPayload):
		return ("New connection request", f"{who} wants to connect with you", "/network/requests")
	if isinstance(payload, ConnectionAcceptedPayload):
		return ("Connection accepted", f"{who} accepted your connection request", "/network")
	if isinstance(payload, MessagePayload):
		return ("New message", f"{who}: {payload.preview}" if payload.preview else f"{who} sent you a message", f"/messages/{payload.conversation_id}")
	if isinstance(payload, PostReactionPayload):
		return ("New reaction", f"{who} reacted {payload.reaction} to your post", f"/posts/{payload.target_id}")
	if isinstance(payload, PostCommentPayload):
		return ("New comment", f"{who} commented on your post", f"/posts/{payload.post_id}")
	if isinstance(payload, MentionPayload):
		return ("You were mentioned", f"{who} mentioned you", f"/posts/{payload.target_id}")
	if isinstance(payload, ProfileViewPayload):
		return ("Profile view", f"{who} viewed your profile", "/profile/views")
	if isinstance(payload, SkillEndorsementPayload):
		return ("New endorsement", f"{who} endorsed you for {payload.skill}", "/profile")
	if isinstance(payload, PostSharePayload):
		return ("Post shared", f"{who} shared your post", f"/posts/{payload.post_id}")
	return ("Notification", f"You have a new {payload.kind.replace('_', ' ')} notification", None)


class NotificationPage(BaseModel):
	items: list[Notification]
	unread: int
	next: Optional[str] = None
