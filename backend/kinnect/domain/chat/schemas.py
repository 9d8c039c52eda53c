"""Pydantic schemas exchanged over REST and the /chat namespace."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from kinnect.domain.chat.models import Attachment, Conversation, Message


class AttachmentIn(BaseModel):
	url: str = Field(..., min_length=1)
	type: str = "file"
	name: Optional[str] = None
	size: Optional[int] = Field(default=None, ge=0)

	def to_model(self) -> Attachment:
		return Attachment(url=self.url, type=self.type, name=self.name, size=self.size)


class SendMessageRequest(BaseModel):
	content: str = ""
	attachments: List[AttachmentIn] = Field(default_factory=list)
	temp_id: Optional[str] = Field(default=None, alias="tempId")

	model_config = ConfigDict(populate_by_name=True)


class SocketSendPayload(SendMessageRequest):
	conversation_id: str = Field(..., alias="conversationId")


class OpenConversationRequest(BaseModel):
	user_id: str = Field(..., min_length=1, description="The other participant")


class MessageOut(BaseModel):
	id: str
	conversation_id: str
	seq: int
	sender_id: str
	content: str = ""
	attachments: List[Dict[str, object]] = Field(default_factory=list)
	created_at: datetime
	read_by: List[str] = Field(default_factory=list)

	@classmethod
	def from_model(cls, message: Message) -> "MessageOut":
		return cls(
			id=message.id,
			conversation_id=message.conversation_id,
			seq=message.seq,
			sender_id=message.sender_id,
			content=message.content,
			attachments=[a.to_dict() for a in message.attachments],
			created_at=message.created_at,
			read_by=sorted(message.read_by),
		)


class ConversationOut(BaseModel):
	id: str
	participants: List[str]
	other_user_id: Optional[str] = None
	last_message_id: Optional[str] = None
	last_message_at: Optional[datetime] = None
	last_message_preview: Optional[str] = None
	last_sender_id: Optional[str] = None
	unread_count: int = 0
	archived: bool = False
	muted: bool = False
	created_at: datetime

	@classmethod
	def for_viewer(cls, conversation: Conversation, viewer_id: str) -> "ConversationOut":
		others = conversation.others(viewer_id)
		me = conversation.participants.get(viewer_id)
		return cls(
			id=conversation.id,
			participants=list(conversation.participant_ids()),
			other_user_id=others[0] if others else None,
			last_message_id=conversation.last_message_id,
			last_message_at=conversation.last_message_at,
			last_message_preview=conversation.last_message_preview,
			last_sender_id=conversation.last_sender_id,
			unread_count=me.unread_count if me else 0,
			archived=me.archived if me else False,
			muted=me.muted if me else False,
			created_at=conversation.created_at,
		)


class MessagePage(BaseModel):
	items: List[MessageOut]
	next_before: Optional[int] = None


class ReadReceipt(BaseModel):
	conversation_id: str
	user_id: str
	message_ids: List[str]
	read_at: datetime


class UnreadSummary(BaseModel):
	total_unread: int
	conversations_with_unread: int


class PresenceOut(BaseModel):
	user_id: str
	online: bool
	last_seen: Optional[datetime] = None


class OnlineUsers(BaseModel):
	items: List[str]
