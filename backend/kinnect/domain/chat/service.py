"""Presence and delivery engine for 1:1 conversations.

Sessions, rooms and typing state go through the presence registry; messages and
unread counters go through the chat store. Every send re-validates that the
participants are still 1st-degree connections.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from datetime import datetime, timezone
from typing import Awaitable, Iterable, List, Optional, Tuple

from kinnect.domain.chat import sockets
from kinnect.domain.chat.models import Attachment, Conversation, Message
from kinnect.domain.chat.repo import ChatStore, MemoryChatStore, PostgresChatStore
from kinnect.domain.chat.schemas import (
	ConversationOut,
	MessageOut,
	MessagePage,
	PresenceOut,
	ReadReceipt,
	UnreadSummary,
)
from kinnect.domain.connections import service as connections_service
from kinnect.domain.errors import (
	AuthorizationError,
	NotConnectedError,
	NotFoundError,
	SelfReferenceError,
	ValidationError,
)
from kinnect.domain.notifications import dispatcher as notifications
from kinnect.domain.notifications.models import MessagePayload
from kinnect.domain.presence.registry import Departure, PresenceRegistry, get_registry
from kinnect.infra.postgres import pool_or_none
from kinnect.obs import metrics as obs_metrics
from kinnect.settings import settings

logger = logging.getLogger(__name__)

_MEMORY_STORE = MemoryChatStore()


def _now() -> datetime:
	return datetime.now(timezone.utc)


def _iso(value: datetime) -> str:
	return value.isoformat()


async def _best_effort(label: str, awaitable: Awaitable[None]) -> None:
	try:
		await awaitable
	except Exception:
		logger.warning("chat side effect failed", extra={"effect": label}, exc_info=True)


def normalise_content(content: Optional[str], attachments: Iterable[Attachment] = ()) -> str:
	text = (content or "").strip()
	if not text and not tuple(attachments):
		raise ValidationError("empty_message")
	if len(text) > settings.message_max_length:
		raise ValidationError("message_too_long")
	return text


class ChatService:
	def __init__(
		self,
		repository: ChatStore | None = None,
		connections: connections_service.ConnectionService | None = None,
		registry: PresenceRegistry | None = None,
	) -> None:
		self._store = repository
		self._connections = connections
		self._registry = registry
		self._send_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

	async def _repo(self) -> ChatStore:
		if self._store is None:
			pool = await pool_or_none()
			self._store = PostgresChatStore(pool) if pool is not None else _MEMORY_STORE
		return self._store

	@property
	def connections(self) -> connections_service.ConnectionService:
		return self._connections or connections_service.get_service()

	@property
	def registry(self) -> PresenceRegistry:
		return self._registry or get_registry()

	def _lock_for(self, conversation_id: str) -> asyncio.Lock:
		lock = self._send_locks.get(conversation_id)
		if lock is None:
			lock = asyncio.Lock()
			self._send_locks[conversation_id] = lock
		return lock

	async def _participant_conversation(self, user_id: str, conversation_id: str) -> Conversation:
		store = await self._repo()
		conversation = await store.get_conversation(conversation_id)
		if conversation is None:
			raise NotFoundError("conversation_missing")
		if not conversation.is_participant(user_id):
			raise AuthorizationError("not_participant")
		return conversation

	async def _require_connected(self, user_id: str, conversation: Conversation) -> None:
		"""Every other participant must still be a 1st-degree connection."""
		for other in conversation.others(user_id):
			if not await self.connections.are_connected(user_id, other):
				raise NotConnectedError()

	# Session lifecycle

	async def activate_session(self, sid: str, user_id: str) -> bool:
		"""Move an authenticated socket to Active. Returns True if the user just came online."""
		registry = self.registry
		registry.open(sid)
		registry.authenticate(sid, user_id)
		came_online = registry.activate(sid)
		await sockets.enter_room(sid, sockets.user_room(user_id))
		obs_metrics.socket_connected("/chat")
		obs_metrics.set_online_users(len(registry.online_users()))
		if came_online:
			obs_metrics.presence_transition("online")
			await sockets.broadcast(
				"user:status",
				{"userId": user_id, "status": "online", "at": _iso(_now())},
				skip_sid=sid,
			)
		await sockets.emit_to_sid(sid, "online_users", {"users": registry.online_users()})
		return came_online

	async def close_session(self, sid: str) -> Optional[Departure]:
		registry = self.registry
		departure = registry.close(sid)
		if departure is None:
			return None
		obs_metrics.socket_disconnected("/chat")
		user_id = departure.user_id
		if user_id is None:
			return departure
		for conversation_id in departure.typing_cleared:
			await _best_effort(
				"typing",
				sockets.emit_to_room(
					"typing:hide",
					{"conversationId": conversation_id, "userId": user_id},
					sockets.conversation_room(conversation_id),
				),
			)
		for room in departure.rooms:
			await _best_effort("leave", sockets.leave_room(sid, room))
			if not registry.in_room(user_id, room):
				conversation_id = room.split(":", 1)[-1]
				await _best_effort(
					"presence",
					sockets.emit_to_room("user_left", {"conversationId": conversation_id, "userId": user_id}, room),
				)
		obs_metrics.set_online_users(len(registry.online_users()))
		if departure.went_offline:
			obs_metrics.presence_transition("offline")
			await sockets.broadcast(
				"user:status",
				{"userId": user_id, "status": "offline", "at": _iso(departure.last_seen)},
			)
		return departure

	# Rooms

	async def join_conversation(self, sid: str, user_id: str, conversation_id: str) -> dict:
		conversation = await self._participant_conversation(user_id, conversation_id)
		registry = self.registry
		room = sockets.conversation_room(conversation.id)
		user_present = registry.in_room(user_id, room)
		joined = registry.join(sid, room)
		if joined:
			await sockets.enter_room(sid, room)
			if not user_present:
				await sockets.emit_to_room(
					"user_joined",
					{"conversationId": conversation.id, "userId": user_id},
					room,
					skip_sid=sid,
				)
		store = await self._repo()
		previous = await store.reset_unread(conversation.id, user_id)
		if previous:
			await _best_effort("unread", self._push_unread(user_id, conversation.id))
		return {
			"conversationId": conversation.id,
			"joined": joined,
			"typing": sorted(registry.typing_users(conversation.id) - {user_id}),
			"online": [uid for uid in conversation.others(user_id) if registry.is_online(uid)],
			"typingTtl": settings.typing_ttl_seconds,
		}

	async def leave_conversation(self, sid: str, user_id: str, conversation_id: str) -> bool:
		registry = self.registry
		room = sockets.conversation_room(conversation_id)
		left = registry.leave(sid, room)
		if not left:
			return False
		await sockets.leave_room(sid, room)
		if not registry.in_room(user_id, room):
			if registry.set_typing(user_id, conversation_id, False):
				await sockets.emit_to_room("typing:hide", {"conversationId": conversation_id, "userId": user_id}, room)
			await sockets.emit_to_room("user_left", {"conversationId": conversation_id, "userId": user_id}, room)
		return True

	# Messages

	async def send_message(
		self,
		sender_id: str,
		conversation_id: str,
		content: Optional[str],
		attachments: Iterable[Attachment] | None = None,
		*,
		temp_id: Optional[str] = None,
		transport: str = "socket",
	) -> Tuple[Message, Conversation]:
		attachment_list = tuple(attachments or ())
		text = normalise_content(content, attachment_list)
		conversation = await self._participant_conversation(sender_id, conversation_id)
		store = await self._repo()
		room = sockets.conversation_room(conversation.id)
		async with self._lock_for(conversation.id):
			try:
				await self._require_connected(sender_id, conversation)
			except NotConnectedError:
				obs_metrics.inc_chat_send_reject("not_connected")
				raise
			message, conversation = await store.append_message(conversation.id, sender_id, text, attachment_list, _now())
			payload = MessageOut.from_model(message).model_dump(mode="json")
			payload["tempId"] = temp_id
			await _best_effort("fanout", sockets.emit_to_room("new_message", payload, room))
		obs_metrics.inc_chat_send(transport)
		logger.info(
			"chat message sent",
			extra={"conversation_id": conversation.id, "message_id": message.id, "sender": sender_id, "seq": message.seq},
		)
		if self.registry.set_typing(sender_id, conversation.id, False):
			await _best_effort(
				"typing",
				sockets.emit_to_room("typing:hide", {"conversationId": conversation.id, "userId": sender_id}, room),
			)
		for recipient in conversation.others(sender_id):
			await _best_effort("unread", self._push_unread(recipient, conversation.id))
			if conversation.participants[recipient].muted:
				continue
			notifications.dispatch(
				recipient,
				sender_id,
				MessagePayload(conversation_id=conversation.id, message_id=message.id, preview=message.preview()),
			)
		return message, conversation

	async def mark_read(self, user_id: str, conversation_id: str) -> ReadReceipt:
		conversation = await self._participant_conversation(user_id, conversation_id)
		store = await self._repo()
		now = _now()
		newly_read = await store.mark_read(conversation.id, user_id, now)
		receipt = ReadReceipt(conversation_id=conversation.id, user_id=user_id, message_ids=newly_read, read_at=now)
		if newly_read:
			await _best_effort(
				"receipt",
				sockets.emit_to_room(
					"messages_read",
					{
						"conversationId": conversation.id,
						"userId": user_id,
						"messageIds": newly_read,
						"readAt": _iso(now),
					},
					sockets.conversation_room(conversation.id),
				),
			)
			await _best_effort("unread", self._push_unread(user_id, conversation.id))
		return receipt

	async def set_typing(self, user_id: str, conversation_id: str, is_typing: bool, *, sid: Optional[str] = None) -> bool:
		room = sockets.conversation_room(conversation_id)
		registry = self.registry
		if not registry.in_room(user_id, room):
			raise AuthorizationError("not_joined")
		changed = registry.set_typing(user_id, conversation_id, is_typing)
		if changed:
			event = "typing:show" if is_typing else "typing:hide"
			await sockets.emit_to_room(event, {"conversationId": conversation_id, "userId": user_id}, room, skip_sid=sid)
		return changed

	# Presence snapshots

	def get_online_users(self) -> List[str]:
		return self.registry.online_users()

	def is_online(self, user_id: str) -> bool:
		return self.registry.is_online(user_id)

	def presence(self, user_id: str) -> PresenceOut:
		online = self.registry.is_online(user_id)
		return PresenceOut(user_id=user_id, online=online, last_seen=None if online else self.registry.last_seen(user_id))

	# Conversation management

	async def open_direct_conversation(self, user_id: str, other_id: str) -> Tuple[Conversation, bool]:
		if user_id == other_id:
			raise SelfReferenceError()
		if not await self.connections.are_connected(user_id, other_id):
			raise NotConnectedError()
		store = await self._repo()
		conversation, created = await store.find_or_create_direct(user_id, other_id, _now())
		if created:
			logger.info("conversation opened", extra={"conversation_id": conversation.id, "by": user_id})
		return conversation, created

	async def list_conversations(self, user_id: str, *, include_archived: bool = False) -> List[ConversationOut]:
		store = await self._repo()
		conversations = await store.list_conversations(user_id, include_archived=include_archived)
		return [ConversationOut.for_viewer(c, user_id) for c in conversations]

	async def get_messages(
		self,
		user_id: str,
		conversation_id: str,
		*,
		limit: int = 50,
		before: Optional[int] = None,
	) -> MessagePage:
		conversation = await self._participant_conversation(user_id, conversation_id)
		await self._require_connected(user_id, conversation)
		store = await self._repo()
		rows = await store.list_messages(conversation.id, user_id, limit=limit + 1, before_seq=before)
		next_before = None
		if len(rows) > limit:
			rows = rows[1:]
			next_before = rows[0].seq if rows else None
		return MessagePage(items=[MessageOut.from_model(m) for m in rows], next_before=next_before)

	async def delete_message(self, user_id: str, message_id: str) -> None:
		store = await self._repo()
		message = await store.get_message(message_id)
		if message is None or not message.is_visible_to(user_id):
			raise NotFoundError("message_missing")
		await self._participant_conversation(user_id, message.conversation_id)
		await store.delete_for_user(message_id, user_id)

	async def set_archived(self, user_id: str, conversation_id: str, archived: bool) -> ConversationOut:
		return await self._set_flags(user_id, conversation_id, archived=archived)

	async def set_muted(self, user_id: str, conversation_id: str, muted: bool) -> ConversationOut:
		return await self._set_flags(user_id, conversation_id, muted=muted)

	async def _set_flags(self, user_id: str, conversation_id: str, **flags: bool) -> ConversationOut:
		await self._participant_conversation(user_id, conversation_id)
		store = await self._repo()
		conversation = await store.set_flags(conversation_id, user_id, **flags)
		if conversation is None:
			raise NotFoundError("conversation_missing")
		return ConversationOut.for_viewer(conversation, user_id)

	async def unread_summary(self, user_id: str) -> UnreadSummary:
		store = await self._repo()
		total, conversations = await store.unread_summary(user_id)
		return UnreadSummary(total_unread=total, conversations_with_unread=conversations)

	async def _push_unread(self, user_id: str, conversation_id: str) -> None:
		store = await self._repo()
		conversation = await store.get_conversation(conversation_id)
		total, _ = await store.unread_summary(user_id)
		await sockets.emit_to_user(
			user_id,
			"conversations:unread_update",
			{
				"conversationId": conversation_id,
				"unreadCount": conversation.unread_for(user_id) if conversation else 0,
				"totalUnread": total,
			},
		)


_SERVICE = ChatService()


def get_service() -> ChatService:
	return _SERVICE


async def send_message(
	sender_id: str,
	conversation_id: str,
	content: Optional[str],
	attachments: Iterable[Attachment] | None = None,
	*,
	temp_id: Optional[str] = None,
	transport: str = "socket",
) -> Tuple[Message, Conversation]:
	return await _SERVICE.send_message(
		sender_id, conversation_id, content, attachments, temp_id=temp_id, transport=transport
	)


async def mark_read(user_id: str, conversation_id: str) -> ReadReceipt:
	return await _SERVICE.mark_read(user_id, conversation_id)


async def open_direct_conversation(user_id: str, other_id: str) -> Tuple[Conversation, bool]:
	return await _SERVICE.open_direct_conversation(user_id, other_id)


async def list_conversations(user_id: str, *, include_archived: bool = False) -> List[ConversationOut]:
	return await _SERVICE.list_conversations(user_id, include_archived=include_archived)


async def get_messages(user_id: str, conversation_id: str, *, limit: int = 50, before: Optional[int] = None) -> MessagePage:
	return await _SERVICE.get_messages(user_id, conversation_id, limit=limit, before=before)


async def delete_message(user_id: str, message_id: str) -> None:
	await _SERVICE.delete_message(user_id, message_id)


async def set_archived(user_id: str, conversation_id: str, archived: bool) -> ConversationOut:
	return await _SERVICE.set_archived(user_id, conversation_id, archived)


async def set_muted(user_id: str, conversation_id: str, muted: bool) -> ConversationOut:
	return await _SERVICE.set_muted(user_id, conversation_id, muted)


async def unread_summary(user_id: str) -> UnreadSummary:
	return await _SERVICE.unread_summary(user_id)


def presence(user_id: str) -> PresenceOut:
	return _SERVICE.presence(user_id)


def get_online_users() -> List[str]:
	return _SERVICE.get_online_users()


def is_online(user_id: str) -> bool:
	return _SERVICE.is_online(user_id)
