"""Conversation and message persistence: asyncpg with an in-memory fallback."""

from __future__ import annotations

import asyncio
import json
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

import asyncpg
import ulid

from kinnect.domain.chat.models import (
	Attachment,
	Conversation,
	Message,
	Participant,
	attach_iterable,
	direct_key,
)


def _copy_conversation(conversation: Conversation) -> Conversation:
	return replace(
		conversation,
		participants={uid: replace(p) for uid, p in conversation.participants.items()},
	)


def _copy_message(message: Message) -> Message:
	return replace(message, read_by=dict(message.read_by))


class MemoryChatStore:
	"""Fallback store used in tests when Postgres is unavailable."""

	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self._conversations: Dict[str, Conversation] = {}
		self._by_key: Dict[str, str] = {}
		self._messages: Dict[str, List[Message]] = {}
		self._message_index: Dict[str, Message] = {}

	async def find_or_create_direct(self, user_one: str, user_two: str, now: datetime) -> Tuple[Conversation, bool]:
		key = direct_key(user_one, user_two)
		async with self._lock:
			existing_id = self._by_key.get(key)
			if existing_id is not None:
				return _copy_conversation(self._conversations[existing_id]), False
			conversation = Conversation(
				id=str(ulid.new()),
				direct_key=key,
				participants={uid: Participant(user_id=uid) for uid in (user_one, user_two)},
				created_at=now,
			)
			self._conversations[conversation.id] = conversation
			self._by_key[key] = conversation.id
			self._messages[conversation.id] = []
			return _copy_conversation(conversation), True

	async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
		async with self._lock:
			conversation = self._conversations.get(conversation_id)
			return _copy_conversation(conversation) if conversation else None

	async def list_conversations(self, user_id: str, *, include_archived: bool = False) -> List[Conversation]:
		async with self._lock:
			rows = [
				_copy_conversation(c)
				for c in self._conversations.values()
				if c.is_participant(user_id) and (include_archived or not c.participants[user_id].archived)
			]
		rows.sort(key=lambda c: (c.sort_key, c.id), reverse=True)
		return rows

	async def append_message(
		self,
		conversation_id: str,
		sender_id: str,
		content: str,
		attachments: Iterable[Attachment],
		now: datetime,
	) -> Tuple[Message, Conversation]:
		async with self._lock:
			conversation = self._conversations[conversation_id]
			conversation.last_seq += 1
			message = Message(
				id=str(ulid.new()),
				conversation_id=conversation_id,
				seq=conversation.last_seq,
				sender_id=sender_id,
				content=content,
				created_at=now,
				attachments=attach_iterable(attachments),
			)
			self._messages[conversation_id].append(message)
			self._message_index[message.id] = message
			conversation.last_message_id = message.id
			conversation.last_message_at = now
			conversation.last_message_preview = message.preview()
			conversation.last_sender_id = sender_id
			for participant in conversation.participants.values():
				participant.archived = False
				if participant.user_id != sender_id:
					participant.unread_count += 1
			return _copy_message(message), _copy_conversation(conversation)

	async def reset_unread(self, conversation_id: str, user_id: str) -> int:
		async with self._lock:
			participant = self._conversations[conversation_id].participants[user_id]
			previous = participant.unread_count
			participant.unread_count = 0
			return previous

	async def mark_read(self, conversation_id: str, user_id: str, now: datetime) -> List[str]:
		async with self._lock:
			newly_read: List[str] = []
			for message in self._messages.get(conversation_id, []):
				if message.sender_id != user_id and user_id not in message.read_by:
					message.read_by[user_id] = now
					newly_read.append(message.id)
			participant = self._conversations[conversation_id].participants[user_id]
			participant.unread_count = 0
			if newly_read:
				participant.last_read_at = now
			return newly_read

	async def list_messages(
		self,
		conversation_id: str,
		user_id: str,
		*,
		limit: int,
		before_seq: Optional[int] = None,
	) -> List[Message]:
		async with self._lock:
			visible = [
				_copy_message(m)
				for m in self._messages.get(conversation_id, [])
				if m.is_visible_to(user_id) and (before_seq is None or m.seq < before_seq)
			]
		return visible[-limit:] if limit > 0 else []

	async def get_message(self, message_id: str) -> Optional[Message]:
		async with self._lock:
			message = self._message_index.get(message_id)
			return _copy_message(message) if message else None

	async def delete_for_user(self, message_id: str, user_id: str) -> bool:
		async with self._lock:
			message = self._message_index.get(message_id)
			if message is None or user_id in message.deleted_for:
				return False
			message.deleted_for = message.deleted_for | {user_id}
			return True

	async def set_flags(
		self,
		conversation_id: str,
		user_id: str,
		*,
		archived: Optional[bool] = None,
		muted: Optional[bool] = None,
	) -> Optional[Conversation]:
		async with self._lock:
			conversation = self._conversations.get(conversation_id)
			if conversation is None or user_id not in conversation.participants:
				return None
			participant = conversation.participants[user_id]
			if archived is not None:
				participant.archived = archived
			if muted is not None:
				participant.muted = muted
			return _copy_conversation(conversation)

	async def unread_summary(self, user_id: str) -> Tuple[int, int]:
		async with self._lock:
			counts = [
				c.participants[user_id].unread_count
				for c in self._conversations.values()
				if c.is_participant(user_id)
			]
		return sum(counts), sum(1 for count in counts if count > 0)


_CONVERSATION_COLUMNS = (
	"id, direct_key, created_at, last_message_id, last_message_at, last_message_preview, last_sender_id, last_seq"
)
_MESSAGE_SELECT = """
SELECT m.id, m.conversation_id, m.seq, m.sender_id, m.content, m.attachments, m.created_at, m.deleted_for,
	COALESCE(
		(SELECT jsonb_object_agg(r.user_id, r.read_at) FROM message_reads r WHERE r.message_id = m.id),
		'{}'::jsonb
	) AS read_by
FROM messages m
"""


class PostgresChatStore:
	"""Repository backed by asyncpg."""

	def __init__(self, pool: asyncpg.pool.Pool) -> None:
		self._pool = pool

	async def find_or_create_direct(self, user_one: str, user_two: str, now: datetime) -> Tuple[Conversation, bool]:
		key = direct_key(user_one, user_two)
		async with self._pool.acquire() as conn:
			async with conn.transaction():
				inserted = await conn.fetchval(
					"""
					INSERT INTO conversations (id, direct_key, created_at)
					VALUES ($1, $2, $3)
					ON CONFLICT (direct_key) DO NOTHING
					RETURNING id
					""",
					str(ulid.new()),
					key,
					now,
				)
				if inserted is not None:
					await conn.executemany(
						"INSERT INTO conversation_participants (conversation_id, user_id) VALUES ($1, $2)",
						[(inserted, user_one), (inserted, user_two)],
					)
				conversation_id = inserted or await conn.fetchval(
					"SELECT id FROM conversations WHERE direct_key = $1", key
				)
				conversation = await self._load(conn, conversation_id)
		assert conversation is not None
		return conversation, inserted is not None

	async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
		async with self._pool.acquire() as conn:
			return await self._load(conn, conversation_id)

	async def list_conversations(self, user_id: str, *, include_archived: bool = False) -> List[Conversation]:
		async with self._pool.acquire() as conn:
			ids = await conn.fetch(
				"""
				SELECT c.id
				FROM conversations c
				JOIN conversation_participants p ON p.conversation_id = c.id
				WHERE p.user_id = $1 AND ($2 OR NOT p.archived)
				ORDER BY COALESCE(c.last_message_at, c.created_at) DESC, c.id DESC
				""",
				user_id,
				include_archived,
			)
			conversations = [await self._load(conn, row["id"]) for row in ids]
		return [c for c in conversations if c is not None]

	async def append_message(
		self,
		conversation_id: str,
		sender_id: str,
		content: str,
		attachments: Iterable[Attachment],
		now: datetime,
	) -> Tuple[Message, Conversation]:
		attachment_tuple = attach_iterable(attachments)
		async with self._pool.acquire() as conn:
			async with conn.transaction():
				seq = await self._next_sequence(conn, conversation_id)
				message = Message(
					id=str(ulid.new()),
					conversation_id=conversation_id,
					seq=seq,
					sender_id=sender_id,
					content=content,
					created_at=now,
					attachments=attachment_tuple,
				)
				await conn.execute(
					"""
					INSERT INTO messages (id, conversation_id, seq, sender_id, content, attachments, created_at)
					VALUES ($1, $2, $3, $4, $5, $6::jsonb, $7)
					""",
					message.id,
					conversation_id,
					seq,
					sender_id,
					content,
					json.dumps([a.to_dict() for a in attachment_tuple]),
					now,
				)
				await conn.execute(
					"""
					UPDATE conversations
					SET last_message_id = $2, last_message_at = $3, last_message_preview = $4, last_sender_id = $5
					WHERE id = $1
					""",
					conversation_id,
					message.id,
					now,
					message.preview(),
					sender_id,
				)
				await conn.execute(
					"""
					UPDATE conversation_participants
					SET archived = FALSE,
						unread_count = unread_count + CASE WHEN user_id <> $2 THEN 1 ELSE 0 END
					WHERE conversation_id = $1
					""",
					conversation_id,
					sender_id,
				)
				conversation = await self._load(conn, conversation_id)
		assert conversation is not None
		return message, conversation

	async def reset_unread(self, conversation_id: str, user_id: str) -> int:
		async with self._pool.acquire() as conn:
			previous = await conn.fetchval(
				"""
				UPDATE conversation_participants p
				SET unread_count = 0
				FROM (
					SELECT unread_count FROM conversation_participants
					WHERE conversation_id = $1 AND user_id = $2
					FOR UPDATE
				) old
				WHERE p.conversation_id = $1 AND p.user_id = $2
				RETURNING old.unread_count
				""",
				conversation_id,
				user_id,
			)
		return int(previous or 0)

	async def mark_read(self, conversation_id: str, user_id: str, now: datetime) -> List[str]:
		async with self._pool.acquire() as conn:
			async with conn.transaction():
				rows = await conn.fetch(
					"""
					INSERT INTO message_reads (message_id, user_id, read_at)
					SELECT m.id, $2, $3
					FROM messages m
					WHERE m.conversation_id = $1 AND m.sender_id <> $2
					ON CONFLICT (message_id, user_id) DO NOTHING
					RETURNING message_id
					""",
					conversation_id,
					user_id,
					now,
				)
				newly_read = [str(row["message_id"]) for row in rows]
				await conn.execute(
					"""
					UPDATE conversation_participants
					SET unread_count = 0,
						last_read_at = CASE WHEN $3 THEN $4 ELSE last_read_at END
					WHERE conversation_id = $1 AND user_id = $2
					""",
					conversation_id,
					user_id,
					bool(newly_read),
					now,
				)
		return newly_read

	async def list_messages(
		self,
		conversation_id: str,
		user_id: str,
		*,
		limit: int,
		before_seq: Optional[int] = None,
	) -> List[Message]:
		params: List[object] = [conversation_id, user_id]
		where_clause = ""
		if before_seq is not None:
			params.append(before_seq)
			where_clause = " AND m.seq < $3"
		params.append(limit)
		query = (
			_MESSAGE_SELECT
			+ " WHERE m.conversation_id = $1 AND NOT ($2 = ANY(m.deleted_for))"
			+ where_clause
			+ f" ORDER BY m.seq DESC LIMIT ${len(params)}"
		)
		async with self._pool.acquire() as conn:
			rows = await conn.fetch(query, *params)
		return [self._row_to_message(row) for row in reversed(rows)]

	async def get_message(self, message_id: str) -> Optional[Message]:
		async with self._pool.acquire() as conn:
			row = await conn.fetchrow(_MESSAGE_SELECT + " WHERE m.id = $1", message_id)
		return self._row_to_message(row) if row else None

	async def delete_for_user(self, message_id: str, user_id: str) -> bool:
		async with self._pool.acquire() as conn:
			status = await conn.execute(
				"""
				UPDATE messages
				SET deleted_for = array_append(deleted_for, $2)
				WHERE id = $1 AND NOT ($2 = ANY(deleted_for))
				""",
				message_id,
				user_id,
			)
		return status.endswith(" 1")

	async def set_flags(
		self,
		conversation_id: str,
		user_id: str,
		*,
		archived: Optional[bool] = None,
		muted: Optional[bool] = None,
	) -> Optional[Conversation]:
		async with self._pool.acquire() as conn:
			updated = await conn.fetchval(
				"""
				UPDATE conversation_participants
				SET archived = COALESCE($3, archived), muted = COALESCE($4, muted)
				WHERE conversation_id = $1 AND user_id = $2
				RETURNING 1
				""",
				conversation_id,
				user_id,
				archived,
				muted,
			)
			if not updated:
				return None
			return await self._load(conn, conversation_id)

	async def unread_summary(self, user_id: str) -> Tuple[int, int]:
		async with self._pool.acquire() as conn:
			row = await conn.fetchrow(
				"""
				SELECT COALESCE(SUM(unread_count), 0) AS total,
					COUNT(*) FILTER (WHERE unread_count > 0) AS conversations
				FROM conversation_participants
				WHERE user_id = $1
				""",
				user_id,
			)
		return int(row["total"]), int(row["conversations"])

	async def _next_sequence(self, conn: asyncpg.Connection, conversation_id: str) -> int:
		row = await conn.fetchrow(
			"SELECT last_seq FROM conversations WHERE id = $1 FOR UPDATE",
			conversation_id,
		)
		next_seq = int(row["last_seq"]) + 1
		await conn.execute("UPDATE conversations SET last_seq = $2 WHERE id = $1", conversation_id, next_seq)
		return next_seq

	async def _load(self, conn: asyncpg.Connection, conversation_id: str) -> Optional[Conversation]:
		row = await conn.fetchrow(f"SELECT {_CONVERSATION_COLUMNS} FROM conversations WHERE id = $1", conversation_id)
		if row is None:
			return None
		members = await conn.fetch(
			"""
			SELECT user_id, unread_count, archived, muted, last_read_at
			FROM conversation_participants
			WHERE conversation_id = $1
			""",
			conversation_id,
		)
		return Conversation(
			id=str(row["id"]),
			direct_key=row["direct_key"],
			participants={
				str(m["user_id"]): Participant(
					user_id=str(m["user_id"]),
					unread_count=int(m["unread_count"]),
					archived=bool(m["archived"]),
					muted=bool(m["muted"]),
					last_read_at=m["last_read_at"],
				)
				for m in members
			},
			created_at=row["created_at"],
			last_message_id=row["last_message_id"],
			last_message_at=row["last_message_at"],
			last_message_preview=row["last_message_preview"],
			last_sender_id=row["last_sender_id"],
			last_seq=int(row["last_seq"]),
		)

	@staticmethod
	def _row_to_message(row) -> Message:
		attachments_raw = row["attachments"]
		if isinstance(attachments_raw, str):
			attachments_raw = json.loads(attachments_raw) if attachments_raw else []
		read_raw = row["read_by"]
		if isinstance(read_raw, str):
			read_raw = json.loads(read_raw) if read_raw else {}
		return Message(
			id=str(row["id"]),
			conversation_id=str(row["conversation_id"]),
			seq=int(row["seq"]),
			sender_id=str(row["sender_id"]),
			content=row["content"],
			created_at=row["created_at"],
			attachments=attach_iterable(Attachment.from_dict(item) for item in attachments_raw or []),
			read_by={str(uid): datetime.fromisoformat(str(ts)) for uid, ts in (read_raw or {}).items()},
			deleted_for=frozenset(row["deleted_for"] or ()),
		)


ChatStore = MemoryChatStore | PostgresChatStore
