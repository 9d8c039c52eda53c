"""Notification persistence: asyncpg with an in-memory fallback."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime
from typing import Dict, List, Optional, Tuple

import asyncpg

from kinnect.domain.notifications.models import Notification

Cursor = Tuple[datetime, str]

_COLUMNS = "id, recipient_id, actor_id, kind, payload, title, body, link, read, created_at"


class MemoryNotificationStore:
	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self._items: Dict[str, Notification] = {}

	async def insert(self, notification: Notification) -> Notification:
		async with self._lock:
			self._items[notification.id] = notification
			return notification

	async def list_for(
		self,
		recipient_id: str,
		*,
		unread_only: bool,
		limit: int,
		before: Optional[Cursor] = None,
	) -> List[Notification]:
		async with self._lock:
			rows = [
				n
				for n in self._items.values()
				if n.recipient_id == recipient_id and not (unread_only and n.read)
			]
		rows.sort(key=lambda n: (n.created_at, n.id), reverse=True)
		if before:
			rows = [n for n in rows if (n.created_at, n.id) < before]
		return rows[:limit]

	async def unread_count(self, recipient_id: str) -> int:
		async with self._lock:
			return sum(1 for n in self._items.values() if n.recipient_id == recipient_id and not n.read)

	async def mark_read(self, recipient_id: str, notification_id: str) -> Optional[Notification]:
		async with self._lock:
			current = self._items.get(notification_id)
			if current is None or current.recipient_id != recipient_id:
				return None
			updated = current.model_copy(update={"read": True})
			self._items[notification_id] = updated
			return updated

	async def mark_all_read(self, recipient_id: str) -> int:
		async with self._lock:
			changed = 0
			for key, current in list(self._items.items()):
				if current.recipient_id == recipient_id and not current.read:
					self._items[key] = current.model_copy(update={"read": True})
					changed += 1
			return changed


class PostgresNotificationStore:
	def __init__(self, pool: asyncpg.pool.Pool) -> None:
		self._pool = pool

	async def insert(self, notification: Notification) -> Notification:
		async with self._pool.acquire() as conn:
			await conn.execute(
				"""
				INSERT INTO notifications (id, recipient_id, actor_id, kind, payload, title, body, link, read, created_at)
				VALUES ($1, $2, $3, $4, $5::jsonb, $6, $7, $8, $9, $10)
				""",
				notification.id,
				notification.recipient_id,
				notification.actor_id,
				notification.kind,
				json.dumps(notification.payload.model_dump(mode="json")),
				notification.title,
				notification.body,
				notification.link,
				notification.read,
				notification.created_at,
			)
		return notification

	async def list_for(
		self,
		recipient_id: str,
		*,
		unread_only: bool,
		limit: int,
		before: Optional[Cursor] = None,
	) -> List[Notification]:
		params: List[object] = [recipient_id]
		clauses = ["recipient_id = $1"]
		if unread_only:
			clauses.append("NOT read")
		if before:
			params.extend(before)
			clauses.append(f"(created_at, id) < (${len(params) - 1}, ${len(params)})")
		params.append(limit)
		query = (
			f"SELECT {_COLUMNS} FROM notifications WHERE "
			+ " AND ".join(clauses)
			+ f" ORDER BY created_at DESC, id DESC LIMIT ${len(params)}"
		)
		async with self._pool.acquire() as conn:
			rows = await conn.fetch(query, *params)
		return [self._row_to_notification(row) for row in rows]

	async def unread_count(self, recipient_id: str) -> int:
		async with self._pool.acquire() as conn:
			count = await conn.fetchval(
				"SELECT COUNT(*) FROM notifications WHERE recipient_id = $1 AND NOT read",
				recipient_id,
			)
		return int(count or 0)

	async def mark_read(self, recipient_id: str, notification_id: str) -> Optional[Notification]:
		async with self._pool.acquire() as conn:
			row = await conn.fetchrow(
				f"""
				UPDATE notifications SET read = TRUE
				WHERE id = $1 AND recipient_id = $2
				RETURNING {_COLUMNS}
				""",
				notification_id,
				recipient_id,
			)
		return self._row_to_notification(row) if row else None

	async def mark_all_read(self, recipient_id: str) -> int:
		async with self._pool.acquire() as conn:
			status = await conn.execute(
				"UPDATE notifications SET read = TRUE WHERE recipient_id = $1 AND NOT read",
				recipient_id,
			)
		# asyncpg returns the command tag, e.g. "UPDATE 3"
		return int(status.split()[-1]) if status else 0

	@staticmethod
	def _row_to_notification(row) -> Notification:
		payload = row["payload"]
		if isinstance(payload, str):
			payload = json.loads(payload) if payload else {}
		payload = dict(payload or {})
		payload.setdefault("kind", row["kind"])
		return Notification(
			id=str(row["id"]),
			recipient_id=str(row["recipient_id"]),
			actor_id=str(row["actor_id"]) if row["actor_id"] else None,
			payload=payload,
			title=row["title"],
			body=row["body"],
			link=row["link"],
			read=bool(row["read"]),
			created_at=row["created_at"],
		)
