"""Notification service: persistence plus realtime delivery."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple

import ulid

from kinnect.domain.chat import sockets as chat_sockets
from kinnect.domain.errors import NotFoundError
from kinnect.domain.notifications.models import Notification, NotificationPayload, parse_payload, render
from kinnect.domain.notifications.repo import MemoryNotificationStore, PostgresNotificationStore
from kinnect.infra.postgres import pool_or_none
from kinnect.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

_MEMORY_STORE = MemoryNotificationStore()


class NotificationService:
	def __init__(self, store: MemoryNotificationStore | PostgresNotificationStore | None = None) -> None:
		self._store = store

	async def _repo(self) -> MemoryNotificationStore | PostgresNotificationStore:
		if self._store is None:
			pool = await pool_or_none()
			self._store = PostgresNotificationStore(pool) if pool is not None else _MEMORY_STORE
		return self._store

	async def notify(
		self,
		recipient_id: str,
		actor_id: Optional[str],
		payload: NotificationPayload | dict[str, Any],
		*,
		actor_name: Optional[str] = None,
	) -> Optional[Notification]:
		if actor_id is not None and str(actor_id) == str(recipient_id):
			return None
		parsed = parse_payload(payload)
		title, body, link = render(parsed, actor_name)
		notification = Notification(
			id=str(ulid.new()),
			recipient_id=str(recipient_id),
			actor_id=str(actor_id) if actor_id is not None else None,
			payload=parsed,
			title=title,
			body=body,
			link=link,
			created_at=datetime.now(timezone.utc),
		)
		store = await self._repo()
		await store.insert(notification)
		obs_metrics.inc_notification(parsed.kind)
		await chat_sockets.emit_to_user(notification.recipient_id, "notification:new", notification.model_dump(mode="json"))
		return notification

	async def list_for_user(
		self,
		user_id: str,
		*,
		unread_only: bool = False,
		limit: int = 20,
		before: Optional[Tuple[datetime, str]] = None,
	) -> List[Notification]:
		store = await self._repo()
		return await store.list_for(user_id, unread_only=unread_only, limit=limit, before=before)

	async def unread_count(self, user_id: str) -> int:
		store = await self._repo()
		return await store.unread_count(user_id)

	async def mark_read(self, user_id: str, notification_id: str) -> Notification:
		store = await self._repo()
		notification = await store.mark_read(user_id, notification_id)
		if notification is None:
			raise NotFoundError("notification_missing")
		return notification

	async def mark_all_read(self, user_id: str) -> int:
		store = await self._repo()
		return await store.mark_all_read(user_id)


_SERVICE = NotificationService()


def get_service() -> NotificationService:
	return _SERVICE


async def list_for_user(user_id: str, *, unread_only: bool = False, limit: int = 20, before=None) -> List[Notification]:
	return await _SERVICE.list_for_user(user_id, unread_only=unread_only, limit=limit, before=before)


async def unread_count(user_id: str) -> int:
	return await _SERVICE.unread_count(user_id)


async def mark_read(user_id: str, notification_id: str) -> Notification:
	return await _SERVICE.mark_read(user_id, notification_id)


async def mark_all_read(user_id: str) -> int:
	return await _SERVICE.mark_all_read(user_id)
