"""Fire-and-forget notification dispatch.

Callers hand off a notification after their own state change has committed.
The dispatch runs as a background task: failures are logged and counted but
never propagate back to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Set

from kinnect.domain.notifications import service as notification_service
from kinnect.domain.notifications.models import NotificationPayload
from kinnect.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

_pending: Set[asyncio.Task] = set()


async def _deliver(recipient_id: str, actor_id: Optional[str], payload: NotificationPayload | dict[str, Any]) -> None:
	try:
		await notification_service.get_service().notify(recipient_id, actor_id, payload)
	except Exception:
		obs_metrics.inc_notification_failure()
		logger.warning("notification dispatch failed", extra={"recipient": recipient_id}, exc_info=True)


def dispatch(recipient_id: str, actor_id: Optional[str], payload: NotificationPayload | dict[str, Any]) -> asyncio.Task:
	task = asyncio.create_task(_deliver(recipient_id, actor_id, payload), name="notification-dispatch")
	_pending.add(task)
	task.add_done_callback(_pending.discard)
	return task


def pending() -> int:
	return len(_pending)


async def drain() -> None:
	"""Wait for every dispatched notification to settle."""
	while _pending:
		await asyncio.gather(*list(_pending), return_exceptions=True)
