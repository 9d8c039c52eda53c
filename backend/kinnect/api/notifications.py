"""REST endpoints for the notification inbox."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from kinnect.api.errors import to_http_error
from kinnect.api.pagination import decode_optional, encode_cursor
from kinnect.domain.errors import DomainError
from kinnect.domain.notifications import service
from kinnect.domain.notifications.models import Notification, NotificationPage
from kinnect.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=NotificationPage)
async def list_notifications(
	unread_only: bool = Query(default=False),
	limit: int = Query(default=20, ge=1, le=100),
	cursor: Optional[str] = Query(default=None),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> NotificationPage:
	try:
		before = decode_optional(cursor)
	except DomainError as exc:
		raise to_http_error(exc) from None
	rows = await service.list_for_user(auth_user.id, unread_only=unread_only, limit=limit + 1, before=before)
	page = rows[:limit]
	next_cursor = encode_cursor(page[-1].created_at, page[-1].id) if len(rows) > limit and page else None
	return NotificationPage(items=page, unread=await service.unread_count(auth_user.id), next=next_cursor)


@router.get("/unread-count")
async def unread_count(auth_user: AuthenticatedUser = Depends(get_current_user)) -> dict[str, int]:
	return {"unread": await service.unread_count(auth_user.id)}


@router.post("/read-all")
async def mark_all_read(auth_user: AuthenticatedUser = Depends(get_current_user)) -> dict[str, int]:
	return {"updated": await service.mark_all_read(auth_user.id)}


@router.post("/{notification_id}/read", response_model=Notification)
async def mark_read(
	notification_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> Notification:
	try:
		return await service.mark_read(auth_user.id, notification_id)
	except DomainError as exc:
		raise to_http_error(exc) from None
