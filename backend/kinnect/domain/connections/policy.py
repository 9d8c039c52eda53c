"""Policy helpers and guard checks for connection requests."""

from __future__ import annotations

from typing import Optional

from kinnect.domain.errors import RateLimitExceeded, SelfReferenceError, ValidationError
from kinnect.infra import rate_limit
from kinnect.settings import settings


async def enforce_request_limits(user_id: str) -> None:
	if not await rate_limit.allow_per_minute("connreq", user_id, settings.connection_requests_per_minute):
		raise RateLimitExceeded("per_minute")
	if not await rate_limit.allow_per_day("connreq", user_id, settings.connection_requests_per_day):
		raise RateLimitExceeded("per_day")


def guard_not_self(user_id: str, target_id: str) -> None:
	if str(user_id) == str(target_id):
		raise SelfReferenceError()


def normalise_message(message: Optional[str]) -> Optional[str]:
	if message is None:
		return None
	text = message.strip()
	if not text:
		return None
	if len(text) > settings.connection_request_message_max:
		raise ValidationError("message_too_long")
	return text
