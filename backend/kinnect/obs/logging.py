"""Structured JSON logging.

HTTP requests and Socket.IO events bind a small context (request id, route,
user, socket sid) that every log line emitted while handling them carries.
Extra fields are redacted when they may hold user content such as message
bodies or request notes.
"""

from __future__ import annotations

import json
import logging
import random
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from kinnect.settings import settings

_LOGGER_NAME = "kinnect"
_CONTEXT_FIELDS = ("request_id", "route", "user_id", "client_ip", "sid", "namespace")
_CONTEXT: ContextVar[Mapping[str, str]] = ContextVar("kinnect_log_context", default={})

_REDACT = ("token", "secret", "authorization", "password", "content", "message", "preview", "note")
# Identifiers that happen to contain a redacted word.
_ALLOW = frozenset({"message_id", "message_ids", "request_id"})
_MAX_STRING = 256
_MAX_ITEMS = 10

_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


def bind_context(**fields: Optional[str]) -> Token:
	"""Layer fields over the current context. Pass the token to `reset_context`."""
	merged = dict(_CONTEXT.get())
	for key, value in fields.items():
		if key not in _CONTEXT_FIELDS:
			raise ValueError(f"unknown log context field: {key}")
		if value is not None:
			merged[key] = str(value)
	return _CONTEXT.set(merged)


def reset_context(token: Token) -> None:
	_CONTEXT.reset(token)


def current_context() -> Dict[str, str]:
	return dict(_CONTEXT.get())


def current_request_id() -> Optional[str]:
	return _CONTEXT.get().get("request_id")


def _clip(value: Any) -> Any:
	if isinstance(value, str):
		return value if len(value) <= _MAX_STRING else value[:_MAX_STRING] + "…"
	if isinstance(value, Mapping):
		clipped = {str(k): redact(str(k), v) for k, v in list(value.items())[:_MAX_ITEMS]}
		if len(value) > _MAX_ITEMS:
			clipped["…"] = f"+{len(value) - _MAX_ITEMS} keys"
		return clipped
	if isinstance(value, (list, tuple, set, frozenset)):
		items = [_clip(item) for item in list(value)[:_MAX_ITEMS]]
		if len(value) > _MAX_ITEMS:
			items.append("…")
		return items
	return value


def redact(key: str, value: Any) -> Any:
	lowered = key.lower()
	if lowered not in _ALLOW and any(word in lowered for word in _REDACT):
		return "[redacted]"
	return _clip(value)


class JSONLogFormatter(logging.Formatter):
	def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (match logging api)
		payload: Dict[str, Any] = {
			"ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
			"level": record.levelname.lower(),
			"msg": record.getMessage(),
			"logger": record.name,
			"service": settings.service_name,
			"env": settings.environment,
		}
		if settings.git_commit:
			payload["commit"] = settings.git_commit
		payload.update(_CONTEXT.get())
		if record.exc_info:
			payload["exc_info"] = self.formatException(record.exc_info)
		for key, value in record.__dict__.items():
			if key in _RECORD_ATTRS or key in payload:
				continue
			payload[key] = redact(key, value)
		return json.dumps(payload, separators=(",", ":"), default=str)


class InfoSamplingFilter(logging.Filter):
	"""Sample info-level records; warnings and errors always pass."""

	def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
		if record.levelno != logging.INFO:
			return True
		rate = max(0.0, min(1.0, settings.obs_log_sampling_rate_info))
		return rate >= 1.0 or random.random() < rate


def configure_logging() -> logging.Logger:
	root = logging.getLogger()
	root.handlers.clear()
	handler = logging.StreamHandler()
	handler.setFormatter(JSONLogFormatter())
	handler.addFilter(InfoSamplingFilter())
	root.addHandler(handler)
	root.setLevel(settings.obs_log_level)
	return logging.getLogger(_LOGGER_NAME)


def get_logger(name: Optional[str] = None) -> logging.Logger:
	if not name:
		return logging.getLogger(_LOGGER_NAME)
	if name == _LOGGER_NAME or name.startswith(f"{_LOGGER_NAME}."):
		return logging.getLogger(name)
	return logging.getLogger(f"{_LOGGER_NAME}.{name}")
