"""Audit helpers for connection requests and connections."""

from __future__ import annotations

from typing import Dict

from kinnect.infra.redis import redis_client
from kinnect.obs import metrics as obs_metrics

_STREAM_MAXLEN = 10_000


async def log_request_event(event: str, fields: Dict[str, str]) -> None:
	payload = {"event": event, **fields}
	await redis_client.xadd("x:connection_requests.events", payload, maxlen=_STREAM_MAXLEN, approximate=True)


async def log_connection_event(event: str, fields: Dict[str, str]) -> None:
	payload = {"event": event, **fields}
	await redis_client.xadd("x:connections.events", payload, maxlen=_STREAM_MAXLEN, approximate=True)


def inc_request(result: str) -> None:
	obs_metrics.inc_connection_request(result)


def inc_request_reject(reason: str) -> None:
	obs_metrics.inc_connection_request_reject(reason)


def inc_removed() -> None:
	obs_metrics.inc_connection_removed()
