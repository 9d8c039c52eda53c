"""Liveness and readiness probes.

Readiness requires Redis (rate limits, audit streams), Postgres and an applied
schema at least as new as `settings.health_min_migration`. The realtime section
is informational and never fails the probe.
"""

from __future__ import annotations

import asyncio
import logging
from time import perf_counter
from typing import Any, Dict, Optional, Tuple

import asyncpg

from kinnect.domain.notifications import dispatcher
from kinnect.domain.presence.registry import get_registry
from kinnect.infra import postgres
from kinnect.infra.redis import redis_client
from kinnect.obs import metrics
from kinnect.settings import settings

logger = logging.getLogger(__name__)

Check = Dict[str, Any]


def _elapsed_ms(started: float) -> float:
	return round((perf_counter() - started) * 1000, 2)


async def check_redis(timeout: float = 0.2) -> Check:
	started = perf_counter()
	try:
		await asyncio.wait_for(redis_client.ping(), timeout=timeout)
	except Exception as exc:  # pragma: no cover - depends on runtime
		logger.warning("redis readiness check failed", exc_info=True)
		metrics.mark_redis(False)
		return {"ok": False, "error": type(exc).__name__}
	metrics.mark_redis(True)
	return {"ok": True, "latency_ms": _elapsed_ms(started)}


async def check_postgres(timeout: float = 0.3) -> Tuple[Check, Optional[asyncpg.pool.Pool]]:
	pool = await postgres.pool_or_none()
	if pool is None:
		metrics.mark_postgres(False)
		return {"ok": False, "error": "pool_unavailable"}, None
	started = perf_counter()
	try:
		async with pool.acquire() as conn:
			await asyncio.wait_for(conn.execute("SELECT 1"), timeout=timeout)
	except (OSError, asyncio.TimeoutError, asyncpg.PostgresError) as exc:  # pragma: no cover - depends on runtime
		logger.warning("postgres readiness query failed", exc_info=True)
		metrics.mark_postgres(False)
		return {"ok": False, "error": type(exc).__name__}, pool
	metrics.mark_postgres(True)
	return {"ok": True, "latency_ms": _elapsed_ms(started)}, pool


async def check_schema(pool: Optional[asyncpg.pool.Pool]) -> Check:
	required = settings.health_min_migration
	if pool is None:
		return {"ok": False, "error": "pool_unavailable", "required": required}
	try:
		async with pool.acquire() as conn:
			version = await conn.fetchval("SELECT max(version) FROM schema_migrations")
	except asyncpg.UndefinedTableError:
		return {"ok": False, "error": "schema_missing", "required": required}
	if version is None:
		return {"ok": False, "error": "no_migrations", "required": required}
	return {"ok": str(version) >= required, "version": str(version), "required": required}


def realtime_snapshot() -> Check:
	registry = get_registry()
	return {
		"online_users": len(registry.online_users()),
		"pending_notifications": dispatcher.pending(),
	}


async def liveness() -> Dict[str, str]:
	return {"status": "ok"}


async def readiness() -> Tuple[int, Dict[str, Any]]:
	redis_state = await check_redis()
	postgres_state, pool = await check_postgres()
	schema_state = await check_schema(pool)
	ready = all(state["ok"] for state in (redis_state, postgres_state, schema_state))
	body = {
		"status": "ok" if ready else "degraded",
		"checks": {"redis": redis_state, "postgres": postgres_state, "migrations": schema_state},
		"realtime": realtime_snapshot(),
	}
	return (200 if ready else 503), body
