import sys
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from kinnect.domain.chat import service as chat_service
from kinnect.domain.chat import sockets as chat_sockets
from kinnect.domain.chat.repo import MemoryChatStore
from kinnect.domain.connections import service as connections_service
from kinnect.domain.connections import sockets as social_sockets
from kinnect.domain.connections.store import MemoryConnectionStore
from kinnect.domain.notifications import dispatcher
from kinnect.domain.notifications import service as notification_service
from kinnect.domain.notifications.repo import MemoryNotificationStore
from kinnect.domain.presence.registry import get_registry
from kinnect.domain.reactions import service as reaction_service
from kinnect.domain.reactions.repo import MemoryReactionStore
from kinnect.infra import postgres
from kinnect.main import app
from kinnect.settings import settings


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from kinnect.infra.redis import redis_client, set_redis_client

	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Ensure a consistent test environment.

	API and socket tests authenticate via X-User-Id / auth.userId, which are only
	accepted in dev mode.
	"""
	original_env = settings.environment
	settings.environment = "dev"
	try:
		yield
	finally:
		settings.environment = original_env


@pytest_asyncio.fixture(autouse=True)
async def fresh_domain_state(monkeypatch):
	"""Give every test its own in-memory stores, presence registry and no socket namespaces."""
	monkeypatch.setattr(connections_service, "_SERVICE", connections_service.ConnectionService(MemoryConnectionStore()))
	monkeypatch.setattr(chat_service, "_SERVICE", chat_service.ChatService(MemoryChatStore()))
	monkeypatch.setattr(
		notification_service,
		"_SERVICE",
		notification_service.NotificationService(MemoryNotificationStore()),
	)
	monkeypatch.setattr(reaction_service, "_SERVICE", reaction_service.ReactionService(MemoryReactionStore()))
	monkeypatch.setattr(chat_sockets, "_namespace", None)
	monkeypatch.setattr(social_sockets, "_namespace", None)
	get_registry().reset()
	try:
		yield
	finally:
		await dispatcher.drain()
		get_registry().reset()


@pytest_asyncio.fixture
async def api_client():
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
