import asyncio

import pytest

from kinnect.domain.connections.models import Degree, RequestStatus
from kinnect.domain.connections.service import ConnectionService
from kinnect.domain.connections.store import MemoryConnectionStore
from kinnect.domain.errors import (
    AlreadyConnectedError,
    AuthorizationError,
    DuplicateRequestError,
    InvalidStateError,
    NotFoundError,
    RateLimitExceeded,
    SelfReferenceError,
    ValidationError,
)
from kinnect.domain.notifications import dispatcher
from kinnect.domain.notifications import service as notification_service
from kinnect.settings import settings


async def _service(*users: str) -> tuple[ConnectionService, MemoryConnectionStore]:
    store = MemoryConnectionStore()
    for user_id in users:
        await store.add_user(user_id)
    return ConnectionService(store), store


async def _connect(service: ConnectionService, user_one: str, user_two: str):
    request = await service.send_request(user_one, user_two)
    _, connection = await service.accept_request(request.id, user_two)
    return connection


@pytest.mark.asyncio
async def test_request_accept_remove_round_trip():
    service, store = await _service("u1", "u2")

    request = await service.send_request("u1", "u2", "  Hi, we met at the meetup  ")
    assert request.status is RequestStatus.PENDING
    assert request.message == "Hi, we met at the meetup"
    assert await service.get_degree("u1", "u2") == Degree.THIRD

    _, connection = await service.accept_request(request.id, "u2")
    assert connection.active
    assert await service.get_degree("u1", "u2") == Degree.FIRST
    assert await service.get_degree("u2", "u1") == Degree.FIRST
    page = await service.list_connections("u1")
    assert [entry.user_id for entry in page.items] == ["u2"]

    removed = await service.remove_connection(connection.id, "u1")
    assert not removed.active
    assert await service.get_degree("u1", "u2") == Degree.THIRD
    assert (await service.list_connections("u1")).items == []

    again = await service.send_request("u1", "u2")
    _, reactivated = await service.accept_request(again.id, "u2")
    assert reactivated.id == connection.id
    assert reactivated.active
    assert await store.count_connections("u1") == 1
    assert (await service.get_connection_status("u1", "u2")).connection_id == connection.id


@pytest.mark.asyncio
async def test_degree_classification():
    service, _ = await _service("a", "b", "c", "d")
    await _connect(service, "a", "b")
    await _connect(service, "b", "c")

    assert await service.get_degree("a", "a") == Degree.SELF
    assert await service.get_degree("a", "b") == Degree.FIRST
    assert await service.get_degree("a", "c") == Degree.SECOND
    assert await service.get_degree("c", "a") == Degree.SECOND
    assert await service.get_degree("a", "d") == Degree.THIRD


@pytest.mark.asyncio
async def test_send_request_rejections():
    service, _ = await _service("a", "b", "c")

    with pytest.raises(SelfReferenceError):
        await service.send_request("a", "a")
    with pytest.raises(NotFoundError) as missing:
        await service.send_request("a", "ghost")
    assert missing.value.reason == "user_missing"
    with pytest.raises(ValidationError) as too_long:
        await service.send_request("a", "b", "x" * 301)
    assert too_long.value.reason == "message_too_long"

    await service.send_request("a", "b")
    with pytest.raises(DuplicateRequestError):
        await service.send_request("a", "b")
    with pytest.raises(DuplicateRequestError):
        await service.send_request("b", "a")

    await _connect(service, "a", "c")
    with pytest.raises(AlreadyConnectedError):
        await service.send_request("c", "a")


@pytest.mark.asyncio
async def test_request_transitions_enforce_roles_and_state():
    service, _ = await _service("a", "b")
    request = await service.send_request("a", "b")

    with pytest.raises(NotFoundError):
        await service.accept_request("missing", "b")
    with pytest.raises(AuthorizationError):
        await service.accept_request(request.id, "a")
    with pytest.raises(AuthorizationError):
        await service.withdraw_request(request.id, "b")

    ignored = await service.ignore_request(request.id, "b")
    assert ignored.status is RequestStatus.IGNORED
    with pytest.raises(InvalidStateError) as exc:
        await service.accept_request(request.id, "b")
    assert exc.value.reason == "request_ignored"

    retry = await service.send_request("a", "b")
    withdrawn = await service.withdraw_request(retry.id, "a")
    assert withdrawn.status is RequestStatus.WITHDRAWN


@pytest.mark.asyncio
async def test_remove_connection_requires_party_and_active():
    service, _ = await _service("a", "b", "c")
    connection = await _connect(service, "a", "b")

    with pytest.raises(AuthorizationError):
        await service.remove_connection(connection.id, "c")
    await service.remove_connection(connection.id, "b")
    with pytest.raises(InvalidStateError):
        await service.remove_connection(connection.id, "a")


@pytest.mark.asyncio
async def test_concurrent_accepts_create_single_connection():
    service, store = await _service("a", "b")
    request = await service.send_request("a", "b")

    results = await asyncio.gather(
        service.accept_request(request.id, "b"),
        service.accept_request(request.id, "b"),
        return_exceptions=True,
    )

    successes = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(successes) == 1
    assert len(failures) == 1 and isinstance(failures[0], InvalidStateError)
    assert await store.count_connections("a") == 1
    assert await store.count_connections("b") == 1


@pytest.mark.asyncio
async def test_mutual_connections_are_stable_and_counted():
    service, _ = await _service("a", "b", "c1", "c2", "c3")
    for peer in ("c1", "c2", "c3"):
        await _connect(service, "a", peer)
    await _connect(service, "b", "c1")
    await _connect(service, "b", "c3")

    total, first = await service.get_mutual_connections("a", "b", limit=10)
    _, second = await service.get_mutual_connections("a", "b", limit=10)
    assert total == 2
    assert first == second
    assert set(first) == {"c1", "c3"}

    total, sliced = await service.get_mutual_connections("a", "b", limit=1)
    assert total == 2 and sliced == first[:1]


@pytest.mark.asyncio
async def test_suggestions_prefer_second_degree_then_pad():
    service, _ = await _service("a", "b", "c", "d", "pending", "stranger")
    await _connect(service, "a", "b")
    await _connect(service, "b", "c")
    await _connect(service, "b", "d")
    await service.send_request("a", "pending")

    suggestions = await service.get_suggestions("a", limit=5)

    second = [s for s in suggestions if s.source == "second_degree"]
    padded = [s for s in suggestions if s.source == "discover"]
    assert {s.user_id for s in second} == {"c", "d"}
    assert all(s.degree == 2 and s.mutual_count == 1 and s.mutual_preview == ["b"] for s in second)
    assert suggestions[: len(second)] == second
    assert [s.user_id for s in padded] == ["stranger"]
    assert padded[0].degree == 3


@pytest.mark.asyncio
async def test_connection_status_and_stats():
    service, _ = await _service("a", "b", "c", "d")
    request = await service.send_request("a", "b")
    await service.send_request("c", "a")

    assert (await service.get_connection_status("a", "a")).status == "own_profile"
    sent = await service.get_connection_status("a", "b")
    assert sent.status == "pending_sent" and sent.request_id == request.id
    assert (await service.get_connection_status("a", "c")).status == "pending_received"
    assert (await service.get_connection_status("a", "d")).status == "not_connected"

    await service.accept_request(request.id, "b")
    connected = await service.get_connection_status("b", "a")
    assert connected.status == "connected" and connected.degree == 1

    stats = await service.get_stats("a")
    assert stats.total_connections == 1
    assert stats.pending_received == 1
    assert stats.pending_sent == 0
    assert stats.recent_connections == 1
    assert stats.growth_percentage == 100.0


@pytest.mark.asyncio
async def test_request_rate_limit(monkeypatch):
    monkeypatch.setattr(settings, "connection_requests_per_minute", 1)
    service, _ = await _service("a", "b", "c")

    await service.send_request("a", "b")
    with pytest.raises(RateLimitExceeded) as exc:
        await service.send_request("a", "c")
    assert exc.value.reason == "per_minute"


@pytest.mark.asyncio
async def test_request_and_accept_notify_counterpart():
    service, _ = await _service("a", "b")
    request = await service.send_request("a", "b")
    await service.accept_request(request.id, "b")
    await dispatcher.drain()

    notifications = notification_service.get_service()
    inbox_b = await notifications.list_for_user("b")
    inbox_a = await notifications.list_for_user("a")
    assert [n.kind for n in inbox_b] == ["connection_request"]
    assert [n.kind for n in inbox_a] == ["connection_accepted"]
