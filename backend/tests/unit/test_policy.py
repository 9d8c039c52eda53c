import pytest

from kinnect.domain.connections import policy
from kinnect.domain.connections.models import canonical_pair
from kinnect.domain.errors import RateLimitExceeded, SelfReferenceError, ValidationError
from kinnect.settings import settings


def test_normalise_message_strips_and_drops_blank():
    assert policy.normalise_message(None) is None
    assert policy.normalise_message("   ") is None
    assert policy.normalise_message("  hello ") == "hello"


def test_normalise_message_enforces_length():
    limit = settings.connection_request_message_max
    assert policy.normalise_message("x" * limit) == "x" * limit
    with pytest.raises(ValidationError):
        policy.normalise_message("x" * (limit + 1))


def test_guard_not_self():
    policy.guard_not_self("a", "b")
    with pytest.raises(SelfReferenceError):
        policy.guard_not_self("a", "a")


def test_canonical_pair_orders_ids():
    assert canonical_pair("b", "a") == ("a", "b")
    assert canonical_pair("a", "b") == ("a", "b")
    with pytest.raises(SelfReferenceError):
        canonical_pair("a", "a")


@pytest.mark.asyncio
async def test_daily_limit_applies_after_minute_limit(monkeypatch):
    monkeypatch.setattr(settings, "connection_requests_per_minute", 10)
    monkeypatch.setattr(settings, "connection_requests_per_day", 2)

    await policy.enforce_request_limits("u1")
    await policy.enforce_request_limits("u1")
    with pytest.raises(RateLimitExceeded) as exc:
        await policy.enforce_request_limits("u1")
    assert exc.value.reason == "per_day"
    await policy.enforce_request_limits("u2")
