import pytest

from kinnect.domain.errors import InvalidStateError
from kinnect.domain.presence.registry import PresenceRegistry, SessionState


def _activate(registry: PresenceRegistry, sid: str, user_id: str) -> bool:
    registry.open(sid)
    registry.authenticate(sid, user_id)
    return registry.activate(sid)


def test_session_walks_the_state_machine():
    registry = PresenceRegistry()
    session = registry.open("s1")
    assert session.state is SessionState.CONNECTING
    assert registry.user_of("s1") is None

    registry.authenticate("s1", "u1")
    assert session.state is SessionState.AUTHENTICATED
    assert not registry.is_online("u1")

    assert registry.activate("s1") is True
    assert registry.user_of("s1") == "u1"
    assert registry.is_online("u1")


def test_invalid_transitions_are_rejected():
    registry = PresenceRegistry()
    registry.open("s1")
    with pytest.raises(InvalidStateError):
        registry.activate("s1")
    with pytest.raises(InvalidStateError):
        registry.open("s1")
    with pytest.raises(InvalidStateError):
        registry.authenticate("missing", "u1")
    with pytest.raises(InvalidStateError):
        registry.join("s1", "conversation:c1")


def test_user_goes_offline_only_with_last_session():
    registry = PresenceRegistry()
    assert _activate(registry, "s1", "u1") is True
    assert _activate(registry, "s2", "u1") is False
    assert _activate(registry, "s3", "u1") is False
    assert registry.sessions_for("u1") == frozenset({"s1", "s2", "s3"})

    departures = [registry.close(sid) for sid in ("s2", "s1", "s3")]

    assert [d.went_offline for d in departures] == [False, False, True]
    assert not registry.is_online("u1")
    assert registry.last_seen("u1") == departures[-1].last_seen
    assert registry.close("s3") is None


def test_close_before_activation_does_not_touch_presence():
    registry = PresenceRegistry()
    registry.open("s1")
    registry.authenticate("s1", "u1")

    departure = registry.close("s1")

    assert departure.user_id == "u1"
    assert departure.went_offline is False
    assert registry.last_seen("u1") is None


def test_room_membership_and_departure_rooms():
    registry = PresenceRegistry()
    _activate(registry, "s1", "u1")

    assert registry.join("s1", "conversation:c1") is True
    assert registry.join("s1", "conversation:c1") is False
    assert registry.join("s1", "conversation:c2") is True
    assert registry.in_room("u1", "conversation:c1")
    assert registry.leave("s1", "conversation:c2") is True
    assert registry.leave("s1", "conversation:c2") is False

    departure = registry.close("s1")
    assert departure.rooms == ("conversation:c1",)
    assert not registry.in_room("u1", "conversation:c1")


def test_typing_reports_changes_only():
    registry = PresenceRegistry()
    assert registry.set_typing("u1", "c1", True) is True
    assert registry.set_typing("u1", "c1", True) is False
    assert registry.set_typing("u2", "c1", True) is True
    assert registry.typing_users("c1") == frozenset({"u1", "u2"})
    assert registry.set_typing("u1", "c1", False) is True
    assert registry.set_typing("u1", "c1", False) is False
    assert registry.typing_users("c1") == frozenset({"u2"})


def test_disconnect_clears_typing_everywhere():
    registry = PresenceRegistry()
    _activate(registry, "s1", "u1")
    registry.set_typing("u1", "c2", True)
    registry.set_typing("u1", "c1", True)
    registry.set_typing("u2", "c1", True)

    departure = registry.close("s1")

    assert departure.typing_cleared == ("c1", "c2")
    assert registry.typing_users("c1") == frozenset({"u2"})
    assert registry.typing_users("c2") == frozenset()


def test_online_users_snapshot_is_sorted():
    registry = PresenceRegistry()
    _activate(registry, "s1", "zed")
    _activate(registry, "s2", "amy")
    assert registry.online_users() == ["amy", "zed"]
