from datetime import datetime, timezone

import pytest

from kinnect.domain.errors import NotFoundError
from kinnect.domain.notifications import dispatcher
from kinnect.domain.notifications import service as notification_service
from kinnect.domain.notifications.models import (
    ConnectionRequestPayload,
    MessagePayload,
    Notification,
    OtherPayload,
    SkillEndorsementPayload,
    parse_payload,
    render,
)
from kinnect.domain.notifications.repo import MemoryNotificationStore
from kinnect.domain.notifications.service import NotificationService


def test_known_kinds_parse_to_their_variant():
    payload = parse_payload({"kind": "message", "conversation_id": "c1", "message_id": "m1", "preview": "hey"})
    assert isinstance(payload, MessagePayload)
    assert payload.conversation_id == "c1"

    endorsement = parse_payload({"kind": "skill_endorsement", "skill": "python"})
    assert isinstance(endorsement, SkillEndorsementPayload)


def test_unknown_kinds_fall_back_to_other():
    payload = parse_payload({"kind": "group_invite", "group_id": "g1", "data": {"role": "member"}})
    assert isinstance(payload, OtherPayload)
    assert payload.kind == "group_invite"
    assert payload.data == {"role": "member", "group_id": "g1"}

    untagged = parse_payload({"foo": "bar"})
    assert isinstance(untagged, OtherPayload) and untagged.kind == "other"


def test_stored_rows_round_trip_through_the_union():
    notification = Notification(
        id="n1",
        recipient_id="u1",
        payload={"kind": "legacy_badge", "badge": "early"},
        title="t",
        body="b",
        created_at=datetime.now(timezone.utc),
    )
    assert notification.kind == "legacy_badge"
    restored = Notification.model_validate(notification.model_dump(mode="json"))
    assert isinstance(restored.payload, OtherPayload)
    assert restored.payload.data == {"badge": "early"}


def test_render_uses_actor_name_and_generic_fallback():
    title, body, link = render(ConnectionRequestPayload(request_id="r1"), "Ada")
    assert title == "New connection request"
    assert body == "Ada wants to connect with you"
    assert link == "/network/requests"

    _, generic, no_link = render(OtherPayload(kind="group_invite"))
    assert generic == "You have a new group invite notification"
    assert no_link is None


@pytest.mark.asyncio
async def test_notify_skips_self_and_tracks_read_state():
    service = NotificationService(MemoryNotificationStore())

    assert await service.notify("u1", "u1", {"kind": "profile_view"}) is None
    first = await service.notify("u1", "u2", {"kind": "profile_view"})
    await service.notify("u1", None, {"kind": "post_share", "post_id": "p1"})

    assert await service.unread_count("u1") == 2
    read = await service.mark_read("u1", first.id)
    assert read.read is True
    assert await service.unread_count("u1") == 1
    with pytest.raises(NotFoundError):
        await service.mark_read("u2", first.id)

    assert await service.mark_all_read("u1") == 1
    assert await service.list_for_user("u1", unread_only=True) == []


@pytest.mark.asyncio
async def test_dispatch_failures_do_not_propagate(monkeypatch):
    class Exploding(NotificationService):
        async def notify(self, *args, **kwargs):
            raise RuntimeError("store down")

    monkeypatch.setattr(notification_service, "_SERVICE", Exploding(MemoryNotificationStore()))

    task = dispatcher.dispatch("u1", "u2", {"kind": "profile_view"})
    await dispatcher.drain()

    assert task.done() and task.exception() is None
    assert dispatcher.pending() == 0
