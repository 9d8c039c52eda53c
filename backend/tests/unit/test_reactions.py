import asyncio

import pytest

from kinnect.domain.errors import ValidationError
from kinnect.domain.notifications import dispatcher
from kinnect.domain.notifications import service as notification_service
from kinnect.domain.reactions.repo import MemoryReactionStore
from kinnect.domain.reactions.service import ReactionService


@pytest.mark.asyncio
async def test_toggle_adds_replaces_and_removes():
    service = ReactionService(MemoryReactionStore())

    added = await service.toggle_reaction("u1", "post", "p1", "like")
    assert (added.action, added.reacted, added.reaction_type, added.total) == ("added", True, "like", 1)

    replaced = await service.toggle_reaction("u1", "post", "p1", "celebrate")
    assert replaced.action == "replaced"
    assert replaced.total == 1
    assert replaced.counts["like"] == 0 and replaced.counts["celebrate"] == 1

    removed = await service.toggle_reaction("u1", "post", "p1", "celebrate")
    assert (removed.action, removed.reacted, removed.reaction_type, removed.total) == ("removed", False, None, 0)


@pytest.mark.asyncio
async def test_counts_cover_every_type_and_viewer_reaction():
    service = ReactionService(MemoryReactionStore())
    await service.toggle_reaction("u1", "post_comment", "c1", "insightful")
    await service.toggle_reaction("u2", "post_comment", "c1", "insightful")
    await service.toggle_reaction("u3", "post_comment", "c1", "funny")

    summary = await service.get_reactions("post_comment", "c1", viewer_id="u3")

    assert summary.total == 3
    assert set(summary.counts) == {"like", "celebrate", "support", "funny", "love", "insightful", "curious"}
    assert summary.counts["insightful"] == 2
    assert summary.user_reaction == "funny"
    assert await service.get_user_reaction("u9", "post_comment", "c1") is None
    assert (await service.get_reactions("post", "c1")).total == 0


@pytest.mark.asyncio
async def test_replace_never_exposes_zero_total():
    service = ReactionService(MemoryReactionStore())
    await service.toggle_reaction("u1", "post", "p1", "like")
    kinds = ["celebrate", "support", "love", "curious", "like"] * 4

    async def flip():
        for kind in kinds:
            await service.toggle_reaction("u1", "post", "p1", kind)

    async def observe():
        seen = []
        for _ in range(len(kinds)):
            seen.append((await service.get_reactions("post", "p1")).total)
            await asyncio.sleep(0)
        return seen

    _, totals = await asyncio.gather(flip(), observe())
    assert all(total == 1 for total in totals)


@pytest.mark.asyncio
async def test_invalid_inputs_are_rejected():
    service = ReactionService(MemoryReactionStore())
    with pytest.raises(ValidationError) as bad_kind:
        await service.toggle_reaction("u1", "post", "p1", "angry")
    assert bad_kind.value.reason == "invalid_reaction_type"
    with pytest.raises(ValidationError) as bad_target:
        await service.toggle_reaction("u1", "story", "p1", "like")
    assert bad_target.value.reason == "invalid_target_type"
    with pytest.raises(ValidationError) as blank:
        await service.get_reactions("post", "  ")
    assert blank.value.reason == "invalid_target_id"


@pytest.mark.asyncio
async def test_owner_notified_only_for_new_reactions_by_others():
    service = ReactionService(MemoryReactionStore())
    await service.toggle_reaction("u1", "post", "p1", "like", owner_id="owner")
    await service.toggle_reaction("u1", "post", "p1", "love", owner_id="owner")
    await service.toggle_reaction("owner", "post", "p1", "like", owner_id="owner")
    await dispatcher.drain()

    inbox = await notification_service.get_service().list_for_user("owner")
    assert [n.kind for n in inbox] == ["post_reaction"]
    assert inbox[0].payload.reaction == "like"
    assert inbox[0].actor_id == "u1"
