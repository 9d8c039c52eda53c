import pytest

from kinnect.domain.notifications import dispatcher
from kinnect.settings import settings


def _as(user_id: str) -> dict:
    return {"X-User-Id": user_id}


@pytest.mark.asyncio
async def test_toggle_cycle_over_http(api_client):
    url = "/reactions/post/p1"

    added = await api_client.post(url, json={"reaction_type": "like"}, headers=_as("alice"))
    replaced = await api_client.post(url, json={"reaction_type": "support"}, headers=_as("alice"))
    summary = await api_client.get(url, headers=_as("alice"))
    removed = await api_client.post(url, json={"reaction_type": "support"}, headers=_as("alice"))

    assert added.json()["action"] == "added"
    assert replaced.json()["action"] == "replaced"
    assert replaced.json()["total"] == 1
    assert summary.json()["user_reaction"] == "support"
    assert summary.json()["counts"]["support"] == 1
    assert removed.json() == {
        "action": "removed",
        "reacted": False,
        "reaction_type": None,
        "total": 0,
        "counts": {"like": 0, "celebrate": 0, "support": 0, "funny": 0, "love": 0, "insightful": 0, "curious": 0},
    }


@pytest.mark.asyncio
async def test_invalid_reaction_inputs(api_client):
    bad_type = await api_client.post("/reactions/post/p1", json={"reaction_type": "angry"}, headers=_as("alice"))
    bad_target = await api_client.get("/reactions/story/p1", headers=_as("alice"))

    assert bad_type.status_code == 400
    assert bad_type.json()["detail"] == "invalid_reaction_type"
    assert bad_target.status_code == 400
    assert bad_target.json()["detail"] == "invalid_target_type"


@pytest.mark.asyncio
async def test_owner_inbox_after_reaction(api_client):
    await api_client.post("/reactions/post/p9", json={"reaction_type": "celebrate", "owner_id": "owner"}, headers=_as("fan"))
    await dispatcher.drain()

    count = await api_client.get("/notifications/unread-count", headers=_as("owner"))
    assert count.json() == {"unread": 1}

    inbox = (await api_client.get("/notifications", headers=_as("owner"))).json()
    notification = inbox["items"][0]
    assert notification["payload"] == {
        "kind": "post_reaction",
        "target_type": "post",
        "target_id": "p9",
        "reaction": "celebrate",
    }
    assert notification["link"] == "/posts/p9"

    read = await api_client.post(f"/notifications/{notification['id']}/read", headers=_as("owner"))
    assert read.json()["read"] is True
    foreign = await api_client.post(f"/notifications/{notification['id']}/read", headers=_as("fan"))
    assert foreign.status_code == 404
    assert (await api_client.post("/notifications/read-all", headers=_as("owner"))).json() == {"updated": 0}


@pytest.mark.asyncio
async def test_health_and_metrics_endpoints(monkeypatch, api_client):
    live = await api_client.get("/health/live")
    assert live.json() == {"status": "ok"}

    ready = await api_client.get("/health/ready")
    assert ready.status_code == 503
    assert ready.json()["checks"]["postgres"]["ok"] is False

    monkeypatch.setattr(settings, "obs_metrics_public", False)
    monkeypatch.setattr(settings, "obs_admin_token", "secret")
    denied = await api_client.get("/metrics")
    assert denied.status_code == 403
    allowed = await api_client.get("/metrics", headers={"X-Admin-Token": "secret"})
    assert allowed.status_code == 200
    assert "kinnect" in allowed.text

    snapshot = await api_client.get("/ops/realtime", headers={"Authorization": "Bearer secret"})
    assert snapshot.json()["online_users"] == 0
