import pytest

from kinnect.domain.connections import service
from kinnect.domain.errors import AlreadyConnectedError, RateLimitExceeded
from kinnect.domain.notifications import dispatcher


def _as(user_id: str) -> dict:
    return {"X-User-Id": user_id}


async def _register(api_client, *user_ids):
    for user_id in user_ids:
        response = await api_client.get("/connections/stats", headers=_as(user_id))
        assert response.status_code == 200


@pytest.mark.asyncio
async def test_requires_authentication(api_client):
    response = await api_client.get("/connections/stats")
    assert response.status_code == 401
    assert response.json()["detail"] == "invalid_token"


@pytest.mark.asyncio
async def test_request_accept_remove_flow(api_client):
    await _register(api_client, "alice", "bob")

    sent = await api_client.post(
        "/connections/requests",
        json={"receiver_id": "bob", "message": "Hello Bob"},
        headers=_as("alice"),
    )
    assert sent.status_code == 201
    request_id = sent.json()["id"]

    incoming = await api_client.get("/connections/requests/incoming", headers=_as("bob"))
    assert [item["id"] for item in incoming.json()["items"]] == [request_id]
    status = await api_client.get("/connections/status/bob", headers=_as("alice"))
    assert status.json()["status"] == "pending_sent"

    accepted = await api_client.post(f"/connections/requests/{request_id}/accept", headers=_as("bob"))
    assert accepted.status_code == 200
    body = accepted.json()
    assert body["request"]["status"] == "accepted"
    connection_id = body["connection"]["id"]

    degree = await api_client.get("/connections/degree/alice", headers=_as("bob"))
    assert degree.json() == {"user_id": "alice", "degree": 1}
    listed = await api_client.get("/connections", headers=_as("alice"))
    assert listed.json()["total"] == 1

    removed = await api_client.delete(f"/connections/{connection_id}", headers=_as("alice"))
    assert removed.status_code == 200
    assert removed.json()["active"] is False

    again = await api_client.delete(f"/connections/{connection_id}", headers=_as("alice"))
    assert again.status_code == 409
    assert again.json()["detail"] == "connection_inactive"

    degree = await api_client.get("/connections/degree/alice", headers=_as("bob"))
    assert degree.json()["degree"] == 3


@pytest.mark.asyncio
async def test_request_errors_map_to_status_codes(api_client):
    await _register(api_client, "alice", "bob")

    to_self = await api_client.post("/connections/requests", json={"receiver_id": "alice"}, headers=_as("alice"))
    assert to_self.status_code == 409
    assert to_self.json()["detail"] == "self_reference"

    missing = await api_client.post("/connections/requests", json={"receiver_id": "nobody"}, headers=_as("alice"))
    assert missing.status_code == 404

    too_long = await api_client.post(
        "/connections/requests",
        json={"receiver_id": "bob", "message": "x" * 301},
        headers=_as("alice"),
    )
    assert too_long.status_code == 400
    assert too_long.json()["detail"] == "message_too_long"

    first = await api_client.post("/connections/requests", json={"receiver_id": "bob"}, headers=_as("alice"))
    reverse = await api_client.post("/connections/requests", json={"receiver_id": "alice"}, headers=_as("bob"))
    assert first.status_code == 201
    assert reverse.status_code == 409
    assert reverse.json()["detail"] == "duplicate_request"

    wrong_actor = await api_client.post(f"/connections/requests/{first.json()['id']}/accept", headers=_as("alice"))
    assert wrong_actor.status_code == 403

    unknown = await api_client.post("/connections/requests/nope/accept", headers=_as("bob"))
    assert unknown.status_code == 404


@pytest.mark.asyncio
async def test_already_connected_is_conflict(monkeypatch, api_client):
    async def fake_send(sender_id, receiver_id, message=None):
        raise AlreadyConnectedError()

    monkeypatch.setattr(service, "send_request", fake_send)

    response = await api_client.post("/connections/requests", json={"receiver_id": "bob"}, headers=_as("alice"))
    assert response.status_code == 409
    assert response.json()["detail"] == "already_connected"


@pytest.mark.asyncio
async def test_rate_limited_is_429(monkeypatch, api_client):
    async def fake_send(sender_id, receiver_id, message=None):
        raise RateLimitExceeded("per_minute")

    monkeypatch.setattr(service, "send_request", fake_send)

    response = await api_client.post("/connections/requests", json={"receiver_id": "bob"}, headers=_as("alice"))
    assert response.status_code == 429
    assert response.json()["detail"] == "per_minute"
    assert "request_id" in response.json()


@pytest.mark.asyncio
async def test_ignore_and_withdraw(api_client):
    await _register(api_client, "alice", "bob", "carol")
    first = (await api_client.post("/connections/requests", json={"receiver_id": "bob"}, headers=_as("alice"))).json()
    second = (await api_client.post("/connections/requests", json={"receiver_id": "carol"}, headers=_as("alice"))).json()

    ignored = await api_client.post(f"/connections/requests/{first['id']}/ignore", headers=_as("bob"))
    withdrawn = await api_client.post(f"/connections/requests/{second['id']}/withdraw", headers=_as("alice"))

    assert ignored.json()["status"] == "ignored"
    assert withdrawn.json()["status"] == "withdrawn"
    outgoing = await api_client.get("/connections/requests/outgoing", headers=_as("alice"))
    assert outgoing.json()["items"] == []
    assert outgoing.json()["total"] == 0


@pytest.mark.asyncio
async def test_mutual_suggestions_and_stats(api_client):
    await _register(api_client, "alice", "bob", "carol")
    for sender, receiver in (("alice", "bob"), ("carol", "bob")):
        created = await api_client.post("/connections/requests", json={"receiver_id": receiver}, headers=_as(sender))
        await api_client.post(f"/connections/requests/{created.json()['id']}/accept", headers=_as(receiver))

    mutual = await api_client.get("/connections/mutual/carol", headers=_as("alice"))
    assert mutual.json() == {"user_id": "carol", "total": 1, "items": ["bob"]}

    suggestions = await api_client.get("/connections/suggestions", params={"limit": 5}, headers=_as("alice"))
    items = suggestions.json()["items"]
    assert items[0]["user_id"] == "carol"
    assert items[0]["source"] == "second_degree"

    stats = await api_client.get("/connections/stats", headers=_as("bob"))
    assert stats.json()["total_connections"] == 2

    bobs = await api_client.get("/connections/users/bob", headers=_as("alice"))
    assert {item["user_id"] for item in bobs.json()["items"]} == {"alice", "carol"}


@pytest.mark.asyncio
async def test_connection_pages_follow_cursor(api_client):
    await _register(api_client, "hub", "p1", "p2", "p3")
    for peer in ("p1", "p2", "p3"):
        created = await api_client.post("/connections/requests", json={"receiver_id": peer}, headers=_as("hub"))
        await api_client.post(f"/connections/requests/{created.json()['id']}/accept", headers=_as(peer))

    first = (await api_client.get("/connections", params={"limit": 2}, headers=_as("hub"))).json()
    assert len(first["items"]) == 2 and first["next"]
    second = (await api_client.get("/connections", params={"limit": 2, "cursor": first["next"]}, headers=_as("hub"))).json()
    assert len(second["items"]) == 1 and second["next"] is None
    seen = {item["user_id"] for item in first["items"] + second["items"]}
    assert seen == {"p1", "p2", "p3"}

    bad = await api_client.get("/connections", params={"cursor": "%%%"}, headers=_as("hub"))
    assert bad.status_code == 400


@pytest.mark.asyncio
async def test_request_notifies_receiver(api_client):
    await _register(api_client, "alice", "bob")
    await api_client.post("/connections/requests", json={"receiver_id": "bob"}, headers=_as("alice"))
    await dispatcher.drain()

    inbox = await api_client.get("/notifications", headers=_as("bob"))
    body = inbox.json()
    assert body["unread"] == 1
    assert body["items"][0]["payload"]["kind"] == "connection_request"
    assert body["items"][0]["actor_id"] == "alice"
