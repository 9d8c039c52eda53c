import pytest

from kinnect.domain.chat import service
from kinnect.domain.connections import service as connections_service
from kinnect.domain.errors import NotConnectedError


def _as(user_id: str) -> dict:
    return {"X-User-Id": user_id}


async def _connect(user_one: str, user_two: str) -> None:
    connections = connections_service.get_service()
    await connections.ensure_user(user_one)
    await connections.ensure_user(user_two)
    request = await connections.send_request(user_one, user_two)
    await connections.accept_request(request.id, user_two)


async def _open(api_client, user_one: str, user_two: str) -> str:
    response = await api_client.post("/messages/conversations", json={"user_id": user_two}, headers=_as(user_one))
    assert response.status_code in (200, 201)
    return response.json()["id"]


@pytest.mark.asyncio
async def test_open_conversation_is_idempotent(api_client):
    await _connect("alice", "bob")

    created = await api_client.post("/messages/conversations", json={"user_id": "bob"}, headers=_as("alice"))
    reopened = await api_client.post("/messages/conversations", json={"user_id": "alice"}, headers=_as("bob"))

    assert created.status_code == 201
    assert reopened.status_code == 200
    assert created.json()["id"] == reopened.json()["id"]
    assert reopened.json()["other_user_id"] == "alice"


@pytest.mark.asyncio
async def test_open_conversation_requires_connection(api_client):
    response = await api_client.post("/messages/conversations", json={"user_id": "bob"}, headers=_as("alice"))
    assert response.status_code == 403
    assert response.json()["detail"] == "not_connected"


@pytest.mark.asyncio
async def test_send_read_and_unread_flow(api_client):
    await _connect("alice", "bob")
    conversation_id = await _open(api_client, "alice", "bob")

    sent = await api_client.post(
        f"/messages/conversations/{conversation_id}/messages",
        json={"content": "Hi Bob", "tempId": "t-1"},
        headers=_as("alice"),
    )
    assert sent.status_code == 201
    assert sent.json()["seq"] == 1

    unread = await api_client.get("/messages/unread", headers=_as("bob"))
    assert unread.json() == {"total_unread": 1, "conversations_with_unread": 1}

    listed = await api_client.get("/messages/conversations", headers=_as("bob"))
    assert listed.json()[0]["last_message_preview"] == "Hi Bob"
    assert listed.json()[0]["unread_count"] == 1

    receipt = await api_client.post(f"/messages/conversations/{conversation_id}/read", headers=_as("bob"))
    assert receipt.json()["message_ids"] == [sent.json()["id"]]

    history = await api_client.get(f"/messages/conversations/{conversation_id}/messages", headers=_as("alice"))
    assert history.json()["items"][0]["read_by"] == ["bob"]
    assert (await api_client.get("/messages/unread", headers=_as("bob"))).json()["total_unread"] == 0


@pytest.mark.asyncio
async def test_send_rejects_empty_and_outsiders(api_client):
    await _connect("alice", "bob")
    conversation_id = await _open(api_client, "alice", "bob")

    empty = await api_client.post(
        f"/messages/conversations/{conversation_id}/messages",
        json={"content": "   "},
        headers=_as("alice"),
    )
    outsider = await api_client.get(f"/messages/conversations/{conversation_id}/messages", headers=_as("mallory"))
    missing = await api_client.get("/messages/conversations/nope/messages", headers=_as("alice"))

    assert empty.status_code == 400 and empty.json()["detail"] == "empty_message"
    assert outsider.status_code == 403
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_send_after_disconnect_is_forbidden(monkeypatch, api_client):
    async def fake_send(*args, **kwargs):
        raise NotConnectedError()

    monkeypatch.setattr(service, "send_message", fake_send)

    response = await api_client.post(
        "/messages/conversations/c1/messages",
        json={"content": "hello"},
        headers=_as("alice"),
    )
    assert response.status_code == 403
    assert response.json()["detail"] == "not_connected"


@pytest.mark.asyncio
async def test_history_is_forbidden_after_disconnect(api_client):
    await _connect("alice", "bob")
    conversation_id = await _open(api_client, "alice", "bob")
    await api_client.post(
        f"/messages/conversations/{conversation_id}/messages",
        json={"content": "hello"},
        headers=_as("alice"),
    )
    status = await connections_service.get_service().get_connection_status("alice", "bob")
    await connections_service.get_service().remove_connection(status.connection_id, "alice")

    response = await api_client.get(f"/messages/conversations/{conversation_id}/messages", headers=_as("bob"))
    assert response.status_code == 403
    assert response.json()["detail"] == "not_connected"


@pytest.mark.asyncio
async def test_attachment_only_message_without_content(api_client):
    await _connect("alice", "bob")
    conversation_id = await _open(api_client, "alice", "bob")

    response = await api_client.post(
        f"/messages/conversations/{conversation_id}/messages",
        json={"attachments": [{"url": "https://files.example/cv.pdf", "name": "cv.pdf"}]},
        headers=_as("alice"),
    )
    assert response.status_code == 201
    body = response.json()
    assert body["content"] == ""
    assert body["attachments"][0]["url"] == "https://files.example/cv.pdf"


@pytest.mark.asyncio
async def test_archive_mute_and_delete(api_client):
    await _connect("alice", "bob")
    conversation_id = await _open(api_client, "alice", "bob")
    sent = await api_client.post(
        f"/messages/conversations/{conversation_id}/messages",
        json={"content": "to be hidden"},
        headers=_as("alice"),
    )

    archived = await api_client.post(f"/messages/conversations/{conversation_id}/archive", headers=_as("bob"))
    assert archived.json()["archived"] is True
    assert (await api_client.get("/messages/conversations", headers=_as("bob"))).json() == []
    shown = await api_client.get("/messages/conversations", params={"include_archived": True}, headers=_as("bob"))
    assert len(shown.json()) == 1
    await api_client.delete(f"/messages/conversations/{conversation_id}/archive", headers=_as("bob"))

    muted = await api_client.post(f"/messages/conversations/{conversation_id}/mute", headers=_as("bob"))
    assert muted.json()["muted"] is True
    unmuted = await api_client.delete(f"/messages/conversations/{conversation_id}/mute", headers=_as("bob"))
    assert unmuted.json()["muted"] is False

    deleted = await api_client.delete(f"/messages/{sent.json()['id']}", headers=_as("bob"))
    assert deleted.status_code == 204
    history = await api_client.get(f"/messages/conversations/{conversation_id}/messages", headers=_as("bob"))
    assert history.json()["items"] == []
    again = await api_client.delete(f"/messages/{sent.json()['id']}", headers=_as("bob"))
    assert again.status_code == 404


@pytest.mark.asyncio
async def test_presence_endpoints(api_client):
    await service.get_service().activate_session("sid-1", "bob")

    online = await api_client.get("/messages/presence", headers=_as("alice"))
    assert online.json() == {"items": ["bob"]}
    bob = await api_client.get("/messages/presence/bob", headers=_as("alice"))
    assert bob.json()["online"] is True

    await service.get_service().close_session("sid-1")
    bob = await api_client.get("/messages/presence/bob", headers=_as("alice"))
    assert bob.json()["online"] is False
    assert bob.json()["last_seen"] is not None
