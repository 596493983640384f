import asyncio
import json
import uuid

import pytest
from starlette.websockets import WebSocketDisconnect

from studyroom.core.database import SessionLocal
from studyroom.crud import participant_crud

API = "/api/v1"


def _create_room(client, user):
    r = client.post(f"{API}/rooms", json={"title": "Algebra", "subject": "Math"}, headers=user.headers)
    return r.json()["id"]


def test_rejects_invalid_token(client):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect(f"{API}/ws?token=nope") as ws:
            ws.receive_text()
    assert exc.value.code == 4001


def test_subscribe_receives_change_hints(client, make_user):
    alice, bob = make_user(), make_user()
    room_id = _create_room(client, alice)

    with client.websocket_connect(f"{API}/ws?token={alice.token}") as ws:
        ws.send_text(json.dumps({"action": "subscribe", "room_id": room_id}))
        assert ws.receive_json() == {"event": "subscribed", "room_id": room_id}

        client.post(f"{API}/rooms/{room_id}/join", headers=bob.headers)
        message = ws.receive_json()
        assert message == {
            "event": "participant_changed",
            "room_id": room_id,
            "payload": {"user_id": str(bob.id)},
        }

        client.post(f"{API}/rooms/{room_id}/sprint", json={"duration_minutes": 25}, headers=alice.headers)
        assert ws.receive_json()["event"] == "session_changed"

        ws.send_text(json.dumps({"action": "unsubscribe", "room_id": room_id}))
        assert ws.receive_json() == {"event": "unsubscribed", "room_id": room_id}


def test_bad_requests_get_error_messages(client, make_user):
    alice = make_user()
    with client.websocket_connect(f"{API}/ws?token={alice.token}") as ws:
        ws.send_text("not json")
        assert ws.receive_json()["code"] == "INVALID_JSON"

        ws.send_text(json.dumps({"action": "subscribe", "room_id": "room-1"}))
        assert ws.receive_json()["code"] == "INVALID_ROOM_ID"

        ws.send_text(json.dumps({"action": "subscribe", "room_id": str(uuid.uuid4())}))
        assert ws.receive_json() == {"event": "error", "code": "NOT_FOUND", "message": "Room not found."}

        ws.send_text(json.dumps({"action": "dance", "room_id": str(uuid.uuid4())}))
        assert ws.receive_json()["code"] == "UNKNOWN_ACTION"


def test_join_over_socket_ties_presence_to_connection(client, make_user):
    alice, bob = make_user(), make_user()
    room_id = _create_room(client, alice)

    with client.websocket_connect(f"{API}/ws?token={bob.token}") as ws:
        ws.send_text(json.dumps({"action": "join", "room_id": room_id}))
        assert ws.receive_json() == {"event": "subscribed", "room_id": room_id}
        r = client.get(f"{API}/rooms/{room_id}/participants", headers=alice.headers)
        assert str(bob.id) in [p["user_id"] for p in r.json()["items"]]

    db = SessionLocal()
    try:
        present = [p.user_id for p in participant_crud.list_active(db, room_id=uuid.UUID(room_id))]
    finally:
        db.close()
    assert present == [alice.id]


def test_join_closed_room_over_socket(client, make_user):
    alice, bob = make_user(), make_user()
    room_id = _create_room(client, alice)
    client.post(f"{API}/rooms/{room_id}/deactivate", headers=alice.headers)

    with client.websocket_connect(f"{API}/ws?token={bob.token}") as ws:
        ws.send_text(json.dumps({"action": "join", "room_id": room_id}))
        message = ws.receive_json()
        assert message["event"] == "error"
        assert message["code"] == "ROOM_CLOSED"


def test_socket_close_stops_sender_before_dropping_presence(client, make_user, monkeypatch):
    from studyroom.router.api.v1 import realtime

    alice, bob = make_user(), make_user()
    room_id = _create_room(client, alice)
    order = []

    async def pump(websocket, queue):
        try:
            await asyncio.Event().wait()
        finally:
            order.append("sender stopped")

    drop = realtime._mark_disconnected

    def mark_disconnected(room_id, user_id):
        order.append("presence dropped")
        drop(room_id, user_id)

    monkeypatch.setattr(realtime, "_pump", pump)
    monkeypatch.setattr(realtime, "_mark_disconnected", mark_disconnected)

    with client.websocket_connect(f"{API}/ws?token={bob.token}") as ws:
        ws.send_text(json.dumps({"action": "join", "room_id": room_id}))
        assert ws.receive_json() == {"event": "subscribed", "room_id": room_id}

    assert order == ["sender stopped", "presence dropped"]
