"""Server-Sent Events stream driven through the ASGI app."""
import asyncio
import json

import pytest
from sqlalchemy import event

from studyroom.core.config import settings
from studyroom.core.database import SessionLocal, engine
from studyroom.realtime.broadcaster import event_broadcaster
from studyroom.service.participant_service import ParticipantService
from studyroom.service.room_service import RoomService
from studyroom.service.sprint_service import SprintService


@pytest.fixture
def app(fake_redis, monkeypatch):
    from main import app

    monkeypatch.setattr(settings, "SSE_KEEPALIVE_SECONDS", 0.05)
    return app


@pytest.fixture
def connections():
    """Net number of pooled connections currently checked out."""
    counter = {"out": 0}

    def on_checkout(dbapi_conn, record, proxy):
        counter["out"] += 1

    def on_checkin(dbapi_conn, record):
        counter["out"] -= 1

    event.listen(engine, "checkout", on_checkout)
    event.listen(engine, "checkin", on_checkin)
    yield counter
    event.remove(engine, "checkout", on_checkout)
    event.remove(engine, "checkin", on_checkin)


class StreamClient:
    """Minimal ASGI client that keeps one GET response open."""

    def __init__(self, app, path: str, token: str):
        self.app = app
        self.scope = {
            "type": "http",
            "asgi": {"version": "3.0"},
            "http_version": "1.1",
            "method": "GET",
            "scheme": "http",
            "path": path,
            "raw_path": path.encode(),
            "root_path": "",
            "query_string": b"",
            "headers": [(b"host", b"test"), (b"authorization", f"Bearer {token}".encode())],
            "client": ("127.0.0.1", 50000),
            "server": ("test", 80),
        }
        self.messages: "asyncio.Queue[dict]" = asyncio.Queue()
        self.disconnected = asyncio.Event()
        self.status = None
        self.text = ""
        self._requested = False
        self._task = None

    async def _receive(self):
        if not self._requested:
            self._requested = True
            return {"type": "http.request", "body": b"", "more_body": False}
        await self.disconnected.wait()
        return {"type": "http.disconnect"}

    async def _send(self, message):
        await self.messages.put(message)

    def open(self):
        self._task = asyncio.get_running_loop().create_task(self.app(self.scope, self._receive, self._send))

    async def read_until(self, marker: str, timeout: float = 5.0) -> str:
        while marker not in self.text:
            message = await asyncio.wait_for(self.messages.get(), timeout)
            if message["type"] == "http.response.start":
                self.status = message["status"]
            elif message["type"] == "http.response.body":
                self.text += message.get("body", b"").decode()
                if not message.get("more_body", False):
                    break
        return self.text

    async def close(self, timeout: float = 5.0):
        self.disconnected.set()
        await asyncio.wait_for(self._task, timeout)


def _frames(text):
    return [
        json.loads(line[len("data:"):].strip())
        for line in text.splitlines()
        if line.startswith("data:")
    ]


def test_stream_delivers_hints_and_cleans_up(app, make_user, connections):
    alice, bob = make_user(), make_user()
    db = SessionLocal()
    try:
        room_id = RoomService(db).create_room(alice.id, "Algebra", "Math").id
    finally:
        db.close()
    assert connections["out"] == 0

    async def scenario():
        stream = StreamClient(app, f"/api/v1/rooms/{room_id}/events", alice.token)
        stream.open()
        await stream.read_until('"subscribed"')
        assert stream.status == 200
        assert event_broadcaster.subscriber_count(room_id) == 1
        # an open stream holds no database connection
        assert connections["out"] == 0

        session = SessionLocal()
        try:
            ParticipantService(session).join(room_id, bob.id)
            await stream.read_until('"participant_changed"')
            SprintService(session).start(room_id, alice.id, 25)
            await stream.read_until('"session_changed"')
        finally:
            session.close()
        assert connections["out"] == 0

        await stream.close()
        return stream.text

    text = asyncio.run(scenario())

    frames = _frames(text)
    assert frames[0] == {"event": "subscribed", "room_id": str(room_id)}
    assert {"event": "participant_changed", "room_id": str(room_id), "payload": {"user_id": str(bob.id)}} in frames
    assert "session_changed" in [f["event"] for f in frames]
    assert event_broadcaster.subscriber_count(room_id) == 0
    assert connections["out"] == 0
