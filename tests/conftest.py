"""
Shared fixtures: in-memory SQLite database, a stand-in Redis client for the
session layer, an isolated broadcaster and a controllable clock.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["EXPIRY_SWEEP_SECONDS"] = "0"
os.environ.setdefault("DEBUG", "false")

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict
import uuid

import pytest
from fastapi.testclient import TestClient

from studyroom.core.database import Base, SessionLocal, engine
from studyroom.realtime.broadcaster import EventBroadcaster
from studyroom.session import session_layer
import studyroom.model  # noqa: F401  (registers tables)


class FakeRedis:
    """The subset of redis.Redis the session layer uses."""

    def __init__(self):
        self.store: Dict[str, str] = {}

    def setex(self, key, ttl, value):
        self.store[key] = value
        return True

    def get(self, key):
        return self.store.get(key)

    def delete(self, *keys):
        return sum(1 for key in keys if self.store.pop(key, None) is not None)

    def exists(self, key):
        return int(key in self.store)


class FakeClock:
    def __init__(self, start: datetime = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@dataclass
class User:
    id: uuid.UUID
    token: str

    @property
    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


@pytest.fixture(autouse=True)
def tables():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db(tables):
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def broadcaster():
    return EventBroadcaster()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def recorded(broadcaster):
    """Collects every event published for rooms registered via ``recorded.watch(room_id)``."""

    class Recorder(list):
        def watch(self, room_id):
            return broadcaster.subscribe(room_id, self.append)

        def kinds(self):
            return [event.kind for event in self]

    return Recorder()


@pytest.fixture
def fake_redis(monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr(session_layer, "_redis_client", fake)
    return fake


@pytest.fixture
def make_user(fake_redis):
    def _make() -> User:
        user_id = uuid.uuid4()
        token = f"token-{user_id.hex}"
        session_layer.create_session(token, {"user_id": str(user_id)})
        return User(id=user_id, token=token)

    return _make


@pytest.fixture
def client(fake_redis):
    from main import app

    return TestClient(app)
