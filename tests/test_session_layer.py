import uuid

import redis

from studyroom.session import session_layer
from studyroom.session import create_session, extract_token, get_session, remove_session, resolve_user_id


def test_session_round_trip(fake_redis):
    user_id = uuid.uuid4()
    create_session("abc", {"user_id": str(user_id)})

    assert "session:abc" in fake_redis.store
    assert get_session("abc") == {"user_id": str(user_id)}
    assert resolve_user_id("abc") == user_id

    assert remove_session("abc")
    assert get_session("abc") is None
    assert not remove_session("abc")


def test_resolve_user_id_rejects_bad_tokens(fake_redis):
    fake_redis.store["session:garbled"] = "{not json"
    fake_redis.store["session:no-user"] = '{"user_id": "not-a-uuid"}'

    assert resolve_user_id(None) is None
    assert resolve_user_id("unknown") is None
    assert resolve_user_id("garbled") is None
    assert resolve_user_id("no-user") is None


def test_get_session_survives_redis_errors(monkeypatch):
    class Down:
        def get(self, key):
            raise redis.ConnectionError("connection refused")

    monkeypatch.setattr(session_layer, "_redis_client", Down())
    assert get_session("abc") is None


def test_extract_token():
    assert extract_token("Bearer abc") == "abc"
    assert extract_token("bearer abc") == "abc"
    assert extract_token("Basic abc") is None
    assert extract_token("Bearer") is None
    assert extract_token(None) is None
