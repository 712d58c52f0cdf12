import pytest
from pydantic import ValidationError

from askbase.models.chat import ConversationTurn
from askbase.services.database import ConnectionInfo
from askbase.services.session_store import InMemorySessionStore, RedisSessionStore


def _turn(i):
    return ConversationTurn(question=f"q{i}", sql=f"SELECT {i};", result_count=i)


def test_ensure_session_is_idempotent(store):
    first = store.ensure_session("s1")
    store.append_turn("s1", _turn(1))
    second = store.ensure_session("s1")
    assert second["created_at"] == first["created_at"]
    assert second["message_count"] == 1


def test_recent_turns_are_bounded_and_ordered(store):
    store.ensure_session("s1")
    for i in range(5):
        store.append_turn("s1", _turn(i))
    assert [t.question for t in store.recent_turns("s1", 3)] == ["q2", "q3", "q4"]
    assert store.recent_turns("s1", 0) == []
    assert store.recent_turns("missing", 3) == []


def test_reset_keeps_session_but_drops_turns(store):
    store.ensure_session("s1")
    store.append_turn("s1", _turn(1))
    assert store.reset_history("s1") is True
    assert store.recent_turns("s1", 5) == []
    assert store.find_session("s1")["message_count"] == 0
    assert store.reset_history("unknown") is False


def test_delete_session(store):
    store.ensure_session("s1")
    assert store.delete_session("s1") is True
    assert store.find_session("s1") is None
    assert store.delete_session("s1") is False


def test_saved_connections_round_trip(store):
    info = ConnectionInfo(host="db.internal", database="shop", username="reader", password="pw")
    connection_id = store.save_connection(info)
    assert store.get_connection(connection_id) == info
    assert store.get_connection("nope") is None


def test_expired_sessions_are_cleaned_up(monkeypatch):
    store = InMemorySessionStore(ttl_minutes=1)
    clock = {"now": 1_000.0}
    monkeypatch.setattr("askbase.services.session_store.time.time", lambda: clock["now"])
    store.ensure_session("old")
    clock["now"] += 120
    store.ensure_session("new")
    assert store.find_session("old") is None
    assert store.find_session("new") is not None


def test_turns_are_immutable():
    turn = _turn(1)
    with pytest.raises(ValidationError):
        turn.answer = "changed"


class RecordingRedis:
    """Dict-backed client covering the commands the Redis store issues."""

    def __init__(self):
        self.values = {}
        self.lists = {}
        self.ttls = {}

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self.values:
            return None
        self.values[key] = value
        if ex:
            self.ttls[key] = ex
        return True

    def get(self, key):
        return self.values.get(key)

    def rpush(self, key, value):
        self.lists.setdefault(key, []).append(value)
        return len(self.lists[key])

    def llen(self, key):
        return len(self.lists.get(key, []))

    def lrange(self, key, start, end):
        items = self.lists.get(key, [])
        return items[start:] if end == -1 else items[start : end + 1]

    def expire(self, key, seconds):
        if key in self.values or key in self.lists:
            self.ttls[key] = seconds
            return True
        return False

    def exists(self, key):
        return int(key in self.values or key in self.lists)

    def delete(self, *keys):
        removed = 0
        for key in keys:
            found = key in self.values or key in self.lists
            self.values.pop(key, None)
            self.lists.pop(key, None)
            removed += int(found)
            self.ttls.pop(key, None)
        return removed

    def pipeline(self):
        return self

    def execute(self):
        return []


def test_redis_session_keys_expire_with_session_ttl():
    client = RecordingRedis()
    store = RedisSessionStore(client, prefix="test:", ttl_seconds=600)
    store.ensure_session("s1")
    store.append_turn("s1", _turn(1))

    assert client.ttls == {"test:session:s1": 600, "test:session:s1:turns": 600}
    assert [t.question for t in store.recent_turns("s1", 5)] == ["q1"]
    assert store.find_session("s1")["message_count"] == 1


def test_redis_without_ttl_sets_no_expiry():
    client = RecordingRedis()
    store = RedisSessionStore(client, prefix="test:", ttl_seconds=0)
    store.ensure_session("s1")
    store.append_turn("s1", _turn(1))
    assert client.ttls == {}
