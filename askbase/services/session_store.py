from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock, RLock
from typing import Any, Dict, List, Optional

import orjson
import redis

from askbase.config import Settings, settings
from askbase.models.chat import ConversationTurn
from askbase.services.database import ConnectionInfo
from askbase.utils.logger import logger


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SessionStore:
    """Document-store operations the question pipeline depends on.

    Each write touches a single session document. Concurrent appends to the
    same session are last-write-wins; display order may differ from causal
    order under true concurrency.
    """

    def ensure_session(self, session_id: str) -> Dict[str, Any]:
        raise NotImplementedError

    def find_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def recent_turns(self, session_id: str, n: int) -> List[ConversationTurn]:
        raise NotImplementedError

    def append_turn(self, session_id: str, turn: ConversationTurn) -> None:
        raise NotImplementedError

    def reset_history(self, session_id: str) -> bool:
        raise NotImplementedError

    def delete_session(self, session_id: str) -> bool:
        raise NotImplementedError

    def save_connection(self, info: ConnectionInfo) -> str:
        raise NotImplementedError

    def get_connection(self, connection_id: str) -> Optional[ConnectionInfo]:
        raise NotImplementedError

    def close(self) -> None:
        pass


@dataclass
class SessionRecord:
    session_id: str
    turns: List[ConversationTurn] = field(default_factory=list)
    created_at: str = field(default_factory=_now_iso)
    last_activity: str = field(default_factory=_now_iso)
    last_used_at: float = field(default_factory=lambda: time.time())

    def touch(self) -> None:
        self.last_activity = _now_iso()
        self.last_used_at = time.time()

    def summary(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "created_at": self.created_at,
            "last_activity": self.last_activity,
            "message_count": len(self.turns),
        }


class InMemorySessionStore(SessionStore):
    """Process-local store used when no Redis URL is configured."""

    def __init__(self, ttl_minutes: int = settings.session_ttl_minutes) -> None:
        self._sessions: Dict[str, SessionRecord] = {}
        self._connections: Dict[str, ConnectionInfo] = {}
        self._ttl_seconds = ttl_minutes * 60
        self._lock = RLock()

    def ensure_session(self, session_id: str) -> Dict[str, Any]:
        self.maybe_cleanup()
        with self._lock:
            record = self._sessions.get(session_id)
            if record is None:
                record = SessionRecord(session_id=session_id)
                self._sessions[session_id] = record
                logger.info("Created new session %s", session_id)
            record.touch()
            return record.summary()

    def find_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._sessions.get(session_id)
            return record.summary() if record else None

    def recent_turns(self, session_id: str, n: int) -> List[ConversationTurn]:
        if n <= 0:
            return []
        with self._lock:
            record = self._sessions.get(session_id)
            return list(record.turns[-n:]) if record else []

    def append_turn(self, session_id: str, turn: ConversationTurn) -> None:
        with self._lock:
            record = self._sessions.setdefault(session_id, SessionRecord(session_id=session_id))
            record.turns.append(turn)
            record.touch()

    def reset_history(self, session_id: str) -> bool:
        with self._lock:
            record = self._sessions.get(session_id)
            if record is None:
                return False
            record.turns = []
            record.touch()
            return True

    def delete_session(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def save_connection(self, info: ConnectionInfo) -> str:
        connection_id = uuid.uuid4().hex
        with self._lock:
            self._connections[connection_id] = info
        return connection_id

    def get_connection(self, connection_id: str) -> Optional[ConnectionInfo]:
        with self._lock:
            return self._connections.get(connection_id)

    def maybe_cleanup(self) -> None:
        if self._ttl_seconds <= 0:
            return
        now = time.time()
        with self._lock:
            expired = [
                sid for sid, rec in self._sessions.items() if now - rec.last_used_at > self._ttl_seconds
            ]
            for sid in expired:
                del self._sessions[sid]
        if expired:
            logger.info("Cleaned up %d expired sessions", len(expired))


class RedisSessionStore(SessionStore):
    """Sessions as a JSON document plus an append-only Redis list of turns.

    Both keys expire after ``ttl_seconds`` of inactivity; every write refreshes
    the expiry. Saved connections are kept until deleted.
    """

    def __init__(
        self,
        client: "redis.Redis",
        prefix: str = settings.redis_prefix,
        ttl_seconds: int = settings.session_ttl_minutes * 60,
    ) -> None:
        self._redis = client
        self._prefix = prefix
        self._ttl = ttl_seconds if ttl_seconds > 0 else None

    @classmethod
    def from_url(cls, url: str, cfg: Settings = settings) -> "RedisSessionStore":
        client = redis.Redis.from_url(
            url,
            socket_connect_timeout=cfg.db_connect_timeout_seconds,
            socket_timeout=cfg.db_connect_timeout_seconds,
            health_check_interval=30,
            decode_responses=True,
        )
        return cls(client, prefix=cfg.redis_prefix, ttl_seconds=cfg.session_ttl_minutes * 60)

    def _key(self, *parts: str) -> str:
        return self._prefix + ":".join(parts)

    def _refresh(self, client: Any, session_id: str) -> None:
        if self._ttl:
            client.expire(self._key("session", session_id), self._ttl)
            client.expire(self._key("session", session_id, "turns"), self._ttl)

    def ensure_session(self, session_id: str) -> Dict[str, Any]:
        key = self._key("session", session_id)
        now = _now_iso()
        doc = {"session_id": session_id, "created_at": now, "last_activity": now}
        # SET NX keeps creation idempotent when two requests race
        if self._redis.set(key, orjson.dumps(doc).decode(), nx=True, ex=self._ttl):
            logger.info("Created new session %s", session_id)
        else:
            self._refresh(self._redis, session_id)
        return self.find_session(session_id) or doc

    def find_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        raw = self._redis.get(self._key("session", session_id))
        if not raw:
            return None
        doc = orjson.loads(raw)
        doc["message_count"] = int(self._redis.llen(self._key("session", session_id, "turns")))
        return doc

    def recent_turns(self, session_id: str, n: int) -> List[ConversationTurn]:
        if n <= 0:
            return []
        raw_turns = self._redis.lrange(self._key("session", session_id, "turns"), -n, -1)
        return [ConversationTurn.model_validate(orjson.loads(raw)) for raw in raw_turns]

    def append_turn(self, session_id: str, turn: ConversationTurn) -> None:
        key = self._key("session", session_id)
        pipe = self._redis.pipeline()
        pipe.rpush(self._key("session", session_id, "turns"), turn.model_dump_json())
        raw = self._redis.get(key)
        doc = orjson.loads(raw) if raw else {"session_id": session_id, "created_at": _now_iso()}
        doc["last_activity"] = _now_iso()
        pipe.set(key, orjson.dumps(doc).decode(), ex=self._ttl)
        self._refresh(pipe, session_id)
        pipe.execute()

    def reset_history(self, session_id: str) -> bool:
        if not self._redis.exists(self._key("session", session_id)):
            return False
        self._redis.delete(self._key("session", session_id, "turns"))
        return True

    def delete_session(self, session_id: str) -> bool:
        removed = self._redis.delete(
            self._key("session", session_id), self._key("session", session_id, "turns")
        )
        return bool(removed)

    def save_connection(self, info: ConnectionInfo) -> str:
        connection_id = uuid.uuid4().hex
        self._redis.set(self._key("connection", connection_id), info.model_dump_json())
        return connection_id

    def get_connection(self, connection_id: str) -> Optional[ConnectionInfo]:
        raw = self._redis.get(self._key("connection", connection_id))
        return ConnectionInfo.model_validate_json(raw) if raw else None

    def close(self) -> None:
        self._redis.close()


_store: Optional[SessionStore] = None
_store_lock = Lock()


def get_session_store(cfg: Settings = settings) -> SessionStore:
    """Shared store, created on first use and reused by every request."""
    global _store
    with _store_lock:
        if _store is None:
            if cfg.redis_url:
                logger.info("Using Redis session store")
                _store = RedisSessionStore.from_url(cfg.redis_url, cfg)
            else:
                logger.info("REDIS_URL not set, sessions are kept in memory")
                _store = InMemorySessionStore(cfg.session_ttl_minutes)
        return _store


def close_session_store() -> None:
    global _store
    with _store_lock:
        if _store is not None:
            _store.close()
            _store = None
