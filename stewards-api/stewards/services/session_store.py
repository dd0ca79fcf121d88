"""Per-conversation session storage.

Sessions are flat dicts keyed by the normalized phone number. Writes are
shallow per-field merges; a None value removes the field. Handlers for one
key are serialized through ``lock(key)``; different keys never contend.
"""

import json
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

import redis

from stewards.config import settings
from stewards.logging_config import get_logger

logger = get_logger("session_store")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SessionStore(ABC):
    """Abstract key-value store for conversation sessions."""

    @abstractmethod
    def get(self, key: str) -> Optional[dict]:
        pass

    @abstractmethod
    def merge(self, key: str, updates: dict) -> dict:
        """Apply updates to the session (creating it if absent) and return the merged session."""
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    @abstractmethod
    def has(self, key: str) -> bool:
        pass

    @abstractmethod
    def lock(self, key: str):
        """Context manager holding the per-key handler lock."""
        pass


class _KeyLock:
    def __init__(self):
        self.lock = threading.RLock()
        self.holders = 0


class InMemorySessionStore(SessionStore):
    def __init__(self):
        self._sessions: dict[str, dict] = {}
        self._guard = threading.Lock()
        self._key_locks: dict[str, _KeyLock] = {}

    def get(self, key: str) -> Optional[dict]:
        with self._guard:
            session = self._sessions.get(key)
            return dict(session) if session is not None else None

    def merge(self, key: str, updates: dict) -> dict:
        now = _now_iso()
        with self._guard:
            session = dict(self._sessions.get(key) or {})
            for field, value in updates.items():
                if value is None:
                    session.pop(field, None)
                else:
                    session[field] = value
            session.setdefault("created_at", now)
            session["last_updated_at"] = now
            self._sessions[key] = session
            return dict(session)

    def delete(self, key: str) -> None:
        with self._guard:
            self._sessions.pop(key, None)

    def has(self, key: str) -> bool:
        with self._guard:
            return key in self._sessions

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        """Per-key RLock, dropped from the map once no handler holds or waits on it."""
        with self._guard:
            key_lock = self._key_locks.get(key)
            if key_lock is None:
                key_lock = self._key_locks[key] = _KeyLock()
            key_lock.holders += 1
        try:
            with key_lock.lock:
                yield
        finally:
            with self._guard:
                key_lock.holders -= 1
                if key_lock.holders == 0:
                    self._key_locks.pop(key, None)


class RedisSessionStore(SessionStore):
    """Sessions as Redis hashes with JSON-encoded field values and a sliding TTL."""

    def __init__(
        self,
        client: redis.Redis,
        *,
        ttl_seconds: int = 86400,
        prefix: str = "stewards:session:",
        lock_timeout_seconds: float = 30.0,
    ):
        self.client = client
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix
        self.lock_timeout_seconds = lock_timeout_seconds

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    @staticmethod
    def _decode(raw: dict) -> dict:
        session = {}
        for field, value in raw.items():
            try:
                session[field] = json.loads(value)
            except (TypeError, ValueError):
                session[field] = value
        return session

    def get(self, key: str) -> Optional[dict]:
        raw = self.client.hgetall(self._key(key))
        if not raw:
            return None
        return self._decode(raw)

    def merge(self, key: str, updates: dict) -> dict:
        redis_key = self._key(key)
        now = _now_iso()
        to_set = {field: json.dumps(value) for field, value in updates.items() if value is not None}
        to_set["last_updated_at"] = json.dumps(now)
        to_delete = [field for field, value in updates.items() if value is None]

        pipe = self.client.pipeline(transaction=True)
        pipe.hset(redis_key, mapping=to_set)
        if to_delete:
            pipe.hdel(redis_key, *to_delete)
        pipe.hsetnx(redis_key, "created_at", json.dumps(now))
        pipe.expire(redis_key, self.ttl_seconds)
        pipe.hgetall(redis_key)
        results = pipe.execute()
        return self._decode(results[-1])

    def delete(self, key: str) -> None:
        self.client.delete(self._key(key))

    def has(self, key: str) -> bool:
        return bool(self.client.exists(self._key(key)))

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        with self.client.lock(
            f"{self._key(key)}:lock",
            timeout=self.lock_timeout_seconds,
            blocking_timeout=self.lock_timeout_seconds,
        ):
            yield


_session_store: Optional[SessionStore] = None


def build_session_store(backend: Optional[str] = None) -> SessionStore:
    backend = (backend or settings.session_backend or "memory").strip().lower()
    if backend == "redis":
        client = redis.Redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_timeout=settings.redis_socket_timeout_seconds,
            socket_connect_timeout=settings.redis_socket_timeout_seconds,
        )
        return RedisSessionStore(
            client,
            ttl_seconds=settings.session_ttl_seconds,
            lock_timeout_seconds=settings.session_lock_timeout_seconds,
        )
    if backend != "memory":
        logger.warning(f"Unknown session backend '{backend}', using memory")
    return InMemorySessionStore()


def get_session_store() -> SessionStore:
    """FastAPI dependency returning the process-wide session store."""
    global _session_store
    if _session_store is None:
        _session_store = build_session_store()
        logger.info("Session store initialised", extra={"context": {"backend": type(_session_store).__name__}})
    return _session_store
