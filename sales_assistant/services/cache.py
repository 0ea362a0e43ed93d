from __future__ import annotations

import time
from threading import Lock
from typing import Callable, Dict, Generic, Tuple, TypeVar

V = TypeVar("V")


class TTLCache(Generic[V]):
    """Thread-safe key/value cache with per-entry expiry.

    ``clock`` defaults to ``time.time``; tests pass a fake to move time forward.
    """

    def __init__(self, clock: Callable[[], float] | None = None) -> None:
        self._store: Dict[str, Tuple[float, V]] = {}
        self._lock = Lock()
        self._clock = clock or time.time

    def get(self, key: str) -> V | None:
        now = self._clock()
        with self._lock:
            item = self._store.get(key)
            if not item:
                return None
            expires_at, value = item
            if expires_at < now:
                self._store.pop(key, None)
                return None
            return value

    def set(self, key: str, value: V, ttl_seconds: float) -> None:
        expires_at = self._clock() + ttl_seconds
        with self._lock:
            self._store[key] = (expires_at, value)

    def pop(self, key: str) -> V | None:
        now = self._clock()
        with self._lock:
            item = self._store.pop(key, None)
        if not item or item[0] < now:
            return None
        return item[1]

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def cleanup_expired(self) -> int:
        """Remove expired entries and return count of removed items."""
        now = self._clock()
        with self._lock:
            expired_keys = [
                key for key, (expires_at, _) in self._store.items()
                if expires_at < now
            ]
            for key in expired_keys:
                del self._store[key]
        return len(expired_keys)

    def size(self) -> int:
        with self._lock:
            return len(self._store)
