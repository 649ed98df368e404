"""In-process key/value store with LRU eviction and lazy TTL expiry."""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import Any


class InMemoryStore:
    """Bounded in-memory store with TTL support.

    Uses LRU eviction when ``max_size`` is reached. Expired keys are
    dropped lazily on access. Suitable for tests and single-process runs
    where the API and the local scheduler share one interpreter.

    Example:
        store = InMemoryStore(max_size=500, default_ttl_seconds=1800)
        store.set("shopping-feed:1:meta", {"status": "none"})
        store.get("shopping-feed:1:meta")
    """

    def __init__(
        self,
        *,
        max_size: int = 100_000,
        default_ttl_seconds: int | None = 3600,
        clock=time.time,
    ):
        self._store: OrderedDict[str, tuple[Any, float | None]] = OrderedDict()
        self._max_size = max_size
        self._default_ttl = default_ttl_seconds
        self._clock = clock
        self._lock = threading.RLock()

    def _expired(self, expires_at: float | None) -> bool:
        return expires_at is not None and self._clock() > expires_at

    def get(self, key: str) -> Any | None:
        """Retrieve a value by key."""
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._expired(expires_at):
                del self._store[key]
                return None
            self._store.move_to_end(key)
            return value

    def set(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> None:
        """Store a value with optional TTL."""
        ttl = ttl_seconds if ttl_seconds is not None else self._default_ttl
        expires_at = (self._clock() + ttl) if ttl else None

        with self._lock:
            # Evict LRU if at capacity
            if key not in self._store and len(self._store) >= self._max_size:
                self._store.popitem(last=False)
            self._store[key] = (value, expires_at)
            self._store.move_to_end(key)

    def delete(self, key: str) -> None:
        """Remove a key from the store."""
        with self._lock:
            self._store.pop(key, None)

    def exists(self, key: str) -> bool:
        """Check if key exists and is not expired."""
        return self.get(key) is not None

    def incr(self, key: str) -> int:
        """Increment an integer counter stored without expiry."""
        with self._lock:
            current = self.get(key) or 0
            value = int(current) + 1
            self.set(key, value, ttl_seconds=0)
            return value

    def clear(self) -> None:
        """Remove all keys."""
        with self._lock:
            self._store.clear()

    def size(self) -> int:
        """Return current number of stored keys."""
        return len(self._store)
