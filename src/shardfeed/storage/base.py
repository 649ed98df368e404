"""
Key/value store contract used by the shard cache.

Architecture:
    ::

        KeyValueStore (Protocol)
        ├── InMemoryStore: single process, bounded LRU with TTL
        └── RedisStore: shared between API and workers

        API: get(key) → value | None
             set(key, value, ttl_seconds=None)
             delete(key)
             exists(key) → bool
             incr(key) → int
             clear()

Values are JSON-serializable. Stores offer atomic per-key operations only;
there are no cross-key transactions. Backends raise
:class:`~shardfeed.errors.StoreUnavailableError` when the backing service
cannot be reached.
"""

from __future__ import annotations

from typing import Any, Protocol


class KeyValueStore(Protocol):
    """Protocol for key/value store implementations."""

    def get(self, key: str) -> Any | None:
        """Retrieve a value by key.

        Returns:
            Stored value, or ``None`` if not found or expired.
        """
        ...

    def set(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> None:
        """Store a value.

        Args:
            key: Store key.
            value: JSON-serializable value.
            ttl_seconds: Time-to-live in seconds. ``None`` → backend default,
                ``0`` → no expiry.
        """
        ...

    def delete(self, key: str) -> None:
        """Remove a key. No-op if the key does not exist."""
        ...

    def exists(self, key: str) -> bool:
        """Check if a key exists and has not expired."""
        ...

    def incr(self, key: str) -> int:
        """Atomically increment an integer counter (no expiry) and return it."""
        ...

    def clear(self) -> None:
        """Remove all keys. Use for testing only."""
        ...
