"""Redis-backed key/value store shared by the API and the workers."""

from __future__ import annotations

import json
from typing import Any

import redis

from shardfeed.errors import StoreUnavailableError
from shardfeed.observability import get_logger

logger = get_logger(__name__)


class RedisStore:
    """Redis-backed distributed store.

    Values are JSON-encoded. Connection and protocol failures surface as
    :class:`StoreUnavailableError` so schedulers can retry the task; the
    store itself never retries.

    Example:
        store = RedisStore("redis://localhost:6379/0", default_ttl_seconds=600)
        store.set("shopping-feed:1:chunk:3", [{"id": "SKU-1"}])
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        *,
        default_ttl_seconds: int | None = 3600,
    ):
        self._client = redis.from_url(url, decode_responses=False)
        self._default_ttl = default_ttl_seconds

    def _unavailable(self, op: str, key: str, exc: Exception) -> StoreUnavailableError:
        logger.error("store_unavailable", op=op, key=key, error=str(exc))
        return StoreUnavailableError(
            f"Redis {op} failed for {key}: {exc}",
            cause=exc,
        ).with_context(key=key, op=op)

    def get(self, key: str) -> Any | None:
        """Retrieve a value by key."""
        try:
            raw = self._client.get(key)
        except redis.RedisError as exc:
            raise self._unavailable("get", key, exc) from exc
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> None:
        """Store a value with optional TTL."""
        ttl = ttl_seconds if ttl_seconds is not None else self._default_ttl
        serialized = json.dumps(value)
        try:
            if ttl:
                self._client.setex(key, ttl, serialized)
            else:
                self._client.set(key, serialized)
        except redis.RedisError as exc:
            raise self._unavailable("set", key, exc) from exc

    def delete(self, key: str) -> None:
        """Remove a key."""
        try:
            self._client.delete(key)
        except redis.RedisError as exc:
            raise self._unavailable("delete", key, exc) from exc

    def exists(self, key: str) -> bool:
        """Check if key exists."""
        try:
            return bool(self._client.exists(key))
        except redis.RedisError as exc:
            raise self._unavailable("exists", key, exc) from exc

    def incr(self, key: str) -> int:
        """Atomically increment a counter via ``INCR``."""
        try:
            return int(self._client.incr(key))
        except redis.RedisError as exc:
            raise self._unavailable("incr", key, exc) from exc

    def clear(self) -> None:
        """Flush the current Redis database."""
        self._client.flushdb()
