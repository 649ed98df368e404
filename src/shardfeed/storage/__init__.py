"""Key/value storage backends for the shard cache."""

from shardfeed.storage.base import KeyValueStore
from shardfeed.storage.memory import InMemoryStore
from shardfeed.storage.redis_store import RedisStore


def create_store(settings) -> KeyValueStore:
    """Build the store selected by ``settings.store_backend``."""
    if settings.store_backend == "redis":
        return RedisStore(settings.redis_url, default_ttl_seconds=settings.cache_ttl_seconds)
    return InMemoryStore(
        max_size=settings.memory_store_max_size,
        default_ttl_seconds=settings.cache_ttl_seconds,
    )


__all__ = [
    "KeyValueStore",
    "InMemoryStore",
    "RedisStore",
    "create_store",
]
