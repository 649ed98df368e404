"""
Tests for shardfeed.storage.

Covers:
- InMemoryStore: get/set/delete/exists/clear, LRU eviction, TTL expiry, counters
- RedisStore: JSON encoding, TTL handling and error wrapping against a mocked client
- create_store backend selection
"""

import json
from unittest.mock import MagicMock

import pytest
import redis

from shardfeed.config import Settings
from shardfeed.errors import StoreUnavailableError
from shardfeed.storage import InMemoryStore, RedisStore, create_store


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestInMemoryStore:
    """Test InMemoryStore backend."""

    def test_basic_get_set(self):
        store = InMemoryStore(default_ttl_seconds=None)
        store.set("key1", {"data": [1, 2, 3]})
        assert store.get("key1") == {"data": [1, 2, 3]}

    def test_get_missing_key(self):
        assert InMemoryStore().get("missing") is None

    def test_delete(self):
        store = InMemoryStore()
        store.set("key1", "value1")
        assert store.exists("key1")
        store.delete("key1")
        assert not store.exists("key1")
        store.delete("key1")  # no-op

    def test_clear(self):
        store = InMemoryStore()
        store.set("k1", 1)
        store.set("k2", 2)
        store.clear()
        assert store.size() == 0

    def test_ttl_expiry(self):
        clock = FakeClock()
        store = InMemoryStore(default_ttl_seconds=60, clock=clock)
        store.set("k", "v")
        clock.now += 59
        assert store.get("k") == "v"
        clock.now += 2
        assert store.get("k") is None
        assert not store.exists("k")

    def test_zero_ttl_never_expires(self):
        clock = FakeClock()
        store = InMemoryStore(default_ttl_seconds=60, clock=clock)
        store.set("k", "v", ttl_seconds=0)
        clock.now += 10**6
        assert store.get("k") == "v"

    def test_lru_eviction(self):
        store = InMemoryStore(max_size=2)
        store.set("a", 1)
        store.set("b", 2)
        store.get("a")  # a becomes most recently used
        store.set("c", 3)
        assert store.get("a") == 1
        assert store.get("b") is None
        assert store.get("c") == 3

    def test_incr(self):
        clock = FakeClock()
        store = InMemoryStore(default_ttl_seconds=60, clock=clock)
        assert store.incr("counter") == 1
        assert store.incr("counter") == 2
        clock.now += 3600
        assert store.get("counter") == 2


class TestRedisStore:
    """Test RedisStore against a mocked client."""

    @pytest.fixture
    def store_and_client(self, monkeypatch):
        client = MagicMock()
        from_url = MagicMock(return_value=client)
        monkeypatch.setattr(redis, "from_url", from_url)
        store = RedisStore("redis://cache:6379/2", default_ttl_seconds=3600)
        from_url.assert_called_once_with("redis://cache:6379/2", decode_responses=False)
        return store, client

    def test_get_decodes_json(self, store_and_client):
        store, client = store_and_client
        client.get.return_value = json.dumps([{"id": "SKU-1"}]).encode()
        assert store.get("shopping-feed:1:chunk:3") == [{"id": "SKU-1"}]
        client.get.assert_called_once_with("shopping-feed:1:chunk:3")

    def test_get_missing(self, store_and_client):
        store, client = store_and_client
        client.get.return_value = None
        assert store.get("missing") is None

    def test_set_uses_default_ttl(self, store_and_client):
        store, client = store_and_client
        store.set("k", {"v": 1})
        client.setex.assert_called_once_with("k", 3600, json.dumps({"v": 1}))

    def test_set_explicit_ttl(self, store_and_client):
        store, client = store_and_client
        store.set("k", "v", ttl_seconds=60)
        client.setex.assert_called_once_with("k", 60, json.dumps("v"))

    def test_set_zero_ttl_has_no_expiry(self, store_and_client):
        store, client = store_and_client
        store.set("k", "v", ttl_seconds=0)
        client.set.assert_called_once_with("k", json.dumps("v"))
        client.setex.assert_not_called()

    def test_incr(self, store_and_client):
        store, client = store_and_client
        client.incr.return_value = 4
        assert store.incr("shopping-feed:1:generation") == 4

    def test_exists_and_delete(self, store_and_client):
        store, client = store_and_client
        client.exists.return_value = 1
        assert store.exists("k") is True
        store.delete("k")
        client.delete.assert_called_once_with("k")

    def test_connection_error_is_wrapped(self, store_and_client):
        store, client = store_and_client
        client.get.side_effect = redis.ConnectionError("connection refused")
        with pytest.raises(StoreUnavailableError) as exc_info:
            store.get("k")
        assert exc_info.value.retryable
        assert isinstance(exc_info.value.__cause__, redis.ConnectionError)


class TestCreateStore:
    """Test backend selection from settings."""

    def test_memory_by_default(self):
        assert isinstance(create_store(Settings(_env_file=None)), InMemoryStore)

    def test_redis(self, monkeypatch):
        monkeypatch.setattr(redis, "from_url", MagicMock(return_value=MagicMock()))
        store = create_store(Settings(_env_file=None, store_backend="redis"))
        assert isinstance(store, RedisStore)
