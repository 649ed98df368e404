"""
Sharded feed cache.

Owns every key a site's feed uses in the key/value store::

    {prefix}:{site}:xml               assembled artifact
    {prefix}:{site}:meta              GenerationMeta
    {prefix}:{site}:items             scratch buffer of a running rebuild
    {prefix}:{site}:chunk:{i}         shard i (list of feed items)
    {prefix}:{site}:chunk:{i}:meta    ShardMetadata for shard i
    {prefix}:{site}:generation        generation token (no expiry)

Shard writes are full replacements. Any shard write or erase drops the
assembled artifact, since it may contain bytes derived from that shard.
Writes may carry a generation token; a write under a token older than
the stored one is rejected with :class:`StaleWriteError`.
"""

from __future__ import annotations

import json
from typing import Any

from shardfeed.errors import StaleWriteError
from shardfeed.models import CacheStatus, FeedItem, GenerationMeta, ShardMetadata, utc_now
from shardfeed.observability import get_logger
from shardfeed.sharding import validate_shard_index
from shardfeed.storage.base import KeyValueStore

logger = get_logger(__name__)


class ShardCache:
    """Read, write and invalidate shards and per-site metadata."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        shard_count: int = 100,
        ttl_seconds: int = 3600,
        prefix: str = "shopping-feed",
    ):
        if shard_count <= 0:
            raise ValueError(f"shard_count must be positive, got {shard_count}")
        self.store = store
        self.shard_count = shard_count
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def key(self, site_id: int, kind: str) -> str:
        return f"{self.prefix}:{site_id}:{kind}"

    def shard_key(self, site_id: int, index: int) -> str:
        return self.key(site_id, f"chunk:{index}")

    def shard_meta_key(self, site_id: int, index: int) -> str:
        return self.key(site_id, f"chunk:{index}:meta")

    # ------------------------------------------------------------------
    # Generation token
    # ------------------------------------------------------------------

    def get_generation(self, site_id: int) -> int:
        return int(self.store.get(self.key(site_id, "generation")) or 0)

    def bump_generation(self, site_id: int) -> int:
        """Start a new generation; older tokens can no longer write."""
        return self.store.incr(self.key(site_id, "generation"))

    def _check_token(self, site_id: int, token: int | None, target: str) -> None:
        if token is None:
            return
        current = self.get_generation(site_id)
        if token < current:
            logger.warning(
                "stale_write_rejected",
                site_id=site_id,
                target=target,
                token=token,
                current=current,
            )
            raise StaleWriteError(token, current).with_context(site_id=site_id, target=target)

    # ------------------------------------------------------------------
    # Shards
    # ------------------------------------------------------------------

    def get_shard(self, site_id: int, index: int) -> list[FeedItem] | None:
        """Return the shard's items, or ``None`` if absent or expired."""
        validate_shard_index(index, self.shard_count)
        raw = self.store.get(self.shard_key(site_id, index))
        if raw is None:
            return None
        return [FeedItem.model_validate(item) for item in raw]

    def put_shard(
        self,
        site_id: int,
        index: int,
        items: list[FeedItem],
        *,
        token: int | None = None,
    ) -> None:
        """Replace a shard entirely and drop the assembled artifact."""
        validate_shard_index(index, self.shard_count)
        self._check_token(site_id, token, f"chunk:{index}")

        payload = [item.model_dump(mode="json") for item in items]
        meta = ShardMetadata(item_count=len(items), updated_at=utc_now())
        self.store.set(self.shard_key(site_id, index), payload, ttl_seconds=self.ttl_seconds)
        self.store.set(self.shard_meta_key(site_id, index), meta.to_dict(), ttl_seconds=self.ttl_seconds)
        self.store.delete(self.key(site_id, "xml"))

    def get_shard_meta(self, site_id: int, index: int) -> ShardMetadata | None:
        raw = self.store.get(self.shard_meta_key(site_id, index))
        return ShardMetadata.from_dict(raw) if raw else None

    def invalidate_shard(self, site_id: int, index: int) -> None:
        """Erase one shard and its metadata, then the assembled artifact."""
        validate_shard_index(index, self.shard_count)
        self.store.delete(self.shard_key(site_id, index))
        self.store.delete(self.shard_meta_key(site_id, index))
        self.store.delete(self.key(site_id, "xml"))
        logger.info("shard_invalidated", site_id=site_id, shard_index=index)

    def invalidate_all(self, site_id: int) -> None:
        """Erase every shard, the assembled artifact, scratch buffer and meta.

        The generation token is kept so that tokens stay monotonic.
        """
        for kind in ("xml", "items", "meta"):
            self.store.delete(self.key(site_id, kind))
        self.store.delete(self.pending_key(site_id, self.get_generation(site_id)))
        for index in range(self.shard_count):
            self.store.delete(self.shard_key(site_id, index))
            self.store.delete(self.shard_meta_key(site_id, index))
        logger.info("cache_invalidated", site_id=site_id, shard_count=self.shard_count)

    def present_shards(self, site_id: int) -> list[int]:
        return [i for i in range(self.shard_count) if self.store.exists(self.shard_key(site_id, i))]

    # ------------------------------------------------------------------
    # Assembled artifact
    # ------------------------------------------------------------------

    def get_assembled(self, site_id: int) -> bytes | None:
        raw = self.store.get(self.key(site_id, "xml"))
        return raw.encode("utf-8") if raw is not None else None

    def put_assembled(self, site_id: int, body: bytes, *, token: int | None = None) -> None:
        self._check_token(site_id, token, "xml")
        self.store.set(self.key(site_id, "xml"), body.decode("utf-8"), ttl_seconds=self.ttl_seconds)

    # ------------------------------------------------------------------
    # Generation metadata
    # ------------------------------------------------------------------

    def get_meta(self, site_id: int) -> GenerationMeta:
        """Return the site's generation record; absence reads as ``none``."""
        return GenerationMeta.from_dict(self.store.get(self.key(site_id, "meta")))

    def put_meta(self, site_id: int, meta: GenerationMeta, *, token: int | None = None) -> None:
        self._check_token(site_id, token, "meta")
        self.store.set(self.key(site_id, "meta"), meta.to_dict(), ttl_seconds=self.ttl_seconds)

    # ------------------------------------------------------------------
    # Scratch buffer for full rebuilds
    # ------------------------------------------------------------------

    def pending_key(self, site_id: int, token: int | None = None) -> str:
        return self.key(site_id, "items" if token is None else f"items:{token}")

    def append_pending(
        self,
        site_id: int,
        pairs: list[tuple[int, FeedItem]],
        *,
        token: int | None = None,
    ) -> int:
        """Append ``(owner_id, item)`` pairs to the buffer of ``token``; returns its length.

        Each rebuild has its own buffer, so a superseded batch can never
        leak items into a newer rebuild.
        """
        self._check_token(site_id, token, "items")
        key = self.pending_key(site_id, token)
        buffer: list[Any] = self.store.get(key) or []
        buffer.extend([owner_id, item.model_dump(mode="json")] for owner_id, item in pairs)
        # Kept without expiry; a rebuild can outlive the cache TTL.
        self.store.set(key, buffer, ttl_seconds=0)
        return len(buffer)

    def get_pending(self, site_id: int, *, token: int | None = None) -> list[tuple[int, FeedItem]]:
        raw = self.store.get(self.pending_key(site_id, token)) or []
        return [(int(owner_id), FeedItem.model_validate(item)) for owner_id, item in raw]

    def clear_pending(self, site_id: int, *, token: int | None = None) -> None:
        self.store.delete(self.pending_key(site_id, token))

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def get_status_summary(self, site_id: int) -> CacheStatus:
        """Aggregate read over all shards. No side effects."""
        meta = self.get_meta(site_id)
        summary = CacheStatus(
            site_id=site_id,
            shard_count=self.shard_count,
            status=meta.status,
            completed_at=meta.completed_at,
        )

        for index in range(self.shard_count):
            raw = self.store.get(self.shard_key(site_id, index))
            if raw is None:
                continue
            summary.present_shards += 1
            summary.present_indices.append(index)
            summary.total_items += len(raw)
            summary.total_size += len(json.dumps(raw))

            shard_meta = self.get_shard_meta(site_id, index)
            if shard_meta is None:
                continue
            updated = shard_meta.updated_at
            if summary.oldest_shard_updated_at is None or updated < summary.oldest_shard_updated_at:
                summary.oldest_shard_updated_at = updated
            if summary.newest_shard_updated_at is None or updated > summary.newest_shard_updated_at:
                summary.newest_shard_updated_at = updated

        assembled = self.get_assembled(site_id)
        if assembled is not None:
            summary.assembled_present = True
            summary.assembled_size = len(assembled)
        return summary
