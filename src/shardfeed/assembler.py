"""Shard assembly: all shards → one rendered feed document."""

from __future__ import annotations

from dataclasses import dataclass

from shardfeed.cache import ShardCache
from shardfeed.errors import RenderError, StaleWriteError
from shardfeed.models import FeedItem, GenerationMeta, GenerationStatus, Site, utc_now
from shardfeed.observability import get_logger
from shardfeed.protocols import FeedRenderer

logger = get_logger(__name__)


@dataclass
class ShardSnapshot:
    """Items read from whatever shards were present at read time."""

    items: list[FeedItem]
    present: int


class FeedAssembler:
    """Reads every shard, renders, and records the assembled artifact.

    Absent shards contribute nothing. Items keep their per-shard order;
    there is no ordering across shards.
    """

    def __init__(self, cache: ShardCache, renderer: FeedRenderer):
        self.cache = cache
        self.renderer = renderer

    def collect(self, site_id: int) -> ShardSnapshot:
        items: list[FeedItem] = []
        present = 0
        for index in range(self.cache.shard_count):
            shard = self.cache.get_shard(site_id, index)
            if shard is None:
                continue
            present += 1
            items.extend(shard)
        return ShardSnapshot(items=items, present=present)

    def render(self, site: Site, items: list[FeedItem]) -> bytes:
        try:
            return self.renderer(site, items)
        except Exception as exc:
            raise RenderError(f"Rendering failed: {exc}", cause=exc).with_context(
                site_id=site.id, item_count=len(items)
            ) from exc

    def assemble(self, site: Site, *, token: int | None = None) -> bytes:
        """Render all present shards, store the artifact and mark ``complete``.

        This is the only transition to ``complete``.
        """
        snapshot = self.collect(site.id)
        body = self.render(site, snapshot.items)
        self._persist(site, snapshot, body, token=token)
        return body

    def _persist(self, site: Site, snapshot: ShardSnapshot, body: bytes, *, token: int | None = None) -> None:
        self.cache.put_assembled(site.id, body, token=token)

        previous = self.cache.get_meta(site.id)
        self.cache.put_meta(
            site.id,
            GenerationMeta(
                status=GenerationStatus.COMPLETE,
                started_at=previous.started_at,
                completed_at=utc_now(),
                item_count=len(snapshot.items),
            ),
            token=token,
        )
        logger.info(
            "feed_assembled",
            site_id=site.id,
            item_count=len(snapshot.items),
            present_shards=snapshot.present,
            size=len(body),
        )

    def assemble_available(self, site: Site) -> bytes | None:
        """Best-effort assembly for the read path.

        Returns ``None`` when no shard is present. A full shard set is
        persisted under the generation token read before collecting, so a
        rebuild started meanwhile is never marked ``complete`` by this
        read. A partial set is rendered and returned without being stored
        or changing the generation status.
        """
        token = self.cache.get_generation(site.id)
        snapshot = self.collect(site.id)
        if snapshot.present == 0:
            return None

        body = self.render(site, snapshot.items)
        if snapshot.present == self.cache.shard_count:
            try:
                self._persist(site, snapshot, body, token=token)
            except StaleWriteError:
                logger.info("assembled_feed_discarded", site_id=site.id, token=token)
            return body

        logger.info(
            "partial_feed_served",
            site_id=site.id,
            item_count=len(snapshot.items),
            present_shards=snapshot.present,
            shard_count=self.cache.shard_count,
        )
        return body
