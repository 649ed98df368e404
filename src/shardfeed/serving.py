"""
Read path and mutation path of the feed cache.

``serve`` decides, per request, between the cached artifact, a best-effort
assembly from whatever shards exist, and a "try later" response that may
schedule a rebuild. ``on_catalog_change`` is the targeted write path: it
invalidates the owner's shard and queues its regeneration, never a full
rebuild.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from shardfeed.assembler import FeedAssembler
from shardfeed.cache import ShardCache
from shardfeed.errors import SiteNotFoundError
from shardfeed.jobs import TaskKind
from shardfeed.models import GenerationStatus, Site
from shardfeed.observability import get_logger
from shardfeed.protocols import CatalogSource, TaskScheduler
from shardfeed.render import ERROR_ENVELOPE, generating_envelope
from shardfeed.sharding import shard_index

logger = get_logger(__name__)

XML_MEDIA_TYPE = "application/xml; charset=utf-8"


@dataclass
class FeedResponse:
    """Transport-neutral response for a feed read."""

    status_code: int
    body: bytes
    headers: dict[str, str] = field(default_factory=dict)
    media_type: str = XML_MEDIA_TYPE
    source: str = "cache"


class ServingPolicy:
    """Request-time decisions over the shard cache."""

    def __init__(
        self,
        cache: ShardCache,
        catalog: CatalogSource,
        assembler: FeedAssembler,
        scheduler: TaskScheduler,
        *,
        retry_after_seconds: int = 60,
    ):
        self.cache = cache
        self.catalog = catalog
        self.assembler = assembler
        self.scheduler = scheduler
        self.retry_after_seconds = retry_after_seconds

    def resolve_site(self, site_id: int) -> Site:
        site = self.catalog.get_site(site_id)
        if site is None:
            raise SiteNotFoundError(site_id)
        return site

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    def serve(self, site_id: int) -> FeedResponse:
        """Answer a feed read for ``site_id``.

        Raises:
            SiteNotFoundError: Unknown site (the HTTP layer maps it to 404).

        Any other failure yields a 500 with the static error envelope.
        """
        site = self.resolve_site(site_id)
        try:
            return self._serve(site)
        except Exception as exc:
            logger.exception("feed_serve_failed", site_id=site_id, error=str(exc))
            return FeedResponse(status_code=500, body=ERROR_ENVELOPE, source="error")

    def _serve(self, site: Site) -> FeedResponse:
        cached = self.cache.get_assembled(site.id)
        if cached is not None:
            return self._ok(cached, source="cache")

        if self.cache.get_meta(site.id).status is GenerationStatus.GENERATING:
            return self._generating(site)

        body = self.assembler.assemble_available(site)
        if body is not None:
            return self._ok(body, source="shards")

        self.request_rebuild(site.id)
        return self._generating(site)

    def _ok(self, body: bytes, *, source: str) -> FeedResponse:
        return FeedResponse(
            status_code=200,
            body=body,
            headers={"Cache-Control": f"public, max-age={self.cache.ttl_seconds}"},
            source=source,
        )

    def _generating(self, site: Site) -> FeedResponse:
        return FeedResponse(
            status_code=503,
            body=generating_envelope(site),
            headers={"Retry-After": str(self.retry_after_seconds)},
            source="generating",
        )

    # ------------------------------------------------------------------
    # Rebuild requests
    # ------------------------------------------------------------------

    def request_rebuild(self, site_id: int, *, force: bool = False) -> bool:
        """Queue a full rebuild unless one is presumed in flight.

        Returns:
            Whether a task was queued.
        """
        if not force and self.cache.get_meta(site_id).status is GenerationStatus.GENERATING:
            logger.info("generation_already_in_progress", site_id=site_id)
            return False

        task_id = self.scheduler.enqueue(TaskKind.GENERATE_FEED.value, {"site_id": site_id})
        logger.info("generation_queued", site_id=site_id, task_id=task_id, force=force)
        return True

    def force_regenerate(self, site_id: int) -> bool:
        """Drop everything cached for the site and queue a forced rebuild."""
        self.resolve_site(site_id)
        self.cache.invalidate_all(site_id)
        return self.request_rebuild(site_id, force=True)

    # ------------------------------------------------------------------
    # Mutation path
    # ------------------------------------------------------------------

    def on_catalog_change(self, site_id: int, owner_id: int) -> int:
        """Invalidate the owner's shard and queue its regeneration.

        ``owner_id`` is the product id; callers resolve variants to their
        product first. Returns the affected shard index.
        """
        self.resolve_site(site_id)
        index = shard_index(owner_id, self.cache.shard_count)
        self.cache.invalidate_shard(site_id, index)
        task_id = self.scheduler.enqueue(
            TaskKind.REGENERATE_SHARD.value,
            {"site_id": site_id, "shard_index": index},
        )
        logger.info(
            "shard_regeneration_queued",
            site_id=site_id,
            owner_id=owner_id,
            shard_index=index,
            task_id=task_id,
        )
        return index
