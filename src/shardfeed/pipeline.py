"""
Full-catalog generation pipeline.

A rebuild runs ``start`` once, ``process_batch`` until the scan is
exhausted, then ``finish``. Each step can run in a separate scheduler
invocation; state between steps lives in the cache (generation meta and
the scratch buffer), never in the process.

Status transitions::

    none | complete | error ──start──▶ generating ──finish──▶ complete | error

Every exit path of the scan leaves a terminal status: a failing batch
records ``error`` before propagating, and the watchdog demotes a
``generating`` record older than the configured timeout.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from shardfeed.assembler import FeedAssembler
from shardfeed.cache import ShardCache
from shardfeed.errors import SiteNotFoundError, StaleWriteError
from shardfeed.models import FeedItem, GenerationMeta, GenerationStatus, Site, utc_now
from shardfeed.observability import get_logger
from shardfeed.protocols import CatalogSource, ItemNormalizer
from shardfeed.sharding import shard_index

logger = get_logger(__name__)


@dataclass
class BatchResult:
    """Outcome of one scan batch."""

    offset: int
    next_offset: int | None
    scanned: int = 0
    accumulated: int = 0
    skipped: int = 0


@dataclass
class GenerationResult:
    """Outcome of a finish step (or of a whole synchronous run)."""

    site_id: int
    token: int | None
    status: GenerationStatus
    item_count: int = 0
    skipped: int = 0
    error: str | None = None
    superseded: bool = False


def normalize_entries(normalizer: ItemNormalizer, site: Site, entries) -> tuple[list[tuple[int, FeedItem]], int]:
    """Normalize ``(owner_id, entry)`` pairs, skipping entries that fail.

    Returns the surviving ``(owner_id, item)`` pairs and the skip count.
    Entries the normalizer excludes (``None``) are not counted as skipped.
    """
    pairs: list[tuple[int, FeedItem]] = []
    skipped = 0
    for owner_id, entry in entries:
        try:
            item = normalizer(entry, site)
        except Exception as exc:
            skipped += 1
            logger.warning(
                "item_skipped",
                site_id=site.id,
                owner_id=owner_id,
                variant_id=getattr(getattr(entry, "variant", None), "id", None),
                error=str(exc),
            )
            continue
        if item is not None:
            pairs.append((owner_id, item))
    return pairs, skipped


class GenerationPipeline:
    """Batched full rebuild of a site's shards."""

    def __init__(
        self,
        cache: ShardCache,
        catalog: CatalogSource,
        normalizer: ItemNormalizer,
        assembler: FeedAssembler,
        *,
        batch_size: int = 100,
        timeout_seconds: int = 3600,
    ):
        self.cache = cache
        self.catalog = catalog
        self.normalizer = normalizer
        self.assembler = assembler
        self.batch_size = batch_size
        self.timeout_seconds = timeout_seconds

    def resolve_site(self, site_id: int) -> Site:
        site = self.catalog.get_site(site_id)
        if site is None:
            raise SiteNotFoundError(site_id)
        return site

    def _superseded(self, site_id: int, token: int | None) -> bool:
        return token is not None and token < self.cache.get_generation(site_id)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def start(self, site_id: int) -> int:
        """Begin a rebuild and return its generation token.

        Raises:
            SiteNotFoundError: Before anything is written.
        """
        self.resolve_site(site_id)
        token = self.cache.bump_generation(site_id)
        self.cache.invalidate_all(site_id)
        self.cache.put_meta(
            site_id,
            GenerationMeta(status=GenerationStatus.GENERATING, started_at=utc_now(), item_count=0),
        )
        # The superseded run may still hold a buffer.
        self.cache.clear_pending(site_id, token=token - 1)
        self.cache.clear_pending(site_id, token=token)
        logger.info("generation_started", site_id=site_id, token=token)
        return token

    def process_batch(self, site_id: int, offset: int, *, token: int | None = None) -> BatchResult:
        """Scan, normalize and buffer one batch.

        ``next_offset`` is ``None`` once the scan is exhausted or the run
        was superseded by a newer rebuild. Any failure marks the site
        ``error`` and clears the scratch buffer before propagating.
        """
        try:
            if self._superseded(site_id, token):
                return self._drop_superseded(site_id, token, offset)

            site = self.resolve_site(site_id)
            entries = self.catalog.scan_eligible(site, offset, self.batch_size)
            pairs, skipped = normalize_entries(self.normalizer, site, entries)
            if pairs:
                try:
                    self.cache.append_pending(site_id, pairs, token=token)
                except StaleWriteError:
                    return self._drop_superseded(site_id, token, offset)
            if self._superseded(site_id, token):
                return self._drop_superseded(site_id, token, offset)

            next_offset = offset + self.batch_size if len(entries) >= self.batch_size else None
            logger.debug(
                "generation_batch_processed",
                site_id=site_id,
                offset=offset,
                scanned=len(entries),
                accumulated=len(pairs),
                skipped=skipped,
            )
            return BatchResult(
                offset=offset,
                next_offset=next_offset,
                scanned=len(entries),
                accumulated=len(pairs),
                skipped=skipped,
            )
        except Exception as exc:
            logger.exception("generation_scan_failed", site_id=site_id, offset=offset, error=str(exc))
            self._record_failure(site_id, token, str(exc))
            raise

    def finish(self, site_id: int, *, token: int | None = None) -> GenerationResult:
        """Distribute buffered items into every shard and assemble.

        Failures are recorded as ``status=error`` and returned, not raised.
        Empty shards are written too, so a finished rebuild leaves every
        shard present.
        """
        if self._superseded(site_id, token):
            return self._superseded_result(site_id, token)

        try:
            site = self.resolve_site(site_id)
            pending = self.cache.get_pending(site_id, token=token)

            buckets: list[list[FeedItem]] = [[] for _ in range(self.cache.shard_count)]
            for owner_id, item in pending:
                buckets[shard_index(owner_id, self.cache.shard_count)].append(item)
            for index, bucket in enumerate(buckets):
                self.cache.put_shard(site_id, index, bucket, token=token)

            self.assembler.assemble(site, token=token)
        except StaleWriteError:
            return self._superseded_result(site_id, token)
        except Exception as exc:
            logger.exception("generation_finish_failed", site_id=site_id, error=str(exc))
            self._record_failure(site_id, token, str(exc))
            return GenerationResult(
                site_id=site_id, token=token, status=GenerationStatus.ERROR, error=str(exc)
            )

        self.cache.clear_pending(site_id, token=token)
        logger.info("generation_completed", site_id=site_id, token=token, item_count=len(pending))
        return GenerationResult(
            site_id=site_id, token=token, status=GenerationStatus.COMPLETE, item_count=len(pending)
        )

    def run(self, site_id: int) -> GenerationResult:
        """Synchronous rebuild: start, every batch, finish."""
        token = self.start(site_id)
        skipped = 0
        offset: int | None = 0
        while offset is not None:
            batch = self.process_batch(site_id, offset, token=token)
            skipped += batch.skipped
            offset = batch.next_offset

        result = self.finish(site_id, token=token)
        result.skipped = skipped
        return result

    # ------------------------------------------------------------------
    # Supervision
    # ------------------------------------------------------------------

    def _drop_superseded(self, site_id: int, token: int | None, offset: int) -> BatchResult:
        self.cache.clear_pending(site_id, token=token)
        logger.info("generation_superseded", site_id=site_id, token=token, offset=offset)
        return BatchResult(offset=offset, next_offset=None)

    def _superseded_result(self, site_id: int, token: int | None) -> GenerationResult:
        self.cache.clear_pending(site_id, token=token)
        logger.info("generation_superseded", site_id=site_id, token=token, step="finish")
        return GenerationResult(
            site_id=site_id, token=token, status=self.cache.get_meta(site_id).status, superseded=True
        )

    def _record_failure(self, site_id: int, token: int | None, message: str) -> None:
        self.cache.clear_pending(site_id, token=token)
        if self._superseded(site_id, token):
            return
        previous = self.cache.get_meta(site_id)
        self.cache.put_meta(
            site_id,
            GenerationMeta(
                status=GenerationStatus.ERROR,
                started_at=previous.started_at,
                completed_at=utc_now(),
                item_count=0,
                error=message,
            ),
        )

    def demote_stale_generation(self, site_id: int, *, now: datetime | None = None) -> bool:
        """Demote a ``generating`` status older than the timeout to ``error``.

        Returns whether the status was changed.
        """
        meta = self.cache.get_meta(site_id)
        if meta.status is not GenerationStatus.GENERATING:
            return False

        now = now or utc_now()
        deadline = timedelta(seconds=self.timeout_seconds)
        if meta.started_at is not None and now - meta.started_at <= deadline:
            return False

        self.cache.put_meta(
            site_id,
            GenerationMeta(
                status=GenerationStatus.ERROR,
                started_at=meta.started_at,
                completed_at=now,
                item_count=0,
                error="generation timed out",
            ),
        )
        self.cache.clear_pending(site_id, token=self.cache.get_generation(site_id))
        logger.warning(
            "generation_demoted",
            site_id=site_id,
            started_at=meta.started_at.isoformat() if meta.started_at else None,
            timeout_seconds=self.timeout_seconds,
        )
        return True
