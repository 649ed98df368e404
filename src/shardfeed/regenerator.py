"""Targeted single-shard regeneration."""

from __future__ import annotations

from dataclasses import dataclass

from shardfeed.cache import ShardCache
from shardfeed.errors import SiteNotFoundError, StaleWriteError
from shardfeed.observability import get_logger
from shardfeed.pipeline import normalize_entries
from shardfeed.protocols import CatalogSource, ItemNormalizer
from shardfeed.sharding import validate_shard_index

logger = get_logger(__name__)


@dataclass
class RegenerationResult:
    site_id: int
    shard_index: int
    item_count: int = 0
    skipped: int = 0
    stale: bool = False


class ShardRegenerator:
    """Recomputes exactly one shard from a filtered catalog scan.

    The scan is pushed down to the catalog as an owner-id modulo filter,
    so the cost is proportional to the shard, not the catalog. The write
    is a full replacement of the shard under the generation token read
    before scanning; if a full rebuild started meanwhile, the write is
    dropped rather than resurrecting pre-rebuild data.
    """

    def __init__(self, cache: ShardCache, catalog: CatalogSource, normalizer: ItemNormalizer):
        self.cache = cache
        self.catalog = catalog
        self.normalizer = normalizer

    def regenerate(self, site_id: int, index: int) -> RegenerationResult:
        """Rebuild shard ``index`` of ``site_id``.

        Raises:
            ShardIndexError: Index outside ``[0, shard_count)``; nothing written.
            SiteNotFoundError: Unknown site; nothing written.
        """
        validate_shard_index(index, self.cache.shard_count)
        site = self.catalog.get_site(site_id)
        if site is None:
            raise SiteNotFoundError(site_id).with_context(shard_index=index)

        token = self.cache.get_generation(site_id)
        logger.info("shard_regeneration_started", site_id=site_id, shard_index=index, token=token)

        entries = self.catalog.scan_by_owner_modulo(site, self.cache.shard_count, index)
        pairs, skipped = normalize_entries(self.normalizer, site, entries)
        items = [item for _, item in pairs]

        try:
            self.cache.put_shard(site_id, index, items, token=token)
        except StaleWriteError:
            logger.info("shard_regeneration_discarded", site_id=site_id, shard_index=index, token=token)
            return RegenerationResult(site_id=site_id, shard_index=index, skipped=skipped, stale=True)

        logger.info(
            "shard_regenerated",
            site_id=site_id,
            shard_index=index,
            item_count=len(items),
            skipped=skipped,
        )
        return RegenerationResult(site_id=site_id, shard_index=index, item_count=len(items), skipped=skipped)
