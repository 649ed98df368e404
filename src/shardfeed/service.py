"""Wiring of the feed cache components for one process."""

from __future__ import annotations

import importlib
from typing import Any

from shardfeed.assembler import FeedAssembler
from shardfeed.cache import ShardCache
from shardfeed.config import Settings, get_settings
from shardfeed.jobs import run_task
from shardfeed.normalize import MappingNormalizer
from shardfeed.observability import get_logger
from shardfeed.orchestration import SchedulerBackend, create_scheduler
from shardfeed.pipeline import GenerationPipeline
from shardfeed.protocols import CatalogSource, FeedRenderer, ItemNormalizer
from shardfeed.regenerator import ShardRegenerator
from shardfeed.render import XmlFeedRenderer
from shardfeed.serving import ServingPolicy
from shardfeed.storage import KeyValueStore, create_store

logger = get_logger(__name__)


def load_catalog(path: str) -> CatalogSource:
    """Load a catalog from a ``"module:attribute"`` path.

    Callables (classes, factory functions) are called without arguments.
    """
    module_name, _, attribute = path.partition(":")
    if not attribute:
        raise ValueError(f"Catalog source must look like 'module:attribute', got {path!r}")
    target = getattr(importlib.import_module(module_name), attribute)
    return target() if callable(target) else target


class FeedService:
    """Holds one instance of every component, built from settings."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        store: KeyValueStore | None = None,
        catalog: CatalogSource | None = None,
        normalizer: ItemNormalizer | None = None,
        renderer: FeedRenderer | None = None,
        scheduler: SchedulerBackend | None = None,
    ):
        self.settings = settings or get_settings()
        self.store = store if store is not None else create_store(self.settings)
        self.catalog = catalog if catalog is not None else load_catalog(self.settings.catalog_source)
        self.normalizer = normalizer or MappingNormalizer.from_settings(self.settings)
        self.renderer = renderer or XmlFeedRenderer()
        self.scheduler = scheduler or create_scheduler(self.settings, self.dispatch)

        self.cache = ShardCache(
            self.store,
            shard_count=self.settings.shard_count,
            ttl_seconds=self.settings.cache_ttl_seconds,
            prefix=self.settings.cache_prefix,
        )
        self.assembler = FeedAssembler(self.cache, self.renderer)
        self.pipeline = GenerationPipeline(
            self.cache,
            self.catalog,
            self.normalizer,
            self.assembler,
            batch_size=self.settings.batch_size,
            timeout_seconds=self.settings.generation_timeout_seconds,
        )
        self.regenerator = ShardRegenerator(self.cache, self.catalog, self.normalizer)
        self.policy = ServingPolicy(
            self.cache,
            self.catalog,
            self.assembler,
            self.scheduler,
            retry_after_seconds=self.settings.retry_after_seconds,
        )

    def dispatch(self, task: str, params: dict[str, Any]) -> dict:
        """Run a task in this process."""
        return run_task(self, task, params)


# Global service instance
_service: FeedService | None = None


def get_service() -> FeedService:
    """Get or create the process-wide service."""
    global _service
    if _service is None:
        _service = FeedService()
        logger.info(
            "service_initialized",
            store=_service.settings.store_backend,
            scheduler=_service.scheduler.name,
            shard_count=_service.settings.shard_count,
        )
    return _service


def set_service(service: FeedService | None) -> None:
    """Replace the process-wide service (tests, embedding applications)."""
    global _service
    _service = service


def reset_service() -> None:
    """Reset the service (for testing)."""
    set_service(None)
