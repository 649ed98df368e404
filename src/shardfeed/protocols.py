"""Collaborator contracts consumed by the cache core."""

from __future__ import annotations

from typing import Any, Protocol

from shardfeed.catalog import CatalogEntry
from shardfeed.models import FeedItem, Site


class CatalogSource(Protocol):
    """Read-only catalog access, scoped per site."""

    def get_site(self, site_id: int) -> Site | None: ...

    def list_sites(self) -> list[Site]: ...

    def owner_of_variant(self, site_id: int, variant_id: int) -> int | None:
        """Return the id of the product owning ``variant_id``."""
        ...

    def scan_eligible(self, site: Site, offset: int, limit: int) -> list[tuple[int, CatalogEntry]]:
        """Return ``(owner_id, entry)`` pairs in stable ascending order."""
        ...

    def scan_by_owner_modulo(
        self, site: Site, shard_count: int, shard_index: int
    ) -> list[tuple[int, CatalogEntry]]:
        """Return the pairs whose ``owner_id % shard_count == shard_index``."""
        ...


class ItemNormalizer(Protocol):
    """Turns one catalog entry into a feed item.

    Returns ``None`` to exclude the entry silently. Raising means the entry
    is malformed; callers log and skip it.
    """

    def __call__(self, entry: CatalogEntry, site: Site) -> FeedItem | None: ...


class FeedRenderer(Protocol):
    """Pure rendering of a site's items to the served document."""

    def __call__(self, site: Site, items: list[FeedItem]) -> bytes: ...


class TaskScheduler(Protocol):
    """Fire-and-forget background work. At-least-once, unordered."""

    def enqueue(self, task: str, params: dict[str, Any]) -> str:
        """Queue ``task`` with ``params`` and return a task id."""
        ...
