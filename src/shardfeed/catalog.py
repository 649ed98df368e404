"""
Catalog data source.

The catalog is read-only from the cache's point of view. Products own
variants; the product id is the owner id that drives shard routing, so a
change to any variant resolves to its product before anything is
invalidated.

``InMemoryCatalog`` is the default data source. Deployments backed by a
real commerce database point ``SHARDFEED_CATALOG_SOURCE`` at their own
:class:`~shardfeed.protocols.CatalogSource` factory.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from shardfeed.models import Site


@dataclass
class Variant:
    """A purchasable variant of a product."""

    id: int
    title: str | None = None
    sku: str | None = None
    price: Decimal | None = None
    sale_price: Decimal | None = None
    promotional_price: Decimal | None = None
    on_promotion: bool = False
    stock: int = 0
    unlimited_stock: bool = False
    available_for_purchase: bool = True
    enabled: bool = True
    url: str | None = None
    fields: dict[str, Any] = field(default_factory=dict)


@dataclass
class Product:
    """A product: the owning aggregate of its variants."""

    id: int
    title: str | None
    enabled: bool = True
    url: str | None = None
    product_type: str | None = None
    fields: dict[str, Any] = field(default_factory=dict)
    variants: list[Variant] = field(default_factory=list)


@dataclass(frozen=True)
class CatalogEntry:
    """One (product, variant) pair handed to the normalizer."""

    product: Product
    variant: Variant

    @property
    def owner_id(self) -> int:
        return self.product.id


class InMemoryCatalog:
    """Thread-safe in-process catalog, keyed by site."""

    def __init__(self, sites: list[Site] | None = None):
        self._lock = threading.RLock()
        self._sites: dict[int, Site] = {}
        self._products: dict[int, dict[int, Product]] = {}
        for site in sites or []:
            self.add_site(site)

    # ------------------------------------------------------------------
    # Sites
    # ------------------------------------------------------------------

    def add_site(self, site: Site) -> None:
        with self._lock:
            self._sites[site.id] = site
            self._products.setdefault(site.id, {})

    def get_site(self, site_id: int) -> Site | None:
        return self._sites.get(site_id)

    def list_sites(self) -> list[Site]:
        return sorted(self._sites.values(), key=lambda s: s.id)

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    def upsert_product(self, site_id: int, product: Product) -> None:
        with self._lock:
            self._products.setdefault(site_id, {})[product.id] = product

    def delete_product(self, site_id: int, product_id: int) -> Product | None:
        with self._lock:
            return self._products.get(site_id, {}).pop(product_id, None)

    def get_product(self, site_id: int, product_id: int) -> Product | None:
        return self._products.get(site_id, {}).get(product_id)

    def owner_of_variant(self, site_id: int, variant_id: int) -> int | None:
        """Resolve a variant id to the id of the product that owns it."""
        for product in self._products.get(site_id, {}).values():
            if any(v.id == variant_id for v in product.variants):
                return product.id
        return None

    # ------------------------------------------------------------------
    # Scans
    # ------------------------------------------------------------------

    def _eligible(self, site: Site) -> list[tuple[int, CatalogEntry]]:
        with self._lock:
            products = list(self._products.get(site.id, {}).values())
        entries = [
            (product.id, CatalogEntry(product, variant))
            for product in products
            if product.enabled
            for variant in product.variants
            if variant.enabled
        ]
        entries.sort(key=lambda pair: pair[1].variant.id)
        return entries

    def scan_eligible(self, site: Site, offset: int, limit: int) -> list[tuple[int, CatalogEntry]]:
        """Enabled variants of enabled products, ascending by variant id."""
        return self._eligible(site)[offset : offset + limit]

    def scan_by_owner_modulo(
        self, site: Site, shard_count: int, shard_index: int
    ) -> list[tuple[int, CatalogEntry]]:
        """Eligible entries whose owner id maps to ``shard_index``."""
        return [
            pair
            for pair in self._eligible(site)
            if pair[0] % shard_count == shard_index
        ]
