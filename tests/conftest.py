"""Pytest configuration and fixtures."""

from decimal import Decimal

import pytest

from shardfeed.catalog import InMemoryCatalog, Product, Variant
from shardfeed.config import Settings, reset_settings
from shardfeed.models import Site
from shardfeed.service import FeedService, reset_service, set_service
from shardfeed.storage import InMemoryStore


def build_product(
    product_id: int,
    *,
    variant_count: int = 1,
    title: str | None = None,
    price: Decimal | None = Decimal("19.99"),
    enabled: bool = True,
    url: str | None = None,
    **product_fields,
) -> Product:
    """Product with ``variant_count`` in-stock variants (ids ``product_id * 100 + n``)."""
    variants = [
        Variant(
            id=product_id * 100 + n,
            title=f"Size {n}" if variant_count > 1 else None,
            sku=f"SKU-{product_id}-{n}",
            price=price,
            stock=5,
        )
        for n in range(1, variant_count + 1)
    ]
    return Product(
        id=product_id,
        title=title if title is not None else f"Product {product_id}",
        enabled=enabled,
        url=url if url is not None else f"/products/{product_id}",
        fields=product_fields,
        variants=variants,
    )


@pytest.fixture(autouse=True)
def _reset_globals():
    """Each test starts without cached settings or a wired service."""
    reset_settings()
    reset_service()
    yield
    reset_settings()
    reset_service()


@pytest.fixture
def settings():
    return Settings(_env_file=None, shard_count=4, batch_size=10)


@pytest.fixture
def site():
    return Site(id=1, name="Demo Store", base_url="https://shop.example.com")


@pytest.fixture
def catalog(site):
    return InMemoryCatalog([site])


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def service(settings, store, catalog):
    """Fully wired service on the local scheduler, installed as the global one."""
    svc = FeedService(settings, store=store, catalog=catalog)
    set_service(svc)
    return svc


@pytest.fixture
def add_products(catalog, site):
    """Add products by id to the default site."""

    def _add(*product_ids: int, **kwargs) -> list[Product]:
        products = [build_product(pid, **kwargs) for pid in product_ids]
        for product in products:
            catalog.upsert_product(site.id, product)
        return products

    return _add


@pytest.fixture
def make_product():
    """The ``build_product`` factory, for products that are not added to the catalog."""
    return build_product
