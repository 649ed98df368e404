"""
Default item normalizer: catalog entry → :class:`FeedItem`.

A pure function of the entry, the site and a mapping table of
``{feed_field: FieldMapping(source, attribute)}``. Entries with no title,
no link or no price are excluded by returning ``None``; entries whose
values fail validation raise :class:`ItemError` and are skipped by the
caller.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any
from urllib.parse import urljoin

import pydantic

from shardfeed.catalog import CatalogEntry, Product, Variant
from shardfeed.config import FieldMapping, Settings
from shardfeed.errors import ItemError
from shardfeed.models import FeedItem, Site
from shardfeed.observability import get_logger

logger = get_logger(__name__)

# Fields the normalizer computes itself; mappings for these are ignored.
AUTO_FIELDS = frozenset(
    {"id", "title", "description", "link", "price", "availability", "sku", "item_group_id", "condition"}
)
IMAGE_FIELDS = ("productImage", "image", "variantImage")
SHIPPING_DIMENSIONS = frozenset({"shipping_length", "shipping_width", "shipping_height"})

_TAG_RE = re.compile(r"<[^>]*>")
_ABSOLUTE_RE = re.compile(r"^https?://", re.IGNORECASE)


def format_amount(value: Any, unit: str) -> str:
    """Format ``value`` with two decimals followed by ``unit``."""
    return f"{Decimal(str(value)):.2f} {unit}"


def strip_tags(text: str) -> str:
    return _TAG_RE.sub("", text)


class MappingNormalizer:
    """Builds feed items using a configurable field mapping table."""

    def __init__(
        self,
        field_mappings: dict[str, FieldMapping] | None = None,
        *,
        currency: str = "USD",
        weight_unit: str = "kg",
        dimension_unit: str = "cm",
    ):
        self.field_mappings = field_mappings or {}
        self.currency = currency
        self.weight_unit = weight_unit
        self.dimension_unit = dimension_unit

    @classmethod
    def from_settings(cls, settings: Settings) -> MappingNormalizer:
        return cls(
            settings.field_mappings,
            currency=settings.currency,
            weight_unit=settings.weight_unit,
            dimension_unit=settings.dimension_unit,
        )

    def __call__(self, entry: CatalogEntry, site: Site) -> FeedItem | None:
        product, variant = entry.product, entry.variant

        title = self._title(product, variant)
        if not title:
            logger.warning("item_excluded", reason="no_title", product_id=product.id)
            return None

        link = self._link(product, variant, site)
        if not link:
            logger.info("item_excluded", reason="no_url", variant_id=variant.id, sku=variant.sku)
            return None

        price_value = variant.sale_price if variant.sale_price is not None else variant.price
        if price_value is None:
            return None

        try:
            data: dict[str, Any] = {
                "id": (variant.sku or str(variant.id))[:50],
                "title": title,
                "description": self._description(product, variant),
                "link": link,
                "price": format_amount(price_value, self.currency),
                "availability": self._availability(variant),
                "condition": "new",
            }
            if variant.sku:
                data["sku"] = variant.sku
            if len(product.variants) > 1:
                data["item_group_id"] = str(product.id)
            if product.product_type:
                data["product_type"] = product.product_type
            if variant.on_promotion and variant.promotional_price is not None:
                data["sale_price"] = format_amount(variant.promotional_price, self.currency)

            image = self._image(product, variant)
            if image:
                data["image_link"] = image
            extra_images = self._additional_images(product, variant)
            if extra_images:
                data["additional_image_link"] = tuple(extra_images)

            data["extensions"] = self._extensions(product, variant)
            return FeedItem(**data)
        except (pydantic.ValidationError, InvalidOperation, ValueError, TypeError) as exc:
            raise ItemError(
                f"Variant {variant.id} could not be normalized: {exc}",
                cause=exc,
            ).with_context(entity_id=variant.id, product_id=product.id) from exc

    # ------------------------------------------------------------------

    def _title(self, product: Product, variant: Variant) -> str | None:
        title = product.title
        if not title or not title.strip():
            return None
        if variant.title and variant.title != product.title:
            title = f"{product.title} - {variant.title}"
        return title.strip()[:150]

    def _description(self, product: Product, variant: Variant) -> str:
        description = variant.fields.get("description")
        if not description:
            for handle in ("description", "summary", "body"):
                description = product.fields.get(handle)
                if description is not None:
                    break
            else:
                description = product.title
        return strip_tags(str(description)).strip()[:5000]

    def _link(self, product: Product, variant: Variant, site: Site) -> str | None:
        url = variant.url or product.url
        if not url:
            return None
        if _ABSOLUTE_RE.match(url):
            return url
        return urljoin(site.base_url.rstrip("/") + "/", url.lstrip("/"))

    def _availability(self, variant: Variant) -> str:
        if not variant.available_for_purchase:
            return "out_of_stock"
        if variant.unlimited_stock or variant.stock > 0:
            return "in_stock"
        return "out_of_stock"

    def _mapped_value(self, product: Product, variant: Variant, mapping: FieldMapping) -> Any:
        element = variant if mapping.source == "variant" else product
        if mapping.attribute in ("title", "url"):
            return getattr(element, mapping.attribute)
        value = element.fields.get(mapping.attribute)
        if isinstance(value, (datetime, date)):
            return value.strftime("%Y-%m-%d")
        return value

    def _image(self, product: Product, variant: Variant) -> str | None:
        mapping = self.field_mappings.get("image_link")
        if mapping is not None:
            value = self._mapped_value(product, variant, mapping)
            if isinstance(value, list):
                value = value[0] if value else None
            if value:
                return str(value)
        for handle in IMAGE_FIELDS:
            for element in (product, variant):
                value = element.fields.get(handle)
                if isinstance(value, list):
                    value = value[0] if value else None
                if value:
                    return str(value)
        return None

    def _additional_images(self, product: Product, variant: Variant) -> list[str]:
        value = None
        mapping = self.field_mappings.get("additional_image_link")
        if mapping is not None:
            value = self._mapped_value(product, variant, mapping)
        if not value:
            value = product.fields.get("additionalImageLink")
        if not value:
            return []
        if isinstance(value, str):
            return [value]
        return [str(v) for v in value if v]

    def _extensions(self, product: Product, variant: Variant) -> dict[str, str]:
        extensions: dict[str, str] = {}
        for feed_field, mapping in self.field_mappings.items():
            if feed_field in AUTO_FIELDS or feed_field in FeedItem.model_fields:
                continue
            value = self._mapped_value(product, variant, mapping)
            if value is None or value == "":
                continue
            formatted = self._format_field(feed_field, value)
            if formatted is not None:
                extensions[feed_field] = formatted
        return extensions

    def _format_field(self, feed_field: str, value: Any) -> str | None:
        if feed_field == "shipping_weight":
            return self._positive_measure(value, self.weight_unit)
        if feed_field in SHIPPING_DIMENSIONS:
            return self._positive_measure(value, self.dimension_unit)
        if isinstance(value, (list, tuple)):
            return ",".join(str(v) for v in value)
        return str(value)

    @staticmethod
    def _positive_measure(value: Any, unit: str) -> str | None:
        try:
            number = Decimal(str(value))
        except InvalidOperation:
            return None
        if number <= 0:
            return None
        return format_amount(number, unit)
