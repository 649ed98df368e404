"""Core data models: feed items, generation metadata and status summaries."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def utc_now() -> datetime:
    """Current time, timezone-aware UTC."""
    return datetime.now(UTC)


def _to_iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass(frozen=True)
class Site:
    """A storefront whose feed is cached independently of every other site."""

    id: int
    name: str
    base_url: str


class FeedItem(BaseModel):
    """One normalized feed entry, produced per (product, variant) pair.

    Immutable once created. ``extensions`` holds mapped feed-vocabulary
    fields such as ``brand``, ``gtin`` or ``shipping_weight``.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1, max_length=50)
    title: str = Field(min_length=1, max_length=150)
    description: str = Field(default="", max_length=5000)
    link: str
    price: str
    sale_price: str | None = None
    availability: Literal["in_stock", "out_of_stock"] = "in_stock"
    image_link: str | None = None
    additional_image_link: tuple[str, ...] = ()
    sku: str | None = None
    item_group_id: str | None = None
    product_type: str | None = None
    condition: str = "new"
    extensions: dict[str, str] = Field(default_factory=dict)
    identifier_exists: Literal["yes", "no"] | None = None

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("title must not be blank")
        return value

    @field_validator("link")
    @classmethod
    def _absolute_link(cls, value: str) -> str:
        parsed = urlparse(value)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError(f"link must be an absolute URL: {value!r}")
        return value

    @model_validator(mode="before")
    @classmethod
    def _identifier_flag(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("identifier_exists") is None:
            extensions = data.get("extensions") or {}
            if not any(extensions.get(k) for k in ("brand", "gtin", "mpn")):
                data = {**data, "identifier_exists": "no"}
        return data


class GenerationStatus(str, Enum):
    """Per-site generation state seen by readers."""

    NONE = "none"
    GENERATING = "generating"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass
class GenerationMeta:
    """Per-site generation record.

    Advisory only: ``generating`` tells readers a rebuild is presumed in
    flight, it does not lock out concurrent writers. An absent record
    reads as the ``none`` default.
    """

    status: GenerationStatus = GenerationStatus.NONE
    started_at: datetime | None = None
    completed_at: datetime | None = None
    item_count: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "started_at": _to_iso(self.started_at),
            "completed_at": _to_iso(self.completed_at),
            "item_count": self.item_count,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> GenerationMeta:
        if not data:
            return cls()
        return cls(
            status=GenerationStatus(data.get("status", GenerationStatus.NONE.value)),
            started_at=_from_iso(data.get("started_at")),
            completed_at=_from_iso(data.get("completed_at")),
            item_count=int(data.get("item_count") or 0),
            error=data.get("error"),
        )


@dataclass
class ShardMetadata:
    """Bookkeeping for one present shard."""

    item_count: int
    updated_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {"item_count": self.item_count, "updated_at": self.updated_at.isoformat()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ShardMetadata:
        return cls(item_count=int(data["item_count"]), updated_at=datetime.fromisoformat(data["updated_at"]))


@dataclass
class CacheStatus:
    """Aggregate, side-effect-free view over a site's shards."""

    site_id: int
    shard_count: int
    present_shards: int = 0
    total_items: int = 0
    total_size: int = 0
    assembled_present: bool = False
    assembled_size: int = 0
    oldest_shard_updated_at: datetime | None = None
    newest_shard_updated_at: datetime | None = None
    status: GenerationStatus = GenerationStatus.NONE
    completed_at: datetime | None = None
    present_indices: list[int] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        for key in ("oldest_shard_updated_at", "newest_shard_updated_at", "completed_at"):
            data[key] = _to_iso(getattr(self, key))
        return data
