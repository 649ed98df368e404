"""FastAPI application serving the feed and its admin endpoints."""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Literal

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, model_validator

from shardfeed import __version__
from shardfeed.config import get_settings
from shardfeed.errors import SiteNotFoundError, ValidationError
from shardfeed.observability import configure_logging, get_logger
from shardfeed.service import get_service

logger = get_logger(__name__)


# =============================================================================
# Lifespan
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: configure logging, wire and start the service."""
    configure_logging()
    service = get_service()
    service.scheduler.start()
    logger.info("application_started", scheduler=service.scheduler.name, store=get_settings().store_backend)
    yield
    service.scheduler.stop()
    logger.info("application_stopped")


# =============================================================================
# App Setup
# =============================================================================

app = FastAPI(
    title="shardfeed",
    description="Sharded product feed cache",
    version=__version__,
    lifespan=lifespan,
)


@app.exception_handler(SiteNotFoundError)
async def site_not_found_handler(request: Request, exc: SiteNotFoundError):
    return JSONResponse(status_code=404, content={"detail": exc.message})


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": exc.message})


# =============================================================================
# Models
# =============================================================================


class HealthResponse(BaseModel):
    status: str
    version: str
    scheduler: str


class GenerationStatusResponse(BaseModel):
    status: str
    started_at: datetime | None
    completed_at: datetime | None
    item_count: int
    error: str | None


class CacheStatusResponse(BaseModel):
    shard_count: int
    present_shards: int
    total_items: int
    total_size: int
    assembled_present: bool
    assembled_size: int
    oldest_shard_updated_at: datetime | None
    newest_shard_updated_at: datetime | None


class SiteStatusResponse(BaseModel):
    site_id: int
    generation: GenerationStatusResponse
    cache: CacheStatusResponse


class QueuedResponse(BaseModel):
    site_id: int
    queued: bool


class CatalogEvent(BaseModel):
    """A product or variant change.

    ``owner_id`` wins when both ids are given. A variant-only event resolves
    its product through the catalog, which no longer knows a deleted
    variant, so deletions must carry ``owner_id``.
    """

    owner_id: int | None = None
    variant_id: int | None = None
    action: Literal["created", "updated", "deleted"] = "updated"

    @model_validator(mode="after")
    def _require_identity(self):
        if self.owner_id is None and self.variant_id is None:
            raise ValueError("owner_id or variant_id is required")
        if self.action == "deleted" and self.owner_id is None:
            raise ValueError("owner_id is required for deleted events")
        return self


class CatalogEventResponse(BaseModel):
    site_id: int
    owner_id: int
    shard_index: int


# =============================================================================
# Health
# =============================================================================


@app.get("/health", response_model=HealthResponse)
def health():
    """Health check endpoint."""
    return HealthResponse(status="healthy", version=__version__, scheduler=get_service().scheduler.name)


# =============================================================================
# Feed
# =============================================================================


@app.get("/sites/{site_id}/feed.xml")
def get_feed(site_id: int):
    """Serve the feed: cached, assembled from shards, or 503 while generating."""
    result = get_service().policy.serve(site_id)
    return Response(
        content=result.body,
        status_code=result.status_code,
        headers=result.headers,
        media_type=result.media_type,
    )


@app.get("/sites/{site_id}/status", response_model=SiteStatusResponse)
def get_status(site_id: int):
    """Generation state and shard summary for a site."""
    service = get_service()
    service.policy.resolve_site(site_id)
    meta = service.cache.get_meta(site_id)
    summary = service.cache.get_status_summary(site_id)
    return SiteStatusResponse(
        site_id=site_id,
        generation=GenerationStatusResponse(
            status=meta.status.value,
            started_at=meta.started_at,
            completed_at=meta.completed_at,
            item_count=meta.item_count,
            error=meta.error,
        ),
        cache=CacheStatusResponse(
            shard_count=summary.shard_count,
            present_shards=summary.present_shards,
            total_items=summary.total_items,
            total_size=summary.total_size,
            assembled_present=summary.assembled_present,
            assembled_size=summary.assembled_size,
            oldest_shard_updated_at=summary.oldest_shard_updated_at,
            newest_shard_updated_at=summary.newest_shard_updated_at,
        ),
    )


# =============================================================================
# Admin
# =============================================================================


@app.post("/sites/{site_id}/regenerate", response_model=QueuedResponse, status_code=202)
def regenerate(site_id: int):
    """Drop the site's cache and queue a forced full rebuild."""
    queued = get_service().policy.force_regenerate(site_id)
    return QueuedResponse(site_id=site_id, queued=queued)


@app.post("/sites/{site_id}/invalidate")
def invalidate(site_id: int):
    """Drop everything cached for the site."""
    service = get_service()
    service.policy.resolve_site(site_id)
    service.cache.invalidate_all(site_id)
    return {"site_id": site_id, "invalidated": True}


@app.post("/sites/{site_id}/catalog-events", response_model=CatalogEventResponse, status_code=202)
def catalog_event(site_id: int, event: CatalogEvent):
    """Targeted invalidation for a product or variant create/update/delete."""
    service = get_service()
    service.policy.resolve_site(site_id)

    owner_id = event.owner_id
    if owner_id is None:
        owner_id = service.catalog.owner_of_variant(site_id, event.variant_id)
        if owner_id is None:
            return JSONResponse(status_code=404, content={"detail": f"Variant {event.variant_id} not found"})

    logger.info(
        "catalog_event_received",
        site_id=site_id,
        owner_id=owner_id,
        variant_id=event.variant_id,
        action=event.action,
    )
    index = service.policy.on_catalog_change(site_id, owner_id)
    return CatalogEventResponse(site_id=site_id, owner_id=owner_id, shard_index=index)
