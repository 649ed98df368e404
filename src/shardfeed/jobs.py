"""
Background job handlers.

Each handler takes the wired :class:`~shardfeed.service.FeedService` and
the task's keyword parameters. Backends only move ``(task, params)``
pairs around; the work itself always runs through :func:`run_task`.

Full rebuilds are split into short tasks::

    generate_feed(site_id)
      └─▶ generate_feed_batch(site_id, offset=0, token)
            └─▶ generate_feed_batch(site_id, offset=N, token) ...
                  └─▶ finish
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

from shardfeed.observability import bind_context, clear_context, get_logger

if TYPE_CHECKING:
    from shardfeed.service import FeedService

logger = get_logger(__name__)


class TaskKind(str, Enum):
    GENERATE_FEED = "generate_feed"
    GENERATE_FEED_BATCH = "generate_feed_batch"
    REGENERATE_SHARD = "regenerate_shard"
    DEMOTE_STALE_GENERATIONS = "demote_stale_generations"
    SCHEDULED_REBUILD = "scheduled_rebuild"


def generate_feed(service: FeedService, site_id: int) -> dict:
    token = service.pipeline.start(site_id)
    service.scheduler.enqueue(
        TaskKind.GENERATE_FEED_BATCH.value,
        {"site_id": site_id, "offset": 0, "token": token},
    )
    return {"site_id": site_id, "token": token}


def generate_feed_batch(service: FeedService, site_id: int, offset: int, token: int | None = None) -> dict:
    batch = service.pipeline.process_batch(site_id, offset, token=token)
    if batch.next_offset is not None:
        service.scheduler.enqueue(
            TaskKind.GENERATE_FEED_BATCH.value,
            {"site_id": site_id, "offset": batch.next_offset, "token": token},
        )
        return {"site_id": site_id, "offset": offset, "next_offset": batch.next_offset}

    result = service.pipeline.finish(site_id, token=token)
    return {
        "site_id": site_id,
        "offset": offset,
        "status": result.status.value,
        "item_count": result.item_count,
        "superseded": result.superseded,
    }


def regenerate_shard(service: FeedService, site_id: int, shard_index: int) -> dict:
    result = service.regenerator.regenerate(site_id, shard_index)
    return {
        "site_id": site_id,
        "shard_index": shard_index,
        "item_count": result.item_count,
        "stale": result.stale,
    }


def demote_stale_generations(service: FeedService) -> dict:
    demoted = [
        site.id
        for site in service.catalog.list_sites()
        if service.pipeline.demote_stale_generation(site.id)
    ]
    return {"demoted": demoted}


def scheduled_rebuild(service: FeedService) -> dict:
    """Queue a rebuild for every site without an assembled feed."""
    queued = []
    for site in service.catalog.list_sites():
        if service.cache.get_assembled(site.id) is not None:
            continue
        if service.policy.request_rebuild(site.id):
            queued.append(site.id)
    logger.info("scheduled_rebuild_checked", queued=queued)
    return {"queued": queued}


HANDLERS: dict[str, Callable[..., dict]] = {
    TaskKind.GENERATE_FEED.value: generate_feed,
    TaskKind.GENERATE_FEED_BATCH.value: generate_feed_batch,
    TaskKind.REGENERATE_SHARD.value: regenerate_shard,
    TaskKind.DEMOTE_STALE_GENERATIONS.value: demote_stale_generations,
    TaskKind.SCHEDULED_REBUILD.value: scheduled_rebuild,
}


def run_task(service: FeedService, task: str, params: dict[str, Any]) -> dict:
    """Run a task by name.

    Raises:
        KeyError: Unknown task name.
    """
    handler = HANDLERS[task]
    bind_context(task=task, site_id=params.get("site_id"))
    try:
        logger.debug("task_started", **params)
        result = handler(service, **params)
        logger.info("task_finished", **result)
    finally:
        clear_context()
    return result
