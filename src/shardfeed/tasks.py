"""Celery tasks wrapping the job handlers."""

from shardfeed.celery_app import celery_app
from shardfeed.errors import FeedError
from shardfeed.jobs import TaskKind, run_task
from shardfeed.observability import get_logger
from shardfeed.service import get_service

logger = get_logger(__name__)

MAX_RETRIES = 3


def _run(task, kind: TaskKind, **params):
    """Run a job, retrying only errors flagged retryable."""
    log = logger.bind(task=kind.value, task_id=task.request.id)
    try:
        return run_task(get_service(), kind.value, params)
    except FeedError as e:
        log.error("celery_task_failed", **e.to_dict())
        if e.retryable:
            raise task.retry(exc=e, countdown=2 ** task.request.retries)
        raise


@celery_app.task(bind=True, name="shardfeed.tasks.generate_feed", max_retries=MAX_RETRIES, acks_late=True)
def generate_feed(self, site_id: int):
    return _run(self, TaskKind.GENERATE_FEED, site_id=site_id)


# Never retried: a failed batch has already recorded status=error and cleared the buffer.
@celery_app.task(bind=True, name="shardfeed.tasks.generate_feed_batch", max_retries=0, acks_late=True)
def generate_feed_batch(self, site_id: int, offset: int, token: int | None = None):
    return _run(self, TaskKind.GENERATE_FEED_BATCH, site_id=site_id, offset=offset, token=token)


@celery_app.task(bind=True, name="shardfeed.tasks.regenerate_shard", max_retries=MAX_RETRIES, acks_late=True)
def regenerate_shard(self, site_id: int, shard_index: int):
    return _run(self, TaskKind.REGENERATE_SHARD, site_id=site_id, shard_index=shard_index)


@celery_app.task(bind=True, name="shardfeed.tasks.demote_stale_generations")
def demote_stale_generations(self):
    return _run(self, TaskKind.DEMOTE_STALE_GENERATIONS)


@celery_app.task(bind=True, name="shardfeed.tasks.scheduled_rebuild")
def scheduled_rebuild(self):
    return _run(self, TaskKind.SCHEDULED_REBUILD)
