"""Celery application configuration."""

from celery import Celery
from celery.schedules import crontab

from shardfeed.config import Settings, get_settings


def cron_schedule(expression: str) -> crontab:
    """Build a ``crontab`` from a five-field cron expression."""
    minute, hour, day_of_month, month_of_year, day_of_week = expression.split()
    return crontab(
        minute=minute,
        hour=hour,
        day_of_month=day_of_month,
        month_of_year=month_of_year,
        day_of_week=day_of_week,
    )


def build_beat_schedule(settings: Settings) -> dict:
    schedule = {
        "demote-stale-generations": {
            "task": "shardfeed.tasks.demote_stale_generations",
            "schedule": float(settings.schedule_watchdog_interval_seconds),
        },
    }
    if settings.schedule_rebuild_enabled:
        schedule["scheduled-feed-rebuild"] = {
            "task": "shardfeed.tasks.scheduled_rebuild",
            "schedule": cron_schedule(settings.schedule_rebuild_cron),
        }
    return schedule


settings = get_settings()

# Create Celery app
celery_app = Celery(
    "shardfeed",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["shardfeed.tasks"],
)

# Configure Celery
celery_app.conf.update(
    # Task settings
    task_default_queue=settings.celery_task_default_queue,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    # Serialization
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    # Time settings
    timezone="UTC",
    enable_utc=True,
    # Result backend
    result_expires=86400,  # 24 hours
    task_track_started=True,
)

celery_app.conf.beat_schedule = build_beat_schedule(settings)
