"""Backend implementations."""

from shardfeed.orchestration.backends.protocol import SchedulerBackend
from shardfeed.orchestration.backends.local import LocalScheduler
from shardfeed.orchestration.backends.celery_backend import CeleryScheduler

__all__ = ["SchedulerBackend", "LocalScheduler", "CeleryScheduler"]
