"""Background task scheduling."""

from typing import Any, Callable

from shardfeed.config import Settings
from shardfeed.orchestration.backends import CeleryScheduler, LocalScheduler, SchedulerBackend


def create_scheduler(
    settings: Settings, dispatch_fn: Callable[[str, dict[str, Any]], Any]
) -> SchedulerBackend:
    """Build the backend selected by ``settings.scheduler_backend``.

    ``dispatch_fn`` runs a task in-process; only the local backend uses it.
    """
    if settings.scheduler_backend == "celery":
        return CeleryScheduler()
    return LocalScheduler(dispatch_fn)


__all__ = ["SchedulerBackend", "LocalScheduler", "CeleryScheduler", "create_scheduler"]
