"""CeleryScheduler - distributed task backend."""

from typing import Any

from shardfeed.observability import get_logger

logger = get_logger(__name__)

TASK_PREFIX = "shardfeed.tasks."


class CeleryScheduler:
    """
    Celery-based backend.

    Tasks are sent by name, so the API process does not import the task
    modules. Workers and beat are started separately.
    """

    name = "celery"

    def __init__(self, celery_app=None):
        self._celery_app = celery_app

    def _get_celery_app(self):
        """Get or create Celery app."""
        if self._celery_app is None:
            from shardfeed.celery_app import celery_app

            self._celery_app = celery_app
        return self._celery_app

    def enqueue(self, task: str, params: dict[str, Any]) -> str:
        result = self._get_celery_app().send_task(f"{TASK_PREFIX}{task}", kwargs=dict(params))
        logger.info("task_submitted_to_celery", task=task, task_id=result.id, **params)
        return result.id

    def start(self) -> None:
        """No-op; workers are started separately."""
        logger.info("celery_backend_initialized")

    def stop(self) -> None:
        logger.info("celery_backend_stopped")

    def health(self) -> dict:
        """Ping workers."""
        try:
            stats = self._get_celery_app().control.inspect().stats()
        except Exception as e:
            return {"healthy": False, "message": f"Health check failed: {e}", "workers": []}

        if stats:
            return {
                "healthy": True,
                "message": f"{len(stats)} workers available",
                "workers": list(stats.keys()),
            }
        return {"healthy": False, "message": "No workers available", "workers": []}
