"""SchedulerBackend protocol definition."""

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class SchedulerBackend(Protocol):
    """
    Protocol for background task backends.

    Backends accept fire-and-forget work items. Delivery is at-least-once
    and unordered; the feed core never waits on a queued task and never
    deduplicates one.
    """

    name: str

    def enqueue(self, task: str, params: dict[str, Any]) -> str:
        """
        Queue a task.

        Args:
            task: Task kind, e.g. ``"regenerate_shard"``
            params: JSON-serializable keyword arguments for the task

        Returns:
            Backend-specific task ID
        """
        ...

    def health(self) -> dict:
        """
        Check backend health.

        Returns:
            Health status dict with at least {"healthy": bool, "message": str}
        """
        ...

    def start(self) -> None:
        """Start the backend (e.g., begin polling for work)."""
        ...

    def stop(self) -> None:
        """Stop the backend gracefully."""
        ...
