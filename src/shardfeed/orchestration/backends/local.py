"""LocalScheduler - in-process queue backend."""

import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from shardfeed.models import utc_now
from shardfeed.observability import get_logger

logger = get_logger(__name__)

DispatchFn = Callable[[str, dict[str, Any]], Any]


@dataclass
class QueuedTask:
    id: str
    task: str
    params: dict[str, Any]
    enqueued_at: datetime = field(default_factory=utc_now)


class LocalScheduler:
    """
    In-process scheduler backed by a FIFO queue.

    Tasks are drained explicitly with :meth:`run_pending` (tests, the
    ``worker-run`` command) or continuously by a background thread after
    :meth:`start`. A failing task is logged and dropped; it does not stop
    the queue.
    """

    name = "local"

    def __init__(self, dispatch_fn: DispatchFn, poll_interval: float = 1.0):
        self._dispatch_fn = dispatch_fn
        self.poll_interval = poll_interval

        self._queue: deque[QueuedTask] = deque()
        self._lock = threading.Lock()
        self._running = False
        self._poll_thread: threading.Thread | None = None
        self.completed = 0
        self.failed = 0

    def enqueue(self, task: str, params: dict[str, Any]) -> str:
        queued = QueuedTask(id=str(uuid.uuid4()), task=task, params=dict(params))
        with self._lock:
            self._queue.append(queued)
        logger.debug("task_queued", task=task, task_id=queued.id, **params)
        return queued.id

    def pending(self) -> list[QueuedTask]:
        with self._lock:
            return list(self._queue)

    def clear(self) -> None:
        with self._lock:
            self._queue.clear()

    def run_pending(self, max_tasks: int | None = None) -> int:
        """Run queued tasks, including ones queued while draining.

        Returns:
            Number of tasks run.
        """
        ran = 0
        while max_tasks is None or ran < max_tasks:
            with self._lock:
                if not self._queue:
                    break
                queued = self._queue.popleft()
            self._run(queued)
            ran += 1
        return ran

    def _run(self, queued: QueuedTask) -> None:
        log = logger.bind(task=queued.task, task_id=queued.id)
        try:
            self._dispatch_fn(queued.task, queued.params)
        except Exception as e:
            self.failed += 1
            log.error("task_failed", error=str(e), params=queued.params)
            return
        self.completed += 1
        log.debug("task_completed")

    def start(self) -> None:
        """Start the background drain loop."""
        if self._running:
            logger.warning("backend_already_running")
            return

        logger.info("backend_starting", backend=self.name, poll_interval=self.poll_interval)
        self._running = True
        self._poll_thread = threading.Thread(target=self._poll_loop, daemon=True)
        self._poll_thread.start()

    def stop(self) -> None:
        """Stop the backend gracefully."""
        if not self._running:
            return

        logger.info("backend_stopping")
        self._running = False
        if self._poll_thread:
            self._poll_thread.join(timeout=5.0)
        logger.info("backend_stopped")

    def health(self) -> dict:
        return {
            "healthy": True,
            "message": "running" if self._running else "idle",
            "queued": len(self._queue),
            "completed": self.completed,
            "failed": self.failed,
        }

    def _poll_loop(self) -> None:
        logger.info("poll_loop_started")
        while self._running:
            self.run_pending()
            time.sleep(self.poll_interval)
        logger.info("poll_loop_stopped")
