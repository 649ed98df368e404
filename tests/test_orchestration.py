"""
Tests for shardfeed.orchestration and the job handlers.

Covers:
- LocalScheduler (queue, drain, failure counting, lifecycle)
- Batched full rebuild through the queue
- Scheduled rebuild and watchdog jobs
- CeleryScheduler dispatch by task name
- Celery beat schedule and task retry policy
"""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from celery.schedules import crontab

from shardfeed.celery_app import build_beat_schedule, cron_schedule
from shardfeed.config import Settings
from shardfeed.errors import SiteNotFoundError, StoreUnavailableError
from shardfeed.jobs import HANDLERS, TaskKind, run_task
from shardfeed.models import GenerationMeta, GenerationStatus, Site, utc_now
from shardfeed.orchestration import CeleryScheduler, LocalScheduler, create_scheduler


class TestLocalScheduler:
    """Test the in-process backend."""

    def test_enqueue_and_drain_in_order(self):
        calls = []
        scheduler = LocalScheduler(lambda task, params: calls.append((task, params)))

        first = scheduler.enqueue("a", {"n": 1})
        second = scheduler.enqueue("b", {"n": 2})

        assert first != second
        assert [t.task for t in scheduler.pending()] == ["a", "b"]
        assert scheduler.run_pending() == 2
        assert calls == [("a", {"n": 1}), ("b", {"n": 2})]
        assert scheduler.pending() == []

    def test_tasks_queued_while_draining_also_run(self):
        scheduler = LocalScheduler(lambda task, params: None)

        def dispatch(task, params):
            if params["n"] < 3:
                scheduler.enqueue(task, {"n": params["n"] + 1})

        scheduler._dispatch_fn = dispatch
        scheduler.enqueue("chain", {"n": 1})

        assert scheduler.run_pending() == 3

    def test_max_tasks(self):
        scheduler = LocalScheduler(lambda task, params: None)
        for n in range(5):
            scheduler.enqueue("t", {"n": n})

        assert scheduler.run_pending(max_tasks=2) == 2
        assert len(scheduler.pending()) == 3

    def test_failure_counted_and_queue_continues(self):
        def dispatch(task, params):
            if task == "bad":
                raise RuntimeError("nope")

        scheduler = LocalScheduler(dispatch)
        scheduler.enqueue("bad", {})
        scheduler.enqueue("good", {})

        assert scheduler.run_pending() == 2
        assert scheduler.failed == 1
        assert scheduler.completed == 1
        assert scheduler.health()["failed"] == 1

    def test_enqueue_copies_params(self):
        scheduler = LocalScheduler(lambda task, params: None)
        params = {"site_id": 1}
        scheduler.enqueue("t", params)
        params["site_id"] = 2

        assert scheduler.pending()[0].params == {"site_id": 1}

    def test_start_stop(self):
        scheduler = LocalScheduler(lambda task, params: None, poll_interval=0.01)
        scheduler.start()
        assert scheduler.health()["message"] == "running"
        scheduler.stop()
        assert scheduler.health()["message"] == "idle"

    def test_clear(self):
        scheduler = LocalScheduler(lambda task, params: None)
        scheduler.enqueue("t", {})
        scheduler.clear()
        assert scheduler.pending() == []


class TestCreateScheduler:
    """Test backend selection."""

    def test_local_by_default(self):
        scheduler = create_scheduler(Settings(_env_file=None), lambda task, params: None)
        assert isinstance(scheduler, LocalScheduler)

    def test_celery(self):
        scheduler = create_scheduler(Settings(_env_file=None, scheduler_backend="celery"), lambda t, p: None)
        assert isinstance(scheduler, CeleryScheduler)


class TestCeleryScheduler:
    """Test CeleryScheduler against a mocked Celery app."""

    def test_sends_task_by_name(self):
        app = MagicMock()
        app.send_task.return_value.id = "celery-123"
        scheduler = CeleryScheduler(celery_app=app)

        task_id = scheduler.enqueue("regenerate_shard", {"site_id": 1, "shard_index": 3})

        assert task_id == "celery-123"
        app.send_task.assert_called_once_with(
            "shardfeed.tasks.regenerate_shard", kwargs={"site_id": 1, "shard_index": 3}
        )

    def test_health_with_workers(self):
        app = MagicMock()
        app.control.inspect.return_value.stats.return_value = {"worker@a": {}}
        health = CeleryScheduler(celery_app=app).health()
        assert health["healthy"]
        assert health["workers"] == ["worker@a"]

    def test_health_without_workers(self):
        app = MagicMock()
        app.control.inspect.return_value.stats.return_value = None
        assert CeleryScheduler(celery_app=app).health()["healthy"] is False

    def test_health_on_broker_error(self):
        app = MagicMock()
        app.control.inspect.side_effect = ConnectionError("broker down")
        health = CeleryScheduler(celery_app=app).health()
        assert health["healthy"] is False
        assert "broker down" in health["message"]


class TestJobs:
    """Test the job handlers run through the local queue."""

    def test_handlers_cover_every_task_kind(self):
        assert set(HANDLERS) == {kind.value for kind in TaskKind}

    def test_unknown_task(self, service):
        with pytest.raises(KeyError):
            run_task(service, "launch_rockets", {})

    def test_batched_rebuild_chains_through_queue(self, service, add_products):
        add_products(*range(1, 26))

        result = run_task(service, TaskKind.GENERATE_FEED.value, {"site_id": 1})

        assert service.cache.get_meta(1).status is GenerationStatus.GENERATING
        pending = service.scheduler.pending()
        assert [(t.task, t.params) for t in pending] == [
            ("generate_feed_batch", {"site_id": 1, "offset": 0, "token": result["token"]})
        ]

        assert service.scheduler.run_pending() == 3  # offsets 0, 10, 20
        assert service.scheduler.failed == 0
        meta = service.cache.get_meta(1)
        assert meta.status is GenerationStatus.COMPLETE
        assert meta.item_count == 25

    def test_superseded_chain_stops(self, service, add_products):
        add_products(*range(1, 26))
        run_task(service, TaskKind.GENERATE_FEED.value, {"site_id": 1})
        service.scheduler.run_pending(max_tasks=1)
        run_task(service, TaskKind.GENERATE_FEED.value, {"site_id": 1})

        service.scheduler.run_pending()

        assert service.scheduler.failed == 0
        meta = service.cache.get_meta(1)
        assert meta.status is GenerationStatus.COMPLETE
        assert meta.item_count == 25

    def test_regenerate_shard_job(self, service, add_products):
        add_products(3)
        result = run_task(service, TaskKind.REGENERATE_SHARD.value, {"site_id": 1, "shard_index": 3})
        assert result == {"site_id": 1, "shard_index": 3, "item_count": 1, "stale": False}

    def test_generate_unknown_site(self, service):
        with pytest.raises(SiteNotFoundError):
            run_task(service, TaskKind.GENERATE_FEED.value, {"site_id": 77})

    def test_scheduled_rebuild_queues_missing_feeds(self, service, catalog, add_products):
        catalog.add_site(Site(id=2, name="Outlet", base_url="https://outlet.example.com"))
        catalog.add_site(Site(id=3, name="Busy", base_url="https://busy.example.com"))
        add_products(1)
        service.pipeline.run(1)
        service.cache.put_meta(3, GenerationMeta(status=GenerationStatus.GENERATING, started_at=utc_now()))

        result = run_task(service, TaskKind.SCHEDULED_REBUILD.value, {})

        assert result == {"queued": [2]}

    def test_watchdog_job(self, service, catalog):
        catalog.add_site(Site(id=2, name="Outlet", base_url="https://outlet.example.com"))
        service.cache.put_meta(
            2,
            GenerationMeta(status=GenerationStatus.GENERATING, started_at=utc_now() - timedelta(days=1)),
        )

        result = run_task(service, TaskKind.DEMOTE_STALE_GENERATIONS.value, {})

        assert result == {"demoted": [2]}
        assert service.cache.get_meta(2).status is GenerationStatus.ERROR


class TestCeleryConfig:
    """Test beat schedule construction."""

    def test_cron_schedule(self):
        assert cron_schedule("0 * * * *") == crontab(minute="0")
        assert cron_schedule("30 2 * * 1") == crontab(minute="30", hour="2", day_of_week="1")

    def test_beat_schedule(self):
        schedule = build_beat_schedule(Settings(_env_file=None, schedule_watchdog_interval_seconds=120))

        assert schedule["demote-stale-generations"]["task"] == "shardfeed.tasks.demote_stale_generations"
        assert schedule["demote-stale-generations"]["schedule"] == 120.0
        assert schedule["scheduled-feed-rebuild"]["task"] == "shardfeed.tasks.scheduled_rebuild"

    def test_rebuild_schedule_disabled(self):
        schedule = build_beat_schedule(Settings(_env_file=None, schedule_rebuild_enabled=False))
        assert "scheduled-feed-rebuild" not in schedule


class TestCeleryTasks:
    """Test the retry policy of the Celery task wrapper."""

    def _task(self, retries=0):
        task = MagicMock()
        task.request.id = "t-1"
        task.request.retries = retries
        task.retry.return_value = RuntimeError("retry scheduled")
        return task

    def test_retryable_error_is_retried(self, service, monkeypatch):
        from shardfeed import tasks

        def unavailable(service, task, params):
            raise StoreUnavailableError("redis down")

        monkeypatch.setattr(tasks, "run_task", unavailable)
        task = self._task(retries=2)

        with pytest.raises(RuntimeError, match="retry scheduled"):
            tasks._run(task, TaskKind.REGENERATE_SHARD, site_id=1, shard_index=0)

        assert task.retry.call_args.kwargs["countdown"] == 4

    def test_fatal_error_is_not_retried(self, service):
        from shardfeed import tasks

        task = self._task()
        with pytest.raises(SiteNotFoundError):
            tasks._run(task, TaskKind.GENERATE_FEED, site_id=99)
        task.retry.assert_not_called()

    def test_success_returns_handler_result(self, service, add_products):
        from shardfeed import tasks

        add_products(2)
        result = tasks._run(self._task(), TaskKind.REGENERATE_SHARD, site_id=1, shard_index=2)
        assert result["item_count"] == 1
