"""Tests for the serving policy (read path and catalog-change path)."""

from unittest.mock import MagicMock

import pytest

from shardfeed.config import Settings
from shardfeed.errors import SiteNotFoundError
from shardfeed.jobs import TaskKind
from shardfeed.models import GenerationMeta, GenerationStatus, utc_now
from shardfeed.render import ERROR_ENVELOPE
from shardfeed.service import FeedService


def _queued(service):
    return [(task.task, task.params) for task in service.scheduler.pending()]


class TestServe:
    """Test ServingPolicy.serve()."""

    def test_cache_hit(self, service, add_products):
        add_products(1, 2)
        service.pipeline.run(1)

        response = service.policy.serve(1)

        assert response.status_code == 200
        assert response.source == "cache"
        assert response.body == service.cache.get_assembled(1)
        assert response.headers["Cache-Control"] == "public, max-age=3600"
        assert response.media_type.startswith("application/xml")
        assert _queued(service) == []

    def test_generating_returns_503_without_enqueue(self, service):
        service.cache.put_meta(1, GenerationMeta(status=GenerationStatus.GENERATING, started_at=utc_now()))

        response = service.policy.serve(1)

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "60"
        assert b"currently being generated" in response.body
        assert _queued(service) == []

    def test_cold_cache_queues_rebuild(self, service, add_products):
        add_products(1)

        response = service.policy.serve(1)

        assert response.status_code == 503
        assert response.source == "generating"
        assert _queued(service) == [(TaskKind.GENERATE_FEED.value, {"site_id": 1})]

    def test_partial_shards_served(self, service, add_products):
        add_products(1, 2, 3)
        service.pipeline.run(1)
        service.cache.invalidate_shard(1, 2)

        response = service.policy.serve(1)

        assert response.status_code == 200
        assert response.source == "shards"
        assert b"SKU-1-1" in response.body
        assert b"SKU-3-1" in response.body
        assert b"SKU-2-1" not in response.body
        assert service.cache.get_assembled(1) is None
        assert _queued(service) == []

    def test_three_of_hundred_shards(self, store, catalog, add_products):
        service = FeedService(Settings(_env_file=None, shard_count=100), store=store, catalog=catalog)
        add_products(5, 17, 42, 60, 142)
        for index in (5, 17, 42):
            service.regenerator.regenerate(1, index)

        response = service.policy.serve(1)

        assert response.status_code == 200
        for sku in (b"SKU-5-1", b"SKU-17-1", b"SKU-42-1", b"SKU-142-1"):
            assert sku in response.body
        assert b"SKU-60-1" not in response.body
        assert service.scheduler.pending() == []
        assert service.cache.get_status_summary(1).present_shards == 3

    def test_full_shard_set_reassembled_and_stored(self, service, add_products):
        add_products(1, 2)
        service.pipeline.run(1)
        service.regenerator.regenerate(1, 1)  # drops the assembled artifact
        assert service.cache.get_assembled(1) is None

        response = service.policy.serve(1)

        assert response.status_code == 200
        assert service.cache.get_assembled(1) == response.body

    def test_unknown_site_raises(self, service):
        with pytest.raises(SiteNotFoundError):
            service.policy.serve(404)

    def test_internal_failure_returns_error_envelope(self, service, add_products):
        add_products(1)
        service.regenerator.regenerate(1, 1)

        def broken(site, items):
            raise RuntimeError("renderer down")

        service.assembler.renderer = broken

        response = service.policy.serve(1)

        assert response.status_code == 500
        assert response.body == ERROR_ENVELOPE
        assert "Cache-Control" not in response.headers


class TestRequestRebuild:
    """Test request_rebuild() and force_regenerate()."""

    def test_skips_when_generating(self, service):
        service.cache.put_meta(1, GenerationMeta(status=GenerationStatus.GENERATING, started_at=utc_now()))
        assert service.policy.request_rebuild(1) is False
        assert _queued(service) == []

    def test_force_queues_even_when_generating(self, service):
        service.cache.put_meta(1, GenerationMeta(status=GenerationStatus.GENERATING, started_at=utc_now()))
        assert service.policy.request_rebuild(1, force=True) is True
        assert len(_queued(service)) == 1

    def test_force_regenerate_drops_cache(self, service, add_products):
        add_products(1)
        service.pipeline.run(1)

        assert service.policy.force_regenerate(1) is True

        assert service.cache.get_assembled(1) is None
        assert service.cache.present_shards(1) == []
        assert _queued(service) == [(TaskKind.GENERATE_FEED.value, {"site_id": 1})]

    def test_uses_injected_scheduler(self, service):
        scheduler = MagicMock()
        scheduler.enqueue.return_value = "task-1"
        service.policy.scheduler = scheduler

        service.policy.request_rebuild(1)

        scheduler.enqueue.assert_called_once_with("generate_feed", {"site_id": 1})


class TestCatalogChange:
    """Test on_catalog_change()."""

    def test_invalidates_only_owner_shard(self, service, add_products):
        add_products(1, 2, 3)
        service.pipeline.run(1)

        index = service.policy.on_catalog_change(1, owner_id=7)

        assert index == 3
        assert service.cache.present_shards(1) == [0, 1, 2]
        assert service.cache.get_assembled(1) is None
        assert _queued(service) == [
            (TaskKind.REGENERATE_SHARD.value, {"site_id": 1, "shard_index": 3})
        ]

    def test_unknown_site(self, service):
        with pytest.raises(SiteNotFoundError):
            service.policy.on_catalog_change(9, owner_id=1)

    def test_edit_reaches_feed_after_regeneration(self, service, add_products, catalog, make_product):
        add_products(1, 2)
        service.pipeline.run(1)
        catalog.upsert_product(1, make_product(2, title="Renamed Widget"))

        service.policy.on_catalog_change(1, owner_id=2)
        partial = service.policy.serve(1)
        service.scheduler.run_pending()
        full = service.policy.serve(1)

        assert partial.status_code == 200
        assert b"Renamed Widget" not in partial.body
        assert full.status_code == 200
        assert b"Renamed Widget" in full.body
        assert service.cache.get_meta(1).status is GenerationStatus.COMPLETE


class TestEndToEnd:
    """Cold read, queued rebuild, then a cache hit."""

    def test_cold_read_then_cache_hit(self, service, add_products):
        add_products(*range(1, 31))

        first = service.policy.serve(1)
        ran = service.scheduler.run_pending()
        second = service.policy.serve(1)

        assert first.status_code == 503
        # generate_feed, then batches at offsets 0, 10, 20 and 30; the last one finishes
        assert ran == 5
        assert second.status_code == 200
        assert second.source == "cache"
        assert second.body.count(b"<item>") == 30
        assert service.scheduler.failed == 0
