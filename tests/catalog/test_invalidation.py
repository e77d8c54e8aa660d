"""Tests for the invalidation coordinator and result cache."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from marketplace.errors import CacheStoreError, DocumentStoreError
from marketplace.services.cache_keys import CacheKeys
from marketplace.services.invalidation import InvalidationCoordinator, MutationType
from marketplace.services.kv_store import MemoryKeyValueStore
from marketplace.services.query_engine import ListQuery
from marketplace.services.result_cache import ResultCache
from tests.conftest import FailingKeyValueStore

KEYS = CacheKeys("prompts")


async def _populated_kv() -> MemoryKeyValueStore:
    kv = MemoryKeyValueStore()
    for key in [
        "prompts:results:limit=20:offset=0",
        "prompts:results:search=seo:limit=20:offset=0",
        "prompts:results:featured:10",
        "prompts:doc:abc",
        "prompts:doc:other",
        "prompts:category:Marketing",
        "prompts:category:Image",
        "prompts:category:Development",
        "prompts:categories:counts",
        "prompts:total:count",
        "ai_tools:results:limit=20:offset=0",
    ]:
        await kv.set(key, {"cached": True})
    return kv


class TestOnMutation:
    @pytest.mark.asyncio
    async def test_runs_every_step(self):
        kv = await _populated_kv()
        snapshots = AsyncMock()
        coordinator = InvalidationCoordinator(snapshots, kv, KEYS)

        report = await coordinator.on_mutation(
            MutationType.UPDATE, "abc", before_category="Marketing", after_category="Image"
        )

        assert report.ok
        assert report.completed == [
            "refresh_snapshot", "purge_results", "purge_document", "purge_categories", "purge_count",
        ]
        assert report.purged_results == 3
        snapshots.force_refresh.assert_awaited_once()
        assert await kv.keys() == [
            "ai_tools:results:limit=20:offset=0",
            "prompts:category:Development",
            "prompts:doc:other",
        ]

    @pytest.mark.asyncio
    async def test_same_category_purged_once(self):
        kv = await _populated_kv()
        kv.delete = AsyncMock(wraps=kv.delete)
        coordinator = InvalidationCoordinator(AsyncMock(), kv, KEYS)

        await coordinator.on_mutation(MutationType.LIKE, "abc", "Marketing", "Marketing")

        deleted = [c.args[0] for c in kv.delete.await_args_list]
        assert deleted.count("prompts:category:Marketing") == 1

    @pytest.mark.asyncio
    async def test_snapshot_failure_does_not_stop_purges(self):
        kv = await _populated_kv()
        snapshots = AsyncMock()
        snapshots.force_refresh.side_effect = DocumentStoreError("offline")
        coordinator = InvalidationCoordinator(snapshots, kv, KEYS)

        report = await coordinator.on_mutation(MutationType.CREATE, "new", after_category="Marketing")

        assert report.failed == ["refresh_snapshot"]
        assert await kv.get("prompts:results:limit=20:offset=0") is None
        assert await kv.get("prompts:total:count") is None

    @pytest.mark.asyncio
    async def test_cache_store_down_is_logged_not_raised(self):
        snapshots = AsyncMock()
        coordinator = InvalidationCoordinator(snapshots, FailingKeyValueStore(), KEYS)

        report = await coordinator.on_mutation(MutationType.DELETE, "abc", "Marketing")

        assert report.completed == ["refresh_snapshot"]
        assert report.failed == [
            "purge_results", "purge_document", "purge_categories", "purge_count",
        ]

    @pytest.mark.asyncio
    async def test_purge_all_is_scoped_to_resource(self):
        kv = await _populated_kv()
        coordinator = InvalidationCoordinator(AsyncMock(), kv, KEYS)
        assert await coordinator.purge_all() == 10
        assert await kv.keys() == ["ai_tools:results:limit=20:offset=0"]


class TestResultCache:
    @pytest.mark.asyncio
    async def test_put_then_get(self):
        cache = ResultCache(MemoryKeyValueStore(), "prompts", ttl_seconds=60)
        query = ListQuery(category="Marketing")
        await cache.put(query, {"prompts": [], "totalCount": 0})
        assert await cache.get(query) == {"prompts": [], "totalCount": 0}

    @pytest.mark.asyncio
    async def test_empty_page_is_a_hit(self):
        cache = ResultCache(MemoryKeyValueStore(), "prompts")
        await cache.put(ListQuery(search="zzz"), {"prompts": [], "totalCount": 0})
        assert await cache.get(ListQuery(search="zzz")) is not None

    @pytest.mark.asyncio
    async def test_store_failures_degrade(self):
        cache = ResultCache(FailingKeyValueStore(), "prompts")
        await cache.put(ListQuery(), {"prompts": []})
        assert await cache.get(ListQuery()) is None

    @pytest.mark.asyncio
    async def test_ttl_passed_through(self):
        kv = AsyncMock()
        cache = ResultCache(kv, "prompts", ttl_seconds=42)
        await cache.put(ListQuery(), {"prompts": []})
        kv.set.assert_awaited_once_with("prompts:results:limit=20:offset=0", {"prompts": []}, 42)

    @pytest.mark.asyncio
    async def test_unexpected_errors_propagate(self):
        kv = AsyncMock()
        kv.get.side_effect = CacheStoreError("down")
        assert await ResultCache(kv, "prompts").get(ListQuery()) is None
        kv.get.side_effect = TypeError("bug")
        with pytest.raises(TypeError):
            await ResultCache(kv, "prompts").get(ListQuery())
