"""
Tests for the read-through cache wrapper.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from marketlens.cache import BatchCacheConfig, InMemoryStore, ReadThroughCache, RequestQueue, WriteBehind
from marketlens.exceptions import CacheConfigError, ProducerTimeoutError


class TestWithCache:
    """Hit, miss and failure paths."""

    @pytest.mark.asyncio
    async def test_miss_produces_and_stores(self, read_through, store, write_behind):
        producer = AsyncMock(return_value={"tvl": 1})

        result = await read_through.with_cache("k", 60, producer)
        await write_behind.drain()

        assert result == {"tvl": 1}
        assert await store.get("k") == {"tvl": 1}
        assert 0 < await store.ttl("k") <= 60
        producer.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_hit_skips_producer(self, read_through, store):
        await store.set("k", [1, 2], 60)
        producer = AsyncMock(return_value=[9])

        assert await read_through.with_cache("k", 60, producer) == [1, 2]
        producer.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_expired_entry_is_a_miss(self, read_through, store, clock, write_behind):
        await store.set("k", "old", 60)
        clock.advance(61)
        producer = AsyncMock(return_value="new")

        assert await read_through.with_cache("k", 60, producer) == "new"
        await write_behind.drain()
        assert await store.get("k") == "new"

    @pytest.mark.asyncio
    async def test_concurrent_misses_run_producer_once(self, read_through):
        calls = 0

        async def producer():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return {"price": 0.85}

        results = await asyncio.gather(*(read_through.with_cache("jup", 60, producer) for _ in range(10)))

        assert calls == 1
        assert results == [{"price": 0.85}] * 10
        assert read_through.queue.stats().deduped == 9

    @pytest.mark.asyncio
    async def test_failure_with_fallback(self, read_through, store, write_behind):
        producer = AsyncMock(side_effect=RuntimeError("upstream down"))

        assert await read_through.with_cache("k", 60, producer, fallback=[]) == []
        await write_behind.drain()
        assert await store.get("k") is None

    @pytest.mark.asyncio
    async def test_zero_is_a_valid_fallback(self, read_through):
        producer = AsyncMock(side_effect=RuntimeError("upstream down"))
        assert await read_through.with_cache("k", 60, producer, fallback=0) == 0

    @pytest.mark.asyncio
    async def test_failure_without_fallback_propagates(self, read_through):
        producer = AsyncMock(side_effect=RuntimeError("upstream down"))

        with pytest.raises(RuntimeError, match="upstream down"):
            await read_through.with_cache("k", 60, producer)
        assert not read_through.queue.is_pending("k")

    @pytest.mark.asyncio
    async def test_failure_is_not_cached(self, read_through, write_behind):
        producer = AsyncMock(side_effect=[RuntimeError("first"), "second"])

        assert await read_through.with_cache("k", 60, producer, fallback="fb") == "fb"
        assert await read_through.with_cache("k", 60, producer, fallback="fb") == "second"
        assert producer.await_count == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad_ttl", [0, -5, 1.5, True, None])
    async def test_invalid_ttl_rejected(self, read_through, bad_ttl):
        producer = AsyncMock(return_value=1)

        with pytest.raises(CacheConfigError):
            await read_through.with_cache("k", bad_ttl, producer)
        producer.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad_key", ["", "   ", None])
    async def test_invalid_key_rejected_despite_fallback(self, read_through, bad_key):
        producer = AsyncMock(return_value=1)

        with pytest.raises(CacheConfigError):
            await read_through.with_cache(bad_key, 60, producer, fallback="fb")
        producer.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_refresh_ratio_rejected(self, read_through):
        with pytest.raises(CacheConfigError):
            await read_through.with_cache("k", 60, AsyncMock(), refresh_ratio=1.0)

    @pytest.mark.asyncio
    async def test_store_read_failure_fails_open(self, queue, write_behind):
        store = InMemoryStore()
        store.get = AsyncMock(side_effect=ConnectionError("redis gone"))
        cache = ReadThroughCache(store, queue, write_behind)

        assert await cache.with_cache("k", 60, AsyncMock(return_value="fresh")) == "fresh"

    @pytest.mark.asyncio
    async def test_store_write_failure_does_not_fail_caller(self, queue, write_behind):
        store = InMemoryStore()
        store.set = AsyncMock(return_value=False)
        cache = ReadThroughCache(store, queue, write_behind)

        assert await cache.with_cache("k", 60, AsyncMock(return_value="fresh")) == "fresh"
        await write_behind.drain()
        assert write_behind.failures == 1


class TestProducerTimeout:
    """Hung producers are bounded."""

    @pytest.mark.asyncio
    async def test_timeout_uses_fallback(self, store, queue, write_behind):
        cache = ReadThroughCache(store, queue, write_behind, producer_timeout=0.05)

        async def hang():
            await asyncio.sleep(10)

        assert await cache.with_cache("k", 60, hang, fallback={"tokens": []}) == {"tokens": []}
        assert not queue.is_pending("k")

    @pytest.mark.asyncio
    async def test_timeout_without_fallback_raises(self, store, queue, write_behind):
        cache = ReadThroughCache(store, queue, write_behind, producer_timeout=0.05)

        async def hang():
            await asyncio.sleep(10)

        with pytest.raises(ProducerTimeoutError) as exc_info:
            await cache.with_cache("k", 60, hang)
        assert exc_info.value.key == "k"


class TestRevalidation:
    """Lazy background refresh near expiry."""

    @pytest.mark.asyncio
    async def test_fresh_hit_does_not_refresh(self, read_through, store):
        await store.set("k", "cached", 100)
        producer = AsyncMock(return_value="fresh")

        assert await read_through.with_cache("k", 100, producer, refresh_ratio=0.25) == "cached"
        await read_through.write_behind_tasks.drain()
        producer.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stale_hit_serves_cached_and_refreshes_once(self, read_through, store, clock):
        await store.set("k", "cached", 100)
        clock.advance(90)
        release = asyncio.Event()
        calls = 0

        async def producer():
            nonlocal calls
            calls += 1
            await release.wait()
            return "fresh"

        first = await read_through.with_cache("k", 100, producer, refresh_ratio=0.25)
        await asyncio.sleep(0)
        second = await read_through.with_cache("k", 100, producer, refresh_ratio=0.25)
        release.set()
        await read_through.write_behind_tasks.drain()

        assert (first, second) == ("cached", "cached")
        assert calls == 1
        assert await store.get("k") == "fresh"


class TestBatchCaching:
    """Per-item caching of produced lists."""

    @pytest.mark.asyncio
    async def test_items_cached_under_own_keys(self, read_through, store):
        producer = AsyncMock(return_value={"items": [{"id": "a", "v": 1}, {"id": "b", "v": 2}]})
        batch = BatchCacheConfig(
            extract_items=lambda r: r["items"],
            item_key=lambda item: f"item:{item['id']}",
            transform_item=lambda item: {"v": item["v"]},
            item_ttl=30,
        )

        await read_through.with_cache("list", 60, producer, batch=batch)
        await read_through.write_behind_tasks.drain()

        assert await store.get("item:a") == {"v": 1}
        assert await store.get("item:b") == {"v": 2}
        assert await store.ttl("item:a") <= 30

    @pytest.mark.asyncio
    async def test_batch_failure_does_not_fail_caller(self, queue, write_behind):
        store = InMemoryStore()
        store.mset = AsyncMock(side_effect=ConnectionError("pipeline down"))
        cache = ReadThroughCache(store, queue, write_behind)
        batch = BatchCacheConfig(extract_items=lambda r: r, item_key=lambda i: f"item:{i}")

        assert await cache.with_cache("list", 60, AsyncMock(return_value=[1, 2]), batch=batch) == [1, 2]
        await write_behind.drain()
        assert write_behind.failures == 1


class TestEndToEnd:
    """Two call sites for one logical resource share one upstream call."""

    @pytest.mark.asyncio
    async def test_shared_key_across_call_sites(self):
        from marketlens.cache import cache_keys

        store = InMemoryStore()
        write_behind = WriteBehind()
        cache = ReadThroughCache(store, RequestQueue(), write_behind)
        upstream = AsyncMock(return_value={"slug": "jupiter", "tvl": 1_500_000_000})

        async def detail_page():
            return await cache.with_cache(cache_keys.protocol("jupiter"), 900, upstream)

        async def sidebar():
            return await cache.with_cache(cache_keys.protocol("parent#Jupiter"), 900, upstream)

        a, b = await asyncio.gather(detail_page(), sidebar())
        await write_behind.drain()
        c = await sidebar()

        assert a == b == c
        upstream.assert_awaited_once()
