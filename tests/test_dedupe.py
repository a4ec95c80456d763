"""
Tests for the in-flight request deduplication queue.
"""

import asyncio

import pytest

from marketlens.cache import RequestQueue


class TestRequestQueue:
    """Concurrent callers share one producer run."""

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_run(self):
        queue = RequestQueue()
        calls = 0
        release = asyncio.Event()

        async def producer():
            nonlocal calls
            calls += 1
            await release.wait()
            return {"value": 42}

        waiters = [asyncio.ensure_future(queue.dedupe("k", producer)) for _ in range(5)]
        await asyncio.sleep(0)
        assert queue.is_pending("k")
        release.set()
        results = await asyncio.gather(*waiters)

        assert calls == 1
        assert all(r == {"value": 42} for r in results)
        assert not queue.is_pending("k")

    @pytest.mark.asyncio
    async def test_failure_reaches_every_waiter_and_releases_key(self):
        queue = RequestQueue()
        calls = 0

        async def failing():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            raise RuntimeError("boom")

        results = await asyncio.gather(
            queue.dedupe("k", failing),
            queue.dedupe("k", failing),
            return_exceptions=True,
        )
        assert calls == 1
        assert all(isinstance(r, RuntimeError) for r in results)
        assert not queue.is_pending("k")

        # The key is free again, so the next call runs a fresh producer
        async def ok():
            return "fresh"

        assert await queue.dedupe("k", ok) == "fresh"

    @pytest.mark.asyncio
    async def test_sequential_calls_run_again(self):
        queue = RequestQueue()
        calls = 0

        async def producer():
            nonlocal calls
            calls += 1
            return calls

        assert await queue.dedupe("k", producer) == 1
        assert await queue.dedupe("k", producer) == 2

    @pytest.mark.asyncio
    async def test_distinct_keys_do_not_share(self):
        queue = RequestQueue()

        async def make(v):
            await asyncio.sleep(0.01)
            return v

        a, b = await asyncio.gather(
            queue.dedupe("a", lambda: make("A")),
            queue.dedupe("b", lambda: make("B")),
        )
        assert (a, b) == ("A", "B")
        assert queue.stats().deduped == 0

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_producer(self):
        queue = RequestQueue()
        release = asyncio.Event()

        async def producer():
            await release.wait()
            return "done"

        first = asyncio.ensure_future(queue.dedupe("k", producer))
        second = asyncio.ensure_future(queue.dedupe("k", producer))
        await asyncio.sleep(0)
        first.cancel()
        await asyncio.sleep(0)
        release.set()

        assert await second == "done"
        assert first.cancelled()

    @pytest.mark.asyncio
    async def test_empty_key_rejected(self):
        queue = RequestQueue()

        async def producer():
            return 1

        with pytest.raises(ValueError):
            await queue.dedupe("", producer)


class TestDedupeStats:
    """Counters and savings percentage."""

    def test_empty_stats(self):
        stats = RequestQueue().stats()
        assert stats.total == 0
        assert stats.savings_percent == 0.0

    @pytest.mark.asyncio
    async def test_counts_deduped_calls(self):
        queue = RequestQueue()

        async def producer():
            await asyncio.sleep(0.01)
            return 1

        await asyncio.gather(*(queue.dedupe("k", producer) for _ in range(3)))
        stats = queue.stats()
        assert stats.total == 3
        assert stats.deduped == 2
        assert stats.in_flight == 0
        assert stats.savings_percent == 66.7
        assert stats.to_dict() == {"total": 3, "deduped": 2, "inFlight": 0, "savingsPercent": 66.7}

    @pytest.mark.asyncio
    async def test_clear_resets(self):
        queue = RequestQueue()

        async def producer():
            return 1

        await queue.dedupe("k", producer)
        queue.clear()
        assert queue.stats().total == 0
