"""
Read-through cache wrapper.

``ReadThroughCache.with_cache`` is the single choke point for every
expensive or rate-limited upstream read:

- Hit: the stored value is returned and the producer is not called.
- Miss: the producer runs once per key across concurrent callers (via
  ``RequestQueue``), bounded by the producer timeout, and its result is
  written back as a write-behind task.
- Failure: the caller's fallback is returned when one was supplied,
  otherwise the producer's exception propagates.

Staleness is binary (present or expired) unless a call site opts into lazy
revalidation with ``refresh_ratio``: a hit in the last ``refresh_ratio`` of
its lifetime is returned immediately and refreshed in the background.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from ..exceptions import CacheConfigError, ProducerTimeoutError
from ..utils.logging import get_logger
from .background import WriteBehind
from .dedupe import RequestQueue
from .store import KVStore, StoreEntry

logger = get_logger(__name__)

T = TypeVar("T")

Producer = Callable[[], Awaitable[T]]


@dataclass
class BatchCacheConfig(Generic[T]):
    """Cache individual items of a produced result under their own keys."""
    extract_items: Callable[[T], list]
    item_key: Callable[[Any], str]
    transform_item: Optional[Callable[[Any], Any]] = None
    item_ttl: Optional[int] = None


def validate_key(key: str) -> str:
    if not isinstance(key, str) or not key.strip():
        raise CacheConfigError(f"Cache key must be a non-empty string, got {key!r}")
    return key


def validate_ttl(ttl: int) -> int:
    if isinstance(ttl, bool) or not isinstance(ttl, int) or ttl <= 0:
        raise CacheConfigError(f"TTL must be a positive number of seconds, got {ttl!r}")
    return ttl


class ReadThroughCache:
    """Read-through cache over a ``KVStore`` with stampede protection."""

    def __init__(
        self,
        store: KVStore,
        queue: RequestQueue,
        write_behind: WriteBehind,
        producer_timeout: Optional[float] = 30.0,
    ):
        self.store = store
        self.queue = queue
        self.write_behind_tasks = write_behind
        self.producer_timeout = producer_timeout

    async def with_cache(
        self,
        key: str,
        ttl: int,
        producer: Producer,
        fallback: Optional[T] = None,
        *,
        refresh_ratio: float = 0.0,
        batch: Optional[BatchCacheConfig] = None,
    ) -> T:
        """Return the cached value for ``key`` or produce, cache and return it.

        Args:
            key: Canonical cache key (see ``cache.keys``).
            ttl: Seconds the produced value stays cached; must be > 0.
            producer: Zero-argument coroutine function fetching fresh data.
            fallback: Returned instead of raising when production fails.
                ``None`` means no fallback; empty containers and zero values
                are valid fallbacks.
            refresh_ratio: Fraction of ``ttl`` below which a hit triggers a
                background refresh. ``0`` disables revalidation.
            batch: Optional per-item caching of the produced result.
        """
        validate_key(key)
        validate_ttl(ttl)
        if not 0.0 <= refresh_ratio < 1.0:
            raise CacheConfigError(f"refresh_ratio must be in [0, 1), got {refresh_ratio!r}")

        cached = await self._read(key)
        if cached is not None:
            if refresh_ratio > 0:
                await self._maybe_revalidate(key, ttl, producer, refresh_ratio, batch)
            logger.debug("Cache HIT", key=key)
            return cached

        logger.debug("Cache MISS", key=key)
        try:
            return await self.queue.dedupe(key, lambda: self._produce_and_store(key, ttl, producer, batch))
        except Exception as e:
            if fallback is not None:
                logger.warning("Producer failed, serving fallback", key=key, error=str(e))
                return fallback
            logger.error("Producer failed", key=key, error=str(e))
            raise

    async def _read(self, key: str) -> Optional[Any]:
        # Store failures fail open to the producer path
        try:
            return await self.store.get(key)
        except Exception as e:
            logger.warning("Cache read failed, treating as miss", key=key, error=str(e))
            return None

    async def _produce_and_store(
        self,
        key: str,
        ttl: int,
        producer: Producer,
        batch: Optional[BatchCacheConfig],
    ) -> Any:
        value = await self.run_producer(key, producer)
        # Only the caller that actually ran the producer writes
        self.write_behind(key, value, ttl)
        if batch is not None:
            self.write_behind_tasks.spawn(f"batch:{key}", self._cache_items(value, batch, ttl))
        return value

    async def run_producer(self, key: str, producer: Producer) -> Any:
        """Invoke ``producer`` bounded by the producer timeout."""
        if not self.producer_timeout:
            return await producer()
        try:
            return await asyncio.wait_for(producer(), timeout=self.producer_timeout)
        except asyncio.TimeoutError:
            raise ProducerTimeoutError(key, self.producer_timeout) from None

    async def _maybe_revalidate(
        self,
        key: str,
        ttl: int,
        producer: Producer,
        refresh_ratio: float,
        batch: Optional[BatchCacheConfig],
    ) -> None:
        try:
            remaining = await self.store.ttl(key)
        except Exception as e:
            logger.debug("Cache TTL lookup failed", key=key, error=str(e))
            return
        if not 0 < remaining < ttl * refresh_ratio:
            return
        if self.queue.is_pending(key):
            return
        logger.debug("Stale cache, refreshing in background", key=key, remaining=remaining, ttl=ttl)
        self.write_behind_tasks.spawn(
            f"refresh:{key}",
            self.queue.dedupe(key, lambda: self._produce_and_store(key, ttl, producer, batch)),
        )

    async def _cache_items(self, result: Any, batch: BatchCacheConfig, ttl: int) -> bool:
        items = batch.extract_items(result) or []
        if not items:
            return True
        item_ttl = validate_ttl(batch.item_ttl or ttl)
        entries = [
            StoreEntry(
                key=batch.item_key(item),
                value=batch.transform_item(item) if batch.transform_item else item,
                ttl=item_ttl,
            )
            for item in items
        ]
        ok = await self.store.mset(entries)
        if ok:
            logger.debug("Batch cached items", count=len(entries))
        return ok

    def write_behind(self, key: str, value: Any, ttl: int) -> asyncio.Task:
        """Write ``value`` without blocking the caller; failures are logged."""
        validate_ttl(ttl)
        return self.write_behind_tasks.spawn(f"set:{key}", self.store.set(key, value, ttl))

    async def invalidate(self, key: str) -> bool:
        return await self.store.delete(key)
