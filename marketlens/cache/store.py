"""
Key-value store backends for the cache layer.

``RedisStore`` is the durable backing store shared by all API instances.
It degrades gracefully: if Redis is down or unconfigured, reads return None
and writes report failure, so callers fall through to their producers.

``InMemoryStore`` is a process-local store with the same interface, used
when no Redis URL is configured and in tests.
"""

import fnmatch
import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Optional

from ..utils.logging import get_logger

logger = get_logger(__name__)


def _serialize_default(obj):
    """JSON serializer for Decimal and Enum types."""
    if isinstance(obj, Decimal):
        return str(obj)
    if hasattr(obj, "value"):  # Enum
        return obj.value
    raise TypeError(f"Object of type {type(obj)} is not JSON serializable")


def dumps(value: Any) -> str:
    return json.dumps(value, default=_serialize_default)


@dataclass
class StoreEntry:
    """One entry of a batched write."""
    key: str
    value: Any
    ttl: int


class KVStore(ABC):
    """Interface consumed by the cache layer.

    Single-key operations are atomic; multi-key operations are not
    transactional.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the decoded value, or None when absent/expired."""
        ...

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int) -> bool:
        """Store ``value`` under ``key`` for ``ttl`` seconds."""
        ...

    @abstractmethod
    async def mget(self, keys: list[str]) -> dict[str, Optional[Any]]:
        """Return a mapping with an entry for every requested key."""
        ...

    @abstractmethod
    async def mset(self, entries: Iterable[StoreEntry]) -> bool:
        """Write all entries in one round trip, each with its own TTL."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        ...

    @abstractmethod
    async def ttl(self, key: str) -> int:
        """Remaining TTL in seconds; -2 when missing, -1 when no expiry."""
        ...

    @abstractmethod
    async def delete_pattern(self, pattern: str) -> int:
        ...

    @abstractmethod
    async def health_check(self) -> dict:
        ...

    async def keys_by_prefix(self, prefixes: list[str]) -> dict[str, int]:
        """Count keys per namespace prefix (diagnostic only)."""
        return {}

    async def close(self) -> None:
        return None


class RedisStore(KVStore):
    """Async Redis store with JSON values.

    All public methods gracefully degrade: get methods return None and set
    methods return False when Redis is unavailable.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        pool_size: int = 20,
        socket_timeout: float = 5.0,
        client=None,
    ):
        self._redis_url = redis_url
        self._pool_size = pool_size
        self._socket_timeout = socket_timeout
        self._redis = client
        self._available = client is not None
        self._hits = 0
        self._misses = 0

    @property
    def is_available(self) -> bool:
        return self._available

    async def connect(self) -> None:
        """Connect to Redis. Logs warning and continues if unavailable."""
        if self._redis is not None:
            return
        if not self._redis_url:
            logger.info("Redis cache disabled (REDIS_URL not set)")
            return

        try:
            import redis.asyncio as aioredis

            self._redis = aioredis.from_url(
                self._redis_url,
                decode_responses=True,
                socket_timeout=self._socket_timeout,
                socket_connect_timeout=self._socket_timeout,
                retry_on_timeout=True,
                max_connections=self._pool_size,
            )
            # Verify connection
            await self._redis.ping()
            self._available = True
            logger.info("Redis cache connected", url=self._redis_url.split("@")[-1])
        except Exception as e:
            logger.warning("Redis cache unavailable, running without cache", error=str(e))
            self._redis = None
            self._available = False

    async def close(self) -> None:
        """Close Redis connection."""
        if self._redis:
            try:
                await self._redis.aclose()
            except Exception as e:
                logger.debug("Redis close failed", error=str(e))
            self._redis = None
            self._available = False
            logger.info("Redis cache closed")

    def cache_stats(self) -> dict:
        """Return hit/miss statistics."""
        total = self._hits + self._misses
        return {
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / total * 100, 1) if total > 0 else 0.0,
            "total": total,
        }

    async def health_check(self) -> dict:
        """Return cache health status."""
        if not self._available or not self._redis:
            return {"status": "unavailable", "reason": "not connected", **self.cache_stats()}
        try:
            await self._redis.ping()
            info = await self._redis.info("memory")
            return {
                "status": "healthy",
                "backend": "redis",
                "used_memory": info.get("used_memory_human", "unknown"),
                **self.cache_stats(),
            }
        except Exception as e:
            return {"status": "unhealthy", "reason": str(e), **self.cache_stats()}

    def _decode(self, key: str, raw: Optional[str]) -> Optional[Any]:
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.debug("Cache deserialize failed", key=key, error=str(e))
            return None

    # ------------------------------------------------------------------
    # Single key
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Optional[Any]:
        if not self._available or not self._redis:
            self._misses += 1
            return None
        try:
            raw = await self._redis.get(key)
        except Exception as e:
            self._misses += 1
            logger.debug("Redis GET failed", key=key, error=str(e))
            return None
        value = self._decode(key, raw)
        if value is None:
            self._misses += 1
        else:
            self._hits += 1
        return value

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        if not self._available or not self._redis:
            return False
        try:
            data = dumps(value)
        except (TypeError, ValueError) as e:
            logger.warning("Cache serialize failed", key=key, error=str(e))
            return False
        try:
            await self._redis.set(key, data, ex=ttl)
            return True
        except Exception as e:
            logger.debug("Redis SET failed", key=key, error=str(e))
            return False

    async def delete(self, key: str) -> bool:
        if not self._available or not self._redis:
            return False
        try:
            await self._redis.delete(key)
            return True
        except Exception as e:
            logger.debug("Redis DEL failed", key=key, error=str(e))
            return False

    async def ttl(self, key: str) -> int:
        if not self._available or not self._redis:
            return -2
        try:
            return int(await self._redis.ttl(key))
        except Exception as e:
            logger.debug("Redis TTL failed", key=key, error=str(e))
            return -2

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    async def mget(self, keys: list[str]) -> dict[str, Optional[Any]]:
        result: dict[str, Optional[Any]] = {k: None for k in keys}
        if not keys or not self._available or not self._redis:
            return result
        try:
            raws = await self._redis.mget(keys)
        except Exception as e:
            logger.debug("Redis MGET failed", count=len(keys), error=str(e))
            return result
        for key, raw in zip(keys, raws):
            value = self._decode(key, raw)
            result[key] = value
            if value is None:
                self._misses += 1
            else:
                self._hits += 1
        return result

    async def mset(self, entries: Iterable[StoreEntry]) -> bool:
        """Write entries with one pipelined round trip of ``SET key value EX ttl``.

        Individual key errors are logged; the return value only reflects
        whether the pipeline itself executed.
        """
        entries = list(entries)
        if not entries:
            return True
        if not self._available or not self._redis:
            return False
        try:
            pipe = self._redis.pipeline(transaction=False)
            for entry in entries:
                pipe.set(entry.key, dumps(entry.value), ex=entry.ttl)
            results = await pipe.execute(raise_on_error=False)
        except Exception as e:
            logger.warning("Redis pipeline MSET failed", count=len(entries), error=str(e))
            return False
        for entry, res in zip(entries, results):
            if isinstance(res, Exception):
                logger.warning("Redis MSET key failed", key=entry.key, error=str(res))
        return True

    async def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching a pattern. Returns count deleted."""
        if not self._available or not self._redis:
            return 0
        try:
            count = 0
            async for key in self._redis.scan_iter(match=pattern, count=200):
                await self._redis.delete(key)
                count += 1
            return count
        except Exception as e:
            logger.warning("Redis pattern delete failed", pattern=pattern, error=str(e))
            return 0

    async def keys_by_prefix(self, prefixes: list[str]) -> dict[str, int]:
        counts = {p: 0 for p in prefixes}
        if not self._available or not self._redis:
            return counts
        try:
            for prefix in prefixes:
                async for _ in self._redis.scan_iter(match=f"{prefix}*", count=500):
                    counts[prefix] += 1
        except Exception as e:
            logger.debug("Redis key scan failed", error=str(e))
        return counts


class InMemoryStore(KVStore):
    """Process-local store with per-key expiry.

    Values are stored as JSON text, so stored records never alias objects
    held by callers.
    """

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._data: dict[str, tuple[float, str]] = {}

    def _live(self, key: str) -> Optional[tuple[float, str]]:
        item = self._data.get(key)
        if item is None:
            return None
        if item[0] <= self._clock():
            self._data.pop(key, None)
            return None
        return item

    async def get(self, key: str) -> Optional[Any]:
        item = self._live(key)
        return json.loads(item[1]) if item else None

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        self._data[key] = (self._clock() + ttl, dumps(value))
        return True

    async def mget(self, keys: list[str]) -> dict[str, Optional[Any]]:
        return {k: await self.get(k) for k in keys}

    async def mset(self, entries: Iterable[StoreEntry]) -> bool:
        for entry in entries:
            await self.set(entry.key, entry.value, entry.ttl)
        return True

    async def delete(self, key: str) -> bool:
        self._data.pop(key, None)
        return True

    async def ttl(self, key: str) -> int:
        item = self._live(key)
        if item is None:
            return -2
        return max(0, int(item[0] - self._clock()))

    async def delete_pattern(self, pattern: str) -> int:
        doomed = [k for k in self._data if fnmatch.fnmatchcase(k, pattern)]
        for k in doomed:
            self._data.pop(k, None)
        return len(doomed)

    async def keys_by_prefix(self, prefixes: list[str]) -> dict[str, int]:
        live = [k for k in list(self._data) if self._live(k)]
        return {p: sum(1 for k in live if k.startswith(p)) for p in prefixes}

    async def health_check(self) -> dict:
        return {"status": "healthy", "backend": "memory", "keys": len(self._data)}


def create_store(settings) -> KVStore:
    """Pick the backend from settings; call ``connect()`` on Redis stores before use."""
    if settings.redis_url:
        return RedisStore(
            redis_url=settings.redis_url,
            pool_size=settings.redis_pool_size,
            socket_timeout=settings.redis_socket_timeout,
        )
    return InMemoryStore()
