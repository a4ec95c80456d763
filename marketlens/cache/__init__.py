"""
Cache layer: KV store backends, request deduplication and the read-through
wrapper used by every upstream read.
"""

from .background import WriteBehind
from .dedupe import DedupeStats, RequestQueue
from .keys import CacheTTL, cache_keys, normalize_entity_id
from .read_through import BatchCacheConfig, ReadThroughCache
from .store import InMemoryStore, KVStore, RedisStore, StoreEntry, create_store

__all__ = [
    "BatchCacheConfig",
    "CacheTTL",
    "DedupeStats",
    "InMemoryStore",
    "KVStore",
    "ReadThroughCache",
    "RedisStore",
    "RequestQueue",
    "StoreEntry",
    "WriteBehind",
    "cache_keys",
    "create_store",
    "normalize_entity_id",
]
