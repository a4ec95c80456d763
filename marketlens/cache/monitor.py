"""
Cache performance monitor.

Lightweight snapshot of store health, key distribution and request
deduplication effectiveness for operational dashboards.  Nothing here is
used for correctness decisions.
"""

from datetime import datetime, timezone

from ..utils.logging import get_logger
from .background import WriteBehind
from .dedupe import RequestQueue
from .store import KVStore

logger = get_logger(__name__)

KEY_PREFIXES = [
    "defi:protocol:",
    "defi:protocols:",
    "defi:children:",
    "token:detail:",
    "market:",
    "newly-listed:",
    "price-history:",
    "trending:",
    "global:",
]


async def get_cache_stats(store: KVStore, queue: RequestQueue, write_behind: WriteBehind | None = None) -> dict:
    """Return store, key-distribution and deduplication statistics."""
    try:
        health = await store.health_check()
        by_prefix = await store.keys_by_prefix(KEY_PREFIXES)
    except Exception as e:
        logger.warning("Cache stats unavailable", error=str(e))
        health = {"status": "unavailable", "reason": str(e)}
        by_prefix = {}

    stats = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "store": {
            **health,
            "keys": {
                "total": sum(by_prefix.values()),
                "byPrefix": by_prefix,
            },
        },
        "deduplication": queue.stats().to_dict(),
    }
    if write_behind is not None:
        stats["writeBehind"] = {
            "pending": write_behind.pending,
            "failures": write_behind.failures,
        }
    return stats
