"""
Batch population of unified records from a list fetch.

One list response yields many entities; each is merged into its own
unified record (so detail reads are pre-warmed) with one MGET and one
pipelined write instead of N round trips.
"""

import asyncio
from typing import Any, Callable, Iterable, Optional

from ..utils.logging import get_logger
from .merge import merge_entity_data
from .schema import DataSource
from .unified import UnifiedEntityCache

logger = get_logger(__name__)


async def populate_from_list(
    cache: UnifiedEntityCache,
    items: Iterable[Any],
    *,
    id_of: Callable[[dict], Optional[str]],
    transform: Optional[Callable[[Any, DataSource], dict]] = None,
    ttl: Optional[int] = None,
    now: Optional[int] = None,
) -> int:
    """Merge list items into their unified records.

    ``transform`` maps a raw upstream item to a record partial; without it
    items are taken to be partials already.  Returns the number of records
    written; 0 when nothing was written.
    """
    # keyed by cache key: ids that share a record collapse, later items win
    partials: dict[str, tuple[str, dict]] = {}
    for item in items:
        partial = transform(item, DataSource.LIST) if transform else item
        entity_id = id_of(partial)
        if not entity_id:
            continue
        partials[cache.key_for(entity_id)] = (entity_id, partial)

    if not partials:
        return 0

    existing = await cache.get_many([entity_id for entity_id, _ in partials.values()])
    batch = [
        (entity_id, merge_entity_data(existing.get(entity_id), partial, DataSource.LIST, cache.schema, now=now))
        for entity_id, partial in partials.values()
    ]

    if not await cache.set_many(batch, ttl):
        logger.warning("Batch population failed", entity=cache.schema.name, count=len(batch))
        return 0
    logger.debug("Batch populated unified records", entity=cache.schema.name, count=len(batch))
    return len(batch)


def schedule_population(
    cache: UnifiedEntityCache,
    items: list[Any],
    *,
    id_of: Callable[[dict], Optional[str]],
    transform: Optional[Callable[[Any, DataSource], dict]] = None,
    ttl: Optional[int] = None,
) -> asyncio.Task:
    """Run ``populate_from_list`` as a write-behind task."""
    return cache.write_behind.spawn(
        f"populate:{cache.schema.name}:{len(items)}",
        populate_from_list(cache, items, transform=transform, id_of=id_of, ttl=ttl),
    )
