"""
Unified entity cache.

Each protocol/token has ONE cache record (``defi:protocol:<slug>``,
``token:detail:<address>``) that both the list feed and the overview feed
merge into.  Child/versioned protocol ids resolve to their base record via
``normalize_entity_id`` inside the schema's key builder.

Merges are read-modify-write without a lock: two concurrent merges for the
same entity may interleave so the later write is computed from a stale
snapshot and drops the earlier one's fields.  The next refresh cycle
repairs the record; this lost-update window is accepted.
"""

from typing import Any, Iterable, Mapping, Optional, Union

from ..cache.background import WriteBehind
from ..cache.read_through import validate_ttl
from ..cache.store import KVStore, StoreEntry
from ..utils.logging import get_logger
from .merge import merge_entity_data
from .schema import DataSource, EntitySchema

logger = get_logger(__name__)


class UnifiedEntityCache:
    """Store-backed unified records for one entity type."""

    def __init__(
        self,
        store: KVStore,
        schema: EntitySchema,
        write_behind: WriteBehind,
        default_ttl: int,
    ):
        self.store = store
        self.schema = schema
        self.write_behind = write_behind
        self.default_ttl = validate_ttl(default_ttl)

    def key_for(self, entity_id: str) -> str:
        return self.schema.key_for(entity_id)

    async def get(self, entity_id: str) -> Optional[dict]:
        """Get the unified record, or None when absent or unreadable."""
        try:
            record = await self.store.get(self.key_for(entity_id))
        except Exception as e:
            logger.error("Failed to get unified record", entity=self.schema.name, id=entity_id, error=str(e))
            return None
        if record is not None:
            logger.debug("Unified record hit", entity=self.schema.name, id=entity_id)
        return record

    async def set(self, entity_id: str, record: Mapping[str, Any], ttl: Optional[int] = None) -> bool:
        ttl = validate_ttl(ttl or self.default_ttl)
        try:
            ok = await self.store.set(self.key_for(entity_id), dict(record), ttl)
        except Exception as e:
            logger.error("Failed to cache unified record", entity=self.schema.name, id=entity_id, error=str(e))
            return False
        if ok:
            logger.debug("Cached unified record", entity=self.schema.name, id=entity_id)
        return ok

    async def get_many(self, entity_ids: list[str]) -> dict[str, Optional[dict]]:
        """Batch get with one MGET.

        Every input id gets an entry, in input order; missing records and
        store failures map to None.
        """
        result: dict[str, Optional[dict]] = {}
        if not entity_ids:
            return result

        keys = [self.key_for(i) for i in entity_ids]
        try:
            cached = await self.store.mget(keys)
        except Exception as e:
            logger.error("Failed to batch get unified records", entity=self.schema.name, error=str(e))
            cached = {}

        for entity_id, key in zip(entity_ids, keys):
            result[entity_id] = cached.get(key)
        return result

    async def set_many(
        self,
        entries: Iterable[tuple[str, Mapping[str, Any]]],
        ttl: Optional[int] = None,
    ) -> bool:
        """Batch set with one pipelined write.

        Reports whether the pipeline call succeeded, not per-key success;
        nothing is rolled back if individual keys fail.
        """
        ttl = validate_ttl(ttl or self.default_ttl)
        batch = [StoreEntry(key=self.key_for(i), value=dict(data), ttl=ttl) for i, data in entries]
        if not batch:
            return True
        try:
            ok = await self.store.mset(batch)
        except Exception as e:
            logger.error("Failed to batch set unified records", entity=self.schema.name, error=str(e))
            return False
        if ok:
            logger.debug("Batch cached unified records", entity=self.schema.name, count=len(batch))
        return ok

    async def merge_and_store(
        self,
        entity_id: str,
        incoming: Mapping[str, Any],
        source: Union[DataSource, str],
        ttl: Optional[int] = None,
    ) -> dict:
        """Merge ``incoming`` onto the cached record and write it behind."""
        existing = await self.get(entity_id)
        merged = merge_entity_data(existing, incoming, source, self.schema)
        self.write_behind.spawn(
            f"unified:{self.key_for(entity_id)}",
            self.set(entity_id, merged, ttl),
        )
        return merged
