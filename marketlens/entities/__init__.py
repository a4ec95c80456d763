"""
Unified entity cache: one canonical record per protocol/token, merged from
the list and overview feeds.
"""

from .batch import populate_from_list, schedule_population
from .merge import merge_entity_data
from .schema import PROTOCOL_SCHEMA, TOKEN_SCHEMA, DataSource, EntitySchema
from .transform import to_unified_protocol, to_unified_token
from .unified import UnifiedEntityCache

__all__ = [
    "DataSource",
    "EntitySchema",
    "PROTOCOL_SCHEMA",
    "TOKEN_SCHEMA",
    "UnifiedEntityCache",
    "merge_entity_data",
    "populate_from_list",
    "schedule_population",
    "to_unified_protocol",
    "to_unified_token",
]
