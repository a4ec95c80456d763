"""
Field-level merge of list and overview data into one unified record.

``merge_entity_data`` is pure: no I/O, no mutation of its inputs.

Precedence, per field group of the schema:

    group         list incoming          overview incoming
    identity      existing or incoming   existing or incoming
    metric        incoming or existing   existing or incoming
    descriptive   existing or incoming   incoming or existing
    other         incoming or existing   incoming or existing

"a or b" means: a unless a is empty (None, "", [] or {}), then b.  Zero
and False are real values.
"""

import time
from typing import Any, Mapping, Optional, Union

from .schema import DATA_SOURCE_FIELD, LAST_UPDATED_FIELD, DataSource, EntitySchema

_BOOKKEEPING = (DATA_SOURCE_FIELD, LAST_UPDATED_FIELD)


def now_ms() -> int:
    return int(time.time() * 1000)


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, dict, tuple)):
        return len(value) == 0
    return False


def _prefer(preferred: Any, other: Any) -> Any:
    return other if is_empty(preferred) else preferred


def _merged_source(existing: Mapping[str, Any], source: DataSource) -> str:
    if source is DataSource.OVERVIEW:
        return DataSource.MERGED.value
    previous = existing.get(DATA_SOURCE_FIELD)
    if previous in (DataSource.OVERVIEW.value, DataSource.MERGED.value):
        return DataSource.MERGED.value
    return DataSource.LIST.value


def merge_entity_data(
    existing: Optional[Mapping[str, Any]],
    incoming: Mapping[str, Any],
    source: Union[DataSource, str],
    schema: EntitySchema,
    now: Optional[int] = None,
) -> dict[str, Any]:
    """Merge ``incoming`` (from ``source``) onto ``existing``.

    Returns a new record with ``dataSource`` and ``lastUpdated`` set.
    ``lastUpdated`` is refreshed on every merge, even when no field changed.
    """
    source = DataSource(source)
    if source is DataSource.MERGED:
        raise ValueError("incoming data must come from 'list' or 'overview'")
    timestamp = now if now is not None else now_ms()

    if not existing:
        record = {k: v for k, v in incoming.items() if k not in _BOOKKEEPING}
        record[DATA_SOURCE_FIELD] = source.value
        record[LAST_UPDATED_FIELD] = timestamp
        return record

    from_list = source is DataSource.LIST
    record: dict[str, Any] = {}

    # existing field order first, then fields only the incoming data has
    fields = [k for k in existing if k not in _BOOKKEEPING]
    fields += [k for k in incoming if k not in existing and k not in _BOOKKEEPING]

    for name in fields:
        old = existing.get(name)
        new = incoming.get(name)
        group = schema.group_of(name)

        if group == "identity":
            value = _prefer(old, new)
        elif group == "metric":
            value = _prefer(new, old) if from_list else _prefer(old, new)
        elif group == "descriptive":
            value = _prefer(old, new) if from_list else _prefer(new, old)
        else:
            value = _prefer(new, old)

        record[name] = value

    record[DATA_SOURCE_FIELD] = _merged_source(existing, source)
    record[LAST_UPDATED_FIELD] = timestamp
    return record
