"""
Entity schemas for the unified cache.

A schema declares which record fields belong to which precedence group.
The two upstream feeds each "own" one group:

- the list feed (many entities, coarse fields) owns live metrics,
- the overview feed (one entity, rich fields) owns descriptive and chart
  fields.

Identity fields are immutable once known.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable

from ..cache.keys import cache_keys


class DataSource(str, Enum):
    """Provenance of a unified record."""
    LIST = "list"
    OVERVIEW = "overview"
    MERGED = "merged"


# Bookkeeping fields managed by the merge itself
DATA_SOURCE_FIELD = "dataSource"
LAST_UPDATED_FIELD = "lastUpdated"


@dataclass(frozen=True)
class EntitySchema:
    """Field groups and key namespace for one entity type."""
    name: str
    key_for: Callable[[str], str]
    id_field: str
    identity_fields: frozenset[str]
    metric_fields: frozenset[str]
    descriptive_fields: frozenset[str]

    def group_of(self, field_name: str) -> str:
        if field_name in self.identity_fields:
            return "identity"
        if field_name in self.metric_fields:
            return "metric"
        if field_name in self.descriptive_fields:
            return "descriptive"
        return "other"


PROTOCOL_SCHEMA = EntitySchema(
    name="protocol",
    key_for=cache_keys.protocol,
    id_field="id",
    identity_fields=frozenset({"id", "slug", "name", "symbol"}),
    metric_fields=frozenset({"tvl", "change1H", "change1D", "change7D"}),
    descriptive_fields=frozenset({
        "description",
        "url",
        "twitter",
        "github",
        "logo",
        "category",
        "chains",
        "otherProtocols",
        "assetToken",
        "address",
        "parentProtocol",
        "parentProtocolSlug",
        "isParentProtocol",
        # chart / time-series
        "tvlChartData",
        "feesRevenueChartData",
        # only the overview feed reports fees
        "totalFees_1d",
        "totalRevenue_1d",
        "feesChange_1d",
    }),
)

TOKEN_SCHEMA = EntitySchema(
    name="token",
    key_for=cache_keys.token_detail,
    id_field="address",
    identity_fields=frozenset({"address", "symbol", "name"}),
    metric_fields=frozenset({
        "price",
        "priceChange24hPercent",
        "v24hUSD",
        "v24hChangePercent",
        "vBuy24hUSD",
        "vSell24hUSD",
        "marketCap",
    }),
    descriptive_fields=frozenset({
        "logoURI",
        "extensions",
        "liquidity",
        "holder",
        "decimals",
        "fdv",
        "totalSupply",
        "circulatingSupply",
        "trade24h",
        "buy24h",
        "sell24h",
        "uniqueWallet24h",
    }),
)
