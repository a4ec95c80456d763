"""
Upstream payload -> unified record transforms.

DeFiLlama and Birdeye return the same entities in different shapes from
their list and detail endpoints; these functions map both onto the unified
record fields.  Absent values are left out so they never count as data
during a merge.
"""

from datetime import datetime, timezone
from typing import Any, Optional, Union

from ..cache.keys import slug_from_name
from .merge import now_ms
from .schema import DataSource

SOLANA = "Solana"


def _compact(record: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in record.items() if v is not None}


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _first(raw: dict, *names: str) -> Any:
    """First non-None value among alternative field spellings."""
    for name in names:
        value = raw.get(name)
        if value is not None:
            return value
    return None


# ---------------------------------------------------------------------------
# Protocols (DeFiLlama)
# ---------------------------------------------------------------------------

def protocol_id(raw: dict) -> str:
    return raw.get("slug") or slug_from_name(raw.get("name") or "")


def _tvl_series(raw: dict) -> list[dict]:
    chain = (raw.get("chainTvls") or {}).get(SOLANA)
    if isinstance(chain, dict):
        return chain.get("tvl") or []
    return []


def extract_solana_tvl(raw: dict, source: Union[DataSource, str] = DataSource.LIST) -> float:
    """Solana TVL from a list item (number) or an overview payload."""
    if DataSource(source) is DataSource.LIST:
        chain = (raw.get("chainTvls") or {}).get(SOLANA)
        return _to_float(chain) or 0.0

    current = _to_float((raw.get("currentChainTvls") or {}).get(SOLANA))
    if current is not None:
        return current
    series = _tvl_series(raw)
    if series:
        return _to_float(series[-1].get("totalLiquidityUSD", series[-1].get("tvl"))) or 0.0
    return 0.0


def format_chart_date(unix_ts: Union[int, float]) -> str:
    """1704067200 -> 'Jan 1, 2024'."""
    d = datetime.fromtimestamp(int(unix_ts), tz=timezone.utc)
    return f"{d.strftime('%b')} {d.day}, {d.year}"


def tvl_chart(series: list[dict]) -> list[dict]:
    return [
        {
            "date": format_chart_date(point["date"]),
            "value": point.get("totalLiquidityUSD", point.get("tvl")),
        }
        for point in series
        if "date" in point
    ]


def fee_revenue_chart(fees: list, revenue: list) -> list[dict]:
    """Pair fee and revenue series by date for a dual-line chart."""
    if not fees:
        return []
    revenue_by_date = {date: value for date, value in (revenue or [])}
    return [
        {"date": format_chart_date(date), "value": value, "value2": revenue_by_date.get(date, 0)}
        for date, value in fees
    ]


def to_unified_protocol(raw: dict, source: Union[DataSource, str] = DataSource.LIST) -> dict[str, Any]:
    """Map a DeFiLlama ``/protocols`` item or ``/protocol/{slug}`` payload."""
    source = DataSource(source)
    symbol = raw.get("symbol")
    record = {
        "id": protocol_id(raw),
        "slug": raw.get("slug"),
        "name": raw.get("name"),
        "symbol": symbol if symbol and symbol != "-" else None,
        "logo": raw.get("logo") or None,
        "tvl": extract_solana_tvl(raw, source),
        "change1H": _to_float(raw.get("change_1h")),
        "change1D": _to_float(raw.get("change_1d")),
        "change7D": _to_float(raw.get("change_7d")),
        "category": raw.get("category"),
        "chains": raw.get("chains"),
        "description": raw.get("description"),
        "url": raw.get("url"),
        "twitter": raw.get("twitter"),
        "github": raw.get("github"),
        "otherProtocols": raw.get("otherProtocols"),
        "assetToken": raw.get("assetToken"),
        "address": raw.get("address"),
        "parentProtocol": raw.get("parentProtocol"),
        "parentProtocolSlug": raw.get("parentProtocolSlug"),
        "isParentProtocol": raw.get("isParentProtocol"),
    }
    if source is DataSource.OVERVIEW:
        series = _tvl_series(raw)
        record["tvlChartData"] = tvl_chart(series) if series else None
        if raw.get("isParentProtocol") or not raw.get("parentProtocol"):
            record["isParentProtocol"] = True
    record["dataSource"] = source.value
    record["lastUpdated"] = now_ms()
    return _compact(record)


# ---------------------------------------------------------------------------
# Tokens (Birdeye)
# ---------------------------------------------------------------------------

def _display_name(name: Optional[str]) -> Optional[str]:
    return "Solana" if name == "Wrapped SOL" else name


def to_unified_token(raw: dict, source: Union[DataSource, str] = DataSource.LIST) -> dict[str, Any]:
    """Map a Birdeye token-list item (snake_case) or token overview (camelCase)."""
    source = DataSource(source)
    symbol = raw.get("symbol")
    record = {
        "address": raw.get("address"),
        "symbol": symbol.upper() if symbol else None,
        "name": _display_name(raw.get("name")),
        "logoURI": _first(raw, "logoURI", "logo_uri"),
        "price": _to_float(raw.get("price")),
        "priceChange24hPercent": _to_float(
            _first(raw, "priceChange24hPercent", "price24hChangePercent", "price_change_24h_percent")
        ),
        "v24hUSD": _to_float(_first(raw, "v24hUSD", "volume24hUSD", "volume_24h_usd")),
        "v24hChangePercent": _to_float(_first(raw, "v24hChangePercent", "volume_24h_change_percent")),
        "vBuy24hUSD": _to_float(raw.get("vBuy24hUSD")),
        "vSell24hUSD": _to_float(raw.get("vSell24hUSD")),
        "marketCap": _to_float(_first(raw, "marketCap", "marketcap", "market_cap")),
        "liquidity": _to_float(raw.get("liquidity")),
        "holder": raw.get("holder"),
        "decimals": raw.get("decimals"),
        "fdv": _to_float(raw.get("fdv")),
        "totalSupply": _to_float(raw.get("totalSupply")),
        "circulatingSupply": _to_float(raw.get("circulatingSupply")),
        "trade24h": raw.get("trade24h"),
        "buy24h": raw.get("buy24h"),
        "sell24h": raw.get("sell24h"),
        "uniqueWallet24h": raw.get("uniqueWallet24h"),
        "extensions": raw.get("extensions"),
        "dataSource": source.value,
        "lastUpdated": now_ms(),
    }
    return _compact(record)
