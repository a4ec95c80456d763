"""
DeFi protocol data service.

The Solana protocol aggregate is served through the read-through cache and
every protocol it lists is merged into its unified record in the
background, so a later detail page only needs the overview feed.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Optional

from ..cache.keys import CacheTTL, cache_keys, normalize_entity_id, slug_from_name
from ..cache.read_through import ReadThroughCache
from ..entities import DataSource, UnifiedEntityCache, schedule_population, to_unified_protocol
from ..entities.transform import extract_solana_tvl, fee_revenue_chart, tvl_chart
from ..exceptions import NotFoundError, ProducerTimeoutError, ProviderError
from ..providers import DefiLlamaProvider
from ..utils.logging import get_logger

logger = get_logger(__name__)

MIN_TVL_THRESHOLD = 100_000
HOT_PROTOCOLS_LIMIT = 6
EXCLUDED_CATEGORIES = {"CEX"}


def empty_protocols_data() -> dict[str, Any]:
    return {
        "totalTvl": 0,
        "change1D": 0,
        "chartData": [],
        "inflows": {"totalFees_1d": 0, "totalRevenue_1d": 0, "change_1d": 0, "chartData": []},
        "solanaProtocols": [],
        "hotProtocols": [],
        "numberOfProtocols": 0,
    }


def is_solana_protocol(raw: dict) -> bool:
    """Solana-only protocols, excluding centralized exchanges."""
    return raw.get("chains") == ["Solana"] and raw.get("category") not in EXCLUDED_CATEGORIES


def percent_change(series: list[dict], field: str = "tvl") -> float:
    """Change between the last two points of a daily series, in percent."""
    if len(series) < 2:
        return 0.0
    prev, last = series[-2].get(field) or 0, series[-1].get(field) or 0
    if not prev:
        return 0.0
    return (last - prev) / prev * 100


@dataclass
class ProtocolResolution:
    """Result of resolving a possibly-child slug to the record it lives under."""
    original_slug: str
    resolved_slug: str
    was_resolved: bool
    protocol: Optional[dict]


class ProtocolService:
    """DeFiLlama-backed protocol reads."""

    def __init__(
        self,
        cache: ReadThroughCache,
        protocols: UnifiedEntityCache,
        defillama: DefiLlamaProvider,
        ttl: CacheTTL,
    ):
        self.cache = cache
        self.protocols = protocols
        self.defillama = defillama
        self.ttl = ttl

    async def _optional(self, aw: Awaitable[Any], what: str) -> Any:
        # Secondary feeds (fees, revenue) must not fail the whole response
        try:
            return await aw
        except ProviderError as e:
            logger.warning("Optional upstream fetch failed", what=what, error=str(e))
            return None

    # ==================
    # Aggregate
    # ==================

    async def fetch_protocols_data(self) -> dict[str, Any]:
        return await self.cache.with_cache(
            cache_keys.protocols_all(),
            self.ttl.PROTOCOL,
            self._fetch_fresh_protocols,
            fallback=empty_protocols_data(),
            refresh_ratio=0.25,
        )

    async def _fetch_fresh_protocols(self) -> dict[str, Any]:
        raw_protocols, history, chain_fees, chain_revenue = await asyncio.gather(
            self.defillama.fetch_protocols(),
            self.defillama.fetch_historical_chain_tvl("Solana"),
            self._optional(self.defillama.fetch_chain_fees("solana", "dailyFees"), "chain fees"),
            self._optional(self.defillama.fetch_chain_fees("solana", "dailyRevenue"), "chain revenue"),
        )

        standalone: list[dict] = []
        parent_slugs: list[str] = []
        for raw in raw_protocols:
            if not is_solana_protocol(raw):
                continue
            parent = raw.get("parentProtocolSlug") or raw.get("parentProtocol")
            if parent:
                # children are reported under their parent
                if normalize_entity_id(parent) not in parent_slugs:
                    parent_slugs.append(normalize_entity_id(parent))
                continue
            record = to_unified_protocol(raw, DataSource.LIST)
            if record.get("tvl", 0) >= MIN_TVL_THRESHOLD:
                standalone.append(record)

        parents = await self._fetch_parents(parent_slugs)
        protocols = sorted(standalone + parents, key=lambda r: r.get("tvl", 0), reverse=True)

        hot = sorted(
            (p for p in protocols if (p.get("change1D") or 0) > 0),
            key=lambda r: r["change1D"],
            reverse=True,
        )[:HOT_PROTOCOLS_LIMIT]

        fees = chain_fees or {}
        revenue = chain_revenue or {}
        result = {
            "totalTvl": history[-1].get("tvl", 0) if history else 0,
            "change1D": percent_change(history),
            "chartData": tvl_chart(history),
            "inflows": {
                "totalFees_1d": fees.get("total24h") or 0,
                "totalRevenue_1d": revenue.get("total24h") or 0,
                "change_1d": fees.get("change_1d") or 0,
                "chartData": fee_revenue_chart(fees.get("totalDataChart") or [], revenue.get("totalDataChart") or []),
            },
            "solanaProtocols": protocols,
            "hotProtocols": hot,
            "numberOfProtocols": len(protocols),
        }
        logger.info("Fetched protocol aggregate", protocols=len(protocols), parents=len(parents))

        schedule_population(self.protocols, protocols, id_of=lambda r: r.get("id"), ttl=self.ttl.PROTOCOL)
        return result

    async def _fetch_parents(self, slugs: list[str]) -> list[dict]:
        """Parent protocols have no list entry of their own; build them from their overview."""
        if not slugs:
            return []
        results = await asyncio.gather(
            *(self.defillama.fetch_protocol(slug) for slug in slugs),
            return_exceptions=True,
        )
        parents = []
        for slug, raw in zip(slugs, results):
            if isinstance(raw, BaseException):
                logger.warning("Failed to fetch parent protocol", slug=slug, error=str(raw))
                continue
            record = to_unified_protocol({**raw, "slug": raw.get("slug") or slug}, DataSource.LIST)
            # overview payloads carry per-chain TVL history, not a list-style number
            record["tvl"] = extract_solana_tvl(raw, DataSource.OVERVIEW)
            record["isParentProtocol"] = True
            if record.get("tvl", 0) >= MIN_TVL_THRESHOLD:
                parents.append(record)
        return parents

    # ==================
    # Single protocol
    # ==================

    async def fetch_protocol(self, slug: str) -> Optional[dict]:
        """Unified record with overview data for ``slug``, or None.

        A record that already carries overview data is served as-is; a
        list-only or missing record triggers one deduplicated overview
        fetch that is merged into the record.

        Upstream is asked for ``slug`` as given; only the record key is
        normalized, so ``openbook-v2`` fetches its own overview and merges
        it into the ``openbook`` record.
        """
        slug = slug.strip()
        cached = await self.protocols.get(slug)
        if cached and cached.get("dataSource") in (DataSource.OVERVIEW.value, DataSource.MERGED.value):
            return cached

        key = self.protocols.key_for(slug)
        try:
            return await self.cache.queue.dedupe(
                key, lambda: self.cache.run_producer(key, lambda: self._fetch_and_merge(slug))
            )
        except NotFoundError:
            logger.info("Protocol not found upstream", slug=slug)
            return cached
        except (ProviderError, ProducerTimeoutError) as e:
            logger.warning("Protocol overview fetch failed", slug=slug, error=str(e))
            return cached

    async def _fetch_and_merge(self, slug: str) -> dict:
        raw, fees, revenue = await asyncio.gather(
            self.defillama.fetch_protocol(slug),
            self._optional(self.defillama.fetch_fees(slug, "dailyFees"), "protocol fees"),
            self._optional(self.defillama.fetch_fees(slug, "dailyRevenue"), "protocol revenue"),
        )
        overview = to_unified_protocol({**raw, "slug": raw.get("slug") or slug}, DataSource.OVERVIEW)
        if fees:
            overview["totalFees_1d"] = fees.get("total24h")
            overview["feesChange_1d"] = fees.get("change_1d")
            overview["feesRevenueChartData"] = fee_revenue_chart(
                fees.get("totalDataChart") or [], (revenue or {}).get("totalDataChart") or []
            )
        if revenue:
            overview["totalRevenue_1d"] = revenue.get("total24h")
        return await self.protocols.merge_and_store(slug, overview, DataSource.OVERVIEW)

    async def fetch_protocol_with_resolution(self, slug: str) -> ProtocolResolution:
        resolved = normalize_entity_id(slug)
        protocol = await self.fetch_protocol(slug)
        if resolved != slug:
            logger.debug("Resolved protocol slug", original=slug, resolved=resolved)
        return ProtocolResolution(
            original_slug=slug,
            resolved_slug=resolved,
            was_resolved=resolved != slug,
            protocol=protocol,
        )

    async def fetch_child_protocols(self, parent_slug: str, names: list[str]) -> list[dict]:
        """Overviews for a parent's child protocols (``otherProtocols`` names)."""
        children = [slug_from_name(n) for n in names if n]
        children = [c for c in children if c and c != normalize_entity_id(parent_slug)]

        async def produce() -> list[dict]:
            results = await asyncio.gather(
                *(self.defillama.fetch_protocol(c) for c in children),
                return_exceptions=True,
            )
            found = []
            for child, raw in zip(children, results):
                if isinstance(raw, BaseException):
                    logger.debug("Child protocol unavailable", parent=parent_slug, child=child, error=str(raw))
                    continue
                record = to_unified_protocol({**raw, "slug": raw.get("slug") or child}, DataSource.OVERVIEW)
                if record.get("tvl"):
                    found.append(record)
            return sorted(found, key=lambda r: r.get("tvl", 0), reverse=True)

        return await self.cache.with_cache(
            cache_keys.child_protocols(parent_slug),
            self.ttl.PROTOCOL,
            produce,
            fallback=[],
        )
