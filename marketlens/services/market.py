"""
Chain-wide market data: Solana stablecoin supply, Solana TVL, headline
global stats and trending tokens.
"""

import asyncio
import time
from typing import Any

from ..cache.keys import CacheTTL, cache_keys
from ..cache.read_through import ReadThroughCache
from ..entities import DataSource, UnifiedEntityCache, schedule_population, to_unified_token
from ..exceptions import ProviderError
from ..providers import BirdeyeProvider, DefiLlamaProvider
from ..utils.logging import get_logger
from .protocols import percent_change

logger = get_logger(__name__)

CHAIN = "Solana"
KNOWN_PEGS = ("peggedUSD", "peggedEUR", "peggedJPY", "peggedCHF", "peggedAUD", "peggedREAL", "peggedGBP", "peggedTRY")


def empty_stablecoin_data() -> dict[str, Any]:
    return {"name": CHAIN, "totalCirculatingUSD": 0, "change24h": 0, "pegged": {}, "peggedOther": 0}


def empty_tvl_data() -> dict[str, Any]:
    return {"tvl": 0, "change24h": 0}


def empty_global_stats() -> dict[str, Any]:
    return {"stablecoins_tvl": 0, "stablecoins_tvl_change": 0, "updated_at": int(time.time())}


def _circulating_series(chart: list[dict]) -> list[dict]:
    """``/stablecoincharts`` points -> ``[{"total": usd}, ...]``."""
    return [
        {"total": sum((point.get("totalCirculatingUSD") or {}).values())}
        for point in chart
    ]


class MarketService:
    """Global Solana market figures."""

    def __init__(
        self,
        cache: ReadThroughCache,
        tokens: UnifiedEntityCache,
        defillama: DefiLlamaProvider,
        birdeye: BirdeyeProvider,
        ttl: CacheTTL,
    ):
        self.cache = cache
        self.tokens = tokens
        self.defillama = defillama
        self.birdeye = birdeye
        self.ttl = ttl

    async def fetch_stablecoin_data(self) -> dict[str, Any]:
        return await self.cache.with_cache(
            cache_keys.stablecoin_chains(),
            self.ttl.STABLECOIN,
            self._fetch_stablecoins,
            fallback=empty_stablecoin_data(),
        )

    async def _fetch_stablecoins(self) -> dict[str, Any]:
        chains, chart = await asyncio.gather(
            self.defillama.fetch_stablecoin_chains(),
            self.defillama.fetch_stablecoin_chart(CHAIN),
        )
        chain = next((c for c in chains if c.get("name") == CHAIN), None)
        if chain is None:
            raise ProviderError(f"No stablecoin data for {CHAIN}", self.defillama.name)

        pegged = chain.get("totalCirculatingUSD") or {}
        return {
            "name": CHAIN,
            "symbol": chain.get("tokenSymbol"),
            "geckoId": chain.get("gecko_id"),
            "totalCirculatingUSD": sum(pegged.values()),
            "change24h": percent_change(_circulating_series(chart), "total"),
            "pegged": {k: pegged.get(k, 0) for k in KNOWN_PEGS},
            "peggedOther": sum(v for k, v in pegged.items() if k not in KNOWN_PEGS),
        }

    async def fetch_solana_tvl(self) -> dict[str, Any]:
        async def produce() -> dict[str, Any]:
            history = await self.defillama.fetch_historical_chain_tvl(CHAIN)
            if not history:
                raise ProviderError(f"No TVL history for {CHAIN}", self.defillama.name)
            return {"tvl": history[-1].get("tvl", 0), "change24h": percent_change(history)}

        return await self.cache.with_cache(
            cache_keys.solana_tvl(),
            self.ttl.STABLECOIN,
            produce,
            fallback=empty_tvl_data(),
        )

    async def fetch_global_stats(self) -> dict[str, Any]:
        """Headline figures built on the cached stablecoin data; refreshed in the background near expiry."""
        async def produce() -> dict[str, Any]:
            stablecoins = await self.fetch_stablecoin_data()
            return {
                "stablecoins_tvl": stablecoins.get("totalCirculatingUSD", 0),
                "stablecoins_tvl_change": stablecoins.get("change24h", 0),
                "updated_at": int(time.time()),
            }

        return await self.cache.with_cache(
            cache_keys.global_stats(),
            self.ttl.GLOBAL_STATS,
            produce,
            fallback=empty_global_stats(),
            refresh_ratio=0.25,
        )

    async def fetch_trending(self, limit: int = 20) -> dict[str, Any]:
        """Trending tokens; each token is also merged into its unified record."""
        async def produce() -> dict[str, Any]:
            raw = await self.birdeye.fetch_trending(limit)
            tokens = [to_unified_token(t, DataSource.LIST) for t in raw if t.get("address")]
            schedule_population(self.tokens, tokens, id_of=lambda r: r.get("address"), ttl=self.ttl.TOKEN_DETAIL)
            return {"tokens": tokens}

        return await self.cache.with_cache(
            cache_keys.trending(limit),
            self.ttl.TRENDING,
            produce,
            fallback={"tokens": []},
        )
