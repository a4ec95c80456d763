"""
Token market data service (Birdeye).
"""

from typing import Any, Optional, Union

from ..cache.keys import CacheTTL, cache_keys, normalize_address
from ..cache.read_through import ReadThroughCache
from ..entities import DataSource, UnifiedEntityCache, schedule_population, to_unified_token
from ..exceptions import NotFoundError, ProducerTimeoutError, ProviderError
from ..providers import BirdeyeProvider
from ..providers.birdeye import newly_listed_filters
from ..utils.logging import get_logger

logger = get_logger(__name__)

PRICE_HISTORY_DAYS = ("1", "7", "30", "90", "365", "max")


def validate_days(days: Union[int, str]) -> str:
    value = str(days).strip().lower()
    if value not in PRICE_HISTORY_DAYS:
        raise ValueError(f"days must be one of {', '.join(PRICE_HISTORY_DAYS)}, got {days!r}")
    return value


def to_price_point(candle: dict) -> dict[str, Any]:
    return {
        "timestamp": candle.get("unix_time", candle.get("unixTime")),
        "open": candle.get("o"),
        "high": candle.get("h"),
        "low": candle.get("l"),
        "close": candle.get("c"),
        "volume": candle.get("v"),
    }


class TokenService:
    """Token list, token detail and price history reads."""

    def __init__(
        self,
        cache: ReadThroughCache,
        tokens: UnifiedEntityCache,
        birdeye: BirdeyeProvider,
        ttl: CacheTTL,
    ):
        self.cache = cache
        self.tokens = tokens
        self.birdeye = birdeye
        self.ttl = ttl

    async def fetch_market_data(self, limit: int = 100, offset: int = 0) -> list[dict]:
        """One page of the token list; each token is also merged into its record."""
        return await self._fetch_token_page(cache_keys.market_data(limit, offset), limit, offset)

    async def fetch_newly_listed(self, limit: int = 100, offset: int = 0, hours_ago: int = 24) -> list[dict]:
        """Tokens listed in the last ``hours_ago`` hours, by 24h volume.

        Cached per page only; ``hours_ago`` is not part of the key.
        """
        if hours_ago <= 0:
            raise ValueError("hours_ago must be positive")
        return await self._fetch_token_page(
            cache_keys.newly_listed(limit, offset),
            limit,
            offset,
            filters=newly_listed_filters(hours_ago),
        )

    async def _fetch_token_page(
        self, key: str, limit: int, offset: int, filters: Optional[dict[str, str]] = None
    ) -> list[dict]:
        if limit <= 0 or offset < 0:
            raise ValueError("limit must be positive and offset non-negative")

        async def produce() -> list[dict]:
            if filters is None:
                items = await self.birdeye.fetch_token_list(limit, offset)
            else:
                items = await self.birdeye.fetch_token_list(limit, offset, filters=filters)
            tokens = [to_unified_token(item, DataSource.LIST) for item in items if item.get("address")]
            schedule_population(self.tokens, tokens, id_of=lambda r: r.get("address"), ttl=self.ttl.TOKEN_DETAIL)
            logger.info("Fetched token list", key=key, count=len(tokens))
            return tokens

        return await self.cache.with_cache(key, self.ttl.MARKET_DATA, produce, fallback=[])

    async def fetch_token(self, address: str) -> Optional[dict]:
        """Unified token record with overview data, or None when unknown."""
        address = normalize_address(address)
        cached = await self.tokens.get(address)
        if cached and cached.get("dataSource") in (DataSource.OVERVIEW.value, DataSource.MERGED.value):
            return cached

        key = self.tokens.key_for(address)

        async def fetch_and_merge() -> dict:
            raw = await self.birdeye.fetch_token_overview(address)
            overview = to_unified_token({**raw, "address": raw.get("address") or address}, DataSource.OVERVIEW)
            return await self.tokens.merge_and_store(address, overview, DataSource.OVERVIEW)

        try:
            return await self.cache.queue.dedupe(key, lambda: self.cache.run_producer(key, fetch_and_merge))
        except NotFoundError:
            logger.info("Token not found upstream", address=address)
            return cached
        except (ProviderError, ProducerTimeoutError) as e:
            logger.warning("Token overview fetch failed", address=address, error=str(e))
            return cached

    async def fetch_price_history(self, address: str, days: Union[int, str] = "7") -> list[dict]:
        """OHLCV points for ``address``; upstream errors propagate (no fallback)."""
        days = validate_days(days)
        address = normalize_address(address)

        async def produce() -> list[dict]:
            candles = await self.birdeye.fetch_ohlcv(address, days)
            if not candles:
                raise ProviderError(f"No price history for {address}", self.birdeye.name)
            return [to_price_point(c) for c in candles]

        return await self.cache.with_cache(
            cache_keys.price_history(address, days),
            self.ttl.PRICE_HISTORY,
            produce,
        )
