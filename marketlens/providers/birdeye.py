"""
Birdeye provider: Solana token lists, token overviews, OHLCV and trending.

@see https://docs.birdeye.so
"""

import asyncio
import time
from typing import Any, Optional, Union

from ..config import get_settings
from ..exceptions import NotFoundError, ProviderError
from ..utils.logging import get_logger
from .base import BaseProvider

logger = get_logger(__name__)

# Birdeye caps token-list pages at 100 items
MAX_PAGE_SIZE = 100

LIST_FILTERS = {
    "sort_by": "liquidity",
    "sort_type": "desc",
    "min_holder": "10",
    "min_volume_24h_usd": "10",
    "min_trade_24h_count": "10",
}

# Newly-listed queries replace the liquidity filters; listing age does the filtering
NEWLY_LISTED_SORT = {
    "sort_by": "volume_24h_usd",
    "sort_type": "desc",
}


def newly_listed_filters(hours_ago: int = 24, now: Optional[int] = None) -> dict[str, str]:
    """Token-list filters for tokens listed within the last ``hours_ago`` hours."""
    now = int(time.time()) if now is None else now
    return {**NEWLY_LISTED_SORT, "min_recent_listing_time": str(now - hours_ago * 60 * 60)}


# days -> OHLCV candle size
_TIME_TYPES = [
    (1, "15m"),
    (7, "1H"),
    (30, "4H"),
    (90, "12H"),
    (365, "1D"),
]


def map_time_range(days: Union[int, str]) -> str:
    """Pick an OHLCV candle size for a lookback window."""
    if days == "max":
        return "1W"
    n = int(days)
    for limit, time_type in _TIME_TYPES:
        if n <= limit:
            return time_type
    return "1W"


class BirdeyeProvider(BaseProvider):
    """Birdeye public API (``X-API-KEY`` required)."""

    name = "birdeye"

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None, chain: Optional[str] = None):
        s = get_settings()
        headers = {"x-chain": chain or s.birdeye_chain}
        key = api_key or s.birdeye_api_key
        if key:
            headers["X-API-KEY"] = key
        else:
            logger.warning("BIRDEYE_API_KEY not set; Birdeye requests will be rejected")
        super().__init__(base_url or s.birdeye_api_url, s.http_timeout_seconds, headers)

    async def _get_data(self, endpoint: str, params: Optional[dict] = None) -> Any:
        """Unwrap Birdeye's ``{"success": bool, "data": ...}`` envelope."""
        payload = await self._get(endpoint, params=params)
        if not isinstance(payload, dict) or not payload.get("success"):
            raise ProviderError(f"Unsuccessful response from {endpoint}", self.name)
        return payload.get("data")

    async def fetch_token_list(
        self, limit: int = 100, offset: int = 0, filters: Optional[dict[str, str]] = None
    ) -> list[dict]:
        """Token list (the list feed), fetched in concurrent pages of 100.

        ``filters`` replaces the default liquidity filters when given.
        """
        filters = LIST_FILTERS if filters is None else filters
        pages = []
        for start in range(0, limit, MAX_PAGE_SIZE):
            size = min(MAX_PAGE_SIZE, limit - start)
            params = {"offset": str(offset + start), "limit": str(size), **filters}
            pages.append(self._get_data("/defi/v3/token/list", params))

        items: list[dict] = []
        for data in await asyncio.gather(*pages):
            items.extend((data or {}).get("items") or [])
        return items

    async def fetch_token_overview(self, address: str) -> dict:
        """Token overview (the detail feed)."""
        data = await self._get_data("/defi/token_overview", {"address": address, "ui_amount_mode": "scaled"})
        if not data:
            raise NotFoundError(f"Token not found: {address}", self.name, 404)
        return data

    async def fetch_ohlcv(self, address: str, days: Union[int, str] = 7) -> list[dict]:
        """Price candles for the last ``days`` days (``"max"`` = one year of weekly candles)."""
        now = int(time.time())
        span_days = 365 if days == "max" else int(days)
        params = {
            "address": address,
            "type": map_time_range(days),
            "time_from": str(now - span_days * 24 * 60 * 60),
            "time_to": str(now),
        }
        data = await self._get_data("/defi/v3/ohlcv", params)
        return (data or {}).get("items") or []

    async def fetch_trending(self, limit: int = 20) -> list[dict]:
        data = await self._get_data(
            "/defi/token_trending",
            {"sort_by": "rank", "sort_type": "asc", "offset": "0", "limit": str(limit)},
        )
        return (data or {}).get("tokens") or []
