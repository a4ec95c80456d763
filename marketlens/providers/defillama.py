"""
DeFiLlama provider: protocol TVL, chain TVL history, fees and stablecoins.

@see https://api-docs.defillama.com/
"""

from typing import Any, Optional

from ..config import get_settings
from ..exceptions import ProviderError
from .base import BaseProvider


class DefiLlamaProvider(BaseProvider):
    """DeFiLlama public API (no key required)."""

    name = "defillama"

    def __init__(self, base_url: Optional[str] = None, stablecoins_url: Optional[str] = None, timeout: Optional[float] = None):
        s = get_settings()
        super().__init__(base_url or s.defillama_api_url, timeout or s.http_timeout_seconds)
        self._stablecoins_url = (stablecoins_url or s.stablecoins_api_url).rstrip("/")

    async def fetch_protocols(self) -> list[dict]:
        """All protocols (the list feed)."""
        data = await self._get("/protocols")
        if not isinstance(data, list):
            raise ProviderError("Unexpected /protocols payload", self.name)
        return data

    async def fetch_protocol(self, slug: str) -> dict:
        """One protocol with chain TVL history (the overview feed)."""
        data = await self._get(f"/protocol/{slug}")
        if not isinstance(data, dict):
            raise ProviderError(f"Unexpected /protocol/{slug} payload", self.name)
        return data

    async def fetch_historical_chain_tvl(self, chain: str = "Solana") -> list[dict]:
        """Daily chain TVL points: ``[{"date": unix, "tvl": float}, ...]``."""
        data = await self._get(f"/v2/historicalChainTvl/{chain}")
        return data if isinstance(data, list) else []

    async def fetch_fees(self, slug: str, data_type: str = "dailyFees") -> dict[str, Any]:
        """Fee or revenue summary for a protocol (``data_type``: dailyFees | dailyRevenue)."""
        return await self._get(f"/summary/fees/{slug}", params={"dataType": data_type})

    async def fetch_chain_fees(self, chain: str = "solana", data_type: str = "dailyFees") -> dict[str, Any]:
        """Fee or revenue overview for a whole chain."""
        return await self._get(
            f"/overview/fees/{chain}",
            params={"dataType": data_type, "excludeTotalDataChartBreakdown": "true"},
        )

    async def fetch_stablecoin_chains(self) -> list[dict]:
        data = await self._get("/stablecoinchains", base_url=self._stablecoins_url)
        return data if isinstance(data, list) else []

    async def fetch_stablecoin_chart(self, chain: str = "Solana") -> list[dict]:
        data = await self._get(f"/stablecoincharts/{chain}", base_url=self._stablecoins_url)
        return data if isinstance(data, list) else []
