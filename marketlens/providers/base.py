"""
Base class for upstream market-data providers.

Providers are opaque producers to the cache layer: they fetch JSON and raise
``ProviderError`` subclasses, and know nothing about caching.
"""

from typing import Any, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..exceptions import NotFoundError, ProviderError, RateLimitError
from ..utils.logging import get_logger

logger = get_logger(__name__)


class BaseProvider:
    """Shared HTTP client lifecycle and error mapping."""

    name: str = "provider"

    def __init__(self, base_url: str, timeout: float = 15.0, headers: Optional[dict] = None):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._headers = headers or {}
        self._http_client: Optional[httpx.AsyncClient] = None

    async def initialize(self) -> None:
        """Initialize the HTTP client."""
        self._http_client = httpx.AsyncClient(
            timeout=self._timeout,
            headers={"Accept": "application/json", **self._headers},
            limits=httpx.Limits(max_connections=50, max_keepalive_connections=10, keepalive_expiry=30),
        )
        logger.info(f"{self.name} provider initialized", base_url=self._base_url)

    async def close(self) -> None:
        """Close connections."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(RateLimitError),
        reraise=True,
    )
    async def _get(self, endpoint: str, params: Optional[dict] = None, base_url: Optional[str] = None) -> Any:
        """GET ``endpoint`` and decode JSON, retrying on rate limits."""
        if not self._http_client:
            raise RuntimeError("Client not initialized")

        url = f"{(base_url or self._base_url).rstrip('/')}{endpoint}"

        try:
            response = await self._http_client.get(url, params=params)
        except httpx.HTTPError as e:
            logger.error(f"{self.name} request failed", url=url, error=str(e))
            raise ProviderError(f"Request failed: {e}", self.name) from e

        if response.status_code == 429:
            logger.warning(f"{self.name} rate limited, retrying...")
            raise RateLimitError("Rate limit exceeded", self.name, 429)
        if response.status_code == 404:
            raise NotFoundError(f"Not found: {endpoint}", self.name, 404)
        if response.status_code >= 400:
            logger.error(f"{self.name} API error", status=response.status_code, url=url)
            raise ProviderError(f"API error: {response.status_code}", self.name, response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise ProviderError("Malformed JSON payload", self.name, response.status_code) from e
