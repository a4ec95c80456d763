"""
Exception hierarchy for MarketLens.
"""

from typing import Optional


class MarketLensError(Exception):
    """Base exception for all MarketLens errors."""
    pass


class CacheError(MarketLensError):
    """Base exception for cache-layer errors."""
    pass


class CacheConfigError(CacheError):
    """Raised when a cache call site is misconfigured (e.g. non-positive TTL)."""
    pass


class ProducerTimeoutError(CacheError):
    """Raised when a producer does not settle within the configured timeout."""
    def __init__(self, key: str, timeout: float):
        self.key = key
        self.timeout = timeout
        super().__init__(f"Producer for {key} timed out after {timeout:g}s")


class ProviderError(MarketLensError):
    """Base exception for upstream data-provider errors."""
    def __init__(self, message: str, provider: str, status_code: Optional[int] = None):
        self.message = message
        self.provider = provider
        self.status_code = status_code
        super().__init__(f"[{provider}] {message}")


class RateLimitError(ProviderError):
    """Raised when an upstream provider rate-limits us."""
    pass


class NotFoundError(ProviderError):
    """Raised when an upstream provider has no such entity."""
    pass
