"""
Pytest configuration and fixtures.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest


class FakeClock:
    """Manually advanced monotonic clock for expiry tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock):
    """In-memory store driven by the fake clock."""
    from marketlens.cache import InMemoryStore
    return InMemoryStore(clock=clock)


@pytest.fixture
def queue():
    from marketlens.cache import RequestQueue
    return RequestQueue()


@pytest.fixture
def write_behind():
    from marketlens.cache import WriteBehind
    return WriteBehind()


@pytest.fixture
def read_through(store, queue, write_behind):
    from marketlens.cache import ReadThroughCache
    return ReadThroughCache(store, queue, write_behind, producer_timeout=2.0)


@pytest.fixture
def protocol_cache(store, write_behind):
    from marketlens.entities import PROTOCOL_SCHEMA, UnifiedEntityCache
    return UnifiedEntityCache(store, PROTOCOL_SCHEMA, write_behind, 900)


@pytest.fixture
def token_cache(store, write_behind):
    from marketlens.entities import TOKEN_SCHEMA, UnifiedEntityCache
    return UnifiedEntityCache(store, TOKEN_SCHEMA, write_behind, 120)


@pytest.fixture
def ttl():
    from marketlens.cache import CacheTTL
    from marketlens.config import Settings
    return CacheTTL(Settings(_env_file=None))


@pytest.fixture
def defillama():
    """DeFiLlama provider double; tests set return values per method."""
    provider = MagicMock()
    provider.name = "defillama"
    for method in (
        "initialize",
        "close",
        "fetch_protocols",
        "fetch_protocol",
        "fetch_historical_chain_tvl",
        "fetch_fees",
        "fetch_chain_fees",
        "fetch_stablecoin_chains",
        "fetch_stablecoin_chart",
    ):
        setattr(provider, method, AsyncMock())
    return provider


@pytest.fixture
def birdeye():
    """Birdeye provider double; tests set return values per method."""
    provider = MagicMock()
    provider.name = "birdeye"
    for method in (
        "initialize",
        "close",
        "fetch_token_list",
        "fetch_token_overview",
        "fetch_ohlcv",
        "fetch_trending",
    ):
        setattr(provider, method, AsyncMock())
    return provider
