"""
Canonical cache keys and TTLs.

Every call site that reads or writes a cached resource builds its key here,
so independent call sites for the same logical resource always share one
cache slot (and one dedup slot).
"""

import re
from typing import Union

from ..config import get_settings

_VERSION_SUFFIX = re.compile(r"-v\d+$")
_PARENT_PREFIX = "parent#"


class CacheTTL:
    """TTLs in seconds per resource type, overridable via settings."""

    def __init__(self, settings=None):
        s = settings or get_settings()
        self.MARKET_DATA = s.cache_ttl_market_data
        self.TOKEN_DETAIL = s.cache_ttl_token_detail
        self.PRICE_HISTORY = s.cache_ttl_price_history
        self.TRENDING = s.cache_ttl_trending
        self.PROTOCOL = s.cache_ttl_protocol
        self.STABLECOIN = s.cache_ttl_stablecoin
        self.GLOBAL_STATS = s.cache_ttl_global_stats


def normalize_entity_id(entity_id: str) -> str:
    """Resolve a protocol id/slug to the base id its cache record lives under.

    Child and versioned slugs collapse onto the parent record:

        >>> normalize_entity_id("parent#Jupiter")
        'jupiter'
        >>> normalize_entity_id("raydium-v3")
        'raydium'
        >>> normalize_entity_id(" Kamino-Lend ")
        'kamino-lend'
    """
    base = entity_id.strip().lower()
    if base.startswith(_PARENT_PREFIX):
        base = base[len(_PARENT_PREFIX):]
    return _VERSION_SUFFIX.sub("", base)


def normalize_address(address: str) -> str:
    """Token addresses are case-sensitive base58; only whitespace is dropped."""
    return address.strip()


def slug_from_name(name: str) -> str:
    """Derive a protocol slug from its display name ("Jito Staking" -> "jito-staking")."""
    return re.sub(r"\s+", "-", name.strip().lower())


class CacheKeys:
    """Key builders, one per resource type."""

    @staticmethod
    def protocol(slug: str) -> str:
        return f"defi:protocol:{normalize_entity_id(slug)}"

    @staticmethod
    def protocols_all() -> str:
        return "defi:protocols:all"

    @staticmethod
    def child_protocols(parent_slug: str) -> str:
        return f"defi:children:{normalize_entity_id(parent_slug)}"

    @staticmethod
    def token_detail(address: str) -> str:
        return f"token:detail:{normalize_address(address)}"

    @staticmethod
    def market_data(limit: int, offset: int) -> str:
        return f"market:{limit}:{offset}"

    @staticmethod
    def newly_listed(limit: int, offset: int) -> str:
        return f"newly-listed:{limit}:{offset}"

    @staticmethod
    def price_history(address: str, days: Union[int, str]) -> str:
        return f"price-history:{normalize_address(address)}:{str(days).strip().lower()}"

    @staticmethod
    def trending(limit: int) -> str:
        return f"trending:{limit}"

    @staticmethod
    def stablecoin_chains() -> str:
        return "global:stablecoin"

    @staticmethod
    def solana_tvl() -> str:
        return "global:totalTVL"

    @staticmethod
    def global_stats() -> str:
        return "global:stats"


cache_keys = CacheKeys()
