"""
Configuration management using Pydantic Settings.
All environment variables are validated at startup.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ===================
    # Redis Configuration
    # ===================
    redis_url: Optional[str] = Field(
        default=None,
        description="Redis connection string; in-process cache is used when unset",
    )
    redis_pool_size: int = Field(default=20, ge=1, le=500)
    redis_socket_timeout: float = Field(default=5.0, gt=0)

    # ===================
    # Upstream Providers
    # ===================
    birdeye_api_key: Optional[str] = Field(default=None, description="Birdeye public API key")
    birdeye_api_url: str = Field(
        default="https://public-api.birdeye.so",
        description="Birdeye API base URL",
    )
    birdeye_chain: str = Field(default="solana", description="Chain sent in the x-chain header")
    defillama_api_url: str = Field(
        default="https://api.llama.fi",
        description="DeFiLlama TVL API base URL",
    )
    stablecoins_api_url: str = Field(
        default="https://stablecoins.llama.fi",
        description="DeFiLlama stablecoins API base URL",
    )
    http_timeout_seconds: float = Field(default=15.0, gt=0)

    # ===================
    # Cache Behaviour
    # ===================
    producer_timeout_seconds: float = Field(
        default=30.0,
        description="Upper bound for a single upstream producer invocation",
    )
    cache_ttl_market_data: int = Field(default=120)
    cache_ttl_token_detail: int = Field(default=120)
    cache_ttl_price_history: int = Field(default=300)
    cache_ttl_trending: int = Field(default=180)
    cache_ttl_protocol: int = Field(default=900)
    cache_ttl_stablecoin: int = Field(default=900)
    cache_ttl_global_stats: int = Field(default=300)

    # ===================
    # API Server
    # ===================
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)
    internal_api_secret: Optional[str] = Field(
        default=None,
        description="Bearer token for /api/internal/*; endpoints are open when unset",
    )
    cron_secret: Optional[str] = Field(default=None, description="Bearer token for /api/cron/*")
    rate_limit_global: str = Field(default="120/minute")
    rate_limit_heavy: str = Field(default="30/minute")

    # ===================
    # Logging
    # ===================
    log_level: str = Field(default="INFO")
    log_format: Literal["auto", "console", "json"] = Field(
        default="auto",
        description="auto renders to the console on a TTY and JSON otherwise",
    )

    @field_validator(
        "cache_ttl_market_data",
        "cache_ttl_token_detail",
        "cache_ttl_price_history",
        "cache_ttl_trending",
        "cache_ttl_protocol",
        "cache_ttl_stablecoin",
        "cache_ttl_global_stats",
    )
    @classmethod
    def validate_ttl(cls, v: int) -> int:
        """TTLs are whole seconds and must be positive."""
        if v <= 0:
            raise ValueError("Cache TTL must be a positive number of seconds")
        return v

    @field_validator("producer_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Producer timeout must be positive")
        return v


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export
settings = get_settings()
