"""
Application wiring: one store, one dedup queue, one write-behind set and the
services built on them, with explicit startup and shutdown.
"""

from typing import Optional

from .cache import CacheTTL, ReadThroughCache, RedisStore, RequestQueue, WriteBehind, create_store
from .cache.store import KVStore
from .config import Settings, get_settings
from .entities import PROTOCOL_SCHEMA, TOKEN_SCHEMA, UnifiedEntityCache
from .providers import BirdeyeProvider, DefiLlamaProvider
from .services import MarketService, ProtocolService, TokenService
from .utils.logging import get_logger

logger = get_logger(__name__)


class AppContainer:
    """Holds the shared cache components and services for one process."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        store: Optional[KVStore] = None,
        defillama: Optional[DefiLlamaProvider] = None,
        birdeye: Optional[BirdeyeProvider] = None,
    ):
        self.settings = settings or get_settings()
        self.ttl = CacheTTL(self.settings)

        self.store = store or create_store(self.settings)
        self.queue = RequestQueue()
        self.write_behind = WriteBehind()
        self.cache = ReadThroughCache(
            self.store,
            self.queue,
            self.write_behind,
            producer_timeout=self.settings.producer_timeout_seconds,
        )

        self.protocol_cache = UnifiedEntityCache(self.store, PROTOCOL_SCHEMA, self.write_behind, self.ttl.PROTOCOL)
        self.token_cache = UnifiedEntityCache(self.store, TOKEN_SCHEMA, self.write_behind, self.ttl.TOKEN_DETAIL)

        self.defillama = defillama or DefiLlamaProvider()
        self.birdeye = birdeye or BirdeyeProvider()

        self.protocols = ProtocolService(self.cache, self.protocol_cache, self.defillama, self.ttl)
        self.tokens = TokenService(self.cache, self.token_cache, self.birdeye, self.ttl)
        self.market = MarketService(self.cache, self.token_cache, self.defillama, self.birdeye, self.ttl)

    async def startup(self) -> None:
        if isinstance(self.store, RedisStore) and not self.store.is_available:
            await self.store.connect()
        await self.defillama.initialize()
        await self.birdeye.initialize()
        logger.info("Application started", store=type(self.store).__name__)

    async def shutdown(self, drain_timeout: float = 5.0) -> None:
        await self.write_behind.drain(timeout=drain_timeout)
        self.write_behind.cancel_all()
        await self.defillama.close()
        await self.birdeye.close()
        await self.store.close()
        logger.info("Application stopped")
