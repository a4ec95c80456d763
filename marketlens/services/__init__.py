"""
Data services: upstream reads routed through the cache layer.
"""

from .market import MarketService
from .protocols import ProtocolResolution, ProtocolService
from .tokens import TokenService

__all__ = ["MarketService", "ProtocolResolution", "ProtocolService", "TokenService"]
