"""
Upstream market-data providers.
"""

from .base import BaseProvider
from .birdeye import BirdeyeProvider
from .defillama import DefiLlamaProvider

__all__ = ["BaseProvider", "BirdeyeProvider", "DefiLlamaProvider"]
