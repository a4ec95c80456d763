"""
MarketLens: cached Solana DeFi and token market data.
"""

__version__ = "1.0.0"
