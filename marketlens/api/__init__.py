"""
HTTP API for MarketLens.
"""

from .routes import create_api_app, router

__all__ = ["create_api_app", "router"]
