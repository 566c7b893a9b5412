# portfolio_tracker/services/market_data/__init__.py
"""
Price oracle package.

Components:
- base: PriceOracle interface, retry helper, close lookup with fallback
- yahoo: Yahoo Finance implementation (yfinance)
- cache: process-wide TTL cache

Usage:
    from portfolio_tracker.services.market_data import CachedPriceOracle, YahooPriceOracle

    oracle = CachedPriceOracle(YahooPriceOracle(), ttl_seconds=900)
    oracle.price_on("AAPL", date(2024, 6, 28))
"""

from portfolio_tracker.services.market_data.base import PriceOracle, lookup_close
from portfolio_tracker.services.market_data.cache import CachedPriceOracle
from portfolio_tracker.services.market_data.yahoo import YahooPriceOracle

__all__ = [
    "PriceOracle",
    "lookup_close",
    "CachedPriceOracle",
    "YahooPriceOracle",
]
