# portfolio_tracker/services/market_data/cache.py
"""
Process-wide price cache.

Wraps any PriceOracle. Entries live for `ttl_seconds`; the cache is a
plain dict guarded by a lock and never participates in portfolio locks.
Historical ranges are cached per (symbol, start, end).
"""

import logging
import threading
import time
from datetime import date
from decimal import Decimal
from typing import Any, Callable

from portfolio_tracker.services.market_data.base import PriceOracle

logger = logging.getLogger(__name__)


class CachedPriceOracle(PriceOracle):

    def __init__(self, inner: PriceOracle, ttl_seconds: int = 900, max_entries: int = 10_000) -> None:
        self._inner = inner
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._entries: dict[tuple, tuple[float, Any]] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @property
    def name(self) -> str:
        return f"cached:{self._inner.name}"

    def quote(self, symbol: str) -> Decimal:
        return self._cached(("quote", symbol.upper()), lambda: self._inner.quote(symbol))

    def historical(self, symbol: str, start_date: date, end_date: date) -> dict[date, Decimal]:
        key = ("historical", symbol.upper(), start_date, end_date)
        closes = self._cached(key, lambda: self._inner.historical(symbol, start_date, end_date))
        return dict(closes)

    def fx(self, from_currency: str, to_currency: str, on: date) -> Decimal:
        key = ("fx", from_currency.upper(), to_currency.upper(), on)
        return self._cached(key, lambda: self._inner.fx(from_currency, to_currency, on))

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {"entries": len(self._entries), "hits": self.hits, "misses": self.misses}

    def _cached(self, key: tuple, loader: Callable[[], Any]) -> Any:
        now = time.monotonic()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry[0] > now:
                self.hits += 1
                return entry[1]
            self.misses += 1

        # Provider call outside the lock; a concurrent miss may fetch twice
        value = loader()

        with self._lock:
            if len(self._entries) >= self._max_entries:
                self._evict_expired(now)
            if len(self._entries) >= self._max_entries:
                logger.info(f"Price cache full ({self._max_entries} entries), clearing")
                self._entries.clear()
            self._entries[key] = (now + self._ttl, value)
        return value

    def _evict_expired(self, now: float) -> None:
        expired = [key for key, (expires, _) in self._entries.items() if expires <= now]
        for key in expired:
            del self._entries[key]
