# portfolio_tracker/services/market_data/base.py
"""
Abstract interface for price oracles.

The Performance Engine, the snapshotter and the harvest scan depend on
this contract only. Implementations:
- YahooPriceOracle: live prices through yfinance
- CachedPriceOracle: process-wide TTL cache in front of any oracle
- test fakes: dicts of closes

Contract:
    quote(symbol)                  latest close
    historical(symbol, from, to)   daily closes, inclusive, keyed by date
    fx(from, to, on)               units of `to` per unit of `from` on a day

Calls are idempotent within a request; callers never rely on stability
across requests.
"""

import logging
from abc import ABC, abstractmethod
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Callable, TypeVar

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from portfolio_tracker.services.constants import PRICE_FALLBACK_DAYS
from portfolio_tracker.services.exceptions import (
    ProviderRateLimitError,
    ProviderUnavailableError,
)

logger = logging.getLogger(__name__)

T = TypeVar('T')


def lookup_close(
        closes: dict[date, Decimal],
        on: date,
        fallback_days: int = PRICE_FALLBACK_DAYS,
) -> Decimal | None:
    """
    Close on `on`, or the most recent close within `fallback_days` before it.

    Covers weekends and holidays. Returns None when nothing is close enough.
    """
    for offset in range(fallback_days + 1):
        price = closes.get(on - timedelta(days=offset))
        if price is not None:
            return price
    return None


class PriceOracle(ABC):
    """
    Abstract base class for price oracles.

    Retry Behavior:
        `_execute_with_retry` retries ProviderUnavailableError and
        ProviderRateLimitError with exponential backoff. Subclasses tune it
        with class attributes:

        - MAX_RETRY_ATTEMPTS: Total attempts (default: 3)
        - RETRY_MIN_WAIT: Minimum wait in seconds (default: 1)
        - RETRY_MAX_WAIT: Maximum wait in seconds (default: 10)
        - RETRY_MULTIPLIER: Exponential multiplier (default: 1)

    Non-Retryable:
        - PriceUnavailableError: the provider has no data for the symbol
    """

    MAX_RETRY_ATTEMPTS: int = 3
    RETRY_MIN_WAIT: int = 1
    RETRY_MAX_WAIT: int = 10
    RETRY_MULTIPLIER: int = 1

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name used in logs and errors."""
        pass

    @abstractmethod
    def quote(self, symbol: str) -> Decimal:
        """
        Latest close for a symbol.

        Raises:
            PriceUnavailableError: No price for the symbol
            ProviderUnavailableError: Network or API error (retryable)
        """
        pass

    @abstractmethod
    def historical(self, symbol: str, start_date: date, end_date: date) -> dict[date, Decimal]:
        """
        Daily closes between start_date and end_date inclusive.

        Days without trading are absent. An unknown symbol raises
        PriceUnavailableError; a known symbol with no data in range returns {}.
        """
        pass

    @abstractmethod
    def fx(self, from_currency: str, to_currency: str, on: date) -> Decimal:
        """
        Exchange rate: units of to_currency per unit of from_currency on a day.

        Raises:
            PriceUnavailableError: No rate within the fallback window
        """
        pass

    def price_on(self, symbol: str, on: date) -> Decimal | None:
        """Close on a day with the weekend/holiday fallback, None if unavailable."""
        closes = self.historical(symbol, on - timedelta(days=PRICE_FALLBACK_DAYS), on)
        return lookup_close(closes, on)

    # =========================================================================
    # RETRY HELPER METHOD
    # =========================================================================

    def _execute_with_retry(
            self,
            func: Callable[..., T],
            *args: Any,
            **kwargs: Any,
    ) -> T:
        """
        Execute a provider call, retrying transient failures.

        Raises:
            The last exception if all retries fail
        """

        @retry(
            stop=stop_after_attempt(self.MAX_RETRY_ATTEMPTS),
            wait=wait_exponential(
                multiplier=self.RETRY_MULTIPLIER,
                min=self.RETRY_MIN_WAIT,
                max=self.RETRY_MAX_WAIT,
            ),
            retry=retry_if_exception_type((ProviderUnavailableError, ProviderRateLimitError)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        def _inner() -> T:
            return func(*args, **kwargs)

        return _inner()
