# portfolio_tracker/services/market_data/yahoo.py
"""
Yahoo Finance price oracle.

Implements PriceOracle with the yfinance library. Closes come from
Ticker.history() (raw, not dividend-adjusted); FX rates from the
"<FROM><TO>=X" currency pairs.

Limitations:
- Rate limits exist but are not documented
- Quotes may be delayed 15-20 minutes
"""

import logging
import math
from datetime import date, timedelta
from decimal import Decimal
from typing import Any

import yfinance as yf

from portfolio_tracker.services.constants import ONE, PRICE_FALLBACK_DAYS
from portfolio_tracker.services.exceptions import (
    PriceUnavailableError,
    ProviderRateLimitError,
    ProviderUnavailableError,
)
from portfolio_tracker.services.market_data.base import PriceOracle, lookup_close

logger = logging.getLogger(__name__)


class YahooPriceOracle(PriceOracle):
    """
    Yahoo Finance implementation of PriceOracle.

    Example:
        oracle = YahooPriceOracle()
        closes = oracle.historical("AAPL", date(2024, 1, 1), date(2024, 1, 31))
        rate = oracle.fx("EUR", "USD", date(2024, 1, 31))
    """

    # Lookback for quote(): covers long weekends
    QUOTE_LOOKBACK_DAYS: int = 7

    def __init__(self, timeout: int = 10) -> None:
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "yahoo"

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def quote(self, symbol: str) -> Decimal:
        today = date.today()
        closes = self.historical(symbol, today - timedelta(days=self.QUOTE_LOOKBACK_DAYS), today)
        if not closes:
            raise PriceUnavailableError(symbol, provider=self.name)
        return closes[max(closes)]

    def historical(self, symbol: str, start_date: date, end_date: date) -> dict[date, Decimal]:
        return self._execute_with_retry(self._fetch_closes, symbol.strip().upper(), start_date, end_date)

    def fx(self, from_currency: str, to_currency: str, on: date) -> Decimal:
        from_currency = from_currency.upper()
        to_currency = to_currency.upper()
        if from_currency == to_currency:
            return ONE

        pair = f"{from_currency}{to_currency}=X"
        closes = self.historical(pair, on - timedelta(days=PRICE_FALLBACK_DAYS), on)
        rate = lookup_close(closes, on)
        if rate is None:
            raise PriceUnavailableError(pair, provider=self.name, on=on)
        return rate

    # =========================================================================
    # PRIVATE METHODS
    # =========================================================================

    def _fetch_closes(self, yahoo_symbol: str, start_date: date, end_date: date) -> dict[date, Decimal]:
        logger.debug(f"Fetching closes for {yahoo_symbol}: {start_date} to {end_date}")

        try:
            yf_ticker = yf.Ticker(yahoo_symbol)

            # Yahoo Finance end date is exclusive
            df = yf_ticker.history(
                start=start_date.isoformat(),
                end=(end_date + timedelta(days=1)).isoformat(),
                interval="1d",
                auto_adjust=False,
                timeout=self._timeout,
            )
        except Exception as e:
            error_str = str(e).lower()
            if "not found" in error_str or "delisted" in error_str:
                raise PriceUnavailableError(yahoo_symbol, provider=self.name)
            if "rate limit" in error_str or "too many requests" in error_str:
                raise ProviderRateLimitError(provider=self.name)
            logger.error(f"Yahoo Finance error for {yahoo_symbol}: {e}")
            raise ProviderUnavailableError(provider=self.name, reason=str(e))

        if df is None or df.empty:
            logger.warning(f"No price data for {yahoo_symbol} between {start_date} and {end_date}")
            return {}

        closes = self._dataframe_to_closes(df)
        logger.debug(f"Fetched {len(closes)} closes for {yahoo_symbol}")
        return closes

    def _dataframe_to_closes(self, df) -> dict[date, Decimal]:
        """Convert a yfinance history DataFrame into {date: close}."""
        closes: dict[date, Decimal] = {}
        for idx, row in df.iterrows():
            price_date = idx.date() if hasattr(idx, 'date') else idx
            close = self._to_decimal(row.get('Close'))
            if close is None or close <= 0:
                logger.warning(f"Skipping {price_date}: missing close price")
                continue
            closes[price_date] = close
        return closes

    @staticmethod
    def _to_decimal(value: Any) -> Decimal | None:
        """Convert a pandas value to Decimal, returning None for NaN/None."""
        if value is None:
            return None
        try:
            if math.isnan(float(value)):
                return None
            return Decimal(str(value)).quantize(Decimal("0.00000001"))
        except (TypeError, ValueError):
            return None
