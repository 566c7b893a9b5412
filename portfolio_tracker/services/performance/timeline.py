# portfolio_tracker/services/performance/timeline.py
"""
Valuation timeline of one portfolio.

Replays the event log progressively and values the book at the close of
each requested day:

    V(t) = Σ position quantity × close(symbol, t) × fx(currency → base, t)
           + cash balance(t)

Cash is kept per currency from the transaction log so that BUY and SELL
move value between positions and cash without creating a flow. Only
DEPOSIT and WITHDRAWAL are external flows.

Prices are fetched once per symbol for the whole window. A missing close
falls back to the last close within PRICE_FALLBACK_DAYS, then to the
position's cost basis (the symbol is reported in priced_at_cost).
"""

import logging
from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal
from typing import Any

from portfolio_tracker.models import Portfolio, Transaction, TransactionType
from portfolio_tracker.services.constants import ONE, PRICE_FALLBACK_DAYS, ZERO
from portfolio_tracker.services.exceptions import PriceUnavailableError
from portfolio_tracker.services.ledger.lot_book import (
    TRANSACTION_EVENT,
    AppliedAction,
    LotBook,
    RealizedAllocation,
    ordered_events,
)
from portfolio_tracker.services.market_data.base import lookup_close
from portfolio_tracker.services.performance.types import ValuationPoint
from portfolio_tracker.services.protocols import PriceOracleProtocol
from portfolio_tracker.utils.context import check_deadline
from portfolio_tracker.utils.decimal_utils import DECIMAL_CONTEXT

logger = logging.getLogger(__name__)


def cash_effect(tx: Transaction) -> Decimal:
    """Signed change of the cash balance caused by one transaction, in its currency."""
    tx_type = TransactionType(tx.transaction_type)
    gross = tx.gross_amount
    commission = tx.commission or ZERO
    if tx_type == TransactionType.DEPOSIT:
        return gross
    if tx_type in (TransactionType.WITHDRAWAL, TransactionType.FEE):
        return -gross
    if tx_type == TransactionType.DIVIDEND:
        return gross - commission
    if tx_type == TransactionType.BUY:
        return -(gross + commission)
    if tx_type == TransactionType.SELL:
        return gross - commission
    return ZERO


def external_flow(tx: Transaction) -> Decimal:
    """Deposits positive, withdrawals negative, everything else zero."""
    tx_type = TransactionType(tx.transaction_type)
    if tx_type == TransactionType.DEPOSIT:
        return tx.gross_amount
    if tx_type == TransactionType.WITHDRAWAL:
        return -tx.gross_amount
    return ZERO


def _event_date(event: tuple[int, Any]) -> date:
    kind, item = event
    return item.date if kind == TRANSACTION_EVENT else item.action_date


class PortfolioTimeline:
    """
    Progressive valuation of one portfolio over [start, end].

    Usage:
        timeline = PortfolioTimeline(portfolio, transactions, actions, oracle, start, end)
        points = timeline.value_at([start, end])
        timeline.external_flows  # {date: base-currency amount}
    """

    def __init__(
            self,
            portfolio: Portfolio,
            transactions: list[Transaction],
            actions: list[AppliedAction],
            oracle: PriceOracleProtocol,
            start: date,
            end: date,
    ) -> None:
        self.portfolio = portfolio
        self.base_currency = portfolio.base_currency
        self.oracle = oracle
        self.start = start
        self.end = end
        self.transactions = transactions
        self._events = ordered_events(transactions, actions)
        self._closes: dict[str, dict[date, Decimal]] = {}
        self._rates: dict[tuple[str, date], Decimal] = {}
        self.realized: list[RealizedAllocation] = []

        self.external_flows: dict[date, Decimal] = defaultdict(lambda: ZERO)
        for tx in transactions:
            amount = external_flow(tx)
            if amount != ZERO:
                self.external_flows[tx.date] += amount * self.rate(tx.currency, tx.date)
        self.external_flows = dict(self.external_flows)

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def value_at(self, dates: list[date]) -> dict[date, ValuationPoint]:
        """Value the portfolio at the close of each day, replaying events once."""
        book = LotBook(self.portfolio.cost_basis_method)
        cash: dict[str, Decimal] = defaultdict(lambda: ZERO)
        points: dict[date, ValuationPoint] = {}
        index = 0

        for day in sorted(set(dates)):
            check_deadline("portfolio valuation")
            while index < len(self._events) and _event_date(self._events[index]) <= day:
                kind, event = self._events[index]
                book.apply_event(kind, event)
                if kind == TRANSACTION_EVENT:
                    cash[event.currency] += cash_effect(event)
                index += 1
            points[day] = self._value(book, cash, day)

        self.realized = list(book.realized)
        return points

    def flows_between(self, start: date, end: date) -> dict[date, Decimal]:
        """External flows dated in (start, end]."""
        return {day: amount for day, amount in self.external_flows.items() if start < day <= end}

    def transactions_between(self, start: date, end: date) -> list[Transaction]:
        return [tx for tx in self.transactions if start <= tx.date <= end]

    def rate(self, currency: str, on: date) -> Decimal:
        """Units of base currency per unit of `currency` on a day."""
        if not currency or currency == self.base_currency:
            return ONE
        key = (currency, on)
        if key not in self._rates:
            self._rates[key] = self.oracle.fx(currency, self.base_currency, on)
        return self._rates[key]

    def close(self, symbol: str, on: date) -> Decimal | None:
        closes = self._closes.get(symbol)
        if closes is None:
            window_start = self.start - timedelta(days=PRICE_FALLBACK_DAYS)
            try:
                closes = self.oracle.historical(symbol, window_start, self.end)
            except PriceUnavailableError:
                logger.warning(f"No prices for {symbol}, valuing at cost basis")
                closes = {}
            self._closes[symbol] = closes
        return lookup_close(closes, on)

    # =========================================================================
    # PRIVATE METHODS
    # =========================================================================

    def _value(self, book: LotBook, cash: dict[str, Decimal], day: date) -> ValuationPoint:
        market_value = ZERO
        cost_basis = ZERO
        priced_at_cost: list[str] = []

        for symbol, position in book.positions().items():
            rate = self.rate(position.currency, day)
            position_cost = DECIMAL_CONTEXT.multiply(position.cost_basis, rate)
            price = self.close(symbol, day)
            if price is None:
                priced_at_cost.append(symbol)
                market_value += position_cost
            else:
                market_value += DECIMAL_CONTEXT.multiply(DECIMAL_CONTEXT.multiply(position.quantity, price), rate)
            cost_basis += position_cost

        cash_balance = sum(
            (DECIMAL_CONTEXT.multiply(amount, self.rate(currency, day)) for currency, amount in cash.items()),
            ZERO,
        )
        return ValuationPoint(
            date=day,
            market_value=market_value,
            cash=cash_balance,
            cost_basis=cost_basis,
            priced_at_cost=priced_at_cost,
        )
