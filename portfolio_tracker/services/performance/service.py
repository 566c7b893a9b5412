# portfolio_tracker/services/performance/service.py
"""
Performance Service orchestrator.

Entry point of the Performance Engine. For each request it:
1. Loads the event log (transactions + applied corporate actions)
2. Builds a PortfolioTimeline valued through the price oracle
3. Values the portfolio at the boundary days the metric needs
4. Delegates to the pure return functions
5. Packages the result dataclass

Architecture:
    PerformanceService
        ├── uses → PortfolioTimeline (progressive replay + valuation)
        ├── uses → returns (Modified Dietz TWR, IRR, annualization)
        └── uses → PriceOracle (closes, FX, benchmark series)

Date range defaults: end = today (UTC), start = first transaction date.

Usage:
    service = PerformanceService(oracle)
    twr = service.get_twr(db, portfolio, start_date, end_date)
    metrics = service.get_metrics(db, portfolio)
"""

import logging
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy.orm import Session

from portfolio_tracker.models import Portfolio, TransactionType
from portfolio_tracker.services.constants import (
    CALENDAR_DAYS_PER_YEAR,
    DEFAULT_BENCHMARK_SYMBOL,
    PRICE_FALLBACK_DAYS,
    ZERO,
)
from portfolio_tracker.services.exceptions import (
    InvalidDateRangeError,
    IrrNonConvergentError,
    PriceUnavailableError,
    ValidationError,
)
from portfolio_tracker.services.ledger.ledger import load_applied_actions, load_transactions
from portfolio_tracker.services.market_data.base import lookup_close
from portfolio_tracker.services.performance.returns import (
    annualize_return,
    annualized_return,
    benchmark_values,
    modified_dietz_twr,
    mwr_cash_flows,
    solve_irr,
    to_percent,
)
from portfolio_tracker.services.performance.timeline import PortfolioTimeline
from portfolio_tracker.services.performance.types import (
    AnnualizedReturnResult,
    BenchmarkComparisonResult,
    MWRResult,
    PerformanceMetrics,
    TWRResult,
    ValuationPoint,
)
from portfolio_tracker.services.protocols import PriceOracleProtocol
from portfolio_tracker.utils.date_utils import utc_today
from portfolio_tracker.utils.decimal_utils import DECIMAL_CONTEXT

logger = logging.getLogger(__name__)


class PerformanceService:

    def __init__(self, oracle: PriceOracleProtocol) -> None:
        self._oracle = oracle

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def get_twr(
            self,
            db: Session,
            portfolio: Portfolio,
            start_date: date | None = None,
            end_date: date | None = None,
    ) -> TWRResult:
        timeline = self._timeline(db, portfolio, start_date, end_date)
        points = timeline.value_at(self._boundaries(timeline))
        return self._twr(timeline, points)

    def get_mwr(
            self,
            db: Session,
            portfolio: Portfolio,
            start_date: date | None = None,
            end_date: date | None = None,
            strict: bool = False,
    ) -> MWRResult:
        """
        Money-weighted return (IRR) over the period.

        Non-convergence returns the best estimate with converged=False and
        error_code IRR_NONCONVERGENT; with strict=True it raises instead.
        """
        timeline = self._timeline(db, portfolio, start_date, end_date)
        points = timeline.value_at([timeline.start, timeline.end])
        result = self._mwr(timeline, points)
        if strict and not result.converged:
            raise IrrNonConvergentError(result.mwr, result.iterations)
        return result

    def get_annualized_return(
            self,
            db: Session,
            portfolio: Portfolio,
            start_date: date | None = None,
            end_date: date | None = None,
    ) -> AnnualizedReturnResult:
        timeline = self._timeline(db, portfolio, start_date, end_date)
        points = timeline.value_at([timeline.start, timeline.end])
        return self._annualized(timeline, points)

    def get_benchmark_comparison(
            self,
            db: Session,
            portfolio: Portfolio,
            benchmark_symbol: str = DEFAULT_BENCHMARK_SYMBOL,
            start_date: date | None = None,
            end_date: date | None = None,
    ) -> BenchmarkComparisonResult:
        """
        Portfolio TWR against a buy-and-hold of the benchmark with the same flows.

        alpha = portfolio_twr − benchmark_twr

        Raises:
            ValidationError: No benchmark close on a boundary day
        """
        symbol = (benchmark_symbol or DEFAULT_BENCHMARK_SYMBOL).strip().upper()
        timeline = self._timeline(db, portfolio, start_date, end_date)
        boundaries = self._boundaries(timeline)
        points = timeline.value_at(boundaries)
        portfolio_twr = self._twr(timeline, points)

        prices = self._benchmark_prices(symbol, timeline.start, timeline.end, boundaries)
        flows = timeline.flows_between(timeline.start, timeline.end)
        start_value = points[timeline.start].total_value

        benchmark_twr = None
        if start_value != ZERO or flows:
            series = benchmark_values(prices, timeline.start, start_value, flows, boundaries)
            benchmark_twr = modified_dietz_twr(series, flows, timeline.start, timeline.end).twr

        alpha = None
        if portfolio_twr.twr is not None and benchmark_twr is not None:
            alpha = portfolio_twr.twr - benchmark_twr

        logger.info(
            f"Benchmark comparison for portfolio {portfolio.id} vs {symbol}: "
            f"twr={portfolio_twr.twr}, benchmark={benchmark_twr}, alpha={alpha}"
        )
        return BenchmarkComparisonResult(
            start_date=timeline.start,
            end_date=timeline.end,
            benchmark_symbol=symbol,
            portfolio_twr=portfolio_twr.twr,
            benchmark_twr=benchmark_twr,
            alpha=alpha,
            portfolio_twr_pct=to_percent(portfolio_twr.twr),
            benchmark_twr_pct=to_percent(benchmark_twr),
            alpha_pct=to_percent(alpha),
        )

    def get_metrics(
            self,
            db: Session,
            portfolio: Portfolio,
            start_date: date | None = None,
            end_date: date | None = None,
    ) -> PerformanceMetrics:
        """TWR, MWR, annualized return and the period totals in one valuation pass."""
        timeline = self._timeline(db, portfolio, start_date, end_date)
        points = timeline.value_at(self._boundaries(timeline))
        end_point = points[timeline.end]

        realized = sum(
            (item.gain for item in timeline.realized if timeline.start <= item.sale_date <= timeline.end),
            ZERO,
        )

        dividends = ZERO
        fees = ZERO
        for tx in timeline.transactions_between(timeline.start, timeline.end):
            rate = timeline.rate(tx.currency, tx.date)
            tx_type = TransactionType(tx.transaction_type)
            if tx_type == TransactionType.DIVIDEND:
                dividends += DECIMAL_CONTEXT.multiply(tx.gross_amount, rate)
            elif tx_type == TransactionType.FEE:
                fees += DECIMAL_CONTEXT.multiply(tx.gross_amount, rate)
            if tx.commission:
                fees += DECIMAL_CONTEXT.multiply(tx.commission, rate)

        annualized = self._annualized(timeline, points)
        return PerformanceMetrics(
            start_date=timeline.start,
            end_date=timeline.end,
            twr=self._twr(timeline, points),
            mwr=self._mwr(timeline, points),
            annualized=annualized,
            total_value=end_point.total_value,
            market_value=end_point.market_value,
            cash_balance=end_point.cash,
            total_cost_basis=end_point.cost_basis,
            unrealized_gain=end_point.market_value - end_point.cost_basis,
            realized_gain=realized,
            dividends=dividends,
            fees=fees,
            total_deposits=annualized.net_deposits,
            total_withdrawals=annualized.net_withdrawals,
            priced_at_cost=end_point.priced_at_cost,
        )

    # =========================================================================
    # PRIVATE METHODS
    # =========================================================================

    def _timeline(
            self,
            db: Session,
            portfolio: Portfolio,
            start_date: date | None,
            end_date: date | None,
    ) -> PortfolioTimeline:
        transactions = load_transactions(db, portfolio.id)
        start, end = resolve_period(transactions[0].date if transactions else None, start_date, end_date)
        actions = load_applied_actions(db, portfolio.id)
        return PortfolioTimeline(portfolio, transactions, actions, self._oracle, start, end)

    @staticmethod
    def _boundaries(timeline: PortfolioTimeline) -> list[date]:
        """Start, end and every day with a nonzero external flow in between."""
        flows = timeline.flows_between(timeline.start, timeline.end)
        days = {timeline.start, timeline.end}
        days.update(day for day, amount in flows.items() if amount != ZERO)
        return sorted(days)

    def _twr(self, timeline: PortfolioTimeline, points: dict[date, ValuationPoint]) -> TWRResult:
        values = {day: point.total_value for day, point in points.items()}
        flows = timeline.flows_between(timeline.start, timeline.end)
        computation = modified_dietz_twr(values, flows, timeline.start, timeline.end)
        annualized = annualize_return(computation.twr, computation.days_used)
        return TWRResult(
            start_date=timeline.start,
            end_date=timeline.end,
            twr=computation.twr,
            twr_pct=to_percent(computation.twr),
            annualized_twr=annualized,
            annualized_twr_pct=to_percent(annualized),
            calendar_days=(timeline.end - timeline.start).days,
            days_used=computation.days_used,
            start_value=values[timeline.start],
            end_value=values[timeline.end],
            sub_periods=computation.sub_periods,
        )

    def _mwr(self, timeline: PortfolioTimeline, points: dict[date, ValuationPoint]) -> MWRResult:
        start_value = points[timeline.start].total_value
        end_value = points[timeline.end].total_value
        flows = mwr_cash_flows(
            timeline.start,
            timeline.end,
            start_value,
            end_value,
            timeline.flows_between(timeline.start, timeline.end),
        )
        irr = solve_irr(flows, timeline.end)
        if not irr.converged:
            logger.warning(
                f"MWR for portfolio {timeline.portfolio.id} did not converge "
                f"({irr.iterations} iterations, best estimate {irr.rate})"
            )
        return MWRResult(
            start_date=timeline.start,
            end_date=timeline.end,
            mwr=irr.rate,
            mwr_pct=to_percent(irr.rate),
            converged=irr.converged,
            iterations=irr.iterations,
            method=irr.method,
            error_code=None if irr.converged else IrrNonConvergentError.code,
            start_value=start_value,
            end_value=end_value,
        )

    def _annualized(self, timeline: PortfolioTimeline, points: dict[date, ValuationPoint]) -> AnnualizedReturnResult:
        flows = timeline.flows_between(timeline.start, timeline.end)
        deposits = sum((amount for amount in flows.values() if amount > ZERO), ZERO)
        withdrawals = -sum((amount for amount in flows.values() if amount < ZERO), ZERO)
        start_value = points[timeline.start].total_value
        end_value = points[timeline.end].total_value
        days = (timeline.end - timeline.start).days

        result = annualized_return(start_value, end_value, deposits, withdrawals, days)
        return AnnualizedReturnResult(
            start_date=timeline.start,
            end_date=timeline.end,
            annualized_return=result,
            annualized_return_pct=to_percent(result),
            years=DECIMAL_CONTEXT.divide(Decimal(days), Decimal(CALENDAR_DAYS_PER_YEAR)),
            start_value=start_value,
            end_value=end_value,
            net_deposits=deposits,
            net_withdrawals=withdrawals,
        )

    def _benchmark_prices(
            self,
            symbol: str,
            start: date,
            end: date,
            days: list[date],
    ) -> dict[date, Decimal]:
        try:
            closes = self._oracle.historical(symbol, start - timedelta(days=PRICE_FALLBACK_DAYS), end)
        except PriceUnavailableError:
            raise ValidationError(f"Unknown benchmark symbol: {symbol}", field="benchmark_symbol")

        prices: dict[date, Decimal] = {}
        for day in days:
            price = lookup_close(closes, day)
            if price is None:
                raise ValidationError(f"No price for benchmark {symbol} on {day}", field="benchmark_symbol")
            prices[day] = price
        return prices


def resolve_period(
        first_event: date | None,
        start_date: date | None,
        end_date: date | None,
) -> tuple[date, date]:
    """
    Apply the period defaults and validate the range.

    Raises:
        InvalidDateRangeError: start after end, or end in the future
    """
    today = utc_today()
    end = end_date or today
    if end > today:
        raise InvalidDateRangeError(start_date or end, end, reason=f"end_date {end} is in the future")

    if start_date is None:
        start = min(first_event, end) if first_event else end
    else:
        start = start_date

    if start > end:
        raise InvalidDateRangeError(start, end)
    return start, end
