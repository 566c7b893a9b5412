# portfolio_tracker/services/performance/types.py
"""
Data types for the Performance Engine.

All amounts are Decimal in the portfolio's base currency. Returns are
decimals (0.15 = 15%); the *_pct fields carry the same figure × 100.

Architecture:
    - CashFlow / ValuationPoint: inputs to the return functions
    - TwrComputation / IrrResult: raw outputs of the pure solvers
    - TWRResult, MWRResult, AnnualizedReturnResult,
      BenchmarkComparisonResult, PerformanceMetrics: service results
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal


# =============================================================================
# INPUT TYPES
# =============================================================================

@dataclass(frozen=True)
class CashFlow:
    """
    A dated amount.

    For external flows: positive = deposit, negative = withdrawal.
    For IRR terms: signed from the investor's side (money in is negative).
    """
    date: date
    amount: Decimal


@dataclass
class ValuationPoint:
    """
    Portfolio state at the close of one day.

    Attributes:
        market_value: Σ position quantity × close (cost basis where no close)
        cash: Running cash balance from the transaction log
        cost_basis: Σ open lot cost basis
        priced_at_cost: Symbols valued at cost because no close was found
    """
    date: date
    market_value: Decimal
    cash: Decimal
    cost_basis: Decimal
    priced_at_cost: list[str] = field(default_factory=list)

    @property
    def total_value(self) -> Decimal:
        return self.market_value + self.cash


# =============================================================================
# SOLVER OUTPUTS
# =============================================================================

@dataclass
class SubPeriodReturn:
    start_date: date
    end_date: date
    start_value: Decimal
    end_value: Decimal
    cash_flow: Decimal
    period_return: Decimal | None  # None when start_value is 0 (skipped)


@dataclass
class TwrComputation:
    twr: Decimal | None
    days_used: int
    sub_periods: list[SubPeriodReturn] = field(default_factory=list)


@dataclass
class IrrResult:
    """
    Outcome of the IRR solver.

    rate is the converged root, or the best estimate seen when converged
    is False (None when no estimate exists, e.g. flows of a single sign).
    """
    rate: Decimal | None
    converged: bool
    iterations: int
    method: str  # "newton", "bisection" or "none"
    residual: Decimal | None = None


# =============================================================================
# SERVICE RESULTS
# =============================================================================

@dataclass
class TWRResult:
    start_date: date
    end_date: date
    twr: Decimal | None
    twr_pct: Decimal | None
    annualized_twr: Decimal | None
    annualized_twr_pct: Decimal | None
    calendar_days: int
    days_used: int
    start_value: Decimal
    end_value: Decimal
    sub_periods: list[SubPeriodReturn] = field(default_factory=list)


@dataclass
class MWRResult:
    start_date: date
    end_date: date
    mwr: Decimal | None
    mwr_pct: Decimal | None
    converged: bool
    iterations: int
    method: str
    error_code: str | None = None  # IRR_NONCONVERGENT when converged is False
    start_value: Decimal = field(default_factory=lambda: Decimal("0"))
    end_value: Decimal = field(default_factory=lambda: Decimal("0"))


@dataclass
class AnnualizedReturnResult:
    start_date: date
    end_date: date
    annualized_return: Decimal | None
    annualized_return_pct: Decimal | None
    years: Decimal
    start_value: Decimal
    end_value: Decimal
    net_deposits: Decimal
    net_withdrawals: Decimal


@dataclass
class BenchmarkComparisonResult:
    start_date: date
    end_date: date
    benchmark_symbol: str
    portfolio_twr: Decimal | None
    benchmark_twr: Decimal | None
    alpha: Decimal | None
    portfolio_twr_pct: Decimal | None
    benchmark_twr_pct: Decimal | None
    alpha_pct: Decimal | None


@dataclass
class PerformanceMetrics:
    """Everything the metrics endpoint returns in one pass."""
    start_date: date
    end_date: date
    twr: TWRResult
    mwr: MWRResult
    annualized: AnnualizedReturnResult
    total_value: Decimal
    market_value: Decimal
    cash_balance: Decimal
    total_cost_basis: Decimal
    unrealized_gain: Decimal
    realized_gain: Decimal
    dividends: Decimal
    fees: Decimal
    total_deposits: Decimal
    total_withdrawals: Decimal
    priced_at_cost: list[str] = field(default_factory=list)
