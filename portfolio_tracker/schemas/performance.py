# portfolio_tracker/schemas/performance.py
"""
Response schemas for the performance engine and snapshots.

Returns are fractions (0.10 is 10%); every *_pct field is the same
figure multiplied by 100. A return is null when it is undefined, e.g.
TWR over a period in which the portfolio was never funded.
"""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class _FromAttributes(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# =============================================================================
# RETURNS
# =============================================================================

class SubPeriodResponse(_FromAttributes):
    start_date: date
    end_date: date
    start_value: Decimal
    end_value: Decimal
    cash_flow: Decimal
    period_return: Decimal | None


class TWRResponse(_FromAttributes):
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
    sub_periods: list[SubPeriodResponse] = []


class MWRResponse(_FromAttributes):
    start_date: date
    end_date: date
    mwr: Decimal | None
    mwr_pct: Decimal | None
    converged: bool
    iterations: int
    method: str
    error_code: str | None = None
    start_value: Decimal
    end_value: Decimal


class AnnualizedReturnResponse(_FromAttributes):
    start_date: date
    end_date: date
    annualized_return: Decimal | None
    annualized_return_pct: Decimal | None
    years: Decimal
    start_value: Decimal
    end_value: Decimal
    net_deposits: Decimal
    net_withdrawals: Decimal


class BenchmarkComparisonResponse(_FromAttributes):
    start_date: date
    end_date: date
    benchmark_symbol: str
    portfolio_twr: Decimal | None
    benchmark_twr: Decimal | None
    alpha: Decimal | None
    portfolio_twr_pct: Decimal | None
    benchmark_twr_pct: Decimal | None
    alpha_pct: Decimal | None


class PerformanceMetricsResponse(_FromAttributes):
    start_date: date
    end_date: date
    twr: TWRResponse
    mwr: MWRResponse
    annualized: AnnualizedReturnResponse
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
    priced_at_cost: list[str] = Field(default=[], description="Symbols valued at cost for lack of a price")


# =============================================================================
# SNAPSHOTS
# =============================================================================

class SnapshotCreate(BaseModel):
    as_of: date | None = Field(default=None, description="Defaults to today (UTC)")


class SnapshotResponse(_FromAttributes):
    id: int
    portfolio_id: int
    date: date
    total_value: Decimal
    total_cost_basis: Decimal
    total_return: Decimal
    total_return_pct: Decimal | None
    cash_flow_of_day: Decimal
    day_change: Decimal | None
    day_change_pct: Decimal | None
    priced_at_cost: list[str] | None = None
    created_at: datetime


class SnapshotListResponse(BaseModel):
    items: list[SnapshotResponse]
    total: int
    limit: int
    offset: int
