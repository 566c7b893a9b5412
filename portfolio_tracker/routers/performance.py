# portfolio_tracker/routers/performance.py
"""
Performance endpoints.

All take optional start_date and end_date. end_date defaults to today
(UTC) and may not be in the future; start_date defaults to the first
transaction date.

- GET /portfolios/{portfolio_id}/performance/metrics     everything below in one response
- GET /portfolios/{portfolio_id}/performance/twr         time-weighted return (Modified Dietz, chained)
- GET /portfolios/{portfolio_id}/performance/mwr         money-weighted return (IRR), ?strict=
- GET /portfolios/{portfolio_id}/performance/annualized  annualized return
- GET /portfolios/{portfolio_id}/performance/benchmark   TWR against a benchmark, ?benchmark_symbol=SPY
"""

import logging
from datetime import date
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from portfolio_tracker.database import get_db
from portfolio_tracker.dependencies import get_performance_service, get_portfolio_with_owner_check
from portfolio_tracker.middleware.rate_limit import RATE_LIMIT_ANALYTICS, limiter
from portfolio_tracker.models import Portfolio
from portfolio_tracker.schemas.performance import (
    AnnualizedReturnResponse,
    BenchmarkComparisonResponse,
    MWRResponse,
    PerformanceMetricsResponse,
    TWRResponse,
)
from portfolio_tracker.services.constants import DEFAULT_BENCHMARK_SYMBOL
from portfolio_tracker.services.performance import (
    AnnualizedReturnResult,
    BenchmarkComparisonResult,
    MWRResult,
    PerformanceMetrics,
    PerformanceService,
    TWRResult,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/portfolios", tags=["Performance"])


@router.get(
    "/{portfolio_id}/performance/metrics",
    response_model=PerformanceMetricsResponse,
    summary="Performance summary",
)
@limiter.limit(RATE_LIMIT_ANALYTICS)
def get_metrics(
    request: Request,
    portfolio: Annotated[Portfolio, Depends(get_portfolio_with_owner_check)],
    db: Annotated[Session, Depends(get_db)],
    service: Annotated[PerformanceService, Depends(get_performance_service)],
    start_date: date | None = None,
    end_date: date | None = None,
) -> PerformanceMetrics:
    return service.get_metrics(db, portfolio, start_date, end_date)


@router.get("/{portfolio_id}/performance/twr", response_model=TWRResponse, summary="Time-weighted return")
@limiter.limit(RATE_LIMIT_ANALYTICS)
def get_twr(
    request: Request,
    portfolio: Annotated[Portfolio, Depends(get_portfolio_with_owner_check)],
    db: Annotated[Session, Depends(get_db)],
    service: Annotated[PerformanceService, Depends(get_performance_service)],
    start_date: date | None = None,
    end_date: date | None = None,
) -> TWRResult:
    """
    Sub-periods are split at every external cash flow (deposit or
    withdrawal). Each sub-period return is

        (V_end − V_start − CF) / (V_start + Σ w·CF)

    and the period TWR is the product of (1 + r) minus one. twr is null
    when the portfolio was never funded in the period.
    """
    return service.get_twr(db, portfolio, start_date, end_date)


@router.get("/{portfolio_id}/performance/mwr", response_model=MWRResponse, summary="Money-weighted return")
@limiter.limit(RATE_LIMIT_ANALYTICS)
def get_mwr(
    request: Request,
    portfolio: Annotated[Portfolio, Depends(get_portfolio_with_owner_check)],
    db: Annotated[Session, Depends(get_db)],
    service: Annotated[PerformanceService, Depends(get_performance_service)],
    start_date: date | None = None,
    end_date: date | None = None,
    strict: bool = Query(default=False, description="Fail with 400 instead of returning a non-converged estimate"),
) -> MWRResult:
    """
    IRR of the period's flows. When the solver does not converge the best
    estimate is returned with converged=false and error_code
    IRR_NONCONVERGENT.
    """
    return service.get_mwr(db, portfolio, start_date, end_date, strict=strict)


@router.get(
    "/{portfolio_id}/performance/annualized",
    response_model=AnnualizedReturnResponse,
    summary="Annualized return",
)
@limiter.limit(RATE_LIMIT_ANALYTICS)
def get_annualized_return(
    request: Request,
    portfolio: Annotated[Portfolio, Depends(get_portfolio_with_owner_check)],
    db: Annotated[Session, Depends(get_db)],
    service: Annotated[PerformanceService, Depends(get_performance_service)],
    start_date: date | None = None,
    end_date: date | None = None,
) -> AnnualizedReturnResult:
    return service.get_annualized_return(db, portfolio, start_date, end_date)


@router.get(
    "/{portfolio_id}/performance/benchmark",
    response_model=BenchmarkComparisonResponse,
    summary="Compare against a benchmark",
)
@limiter.limit(RATE_LIMIT_ANALYTICS)
def get_benchmark_comparison(
    request: Request,
    portfolio: Annotated[Portfolio, Depends(get_portfolio_with_owner_check)],
    db: Annotated[Session, Depends(get_db)],
    service: Annotated[PerformanceService, Depends(get_performance_service)],
    benchmark_symbol: str = DEFAULT_BENCHMARK_SYMBOL,
    start_date: date | None = None,
    end_date: date | None = None,
) -> BenchmarkComparisonResult:
    """alpha = portfolio TWR − benchmark TWR over the same period and flows."""
    return service.get_benchmark_comparison(db, portfolio, benchmark_symbol, start_date, end_date)
