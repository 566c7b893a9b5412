# portfolio_tracker/services/performance/__init__.py
"""
Performance Engine.

Components:
- returns: pure TWR / IRR / annualization / benchmark functions
- timeline: progressive replay and valuation of a portfolio
- service: PerformanceService (TWR, MWR, annualized, benchmark, metrics)
- snapshots: SnapshotService (daily PerformanceSnapshot rows)
"""

from portfolio_tracker.services.performance.service import PerformanceService, resolve_period
from portfolio_tracker.services.performance.snapshots import SnapshotService
from portfolio_tracker.services.performance.timeline import PortfolioTimeline
from portfolio_tracker.services.performance.types import (
    AnnualizedReturnResult,
    BenchmarkComparisonResult,
    CashFlow,
    MWRResult,
    PerformanceMetrics,
    TWRResult,
    ValuationPoint,
)

__all__ = [
    "PerformanceService",
    "SnapshotService",
    "PortfolioTimeline",
    "resolve_period",
    "AnnualizedReturnResult",
    "BenchmarkComparisonResult",
    "CashFlow",
    "MWRResult",
    "PerformanceMetrics",
    "TWRResult",
    "ValuationPoint",
]
