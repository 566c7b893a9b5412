# portfolio_tracker/routers/__init__.py
"""
API routers for the Portfolio Tracker.

Each router handles a specific domain:
- portfolios: Portfolio management and ownership
- transactions: Event log writes and reads
- imports: Bulk and CSV imports, import batches
- holdings: Holdings and realized gains
- tax_lots: Open lots, allocation preview, harvesting, tax report
- performance: TWR, MWR, annualized return, benchmark comparison
- snapshots: Daily performance snapshots
- actions: Per-portfolio corporate action review
- corporate_actions: Global corporate action registry
"""

from portfolio_tracker.routers.actions import router as actions_router
from portfolio_tracker.routers.corporate_actions import router as corporate_actions_router
from portfolio_tracker.routers.holdings import router as holdings_router
from portfolio_tracker.routers.imports import router as imports_router
from portfolio_tracker.routers.performance import router as performance_router
from portfolio_tracker.routers.portfolios import router as portfolios_router
from portfolio_tracker.routers.snapshots import router as snapshots_router
from portfolio_tracker.routers.tax_lots import router as tax_lots_router
from portfolio_tracker.routers.transactions import router as transactions_router

__all__ = [
    "portfolios_router",
    "transactions_router",
    "imports_router",
    "holdings_router",
    "tax_lots_router",
    "performance_router",
    "snapshots_router",
    "actions_router",
    "corporate_actions_router",
]
