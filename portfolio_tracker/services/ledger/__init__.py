# portfolio_tracker/services/ledger/__init__.py
"""
Tax-lot ledger.

    allocator   pure FIFO / LIFO / SPECIFIC_LOT allocation
    lot_book    in-memory event replay over open lots
    ledger      persistence of lots and realized gains
    holdings    per-symbol projection of open lots
"""

from portfolio_tracker.services.ledger.allocator import (
    AllocationResult,
    LotAllocation,
    LotIdentity,
    LotSelection,
    OpenLot,
    allocate,
    parse_method,
)
from portfolio_tracker.services.ledger.holdings import HoldingView, HoldingsProjection, project_holdings
from portfolio_tracker.services.ledger.ledger import (
    TaxLotLedger,
    load_applied_actions,
    load_transactions,
    lot_identity,
    open_lots_as_of,
)
from portfolio_tracker.services.ledger.lot_book import (
    AppliedAction,
    LotBook,
    Position,
    RealizedAllocation,
    ordered_events,
    replay,
)

__all__ = [
    "AllocationResult",
    "LotAllocation",
    "LotIdentity",
    "LotSelection",
    "OpenLot",
    "allocate",
    "parse_method",
    "HoldingView",
    "HoldingsProjection",
    "project_holdings",
    "TaxLotLedger",
    "load_applied_actions",
    "load_transactions",
    "lot_identity",
    "open_lots_as_of",
    "AppliedAction",
    "LotBook",
    "Position",
    "RealizedAllocation",
    "ordered_events",
    "replay",
]
