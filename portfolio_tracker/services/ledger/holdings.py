# portfolio_tracker/services/ledger/holdings.py
"""
Holdings projection: a pure reduction of open tax lots.

    quantity         = Σ lot.quantity
    total_cost_basis = Σ lot.cost_basis
    avg_cost_price   = total_cost_basis / quantity   (None when quantity = 0)
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from portfolio_tracker.models import Holding, TaxLot
from portfolio_tracker.services.constants import ZERO
from portfolio_tracker.utils.decimal_utils import safe_divide

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HoldingView:
    symbol: str
    quantity: Decimal
    total_cost_basis: Decimal
    avg_cost_price: Decimal | None
    currency: str


def project_holdings(lots: Iterable[Any]) -> list[HoldingView]:
    """
    Reduce lots (TaxLot rows or OpenLot values) to one view per symbol.

    Symbols whose lots sum to zero are left out. Sorted by symbol.
    """
    quantities: dict[str, Decimal] = {}
    costs: dict[str, Decimal] = {}
    currencies: dict[str, str] = {}

    for lot in lots:
        quantities[lot.symbol] = quantities.get(lot.symbol, ZERO) + lot.quantity
        costs[lot.symbol] = costs.get(lot.symbol, ZERO) + lot.cost_basis
        currencies.setdefault(lot.symbol, lot.currency)

    return [
        HoldingView(
            symbol=symbol,
            quantity=quantities[symbol],
            total_cost_basis=costs[symbol],
            avg_cost_price=safe_divide(costs[symbol], quantities[symbol]),
            currency=currencies[symbol],
        )
        for symbol in sorted(quantities)
        if quantities[symbol] > ZERO
    ]


class HoldingsProjection:
    """Rewrites Holding rows from the TaxLot rows of a portfolio."""

    def refresh(self, db: Session, portfolio_id: int, symbols: set[str] | None = None) -> list[Holding]:
        """
        Re-derive holdings for `symbols` (all symbols when None).

        Flushes; the caller owns the transaction.
        """
        lot_query = select(TaxLot).where(TaxLot.portfolio_id == portfolio_id)
        holding_query = select(Holding).where(Holding.portfolio_id == portfolio_id)
        if symbols is not None:
            lot_query = lot_query.where(TaxLot.symbol.in_(symbols))
            holding_query = holding_query.where(Holding.symbol.in_(symbols))

        views = {view.symbol: view for view in project_holdings(db.scalars(lot_query).all())}
        existing = {row.symbol: row for row in db.scalars(holding_query).all()}

        for symbol, row in existing.items():
            if symbol not in views:
                db.delete(row)

        refreshed = []
        for symbol, view in views.items():
            row = existing.get(symbol)
            if row is None:
                row = Holding(portfolio_id=portfolio_id, symbol=symbol)
                db.add(row)
            row.quantity = view.quantity
            row.total_cost_basis = view.total_cost_basis
            row.avg_cost_price = view.avg_cost_price
            row.currency = view.currency
            refreshed.append(row)

        db.flush()
        logger.debug(f"Refreshed {len(refreshed)} holding(s) for portfolio {portfolio_id}")
        return refreshed
