# portfolio_tracker/services/query.py
"""
Query façade: read-only projections of a portfolio.

Ownership is enforced before a portfolio reaches this service (see
dependencies.get_portfolio_with_owner_check). Reads run under the
portfolio's shared lock. A portfolio whose ledger is flagged stale is
re-derived once, under the exclusive lock, before the read.
"""

import logging

from sqlalchemy import extract, select
from sqlalchemy.orm import Session

from portfolio_tracker.models import Holding, Portfolio, RealizedGain, TaxLot
from portfolio_tracker.services.constants import MAX_TAX_YEAR, MIN_TAX_YEAR, ZERO
from portfolio_tracker.services.exceptions import HoldingNotFoundError, TaxLotNotFoundError, ValidationError
from portfolio_tracker.services.ledger import TaxLotLedger
from portfolio_tracker.services.locks import portfolio_locks

logger = logging.getLogger(__name__)


class QueryService:

    def __init__(self, ledger: TaxLotLedger | None = None) -> None:
        self._ledger = ledger or TaxLotLedger()

    def ensure_current(self, db: Session, portfolio: Portfolio) -> None:
        """Rebuild derived state if the last write left it stale."""
        if not portfolio.ledger_stale:
            return
        with portfolio_locks.write(portfolio.id):
            db.refresh(portfolio)
            if not portfolio.ledger_stale:
                return
            logger.info(f"Portfolio {portfolio.id} ledger is stale, rebuilding before read")
            try:
                self._ledger.rebuild(db, portfolio)
                db.commit()
            except Exception:
                db.rollback()
                raise

    # =========================================================================
    # HOLDINGS
    # =========================================================================

    def holdings(self, db: Session, portfolio: Portfolio) -> list[Holding]:
        self.ensure_current(db, portfolio)
        with portfolio_locks.read(portfolio.id):
            return list(db.scalars(
                select(Holding)
                .where(Holding.portfolio_id == portfolio.id, Holding.quantity > ZERO)
                .order_by(Holding.symbol)
            ).all())

    def holding(self, db: Session, portfolio: Portfolio, symbol: str) -> Holding:
        symbol = symbol.strip().upper()
        self.ensure_current(db, portfolio)
        with portfolio_locks.read(portfolio.id):
            row = db.scalars(
                select(Holding).where(Holding.portfolio_id == portfolio.id, Holding.symbol == symbol)
            ).first()
        if row is None or row.quantity <= ZERO:
            raise HoldingNotFoundError(portfolio.id, symbol)
        return row

    # =========================================================================
    # TAX LOTS AND GAINS
    # =========================================================================

    def tax_lots(self, db: Session, portfolio: Portfolio, symbol: str | None = None) -> list[TaxLot]:
        """Open lots, by symbol then acquisition order."""
        self.ensure_current(db, portfolio)
        query = select(TaxLot).where(TaxLot.portfolio_id == portfolio.id, TaxLot.quantity > ZERO)
        if symbol:
            query = query.where(TaxLot.symbol == symbol.strip().upper())
        with portfolio_locks.read(portfolio.id):
            return list(db.scalars(
                query.order_by(TaxLot.symbol, TaxLot.purchase_date, TaxLot.created_at, TaxLot.id)
            ).all())

    def tax_lot(self, db: Session, portfolio: Portfolio, lot_id: int) -> TaxLot:
        self.ensure_current(db, portfolio)
        lot = db.get(TaxLot, lot_id)
        if lot is None or lot.portfolio_id != portfolio.id:
            raise TaxLotNotFoundError(lot_id)
        return lot

    def realized_gains(
            self,
            db: Session,
            portfolio: Portfolio,
            symbol: str | None = None,
            year: int | None = None,
    ) -> list[RealizedGain]:
        """Realized gains by sale date, optionally for one symbol and/or tax year."""
        self.ensure_current(db, portfolio)
        query = select(RealizedGain).where(RealizedGain.portfolio_id == portfolio.id)
        if symbol:
            query = query.where(RealizedGain.symbol == symbol.strip().upper())
        if year is not None:
            if year < MIN_TAX_YEAR or year > MAX_TAX_YEAR:
                raise ValidationError(f"year must be between {MIN_TAX_YEAR} and {MAX_TAX_YEAR}", field="year")
            query = query.where(extract("year", RealizedGain.sale_date) == year)
        with portfolio_locks.read(portfolio.id):
            return list(db.scalars(
                query.order_by(RealizedGain.sale_date, RealizedGain.sale_transaction_id, RealizedGain.id)
            ).all())
