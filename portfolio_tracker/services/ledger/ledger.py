# portfolio_tracker/services/ledger/ledger.py
"""
Persistent tax-lot ledger.

Keeps the TaxLot, RealizedGain and Holding rows of a portfolio consistent
with its event log. Two paths:

1. apply_transaction(): incremental, for an event that sorts after every
   event already recorded. Only the lots of the event's symbol are loaded.
2. rebuild(): full replay of transactions and applied corporate actions,
   used after backdated appends, updates, deletes, action application and
   imports.

Both paths run inside the caller's database transaction and only flush;
the caller commits or rolls back. TaxLot rows are synchronised by lot identity
(source_transaction_id, source_action_id) so lot ids stay stable across
replays.
"""

import logging
from datetime import date

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from portfolio_tracker.models import (
    ActionStatus,
    CorporateAction,
    CorporateActionType,
    Portfolio,
    PortfolioAction,
    RealizedGain,
    TaxLot,
    Transaction,
    TransactionType,
)
from portfolio_tracker.services.ledger.allocator import LotIdentity, OpenLot
from portfolio_tracker.services.ledger.holdings import HoldingsProjection
from portfolio_tracker.services.ledger.lot_book import (
    AppliedAction,
    LotBook,
    RealizedAllocation,
    ordered_events,
)
from portfolio_tracker.utils.context import check_deadline

logger = logging.getLogger(__name__)


# =============================================================================
# EVENT LOADING
# =============================================================================

def load_transactions(db: Session, portfolio_id: int) -> list[Transaction]:
    """All transactions of a portfolio in event order."""
    query = (
        select(Transaction)
        .where(Transaction.portfolio_id == portfolio_id)
        .order_by(Transaction.date, Transaction.created_at, Transaction.id)
    )
    return list(db.scalars(query).all())


def load_applied_actions(db: Session, portfolio_id: int) -> list[AppliedAction]:
    """APPLIED lot-changing corporate actions of a portfolio, ordered by date then detection."""
    query = (
        select(PortfolioAction, CorporateAction)
        .join(CorporateAction, PortfolioAction.corporate_action_id == CorporateAction.id)
        .where(
            PortfolioAction.portfolio_id == portfolio_id,
            PortfolioAction.status == ActionStatus.APPLIED,
            CorporateAction.action_type != CorporateActionType.DIVIDEND,
        )
        .order_by(CorporateAction.action_date, PortfolioAction.detected_at, PortfolioAction.id)
    )
    return [to_applied_action(pa, ca) for pa, ca in db.execute(query).all()]


def to_applied_action(portfolio_action: PortfolioAction, corporate_action: CorporateAction) -> AppliedAction:
    return AppliedAction(
        id=portfolio_action.id,
        symbol=corporate_action.symbol,
        action_type=corporate_action.action_type,
        action_date=corporate_action.action_date,
        detected_at=portfolio_action.detected_at,
        ratio=corporate_action.ratio,
        new_symbol=corporate_action.new_symbol,
        cost_allocation=corporate_action.cost_allocation,
    )


def lot_identity(row: TaxLot) -> LotIdentity:
    return row.source_transaction_id, row.source_action_id


def to_open_lot(row: TaxLot) -> OpenLot:
    return OpenLot(
        key=row.source_transaction_id,
        symbol=row.symbol,
        purchase_date=row.purchase_date,
        created_at=row.created_at,
        quantity=row.quantity,
        cost_basis=row.cost_basis,
        currency=row.currency,
        lot_id=row.id,
        origin=row.source_action_id,
    )


# =============================================================================
# LEDGER
# =============================================================================

class TaxLotLedger:
    """
    Derives lots, realized gains and holdings from the event log.

    Usage:
        ledger = TaxLotLedger()
        ledger.apply_transaction(db, portfolio, tx)   # in-order append
        ledger.rebuild(db, portfolio)                 # anything else
        db.commit()
    """

    def __init__(self, holdings: HoldingsProjection | None = None) -> None:
        self._holdings = holdings or HoldingsProjection()

    def is_in_order(self, db: Session, portfolio: Portfolio, tx: Transaction) -> bool:
        """
        True when tx sorts after every other recorded event of the portfolio.

        Applied corporate actions on the same day sort after transactions,
        so they force a replay too.
        """
        last_tx_date = db.scalar(
            select(func.max(Transaction.date)).where(
                Transaction.portfolio_id == portfolio.id,
                Transaction.id != tx.id,
            )
        )
        if last_tx_date is not None and last_tx_date > tx.date:
            return False

        last_action_date = db.scalar(
            select(func.max(CorporateAction.action_date))
            .join(PortfolioAction, PortfolioAction.corporate_action_id == CorporateAction.id)
            .where(
                PortfolioAction.portfolio_id == portfolio.id,
                PortfolioAction.status == ActionStatus.APPLIED,
            )
        )
        return last_action_date is None or last_action_date < tx.date

    def apply_transaction(self, db: Session, portfolio: Portfolio, tx: Transaction) -> list[RealizedGain]:
        """
        Apply one in-order transaction incrementally.

        Raises:
            InsufficientSharesError: SELL above the open quantity (nothing written)
            InvalidLotSelectionError: Bad SPECIFIC_LOT selection (nothing written)
        """
        if tx.transaction_type not in (TransactionType.BUY, TransactionType.SELL):
            return []

        rows = list(db.scalars(
            select(TaxLot).where(TaxLot.portfolio_id == portfolio.id, TaxLot.symbol == tx.symbol)
        ).all())
        book = LotBook(portfolio.cost_basis_method, (to_open_lot(row) for row in rows))
        realized = book.apply_transaction(tx)

        lot_ids = self._sync_lots(db, portfolio.id, book.open_lots(), rows)
        gains = self._record_gains(db, portfolio.id, realized, lot_ids)
        self._holdings.refresh(db, portfolio.id, symbols={tx.symbol})

        if tx.transaction_type == TransactionType.BUY:
            logger.info(f"Opened lot for {tx.quantity} {tx.symbol} in portfolio {portfolio.id}")
        else:
            logger.info(
                f"Allocated sale of {tx.quantity} {tx.symbol} in portfolio {portfolio.id} "
                f"across {len(gains)} lot(s) using {portfolio.cost_basis_method.value}"
            )
        return gains

    def rebuild(self, db: Session, portfolio: Portfolio) -> LotBook:
        """
        Re-derive every lot, realized gain and holding of the portfolio.

        Realized gains of sales that no longer exist are retained; gains of
        live sales are replaced by the replay's.

        Raises:
            InsufficientSharesError: The edited log is no longer valid
            DeadlineExceededError: Request deadline hit between events
        """
        transactions = load_transactions(db, portfolio.id)
        actions = load_applied_actions(db, portfolio.id)

        book = LotBook(portfolio.cost_basis_method)
        for kind, event in ordered_events(transactions, actions):
            check_deadline("ledger rebuild")
            book.apply_event(kind, event)

        rows = list(db.scalars(select(TaxLot).where(TaxLot.portfolio_id == portfolio.id)).all())
        known_ids = {lot_identity(row): row.id for row in rows}
        lot_ids = self._sync_lots(db, portfolio.id, book.open_lots(), rows)
        known_ids.update(lot_ids)

        live_sales = [tx.id for tx in transactions if tx.transaction_type == TransactionType.SELL]
        if live_sales:
            db.execute(
                delete(RealizedGain)
                .where(
                    RealizedGain.portfolio_id == portfolio.id,
                    RealizedGain.sale_transaction_id.in_(live_sales),
                )
                .execution_options(synchronize_session=False)
            )
        self._record_gains(db, portfolio.id, book.realized, known_ids)

        self._holdings.refresh(db, portfolio.id)
        portfolio.ledger_stale = False
        db.flush()

        logger.info(
            f"Rebuilt ledger for portfolio {portfolio.id}: "
            f"{len(transactions)} transaction(s), {len(actions)} action(s), "
            f"{len(book.open_lots())} open lot(s)"
        )
        return book

    # =========================================================================
    # PRIVATE METHODS
    # =========================================================================

    def _sync_lots(
            self,
            db: Session,
            portfolio_id: int,
            lots: list[OpenLot],
            rows: list[TaxLot],
    ) -> dict[LotIdentity, int]:
        """Make `rows` match `lots`, keyed by lot identity. Returns identity → lot id."""
        by_key = {lot_identity(row): row for row in rows}
        wanted = {lot.identity for lot in lots}

        for key, row in by_key.items():
            if key not in wanted:
                db.delete(row)

        for lot in lots:
            row = by_key.get(lot.identity)
            if row is None:
                row = TaxLot(
                    portfolio_id=portfolio_id,
                    source_transaction_id=lot.key,
                    source_action_id=lot.origin,
                    created_at=lot.created_at,
                )
                db.add(row)
                by_key[lot.identity] = row
            row.symbol = lot.symbol
            row.purchase_date = lot.purchase_date
            row.quantity = lot.quantity
            row.cost_basis = lot.cost_basis
            row.currency = lot.currency

        db.flush()
        return {key: by_key[key].id for key in wanted}

    def _record_gains(
            self,
            db: Session,
            portfolio_id: int,
            realized: list[RealizedAllocation],
            lot_ids: dict[LotIdentity, int],
    ) -> list[RealizedGain]:
        gains = [
            RealizedGain(
                portfolio_id=portfolio_id,
                sale_transaction_id=item.sale_key,
                lot_id=item.lot_id or lot_ids.get((item.lot_key, item.lot_origin)),
                source_transaction_id=item.lot_key,
                source_action_id=item.lot_origin,
                symbol=item.symbol,
                purchase_date=item.purchase_date,
                sale_date=item.sale_date,
                quantity=item.quantity,
                cost_basis=item.cost_basis,
                proceeds=item.proceeds,
                gain=item.gain,
                is_long_term=item.is_long_term,
            )
            for item in realized
        ]
        db.add_all(gains)
        db.flush()
        return gains


def open_lots_as_of(db: Session, portfolio: Portfolio, as_of: date) -> LotBook:
    """Replay the log up to and including `as_of` without writing anything."""
    transactions = [tx for tx in load_transactions(db, portfolio.id) if tx.date <= as_of]
    actions = [a for a in load_applied_actions(db, portfolio.id) if a.action_date <= as_of]
    book = LotBook(portfolio.cost_basis_method)
    for kind, event in ordered_events(transactions, actions):
        book.apply_event(kind, event)
    return book
