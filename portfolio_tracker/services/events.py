# portfolio_tracker/services/events.py
"""
Event store for portfolio transactions.

The transaction log is the source of truth; lots, realized gains and
holdings are derived from it by the TaxLotLedger. Every mutation runs
under the portfolio's write lock and inside one database transaction:

    append   in-order event  → incremental ledger update
             backdated event → full rebuild
    update   → full rebuild
    delete   → full rebuild
    delete_batch → full rebuild

If derivation fails (e.g. the edit leaves a SELL without shares) the
whole unit is rolled back and the error propagates.

Ordering is (date, created_at, id); created_at is strictly increasing
per portfolio.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from portfolio_tracker.models import (
    CostBasisMethod,
    ImportBatch,
    Portfolio,
    RealizedGain,
    TaxLot,
    Transaction,
    TransactionType,
)
from portfolio_tracker.services.constants import DEFAULT_LIST_LIMIT, ZERO
from portfolio_tracker.services.exceptions import (
    ImportBatchNotFoundError,
    InvalidCostBasisMethodError,
    InvalidLotSelectionError,
    TransactionNotFoundError,
    ValidationError,
)
from portfolio_tracker.services.ledger import LotIdentity, TaxLotLedger, lot_identity
from portfolio_tracker.services.locks import portfolio_locks
from portfolio_tracker.utils.date_utils import as_naive_utc, utc_now

logger = logging.getLogger(__name__)

# Types that must name a symbol
SYMBOL_REQUIRED_TYPES = frozenset({TransactionType.BUY, TransactionType.SELL, TransactionType.DIVIDEND})

# Types that must carry a price
PRICE_REQUIRED_TYPES = frozenset({TransactionType.BUY, TransactionType.SELL})


@dataclass
class TransactionInput:
    """
    A validated-shape transaction about to enter the log.

    lot_selections are (tax lot id, quantity) pairs for SPECIFIC_LOT sells.
    """
    transaction_type: TransactionType
    date: date
    quantity: Decimal
    symbol: str | None = None
    price: Decimal | None = None
    commission: Decimal = ZERO
    currency: str = "USD"
    notes: str | None = None
    lot_selections: list[tuple[int, Decimal]] | None = None


class EventStore:
    """
    Append, edit and list portfolio transactions.

    Usage:
        store = EventStore()
        tx = store.append(db, portfolio, TransactionInput(...))
    """

    def __init__(self, ledger: TaxLotLedger | None = None) -> None:
        self._ledger = ledger or TaxLotLedger()

    # =========================================================================
    # WRITES
    # =========================================================================

    def append(
            self,
            db: Session,
            portfolio: Portfolio,
            data: TransactionInput,
    ) -> Transaction:
        """
        Record one transaction and update derived state.

        Raises:
            ValidationError: Shape or rule violation
            InsufficientSharesError: SELL above the open quantity at its date
            InvalidLotSelectionError: Bad SPECIFIC_LOT selection
        """
        with portfolio_locks.write(portfolio.id):
            try:
                tx = self.stage(db, portfolio, data)
                if portfolio.ledger_stale or not self._ledger.is_in_order(db, portfolio, tx):
                    logger.info(f"Backdated {tx.transaction_type.value} on {tx.date} triggers ledger rebuild")
                    portfolio.ledger_stale = True
                    self._ledger.rebuild(db, portfolio)
                else:
                    self._ledger.apply_transaction(db, portfolio, tx)
                db.commit()
            except Exception:
                db.rollback()
                raise

            db.refresh(tx)
            logger.info(
                f"Recorded {tx.transaction_type.value} #{tx.id} "
                f"({tx.symbol or 'cash'} {tx.quantity}) in portfolio {portfolio.id}"
            )
            return tx

    def stage(
            self,
            db: Session,
            portfolio: Portfolio,
            data: TransactionInput,
            import_batch_id: int | None = None,
            portfolio_action_id: int | None = None,
    ) -> Transaction:
        """
        Validate and add a transaction to the session without deriving anything.

        Callers hold the write lock and run the ledger themselves.
        """
        self.validate(portfolio, data)

        tx = Transaction(
            portfolio_id=portfolio.id,
            transaction_type=data.transaction_type,
            symbol=_normalize_symbol(data.symbol),
            date=data.date,
            quantity=data.quantity,
            price=data.price,
            commission=data.commission or ZERO,
            currency=data.currency.upper(),
            notes=data.notes,
            import_batch_id=import_batch_id,
            portfolio_action_id=portfolio_action_id,
            created_at=self._next_created_at(db, portfolio.id),
        )
        if data.lot_selections:
            tx.lot_selection = self._resolve_lot_selections(db, portfolio.id, tx.symbol, data.lot_selections)

        db.add(tx)
        db.flush()
        return tx

    def update(
            self,
            db: Session,
            portfolio: Portfolio,
            tx: Transaction,
            data: TransactionInput,
    ) -> Transaction:
        """Replace a transaction's fields and re-derive the portfolio."""
        with portfolio_locks.write(portfolio.id):
            self.validate(portfolio, data)
            try:
                lot_selection = None
                symbol = _normalize_symbol(data.symbol)
                if data.lot_selections:
                    lot_selection = self._resolve_lot_selections(db, portfolio.id, symbol, data.lot_selections)

                tx.transaction_type = data.transaction_type
                tx.symbol = symbol
                tx.date = data.date
                tx.quantity = data.quantity
                tx.price = data.price
                tx.commission = data.commission or ZERO
                tx.currency = data.currency.upper()
                tx.notes = data.notes
                tx.lot_selection = lot_selection

                # Gains of the edited event are re-derived by the rebuild only if it is still a SELL
                db.execute(
                    delete(RealizedGain)
                    .where(
                        RealizedGain.portfolio_id == portfolio.id,
                        RealizedGain.sale_transaction_id == tx.id,
                    )
                    .execution_options(synchronize_session=False)
                )
                portfolio.ledger_stale = True
                db.flush()
                self._ledger.rebuild(db, portfolio)
                db.commit()
            except Exception:
                db.rollback()
                raise

            db.refresh(tx)
            logger.info(f"Updated transaction #{tx.id} in portfolio {portfolio.id}")
            return tx

    def delete(self, db: Session, portfolio: Portfolio, tx: Transaction) -> None:
        """
        Remove a transaction and re-derive the portfolio.

        Realized gains produced by a deleted sale are retained for audit.
        """
        with portfolio_locks.write(portfolio.id):
            tx_id = tx.id
            try:
                db.delete(tx)
                portfolio.ledger_stale = True
                db.flush()
                self._ledger.rebuild(db, portfolio)
                db.commit()
            except Exception:
                db.rollback()
                raise
            logger.info(f"Deleted transaction #{tx_id} from portfolio {portfolio.id}")

    def delete_batch(self, db: Session, portfolio: Portfolio, batch_id: int) -> int:
        """
        Remove exactly the transactions of one import batch, then the batch.

        Returns:
            Number of transactions deleted
        """
        with portfolio_locks.write(portfolio.id):
            batch = db.get(ImportBatch, batch_id)
            if batch is None or batch.portfolio_id != portfolio.id:
                raise ImportBatchNotFoundError(batch_id)

            try:
                transactions = db.scalars(
                    select(Transaction).where(
                        Transaction.portfolio_id == portfolio.id,
                        Transaction.import_batch_id == batch_id,
                    )
                ).all()
                for tx in transactions:
                    db.delete(tx)
                db.delete(batch)
                portfolio.ledger_stale = True
                db.flush()
                self._ledger.rebuild(db, portfolio)
                db.commit()
            except Exception:
                db.rollback()
                raise

            logger.info(f"Deleted import batch {batch_id} ({len(transactions)} transaction(s)) from portfolio {portfolio.id}")
            return len(transactions)

    # =========================================================================
    # READS
    # =========================================================================

    def get(self, db: Session, transaction_id: int) -> Transaction:
        tx = db.get(Transaction, transaction_id)
        if tx is None:
            raise TransactionNotFoundError(transaction_id)
        return tx

    def list_transactions(
            self,
            db: Session,
            portfolio_id: int,
            symbol: str | None = None,
            start_date: date | None = None,
            end_date: date | None = None,
            transaction_type: TransactionType | None = None,
            skip: int = 0,
            limit: int = DEFAULT_LIST_LIMIT,
    ) -> tuple[list[Transaction], int]:
        """
        Transactions in event order with optional filters.

        Returns:
            (page of transactions, total matching count)
        """
        filters = [Transaction.portfolio_id == portfolio_id]
        if symbol:
            filters.append(Transaction.symbol == _normalize_symbol(symbol))
        if start_date:
            filters.append(Transaction.date >= start_date)
        if end_date:
            filters.append(Transaction.date <= end_date)
        if transaction_type:
            filters.append(Transaction.transaction_type == transaction_type)

        total = db.scalar(select(func.count(Transaction.id)).where(*filters)) or 0
        query = (
            select(Transaction)
            .where(*filters)
            .order_by(Transaction.date, Transaction.created_at, Transaction.id)
            .offset(skip)
            .limit(limit)
        )
        return list(db.scalars(query).all()), total

    # =========================================================================
    # VALIDATION
    # =========================================================================

    def validate(self, portfolio: Portfolio, data: TransactionInput) -> None:
        """Rules that need more than field shapes. Raises ValidationError subclasses."""
        tx_type = data.transaction_type

        if tx_type in SYMBOL_REQUIRED_TYPES and not _normalize_symbol(data.symbol):
            raise ValidationError(f"{tx_type.value} requires a symbol", field="symbol")
        if tx_type in PRICE_REQUIRED_TYPES and data.price is None:
            raise ValidationError(f"{tx_type.value} requires a price", field="price")
        if data.price is not None and data.price < ZERO:
            raise ValidationError("Price cannot be negative", field="price")
        if data.quantity is None or data.quantity <= ZERO:
            raise ValidationError("Quantity must be positive", field="quantity")
        if data.commission is not None and data.commission < ZERO:
            raise ValidationError("Commission cannot be negative", field="commission")
        if not data.currency or len(data.currency) != 3:
            raise ValidationError("Currency must be a 3-letter ISO 4217 code", field="currency")

        if data.lot_selections and tx_type != TransactionType.SELL:
            raise InvalidLotSelectionError("Lot selections apply to SELL transactions only", field="lot_selections")

        if tx_type == TransactionType.SELL:
            specific = portfolio.cost_basis_method == CostBasisMethod.SPECIFIC_LOT
            if specific and not data.lot_selections:
                raise InvalidCostBasisMethodError(
                    CostBasisMethod.SPECIFIC_LOT.value,
                    reason="SPECIFIC_LOT portfolios require lot_selections on every SELL",
                )
            if data.lot_selections and not specific:
                raise InvalidCostBasisMethodError(
                    portfolio.cost_basis_method.value,
                    reason=f"lot_selections require a SPECIFIC_LOT portfolio (this one uses {portfolio.cost_basis_method.value})",
                )

    # =========================================================================
    # PRIVATE METHODS
    # =========================================================================

    def _next_created_at(self, db: Session, portfolio_id: int) -> datetime:
        """Now, or 1µs after the latest created_at of the portfolio if the clock has not moved."""
        now = utc_now()
        last = db.scalar(select(func.max(Transaction.created_at)).where(Transaction.portfolio_id == portfolio_id))
        if last is not None and as_naive_utc(now) <= as_naive_utc(last):
            now = as_naive_utc(last).replace(tzinfo=timezone.utc) + timedelta(microseconds=1)
        return now

    def _resolve_lot_selections(
            self,
            db: Session,
            portfolio_id: int,
            symbol: str | None,
            selections: list[tuple[int, Decimal]],
    ) -> list[dict]:
        """
        Map API lot ids to the source transactions that identify lots in the log.

        Lots already consumed by the sale being edited are found through its
        realized gains.
        """
        lot_ids = [lot_id for lot_id, _ in selections]
        source_by_lot: dict[int, LotIdentity] = {
            row.id: lot_identity(row)
            for row in db.scalars(
                select(TaxLot).where(
                    TaxLot.portfolio_id == portfolio_id,
                    TaxLot.symbol == symbol,
                    TaxLot.id.in_(lot_ids),
                )
            ).all()
        }
        missing = [lot_id for lot_id in lot_ids if lot_id not in source_by_lot]
        if missing:
            for gain in db.scalars(
                    select(RealizedGain).where(
                        RealizedGain.portfolio_id == portfolio_id,
                        RealizedGain.symbol == symbol,
                        RealizedGain.lot_id.in_(missing),
                    )
            ).all():
                source_by_lot[gain.lot_id] = (gain.source_transaction_id, gain.source_action_id)

        resolved = []
        for lot_id, quantity in selections:
            if lot_id not in source_by_lot:
                raise InvalidLotSelectionError(f"Tax lot {lot_id} is not a lot of {symbol} in this portfolio", field="lot_selections")
            source_transaction_id, source_action_id = source_by_lot[lot_id]
            item = {"source_transaction_id": source_transaction_id, "quantity": str(quantity)}
            if source_action_id is not None:
                item["source_action_id"] = source_action_id
            resolved.append(item)
        return resolved


def _normalize_symbol(symbol: str | None) -> str | None:
    if symbol is None:
        return None
    symbol = symbol.strip().upper()
    return symbol or None
