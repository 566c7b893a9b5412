# portfolio_tracker/services/imports/service.py
"""
Import Orchestrator.

Orchestrates bulk and CSV imports:
1. Validate each row's shape and rules (EventStore.validate)
2. Simulate the rows against the portfolio's event log on an in-memory
   LotBook, so a SELL without shares is caught before anything is written
3. Commit: one ImportBatch, every valid row tagged with its id, one
   ledger rebuild, one database transaction

Options:
    dry_run:      validate and simulate only, write nothing
    skip_invalid: drop rejected rows and commit the rest; without it the
                  first rejected row aborts the import

Usage:
    service = ImportService()
    result = service.import_records(db, portfolio, records, skip_invalid=True)
    service.delete_batch(db, portfolio, result.batch_id)
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import BinaryIO

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from portfolio_tracker.models import CostBasisMethod, ImportBatch, Portfolio, Transaction, TransactionType
from portfolio_tracker.services.constants import MAX_IMPORT_ROWS
from portfolio_tracker.services.events import EventStore
from portfolio_tracker.services.exceptions import ServiceError, ValidationError
from portfolio_tracker.services.imports.csv_parser import CSVTransactionParser, DateFormat
from portfolio_tracker.services.imports.types import (
    ImportBatchSummary,
    ImportRecord,
    ImportResult,
    ImportRowError,
)
from portfolio_tracker.services.ledger import TaxLotLedger
from portfolio_tracker.services.ledger.ledger import load_applied_actions, load_transactions
from portfolio_tracker.services.ledger.lot_book import TRANSACTION_EVENT, LotBook, ordered_events
from portfolio_tracker.services.locks import portfolio_locks
from portfolio_tracker.utils.context import check_deadline
from portfolio_tracker.utils.date_utils import as_naive_utc

logger = logging.getLogger(__name__)


@dataclass
class _SimulatedTransaction:
    """Stand-in for a not-yet-written Transaction during simulation."""
    id: int
    line: int
    transaction_type: TransactionType
    symbol: str | None
    date: date
    created_at: datetime
    quantity: Decimal
    price: Decimal | None
    commission: Decimal
    currency: str
    lot_selection: list | None = None


class ImportService:

    def __init__(
            self,
            event_store: EventStore | None = None,
            ledger: TaxLotLedger | None = None,
            parser: CSVTransactionParser | None = None,
    ) -> None:
        self._ledger = ledger or TaxLotLedger()
        self._event_store = event_store or EventStore(self._ledger)
        self._parser = parser or CSVTransactionParser()

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def import_csv(
            self,
            db: Session,
            portfolio: Portfolio,
            file: BinaryIO,
            filename: str,
            date_format: DateFormat = DateFormat.ISO,
            dry_run: bool = False,
            skip_invalid: bool = False,
            notes: str | None = None,
    ) -> ImportResult:
        parsed = self._parser.parse(file, filename, date_format)
        return self.import_records(
            db,
            portfolio,
            parsed.records,
            source="csv",
            filename=filename,
            dry_run=dry_run,
            skip_invalid=skip_invalid,
            notes=notes,
            parse_errors=parsed.errors,
        )

    def import_records(
            self,
            db: Session,
            portfolio: Portfolio,
            records: list[ImportRecord],
            source: str = "bulk",
            filename: str | None = None,
            dry_run: bool = False,
            skip_invalid: bool = False,
            notes: str | None = None,
            parse_errors: list[ImportRowError] | None = None,
    ) -> ImportResult:
        """
        Validate, simulate and (unless dry_run) commit a list of records.

        Raises:
            ValidationError: Empty import or more than MAX_IMPORT_ROWS rows
        """
        parse_errors = list(parse_errors or [])
        total_rows = len(records) + sum(1 for e in parse_errors if e.line > 0)
        if total_rows == 0 and not parse_errors:
            raise ValidationError("Import contains no rows", field="transactions")
        if total_rows > MAX_IMPORT_ROWS:
            raise ValidationError(f"Import exceeds {MAX_IMPORT_ROWS} rows", field="transactions")

        result = ImportResult(total_rows=total_rows, validation_only=dry_run)
        for error in parse_errors:
            result.add_error(error.line, error.message, error.field, error.raw_data)
            if error.line > 0:
                result.skipped_count += 1
        if parse_errors and (not skip_invalid or any(e.line == 0 for e in parse_errors)):
            result.skipped_count = 0
            logger.info(f"Import into portfolio {portfolio.id} rejected: {len(parse_errors)} parse error(s)")
            return result

        with portfolio_locks.write(portfolio.id):
            valid = self._validate(portfolio, records, result, skip_invalid)
            if valid is None:
                return result

            valid = self._simulate(db, portfolio, valid, result, skip_invalid)
            if valid is None:
                return result

            result.success_count = len(valid)
            if dry_run:
                result.success = True
                logger.info(f"Dry run for portfolio {portfolio.id}: {len(valid)}/{total_rows} row(s) valid")
                return result

            if not valid:
                logger.info(f"Import into portfolio {portfolio.id} has no valid rows, nothing committed")
                return result

            self._commit(db, portfolio, valid, result, source, filename, notes)

        logger.info(
            f"Imported batch {result.batch_id} into portfolio {portfolio.id}: "
            f"{result.success_count} created, {result.skipped_count} skipped"
        )
        return result

    def list_batches(self, db: Session, portfolio_id: int) -> list[ImportBatchSummary]:
        """Import batches of a portfolio, newest first, with their live transaction counts."""
        counts = dict(db.execute(
            select(Transaction.import_batch_id, func.count(Transaction.id))
            .where(Transaction.portfolio_id == portfolio_id, Transaction.import_batch_id.is_not(None))
            .group_by(Transaction.import_batch_id)
        ).all())
        batches = db.scalars(
            select(ImportBatch)
            .where(ImportBatch.portfolio_id == portfolio_id)
            .order_by(ImportBatch.created_at.desc(), ImportBatch.id.desc())
        ).all()
        return [
            ImportBatchSummary(
                id=batch.id,
                source=batch.source,
                filename=batch.filename,
                notes=batch.notes,
                success_count=batch.success_count,
                failure_count=batch.failure_count,
                transaction_count=counts.get(batch.id, 0),
                created_at=batch.created_at,
            )
            for batch in batches
        ]

    def delete_batch(self, db: Session, portfolio: Portfolio, batch_id: int) -> int:
        return self._event_store.delete_batch(db, portfolio, batch_id)

    # =========================================================================
    # PRIVATE METHODS
    # =========================================================================

    def _validate(
            self,
            portfolio: Portfolio,
            records: list[ImportRecord],
            result: ImportResult,
            skip_invalid: bool,
    ) -> list[ImportRecord] | None:
        """Rule checks in input order. None means the import is rejected."""
        valid: list[ImportRecord] = []
        for record in records:
            try:
                if record.transaction_type == TransactionType.SELL and (
                        portfolio.cost_basis_method == CostBasisMethod.SPECIFIC_LOT):
                    raise ValidationError(
                        "SELL rows cannot be imported into a SPECIFIC_LOT portfolio; record them with lot selections",
                        field="transaction_type",
                    )
                self._event_store.validate(portfolio, record.to_input())
            except ValidationError as e:
                result.add_error(record.line, e.message, e.field, record.raw_data)
                if not skip_invalid:
                    return None
                result.skipped_count += 1
                continue
            valid.append(record)
        return valid

    def _simulate(
            self,
            db: Session,
            portfolio: Portfolio,
            records: list[ImportRecord],
            result: ImportResult,
            skip_invalid: bool,
    ) -> list[ImportRecord] | None:
        """
        Replay the existing log with the new rows merged in.

        Rows are stamped after every existing event, in input order, as
        they will be when staged. A failing row leaves the book unchanged,
        so the simulation continues with it dropped.
        """
        existing = load_transactions(db, portfolio.id)
        actions = load_applied_actions(db, portfolio.id)
        base = max((as_naive_utc(tx.created_at) for tx in existing), default=datetime(1970, 1, 1))

        simulated = [
            _SimulatedTransaction(
                id=-record.line,
                line=record.line,
                transaction_type=record.transaction_type,
                symbol=record.symbol.strip().upper() if record.symbol else None,
                date=record.date,
                created_at=base + timedelta(microseconds=index + 1),
                quantity=record.quantity,
                price=record.price,
                commission=record.commission,
                currency=record.currency,
            )
            for index, record in enumerate(records)
        ]
        by_line = {record.line: record for record in records}
        rejected: set[int] = set()

        book = LotBook(portfolio.cost_basis_method)
        for kind, event in ordered_events([*existing, *simulated], actions):
            check_deadline("import simulation")
            try:
                book.apply_event(kind, event)
            except ServiceError as e:
                if kind == TRANSACTION_EVENT and isinstance(event, _SimulatedTransaction):
                    record = by_line[event.line]
                    result.add_error(record.line, e.message, getattr(e, "field", None), record.raw_data)
                    if not skip_invalid:
                        return None
                    result.skipped_count += 1
                    rejected.add(record.line)
                    continue
                result.add_error(0, f"Import conflicts with existing history: {e.message}")
                return None

        return [record for record in records if record.line not in rejected]

    def _commit(
            self,
            db: Session,
            portfolio: Portfolio,
            records: list[ImportRecord],
            result: ImportResult,
            source: str,
            filename: str | None,
            notes: str | None,
    ) -> None:
        try:
            batch = ImportBatch(
                portfolio_id=portfolio.id,
                source=source,
                filename=filename,
                notes=notes,
                success_count=len(records),
                failure_count=result.error_count,
            )
            db.add(batch)
            db.flush()

            for record in records:
                tx = self._event_store.stage(db, portfolio, record.to_input(), import_batch_id=batch.id)
                result.transaction_ids.append(tx.id)

            portfolio.ledger_stale = True
            db.flush()
            self._ledger.rebuild(db, portfolio)
            db.commit()
        except Exception:
            db.rollback()
            result.transaction_ids.clear()
            raise

        result.batch_id = batch.id
        result.success = True
