# portfolio_tracker/services/imports/types.py
"""
Data types for the Import Orchestrator.

ImportRecord is the format-agnostic row every source (bulk JSON body,
CSV file) is converted into before validation and simulation.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal

from portfolio_tracker.models import TransactionType
from portfolio_tracker.services.constants import ZERO
from portfolio_tracker.services.events import TransactionInput


@dataclass
class ImportRecord:
    """
    One row to import.

    Attributes:
        line: 1-based position in the source (CSV line or list index + 1)
        raw_data: Original row text, echoed back in errors
    """
    line: int
    transaction_type: TransactionType
    date: date
    quantity: Decimal
    symbol: str | None = None
    price: Decimal | None = None
    commission: Decimal = ZERO
    currency: str = "USD"
    notes: str | None = None
    raw_data: str | None = None

    def to_input(self) -> TransactionInput:
        return TransactionInput(
            transaction_type=self.transaction_type,
            date=self.date,
            quantity=self.quantity,
            symbol=self.symbol,
            price=self.price,
            commission=self.commission if self.commission is not None else ZERO,
            currency=self.currency or "USD",
            notes=self.notes,
        )


@dataclass
class ImportRowError:
    """A rejected row. line is 0 for file-level errors."""
    line: int
    message: str
    field: str | None = None
    raw_data: str | None = None


@dataclass
class ImportResult:
    """
    Outcome of an import request.

    Attributes:
        success: True when the batch was (or, for a dry run, would be) committed
        batch_id: ImportBatch id; None for dry runs and rejected imports
        validation_only: True for dry runs
    """
    success: bool = False
    batch_id: int | None = None
    total_rows: int = 0
    success_count: int = 0
    error_count: int = 0
    skipped_count: int = 0
    errors: list[ImportRowError] = field(default_factory=list)
    validation_only: bool = False
    transaction_ids: list[int] = field(default_factory=list)

    def add_error(self, line: int, message: str, field: str | None = None, raw_data: str | None = None) -> None:
        self.errors.append(ImportRowError(line=line, message=message, field=field, raw_data=raw_data))
        self.error_count += 1


@dataclass
class ImportBatchSummary:
    id: int
    source: str
    filename: str | None
    notes: str | None
    success_count: int
    failure_count: int
    transaction_count: int
    created_at: datetime
