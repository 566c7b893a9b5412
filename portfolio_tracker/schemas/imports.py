# portfolio_tracker/schemas/imports.py
"""
Pydantic schemas for bulk and CSV imports.

Bulk rows are deliberately loose: a row with a bad field is reported in
the ImportResult with its line number instead of failing the request.
"""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from portfolio_tracker.models import TransactionType
from portfolio_tracker.services.constants import MAX_IMPORT_ROWS


class BulkImportRow(BaseModel):
    transaction_type: TransactionType
    date: date
    quantity: Decimal
    symbol: str | None = None
    price: Decimal | None = None
    commission: Decimal = Decimal("0")
    currency: str = "USD"
    notes: str | None = None


class BulkImportRequest(BaseModel):
    """
    Example:
        {"transactions": [{"transaction_type": "DEPOSIT", "date": "2024-01-01", "quantity": "10000"},
                          {"transaction_type": "BUY", "symbol": "AAPL", "date": "2024-01-02",
                           "quantity": "10", "price": "185.64"}],
         "skip_invalid": true}
    """

    transactions: list[BulkImportRow] = Field(..., max_length=MAX_IMPORT_ROWS)
    dry_run: bool = Field(default=False, description="Validate and simulate only, write nothing")
    skip_invalid: bool = Field(default=False, description="Commit the valid rows and report the rest")
    notes: str | None = Field(default=None, max_length=500)


class ImportRowErrorResponse(BaseModel):
    line: int = Field(..., description="Row number in the source; 0 for file-level errors")
    message: str
    field: str | None = None
    raw_data: str | None = None

    model_config = ConfigDict(from_attributes=True)


class ImportResultResponse(BaseModel):
    success: bool
    batch_id: int | None
    total_rows: int
    success_count: int
    error_count: int
    skipped_count: int
    errors: list[ImportRowErrorResponse]
    validation_only: bool
    transaction_ids: list[int] = []

    model_config = ConfigDict(from_attributes=True)


class ImportBatchResponse(BaseModel):
    id: int
    source: str
    filename: str | None
    notes: str | None
    success_count: int
    failure_count: int
    transaction_count: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ImportBatchDeleteResponse(BaseModel):
    batch_id: int
    deleted_transactions: int
