# portfolio_tracker/services/imports/__init__.py
"""
Import Orchestrator.

Usage:
    from portfolio_tracker.services.imports import ImportService, DateFormat

    result = ImportService().import_csv(db, portfolio, file, "trades.csv", DateFormat.US)
"""

from portfolio_tracker.services.imports.csv_parser import CSVTransactionParser, DateFormat, ParseResult
from portfolio_tracker.services.imports.service import ImportService
from portfolio_tracker.services.imports.types import (
    ImportBatchSummary,
    ImportRecord,
    ImportResult,
    ImportRowError,
)

__all__ = [
    "CSVTransactionParser",
    "DateFormat",
    "ParseResult",
    "ImportService",
    "ImportBatchSummary",
    "ImportRecord",
    "ImportResult",
    "ImportRowError",
]
