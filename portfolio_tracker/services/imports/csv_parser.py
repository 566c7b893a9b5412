# portfolio_tracker/services/imports/csv_parser.py
"""
CSV transaction file parser.

Parses generic CSV files into ImportRecords. Parsing never raises for a
bad row: the row is reported in ParseResult.errors and the next one is
read. Business rules (symbol required for BUY, open shares for SELL,
...) are checked later by the ImportService.

Expected CSV Format:
    date,type,symbol,quantity,price,commission,currency,notes
    2024-01-02,BUY,AAPL,10,185.64,1.00,USD,first lot
    2024-03-01,DEPOSIT,,5000,,,USD,

Column Mapping (header aliases, case-insensitive):
    CSV Column                         -> Field
    ---------------------------------------------------
    date / trade_date / transaction_date     -> date
    type / action / transaction_type / side  -> transaction_type
    symbol / ticker                          -> symbol
    quantity / qty / shares / units / amount -> quantity
    price / price_per_share / unit_price     -> price
    commission / fee / fees                  -> commission
    currency / ccy / price_currency          -> currency
    notes / note / description / memo        -> notes

Date Format Handling:
    The caller states which format the file uses:
    - ISO: YYYY-MM-DD (default, unambiguous)
    - US: M/D/YYYY
    - EU: D/M/YYYY
"""

import csv
import io
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import BinaryIO

from portfolio_tracker.models import TransactionType
from portfolio_tracker.services.constants import ZERO
from portfolio_tracker.services.imports.types import ImportRecord, ImportRowError

logger = logging.getLogger(__name__)


class DateFormat(str, Enum):
    """
    Supported date formats for CSV imports.

    "1/2/2024" is January 2 in US format and February 1 in EU format, so
    the format is declared explicitly rather than guessed.
    """

    ISO = "ISO"  # YYYY-MM-DD
    US = "US"  # M/D/YYYY
    EU = "EU"  # D/M/YYYY


@dataclass
class ParseResult:
    """
    Result of parsing a file: the rows that parsed and the rows that did not.
    """
    records: list[ImportRecord] = field(default_factory=list)
    errors: list[ImportRowError] = field(default_factory=list)
    total_rows: int = 0

    @property
    def success_count(self) -> int:
        return len(self.records)

    @property
    def error_count(self) -> int:
        return len(self.errors)


class CSVTransactionParser:
    """
    Parser for generic CSV transaction files.

    Example:
        parser = CSVTransactionParser()
        with open("transactions.csv", "rb") as f:
            result = parser.parse(f, "transactions.csv", DateFormat.US)
    """

    # =========================================================================
    # CONFIGURATION
    # =========================================================================

    COLUMN_MAPPING: dict[str, list[str]] = {
        "date": ["date", "trade_date", "transaction_date"],
        "transaction_type": ["type", "action", "transaction_type", "side"],
        "symbol": ["symbol", "ticker"],
        "quantity": ["quantity", "qty", "shares", "units", "amount"],
        "price": ["price", "price_per_share", "unit_price", "share_price"],
        "commission": ["commission", "fee", "fees"],
        "currency": ["currency", "ccy", "price_currency"],
        "notes": ["notes", "note", "description", "memo"],
    }

    TYPE_MAPPING: dict[str, TransactionType] = {
        "buy": TransactionType.BUY,
        "b": TransactionType.BUY,
        "purchase": TransactionType.BUY,
        "sell": TransactionType.SELL,
        "s": TransactionType.SELL,
        "sale": TransactionType.SELL,
        "dividend": TransactionType.DIVIDEND,
        "div": TransactionType.DIVIDEND,
        "deposit": TransactionType.DEPOSIT,
        "withdrawal": TransactionType.WITHDRAWAL,
        "withdraw": TransactionType.WITHDRAWAL,
        "fee": TransactionType.FEE,
    }

    DATE_FORMAT_PATTERNS: dict[DateFormat, list[str]] = {
        DateFormat.ISO: [
            "%Y-%m-%d",  # 2024-01-22
            "%Y/%m/%d",  # 2024/01/22
        ],
        DateFormat.US: [
            "%m/%d/%Y",  # 1/22/2024
            "%m-%d-%Y",  # 01-22-2024
            "%m/%d/%y",  # 1/22/24
        ],
        DateFormat.EU: [
            "%d/%m/%Y",  # 22/01/2024
            "%d-%m-%Y",  # 22-01-2024
            "%d.%m.%Y",  # 22.01.2024
            "%d/%m/%y",  # 22/01/24
        ],
    }

    REQUIRED_COLUMNS: tuple[str, ...] = ("date", "transaction_type", "quantity")

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def parse(
            self,
            file: BinaryIO,
            filename: str,
            date_format: DateFormat = DateFormat.ISO,
    ) -> ParseResult:
        logger.info(f"Parsing CSV file: {filename} (date_format={date_format.value})")
        result = ParseResult()

        try:
            content = self._read_file_content(file)
        except OSError as e:
            logger.error(f"Failed to read file {filename}: {e}", exc_info=True)
            result.errors.append(ImportRowError(line=0, message=f"Could not read file: {e}"))
            return result

        try:
            reader = csv.DictReader(io.StringIO(content))
            if not reader.fieldnames:
                result.errors.append(ImportRowError(line=0, message="CSV file has no headers"))
                return result

            column_map = self._build_column_map(reader.fieldnames)
            missing = [name for name in self.REQUIRED_COLUMNS if name not in column_map]
            if missing:
                result.errors.append(ImportRowError(
                    line=0,
                    message=f"Missing required columns: {', '.join(missing)}",
                ))
                return result

            # Header is line 1; line_num counts physical lines, blank ones included
            for row in reader:
                line = reader.line_num
                if not any((value or "").strip() for value in row.values() if isinstance(value, str)):
                    continue
                result.total_rows += 1
                record, error = self._parse_row(line, row, column_map, date_format)
                if error:
                    result.errors.append(error)
                else:
                    result.records.append(record)

        except csv.Error as e:
            logger.error(f"CSV parsing error in {filename}: {e}")
            result.errors.append(ImportRowError(line=0, message=f"Invalid CSV format: {e}"))

        logger.info(f"Parsed {filename}: {result.success_count} rows OK, {result.error_count} errors")
        return result

    # =========================================================================
    # PRIVATE METHODS
    # =========================================================================

    def _read_file_content(self, file: BinaryIO) -> str:
        """Decode as UTF-8 (with or without BOM), falling back to Latin-1."""
        raw_content = file.read()
        try:
            return raw_content.decode("utf-8-sig")
        except UnicodeDecodeError:
            pass
        logger.warning("File is not UTF-8, falling back to Latin-1 encoding")
        return raw_content.decode("latin-1")

    def _build_column_map(self, headers: list[str]) -> dict[str, str]:
        """Map internal field names to the file's actual column names."""
        column_map: dict[str, str] = {}
        normalized_headers = {h.lower().strip(): h for h in headers if h}
        for internal_field, possible_names in self.COLUMN_MAPPING.items():
            for name in possible_names:
                if name in normalized_headers:
                    column_map[internal_field] = normalized_headers[name]
                    break
        return column_map

    def _parse_row(
            self,
            line: int,
            row: dict[str, str],
            column_map: dict[str, str],
            date_format: DateFormat,
    ) -> tuple[ImportRecord | None, ImportRowError | None]:
        raw_data = ",".join((row.get(column) or "") for column in column_map.values())
        values = {name: (row.get(column) or "").strip() for name, column in column_map.items()}

        def error(message: str, field_name: str) -> tuple[None, ImportRowError]:
            return None, ImportRowError(line=line, message=message, field=field_name, raw_data=raw_data)

        for name in self.REQUIRED_COLUMNS:
            if not values.get(name):
                return error(f"Missing required value for '{name}'", name)

        transaction_type = self.TYPE_MAPPING.get(values["transaction_type"].lower())
        if transaction_type is None:
            return error(
                f"Invalid transaction type: '{values['transaction_type']}'. "
                f"Expected one of: {', '.join(t.value for t in TransactionType)}",
                "transaction_type",
            )

        parsed_date = self._parse_date(values["date"], date_format)
        if parsed_date is None:
            examples = {
                DateFormat.ISO: "YYYY-MM-DD (e.g., 2024-01-22)",
                DateFormat.US: "M/D/YYYY (e.g., 1/22/2024)",
                DateFormat.EU: "D/M/YYYY (e.g., 22/01/2024)",
            }
            return error(f"Invalid date: '{values['date']}'. Expected format: {examples[date_format]}", "date")

        numbers: dict[str, Decimal | None] = {}
        for name in ("quantity", "price", "commission"):
            text = values.get(name, "").replace(",", "").replace("$", "")
            if not text:
                numbers[name] = None
                continue
            try:
                numbers[name] = Decimal(text)
            except InvalidOperation:
                return error(f"Invalid number for '{name}': '{values[name]}'", name)

        record = ImportRecord(
            line=line,
            transaction_type=transaction_type,
            date=parsed_date,
            quantity=numbers["quantity"],
            symbol=values.get("symbol", "").upper() or None,
            price=numbers["price"],
            commission=numbers["commission"] if numbers["commission"] is not None else ZERO,
            currency=values.get("currency", "").upper() or "USD",
            notes=values.get("notes") or None,
            raw_data=raw_data,
        )
        return record, None

    def _parse_date(self, value: str, date_format: DateFormat) -> date | None:
        for fmt in self.DATE_FORMAT_PATTERNS.get(date_format, []):
            try:
                return datetime.strptime(value, fmt).date()
            except ValueError:
                continue

        # ISO with a time component is always accepted
        if date_format == DateFormat.ISO:
            try:
                return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
            except ValueError:
                pass
        return None
