# portfolio_tracker/schemas/validators.py
"""
Reusable validation functions for Pydantic schemas.

- Symbol validation and normalization
- Currency code validation
- Optional date range ordering

These raise ValueError, which FastAPI reports as a 400 VALIDATION_ERROR.
"""

import re
from datetime import date

# Symbol: 1-20 chars, alphanumeric plus dots, dashes, equals (FX pairs) and a leading caret (indices)
SYMBOL_PATTERN = re.compile(r'^[\^]?[A-Z0-9][A-Z0-9.\-=]{0,19}$')
SYMBOL_MAX_LENGTH = 20

CURRENCY_PATTERN = re.compile(r'^[A-Z]{3}$')


def validate_symbol(value: str) -> str:
    """
    Validate and normalize a symbol.

    Valid formats:
    - Standard: AAPL, NVDA, MSFT
    - With dots or dashes: BRK.B, BRK-B
    - Indices with caret: ^GSPC

    Raises:
        ValueError: If the symbol format is invalid
    """
    if not value or not value.strip():
        raise ValueError("Symbol cannot be empty")

    normalized = value.strip().upper()

    if len(normalized) > SYMBOL_MAX_LENGTH:
        raise ValueError(f"Symbol cannot exceed {SYMBOL_MAX_LENGTH} characters")

    if not SYMBOL_PATTERN.match(normalized):
        raise ValueError(
            f"Invalid symbol format: '{normalized}'. "
            "Symbol must be alphanumeric, may include dots (.) or dashes (-) or start with caret (^)"
        )

    return normalized


def validate_optional_symbol(value: str | None) -> str | None:
    """Like validate_symbol, but None and blank strings mean 'no symbol'."""
    if value is None or not value.strip():
        return None
    return validate_symbol(value)


def validate_currency(value: str) -> str:
    """
    Validate and normalize a currency code.

    Raises:
        ValueError: If the currency is not a 3-letter ISO 4217 code
    """
    if not value:
        raise ValueError("Currency cannot be empty")

    normalized = value.strip().upper()

    if not CURRENCY_PATTERN.match(normalized):
        raise ValueError(
            f"Invalid currency format: '{normalized}'. "
            "Currency must be a 3-letter ISO code (e.g., USD, EUR)"
        )

    return normalized


def validate_date_order(start_date: date | None, end_date: date | None) -> None:
    """
    Raises:
        ValueError: If both dates are given and start_date is after end_date
    """
    if start_date is not None and end_date is not None and start_date > end_date:
        raise ValueError("start_date must be before or equal to end_date")
