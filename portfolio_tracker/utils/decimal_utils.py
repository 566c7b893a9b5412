# portfolio_tracker/utils/decimal_utils.py
"""
Exact decimal arithmetic helpers.

All cost-basis, proceeds and gain arithmetic runs on Decimal in a
28-significant-digit context. Lot quantities and amounts are rounded to
the persisted scale (10 places) where a division or ratio produces them;
everything else is rounded only at display time (banker's rounding,
ROUND_HALF_EVEN). Floats are rejected at the boundary.

Usage:
    from portfolio_tracker.utils.decimal_utils import to_decimal, safe_divide

    cost = to_decimal("1000") * safe_divide(quantity, lot_quantity)
"""

import decimal
from decimal import Decimal, ROUND_HALF_EVEN

from portfolio_tracker.services.constants import DECIMAL_PRECISION, STORAGE_SCALE, ZERO

# Shared arithmetic context for the whole engine
DECIMAL_CONTEXT = decimal.Context(
    prec=DECIMAL_PRECISION,
    rounding=ROUND_HALF_EVEN,
    traps=[decimal.InvalidOperation, decimal.DivisionByZero, decimal.Overflow],
)


def to_decimal(value: Decimal | int | str | None) -> Decimal | None:
    """
    Convert a value to Decimal without passing through float.

    Args:
        value: Decimal, int or numeric string

    Returns:
        Decimal, or None when value is None

    Raises:
        TypeError: If value is a float
        decimal.InvalidOperation: If the string is not numeric
    """
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        raise TypeError("Floats are not accepted for monetary values; pass a string or Decimal")
    if isinstance(value, int):
        return Decimal(value)
    return Decimal(str(value).strip())


def safe_divide(numerator: Decimal, denominator: Decimal) -> Decimal | None:
    """Divide at full kernel precision. Returns None when denominator is zero."""
    if denominator == ZERO:
        return None
    return DECIMAL_CONTEXT.divide(numerator, denominator)


def multiply(a: Decimal, b: Decimal) -> Decimal:
    return DECIMAL_CONTEXT.multiply(a, b)


def power(base: Decimal, exponent: Decimal) -> Decimal:
    """
    Raise base to a (possibly fractional) exponent in the kernel context.

    Non-integer exponents require a positive base.
    """
    return DECIMAL_CONTEXT.power(base, exponent)


def sign(value: Decimal) -> int:
    if value > ZERO:
        return 1
    if value < ZERO:
        return -1
    return 0


def quantize(value: Decimal | None, precision: Decimal) -> Decimal | None:
    """Round for display using banker's rounding."""
    if value is None:
        return None
    return value.quantize(precision, rounding=ROUND_HALF_EVEN)


def to_storage(value: Decimal) -> Decimal:
    """
    Round a lot quantity or amount to the persisted Numeric(28, 10) scale.

    The in-memory book and the stored rows must hold identical values, or
    an incremental append and a full replay drift apart.
    """
    return value.quantize(STORAGE_SCALE, rounding=ROUND_HALF_EVEN, context=DECIMAL_CONTEXT)


def decimal_to_str(value: Decimal | int | None) -> str | None:
    """
    Render a Decimal as a JSON string, preserving precision.

    Trailing zeros are removed; exponent notation is avoided.
    """
    if value is None:
        return None
    if isinstance(value, int):
        value = Decimal(value)
    normalized = value.normalize()
    if normalized == normalized.to_integral_value():
        return str(normalized.quantize(Decimal("1")))
    return format(normalized, "f")
