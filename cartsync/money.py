"""
Money Utilities - Safe Decimal operations for cart prices.

Snapshot prices arrive as JSON numbers or strings ("1000.00"); everything
is normalized to Decimal before any arithmetic.
"""
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Iterable, Union

Number = Union[str, int, float, Decimal, None]

# Default precision for money operations (2 decimal places)
MONEY_PRECISION = Decimal("0.01")


def to_decimal(value: Number) -> Decimal:
    """
    Convert any value to Decimal safely.

    Args:
        value: Value to convert (str, int, float, Decimal, or None)

    Returns:
        Decimal representation of the value, or Decimal("0") if None/invalid
    """
    if value is None:
        return Decimal("0")

    if isinstance(value, Decimal):
        return value

    try:
        if isinstance(value, float):
            # Go through str to avoid binary float artifacts
            return Decimal(str(value))
        if isinstance(value, str):
            return Decimal(value.strip())
        return Decimal(value)
    except (InvalidOperation, ValueError, TypeError):
        return Decimal("0")


def round_money(value: Number) -> Decimal:
    """Round a monetary value to cents."""
    return to_decimal(value).quantize(MONEY_PRECISION, rounding=ROUND_HALF_UP)


def multiply(value: Number, factor: Number) -> Decimal:
    """Safe multiplication of monetary value by a factor."""
    return to_decimal(value) * to_decimal(factor)


def total(values: Iterable[Number]) -> Decimal:
    """Sum monetary values, starting from Decimal zero so empty input stays Decimal."""
    result = Decimal("0")
    for value in values:
        result += to_decimal(value)
    return result


def to_float(value: Number) -> float:
    """Convert to float for JSON payloads. Use only at API boundaries."""
    return float(to_decimal(value))
