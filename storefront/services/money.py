"""
Money Utilities - Decimal operations for cart prices.

Prices arrive from Supabase and browser JSON as floats, ints or strings;
everything is normalized to Decimal before any arithmetic.
"""
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Union

from storefront.constants import CURRENCY_SYMBOL

Number = Union[str, int, float, Decimal]

# Paise precision for stored prices
MONEY_PRECISION = Decimal("0.01")

# Whole rupees for tax and displayed totals
INTEGER_PRECISION = Decimal("1")

ZERO = Decimal("0")


def to_decimal(value: Union[Number, None]) -> Decimal:
    """
    Convert any value to Decimal safely.

    Returns Decimal("0") for None or unparseable input.
    """
    if value is None:
        return ZERO

    if isinstance(value, Decimal):
        return value

    # bool is an int subclass; a price of True is a data error
    if isinstance(value, bool):
        return ZERO

    try:
        if isinstance(value, float):
            # str() keeps 499.99 from becoming 499.98999...
            return Decimal(str(value))
        return Decimal(value)
    except (InvalidOperation, ValueError, TypeError):
        return ZERO


def to_optional_decimal(value: Union[Number, None]) -> Decimal | None:
    """Like to_decimal, but None, empty strings and zero stay None (no sale price)."""
    if value is None or value == "":
        return None
    result = to_decimal(value)
    return result if result > 0 else None


def round_money(value: Number, to_int: bool = False) -> Decimal:
    """
    Round a monetary value half-up.

    Args:
        value: Value to round
        to_int: If True, round to whole rupees

    Returns:
        Rounded Decimal value
    """
    precision = INTEGER_PRECISION if to_int else MONEY_PRECISION
    return to_decimal(value).quantize(precision, rounding=ROUND_HALF_UP)


def multiply(value: Number, factor: Number) -> Decimal:
    """Multiply a monetary value by a factor."""
    return to_decimal(value) * to_decimal(factor)


def subtract(a: Number, b: Number) -> Decimal:
    """Subtract two monetary values."""
    return to_decimal(a) - to_decimal(b)


def normalize(value: Number) -> Decimal:
    """Drop trailing zeros so 1180.00 renders as 1180 but 499.50 stays 499.5."""
    d = to_decimal(value)
    if d == d.to_integral_value():
        return d.quantize(INTEGER_PRECISION)
    return d.normalize()


def to_float(value: Number) -> float:
    """
    Convert to float for JSON payloads.

    Use only at boundaries, never for arithmetic.
    """
    return float(to_decimal(value))


def format_money(value: Number, symbol: str = CURRENCY_SYMBOL) -> str:
    """Format a price for display: 1180 -> '₹1,180', 499.5 -> '₹499.50'."""
    d = to_decimal(value)
    if d == d.to_integral_value():
        return f"{symbol}{int(d):,}"
    return f"{symbol}{round_money(d):,.2f}"
