"""
Money helpers. All amounts are Decimal quantized to the currency minor unit.
"""
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any

MINOR_UNIT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Any) -> Decimal:
    """
    Convert a number (Decimal, int, float, numeric string, None) to a
    2-decimal Decimal using half-up rounding. Floats go through str() so
    33.33 stays 33.33 instead of its binary expansion.
    """
    if value is None:
        return ZERO
    if isinstance(value, float):
        value = repr(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValueError(f"Not a monetary amount: {value!r}")
    # NaN and Infinity parse as Decimal but cannot be compared or summed as money
    if not amount.is_finite():
        raise ValueError(f"Not a monetary amount: {value!r}")
    return amount.quantize(MINOR_UNIT, rounding=ROUND_HALF_UP)


def percent_of(amount: Any, rate: Any) -> Decimal:
    """amount x rate, rounded half-up to the minor unit."""
    return to_money(Decimal(str(amount)) * Decimal(str(rate)))
