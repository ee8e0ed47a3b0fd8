"""
Decimal Math Utilities for progress and weight arithmetic.

Weights and progress are percentages that must add up exactly (a set of
weights sums to 100, a rollup rounds half-up to an integer). Float sums such
as 33.33 + 33.33 + 33.34 drift; Decimal keeps them exact and makes every
result reproducible for the same inputs.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Union, Optional, Iterable
import logging

logger = logging.getLogger(__name__)

# Type alias for values that can be converted to Decimal
Numeric = Union[int, float, str, Decimal]

HUNDRED = Decimal("100")
ZERO = Decimal("0")


def to_decimal(value: Numeric) -> Decimal:
    """
    Convert a numeric value to Decimal.

    Examples:
        >>> to_decimal(25)
        Decimal('25')
        >>> to_decimal(33.33)
        Decimal('33.33')
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # Convert float to string first to preserve representation
        return Decimal(str(value))
    return Decimal(value)


def places(precision: int) -> Decimal:
    """Quantum for ``precision`` decimal places, e.g. 2 -> Decimal('0.01')."""
    return Decimal(1).scaleb(-precision)


def quantize(value: Numeric, precision: int = 2) -> Decimal:
    """
    Round half-up to ``precision`` decimal places.

    Examples:
        >>> quantize(33.3333)
        Decimal('33.33')
        >>> quantize(12.345)
        Decimal('12.35')
    """
    return to_decimal(value).quantize(places(precision), rounding=ROUND_HALF_UP)


def round_half_up(value: Numeric) -> int:
    """
    Round half-up to the nearest integer.

    Python's built-in round() uses banker's rounding (round(62.5) == 62);
    progress percentages round halves up.

    Examples:
        >>> round_half_up(62.5)
        63
        >>> round_half_up(49.49)
        49
    """
    return int(to_decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def divide(a: Numeric, b: Numeric, default: Optional[Numeric] = None) -> Decimal:
    """
    Divide a by b with Decimal precision.

    Args:
        a: Dividend
        b: Divisor
        default: Value to return if division by zero (None raises error)

    Raises:
        InvalidOperation: If b is zero and no default provided
    """
    b_dec = to_decimal(b)
    if b_dec == 0:
        if default is not None:
            return to_decimal(default)
        raise InvalidOperation("Division by zero")
    return to_decimal(a) / b_dec


def clamp(value: Numeric, minimum: Numeric, maximum: Numeric) -> Decimal:
    """Clamp value to the inclusive range [minimum, maximum]."""
    v = to_decimal(value)
    return max(to_decimal(minimum), min(v, to_decimal(maximum)))


def clamp_percent(value: Numeric) -> Decimal:
    """Clamp a percentage to [0, 100]."""
    return clamp(value, ZERO, HUNDRED)


def decimal_sum(values: Iterable[Numeric]) -> Decimal:
    """Sum values as Decimal."""
    total = ZERO
    for value in values:
        total += to_decimal(value)
    return total


def to_float(value: Decimal) -> float:
    """Convert a Decimal back to float for model fields."""
    return float(value)
