"""
Data conversion utilities for money values and request payloads.
"""

from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_CEILING, ROUND_HALF_UP
from typing import Any, Optional

from .exceptions import ValidationError

CENT = Decimal('0.01')
ZERO = Decimal('0.00')


def to_money(value: Any) -> Decimal:
    """
    Convert a value to a 2-place Decimal.

    Floats go through str() so 0.1 becomes Decimal('0.10'), not its binary expansion.

    Raises:
        ValidationError: If the value is not numeric
    """
    if value is None:
        raise ValidationError('Amount is required')
    if isinstance(value, bool):
        raise ValidationError(f"Invalid amount: {value}")
    try:
        if isinstance(value, float):
            value = str(value)
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"Invalid amount: {value}")
    if not amount.is_finite():
        raise ValidationError(f"Invalid amount: {value}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def sum_money(values) -> Decimal:
    """Sum an iterable of Decimal-compatible values (None counts as zero)."""
    total = ZERO
    for value in values:
        if value is not None:
            total += Decimal(value)
    return total.quantize(CENT, rounding=ROUND_HALF_UP)


def ceil_div(numerator: Decimal, denominator: Decimal) -> int:
    """Ceiling of numerator / denominator; 0 when the denominator is 0."""
    if not denominator:
        return 0
    return int((Decimal(numerator) / Decimal(denominator)).to_integral_value(rounding=ROUND_CEILING))


def convert_to_date(value: Any, field_name: str = 'date') -> Optional[date]:
    """
    Parse an ISO date (or datetime) string into a date.

    Raises:
        ValidationError: If the value cannot be parsed
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError(f"Invalid {field_name}: {value}")


def decimal_to_float(value: Optional[Decimal]) -> float:
    """Float for JSON metadata; exact values stay in Decimal columns."""
    return float(value) if value is not None else 0.0
