"""Milestone amount calculation.

Amounts are Decimal end to end. No rounding is applied here; display
rounding belongs to invoicing.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum

from staypay.domain.due_dates import ConfigurationError

_HUNDRED = Decimal(100)


class AmountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


def to_decimal(value: Decimal | int | float | str) -> Decimal:
    """Convert a numeric value to Decimal without binary float artefacts."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def calculate_amount(
    amount_type: AmountType | str,
    amount: Decimal | int | float | str,
    total_booking_amount: Decimal | int | float | str,
) -> Decimal:
    """Calculate the amount due for one milestone.

    percentage -> total * amount / 100; fixed -> amount, independent of the
    booking total.

    Raises:
        ConfigurationError: If amount_type is not recognised.
    """
    try:
        kind = AmountType(amount_type)
    except ValueError:
        raise ConfigurationError(f"unknown amount type: {amount_type!r}") from None

    value = to_decimal(amount)
    if kind is AmountType.PERCENTAGE:
        return to_decimal(total_booking_amount) * value / _HUNDRED
    return value
