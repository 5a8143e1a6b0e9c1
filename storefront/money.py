"""
Money helpers.

Amounts are stored as integer minor units (paise) and shown to clients as
decimal major units (rupees).
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Union

CENTS = Decimal("0.01")

Number = Union[Decimal, int, float, str]


def to_decimal(amount: Number) -> Decimal:
    """Coerce a number to a two-place Decimal."""
    if isinstance(amount, float):
        amount = str(amount)
    return Decimal(amount).quantize(CENTS, rounding=ROUND_HALF_UP)


def to_minor(amount: Number) -> int:
    """Major units -> minor units, rounding half up."""
    return int((to_decimal(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor(minor: int) -> Decimal:
    """Minor units -> major units."""
    return (Decimal(minor) / 100).quantize(CENTS)
