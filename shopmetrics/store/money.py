"""
Money helpers.

All stored amounts are integer minor units (cents). Upstream payloads carry
decimal strings; analytics and API responses work in float currency units.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

_CENT = Decimal("0.01")


def to_minor_units(amount: Any, default: int = 0) -> int:
    """
    Convert a decimal string or number to integer cents.

    None, empty strings and unparseable values yield ``default``.

    Example:
        >>> to_minor_units("19.999")
        2000
    """
    if amount is None or amount == "":
        return default
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        return default
    if not value.is_finite():
        return default
    return int((value / _CENT).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(cents: Optional[int]) -> Decimal:
    """Integer cents to a two-place Decimal."""
    return (Decimal(cents or 0) * _CENT).quantize(_CENT)


def to_currency(cents: Optional[int]) -> float:
    """Integer cents to float currency units for analytics and JSON."""
    return float(from_minor_units(cents))


def divide_cents(total: int, count: int) -> int:
    """Integer cents divided by a count, rounded half up; 0 when count is 0."""
    if count <= 0:
        return 0
    return int((Decimal(total) / Decimal(count)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
