"""Refund percentage as a function of hours remaining before a session."""

from decimal import ROUND_HALF_UP, Decimal
from typing import Sequence, Tuple

Tier = Tuple[float, float]


def refund_percentage(
    hours_before_start: float, tiers: Sequence[Tier], late_percentage: float
) -> Decimal:
    """
    First tier whose threshold is met wins; tiers are ordered most generous first.

    >>> refund_percentage(50, [(48, 100), (24, 50)], 0)
    Decimal('100')
    """
    for min_hours, percentage in tiers:
        if hours_before_start >= min_hours:
            return Decimal(str(percentage))
    return Decimal(str(late_percentage))


def refund_amount(price: Decimal, percentage: Decimal) -> Decimal:
    return (Decimal(price) * percentage / Decimal("100")).quantize(
        Decimal("0.01"), rounding=ROUND_HALF_UP
    )
