"""
Monetary helpers.

Amounts are carried as floats in currency units and rounded half-up to
cents only at the boundary of a computation.
"""

import math
from decimal import Decimal, ROUND_FLOOR, ROUND_HALF_UP
from numbers import Real
from typing import Any

CENT = Decimal("0.01")


def to_decimal(value: float) -> Decimal:
    """Convert a float to Decimal through its shortest repr."""
    return Decimal(repr(float(value)))


def round_money(value: float) -> float:
    """Round to 2 decimal places using half-up rounding."""
    return float(to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP))


def floor_points(amount: float, points_per_unit: float) -> int:
    """Whole points earned for an amount (e.g. 1 point per 10 units)."""
    points = to_decimal(amount) * to_decimal(points_per_unit)
    return int(points.to_integral_value(rounding=ROUND_FLOOR))


def is_number(value: Any) -> bool:
    """True for finite real numbers (bools excluded)."""
    if isinstance(value, bool) or not isinstance(value, Real):
        return False
    return math.isfinite(float(value))
