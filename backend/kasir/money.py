"""
Currency and quantity arithmetic.

Amounts are integers in the currency's minor unit. Percentages and tax rates
produce Decimal intermediates which are only rounded (half-up) when a figure is
displayed or stored.
"""
from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP, ROUND_FLOOR

ZERO = Decimal(0)
HUNDRED = Decimal(100)
BPS_PER_UNIT = Decimal(10_000)


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError("boolean is not an amount")
    if isinstance(value, float):
        # go through str so 0.1 stays 0.1
        return Decimal(str(value))
    return Decimal(value)


def round_minor(value) -> int:
    """Round to a whole minor unit, ties away from zero."""
    return int(to_decimal(value).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def percent_of(amount, percent) -> Decimal:
    return to_decimal(amount) * to_decimal(percent) / HUNDRED


def bps_of(amount, bps: int) -> Decimal:
    return to_decimal(amount) * Decimal(bps) / BPS_PER_UNIT


def clamp(value, low, high):
    return max(low, min(value, high))


def floor_div(amount, divisor: int) -> int:
    if divisor <= 0:
        raise ValueError("divisor must be positive")
    return int((to_decimal(amount) / Decimal(divisor)).to_integral_value(rounding=ROUND_FLOOR))

