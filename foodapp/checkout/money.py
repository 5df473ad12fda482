"""
Money helpers

Amounts are Decimal internally and rounded half-up to whole units; JSON
payloads get ints for whole values.
"""

import math
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

Money = Decimal


def D(x) -> Money:
    return x if isinstance(x, Decimal) else Decimal(str(x or "0"))


def round_whole(x) -> Money:
    """Round half-up to zero fractional digits."""
    return D(x).quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def to_number(value, fallback: float = 0.0) -> float:
    """Lenient numeric coercion: anything non-finite becomes the fallback."""
    if isinstance(value, bool):
        return float(value)
    try:
        n = float(value)
    except (TypeError, ValueError, InvalidOperation):
        return fallback
    return n if math.isfinite(n) else fallback


def format_money(value, symbol: str = "₹") -> str:
    n = to_number(value, 0.0)
    return f"{symbol}{round_whole(n):f}"


def as_amount(x) -> float:
    """Money value for JSON payloads: whole units stay ints."""
    d = D(x)
    if d == d.to_integral_value():
        return int(d)
    return float(d)
