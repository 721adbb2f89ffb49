from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable


Q6 = Decimal("0.000001")
Q2 = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(v) -> Decimal:
    if isinstance(v, Decimal):
        return v
    if v is None:
        return ZERO
    # str() first so floats keep their printed value instead of binary noise.
    return Decimal(str(v))


def q6(v: Decimal) -> Decimal:
    # Ingredient quantities share the DB column precision (numeric(18,6)).
    return to_decimal(v).quantize(Q6, rounding=ROUND_HALF_UP)


def q2(v: Decimal) -> Decimal:
    return to_decimal(v).quantize(Q2, rounding=ROUND_HALF_UP)


def order_totals(line_subtotals: Iterable[Decimal], tax_rate: Decimal) -> tuple[Decimal, Decimal, Decimal]:
    """
    Returns (subtotal, tax, total) for a set of line subtotals.
    Tax is rounded once on the order subtotal, never per line.
    """
    subtotal = q2(sum((to_decimal(s) for s in line_subtotals), ZERO))
    tax = q2(subtotal * to_decimal(tax_rate))
    return subtotal, tax, q2(subtotal + tax)
