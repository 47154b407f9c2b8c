"""Decimal helpers shared by the breakdown engine, receipts and reports."""

from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal, InvalidOperation

ZERO = Decimal("0")
CENT = Decimal("0.01")
# Tolerance used when comparing paid amounts against installment brackets.
EPSILON = Decimal("0.01")


def to_decimal(val) -> Decimal:
    if val is None:
        return ZERO
    if isinstance(val, Decimal):
        return val
    try:
        return Decimal(str(val))
    except (InvalidOperation, ValueError):
        return ZERO


def ceil_cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_CEILING)


def round_cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def format_amount(value) -> str:
    """Whole-unit display string, e.g. 1179.5 -> '1180'."""
    return str(to_decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_rupees(value, places: int = 2) -> str:
    q = Decimal("1") if places == 0 else Decimal(1).scaleb(-places)
    return f"₹{to_decimal(value).quantize(q, rounding=ROUND_HALF_UP)}"


def to_paise(value) -> int:
    return int((to_decimal(value) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
