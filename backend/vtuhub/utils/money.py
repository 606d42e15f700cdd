from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

MONEY_QUANT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value) -> Decimal:
    """Coerce to a 2dp Decimal. Floats go through str() so 0.1 stays 0.10."""
    if value is None or value == "":
        return ZERO
    if isinstance(value, float):
        value = str(value)
    try:
        return Decimal(value).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, TypeError, ValueError):
        raise ValueError(f"not a money amount: {value!r}")


def percent_of(amount, percent) -> Decimal:
    return to_money(to_money(amount) * Decimal(str(percent)) / Decimal("100"))


def money_str(value) -> str:
    return str(to_money(value))
