"""Money helpers - Decimal only, rounded to the currency minor unit"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable

CENT = Decimal("0.01")


def to_decimal(value: Any) -> Decimal:
    """Convert stored/JSON values (str, int, Decimal) without passing through float"""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        value = repr(value)
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError) as e:
        raise ValueError(f"Not a monetary amount: {value!r}") from e


def round_money(value: Any) -> Decimal:
    """Round to cents using standard (half-up) rounding; never truncate"""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Any) -> int:
    """Dollars to integer cents for the payment processor"""
    return int(round_money(amount) * 100)


def line_items_total(line_items: Iterable[dict]) -> Decimal:
    """Sum of quantity x unit amount across line items"""
    total = Decimal("0")
    for item in line_items:
        total += to_decimal(item["quantity"]) * to_decimal(item["unit_amount"])
    return round_money(total)
