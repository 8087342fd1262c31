from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, Mapping, Tuple

from pydantic import BaseModel

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


class Totals(BaseModel):
    subtotal: Decimal = ZERO
    tax: Decimal = ZERO
    total: Decimal = ZERO


def _decimal_point(s: str) -> str:
    """
    Leaves "." as the only separator, as the decimal point.
    With both "," and ".", the right-most one is the decimal point. A repeated separator
    groups thousands, and so does a lone comma followed by exactly three digits ("1,234").
    """
    if "," in s and "." in s:
        point = "," if s.rfind(",") > s.rfind(".") else "."
        group = "." if point == "," else ","
        return s.replace(group, "").replace(point, ".")
    if s.count(",") > 1 or s.count(".") > 1:
        return s.replace(",", "").replace(".", "")
    if "," in s:
        head, _, tail = s.partition(",")
        if len(tail) == 3 and head.strip("-0"):
            return head + tail
        return head + "." + tail
    return s


def to_decimal(value: Any, default: Decimal = ZERO) -> Decimal:
    """Parses numbers and numeric strings ("1 234,50", "$1,234", "$12.00") into a Decimal, or `default`."""
    if value is None or value == "":
        return default
    if isinstance(value, Decimal):
        return value if value.is_finite() else default
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        try:
            d = Decimal(str(value))
        except InvalidOperation:
            return default
        return d if d.is_finite() else default
    s = _decimal_point("".join(ch for ch in str(value) if ch.isdigit() or ch in ",.-"))
    try:
        d = Decimal(s)
    except (InvalidOperation, ValueError):
        return default
    return d if d.is_finite() else default


def quantize(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


# ---------- Coercion ----------

def coerce_quantity(q: Any) -> int:
    try:
        n = int(to_decimal(q, Decimal(1)))
    except (ValueError, OverflowError):
        return 1
    return max(1, n)


def coerce_unit_price(p: Any) -> Decimal:
    return max(ZERO, to_decimal(p))


def line_amount(q: Any, p: Any) -> Decimal:
    return quantize(coerce_quantity(q) * coerce_unit_price(p))


def _qty_price(item: Any) -> Tuple[Any, Any]:
    if isinstance(item, Mapping):
        qty = item.get("quantity", item.get("qty", 1))
        return qty, item.get("unit_price", 0)
    if isinstance(item, (tuple, list)):
        return item[0], item[1]
    return getattr(item, "quantity", 1), getattr(item, "unit_price", 0)


# ---------- Totals ----------

def compute_totals(
    items: Iterable[Any],
    tax_rate: Any = None,
    tax_amount: Any = None,
) -> Totals:
    """
    Subtotal is the sum of line amounts; `tax_amount` (flat) wins over `tax_rate` (percent).
    Bad numbers are coerced, never raised.
    """
    subtotal = ZERO
    for item in items:
        subtotal += line_amount(*_qty_price(item))
    subtotal = quantize(subtotal)

    if tax_amount is not None:
        tax = quantize(to_decimal(tax_amount))
    elif tax_rate is not None:
        rate = max(ZERO, to_decimal(tax_rate))
        tax = quantize(subtotal * rate / Decimal(100))
    else:
        tax = ZERO

    return Totals(subtotal=subtotal, tax=tax, total=quantize(subtotal + tax))
