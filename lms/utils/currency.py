from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

CENTS = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """Coerce ``value`` to a 2-place Decimal; ``None``/blank become zero."""
    if value is None or value == "":
        return Decimal("0.00")
    try:
        return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError, TypeError):
        return Decimal("0.00")


def _format_number(value: Decimal, decimal_sep: str, thousands_sep: str) -> str:
    sign = "-" if value.is_signed() and value != 0 else ""
    q = value.copy_abs()
    as_str = f"{q:.2f}"
    whole, frac = as_str.split(".")
    groups = []
    while whole:
        groups.append(whole[-3:])
        whole = whole[:-3]
    grouped = thousands_sep.join(reversed(groups)) if groups else "0"
    return f"{sign}{grouped}{decimal_sep}{frac}"


def format_usd(value: Any) -> str:
    """Format a monetary amount the way receipts show it: ``$1,234.50``."""
    if value is None or value == "":
        return ""
    try:
        dec = Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError, TypeError):
        return ""
    return f"${_format_number(dec, decimal_sep='.', thousands_sep=',')}"


def register_currency_filters(env: Any) -> None:
    """Register the ``format_usd`` filter on a Jinja environment."""
    filters = getattr(env, "filters", None)
    if not isinstance(filters, dict):
        return
    if "format_usd" not in filters:
        filters["format_usd"] = format_usd


__all__ = ["CENTS", "to_money", "format_usd", "register_currency_filters"]
