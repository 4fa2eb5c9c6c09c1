"""Decimal helpers for money amounts."""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any

CENT = Decimal("0.01")
HUNDRED = Decimal("100")
ZERO = Decimal("0.00")


def to_decimal(value: Any) -> Decimal:
    """Convert int/float/str/Decimal to Decimal without float artefacts."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def round_money(value: Any) -> Decimal:
    """Round to 2 decimal places, half up."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def format_amount(value: Decimal, symbol: str = "$") -> str:
    """Format an amount for display, e.g. ``$1,234.50``."""
    return f"{symbol}{round_money(value):,.2f}"
