"""
Decimal money helpers.

All monetary and rate math in the royalty engine uses Decimal. Rounding to
the minor currency unit happens only at the points the engine names
(format aggregate, split shares), never inside the tier walk.
Per-tier detail written to statements is fixed to 6 places for display.
"""
from __future__ import annotations

from decimal import Decimal, ROUND_HALF_EVEN, ROUND_HALF_UP
from typing import Union

from app.core.config import settings

MONEY_QUANTUM = Decimal("0.01")
# Scale of per-tier royalty detail on statements (matches Numeric(15, 6) line amounts)
DETAIL_QUANTUM = Decimal("0.000001")
ZERO = Decimal("0")

_ROUNDING_MODES = {
    "half_up": ROUND_HALF_UP,
    "half_even": ROUND_HALF_EVEN,
}


def rounding_mode(name: str | None = None) -> str:
    """Map a configured rounding name ("half_up" / "half_even") to a decimal rounding constant."""
    key = (name or settings.ROYALTY_ROUNDING).lower()
    try:
        return _ROUNDING_MODES[key]
    except KeyError:
        raise ValueError(f"Unsupported rounding mode: {key}") from None


def quantize_money(value: Decimal, rounding: str | None = None) -> Decimal:
    """Round to the minor currency unit (2 places)."""
    return value.quantize(MONEY_QUANTUM, rounding=rounding or rounding_mode())


def quantize_detail(value: Decimal, rounding: str | None = None) -> Decimal:
    """Fix per-tier detail to 6 places for display; totals are rounded from the unrounded value."""
    return value.quantize(DETAIL_QUANTUM, rounding=rounding or rounding_mode())


def to_decimal(value: Union[Decimal, int, str, None]) -> Decimal:
    """Coerce a database or API value to Decimal without passing through float."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        raise TypeError("float values are not accepted for money math; pass Decimal or str")
    return Decimal(str(value))
