"""Decimal helpers shared by every calculator. One currency, 2-decimal precision."""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional

ZERO = Decimal("0")
CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def to_decimal(value: Any, default: Decimal = ZERO) -> Decimal:
    """Coerce a DB/JSON value (None, float, str, Decimal) to Decimal."""
    if value is None or value == "":
        return default
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def optional_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return to_decimal(value)


def money(value: Decimal) -> Decimal:
    return value.quantize(CENT, ROUND_HALF_UP)


def percent_of(amount: Decimal, rate_pct: Decimal) -> Decimal:
    """round(amount × rate/100, 2)"""
    return money(amount * rate_pct / HUNDRED)
