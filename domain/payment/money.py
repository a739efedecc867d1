"""
Amount helpers. All settlement comparisons happen in the smallest currency unit.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Optional

ZERO_DECIMAL_CURRENCIES = {"JPY", "KRW"}


def currency_exponent(currency: str) -> int:
    return 0 if (currency or "").upper() in ZERO_DECIMAL_CURRENCIES else 2


def parse_amount(value: Any) -> Optional[Decimal]:
    """Parse a provider-echoed amount ("500", "500.00", 500) into a Decimal, or None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite():
        return None
    return amount


def _scaled(amount: Decimal, currency: str) -> Decimal:
    return amount * (Decimal(10) ** currency_exponent(currency))


def is_whole_minor(amount: Decimal, currency: str) -> bool:
    """True when `amount` has no fraction below the smallest currency unit."""
    scaled = _scaled(amount, currency)
    return scaled == scaled.to_integral_value()


def to_minor(amount: Decimal, currency: str) -> int:
    return int(_scaled(amount, currency).to_integral_value())


def amounts_match(expected: Decimal, actual: Any, currency: str) -> bool:
    parsed = parse_amount(actual)
    if parsed is None or not is_whole_minor(parsed, currency):
        return False
    return to_minor(expected, currency) == to_minor(parsed, currency)


def format_amount(amount: Decimal, currency: str = "BDT") -> str:
    # Gateways take amounts as strings in major units
    exponent = currency_exponent(currency)
    return f"{amount:.{exponent}f}"
