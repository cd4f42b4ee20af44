"""Amount handling.

Prices and every amount comparison use ledger base units (plain integers).
The currency scale is applied only when rendering an amount for humans.
"""

from __future__ import annotations

from decimal import Decimal


def to_display(amount: int, scale: int) -> Decimal:
    """Render base units as currency units, e.g. ``to_display(10, 6) == Decimal("0.000010")``."""
    return Decimal(amount).scaleb(-scale)


def format_amount(amount: int, scale: int, currency_code: str) -> str:
    return f"{to_display(amount, scale)} {currency_code}"


def parse_amount(value: str | int) -> int:
    """Parse a base-unit amount from transfer fields or CLI input.

    Raises:
        ValueError: If the value is not a non-negative integer.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid amount: {value!r}")
    if isinstance(value, int):
        amount = value
    else:
        text = value.strip()
        if not text.isdigit():
            raise ValueError(f"Invalid amount: {value!r}")
        amount = int(text)
    if amount < 0:
        raise ValueError(f"Amount must not be negative: {value!r}")
    return amount
