"""
Integer-cent money arithmetic.

Balances, escrow and settlement all run on int cents so repeated trades never
drift. Dollars only appear at the edges (API arguments, snapshots, display).
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Union

from .errors import InvalidInputError

Amount = Union[int, float, str, Decimal]

CENTS_PER_DOLLAR = 100
MIN_PRICE_CENTS = 1
MAX_PRICE_CENTS = 99

_CENT = Decimal("0.01")


def _to_decimal(amount: Amount, field: str) -> Decimal:
    if isinstance(amount, bool):
        raise InvalidInputError(field, amount, "must be a number")
    try:
        d = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise InvalidInputError(field, amount, "must be a number") from None
    if not d.is_finite():
        raise InvalidInputError(field, amount, "must be finite")
    return d


def to_cents(amount: Amount, field: str = "amount") -> int:
    """Dollars -> int cents, rounded half-up to the nearest cent."""
    d = _to_decimal(amount, field)
    return int(d.quantize(_CENT, rounding=ROUND_HALF_UP) * CENTS_PER_DOLLAR)


def to_dollars(cents: int) -> float:
    return round(cents / CENTS_PER_DOLLAR, 2)


def parse_price(price: Amount) -> int:
    """
    Dollar price -> int cents (1..99).

    Prices off the one-cent tick are rejected, not rounded.
    """
    d = _to_decimal(price, "price")
    if not (0 < d < 1):
        raise InvalidInputError("price", price, "must be between 0 and 1 (exclusive)")
    if d != d.quantize(_CENT):
        raise InvalidInputError("price", price, "must be a whole number of cents")
    return int(d * CENTS_PER_DOLLAR)


def validate_quantity(quantity: Any, field: str = "quantity") -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidInputError(field, quantity, "must be a positive integer")
    if quantity <= 0:
        raise InvalidInputError(field, quantity, "must be a positive integer")
    return quantity


def cents_to_display(cents: int) -> str:
    """6500 -> '$65.00', -1200 -> '-$12.00'."""
    if cents < 0:
        abs_cents = -cents
        return f"-${abs_cents // 100:,}.{abs_cents % 100:02d}"
    return f"${cents // 100:,}.{cents % 100:02d}"
