"""Credit amounts are persisted as integer half-credits (1.0 credit == 2)."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

from app.core.errors import ValidationError

HALF = Decimal("0.5")
# Balances, prices and ledger amounts live in 32-bit INTEGER columns.
MAX_HALF_CREDITS = 2**31 - 1


def to_half_credits(amount: Decimal | int | str) -> int:
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"Invalid credit amount: {amount!r}") from exc
    if not value.is_finite():
        raise ValidationError(f"Invalid credit amount: {amount!r}")
    halves = value / HALF
    if halves != halves.to_integral_value():
        raise ValidationError("Credit amounts must be multiples of 0.5", details={"amount": str(value)})
    if abs(halves) > MAX_HALF_CREDITS:
        raise ValidationError("Credit amount is too large", details={"amount": str(value)})
    return int(halves)


def from_half_credits(half_credits: int) -> Decimal:
    return (Decimal(int(half_credits)) * HALF).quantize(Decimal("0.1"))


def format_credits(half_credits: int) -> str:
    return format(from_half_credits(half_credits), "f")
