# Overview: Fixed-point helpers for monetary values (2 fractional digits).

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from .errors import ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# 9,999,999,999.99 keeps values inside a NUMERIC(12, 2) column on any backend
MAX_AMOUNT = Decimal("9999999999.99")


def to_money(value, field: str = "amount") -> Decimal:
    """
    Coerce value to a Decimal quantized to cents.

    Floats go through str() first so 0.1 becomes 0.10, not its binary expansion.
    Booleans and non-finite values are rejected.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required")
    if isinstance(value, Decimal):
        amount = value
    else:
        raw = str(value).strip() if not isinstance(value, float) else repr(value)
        if not raw:
            raise ValidationError(f"{field} is required")
        try:
            amount = Decimal(raw)
        except InvalidOperation:
            raise ValidationError(f"{field} must be a decimal number")
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    # "+ ZERO" folds a negative zero into 0.00
    amount = amount.quantize(CENT, rounding=ROUND_HALF_UP) + ZERO
    if abs(amount) > MAX_AMOUNT:
        raise ValidationError(f"{field} exceeds maximum of {MAX_AMOUNT}")
    return amount


def positive_money(value, field: str = "amount") -> Decimal:
    amount = to_money(value, field)
    if amount <= ZERO:
        raise ValidationError(f"{field} must be positive")
    return amount


def money_str(value) -> str | None:
    """Render as a decimal string with exactly 2 fractional digits."""
    if value is None:
        return None
    return str(to_money(value))
