"""
Decimal helpers for money, quantities and rates.

Invariants enforced:
    - No floats anywhere in the billing kernel.  to_decimal() is the single
      conversion point for untyped request values.
    - round_money() and round_whole() are the ONLY sanctioned rounding
      functions.  Both round halves away from zero.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")


def to_decimal(value: Any, field: str = "value") -> Decimal | None:
    """
    Convert an untyped request value to Decimal.

    None and empty strings map to None.  Floats are converted through
    their shortest repr so that 0.1 becomes Decimal("0.1"), never the
    binary expansion.

    Raises:
        ValueError: If the value is not numeric or not finite.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"{field} must be numeric, got bool")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        return Decimal(value)
    elif isinstance(value, float):
        result = Decimal(repr(value))
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None
        try:
            result = Decimal(stripped)
        except InvalidOperation:
            raise ValueError(f"{field} must be numeric, got {value!r}") from None
    else:
        raise ValueError(f"{field} must be numeric, got {type(value).__name__}")
    if not result.is_finite():
        raise ValueError(f"{field} must be finite, got {value!r}")
    return result


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the given number of decimal places.

    Preconditions: value is a Decimal.
    Postconditions: Returns value quantized with the given rounding mode
        (ROUND_HALF_UP by default).
    """
    quantize_str = "0." + "0" * decimal_places if decimal_places > 0 else "1"
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def round_whole(value: Decimal, rounding: str = DEFAULT_ROUNDING) -> Decimal:
    """
    Round to the nearest whole currency unit, halves away from zero.

    Tax bases are never negative (compute_totals rejects them), so on
    every value this sees, away from zero is the same as upward.
    """
    return round_money(value, decimal_places=0, rounding=rounding)
