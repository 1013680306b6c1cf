"""Decimal helpers shared by the tax engine and the ledger poster."""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from trade_erp.core.exceptions import ValidationError

ZERO = Decimal("0")
HUNDRED = Decimal("100")
CENT = Decimal("0.01")


def to_decimal(value: Any, field: str = "value") -> Decimal:
    """Coerce ints, strings and Decimals to Decimal.

    Floats go through ``str`` so 0.1 stays 0.1 instead of its binary expansion.
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValidationError(f"Invalid numeric value for {field}", details={"field": field})
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid numeric value for {field}", details={"field": field, "value": str(value)})


def round_money(amount: Decimal) -> Decimal:
    """Round to 2 dp, half away from zero (ROUND_HALF_UP is symmetric on Decimal)."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def percent_of(amount: Decimal, rate: Decimal) -> Decimal:
    return amount * rate / HUNDRED


def ensure_scale(value: Decimal, places: int, field: str = "value") -> Decimal:
    """Reject values with more decimal places than the column stores.

    Trailing zeros do not count, so 10.500 passes at 2 places.
    """
    exponent = value.normalize().as_tuple().exponent
    if isinstance(exponent, int) and -exponent > places:
        raise ValidationError(
            f"{field} allows at most {places} decimal places",
            details={"field": field, "value": str(value)},
        )
    return value
