"""Decimal helpers shared by the apportionment modules."""

from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")
ZERO = Decimal("0")
MONEY_ZERO = Decimal("0.00")


def to_decimal(value: Decimal | int | float | str | None) -> Decimal:
    """Convert a stored numeric value to Decimal; None becomes 0."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize_cent(value: Decimal | int | str | None) -> Decimal:
    """Round a monetary amount to whole cents (half up)."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def fmt(value: Decimal, places: int = 2) -> str:
    """Format a Decimal for calculation basis strings."""
    exponent = Decimal(1).scaleb(-places)
    return str(to_decimal(value).quantize(exponent, rounding=ROUND_HALF_UP))


def quantize_places(value: Decimal | None, places: int = 6) -> Decimal | None:
    """Round a base or unit price for storage; None stays None."""
    if value is None:
        return None
    return to_decimal(value).quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)
