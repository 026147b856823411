"""Integer minor-unit (centavo) currency helpers.

All engine arithmetic runs on ``int`` minor units. Decimal is used only at the
edges: parsing user input, formatting, and rate math that is rounded back to
an integer with ROUND_HALF_UP.
"""

import math
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from fractions import Fraction

MINOR_UNITS_PER_MAJOR = 100
_CENT = Decimal("0.01")


def is_minor_units(value) -> bool:
    """True for plain ints (bool is rejected even though it subclasses int)."""
    return isinstance(value, int) and not isinstance(value, bool)


def round_half_up(value) -> int:
    """Round an amount of minor units to the nearest whole unit, halves away from zero.

    Accepts Decimal, int or an exact Fraction (penalty compounding).
    """
    if isinstance(value, Fraction):
        magnitude = math.floor(abs(value) + Fraction(1, 2))
        return -magnitude if value < 0 else magnitude
    return int(Decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def add_minor_units(*amounts: int) -> int:
    """Sum minor-unit amounts, refusing anything that is not an int."""
    total = 0
    for amount in amounts:
        if not is_minor_units(amount):
            raise TypeError(f"Expected integer minor units, got {amount!r}")
        total += amount
    return total


def percentage_of(amount: int, percent: Decimal) -> int:
    """Return ``percent`` % of ``amount`` minor units, rounded half-up."""
    return round_half_up(Decimal(amount) * Decimal(str(percent)) / Decimal(100))


def to_minor_units(value) -> int:
    """Parse a major-unit amount into minor units.

    Accepts Decimal, int, float or strings such as "1,047.36" or "$950".
    Sub-cent precision is rounded half-up.

    Raises:
        ValueError: If the value cannot be parsed as an amount
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid amount: {value!r}")
    if isinstance(value, str):
        cleaned = value.strip().replace(",", "").replace("$", "").replace(" ", "")
        if not cleaned:
            raise ValueError("Invalid amount: empty string")
        value = cleaned
    try:
        major = Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"Invalid amount: {value!r}") from e
    if not major.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return round_half_up(major * MINOR_UNITS_PER_MAJOR)


def from_minor_units(amount: int) -> Decimal:
    """Convert minor units to a 2-place Decimal major amount."""
    return (Decimal(amount) / MINOR_UNITS_PER_MAJOR).quantize(_CENT)


def format_minor_units(amount: int) -> str:
    """Format minor units with thousands separators: 104736 -> "1,047.36"."""
    return f"{from_minor_units(amount):,.2f}"


def format_money(amount: int, symbol: str = "$") -> str:
    """Format minor units for display: -500 -> "-$5.00"."""
    sign = "-" if amount < 0 else ""
    return f"{sign}{symbol}{format_minor_units(abs(amount))}"


__all__ = [
    "MINOR_UNITS_PER_MAJOR",
    "add_minor_units",
    "format_minor_units",
    "format_money",
    "from_minor_units",
    "is_minor_units",
    "percentage_of",
    "round_half_up",
    "to_minor_units",
]
