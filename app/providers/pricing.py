"""
Route pricing for x402 payment requirements.

Route costs are written as human-readable token amounts ("10", "1.5") and
converted to raw minor units (amount * 10^decimals) for the
maxAmountRequired field. Conversion is exact: no floats anywhere.
"""

import re

AMOUNT_PATTERN = re.compile(r"(\d*)(?:\.(\d*))?", re.ASCII)


class PriceError(ValueError):
    """A cost string that cannot be expressed in the token's minor units."""


def to_minor_units(amount: str, decimals: int) -> int:
    """
    Convert a human-readable amount to integer minor units.

    "10" at 2 decimals -> 1000, "1.5" at 18 decimals -> 1500000000000000000.
    Trailing fractional zeros are ignored when checking precision, so "1.50"
    is fine for a 1-decimal token.
    """
    cleaned = str(amount).strip()
    match = AMOUNT_PATTERN.fullmatch(cleaned)
    if not match or not (match.group(1) or match.group(2)):
        raise PriceError(f"Failed to parse amount '{amount}'")

    integer_part = match.group(1) or "0"
    frac_part = (match.group(2) or "").rstrip("0")
    if len(frac_part) > decimals:
        raise PriceError(
            f"Too many decimal places: {cleaned} has {len(frac_part)} but token only has {decimals}"
        )

    return int(integer_part + frac_part.ljust(decimals, "0"))


def format_minor_units(amount: str, decimals: int) -> str:
    """Minor units as the decimal string used on the wire."""
    return str(to_minor_units(amount, decimals))
