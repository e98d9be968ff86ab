"""
Token unit helpers.

Chain amounts are 18-decimal integers in base units; these helpers convert
them for display without going through floats.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_DOWN

from feeaudit.core.constants import TOKEN_DECIMALS, WEI_PER_TOKEN

_QUANTIZER = Decimal(f"1e-{TOKEN_DECIMALS}")


def from_base_units(value: int) -> Decimal:
    """Convert a base-unit int to a Decimal token amount."""
    if not isinstance(value, int):
        raise ValueError("Base units must be an int")
    return (Decimal(value) / Decimal(WEI_PER_TOKEN)).quantize(_QUANTIZER, rounding=ROUND_DOWN)


def format_tokens(value: int, decimals: int = 4, symbol: str = "") -> str:
    """Format a base-unit amount with a fixed number of decimals, truncating."""
    amount = from_base_units(value).quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_DOWN)
    text = f"{amount:f}"
    return f"{text} {symbol}" if symbol else text
