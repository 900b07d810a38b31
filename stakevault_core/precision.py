"""
Precision constants and helpers for vault token amounts.

All amounts are held as integer minor units, matching an ERC-20 style
token with 18 decimals:

    1 token = 10**18 minor units (smallest indivisible unit)

Percentages use two scales:

  - APY options:        0 … 10_000  (100 = 100 %)
  - penalty and fee:    0 … 100
"""

from __future__ import annotations

# Default number of decimal places of the staked token.
TOKEN_DECIMALS: int = 18

# Seconds in the reward year.  No leap days: 365 × 86 400.
SECONDS_PER_YEAR: int = 365 * 86_400

# Upper bound for an APY option percentage.
MAX_APY_PERCENTAGE: int = 10_000

# Upper bound for the early-exit penalty percentage.
MAX_EXIT_PENALTY_PERCENTAGE: int = 50


def percent_of(amount: int, percentage: int) -> int:
    """Truncating ``amount × percentage / 100``.

    >>> percent_of(1000, 5)
    50
    >>> percent_of(999, 1)
    9
    """
    return amount * percentage // 100


def to_minor_units(value: int | str, decimals: int = TOKEN_DECIMALS) -> int:
    """Convert a whole-token decimal string such as ``"1.5"`` to minor units."""
    text = str(value).strip()
    if text.startswith("-"):
        raise ValueError("amount must not be negative")
    whole, _, frac = text.partition(".")
    if len(frac) > decimals:
        raise ValueError(f"more than {decimals} decimal places")
    return int(whole or "0") * 10 ** decimals + int(frac.ljust(decimals, "0") or "0")


def format_amount(value: int, decimals: int = TOKEN_DECIMALS, symbol: str = "") -> str:
    """Return a human-readable token amount with trailing zeros stripped."""
    whole, frac = divmod(int(value), 10 ** decimals)
    text = str(whole)
    if frac:
        text += "." + str(frac).rjust(decimals, "0").rstrip("0")
    return f"{text} {symbol}" if symbol else text
