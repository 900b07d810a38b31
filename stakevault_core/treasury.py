"""
Treasury solvency checks.

The vault's token balance is one shared pool holding both depositor
principal and reward capacity.  Nothing leaves it without passing
``ensure_solvent``; a payout larger than the balance is refused outright
rather than truncated, so a depositor is never silently under-paid.
"""

from __future__ import annotations

from stakevault_core.errors import SolvencyError, ValidationError


def ensure_solvent(requested_amount: int, current_token_balance: int) -> None:
    """Raise ``SolvencyError`` if *requested_amount* exceeds the balance."""
    if requested_amount > current_token_balance:
        raise SolvencyError(requested_amount, current_token_balance)


def available_rewards(current_token_balance: int, total_staked: int) -> int:
    """Balance not reserved for principal, floored at zero."""
    return max(0, current_token_balance - total_staked)


def ensure_unreserved(amount: int, current_token_balance: int, total_staked: int) -> None:
    """
    Raise unless *amount* can be taken without touching depositor principal.
    """
    if amount <= 0:
        raise ValidationError("amount must be positive", code="InvalidAmount")
    spare = current_token_balance - total_staked
    if amount > spare:
        raise SolvencyError(amount, max(0, spare))
