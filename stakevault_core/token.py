"""
Fungible-token collaborator used by the vault to move value.

The vault only relies on three calls, each atomic (all-or-nothing):

    transfer(sender, recipient, amount)
    transfer_from(spender, owner, recipient, amount) -> amount received
    balance_of(address) -> amount

``InMemoryToken`` is a minimal implementation of that interface for the
runner and the test-suite.  It can model a fee-on-transfer token
(``transfer_fee_bps``) and callback tokens that notify recipients while a
transfer is in flight (``register_receive_hook``).
"""

from __future__ import annotations

import logging
from typing import Callable, Protocol

from stakevault_core.errors import TransferError

logger = logging.getLogger("stakevault_token")

ReceiveHook = Callable[[str, int], None]


class TokenLedger(Protocol):
    symbol: str
    decimals: int

    def balance_of(self, address: str) -> int: ...

    def transfer(self, sender: str, recipient: str, amount: int) -> int: ...

    def transfer_from(
        self, spender: str, owner: str, recipient: str, amount: int,
    ) -> int: ...


class InMemoryToken:
    """Integer-balance token with allowances."""

    def __init__(
        self,
        symbol: str = "FAT",
        decimals: int = 18,
        *,
        transfer_fee_bps: int = 0,
        balances: dict[str, int] | None = None,
    ):
        if not 0 <= transfer_fee_bps <= 10_000:
            raise ValueError("transfer_fee_bps must be within 0 … 10000")
        self.symbol = symbol
        self.decimals = decimals
        self.transfer_fee_bps = transfer_fee_bps
        self.balances: dict[str, int] = {}
        self.allowances: dict[tuple[str, str], int] = {}
        self.total_supply = 0
        self._hooks: dict[str, ReceiveHook] = {}
        for address, amount in (balances or {}).items():
            self.mint(address, amount)

    # ── supply ──────────────────────────────────────────────────────

    def mint(self, address: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("cannot mint a negative amount")
        self.balances[address] = self.balances.get(address, 0) + amount
        self.total_supply += amount

    # ── ERC-20 style surface ────────────────────────────────────────

    def balance_of(self, address: str) -> int:
        return self.balances.get(address, 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self.allowances.get((owner, spender), 0)

    def approve(self, owner: str, spender: str, amount: int) -> None:
        if amount < 0:
            raise TransferError("allowance must not be negative")
        self.allowances[(owner, spender)] = amount

    def transfer(self, sender: str, recipient: str, amount: int) -> int:
        return self._move(sender, recipient, amount)

    def transfer_from(
        self, spender: str, owner: str, recipient: str, amount: int,
    ) -> int:
        allowed = self.allowance(owner, spender)
        if amount > allowed:
            raise TransferError(
                f"allowance {allowed} of {spender} insufficient for {amount}"
            )
        received = self._move(owner, recipient, amount)
        self.allowances[(owner, spender)] = allowed - amount
        return received

    # ── hooks ───────────────────────────────────────────────────────

    def register_receive_hook(self, address: str, hook: ReceiveHook) -> None:
        """Call *hook(sender, amount)* whenever *address* receives tokens."""
        self._hooks[address] = hook

    def remove_receive_hook(self, address: str) -> None:
        self._hooks.pop(address, None)

    # ── internal ────────────────────────────────────────────────────

    def _move(self, sender: str, recipient: str, amount: int) -> int:
        if amount < 0:
            raise TransferError("transfer amount must not be negative")
        balance = self.balance_of(sender)
        if amount > balance:
            raise TransferError(
                f"balance {balance} of {sender} insufficient for {amount}"
            )
        fee = amount * self.transfer_fee_bps // 10_000
        received = amount - fee
        saved = dict(self.balances), self.total_supply
        self.balances[sender] = balance - amount
        self.balances[recipient] = self.balance_of(recipient) + received
        self.total_supply -= fee
        hook = self._hooks.get(recipient)
        if hook is not None:
            try:
                hook(sender, received)
            except Exception:
                # a failing recipient aborts the whole transfer
                self.balances, self.total_supply = saved
                logger.debug(f"Receive hook of {recipient} rejected {received} from {sender}")
                raise
        return received
