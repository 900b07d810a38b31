"""
Per-depositor deposit ledger for the staking vault.

Each depositor owns an ``AccountEntry``: an ordered list of ``Deposit``
records plus the running principal total.  Entries are created lazily on
first stake and are never destroyed; an account may end up with zero
deposits and a zero total.

The ledger also carries the vault-wide ``total_staked`` counter.  Both
counters move together on every mutation, so at rest:

    total_staked == Σ entry.total_staked_amount == Σ Σ deposit.amount

except after an admin ``reset()``, which zeroes the global counter only.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from stakevault_core.errors import ValidationError


@dataclass(frozen=True)
class Deposit:
    """
    A single locked principal.

    The rate and duration are snapshotted from the APY catalog at stake
    time; later catalog changes never touch existing deposits.
    """
    apy_percentage: int
    apy_duration_seconds: int
    amount: int             # principal, token minor units
    created_at: int         # clock timestamp

    def to_dict(self) -> dict:
        return {
            "apy_percentage": self.apy_percentage,
            "apy_duration_seconds": self.apy_duration_seconds,
            "amount": self.amount,
            "created_at": self.created_at,
        }


@dataclass
class AccountEntry:
    total_staked_amount: int = 0
    deposits: list[Deposit] = field(default_factory=list)

    def copy(self) -> AccountEntry:
        return AccountEntry(self.total_staked_amount, list(self.deposits))


@dataclass(frozen=True)
class LedgerCheckpoint:
    """Saved state of one account plus the global counter."""
    account: str
    entry: AccountEntry | None
    total_staked: int


class AccountLedger:
    """All depositor entries and the global principal counter."""

    def __init__(self) -> None:
        self.accounts: dict[str, AccountEntry] = {}
        self.total_staked: int = 0

    # ── core operations ─────────────────────────────────────────────

    def record_deposit(
        self,
        account: str,
        amount: int,
        apy_percentage: int,
        apy_duration_seconds: int,
        now: int,
    ) -> int:
        """Append a deposit for *account* and return its index."""
        if amount < 0:
            raise ValidationError("deposit amount must not be negative", code="InvalidAmount")
        entry = self.accounts.setdefault(account, AccountEntry())
        entry.deposits.append(Deposit(
            apy_percentage=apy_percentage,
            apy_duration_seconds=apy_duration_seconds,
            amount=amount,
            created_at=now,
        ))
        entry.total_staked_amount += amount
        self.total_staked += amount
        return len(entry.deposits) - 1

    def remove_at(self, account: str, index: int) -> Deposit:
        """
        Remove the deposit at *index*, shifting later deposits down by one.

        Surviving deposits keep their relative order.
        """
        entry = self.accounts.get(account)
        count = len(entry.deposits) if entry is not None else 0
        if not 0 <= index < count:
            raise ValidationError(
                f"deposit index {index} out of range for {account} ({count} deposits)",
                code="InvalidIndex",
            )
        deposit = entry.deposits.pop(index)
        entry.total_staked_amount -= deposit.amount
        self._release(deposit.amount)
        return deposit

    def clear_all(self, account: str) -> list[Deposit]:
        """Remove every deposit of *account*; returns what was removed."""
        entry = self.accounts.get(account)
        if entry is None:
            return []
        removed = entry.deposits
        entry.deposits = []
        self._release(entry.total_staked_amount)
        entry.total_staked_amount = 0
        return removed

    def _release(self, amount: int) -> None:
        # the global counter may already be zero after an admin reset
        self.total_staked = max(0, self.total_staked - amount)

    # ── rollback ────────────────────────────────────────────────────

    def checkpoint(self, account: str) -> LedgerCheckpoint:
        entry = self.accounts.get(account)
        return LedgerCheckpoint(
            account=account,
            entry=entry.copy() if entry is not None else None,
            total_staked=self.total_staked,
        )

    def restore(self, cp: LedgerCheckpoint) -> None:
        if cp.entry is None:
            self.accounts.pop(cp.account, None)
        else:
            self.accounts[cp.account] = cp.entry.copy()
        self.total_staked = cp.total_staked

    # ── queries ─────────────────────────────────────────────────────

    def get_deposit(self, account: str, index: int) -> Deposit:
        deposits = self.get_deposits(account)
        if not 0 <= index < len(deposits):
            raise ValidationError(
                f"deposit index {index} out of range for {account} ({len(deposits)} deposits)",
                code="InvalidIndex",
            )
        return deposits[index]

    def get_deposits(self, account: str) -> list[Deposit]:
        entry = self.accounts.get(account)
        return list(entry.deposits) if entry is not None else []

    def deposit_count(self, account: str) -> int:
        entry = self.accounts.get(account)
        return len(entry.deposits) if entry is not None else 0

    def total_staked_of(self, account: str) -> int:
        entry = self.accounts.get(account)
        return entry.total_staked_amount if entry is not None else 0

    def __len__(self) -> int:
        return len(self.accounts)
