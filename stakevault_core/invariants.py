"""
Invariant checks for the staking vault.

Verifies the bookkeeping properties that must hold between operations:
  - total_staked equals the sum of every account's total
  - each account total equals the sum of its deposit principals
  - no counter or deposit field is negative
  - exit penalty within 0 … 50, every APY option within 1 … 10 000
  - the APY catalog enumerates exactly the durations it can price

After an admin reset the global counter is deliberately detached from the
deposits still on the books; pass ``check_global_total=False`` (or let the
checker read ``vault.decoupled``) to skip that one check.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from stakevault_core.precision import MAX_APY_PERCENTAGE, MAX_EXIT_PENALTY_PERCENTAGE


@dataclass
class VaultSnapshot:
    """Key vault fields captured before an operation."""
    total_staked: int = 0
    account_totals: dict[str, int] = field(default_factory=dict)
    deposit_counts: dict[str, int] = field(default_factory=dict)
    treasury_balance: int = 0


class InvariantChecker:
    """
    Validates a vault's invariants, optionally against a snapshot taken
    before an operation.
    """

    def __init__(self):
        self._snapshot: VaultSnapshot | None = None

    def capture(self, vault) -> None:
        """Take a snapshot of the vault state before an operation."""
        snap = VaultSnapshot(
            total_staked=vault.ledger.total_staked,
            treasury_balance=vault.treasury_balance(),
        )
        for addr, entry in vault.ledger.accounts.items():
            snap.account_totals[addr] = entry.total_staked_amount
            snap.deposit_counts[addr] = len(entry.deposits)
        self._snapshot = snap

    def unchanged(self, vault) -> tuple[bool, str]:
        """True if the vault's books equal the captured snapshot."""
        snap = self._snapshot
        if snap is None:
            return True, ""
        self._snapshot = None
        if vault.ledger.total_staked != snap.total_staked:
            return False, (f"total_staked changed: {snap.total_staked} -> "
                           f"{vault.ledger.total_staked}")
        for addr, entry in vault.ledger.accounts.items():
            if entry.total_staked_amount != snap.account_totals.get(addr, 0):
                return False, f"Account total changed on {addr}"
            if len(entry.deposits) != snap.deposit_counts.get(addr, 0):
                return False, f"Deposit count changed on {addr}"
        if vault.treasury_balance() != snap.treasury_balance:
            return False, "Treasury balance changed"
        return True, ""

    def verify(self, vault, check_global_total: bool | None = None) -> tuple[bool, str]:
        """
        Verify all invariants against the current vault state.
        Returns (passed, error_message).
        """
        if check_global_total is None:
            check_global_total = not getattr(vault, "decoupled", False)

        errors: list[str] = []
        checks = [
            self._check_account_totals,
            self._check_non_negative,
            self._check_parameters,
            self._check_catalog_sync,
        ]
        if check_global_total:
            checks.insert(0, self._check_global_total)

        for check in checks:
            ok, msg = check(vault)
            if not ok:
                errors.append(msg)

        if errors:
            return False, "; ".join(errors)
        return True, ""

    def _check_global_total(self, vault) -> tuple[bool, str]:
        """total_staked == Σ account totals."""
        ledger = vault.ledger
        account_sum = sum(e.total_staked_amount for e in ledger.accounts.values())
        if ledger.total_staked != account_sum:
            return (False,
                    f"Global total mismatch: total_staked={ledger.total_staked} "
                    f"but account sum={account_sum}")
        return True, ""

    def _check_account_totals(self, vault) -> tuple[bool, str]:
        """Each account total == Σ its deposit principals."""
        for addr, entry in vault.ledger.accounts.items():
            deposit_sum = sum(d.amount for d in entry.deposits)
            if entry.total_staked_amount != deposit_sum:
                return (False,
                        f"Account total mismatch on {addr}: "
                        f"{entry.total_staked_amount} != {deposit_sum}")
        return True, ""

    def _check_non_negative(self, vault) -> tuple[bool, str]:
        ledger = vault.ledger
        if ledger.total_staked < 0:
            return False, f"total_staked is negative: {ledger.total_staked}"
        for addr, entry in ledger.accounts.items():
            if entry.total_staked_amount < 0:
                return False, f"Negative account total on {addr}"
            for i, d in enumerate(entry.deposits):
                if d.amount < 0 or d.apy_percentage < 0 or d.apy_duration_seconds < 0:
                    return False, f"Negative field in deposit {i} of {addr}"
        return True, ""

    def _check_parameters(self, vault) -> tuple[bool, str]:
        if not 0 <= vault.exit_penalty_percentage <= MAX_EXIT_PENALTY_PERCENTAGE:
            return False, f"Exit penalty out of range: {vault.exit_penalty_percentage}"
        for opt in vault.catalog.options():
            if not 0 < opt.percentage <= MAX_APY_PERCENTAGE:
                return (False,
                        f"APY option {opt.duration_seconds}s out of range: "
                        f"{opt.percentage}")
        return True, ""

    def _check_catalog_sync(self, vault) -> tuple[bool, str]:
        """Every enumerated duration is priced, and nothing else is."""
        catalog = vault.catalog
        durations = catalog.durations()
        if len(set(durations)) != len(durations):
            return False, f"Duplicate APY durations: {durations}"
        for d in durations:
            if catalog.get(d) == 0:
                return False, f"APY duration {d}s enumerated but unpriced"
        if len(durations) != len(catalog):
            return False, "APY enumeration and table sizes differ"
        return True, ""
