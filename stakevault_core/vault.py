"""
Token staking vault.

Depositors lock principal for one of the durations offered by the APY
catalog and later withdraw principal plus time-proportional yield.  The
vault's own token balance (the treasury) funds both returned principal
and rewards.

Entry points
────────────
  stake()                         lock principal under an APY option
  unstake_by_index()              settle one deposit
  unstake_all_deposits()          settle every deposit in one payout
  admin_unstake_by_index()        same, on behalf of any account
  admin_unstake_all_deposits()

Admin lifecycle
───────────────
  start_reward() / stop_reward()  open or close the reward program
  add_or_update_apy() / delete_apy()
  update_exit_penalty() / update_fee()
  withdraw_emergency_reward()     take spare (non-principal) balance
  reset()                         sweep the whole balance, zero the books

Execution model
───────────────
Every value-moving operation holds a non-reentrant guard for its full
duration and runs all-or-nothing: ledger effects are applied first, the
single outward transfer goes last, and any exception restores the ledger
to its pre-call state.  Notifications are published only on commit.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator, Optional

from stakevault_core.account_ledger import AccountLedger, Deposit
from stakevault_core.apy_catalog import ApyCatalog, ApyOption
from stakevault_core.clock import Clock, SystemClock
from stakevault_core.errors import (
    AuthorizationError,
    LifecycleError,
    ReentrancyError,
    SolvencyError,
    TransferError,
    ValidationError,
)
from stakevault_core.events import EventLog, EventType, VaultEvent
from stakevault_core.precision import MAX_EXIT_PENALTY_PERCENTAGE
from stakevault_core.rewards import Settlement, calculate_reward, settle_deposit
from stakevault_core.token import TokenLedger
from stakevault_core.treasury import available_rewards, ensure_solvent, ensure_unreserved

logger = logging.getLogger("stakevault")


# ── result / view types ─────────────────────────────────────────────────

@dataclass(frozen=True)
class UnstakeReceipt:
    """Outcome of a committed unstake."""
    account: str
    settlements: tuple[Settlement, ...]
    payout: int
    reward: int

    def to_dict(self) -> dict:
        return {
            "account": self.account,
            "payout": self.payout,
            "reward": self.reward,
            "deposits": [s.to_dict() for s in self.settlements],
        }


@dataclass(frozen=True)
class DepositView:
    """A deposit as reported by the read surface."""
    index: int
    amount: int
    apy_percentage: int
    apy_duration_seconds: int
    created_at: int
    elapsed: int        # seconds since the deposit was created
    reward: int         # accrued so far

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "amount": self.amount,
            "apy_percentage": self.apy_percentage,
            "apy_duration_seconds": self.apy_duration_seconds,
            "created_at": self.created_at,
            "elapsed": self.elapsed,
            "reward": self.reward,
        }


@dataclass
class _Pending:
    events: list[VaultEvent] = field(default_factory=list)


# ── StakingVault ───────────────────────────────────────────────────────

class StakingVault:
    """Staking ledger, reward engine and admin controls over one token."""

    def __init__(
        self,
        token: TokenLedger,
        admin: str,
        apy_percentage: int,
        apy_duration: int,
        exit_penalty_percentage: int,
        withdraw_fee_percentage: int,
        *,
        address: str = "stakevault",
        clock: Optional[Clock] = None,
    ) -> None:
        if not admin:
            raise ValidationError("admin identity required", code="InvalidAdmin")
        _check_exit_penalty(exit_penalty_percentage)
        _check_fee(withdraw_fee_percentage)

        self.token = token
        self.admin = admin
        self.address = address
        self.clock: Clock = clock or SystemClock()

        self.catalog = ApyCatalog()
        self.catalog.add_or_update(apy_percentage, apy_duration)
        self.ledger = AccountLedger()
        self.events = EventLog()

        self.exit_penalty_percentage = exit_penalty_percentage
        self.withdraw_fee_percentage = withdraw_fee_percentage
        # reward program is live from creation
        self.started_timestamp: int = self.clock.now()
        self.paused: bool = False
        # set once reset() has detached the books from actual holdings
        self.decoupled: bool = False
        self._locked = False

    # ── guards ──────────────────────────────────────────────────────

    @contextmanager
    def _non_reentrant(self) -> Iterator[None]:
        if self._locked:
            raise ReentrancyError("re-entrant call into a guarded vault operation")
        self._locked = True
        try:
            yield
        finally:
            self._locked = False

    @contextmanager
    def _operation(self, name: str, *accounts: str) -> Iterator[_Pending]:
        """Guarded, all-or-nothing execution scope."""
        with self._non_reentrant():
            checkpoints = [self.ledger.checkpoint(a) for a in accounts]
            total_before = self.ledger.total_staked
            pending = _Pending()
            try:
                yield pending
            except BaseException as exc:
                for cp in reversed(checkpoints):
                    self.ledger.restore(cp)
                self.ledger.total_staked = total_before
                code = getattr(exc, "code", type(exc).__name__)
                level = logging.WARNING if isinstance(exc, SolvencyError) else logging.DEBUG
                logger.log(level, f"{name} rejected: {exc}", extra={"code": code})
                raise
        self.events.publish(pending.events)

    def _only_admin(self, caller: str) -> None:
        if caller != self.admin:
            raise AuthorizationError(f"{caller} is not the vault admin", code="NotAdmin")

    def _when_not_paused(self) -> None:
        if self.paused:
            raise AuthorizationError("vault is paused", code="Paused")

    def _require_started(self) -> None:
        if self.started_timestamp == 0:
            raise LifecycleError("reward program is not running", code="NotStarted")

    def _event(self, kind: EventType, account: str, amount: int, index: int | None = None) -> VaultEvent:
        return VaultEvent(kind, account, amount, index=index, timestamp=self.clock.now())

    # ── treasury ────────────────────────────────────────────────────

    def treasury_balance(self) -> int:
        return self.token.balance_of(self.address)

    def available_rewards(self) -> int:
        """Balance not reserved for depositor principal."""
        return available_rewards(self.treasury_balance(), self.ledger.total_staked)

    def _pay(self, recipient: str, amount: int) -> None:
        self.token.transfer(self.address, recipient, amount)

    # ── staking ─────────────────────────────────────────────────────

    def stake(self, caller: str, amount: int, duration: int) -> int:
        """
        Lock *amount* for *duration* seconds; returns the deposit index.

        Only the amount the vault actually receives is recorded, so a
        fee-on-transfer token yields a smaller deposit than requested.
        """
        with self._operation("stake", caller) as pending:
            self._when_not_paused()
            if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
                raise ValidationError("stake amount must be a positive integer", code="InvalidAmount")
            percentage = self.catalog.get(duration)
            if percentage == 0:
                raise ValidationError(f"duration {duration} is not offered", code="InvalidDuration")

            before = self.treasury_balance()
            self.token.transfer_from(self.address, caller, self.address, amount)
            received = self.treasury_balance() - before
            if received > amount:
                raise TransferError(
                    f"vault received {received}, more than the {amount} requested"
                )
            if received == 0:
                raise ValidationError(
                    f"transfer of {amount} delivered nothing to the vault", code="InvalidAmount",
                )

            index = self.ledger.record_deposit(
                caller, received, percentage, duration, self.clock.now(),
            )
            pending.events.append(self._event(EventType.DEPOSIT, caller, received, index))

        if received < amount:
            logger.warning(f"Stake by {caller}: requested {amount}, received {received}")
        logger.info(f"Stake #{index} by {caller}: {received} for {duration}s at {percentage}")
        return index

    # ── unstaking ───────────────────────────────────────────────────

    def _settle(self, account: str, deposit: Deposit, now: int) -> Settlement:
        return settle_deposit(
            deposit,
            started_timestamp=self.started_timestamp,
            account_total_staked=self.ledger.total_staked_of(account),
            now=now,
            exit_penalty_percentage=self.exit_penalty_percentage,
            withdraw_fee_percentage=self.withdraw_fee_percentage,
        )

    def _payout_event(self, account: str, settlement: Settlement) -> VaultEvent | None:
        if settlement.payout <= 0:
            return None
        kind = EventType.EMERGENCY_WITHDRAW if settlement.is_early else EventType.WITHDRAW
        return self._event(kind, account, settlement.payout)

    def _unstake_one(self, account: str, index: int) -> UnstakeReceipt:
        with self._operation("unstake", account) as pending:
            self._when_not_paused()
            self._require_started()
            deposit = self.ledger.get_deposit(account, index)
            settlement = self._settle(account, deposit, self.clock.now())

            ensure_solvent(settlement.payout, self.treasury_balance())
            self.ledger.remove_at(account, index)
            self._pay(account, settlement.payout)

            ev = self._payout_event(account, settlement)
            if ev is not None:
                pending.events.append(ev)
            pending.events.append(
                self._event(EventType.STAKING_REWARD, account, settlement.reward)
            )

        logger.info(
            f"Unstake #{index} by {account}: {settlement.kind.value} "
            f"payout={settlement.payout} reward={settlement.reward}"
        )
        return UnstakeReceipt(account, (settlement,), settlement.payout, settlement.reward)

    def _unstake_all(self, account: str) -> UnstakeReceipt:
        with self._operation("unstake_all", account) as pending:
            self._when_not_paused()
            self._require_started()
            deposits = self.ledger.get_deposits(account)
            if not deposits:
                raise ValidationError(f"{account} has no deposits", code="NoDeposits")

            now = self.clock.now()
            settlements = tuple(self._settle(account, d, now) for d in deposits)
            total_payout = sum(s.payout for s in settlements)
            total_reward = sum(s.reward for s in settlements)

            # one aggregate solvency check for the whole batch
            ensure_solvent(total_payout, self.treasury_balance())
            self.ledger.clear_all(account)
            self._pay(account, total_payout)

            for s in settlements:
                ev = self._payout_event(account, s)
                if ev is not None:
                    pending.events.append(ev)
            pending.events.append(
                self._event(EventType.STAKING_REWARD, account, total_reward)
            )

        logger.info(
            f"Unstake all by {account}: {len(settlements)} deposits "
            f"payout={total_payout} reward={total_reward}"
        )
        return UnstakeReceipt(account, settlements, total_payout, total_reward)

    def unstake_by_index(self, caller: str, index: int) -> UnstakeReceipt:
        return self._unstake_one(caller, index)

    def unstake_all_deposits(self, caller: str) -> UnstakeReceipt:
        return self._unstake_all(caller)

    def admin_unstake_by_index(self, caller: str, account: str, index: int) -> UnstakeReceipt:
        """Settle *account*'s deposit at *index*; payout goes to *account*."""
        self._only_admin(caller)
        logger.warning(f"Admin unstake #{index} on behalf of {account}")
        return self._unstake_one(account, index)

    def admin_unstake_all_deposits(self, caller: str, account: str) -> UnstakeReceipt:
        self._only_admin(caller)
        logger.warning(f"Admin unstake-all on behalf of {account}")
        return self._unstake_all(account)

    # ── lifecycle control ───────────────────────────────────────────

    def start_reward(self, caller: str) -> int:
        """Open the reward program and lift the pause gate."""
        self._only_admin(caller)
        if self.started_timestamp != 0:
            raise LifecycleError("reward program already started", code="AlreadyStarted")
        self.started_timestamp = self.clock.now()
        self.paused = False
        logger.warning(f"Reward program started at {self.started_timestamp}")
        return self.started_timestamp

    def stop_reward(self, caller: str) -> None:
        """
        Close the reward program and pause the vault.

        A later start_reward() moves every deposit's accrual baseline to
        the new start time; accrual for the stopped interval is not kept.
        """
        self._only_admin(caller)
        self.started_timestamp = 0
        self.paused = True
        logger.warning("Reward program stopped; vault paused")

    def update_exit_penalty(self, caller: str, percentage: int) -> None:
        self._only_admin(caller)
        _check_exit_penalty(percentage)
        self.exit_penalty_percentage = percentage
        logger.info(f"Exit penalty set to {percentage}%")

    def update_fee(self, caller: str, percentage: int) -> None:
        # no upper bound: the admin is trusted with the fee level
        self._only_admin(caller)
        _check_fee(percentage)
        self.withdraw_fee_percentage = percentage
        if percentage > 100:
            logger.warning(f"Withdraw fee {percentage}% exceeds principal; matured exits may fail")
        else:
            logger.info(f"Withdraw fee set to {percentage}%")

    def add_or_update_apy(self, caller: str, percentage: int, duration: int) -> None:
        self._only_admin(caller)
        is_new = self.catalog.add_or_update(percentage, duration)
        logger.info(f"APY option {'added' if is_new else 'updated'}: {duration}s -> {percentage}")

    def delete_apy(self, caller: str, duration: int) -> None:
        self._only_admin(caller)
        if self.catalog.delete(duration):
            logger.info(f"APY option {duration}s deleted")

    def withdraw_emergency_reward(self, caller: str, amount: int) -> None:
        """Send *amount* of spare (non-principal) balance to the admin."""
        with self._operation("withdraw_emergency_reward"):
            self._only_admin(caller)
            ensure_unreserved(amount, self.treasury_balance(), self.ledger.total_staked)
            self._pay(self.admin, amount)
        logger.warning(f"Emergency reward withdrawal of {amount} to admin")

    def reset(self, caller: str) -> int:
        """
        Sweep the entire balance to the admin and zero ``total_staked``.

        Deposits stay on the books; unstaking them fails the solvency
        check until the vault is refunded.
        """
        with self._operation("reset"):
            self._only_admin(caller)
            balance = self.treasury_balance()
            self.ledger.total_staked = 0
            self.token.transfer(self.address, self.admin, balance)
            self.decoupled = True
        logger.warning(f"Vault reset: {balance} swept to admin")
        return balance

    # ── read surface ────────────────────────────────────────────────

    def apy_durations(self) -> list[int]:
        return self.catalog.durations()

    def apy_percentage(self, duration: int) -> int:
        return self.catalog.get(duration)

    def apy_option_count(self) -> int:
        return len(self.catalog)

    def apy_table(self) -> list[ApyOption]:
        return self.catalog.options()

    @property
    def total_staked(self) -> int:
        return self.ledger.total_staked

    def total_staked_of(self, account: str) -> int:
        return self.ledger.total_staked_of(account)

    def deposit_count(self, account: str) -> int:
        return self.ledger.deposit_count(account)

    def calculate_reward(self, account: str, index: int) -> int:
        deposit = self.ledger.get_deposit(account, index)
        return calculate_reward(
            deposit,
            self.started_timestamp,
            self.ledger.total_staked_of(account),
            self.clock.now(),
        )

    def _view(self, account: str, index: int, deposit: Deposit, now: int) -> DepositView:
        return DepositView(
            index=index,
            amount=deposit.amount,
            apy_percentage=deposit.apy_percentage,
            apy_duration_seconds=deposit.apy_duration_seconds,
            created_at=deposit.created_at,
            elapsed=max(0, now - deposit.created_at),
            reward=calculate_reward(
                deposit, self.started_timestamp, self.ledger.total_staked_of(account), now,
            ),
        )

    def deposits_of(self, account: str) -> list[DepositView]:
        now = self.clock.now()
        return [
            self._view(account, i, d, now)
            for i, d in enumerate(self.ledger.get_deposits(account))
        ]

    def deposit_of(self, account: str, index: int) -> DepositView:
        deposit = self.ledger.get_deposit(account, index)
        return self._view(account, index, deposit, self.clock.now())

    def pending_reward(self, account: str) -> int:
        """Reward accrued across all of *account*'s deposits."""
        return sum(v.reward for v in self.deposits_of(account))

    def status(self) -> dict:
        balance = self.treasury_balance()
        return {
            "address": self.address,
            "admin": self.admin,
            "token": getattr(self.token, "symbol", ""),
            "started_timestamp": self.started_timestamp,
            "paused": self.paused,
            "exit_penalty_percentage": self.exit_penalty_percentage,
            "withdraw_fee_percentage": self.withdraw_fee_percentage,
            "total_staked": self.ledger.total_staked,
            "treasury_balance": balance,
            "available_rewards": available_rewards(balance, self.ledger.total_staked),
            "accounts": len(self.ledger),
            "apy_options": [o.to_dict() for o in self.catalog.options()],
            "decoupled": self.decoupled,
        }


def _check_exit_penalty(percentage: int) -> None:
    if (not isinstance(percentage, int) or isinstance(percentage, bool)
            or not 0 <= percentage <= MAX_EXIT_PENALTY_PERCENTAGE):
        raise ValidationError(
            f"exit penalty must be within 0 … {MAX_EXIT_PENALTY_PERCENTAGE}, got {percentage!r}",
            code="InvalidPenalty",
        )


def _check_fee(percentage: int) -> None:
    if not isinstance(percentage, int) or isinstance(percentage, bool) or percentage < 0:
        raise ValidationError(
            f"withdraw fee must be a non-negative integer, got {percentage!r}",
            code="InvalidFee",
        )
