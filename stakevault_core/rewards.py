"""
Reward accrual and settlement math for the staking vault.

Accrual is linear, pro-rata and capped at the committed lock duration:

    baseline = max(started_timestamp, deposit.created_at)
    elapsed  = min(now − baseline, deposit.apy_duration_seconds)
    reward   = amount × elapsed × apy_percentage // 100 // SECONDS_PER_YEAR

Using the later of the program start and the deposit time means a
depositor never earns for time the reward program was not running.  When
the program is stopped and started again, every deposit's baseline moves
forward to the new start, so accrual for the stopped interval is lost
rather than carried over.

Settlement classifies a deposit at unstake time:

  EarlyExit    elapsed <  duration   → principal − penalty, reward forfeited
  MaturedExit  elapsed >= duration   → principal − fee + reward

All arithmetic is integer with truncating division, multiply before divide.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from stakevault_core.account_ledger import Deposit
from stakevault_core.errors import ValidationError
from stakevault_core.precision import SECONDS_PER_YEAR, percent_of


class ExitKind(Enum):
    EARLY = "EarlyExit"
    MATURED = "MaturedExit"


def accrual_baseline(deposit: Deposit, started_timestamp: int) -> int:
    """Timestamp from which *deposit* earns."""
    return max(started_timestamp, deposit.created_at)


def elapsed_since_baseline(deposit: Deposit, started_timestamp: int, now: int) -> int:
    """Uncapped seconds since the accrual baseline (never negative)."""
    return max(0, now - accrual_baseline(deposit, started_timestamp))


def calculate_reward(
    deposit: Deposit,
    started_timestamp: int,
    account_total_staked: int,
    now: int,
) -> int:
    """
    Yield accrued by *deposit* at *now*.

    Zero while the reward program is inactive (``started_timestamp == 0``)
    or when the owning account has nothing staked.
    """
    if started_timestamp == 0 or account_total_staked == 0:
        return 0
    elapsed = elapsed_since_baseline(deposit, started_timestamp, now)
    if elapsed > deposit.apy_duration_seconds:
        elapsed = deposit.apy_duration_seconds
    return (
        deposit.amount * elapsed * deposit.apy_percentage
        // 100
        // SECONDS_PER_YEAR
    )


def exit_kind(deposit: Deposit, started_timestamp: int, now: int) -> ExitKind:
    elapsed = elapsed_since_baseline(deposit, started_timestamp, now)
    if elapsed < deposit.apy_duration_seconds:
        return ExitKind.EARLY
    return ExitKind.MATURED


@dataclass(frozen=True)
class Settlement:
    """What unstaking one deposit pays out, and why."""
    kind: ExitKind
    principal: int
    payout: int
    reward: int = 0
    fee: int = 0
    penalty: int = 0

    @property
    def is_early(self) -> bool:
        return self.kind is ExitKind.EARLY

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "principal": self.principal,
            "payout": self.payout,
            "reward": self.reward,
            "fee": self.fee,
            "penalty": self.penalty,
        }


def settle_deposit(
    deposit: Deposit,
    *,
    started_timestamp: int,
    account_total_staked: int,
    now: int,
    exit_penalty_percentage: int,
    withdraw_fee_percentage: int,
) -> Settlement:
    """Compute the payout for unstaking *deposit* at *now*."""
    amount = deposit.amount
    if exit_kind(deposit, started_timestamp, now) is ExitKind.EARLY:
        penalty = percent_of(amount, exit_penalty_percentage)
        return Settlement(
            kind=ExitKind.EARLY,
            principal=amount,
            payout=amount - penalty,
            penalty=penalty,
        )

    fee = percent_of(amount, withdraw_fee_percentage)
    if fee > amount:
        raise ValidationError(
            f"withdraw fee {withdraw_fee_percentage}% exceeds the principal",
            code="FeeExceedsPrincipal",
        )
    reward = calculate_reward(deposit, started_timestamp, account_total_staked, now)
    return Settlement(
        kind=ExitKind.MATURED,
        principal=amount,
        payout=amount - fee + reward,
        reward=reward,
        fee=fee,
    )
