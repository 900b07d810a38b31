"""
Security tests for StakingVault: admin gate, re-entrancy guard,
all-or-nothing rollback, emergency withdrawal and reset.
"""

import logging

import pytest

from conftest import ADMIN, ALICE, BOB, UNIT, VAULT
from stakevault_core.errors import (
    AuthorizationError,
    ReentrancyError,
    SolvencyError,
    TransferError,
    ValidationError,
)
from stakevault_core.events import EventType
from stakevault_core.invariants import InvariantChecker
from stakevault_core.token import InMemoryToken
from stakevault_core.vault import StakingVault


# ═══════════════════════════════════════════════════════════════════
#  Admin gate
# ═══════════════════════════════════════════════════════════════════

class TestAdminGate:

    @pytest.mark.parametrize("call", [
        lambda v: v.start_reward(BOB),
        lambda v: v.stop_reward(BOB),
        lambda v: v.update_exit_penalty(BOB, 10),
        lambda v: v.update_fee(BOB, 2),
        lambda v: v.add_or_update_apy(BOB, 10, 60),
        lambda v: v.delete_apy(BOB, 10),
        lambda v: v.withdraw_emergency_reward(BOB, 1),
        lambda v: v.reset(BOB),
        lambda v: v.admin_unstake_by_index(BOB, ALICE, 0),
        lambda v: v.admin_unstake_all_deposits(BOB, ALICE),
    ])
    def test_non_admin_rejected(self, funded_vault, call):
        funded_vault.stake(ALICE, 1000, 10)
        checker = InvariantChecker()
        checker.capture(funded_vault)
        with pytest.raises(AuthorizationError) as exc:
            call(funded_vault)
        assert exc.value.code == "NotAdmin"
        ok, msg = checker.unchanged(funded_vault)
        assert ok, msg
        assert funded_vault.apy_durations() == [10]

    def test_constructor_validation(self, token, clock):
        with pytest.raises(ValidationError):
            StakingVault(token, "", 50, 10, 5, 1, clock=clock)
        with pytest.raises(ValidationError) as exc:
            StakingVault(token, ADMIN, 50, 10, 51, 1, clock=clock)
        assert exc.value.code == "InvalidPenalty"
        with pytest.raises(ValidationError) as exc:
            StakingVault(token, ADMIN, 0, 10, 5, 1, clock=clock)
        assert exc.value.code == "InvalidPercentage"

    def test_penalty_bounds(self, vault):
        vault.update_exit_penalty(ADMIN, 50)
        vault.update_exit_penalty(ADMIN, 0)
        with pytest.raises(ValidationError) as exc:
            vault.update_exit_penalty(ADMIN, 51)
        assert exc.value.code == "InvalidPenalty"
        assert vault.exit_penalty_percentage == 0

    def test_new_penalty_applies_to_existing_deposits(self, vault, clock):
        vault.stake(ALICE, 1000, 10)
        vault.update_exit_penalty(ADMIN, 20)
        clock.advance(1)
        assert vault.unstake_by_index(ALICE, 0).payout == 800

    def test_fee_over_hundred_blocks_matured_exit(self, vault, clock):
        vault.stake(ALICE, 1000, 10)
        vault.stake(ALICE, 1000, 10)
        vault.update_fee(ADMIN, 150)
        with pytest.raises(ValidationError) as exc:
            vault.update_fee(ADMIN, -1)
        assert exc.value.code == "InvalidFee"
        clock.advance(1)
        assert vault.unstake_by_index(ALICE, 0).payout == 950
        clock.advance(10)
        with pytest.raises(ValidationError) as exc:
            vault.unstake_by_index(ALICE, 0)
        assert exc.value.code == "FeeExceedsPrincipal"
        assert vault.deposit_count(ALICE) == 1

    def test_fee_over_hundred_warns_but_small_deposit_still_exits(self, vault, clock, caplog):
        vault.stake(ALICE, 1, 10)
        with caplog.at_level(logging.WARNING, logger="stakevault"):
            vault.update_fee(ADMIN, 101)
        assert "may fail" in caplog.text
        clock.advance(10)
        # fee rounds down to 1, equal to the principal
        receipt = vault.unstake_by_index(ALICE, 0)
        assert receipt.payout == 0
        assert vault.deposit_count(ALICE) == 0

    def test_admin_unstake_pays_account(self, vault, token, clock):
        vault.stake(ALICE, 1000, 10)
        vault.stake(ALICE, 500, 10)
        alice_before = token.balance_of(ALICE)
        admin_before = token.balance_of(ADMIN)
        clock.advance(2)
        receipt = vault.admin_unstake_by_index(ADMIN, ALICE, 1)
        assert receipt.account == ALICE
        assert token.balance_of(ALICE) == alice_before + 475
        assert token.balance_of(ADMIN) == admin_before
        vault.admin_unstake_all_deposits(ADMIN, ALICE)
        assert vault.deposit_count(ALICE) == 0

    def test_admin_unstake_honours_pause(self, vault):
        vault.stake(ALICE, 1000, 10)
        vault.stop_reward(ADMIN)
        with pytest.raises(AuthorizationError):
            vault.admin_unstake_by_index(ADMIN, ALICE, 0)


# ═══════════════════════════════════════════════════════════════════
#  Re-entrancy and rollback
# ═══════════════════════════════════════════════════════════════════

class TestReentrancy:

    def test_reentrant_unstake_is_refused(self, vault, token, clock):
        vault.stake(ALICE, 1000, 10)
        vault.stake(ALICE, 1000, 10)
        clock.advance(1)
        caught = []

        def attack(sender, amount):
            try:
                vault.unstake_by_index(ALICE, 0)
            except ReentrancyError as exc:
                caught.append(exc)

        token.register_receive_hook(ALICE, attack)
        vault.unstake_by_index(ALICE, 0)
        assert len(caught) == 1
        assert caught[0].code == "ReentrantCall"
        assert vault.deposit_count(ALICE) == 1
        assert token.balance_of(VAULT) == 1050
        ok, msg = InvariantChecker().verify(vault)
        assert ok, msg

    def test_propagated_reentrancy_rolls_back(self, vault, token, clock):
        vault.stake(ALICE, 1000, 10)
        clock.advance(1)

        def attack(sender, amount):
            vault.unstake_all_deposits(ALICE)

        token.register_receive_hook(ALICE, attack)
        checker = InvariantChecker()
        checker.capture(vault)
        events_before = len(vault.events)
        with pytest.raises(ReentrancyError):
            vault.unstake_by_index(ALICE, 0)
        ok, msg = checker.unchanged(vault)
        assert ok, msg
        assert len(vault.events) == events_before

        # the guard is released once the rejected call unwinds
        token.remove_receive_hook(ALICE)
        assert vault.unstake_by_index(ALICE, 0).payout == 950

    def test_reentrant_stake_through_vault_hook(self, vault, token):
        def attack(sender, amount):
            vault.stake(BOB, 1, 10)

        token.register_receive_hook(VAULT, attack)
        with pytest.raises(ReentrancyError):
            vault.stake(ALICE, 1000, 10)
        assert vault.total_staked == 0
        assert token.balance_of(VAULT) == 0

    def test_failed_payout_transfer_restores_books(self, vault, token, clock):
        vault.stake(ALICE, 1000, 10)
        vault.stake(ALICE, 2000, 10)
        clock.advance(1)

        def refuse(sender, amount):
            raise RuntimeError("recipient refused")

        token.register_receive_hook(ALICE, refuse)
        with pytest.raises(RuntimeError):
            vault.unstake_all_deposits(ALICE)
        assert [v.amount for v in vault.deposits_of(ALICE)] == [1000, 2000]
        assert vault.total_staked == 3000
        assert len(vault.events.of_type(EventType.STAKING_REWARD)) == 0

    def test_subscriber_failure_does_not_abort(self, vault):
        seen = []
        vault.events.subscribe(lambda ev: 1 / 0)
        vault.events.subscribe(seen.append)
        vault.stake(ALICE, 1000, 10)
        assert vault.deposit_count(ALICE) == 1
        assert seen[0].event_type is EventType.DEPOSIT


# ═══════════════════════════════════════════════════════════════════
#  Emergency withdrawal and reset
# ═══════════════════════════════════════════════════════════════════

class TestTreasuryControls:

    def test_emergency_withdraw_spare_only(self, funded_vault, token):
        vault = funded_vault
        vault.stake(ALICE, 1000 * UNIT, 10)
        vault.withdraw_emergency_reward(ADMIN, 60_000 * UNIT)
        assert token.balance_of(ADMIN) == 60_000 * UNIT
        assert vault.available_rewards() == 40_000 * UNIT
        with pytest.raises(SolvencyError):
            vault.withdraw_emergency_reward(ADMIN, 40_000 * UNIT + 1)
        vault.withdraw_emergency_reward(ADMIN, 40_000 * UNIT)
        assert token.balance_of(VAULT) == vault.total_staked

    def test_emergency_withdraw_rejects_zero(self, funded_vault):
        with pytest.raises(ValidationError) as exc:
            funded_vault.withdraw_emergency_reward(ADMIN, 0)
        assert exc.value.code == "InvalidAmount"

    def test_emergency_withdraw_allowed_while_paused(self, funded_vault, token):
        funded_vault.stop_reward(ADMIN)
        funded_vault.withdraw_emergency_reward(ADMIN, UNIT)
        assert token.balance_of(ADMIN) == UNIT

    def test_reset_sweeps_and_decouples(self, funded_vault, token, clock):
        vault = funded_vault
        vault.stake(ALICE, 1000 * UNIT, 10)
        swept = vault.reset(ADMIN)
        assert swept == 101_000 * UNIT
        assert token.balance_of(ADMIN) == swept
        assert token.balance_of(VAULT) == 0
        assert vault.total_staked == 0
        assert vault.decoupled is True
        # deposits survive on the books
        assert vault.total_staked_of(ALICE) == 1000 * UNIT
        ok, msg = InvariantChecker().verify(vault)
        assert ok, msg
        ok, _ = InvariantChecker().verify(vault, check_global_total=True)
        assert not ok

        clock.advance(1)
        with pytest.raises(SolvencyError):
            vault.unstake_by_index(ALICE, 0)
        assert vault.deposit_count(ALICE) == 1

        token.mint(VAULT, 1000 * UNIT)
        receipt = vault.unstake_by_index(ALICE, 0)
        assert receipt.payout == 950 * UNIT
        assert vault.total_staked == 0

    def test_reset_empty_vault(self, vault):
        assert vault.reset(ADMIN) == 0
        assert vault.total_staked == 0


class TestFeeOnTransferGuard:

    def test_inflating_token_rejected(self, clock):
        class InflatingToken(InMemoryToken):
            def transfer_from(self, spender, owner, recipient, amount):
                received = super().transfer_from(spender, owner, recipient, amount)
                self.mint(recipient, 1)
                return received + 1

        tok = InflatingToken(balances={ALICE: 10_000})
        v = StakingVault(tok, ADMIN, 50, 10, 5, 1, address=VAULT, clock=clock)
        tok.approve(ALICE, VAULT, 10_000)
        with pytest.raises(TransferError) as exc:
            v.stake(ALICE, 1_000, 10)
        assert exc.value.code == "TransferFailed"
        assert v.total_staked == 0
