"""
Tests for the invariant checker and the event log.
"""

import json
import logging

import pytest

from conftest import ADMIN, ALICE, BOB
from stakevault_core.account_ledger import Deposit
from stakevault_core.errors import ValidationError
from stakevault_core.events import EventLog, EventType, VaultEvent
from stakevault_core.invariants import InvariantChecker
from stakevault_core.logging_config import (
    _HumanFormatter,
    _JSONFormatter,
    set_vault_log_level,
)


class TestInvariantChecker:

    def test_fresh_vault_passes(self, vault):
        ok, msg = InvariantChecker().verify(vault)
        assert ok, msg

    def test_after_activity(self, funded_vault, clock):
        funded_vault.stake(ALICE, 100, 10)
        funded_vault.stake(BOB, 200, 10)
        clock.advance(11)
        funded_vault.unstake_all_deposits(ALICE)
        ok, msg = InvariantChecker().verify(funded_vault)
        assert ok, msg

    def test_detects_global_total_drift(self, vault):
        vault.stake(ALICE, 100, 10)
        vault.ledger.total_staked += 1
        ok, msg = InvariantChecker().verify(vault)
        assert not ok
        assert "Global total" in msg

    def test_detects_account_total_drift(self, vault):
        vault.stake(ALICE, 100, 10)
        vault.ledger.accounts[ALICE].deposits.append(
            Deposit(apy_percentage=50, apy_duration_seconds=10, amount=5, created_at=0)
        )
        ok, msg = InvariantChecker().verify(vault, check_global_total=False)
        assert not ok
        assert "Account total" in msg

    def test_detects_bad_penalty(self, vault):
        vault.exit_penalty_percentage = 99
        ok, msg = InvariantChecker().verify(vault)
        assert not ok

    def test_unchanged_without_capture(self, vault):
        assert InvariantChecker().unchanged(vault) == (True, "")

    def test_unchanged_detects_movement(self, vault):
        checker = InvariantChecker()
        checker.capture(vault)
        vault.stake(ALICE, 100, 10)
        ok, _ = checker.unchanged(vault)
        assert not ok


class TestEventLog:

    def test_sequence_numbers(self):
        log = EventLog()
        log.publish([
            VaultEvent(EventType.DEPOSIT, ALICE, 10, index=0),
            VaultEvent(EventType.STAKING_REWARD, ALICE, 0),
        ])
        log.publish([VaultEvent(EventType.DEPOSIT, BOB, 5, index=0)])
        assert [e.sequence for e in log.events] == [1, 2, 3]
        assert len(log.since(1)) == 2
        assert len(log.for_account(ALICE)) == 2
        assert len(log.of_type(EventType.DEPOSIT)) == 2

    def test_to_dict_index_only_on_deposit(self):
        d = VaultEvent(EventType.DEPOSIT, ALICE, 10, index=3).to_dict()
        w = VaultEvent(EventType.WITHDRAW, ALICE, 10).to_dict()
        assert d["event"] == "Deposit" and d["index"] == 3
        assert "index" not in w

    def test_unsubscribe(self):
        log = EventLog()
        seen = []
        log.subscribe(seen.append)
        log.unsubscribe(seen.append)
        log.unsubscribe(seen.append)
        log.publish([VaultEvent(EventType.WITHDRAW, ALICE, 1)])
        assert seen == []

    def test_rejected_operation_publishes_nothing(self, vault):
        with pytest.raises(ValidationError):
            vault.stake(ALICE, 0, 10)
        vault.stop_reward(ADMIN)
        assert len(vault.events) == 0


class TestLogging:

    def _record(self, **extra):
        record = logging.LogRecord("stakevault", logging.WARNING, __file__, 1, "stake rejected", None, None)
        for k, v in extra.items():
            setattr(record, k, v)
        return record

    def test_json_formatter_includes_context(self):
        out = json.loads(_JSONFormatter().format(self._record(code="Paused", account=ALICE)))
        assert out["msg"] == "stake rejected"
        assert out["code"] == "Paused"
        assert out["account"] == ALICE
        assert "amount" not in out

    def test_human_formatter(self):
        line = _HumanFormatter(colour=False).format(self._record(code="NotAdmin"))
        assert "[WARNING]" in line
        assert line.endswith("code=NotAdmin")

    def test_set_level(self):
        set_vault_log_level("error")
        assert logging.getLogger("stakevault").level == logging.ERROR
        set_vault_log_level("INFO")
        with pytest.raises(ValueError):
            set_vault_log_level("loud")
