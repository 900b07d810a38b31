"""
Tests for the vault runner wiring and the error-to-status mapping.
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from run_vault import VaultNode  # noqa: E402
from stakevault_core.config import StakeVaultConfig  # noqa: E402
from stakevault_core.errors import (  # noqa: E402
    AuthorizationError,
    LifecycleError,
    ReentrancyError,
    SolvencyError,
    ValidationError,
    VaultError,
    http_status_for,
)
from stakevault_core.wallet import Wallet  # noqa: E402


class TestVaultNode:

    def _config(self):
        cfg = StakeVaultConfig()
        cfg.vault.admin_seed = "node-admin"
        cfg.vault.address = "0xVAULT"
        cfg.token.balances = {"0xAlice": 500}
        cfg.api.enabled = False
        return cfg

    def test_wiring(self):
        node = VaultNode(self._config())
        assert node.vault.admin == Wallet.from_seed("node-admin").address
        assert node.vault.address == "0xvault"
        assert node.token.balance_of("0xalice") == 500
        assert node.vault.apy_durations() == [10]

    def test_fund_whole_tokens(self):
        node = VaultNode(self._config())
        minted = node.fund("0xBob", "1.5")
        assert minted == 15 * 10 ** 17
        assert node.token.balance_of("0xbob") == minted

    @pytest.mark.asyncio
    async def test_start_stop_without_api(self):
        node = VaultNode(self._config())
        await node.start()
        await node.stop()


class TestErrorStatus:

    @pytest.mark.parametrize("exc, status", [
        (ValidationError("x"), 400),
        (LifecycleError("x"), 400),
        (SolvencyError(2, 1), 400),
        (AuthorizationError("x"), 403),
        (ReentrancyError("x"), 409),
        (VaultError("x"), 400),
    ])
    def test_mapping(self, exc, status):
        assert http_status_for(exc) == status

    def test_code_override(self):
        err = ValidationError("bad", code="InvalidIndex")
        assert err.code == "InvalidIndex"
        assert ValidationError().code == "ValidationError"
        assert str(SolvencyError(5, 3)) == "Payout 5 exceeds treasury balance 3"
        assert isinstance(AuthorizationError("x"), PermissionError)
