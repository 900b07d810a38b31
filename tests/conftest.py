"""
Shared pytest fixtures for the StakeVault test suite.
"""

import pytest

from stakevault_core.clock import ManualClock
from stakevault_core.token import InMemoryToken
from stakevault_core.vault import StakingVault

ADMIN = "0xadmin"
ALICE = "0xalice"
BOB = "0xbob"
CAROL = "0xcarol"
VAULT = "0xvault"

UNIT = 10 ** 18
T0 = 1_700_000_000
UNLIMITED = 10 ** 40


@pytest.fixture
def clock():
    """Deterministic clock starting at T0."""
    return ManualClock(T0)


@pytest.fixture
def token():
    """Token with two funded depositors."""
    return InMemoryToken(
        "FAT", 18,
        balances={ALICE: 1_000_000 * UNIT, BOB: 1_000_000 * UNIT},
    )


@pytest.fixture
def vault(token, clock):
    """Vault with the default deployment parameters: 50 % over 10 s, 5 % penalty, 1 % fee."""
    v = StakingVault(token, ADMIN, 50, 10, 5, 1, address=VAULT, clock=clock)
    token.approve(ALICE, VAULT, UNLIMITED)
    token.approve(BOB, VAULT, UNLIMITED)
    return v


@pytest.fixture
def funded_vault(vault, token):
    """Vault whose treasury already holds reward capacity."""
    token.mint(VAULT, 100_000 * UNIT)
    return vault
