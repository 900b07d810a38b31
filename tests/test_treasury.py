"""
Tests for treasury solvency helpers and amount precision.
"""

import pytest

from stakevault_core.errors import SolvencyError, ValidationError
from stakevault_core.precision import format_amount, percent_of, to_minor_units
from stakevault_core.treasury import available_rewards, ensure_solvent, ensure_unreserved


class TestSolvency:

    def test_within_balance(self):
        ensure_solvent(100, 100)
        ensure_solvent(0, 0)

    def test_over_balance(self):
        with pytest.raises(SolvencyError) as exc:
            ensure_solvent(101, 100)
        assert exc.value.code == "InsufficientTreasury"
        assert exc.value.requested == 101
        assert exc.value.available == 100

    def test_available_rewards_floor(self):
        assert available_rewards(150, 100) == 50
        assert available_rewards(80, 100) == 0

    def test_unreserved_limits(self):
        ensure_unreserved(50, 150, 100)
        with pytest.raises(SolvencyError):
            ensure_unreserved(51, 150, 100)

    @pytest.mark.parametrize("amount", [0, -5])
    def test_unreserved_rejects_non_positive(self, amount):
        with pytest.raises(ValidationError) as exc:
            ensure_unreserved(amount, 150, 100)
        assert exc.value.code == "InvalidAmount"


class TestPrecision:

    def test_percent_of_truncates(self):
        assert percent_of(1000, 5) == 50
        assert percent_of(999, 1) == 9
        assert percent_of(7, 0) == 0

    def test_to_minor_units(self):
        assert to_minor_units("1.5", 18) == 15 * 10 ** 17
        assert to_minor_units(3, 2) == 300
        assert to_minor_units(".25", 2) == 25

    def test_to_minor_units_rejects(self):
        with pytest.raises(ValueError):
            to_minor_units("-1")
        with pytest.raises(ValueError):
            to_minor_units("0.001", 2)

    def test_format_amount(self):
        assert format_amount(15 * 10 ** 17) == "1.5"
        assert format_amount(2 * 10 ** 18, symbol="FAT") == "2 FAT"
