"""Unit Tests for PayoutCalculator

Commission must be round-half-up on whole units and always leave
fee + net == budget.
"""

from decimal import Decimal

import pytest

from escrow_ledger.core.engine import Payout, PayoutCalculator, round_half_up
from escrow_ledger.core.exceptions import InvalidAmount


@pytest.fixture
def calculator() -> PayoutCalculator:
    return PayoutCalculator()


class TestComputePayout:
    def test_release_of_1000(self, calculator):
        assert calculator.compute_payout(1000) == Payout(fee=50, net=950)

    @pytest.mark.parametrize(
        "budget,fee",
        [
            (10, 1),  # 0.5 rounds up
            (30, 2),  # 1.5 rounds up
            (50, 3),  # 2.5 rounds up, not to even
            (9, 0),  # 0.45
            (1, 0),
            (999, 50),  # 49.95
        ],
    )
    def test_half_up_boundaries(self, calculator, budget, fee):
        payout = calculator.compute_payout(budget)
        assert payout.fee == fee
        assert payout.net == budget - fee

    def test_matches_integer_formula_for_every_budget(self, calculator):
        for budget in range(0, 5001):
            payout = calculator.compute_payout(budget)
            assert payout.fee == (budget * 5 + 50) // 100
            assert payout.fee + payout.net == budget
            assert payout.gross == budget

    def test_repeated_calls_do_not_drift(self, calculator):
        results = {calculator.compute_payout(333) for _ in range(1000)}
        assert results == {Payout(fee=17, net=316)}

    def test_large_budget_is_exact(self, calculator):
        budget = 10**15 + 10
        payout = calculator.compute_payout(budget)
        assert payout.fee == (budget * 5 + 50) // 100
        assert payout.fee + payout.net == budget

    def test_string_and_decimal_inputs(self, calculator):
        assert calculator.compute_payout("1000") == Payout(fee=50, net=950)
        assert calculator.compute_payout(Decimal("1000.00")) == Payout(fee=50, net=950)

    @pytest.mark.parametrize("budget", ["10.5", Decimal("0.01"), "abc", "NaN"])
    def test_fractional_or_malformed_budget_rejected(self, calculator, budget):
        with pytest.raises(InvalidAmount):
            calculator.compute_payout(budget)

    def test_negative_budget_rejected(self, calculator):
        with pytest.raises(InvalidAmount):
            calculator.compute_payout(-100)


class TestCommissionRate:
    def test_custom_rate(self):
        assert PayoutCalculator("0.10").compute_payout(1005) == Payout(fee=101, net=904)

    def test_zero_rate(self):
        assert PayoutCalculator(0).compute_payout(1000) == Payout(fee=0, net=1000)

    @pytest.mark.parametrize("rate", ["-0.01", "1", "1.5"])
    def test_out_of_range_rate_rejected(self, rate):
        with pytest.raises(ValueError):
            PayoutCalculator(rate)


class TestRoundHalfUp:
    @pytest.mark.parametrize(
        "value,expected",
        [("0.5", 1), ("1.5", 2), ("2.5", 3), ("2.4999", 2), ("599.5", 600)],
    )
    def test_rounding(self, value, expected):
        assert round_half_up(Decimal(value)) == expected
