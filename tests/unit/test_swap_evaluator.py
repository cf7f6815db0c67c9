"""
test_swap_evaluator.py - Unit tests for the swap policy

Tests:
- decide() boundaries (3200 swappable, 5300 swap, both inclusive)
- evaluate_swap() at the reference prices
- Event selection from an evaluation
- Breakeven price
"""

import pytest
from datetime import datetime
from decimal import Decimal

from nyx import (
    CarbonCreditPrice, SwapDecision, decide, evaluate_swap, breakeven_price_wei,
    LoanSwappable, LoanSwapped, LoanNotSwappable, LoanNoLongerSwappable,
    SWAPPABLE_THRESHOLD_BPS, AUTO_SWAP_THRESHOLD_BPS,
    calculate_profit_bps, to_wei,
)


PRINCIPAL = to_wei(1000)


def snapshot(price: str, version: int = 1) -> CarbonCreditPrice:
    return CarbonCreditPrice(Decimal(price), datetime(2025, 1, 1), version)


class TestDecide:
    """Tests for threshold boundaries."""

    @pytest.mark.parametrize("bps,decision", [
        (-10_000, SwapDecision.NOT_SWAPPABLE),
        (0, SwapDecision.NOT_SWAPPABLE),
        (3199, SwapDecision.NOT_SWAPPABLE),
        (3200, SwapDecision.SWAPPABLE),
        (5299, SwapDecision.SWAPPABLE),
        (5300, SwapDecision.SWAP),
        (90_000, SwapDecision.SWAP),
    ])
    def test_boundaries(self, bps, decision):
        assert decide(bps) is decision

    def test_thresholds(self):
        assert (SWAPPABLE_THRESHOLD_BPS, AUTO_SWAP_THRESHOLD_BPS) == (3200, 5300)


class TestEvaluateSwap:
    """Tests for evaluate_swap at reference prices."""

    def test_swappable(self):
        result = evaluate_swap(25, PRINCIPAL, snapshot("52.86"))
        assert result.profit_bps == 3215
        assert result.value_at_price == 321_500 * 10 ** 15
        assert result.decision is SwapDecision.SWAPPABLE
        assert result.to_event() == LoanSwappable(25, 321_500 * 10 ** 15, 3215)

    def test_swap(self):
        result = evaluate_swap(25, PRINCIPAL, snapshot("62"))
        assert result.to_event() == LoanSwapped(25, 550 * 10 ** 18, 5500)

    def test_not_swappable(self):
        result = evaluate_swap(25, PRINCIPAL, snapshot("50"))
        assert result.to_event() == LoanNotSwappable(25, 250 * 10 ** 18, 2500)
        assert not result.still_swappable()
        assert result.no_longer_swappable_event() == LoanNoLongerSwappable(2500)

    def test_loss(self):
        result = evaluate_swap(25, PRINCIPAL, snapshot("10"))
        assert result.value_at_price == -750 * 10 ** 18
        assert result.profit_bps == -7500

    def test_keeps_snapshot(self):
        snap = snapshot("52.86", version=7)
        assert evaluate_swap(25, PRINCIPAL, snap).price is snap

    def test_swapped_event_from_swappable(self):
        result = evaluate_swap(25, PRINCIPAL, snapshot("52.86"))
        assert result.swapped_event() == LoanSwapped(25, 321_500 * 10 ** 15, 3215)


class TestBreakeven:
    """Tests for breakeven_price_wei."""

    @pytest.mark.parametrize("threshold", [3200, 5300])
    def test_breakeven_is_tight(self, threshold):
        price = breakeven_price_wei(PRINCIPAL, 25, threshold)
        assert calculate_profit_bps(25, price, PRINCIPAL) >= threshold
        assert calculate_profit_bps(25, price - 1, PRINCIPAL) < threshold

    def test_reference_value(self):
        # 1000 * 1.32 / 25 = 52.8
        assert breakeven_price_wei(PRINCIPAL, 25, 3200) == to_wei("52.8")

    def test_no_credits(self):
        assert breakeven_price_wei(PRINCIPAL, 0, 3200) is None
