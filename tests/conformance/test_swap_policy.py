"""
Swap Policy Conformance Tests

INVARIANT: For credits c, price p (wei per credit) and principal P > 0:
    profit_bps = trunc((c * p - P) * 10000 / P)        (toward zero)
    decision   = SWAP        if profit_bps >= 5300
               = SWAPPABLE   if 3200 <= profit_bps < 5300
               = NOT_SWAPPABLE otherwise

INVARIANT: profit_bps is non-decreasing in price, and the breakeven price
for a threshold is the smallest price whose evaluation reaches it.

INVARIANT: the vectorised scenario analytics agree with the exact integer
evaluation a loan contract performs.
"""

import numpy as np
from hypothesis import given, settings
from hypothesis import strategies as st
from datetime import datetime
from decimal import Decimal
from fractions import Fraction

from nyx import (
    CarbonCreditPrice, SwapDecision, SWAPPABLE_THRESHOLD_BPS, AUTO_SWAP_THRESHOLD_BPS,
    calculate_profit_bps, decide, evaluate_swap, breakeven_price_wei,
    profit_bps_scenarios, to_wei,
)


credits = st.integers(min_value=0, max_value=10**6)
price_wei = st.integers(min_value=0, max_value=10**24)
principal = st.integers(min_value=1, max_value=10**27)
threshold = st.sampled_from([SWAPPABLE_THRESHOLD_BPS, AUTO_SWAP_THRESHOLD_BPS])


def exact_bps(c: int, p: int, principal_wei: int) -> Fraction:
    return Fraction((c * p - principal_wei) * 10_000, principal_wei)


class TestProfitArithmetic:
    """Exactness of the integer profit calculation."""

    @given(credits, price_wei, principal)
    @settings(max_examples=300)
    def test_truncates_toward_zero(self, c, p, principal_wei):
        bps = calculate_profit_bps(c, p, principal_wei)
        exact = exact_bps(c, p, principal_wei)
        assert abs(bps) <= abs(exact) < abs(bps) + 1
        assert bps == 0 or (bps > 0) == (exact > 0)

    @given(credits, price_wei, st.integers(min_value=1, max_value=10**20), principal)
    @settings(max_examples=300)
    def test_monotone_in_price(self, c, p, step, principal_wei):
        assert calculate_profit_bps(c, p, principal_wei) <= calculate_profit_bps(c, p + step, principal_wei)


class TestDecisionProperties:
    """Threshold policy."""

    @given(st.integers(min_value=-10_000, max_value=100_000))
    @settings(max_examples=300)
    def test_decision_bands(self, bps):
        decision = decide(bps)
        if bps >= AUTO_SWAP_THRESHOLD_BPS:
            assert decision is SwapDecision.SWAP
        elif bps >= SWAPPABLE_THRESHOLD_BPS:
            assert decision is SwapDecision.SWAPPABLE
        else:
            assert decision is SwapDecision.NOT_SWAPPABLE

    @given(st.integers(min_value=1, max_value=10**6), st.integers(min_value=1, max_value=10**9), threshold)
    @settings(max_examples=300)
    def test_breakeven_is_tight(self, c, whole_principal, threshold_bps):
        principal_wei = to_wei(whole_principal)
        p = breakeven_price_wei(principal_wei, c, threshold_bps)
        assert calculate_profit_bps(c, p, principal_wei) >= threshold_bps
        if p > 0:
            assert calculate_profit_bps(c, p - 1, principal_wei) < threshold_bps

    @given(credits, st.integers(min_value=0, max_value=10**6), st.integers(min_value=1, max_value=10**7))
    @settings(max_examples=200)
    def test_evaluation_event_matches_decision(self, c, cents, whole_principal):
        snapshot = CarbonCreditPrice(Decimal(cents) / 100, datetime(2025, 1, 1), 1)
        evaluation = evaluate_swap(c, to_wei(whole_principal), snapshot)
        assert evaluation.decision is decide(evaluation.profit_bps)
        assert evaluation.value_at_price == c * snapshot.price_wei - to_wei(whole_principal)
        event = evaluation.to_event()
        assert event.profit_bps == evaluation.profit_bps
        assert event.credits_staked == c


class TestScenarioAgreement:
    """Vectorised analytics against the exact evaluation."""

    @given(
        st.integers(min_value=1, max_value=1000),
        st.lists(st.integers(min_value=0, max_value=20_000), min_size=1, max_size=20),
        st.integers(min_value=1, max_value=100_000),
    )
    @settings(max_examples=200)
    def test_float_scenarios_match_integer_evaluation(self, c, cents, whole_principal):
        prices = np.array(cents, dtype=float) / 100.0
        vectorised = profit_bps_scenarios(c, prices, float(whole_principal))
        exact = [
            calculate_profit_bps(c, to_wei(Decimal(x) / 100), to_wei(whole_principal))
            for x in cents
        ]
        np.testing.assert_array_equal(vectorised, exact)
