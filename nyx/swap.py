"""
swap.py - Carbon-Credit Swap Evaluator

Decides whether a loan's staked carbon credits are worth enough, relative
to the principal, to swap the loan into credit ownership.

Policy (basis points of profit over principal):
    profit <  3200          NOT_SWAPPABLE  loan stays Taken
    3200 <= profit < 5300   SWAPPABLE      owner may execute the swap
    profit >= 5300          SWAP           swap executes immediately

Both boundaries are inclusive on the upper side: exactly 3200 is
swappable, exactly 5300 swaps.

Everything here is pure. The loan contract applies the resulting decision.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .events import (
    ContractEvent, LoanSwappable, LoanSwapped, LoanNotSwappable, LoanNoLongerSwappable,
)
from .loan_math import calculate_profit_bps, calculate_profit_value
from .pricing_source import CarbonCreditPrice


SWAPPABLE_THRESHOLD_BPS = 3200
AUTO_SWAP_THRESHOLD_BPS = 5300


class SwapDecision(Enum):
    NOT_SWAPPABLE = "not_swappable"
    SWAPPABLE = "swappable"
    SWAP = "swap"


def decide(profit_bps: int) -> SwapDecision:
    """Map a profit in basis points onto the swap policy."""
    if profit_bps >= AUTO_SWAP_THRESHOLD_BPS:
        return SwapDecision.SWAP
    if profit_bps >= SWAPPABLE_THRESHOLD_BPS:
        return SwapDecision.SWAPPABLE
    return SwapDecision.NOT_SWAPPABLE


@dataclass(frozen=True, slots=True)
class SwapEvaluation:
    """
    Outcome of valuing a loan's credits against one price snapshot.

    Attributes:
        credits_staked: Carbon credits backing the loan
        value_at_price: credits * price - principal, in wei (may be negative)
        profit_bps: value_at_price relative to principal, truncated toward zero
        decision: Policy outcome for profit_bps
        price: Snapshot the evaluation used
    """
    credits_staked: int
    value_at_price: int
    profit_bps: int
    decision: SwapDecision
    price: CarbonCreditPrice

    def to_event(self) -> ContractEvent:
        """The event an evaluation of a Taken loan emits."""
        args = (self.credits_staked, self.value_at_price, self.profit_bps)
        if self.decision is SwapDecision.SWAP:
            return LoanSwapped(*args)
        if self.decision is SwapDecision.SWAPPABLE:
            return LoanSwappable(*args)
        return LoanNotSwappable(*args)

    def still_swappable(self) -> bool:
        return self.decision is not SwapDecision.NOT_SWAPPABLE

    def no_longer_swappable_event(self) -> LoanNoLongerSwappable:
        return LoanNoLongerSwappable(self.profit_bps)

    def swapped_event(self) -> LoanSwapped:
        return LoanSwapped(self.credits_staked, self.value_at_price, self.profit_bps)


def evaluate_swap(
    credits_staked: int,
    principal: int,
    price: CarbonCreditPrice,
) -> SwapEvaluation:
    """
    Value staked credits at a price snapshot and apply the swap policy.

    Args:
        credits_staked: Number of carbon credits backing the loan
        principal: Initial loan amount in wei
        price: Price snapshot to value the credits at

    Example:
        >>> from datetime import datetime
        >>> from decimal import Decimal
        >>> snap = CarbonCreditPrice(Decimal("52.86"), datetime(2025, 1, 1), 1)
        >>> evaluate_swap(25, 1000 * 10**18, snap).profit_bps
        3215
    """
    price_wei = price.price_wei
    value = calculate_profit_value(credits_staked, price_wei, principal)
    profit_bps = calculate_profit_bps(credits_staked, price_wei, principal)
    return SwapEvaluation(credits_staked, value, profit_bps, decide(profit_bps), price)


def breakeven_price_wei(principal: int, credits_staked: int, threshold_bps: int) -> Optional[int]:
    """
    Lowest price (wei per credit) at which profit reaches threshold_bps.

    Returns None when no credits are staked.
    """
    if credits_staked <= 0:
        return None
    target = principal * (10_000 + threshold_bps)
    denominator = credits_staked * 10_000
    # ceiling division: smallest price whose value clears the target
    return -(-target // denominator)
