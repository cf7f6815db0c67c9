"""
analytics.py - Swap Scenario Analytics

Vectorised what-if tools around the swap policy: profit over a grid of
carbon-credit prices, the price needed to clear each threshold, and the
probability of clearing a threshold by a horizon when the credit price
follows a driftless lognormal process.

Prices here are floats in settlement-asset units per credit and results
are approximate. Contract decisions always come from the exact integer
math in loan_math and swap.
"""

import math
import numpy as np
from decimal import Decimal
from typing import Union
from scipy.special import erf as scipy_erf

from .loan_math import to_wei, from_wei
from .swap import (
    SWAPPABLE_THRESHOLD_BPS, AUTO_SWAP_THRESHOLD_BPS,
    SwapDecision, breakeven_price_wei,
)


# Type alias for scalar or array inputs
Numeric = Union[float, np.ndarray]

DAYS_PER_YEAR = 365.0
SQRT_2 = math.sqrt(2.0)


# ============================================================================
# NORMAL DISTRIBUTION
# ============================================================================

def normal_cdf(x: Numeric) -> Numeric:
    """Standard normal cumulative distribution function."""
    return 0.5 * (1.0 + scipy_erf(np.asarray(x) / SQRT_2))


# ============================================================================
# DETERMINISTIC SCENARIOS
# ============================================================================

def profit_bps_scenarios(credits: int, prices: Numeric, principal: Numeric) -> np.ndarray:
    """
    Profit in basis points for each price, truncated toward zero.

    Args:
        credits: Carbon credits staked
        prices: Price per credit (scalar or array)
        principal: Principal in settlement-asset units (positive)

    Example:
        >>> profit_bps_scenarios(25, np.array([50.0, 52.86, 62.0]), 1000.0)
        array([2500, 3215, 5500])
    """
    prices_arr = np.asarray(prices, dtype=float)
    principal_arr = np.asarray(principal, dtype=float)
    if np.any(principal_arr <= 0):
        raise ValueError("principal must be positive")
    if credits < 0 or np.any(prices_arr < 0):
        raise ValueError("credits and prices must be non-negative")
    bps = (credits * prices_arr - principal_arr) * 10_000.0 / principal_arr
    # round away float noise before truncating (52.86 * 25 is not exact in binary)
    return np.trunc(np.round(bps, 6)).astype(np.int64)


def swap_decisions(bps: Numeric) -> np.ndarray:
    """Swap policy applied elementwise to profit values in basis points."""
    bps_arr = np.asarray(bps)
    return np.where(
        bps_arr >= AUTO_SWAP_THRESHOLD_BPS, SwapDecision.SWAP.value,
        np.where(bps_arr >= SWAPPABLE_THRESHOLD_BPS,
                 SwapDecision.SWAPPABLE.value, SwapDecision.NOT_SWAPPABLE.value),
    )


def breakeven_price(
    principal: Union[int, Decimal, str],
    credits: int,
    threshold_bps: int = SWAPPABLE_THRESHOLD_BPS,
) -> Decimal:
    """
    Lowest credit price (settlement-asset units) reaching threshold_bps.

    Exact: computed in wei and converted back.

    Raises:
        ValueError: If no credits are staked
    """
    price_wei = breakeven_price_wei(to_wei(principal), credits, threshold_bps)
    if price_wei is None:
        raise ValueError("breakeven price is undefined with no credits staked")
    return from_wei(price_wei)


# ============================================================================
# PROBABILISTIC
# ============================================================================

def swap_probability(
    spot: Numeric,
    vol: Numeric,
    horizon_in_days: Numeric,
    credits: int,
    principal: float,
    threshold_bps: int = SWAPPABLE_THRESHOLD_BPS,
) -> Numeric:
    """
    Probability that profit reaches threshold_bps at the horizon.

    The credit price is modelled as S_T = S_0 * exp(-0.5 * vol^2 * t + vol * sqrt(t) * Z)
    (zero drift, t in years), so P(S_T >= K) = N(d2) with
    d2 = (ln(S_0 / K) - 0.5 * vol^2 * t) / (vol * sqrt(t)).

    Args:
        spot: Current credit price
        vol: Annualised volatility
        horizon_in_days: Calendar days until evaluation
        credits: Carbon credits staked
        principal: Principal in settlement-asset units
        threshold_bps: Profit threshold (default: swappable threshold)

    Raises:
        ValueError: If any input is non-positive or not finite
    """
    s = np.asarray(spot, dtype=float)
    v = np.asarray(vol, dtype=float)
    t_days = np.asarray(horizon_in_days, dtype=float)
    if not np.all(np.isfinite(s)) or np.any(s <= 0):
        raise ValueError("spot price must be positive and finite")
    if not np.all(np.isfinite(v)) or np.any(v <= 0):
        raise ValueError("volatility must be positive and finite")
    if not np.all(np.isfinite(t_days)) or np.any(t_days <= 0):
        raise ValueError("horizon_in_days must be positive and finite")
    if credits <= 0 or principal <= 0:
        raise ValueError("credits and principal must be positive")

    strike = principal * (10_000 + threshold_bps) / (10_000.0 * credits)
    t = t_days / DAYS_PER_YEAR
    sqrt_t = np.sqrt(t)
    d2 = (np.log(s / strike) - 0.5 * v * v * t) / (v * sqrt_t)
    result = normal_cdf(d2)
    if np.ndim(result) == 0:
        return float(result)
    return result
