"""
loan_math.py - Loan Interest and Payment Arithmetic

Pure, stateless functions. All amounts are integers in wei (18-decimal
fixed point); no floating point at any stage and every division truncates.

Total loan value compounds the APY over a fixed exponent of 3 regardless
of the amortization length. Payment math downstream depends on this
bit-for-bit, so the exponent is a module constant rather than a function of
the term.

Example (1000 tokens at 14% over 36 months, 80 bps fee):
    tlv = calculate_total_loan_value(to_wei(1000), 14)
    # 1481.544 tokens
    net, fee = calculate_monthly_payment(tlv, 36, 80)
    # net 40.824768, fee 0.329232, net + fee == tlv // 36
"""

from __future__ import annotations
from decimal import Decimal
from typing import Tuple, Union

from .core import WEI_PER_TOKEN, BPS_DENOMINATOR


# Compounding exponent used by every contract variant
TOTAL_LOAN_VALUE_COMPOUNDING_PERIODS = 3

PERCENT_DENOMINATOR = 100

AmountLike = Union[int, Decimal, str]


def _require_non_negative_int(name: str, value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer, got {type(value).__name__}")
    if value < 0:
        raise ValueError(f"{name} must be non-negative, got {value}")


def _require_bps(value: int) -> None:
    _require_non_negative_int("transaction_bps", value)
    if value > BPS_DENOMINATOR:
        raise ValueError(f"transaction_bps must be <= {BPS_DENOMINATOR}, got {value}")


# ============================================================================
# UNIT CONVERSION
# ============================================================================

def to_wei(amount: AmountLike) -> int:
    """
    Convert a token amount to wei.

    Args:
        amount: Whole or fractional token amount (int, Decimal or numeric string)

    Raises:
        ValueError: If the amount has more than 18 fractional digits
    """
    if isinstance(amount, bool):
        raise ValueError("amount must be numeric, got bool")
    if isinstance(amount, int):
        return amount * WEI_PER_TOKEN
    if isinstance(amount, float):
        raise ValueError("float amounts are not accepted; pass a Decimal or string")
    value = Decimal(amount) * WEI_PER_TOKEN
    if value != value.to_integral_value():
        raise ValueError(f"{amount} has more than 18 decimal places")
    return int(value)


def from_wei(amount_wei: int) -> Decimal:
    """Convert wei to a Decimal token amount (exact)."""
    return Decimal(amount_wei) / WEI_PER_TOKEN


# ============================================================================
# CALCULATIONS
# ============================================================================

def calculate_total_loan_value(
    principal: int,
    apy: int,
    periods: int = TOTAL_LOAN_VALUE_COMPOUNDING_PERIODS,
) -> int:
    """
    Principal plus annually compounded interest.

    TLV = principal * (1 + apy/100) ** periods, evaluated exactly in integers
    as principal * (100 + apy) ** periods // 100 ** periods.

    Args:
        principal: Loan principal in wei
        apy: Annual percentage yield in whole percent (14 means 14%)
        periods: Compounding exponent (defaults to the fixed convention of 3)

    Returns:
        Total loan value in wei
    """
    _require_non_negative_int("principal", principal)
    _require_non_negative_int("apy", apy)
    _require_non_negative_int("periods", periods)
    numerator = principal * (PERCENT_DENOMINATOR + apy) ** periods
    return numerator // PERCENT_DENOMINATOR ** periods


def calculate_transaction_fee(gross_payment: int, transaction_bps: int) -> int:
    """Fee taken out of a gross payment, truncated to whole wei."""
    _require_non_negative_int("gross_payment", gross_payment)
    _require_bps(transaction_bps)
    return gross_payment * transaction_bps // BPS_DENOMINATOR


def calculate_gross_monthly_payment(total_loan_value: int, term_in_months: int) -> int:
    """One installment of a loan value spread evenly over term_in_months."""
    _require_non_negative_int("total_loan_value", total_loan_value)
    if isinstance(term_in_months, bool) or not isinstance(term_in_months, int) or term_in_months <= 0:
        raise ValueError(f"term_in_months must be a positive integer, got {term_in_months!r}")
    return total_loan_value // term_in_months


def calculate_monthly_payment(
    total_loan_value: int,
    term_in_months: int,
    transaction_bps: int,
) -> Tuple[int, int]:
    """
    Split one installment into the lender's share and the protocol fee.

    gross = total_loan_value // term_in_months
    fee   = gross * transaction_bps // 10000
    net   = gross - fee

    net is derived from the truncated fee, so net + fee == gross exactly.

    Returns:
        (net_payment, fee) in wei
    """
    gross = calculate_gross_monthly_payment(total_loan_value, term_in_months)
    fee = calculate_transaction_fee(gross, transaction_bps)
    return gross - fee, fee


def calculate_profit_value(credits: int, price_wei: int, principal: int) -> int:
    """Value of staked credits at price, less the principal (may be negative)."""
    _require_non_negative_int("credits", credits)
    _require_non_negative_int("price_wei", price_wei)
    return credits * price_wei - principal


def div_toward_zero(numerator: int, denominator: int) -> int:
    """Signed integer division truncating toward zero."""
    if denominator == 0:
        raise ZeroDivisionError("division by zero")
    quotient = abs(numerator) // abs(denominator)
    return quotient if (numerator >= 0) == (denominator > 0) else -quotient


def calculate_profit_bps(credits: int, price_wei: int, principal: int) -> int:
    """
    Profit of the staked credits over the principal, in basis points.

    (credits * price - principal) * 10000 / principal, truncated toward zero.

    Raises:
        ValueError: If principal is not positive
    """
    if isinstance(principal, bool) or not isinstance(principal, int) or principal <= 0:
        raise ValueError(f"principal must be a positive integer, got {principal!r}")
    value = calculate_profit_value(credits, price_wei, principal)
    return div_toward_zero(value * BPS_DENOMINATOR, principal)
