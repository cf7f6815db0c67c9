"""
conftest.py - Shared pytest fixtures for loan tests

Provides common fixtures used across unit, functional and conformance tests:
- Ledgers (empty, with a deployed native or token loan contract)
- Well-known addresses (owner, lender, borrower, stranger)
- Loan parameter factory with the reference terms
- Loans advanced to each lifecycle state
"""

import pytest
from datetime import datetime
from decimal import Decimal

from nyx import (
    Ledger,
    LoanDeploymentBuilder,
    LoanParameters,
    NativeTransfer,
    TokenTransfer,
    address_from_int,
    generate_payment_schedule,
    from_epoch,
    to_wei,
)


START = datetime(2025, 1, 1)


# =============================================================================
# ADDRESSES
# =============================================================================

@pytest.fixture
def owner():
    return address_from_int(0x1)


@pytest.fixture
def lender():
    return address_from_int(0xA)


@pytest.fixture
def borrower():
    return address_from_int(0xB)


@pytest.fixture
def stranger():
    return address_from_int(0xC)


# =============================================================================
# LEDGERS AND DEPLOYMENTS
# =============================================================================

@pytest.fixture
def ledger():
    """Quiet ledger starting on 2025-01-01."""
    return Ledger("test", START, verbose=False, test_mode=True)


@pytest.fixture
def deployment(ledger, owner):
    """Activated loan contract settling in the native coin."""
    return LoanDeploymentBuilder(ledger, owner, NativeTransfer()).build()


@pytest.fixture
def loans(deployment):
    return deployment.contract


@pytest.fixture
def token_deployment(ledger, owner):
    """Activated loan contract settling in a fungible token."""
    return LoanDeploymentBuilder(ledger, owner, TokenTransfer(), name="TokenLoan").build()


@pytest.fixture
def make_params(lender, borrower):
    """
    Factory for LoanParameters with the reference terms:
    1000 principal, 14% APY, 36 months, 18 months grace, 80 bps, 25 credits.
    """
    def _make(**overrides):
        fields = dict(
            initial_loan_amount=Decimal("1000"),
            apy=14,
            amortization_period_in_months=36,
            grace_period_in_months=18,
            transaction_bps=80,
            lender=lender,
            carbon_credits_staked=25,
            borrower=borrower,
        )
        fields.update(overrides)
        return LoanParameters(**fields)
    return _make


# =============================================================================
# LOANS AT EACH STAGE
# =============================================================================

@pytest.fixture
def created_loan(loans, owner, make_params):
    return loans.create_loan(owner, make_params())


@pytest.fixture
def funded_loan(ledger, loans, lender, created_loan):
    ledger.issue(lender, "LYX", Decimal("1000"))
    loans.fund_loan(lender, created_loan, value=to_wei(1000))
    return created_loan


@pytest.fixture
def taken_loan(ledger, loans, owner, borrower, funded_loan):
    """
    Accepted loan with the standard 36-month schedule after an 18-month grace.

    The borrower holds the 1000 principal plus 500 more, enough for every
    installment.
    """
    loans.accept_loan(borrower, funded_loan)
    ledger.issue(borrower, "LYX", Decimal("500"))
    loans.set_payment_schedule(owner, funded_loan, generate_payment_schedule(START, 36, 18))
    return funded_loan


@pytest.fixture
def pay_installment(ledger, loans, borrower):
    """Advance to the next due date and pay it in the native coin."""
    def _pay(token_id):
        due = loans.get_loan(token_id).next_due
        if due is not None and from_epoch(due) > ledger.current_time:
            ledger.advance_time(from_epoch(due))
        net, fee = loans.calculate_payment(token_id)
        return loans.make_payment(borrower, token_id, value=net + fee)
    return _pay
