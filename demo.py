#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: A Carbon-Credit Loan Step by Step

Walks one loan from deployment to its final state. Each step builds on the
previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:  Deployment  - Ledger, settlement asset, construct/transfer/activate
  4-6:  Origination - Create, fund and accept a loan
  7-8:  Repayment   - Payment schedule, installments, the fee split
  9-10: Swap        - Carbon-credit price, evaluation, execution
  11:   Audit       - Event log and conservation proof

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
import sys

from nyx import (
    Ledger, LoanDeploymentBuilder, LoanParameters, NativeTransfer,
    address_from_int, generate_payment_schedule, from_epoch, from_wei, to_wei,
    breakeven_price, swap_probability,
    SWAPPABLE_THRESHOLD_BPS, AUTO_SWAP_THRESHOLD_BPS,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1)

    # Loan terms
    principal: Decimal = Decimal("1000")
    apy: int = 14
    months: int = 36
    grace_months: int = 18
    fee_bps: int = 80
    credits: int = 25

    # Installments paid before the swap
    installments_to_pay: int = 3

    # Carbon-credit prices (LYX per credit)
    quiet_price: Decimal = Decimal("40")
    swappable_price: Decimal = Decimal("52.86")
    swap_price: Decimal = Decimal("62")


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv

OWNER = address_from_int(0x1)
LENDER = address_from_int(0xA)
BORROWER = address_from_int(0xB)


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    """Print a step header with learning objective."""
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    """Print a section header within a step."""
    print(f"\n--- {text} ---\n")


def show_balances(contract):
    for label, address in (("owner", OWNER), ("lender", LENDER), ("borrower", BORROWER),
                           ("contract", contract.address)):
        print(f"  {label:<9} {contract.balance(address):>14} {contract.settlement.unit_symbol}")


# ============================================================================
# PHASE 1: DEPLOYMENT (Steps 1-3)
# ============================================================================

def step_01_ledger():
    step_header(1, "The Ledger",
        "Every coin movement is a double-entry transaction on one ledger.")
    ledger = Ledger(name="loans", initial_time=CONFIG.start_time, verbose=True)
    print(f"Ledger name:  {ledger.name}")
    print(f"Current time: {ledger.current_time}")
    return ledger


def step_02_deploy(ledger: Ledger):
    step_header(2, "Deployment",
        "A loan contract only works once it controls its metadata store and registry.")
    builder = LoanDeploymentBuilder(ledger, OWNER, NativeTransfer())
    contract = builder.construct()
    print(f"Constructed:  {contract!r}")
    builder.transfer_control()
    print(f"Store controller:  {contract.loan_data.controller}")
    print(f"Registry owner:    {contract.registry.owner}")
    deployment = builder.activate()
    return deployment


def step_03_funding_wallets(ledger: Ledger):
    step_header(3, "Funding Wallets",
        "Issuance from the system wallet is how value enters the simulation.")
    ledger.issue(LENDER, "LYX", CONFIG.principal)
    ledger.issue(BORROWER, "LYX", CONFIG.principal)
    return ledger


# ============================================================================
# PHASE 2: ORIGINATION (Steps 4-6)
# ============================================================================

def step_04_create(contract):
    step_header(4, "Create", "The owner registers terms; nothing moves yet.")
    token_id = contract.create_loan(OWNER, LoanParameters(
        initial_loan_amount=CONFIG.principal,
        apy=CONFIG.apy,
        amortization_period_in_months=CONFIG.months,
        grace_period_in_months=CONFIG.grace_months,
        transaction_bps=CONFIG.fee_bps,
        lender=LENDER,
        carbon_credits_staked=CONFIG.credits,
        borrower=BORROWER,
    ))
    terms = contract.get_terms(token_id)
    print(f"Loan {token_id}: total loan value {from_wei(terms.total_loan_value)} LYX")
    return token_id


def step_05_fund(contract, token_id: int):
    step_header(5, "Fund", "The lender attaches exactly the principal.")
    contract.fund_loan(LENDER, token_id, value=to_wei(CONFIG.principal))
    show_balances(contract)


def step_06_accept(contract, token_id: int):
    step_header(6, "Accept", "The borrower takes the principal out of custody.")
    contract.accept_loan(BORROWER, token_id)
    show_balances(contract)


# ============================================================================
# PHASE 3: REPAYMENT (Steps 7-8)
# ============================================================================

def step_07_schedule(contract, token_id: int):
    step_header(7, "Payment Schedule",
        "Installments fall monthly after the grace period.")
    schedule = generate_payment_schedule(CONFIG.start_time, CONFIG.months, CONFIG.grace_months)
    contract.set_payment_schedule(OWNER, token_id, schedule)
    print(f"First due: {from_epoch(schedule[0]).date()}")
    print(f"Last due:  {from_epoch(schedule[-1]).date()}")


def step_08_payments(ledger: Ledger, contract, token_id: int):
    step_header(8, "Installments",
        "Each payment splits into the lender's net and the owner's fee.")
    for _ in range(CONFIG.installments_to_pay):
        ledger.advance_time(from_epoch(contract.get_loan(token_id).next_due))
        net, fee = contract.calculate_payment(token_id)
        contract.make_payment(BORROWER, token_id, value=net + fee)
        print(f"  {ledger.current_time.date()}  net {from_wei(net)}  fee {from_wei(fee)}")
    print(f"\nOutstanding: {from_wei(contract.loan_balance(token_id))} LYX")


# ============================================================================
# PHASE 4: SWAP (Steps 9-10)
# ============================================================================

def step_09_price_watch(contract, token_id: int):
    step_header(9, "Price Watch",
        "The credits are worth checking against the principal at every new price.")
    for threshold in (SWAPPABLE_THRESHOLD_BPS, AUTO_SWAP_THRESHOLD_BPS):
        print(f"  breakeven at {threshold} bps: {breakeven_price(CONFIG.principal, CONFIG.credits, threshold)}")
    prob = swap_probability(float(CONFIG.quiet_price), 0.4, 180, CONFIG.credits, float(CONFIG.principal))
    print(f"  P(swappable within 180 days from {CONFIG.quiet_price}): {prob:.1%}\n")

    for price in (CONFIG.quiet_price, CONFIG.swappable_price):
        contract.set_carbon_credit_price(OWNER, price)
        print(f"  -> {contract.evaluate_swap_state(OWNER, token_id)}")


def step_10_execute(contract, token_id: int):
    step_header(10, "Execute Swap",
        "Profit is re-checked at execution; the lender receives the credits.")
    contract.add_verified_project(OWNER, token_id, "Mangrove Restoration", "https://registry.example/mr", 25, "ID-JK")
    contract.set_carbon_credit_price(OWNER, CONFIG.swap_price)
    print(f"  -> {contract.execute_swap(OWNER, token_id)}")
    print(f"  state: {contract.loan_state(token_id).name}")


# ============================================================================
# PHASE 5: AUDIT (Step 11)
# ============================================================================

def step_11_audit(ledger: Ledger, contract, token_id: int):
    step_header(11, "Audit", "The event log tells the story; the ledger proves it.")
    for entry in contract.events.for_token(token_id, contract.address):
        print(f"  #{entry.sequence:<3} {entry.timestamp.date()}  {entry.name}")
    section_header("Balances")
    show_balances(contract)
    result = ledger.verify_double_entry({"LYX": Decimal("0")})
    print(f"\nConservation holds: {result['valid']}")


def main():
    """Run the complete tutorial."""
    print("=" * 70)
    print("       NYX CARBON-CREDIT LOANS - INTERACTIVE TUTORIAL")
    print("=" * 70)
    if QUICK_MODE:
        print("Running in QUICK mode (no pauses)")
    else:
        print("Running in INTERACTIVE mode (press Enter to advance)")
    wait_for_enter()

    ledger = step_01_ledger()
    wait_for_enter()
    deployment = step_02_deploy(ledger)
    contract = deployment.contract
    wait_for_enter()
    step_03_funding_wallets(ledger)
    wait_for_enter()

    token_id = step_04_create(contract)
    wait_for_enter()
    step_05_fund(contract, token_id)
    wait_for_enter()
    step_06_accept(contract, token_id)
    wait_for_enter()

    step_07_schedule(contract, token_id)
    wait_for_enter()
    step_08_payments(ledger, contract, token_id)
    wait_for_enter()

    step_09_price_watch(contract, token_id)
    wait_for_enter()
    step_10_execute(contract, token_id)
    wait_for_enter()

    step_11_audit(ledger, contract, token_id)

    print("\n" + "=" * 70)
    print("       TUTORIAL COMPLETE!")
    print("=" * 70)
    print("""
    Next steps:
      - Run tests: pytest tests/
      - See nyx/lifecycle_engine.py to replay a price path over many loans
    """)


if __name__ == "__main__":
    main()
