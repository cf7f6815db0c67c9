"""
loan.py - Non-Collateralized Carbon-Credit Loans

One loan state machine, parameterized by a settlement asset
(NativeTransfer or TokenTransfer), backed by a MetadataStore holding each
loan's fields under wire-compatible keys.

ARCHITECTURE:
=============

1. FROZEN DATACLASSES (explicit inputs):
   - LoanParameters: what a caller supplies to create a loan
   - LoanTerms: immutable term sheet kept by the contract
   - Loan: immutable snapshot of a loan's current state

2. ADAPTER (load_loan):
   - The one place that decodes loan fields out of the metadata store

3. CONTRACT (LoanContract):
   - Every mutating operation takes the caller first and checks, in order:
     activation, token existence, caller role, lifecycle state, amounts
   - Nothing is mutated until every check has passed. Settlement moves run
     through the ledger first (a rejected transfer aborts the call); then
     metadata writes, allowance consumption and events commit together.

Lifecycle:
    Created -> Funded -> Taken -> Repaid
                           |
                           +-> Swappable -> Swapped
                           |       |
                           |       +-> Taken (price fell before execution)
                           +-> Swapped (profit at or above the auto-swap threshold)
    Created | Funded -> Liquidated
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from enum import IntEnum
from typing import Dict, List, Optional, Sequence, Tuple

from .core import (
    Address, ZERO_ADDRESS,
    OriginType, TransactionOrigin, ExecuteResult, build_transaction,
    LedgerError, Unauthorized, ActionNotAllowedInCurrentState, PaymentNotDue,
    ZeroBalanceOnLoan, InsufficientFunds, ContractNotActive, DeploymentError,
    ProjectNotFound, MetadataDecodeError,
    derive_address, normalize_address, is_address,
)
from .events import (
    ContractEvent, EventLog,
    LoanCreated, LoanFunded, LoanAccepted, PaymentMade, LoanRepayed, LoanLiquidated,
    CarbonCreditPriceUpdated,
    ProjectAdded, ProjectElementUpdated,
)
from .keys import (
    _NYX_LENDER, _NYX_BORROWER, _NYX_LOAN_STATUS, _NYX_INITIAL_LOAN_AMOUNT,
    _NYX_LOAN_BALANCE, _NYX_PAYMENT_INDEX, _NYX_CARBON_CREDITS_BALANCE,
    _NYX_CADT_PROJECT_NAME, _NYX_CADT_REGISTRY_LINK,
    VERIFIED_PROJECT_KEYS, CADT_PROJECT_KEYS,
    array_element_key, normalize_key,
)
from .ledger import Ledger
from .loan_math import (
    calculate_total_loan_value, calculate_monthly_payment, to_wei,
)
from .metadata import (
    MetadataStore, MetadataValue, decode_string, decode_int256, decode_uint256,
)
from .pricing_source import CarbonCreditPrice, CarbonCreditPriceOracle
from .schedule import to_epoch, validate_schedule
from .settlement import SettlementAsset
from .swap import SwapDecision, SwapEvaluation, evaluate_swap
from .verification import VerificationRegistry


# ============================================================================
# STATES
# ============================================================================

class LoanState(IntEnum):
    """Lifecycle states. Values are the stored wire encoding."""
    CREATED = 0
    FUNDED = 1
    TAKEN = 2
    REPAID = 3
    LIQUIDATED = 4
    SWAPPABLE = 5
    SWAPPED = 6


TERMINAL_STATES = frozenset({LoanState.REPAID, LoanState.LIQUIDATED, LoanState.SWAPPED})
PRE_ACCEPTANCE_STATES = frozenset({LoanState.CREATED, LoanState.FUNDED})

# Legal transitions (Swappable -> Taken is the execution-time rollback)
TRANSITIONS: Dict[LoanState, frozenset] = {
    LoanState.CREATED: frozenset({LoanState.FUNDED, LoanState.LIQUIDATED, LoanState.TAKEN}),
    LoanState.FUNDED: frozenset({LoanState.TAKEN, LoanState.LIQUIDATED}),
    LoanState.TAKEN: frozenset({LoanState.REPAID, LoanState.SWAPPABLE, LoanState.SWAPPED}),
    LoanState.SWAPPABLE: frozenset({LoanState.SWAPPED, LoanState.TAKEN}),
    LoanState.REPAID: frozenset(),
    LoanState.LIQUIDATED: frozenset(),
    LoanState.SWAPPED: frozenset(),
}


def is_legal_transition(old: LoanState, new: LoanState) -> bool:
    return new in TRANSITIONS[old]


def decode_state(raw: bytes) -> LoanState:
    """
    Read a stored loan status.

    Raises:
        MetadataDecodeError: If the bytes are not a known state
    """
    value = decode_uint256(raw)
    try:
        return LoanState(value)
    except ValueError:
        raise MetadataDecodeError(f"{value} is not a loan state") from None


# ============================================================================
# DATA TYPES
# ============================================================================

@dataclass(frozen=True, slots=True)
class LoanParameters:
    """
    Inputs for creating a loan.

    Attributes:
        initial_loan_amount: Principal in settlement-asset units (1000 = 1000 LYX)
        apy: Annual percentage yield in whole percent
        amortization_period_in_months: Number of monthly installments
        grace_period_in_months: Months between acceptance and the first installment
        transaction_bps: Protocol fee on each installment, in basis points
        lender: Lender address
        carbon_credits_staked: Carbon credits backing the loan
        borrower: Borrower address (zero address when not yet assigned)
    """
    initial_loan_amount: Decimal
    apy: int
    amortization_period_in_months: int
    grace_period_in_months: int
    transaction_bps: int
    lender: str
    carbon_credits_staked: int
    borrower: str = ZERO_ADDRESS

    def __post_init__(self):
        if not isinstance(self.initial_loan_amount, Decimal):
            object.__setattr__(self, 'initial_loan_amount', Decimal(str(self.initial_loan_amount)))
        if self.initial_loan_amount <= 0:
            raise ValueError(f"initial_loan_amount must be positive, got {self.initial_loan_amount}")
        if self.apy < 0:
            raise ValueError(f"apy must be non-negative, got {self.apy}")
        if self.amortization_period_in_months <= 0:
            raise ValueError("amortization_period_in_months must be positive")
        if self.grace_period_in_months < 0:
            raise ValueError("grace_period_in_months must be non-negative")
        if not 0 <= self.transaction_bps <= 10_000:
            raise ValueError(f"transaction_bps must be within 0..10000, got {self.transaction_bps}")
        if self.carbon_credits_staked < 0:
            raise ValueError("carbon_credits_staked must be non-negative")
        object.__setattr__(self, 'lender', normalize_address(self.lender))
        object.__setattr__(self, 'borrower', normalize_address(self.borrower or ZERO_ADDRESS))
        if self.lender == ZERO_ADDRESS:
            raise ValueError("lender cannot be the zero address")

    @property
    def principal_wei(self) -> int:
        return to_wei(self.initial_loan_amount)


@dataclass(frozen=True, slots=True)
class LoanTerms:
    """Immutable term sheet fixed at creation."""
    token_id: int
    principal: int
    apy: int
    amortization_period_in_months: int
    grace_period_in_months: int
    transaction_bps: int

    @property
    def total_loan_value(self) -> int:
        return calculate_total_loan_value(self.principal, self.apy)


@dataclass(frozen=True, slots=True)
class Loan:
    """Immutable snapshot of one loan."""
    token_id: int
    lender: Address
    borrower: Address
    state: LoanState
    initial_loan_amount: int
    loan_balance: int
    payment_index: int
    carbon_credits_balance: int
    terms: LoanTerms
    payment_schedule: Tuple[int, ...] = ()

    @property
    def has_borrower(self) -> bool:
        return self.borrower != ZERO_ADDRESS

    @property
    def remaining_installments(self) -> int:
        return max(self.terms.amortization_period_in_months - self.payment_index, 1)

    @property
    def next_due(self) -> Optional[int]:
        if self.payment_index < len(self.payment_schedule):
            return self.payment_schedule[self.payment_index]
        return None


@dataclass(frozen=True, slots=True)
class VerifiedProject:
    """Decoded verified project attached to a loan."""
    index: int
    name: str
    link: str
    units: int
    geographic_identifier: str
    verification_link: str


def load_loan(
    store: MetadataStore,
    terms: LoanTerms,
    schedule: Sequence[int] = (),
) -> Loan:
    """
    Decode a loan's fields from the metadata store.

    Raises:
        NonExistentTokenId: If the token was never minted
        MetadataDecodeError: If a stored field is malformed
    """
    token_id = terms.token_id
    store.token_owner_of(token_id)
    return Loan(
        token_id=token_id,
        lender=store.get_decoded_address(token_id, _NYX_LENDER),
        borrower=store.get_decoded_address(token_id, _NYX_BORROWER),
        state=decode_state(store.get_data(token_id, _NYX_LOAN_STATUS)),
        initial_loan_amount=store.get_decoded_uint256(token_id, _NYX_INITIAL_LOAN_AMOUNT),
        loan_balance=store.get_decoded_uint256(token_id, _NYX_LOAN_BALANCE),
        payment_index=store.get_decoded_uint256(token_id, _NYX_PAYMENT_INDEX),
        carbon_credits_balance=store.get_decoded_uint256(token_id, _NYX_CARBON_CREDITS_BALANCE),
        terms=terms,
        payment_schedule=tuple(schedule),
    )


# (key, value) writes against a single token
FieldWrites = List[Tuple[str, MetadataValue]]
# (source, dest, amount_wei)
Transfer = Tuple[str, str, int]


# ============================================================================
# CONTRACT
# ============================================================================

class LoanContract:
    """
    Loan state machine over a metadata store and a settlement asset.

    A contract is unusable until activated: it must control its metadata
    store and own its verification registry. LoanDeploymentBuilder performs
    the construct -> transfer control -> activate sequence.

    Example:
        deployment = LoanDeploymentBuilder(ledger, owner, NativeTransfer()).build()
        loans = deployment.contract
        token_id = loans.create_loan(owner, params)
        loans.fund_loan(lender, token_id, value=params.principal_wei)
        loans.accept_loan(borrower, token_id)
    """

    def __init__(
        self,
        ledger: Ledger,
        owner: str,
        settlement: SettlementAsset,
        loan_data: MetadataStore,
        registry: VerificationRegistry,
        price_oracle: Optional[CarbonCreditPriceOracle] = None,
        event_log: Optional[EventLog] = None,
        address: Optional[str] = None,
        name: str = "LoanContract",
    ):
        self.ledger = ledger
        self.name = name
        self.owner: Address = normalize_address(owner)
        self.address: Address = normalize_address(address) if address else derive_address(f"{owner}:{name}", 0)
        self.settlement = settlement
        self.loan_data = loan_data
        self.registry = registry
        self.price_oracle = price_oracle or CarbonCreditPriceOracle(as_of=ledger.current_time)
        self.events = event_log if event_log is not None else registry.events
        self._active = False
        self._terms: Dict[int, LoanTerms] = {}
        self._schedules: Dict[int, Tuple[int, ...]] = {}
        self._evaluations: Dict[int, SwapEvaluation] = {}
        self._nonce = 0

    # ------------------------------------------------------------------
    # Activation
    # ------------------------------------------------------------------

    @property
    def active(self) -> bool:
        return self._active

    def activate(self) -> None:
        """
        Enable mutating operations once control of both collaborators is held.

        Raises:
            DeploymentError: If the store or registry is still controlled elsewhere
        """
        if self.loan_data.controller != self.address:
            raise DeploymentError(f"{self.name} does not control {self.loan_data.name}")
        if self.registry.owner != self.address:
            raise DeploymentError(f"{self.name} does not own {self.registry.name}")
        if self.settlement.unit_symbol not in self.ledger.units:
            self.ledger.register_unit(self.settlement.unit)
        for wallet in (self.address, self.owner):
            self.ledger.ensure_wallet(wallet)
        self._active = True

    def _require_active(self) -> None:
        if not self._active:
            raise ContractNotActive(f"{self.name} has not been activated")

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    @staticmethod
    def _same(caller: str, address: str) -> bool:
        return is_address(caller) and caller.lower() == address

    def _require_owner(self, caller: str) -> None:
        if not self._same(caller, self.owner):
            raise Unauthorized(caller)

    def _require_role(self, caller: str, address: str) -> None:
        if address == ZERO_ADDRESS or not self._same(caller, address):
            raise Unauthorized(caller)

    def _require_state(self, token_id: int, *allowed: LoanState) -> LoanState:
        state = self.loan_state(token_id)
        if state not in allowed:
            raise ActionNotAllowedInCurrentState(
                f"Loan {token_id} is {state.name}; requires {'/'.join(s.name for s in allowed)}"
            )
        return state

    def _get_terms(self, token_id: int) -> LoanTerms:
        self.loan_data.token_owner_of(token_id)
        return self._terms[token_id]

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    def _commit(
        self,
        token_id: int,
        operation: str,
        transfers: Sequence[Transfer] = (),
        writes: FieldWrites = (),
        events: Sequence[ContractEvent] = (),
        pulls: Sequence[Tuple[str, int]] = (),
    ) -> None:
        """Apply a fully validated operation: ledger first, then store, allowances, events."""
        moves = []
        for source, dest, amount in transfers:
            moves.extend(self.settlement.moves(source, dest, amount, self.address))
        if moves:
            pending = build_transaction(self.ledger, moves, TransactionOrigin(
                OriginType.CONTRACT, self.address, token_id, f"{operation}#{self._nonce}",
            ))
            result = self.ledger.execute(pending)
            if result == ExecuteResult.REJECTED:
                _, reason = self.ledger.validate(pending)
                raise InsufficientFunds(f"{operation} on loan {token_id} rejected: {reason}")
            if result != ExecuteResult.APPLIED:
                raise LedgerError(f"{operation} on loan {token_id}: {result.value}")
            self._nonce += 1

        for payer, amount in pulls:
            self.settlement.commit_pull(payer, self.address, amount)

        if writes:
            self.loan_data.set_many(self.address, [(token_id, key, value) for key, value in writes])

        now = self.ledger.current_time
        for event in events:
            self.events.emit(self.address, now, event, token_id)
            if self.ledger.verbose:
                print(f"[{self.name}] loan {token_id}: {event}")

    @staticmethod
    def _status(state: LoanState) -> Tuple[str, MetadataValue]:
        return _NYX_LOAN_STATUS, MetadataValue.uint256(int(state))

    # ========================================================================
    # READS
    # ========================================================================

    def loan_state(self, token_id: int) -> LoanState:
        self.loan_data.token_owner_of(token_id)
        return decode_state(self.loan_data.get_data(token_id, _NYX_LOAN_STATUS))

    def loan_balance(self, token_id: int) -> int:
        return self.loan_data.get_decoded_uint256(token_id, _NYX_LOAN_BALANCE)

    def payment_index(self, token_id: int) -> int:
        return self.loan_data.get_decoded_uint256(token_id, _NYX_PAYMENT_INDEX)

    def lender_of(self, token_id: int) -> Address:
        return self.loan_data.get_decoded_address(token_id, _NYX_LENDER)

    def borrower_of(self, token_id: int) -> Address:
        return self.loan_data.get_decoded_address(token_id, _NYX_BORROWER)

    def initial_loan_amount(self, token_id: int) -> int:
        return self.loan_data.get_decoded_uint256(token_id, _NYX_INITIAL_LOAN_AMOUNT)

    def carbon_credits_balance(self, token_id: int) -> int:
        return self.loan_data.get_decoded_uint256(token_id, _NYX_CARBON_CREDITS_BALANCE)

    def get_terms(self, token_id: int) -> LoanTerms:
        return self._get_terms(token_id)

    def get_loan(self, token_id: int) -> Loan:
        return load_loan(self.loan_data, self._get_terms(token_id), self._schedules.get(token_id, ()))

    def get_payment_schedule(self, token_id: int) -> Tuple[int, ...]:
        self._get_terms(token_id)
        return self._schedules.get(token_id, ())

    def loan_ids(self) -> List[int]:
        return sorted(self._terms)

    def balance(self, address: str) -> Decimal:
        """Settlement-asset balance of an address (0 for unknown wallets)."""
        wallet = normalize_address(address)
        if not self.ledger.is_registered(wallet):
            return Decimal("0")
        return self.ledger.get_balance(wallet, self.settlement.unit_symbol)

    @property
    def carbon_credit_price(self) -> Decimal:
        return self.price_oracle.latest().price

    def last_evaluation(self, token_id: int) -> Optional[SwapEvaluation]:
        return self._evaluations.get(token_id)

    def calculate_payment(self, token_id: int) -> Tuple[int, int]:
        """
        Next installment as (net, fee) in wei.

        The current balance is spread over the remaining installments, so the
        final installment absorbs every truncation remainder and the sum of
        all installments equals the balance set at funding.
        """
        terms = self._get_terms(token_id)
        remaining = max(terms.amortization_period_in_months - self.payment_index(token_id), 1)
        return calculate_monthly_payment(self.loan_balance(token_id), remaining, terms.transaction_bps)

    calculate_monthly_payment = calculate_payment

    # ========================================================================
    # CREATION
    # ========================================================================

    def create_loan(
        self,
        caller: str,
        params: LoanParameters,
        direct_issue: bool = False,
        cadt_project_name: Optional[str] = None,
        cadt_registry_link: Optional[str] = None,
    ) -> int:
        """
        Register a new loan and return its token id.

        With direct_issue the loan is issued straight into Taken with the
        total loan value as balance; no principal moves through the contract.

        cadt_project_name and cadt_registry_link name the loan's own
        carbon-credit project. When set, a swap mints a record for it (with
        the staked credits as units) ahead of any verified projects.

        Raises:
            Unauthorized: If caller is not the owner
            ValueError: If direct_issue is requested without a borrower
        """
        self._require_active()
        self._require_owner(caller)
        if direct_issue and params.borrower == ZERO_ADDRESS:
            raise ValueError("direct_issue requires a borrower")
        cadt_writes: FieldWrites = []
        if cadt_project_name is not None:
            cadt_writes.append((_NYX_CADT_PROJECT_NAME, MetadataValue.string(cadt_project_name)))
        if cadt_registry_link is not None:
            cadt_writes.append((_NYX_CADT_REGISTRY_LINK, MetadataValue.string(cadt_registry_link)))

        principal = params.principal_wei
        state = LoanState.TAKEN if direct_issue else LoanState.CREATED
        balance = calculate_total_loan_value(principal, params.apy) if direct_issue else 0

        token_id = self.loan_data.mint(self.address, self.address)
        self._terms[token_id] = LoanTerms(
            token_id=token_id,
            principal=principal,
            apy=params.apy,
            amortization_period_in_months=params.amortization_period_in_months,
            grace_period_in_months=params.grace_period_in_months,
            transaction_bps=params.transaction_bps,
        )
        self.ledger.ensure_wallet(params.lender)
        if params.borrower != ZERO_ADDRESS:
            self.ledger.ensure_wallet(params.borrower)

        self._commit(token_id, "CREATE", writes=[
            (_NYX_LENDER, MetadataValue.address(params.lender)),
            (_NYX_BORROWER, MetadataValue.address(params.borrower)),
            (_NYX_INITIAL_LOAN_AMOUNT, MetadataValue.uint256(principal)),
            (_NYX_LOAN_BALANCE, MetadataValue.uint256(balance)),
            (_NYX_PAYMENT_INDEX, MetadataValue.uint256(0)),
            (_NYX_CARBON_CREDITS_BALANCE, MetadataValue.uint256(params.carbon_credits_staked)),
            self._status(state),
            *cadt_writes,
        ], events=[LoanCreated(token_id, params.lender, params.borrower, principal)])
        return token_id

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    def fund_loan(self, caller: str, token_id: int, value: Optional[int] = None) -> None:
        """
        Lender moves the principal into contract custody.

        Raises:
            Unauthorized: If caller is not the lender
            ActionNotAllowedInCurrentState: Unless the loan is Created
            InvalidPaymentValue / InsufficientAllowance: Settlement precondition failed
            InsufficientFunds: Lender cannot cover the principal
        """
        self._require_active()
        terms = self._get_terms(token_id)
        lender = self.lender_of(token_id)
        self._require_role(caller, lender)
        self._require_state(token_id, LoanState.CREATED)

        principal = self.initial_loan_amount(token_id)
        self.settlement.check_pull(self.ledger, lender, self.address, principal, value)
        total_loan_value = calculate_total_loan_value(principal, terms.apy)

        self._commit(
            token_id, "FUND",
            transfers=[(lender, self.address, principal)],
            pulls=[(lender, principal)],
            writes=[
                (_NYX_LOAN_BALANCE, MetadataValue.uint256(total_loan_value)),
                self._status(LoanState.FUNDED),
            ],
            events=[LoanFunded(caller.lower(), lender, self.address, principal, True, b"")],
        )

    def accept_loan(self, caller: str, token_id: int) -> None:
        """
        Borrower takes the funded principal.

        Raises:
            Unauthorized: If caller is not the borrower (or none is assigned)
            ActionNotAllowedInCurrentState: Unless the loan is Funded
        """
        self._require_active()
        self._get_terms(token_id)
        borrower = self.borrower_of(token_id)
        self._require_role(caller, borrower)
        self._require_state(token_id, LoanState.FUNDED)

        principal = self.initial_loan_amount(token_id)
        self._commit(
            token_id, "ACCEPT",
            transfers=[(self.address, borrower, principal)],
            writes=[self._status(LoanState.TAKEN)],
            events=[LoanAccepted(caller.lower(), self.address, borrower, principal, True, b"")],
        )

    def set_payment_schedule(self, caller: str, token_id: int, timestamps: Sequence[int]) -> None:
        """
        Store the due dates (epoch seconds) and restart the payment cursor.

        Raises:
            Unauthorized: If caller is not the owner
            ActionNotAllowedInCurrentState: If the loan has reached a terminal state
            ValueError: If timestamps are not non-decreasing non-negative integers
        """
        self._require_active()
        self._require_owner(caller)
        self._get_terms(token_id)
        state = self.loan_state(token_id)
        if state in TERMINAL_STATES:
            raise ActionNotAllowedInCurrentState(f"Loan {token_id} is {state.name}")
        schedule = tuple(validate_schedule(timestamps))

        self._schedules[token_id] = schedule
        self._commit(token_id, "SCHEDULE", writes=[(_NYX_PAYMENT_INDEX, MetadataValue.uint256(0))])

    def make_payment(self, caller: str, token_id: int, value: Optional[int] = None) -> Tuple[int, int]:
        """
        Borrower pays the next installment.

        The net amount goes to the lender and the fee to the contract owner.
        The loan is Repaid once the cursor reaches the term or the balance
        reaches zero.

        Returns:
            (net, fee) paid, in wei

        Raises:
            Unauthorized: If caller is not the borrower
            ActionNotAllowedInCurrentState: Unless the loan is Taken
            ZeroBalanceOnLoan: If the loan is Taken with nothing outstanding
            PaymentNotDue: If no installment is due yet
        """
        self._require_active()
        terms = self._get_terms(token_id)
        borrower = self.borrower_of(token_id)
        self._require_role(caller, borrower)
        self._require_state(token_id, LoanState.TAKEN)

        balance = self.loan_balance(token_id)
        if balance == 0:
            raise ZeroBalanceOnLoan(f"Loan {token_id} has no outstanding balance")

        index = self.payment_index(token_id)
        schedule = self._schedules.get(token_id, ())
        if index >= len(schedule):
            raise PaymentNotDue(f"Loan {token_id} has no installment scheduled at index {index}")
        now = to_epoch(self.ledger.current_time)
        if now < schedule[index]:
            raise PaymentNotDue(f"Installment {index} of loan {token_id} is due at {schedule[index]}, now {now}")

        net, fee = self.calculate_payment(token_id)
        gross = net + fee
        self.settlement.check_pull(self.ledger, borrower, self.address, gross, value)

        lender = self.lender_of(token_id)
        new_balance = balance - gross
        new_index = index + 1
        repaid = new_balance == 0 or new_index >= terms.amortization_period_in_months

        writes: FieldWrites = [
            (_NYX_LOAN_BALANCE, MetadataValue.uint256(new_balance)),
            (_NYX_PAYMENT_INDEX, MetadataValue.uint256(new_index)),
        ]
        events: List[ContractEvent] = [
            PaymentMade(caller.lower(), borrower, lender, net, True, b""),
            PaymentMade(caller.lower(), borrower, self.owner, fee, True, b""),
        ]
        if repaid:
            writes.append(self._status(LoanState.REPAID))
            events.append(LoanRepayed())

        self._commit(
            token_id, "PAYMENT",
            transfers=[(borrower, lender, net), (borrower, self.owner, fee)],
            pulls=[(borrower, gross)],
            writes=writes,
            events=events,
        )
        return net, fee

    def liquidate_loan(self, caller: str, token_id: int) -> int:
        """
        Lender exits before acceptance; any held principal is refunded.

        Returns:
            Amount refunded in wei (0 when the loan was never funded)

        Raises:
            Unauthorized: If caller is not the lender
            ActionNotAllowedInCurrentState: Once the loan has been accepted
        """
        self._require_active()
        self._get_terms(token_id)
        lender = self.lender_of(token_id)
        self._require_role(caller, lender)
        state = self._require_state(token_id, LoanState.CREATED, LoanState.FUNDED)

        refund = self.initial_loan_amount(token_id) if state == LoanState.FUNDED else 0
        self._commit(
            token_id, "LIQUIDATE",
            transfers=[(self.address, lender, refund)],
            writes=[
                (_NYX_LOAN_BALANCE, MetadataValue.uint256(0)),
                self._status(LoanState.LIQUIDATED),
            ],
            events=[LoanLiquidated(caller.lower(), self.address, lender, refund, True, b"")],
        )
        return refund

    liquidiate_loan = liquidate_loan

    # ========================================================================
    # ADMINISTRATION
    # ========================================================================

    def set_borrower(self, caller: str, token_id: int, borrower: str) -> None:
        """
        Assign the borrower before acceptance.

        Raises:
            Unauthorized: If caller is not the owner
            ActionNotAllowedInCurrentState: Once the loan has been accepted
        """
        self._require_active()
        self._require_owner(caller)
        self._get_terms(token_id)
        self._require_state(token_id, *PRE_ACCEPTANCE_STATES)
        address = normalize_address(borrower)

        self.ledger.ensure_wallet(address)
        self._commit(token_id, "SET_BORROWER", writes=[(_NYX_BORROWER, MetadataValue.address(address))])

    def call_set_data_for_token_id(self, caller: str, token_id: int, key: str, raw: bytes) -> None:
        """
        Owner-only raw write through to the metadata store.

        Raises:
            ValueError: If a loan status write does not encode a known state
        """
        self._require_active()
        self._require_owner(caller)
        if normalize_key(key) == _NYX_LOAN_STATUS:
            try:
                decode_state(bytes(raw))
            except MetadataDecodeError as e:
                raise ValueError(f"Invalid loan status bytes {bytes(raw).hex()}: {e}") from e
        self.loan_data.set_data(self.address, token_id, key, raw)

    # ========================================================================
    # SWAP
    # ========================================================================

    def set_carbon_credit_price(self, caller: str, price: Decimal) -> CarbonCreditPrice:
        """
        Publish a new global carbon-credit price.

        Returns:
            The new snapshot
        """
        self._require_active()
        self._require_owner(caller)
        snapshot = self.price_oracle.publish(Decimal(str(price)), self.ledger.current_time)
        self.events.emit(
            self.address, self.ledger.current_time,
            CarbonCreditPriceUpdated(snapshot.price_wei, snapshot.version),
        )
        if self.ledger.verbose:
            print(f"[{self.name}] carbon credit price: {snapshot!r}")
        return snapshot

    def _evaluate(self, token_id: int, price: Optional[CarbonCreditPrice]) -> SwapEvaluation:
        snapshot = price if price is not None else self.price_oracle.latest()
        return evaluate_swap(
            self.carbon_credits_balance(token_id),
            self.initial_loan_amount(token_id),
            snapshot,
        )

    def evaluate_swap_state(
        self,
        caller: str,
        token_id: int,
        price: Optional[CarbonCreditPrice] = None,
    ) -> ContractEvent:
        """
        Value the loan's credits and apply the swap policy.

        Args:
            caller: Must be the owner
            token_id: Loan to evaluate (must be Taken)
            price: Snapshot to evaluate against (latest publication by default)

        Returns:
            LoanNotSwappable, LoanSwappable or LoanSwapped
        """
        self._require_active()
        self._require_owner(caller)
        self._get_terms(token_id)
        self._require_state(token_id, LoanState.TAKEN)

        evaluation = self._evaluate(token_id, price)
        if evaluation.decision is SwapDecision.SWAP:
            return self._swap(token_id, evaluation)

        event = evaluation.to_event()
        writes: FieldWrites = []
        if evaluation.decision is SwapDecision.SWAPPABLE:
            writes.append(self._status(LoanState.SWAPPABLE))
        self._commit(token_id, "EVALUATE", writes=writes, events=[event])
        self._evaluations[token_id] = evaluation
        return event

    def execute_swap(
        self,
        caller: str,
        token_id: int,
        price: Optional[CarbonCreditPrice] = None,
    ) -> ContractEvent:
        """
        Complete a swap after re-validating profit at execution time.

        If profit has fallen below the swappable threshold since evaluation,
        the loan returns to Taken and LoanNoLongerSwappable is emitted and
        returned; no records are minted.

        Returns:
            LoanSwapped or LoanNoLongerSwappable

        Raises:
            Unauthorized: If caller is not the owner
            ActionNotAllowedInCurrentState: Unless the loan is Swappable
        """
        self._require_active()
        self._require_owner(caller)
        self._get_terms(token_id)
        self._require_state(token_id, LoanState.SWAPPABLE)

        evaluation = self._evaluate(token_id, price)
        if not evaluation.still_swappable():
            event = evaluation.no_longer_swappable_event()
            self._commit(token_id, "EXECUTE_SWAP", writes=[self._status(LoanState.TAKEN)], events=[event])
            self._evaluations[token_id] = evaluation
            return event
        return self._swap(token_id, evaluation)

    def _swap(self, token_id: int, evaluation: SwapEvaluation) -> ContractEvent:
        """
        Mint ownership records to the lender and close the loan.

        The loan's CADT project (if any) comes first, then one record per
        verified project. Stored bytes are copied as they are.
        """
        lender = self.lender_of(token_id)
        for fields in self._swap_records(token_id):
            self.registry.mint_raw(self.address, lender, fields)
        event = evaluation.swapped_event()
        self._commit(token_id, "SWAP", writes=[
            (_NYX_LOAN_BALANCE, MetadataValue.uint256(0)),
            (_NYX_CARBON_CREDITS_BALANCE, MetadataValue.uint256(0)),
            self._status(LoanState.SWAPPED),
        ], events=[event])
        self._evaluations[token_id] = evaluation
        return event

    def _swap_records(self, token_id: int) -> List[Tuple[bytes, bytes, bytes, bytes]]:
        records = []
        if self.loan_data.get_value(token_id, _NYX_CADT_PROJECT_NAME) is not None:
            records.append((
                self.loan_data.get_data(token_id, _NYX_CADT_PROJECT_NAME),
                self.loan_data.get_data(token_id, _NYX_CADT_REGISTRY_LINK),
                MetadataValue.int256(self.carbon_credits_balance(token_id)).raw,
                b"",
            ))
        for index in range(self.verified_project_count(token_id)):
            name, link, units, geo, _ = self.get_verified_project(token_id, index)
            records.append((name, link, units, geo))
        return records

    def get_cadt_project_info(self, token_id: int) -> Tuple[str, str]:
        """(name, registry link) given at creation; empty strings when none was given."""
        self._get_terms(token_id)
        return (
            decode_string(self.loan_data.get_data(token_id, _NYX_CADT_PROJECT_NAME)),
            decode_string(self.loan_data.get_data(token_id, _NYX_CADT_REGISTRY_LINK)),
        )

    # ========================================================================
    # VERIFIED PROJECTS
    # ========================================================================

    def _append_record(self, token_id: int, keys: Sequence[str], values: Sequence[MetadataValue]) -> Tuple[int, FieldWrites]:
        index = self.loan_data.array_length(token_id, keys[0])
        writes: FieldWrites = []
        for key, value in zip(keys, values):
            writes.append((array_element_key(key, index), value))
            writes.append((key, MetadataValue.uint256(index + 1)))
        return index, writes

    def add_verified_project(
        self,
        caller: str,
        token_id: int,
        name: str,
        link: str,
        units: int,
        geographic_identifier: str,
        verification_link: str = "",
    ) -> int:
        """
        Append a verified project to a loan.

        Returns:
            Index of the new project
        """
        self._require_active()
        self._require_owner(caller)
        self._get_terms(token_id)
        values = [
            MetadataValue.string(name),
            MetadataValue.string(link),
            MetadataValue.int256(units),
            MetadataValue.string(geographic_identifier),
            MetadataValue.string(verification_link),
        ]
        index, writes = self._append_record(token_id, VERIFIED_PROJECT_KEYS, values)
        self._commit(token_id, "ADD_PROJECT", writes=writes, events=[
            ProjectAdded(name, link, units, geographic_identifier, verification_link, index),
        ])
        return index

    def update_verified_project_element(
        self,
        caller: str,
        token_id: int,
        index: int,
        key: str,
        new_value: bytes,
    ) -> None:
        """
        Overwrite one field of a verified project.

        Raises:
            ValueError: If key is not a verified-project field
            ProjectNotFound: If index is out of range
        """
        self._require_active()
        self._require_owner(caller)
        self._get_terms(token_id)
        field_key = normalize_key(key)
        if field_key not in VERIFIED_PROJECT_KEYS:
            raise ValueError(f"{key} is not a verified project field")
        if not isinstance(new_value, (bytes, bytearray)):
            raise ValueError(f"new_value must be bytes, got {type(new_value)}")
        if index < 0 or index >= self.verified_project_count(token_id):
            raise ProjectNotFound(f"Loan {token_id} has no verified project {index}")

        raw = bytes(new_value)
        self._commit(
            token_id, "UPDATE_PROJECT",
            writes=[(array_element_key(field_key, index), MetadataValue.opaque(raw))],
            events=[ProjectElementUpdated(token_id, index, field_key, raw)],
        )

    def verified_project_count(self, token_id: int) -> int:
        return self.loan_data.array_length(token_id, VERIFIED_PROJECT_KEYS[0])

    def get_verified_project(self, token_id: int, index: int) -> Tuple[bytes, ...]:
        """Raw (name, link, units, geographic identifier, verification link) bytes."""
        self._get_terms(token_id)
        if index < 0 or index >= self.verified_project_count(token_id):
            raise ProjectNotFound(f"Loan {token_id} has no verified project {index}")
        return tuple(self.loan_data.array_element(token_id, key, index) for key in VERIFIED_PROJECT_KEYS)

    def get_verified_project_record(self, token_id: int, index: int) -> VerifiedProject:
        name, link, units, geo, verification_link = self.get_verified_project(token_id, index)
        return VerifiedProject(
            index=index,
            name=decode_string(name),
            link=decode_string(link),
            units=decode_int256(units),
            geographic_identifier=decode_string(geo),
            verification_link=decode_string(verification_link),
        )

    def get_verified_projects(self, token_id: int) -> List[VerifiedProject]:
        return [
            self.get_verified_project_record(token_id, i)
            for i in range(self.verified_project_count(token_id))
        ]

    def add_cadt_project(self, caller: str, token_id: int, name: str, registry_link: str, units: int) -> int:
        """Append a Climate Action Data Trust registry entry to a loan."""
        self._require_active()
        self._require_owner(caller)
        self._get_terms(token_id)
        values = [
            MetadataValue.string(name),
            MetadataValue.string(registry_link),
            MetadataValue.int256(units),
        ]
        index, writes = self._append_record(token_id, CADT_PROJECT_KEYS, values)
        self._commit(token_id, "ADD_CADT_PROJECT", writes=writes)
        return index

    def get_cadt_project(self, token_id: int, index: int) -> Tuple[str, str, int]:
        self._get_terms(token_id)
        if index < 0 or index >= self.loan_data.array_length(token_id, CADT_PROJECT_KEYS[0]):
            raise ProjectNotFound(f"Loan {token_id} has no CADT project {index}")
        name, link, units = (self.loan_data.array_element(token_id, key, index) for key in CADT_PROJECT_KEYS)
        return decode_string(name), decode_string(link), decode_int256(units)

    def __repr__(self) -> str:
        return (
            f"LoanContract({self.name} @ {self.address}, {len(self._terms)} loans, "
            f"{self.settlement!r}, active={self._active})"
        )
