"""
core.py - Settlement Primitives

Value types shared by the settlement ledger and the loan contracts:

    Unit                a settlement asset (native coin or fungible token)
    Move                one debit/credit pair between two wallets
    PendingTransaction  a batch of moves waiting to be settled
    Transaction         the receipt the ledger keeps once a batch settles

Also home to the error taxonomy, the address helpers and the wei/bps
constants. Nothing in here touches balances; the Ledger is the only
mutator and everything else sees it through LedgerView.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_DOWN, getcontext
from enum import Enum
import hashlib
import re
from typing import Dict, List, Set, Optional, Any, Protocol, Tuple, runtime_checkable


# ============================================================================
# DECIMAL CONTEXT
# ============================================================================
#
# Balances carry 18 fractional digits and principals reach 1e9 tokens, so a
# single quantity needs 27 significant digits. prec=50 covers products of two.
#
getcontext().prec = 50


# ============================================================================
# CONSTANTS
# ============================================================================

# Counterparty for issuance. May go negative; never validated.
SYSTEM_WALLET = "system"

UNIT_TYPE_NATIVE_COIN = "NATIVE_COIN"
UNIT_TYPE_FUNGIBLE_TOKEN = "FUNGIBLE_TOKEN"

TOKEN_DECIMALS = 18
WEI_PER_TOKEN = 10 ** TOKEN_DECIMALS

# Below one wei.
QUANTITY_EPSILON = Decimal("1e-24")

BPS_DENOMINATOR = 10_000

ZERO_ADDRESS = "0x" + "0" * 40

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

# 20-byte account address rendered as "0x" + 40 hex characters.
Address = str


# ============================================================================
# READ-ONLY VIEW
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    What settlement assets may ask of the ledger.

    Allowance and value checks only need balances and the clock; handing
    them a LedgerView keeps them from settling anything themselves.
    """

    @property
    def current_time(self) -> datetime:
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        ...

    def get_positions(self, unit_symbol: str) -> Dict[str, Decimal]:
        ...

    def list_wallets(self) -> Set[str]:
        ...

    def get_unit(self, symbol: str) -> 'Unit':
        ...


class ExecuteResult(Enum):
    """Outcome of Ledger.execute()."""
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"    # same intent settled before
    REJECTED = "rejected"                  # failed Ledger.validate()


class OriginType(Enum):
    """Who asked for a transaction to settle."""
    CONTRACT = "contract"
    SYSTEM = "system"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger and loan errors."""
    pass


class InsufficientFunds(LedgerError):
    """Raised when a settlement transfer would overdraw a wallet."""
    pass


class UnitNotRegistered(LedgerError):
    """Raised when a settlement asset is used before it is registered."""
    pass


class WalletNotRegistered(LedgerError):
    """Raised when a wallet is queried before it is registered."""
    pass


class Unauthorized(LedgerError):
    """
    Raised when the caller does not hold the role an operation requires.

    Attributes:
        caller: Address of the rejected caller.
    """

    def __init__(self, caller: str, message: Optional[str] = None):
        self.caller = caller
        super().__init__(message or f"Unauthorized({caller})")


class ActionNotAllowedInCurrentState(LedgerError):
    """Raised when a transition is not legal from the loan's current state."""
    pass


class PaymentNotDue(LedgerError):
    """Raised when a payment is attempted before its scheduled due date."""
    pass


class ZeroBalanceOnLoan(LedgerError):
    """Raised when a payment is attempted against a loan whose balance is zero."""
    pass


class InvalidPaymentValue(LedgerError):
    """Raised when the value attached to a native-coin call does not match the amount owed."""
    pass


class InsufficientAllowance(LedgerError):
    """Raised when a token pull exceeds the operator allowance granted by the holder."""
    pass


class MetadataDecodeError(LedgerError):
    """Raised when stored bytes are structurally invalid for the requested type."""
    pass


class NonExistentTokenId(LedgerError):
    """Raised when a token id has not been minted."""
    pass


class ControlAlreadyTransferred(LedgerError):
    """Raised on a second attempt to hand over control of a store or registry."""
    pass


class ContractNotActive(LedgerError):
    """Raised when a loan contract is used before its deployment has been activated."""
    pass


class DeploymentError(LedgerError):
    """Raised when deployment phases run out of order."""
    pass


class ProjectNotFound(LedgerError):
    """Raised when a verified project index is out of range for a loan."""
    pass


# ============================================================================
# ADDRESSES
# ============================================================================

def is_address(value: Any) -> bool:
    """Return True if value is a "0x"-prefixed 20-byte hex string."""
    return isinstance(value, str) and bool(_ADDRESS_RE.match(value))


def normalize_address(value: str) -> Address:
    """
    Return the canonical lowercase form of an address.

    Raises:
        ValueError: If value is not a 20-byte hex address
    """
    if not is_address(value):
        raise ValueError(f"Invalid address: {value!r}")
    return value.lower()


def derive_address(deployer: str, nonce: int) -> Address:
    """Contract address for the nonce-th deployment by deployer (stable across runs)."""
    digest = hashlib.sha256(f"{deployer.lower()}:{nonce}".encode()).hexdigest()
    return "0x" + digest[-40:]


def address_from_int(n: int) -> Address:
    """Render a small integer as an address (handy for fixtures and scripts)."""
    if n < 0 or n >= 2 ** 160:
        raise ValueError(f"Address integer out of range: {n}")
    return "0x" + format(n, "040x")


# ============================================================================
# SETTLEMENT ASSETS
# ============================================================================

@dataclass(frozen=True, slots=True)
class Unit:
    """
    A settlement asset.

    Attributes:
        symbol: Ticker the ledger keys balances by ("LYX", "NYX").
        name: Display name.
        unit_type: UNIT_TYPE_NATIVE_COIN or UNIT_TYPE_FUNGIBLE_TOKEN.
        min_balance: Floor for any wallet except SYSTEM_WALLET.
        max_balance: Ceiling for any wallet except SYSTEM_WALLET.
        decimal_places: Balances are truncated to this many digits (None keeps them exact).
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: Decimal = Decimal("0")
    max_balance: Decimal = Decimal("Infinity")
    decimal_places: Optional[int] = None

    def round(self, value: Decimal) -> Decimal:
        """Truncate value to whole wei (or leave it alone when decimal_places is None)."""
        if self.decimal_places is None:
            return value
        return Decimal(value).quantize(Decimal(1).scaleb(-self.decimal_places), rounding=ROUND_DOWN)


def native_coin(symbol: str = "LYX", name: str = "LUKSO") -> Unit:
    """The chain's coin; loans receive it as value attached to the call."""
    return Unit(symbol, name, UNIT_TYPE_NATIVE_COIN, decimal_places=TOKEN_DECIMALS)


def fungible_token(symbol: str = "NYX", name: str = "Nyx Token") -> Unit:
    """An 18-decimal LSP7-style token; loans pull it through operator allowances."""
    return Unit(symbol, name, UNIT_TYPE_FUNGIBLE_TOKEN, decimal_places=TOKEN_DECIMALS)


# ============================================================================
# MOVES AND TRANSACTIONS
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Audit tag for a settlement.

    Attributes:
        origin_type: CONTRACT for loan operations, SYSTEM for issuance
        source_id: Contract address (or "issuance")
        token_id: Loan the settlement belongs to
        event_type: Operation and contract nonce, e.g. "PAYMENT#7"
    """
    origin_type: OriginType
    source_id: str
    token_id: Optional[int] = None
    event_type: Optional[str] = None

    def tag(self) -> str:
        """Stable text form, also hashed into the intent id."""
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.token_id is not None:
            parts.append(f"token={self.token_id}")
        if self.event_type:
            parts.append(f"event={self.event_type}")
        return ", ".join(parts)

    def __repr__(self) -> str:
        return f"Origin({self.tag()})"


@dataclass(frozen=True, slots=True)
class Move:
    """
    Debit quantity of unit_symbol from source and credit it to dest.

    contract_id names the contract on whose behalf the move happens.
    """
    quantity: Decimal
    unit_symbol: str
    source: str
    dest: str
    contract_id: str

    def __post_init__(self):
        for attr in ("source", "dest", "unit_symbol", "contract_id"):
            if not (getattr(self, attr) or "").strip():
                raise ValueError(f"Move {attr} cannot be empty")
        if not isinstance(self.quantity, Decimal):
            raise ValueError(f"Move quantity must be Decimal, got {type(self.quantity)}")
        if not self.quantity.is_finite():
            raise ValueError(f"Move quantity must be finite, got {self.quantity}")
        if abs(self.quantity) < QUANTITY_EPSILON:
            raise ValueError("Move quantity is effectively zero")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def describe(self) -> str:
        return f"{self.quantity} {self.unit_symbol}: {self.source} → {self.dest}"

    def __repr__(self) -> str:
        return f"Move({self.describe()})"


def _intent_id(moves: Tuple[Move, ...], origin: TransactionOrigin) -> str:
    # Order-independent; "1.0" and "1" hash the same. Contracts put their
    # nonce in origin.event_type so equal payments stay distinct intents.
    lines = sorted(
        f"{m.quantity.normalize():f}|{m.unit_symbol}|{m.source}|{m.dest}|{m.contract_id}"
        for m in moves
    )
    content = "\n".join([origin.tag(), *lines])
    return hashlib.sha256(content.encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    Moves the caller wants settled together.

    intent_id is derived from the moves and origin when not given, and is
    what makes Ledger.execute() idempotent.
    """
    moves: Tuple[Move, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            object.__setattr__(self, 'intent_id', _intent_id(self.moves, self.origin))

    def is_empty(self) -> bool:
        return not self.moves

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.moves)} moves, {self.origin})"


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    origin: Optional[TransactionOrigin] = None,
) -> PendingTransaction:
    """Stamp moves with the view's current time, ready for Ledger.execute()."""
    return PendingTransaction(
        moves=tuple(moves),
        origin=origin or TransactionOrigin(OriginType.CONTRACT, "contract"),
        timestamp=view.current_time,
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    Settlement receipt kept in Ledger.transaction_log.

    exec_id is "exec:{ledger}:{sequence}:{micros}" and is unique per ledger,
    while intent_id repeats for a retried PendingTransaction.
    """
    moves: Tuple[Move, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str
    exec_id: str
    ledger_name: str
    execution_time: datetime
    sequence_number: int

    def __post_init__(self):
        if not self.moves:
            raise ValueError("Transaction must have moves")

    def receipt_lines(self) -> List[str]:
        """Header plus one indented line per move, as printed by a verbose ledger."""
        lines = [
            f"#{self.sequence_number} {self.execution_time.isoformat()} {self.origin.tag()}",
            f"    intent {self.intent_id}",
        ]
        lines.extend(f"    {move.describe()}" for move in self.moves)
        return lines

    def __repr__(self) -> str:
        return f"Transaction({self.exec_id}, {len(self.moves)} moves, {self.origin})"
