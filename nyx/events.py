"""
events.py - Contract Event Log

Event payloads are immutable records whose fields mirror the on-chain
event signatures, so a log produced here can be compared field-for-field
against one recorded from a live deployment.

Transfer-shaped events (LoanFunded, LoanAccepted, PaymentMade,
LoanLiquidated) carry (initiator, from, to, amount, success, data).
Swap events carry (credits_staked, value_at_price, profit_bps) where
value_at_price is the staked credits' value less the principal, in wei.

The EventLog wraps each payload with its emitter, a sequence number and
the logical time of emission.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterator, List, Optional, Tuple, Type, TypeVar, Union


@dataclass(frozen=True, slots=True)
class ContractEvent:
    """Base class for event payloads."""

    @property
    def event_name(self) -> str:
        return type(self).__name__


@dataclass(frozen=True, slots=True)
class _TransferEvent(ContractEvent):
    initiator: str
    from_: str
    to: str
    amount: int
    success: bool = True
    data: bytes = b""


# ============================================================================
# LOAN LIFECYCLE
# ============================================================================

@dataclass(frozen=True, slots=True)
class LoanCreated(ContractEvent):
    token_id: int
    lender: str
    borrower: str
    amount: int


@dataclass(frozen=True, slots=True)
class LoanFunded(_TransferEvent):
    pass


@dataclass(frozen=True, slots=True)
class LoanAccepted(_TransferEvent):
    pass


@dataclass(frozen=True, slots=True)
class PaymentMade(_TransferEvent):
    """Emitted once per recipient (lender, fee recipient) of a payment."""
    pass


@dataclass(frozen=True, slots=True)
class LoanRepayed(ContractEvent):
    pass


@dataclass(frozen=True, slots=True)
class LoanLiquidated(_TransferEvent):
    pass


# ============================================================================
# SWAP
# ============================================================================

@dataclass(frozen=True, slots=True)
class _SwapEvent(ContractEvent):
    credits_staked: int
    value_at_price: int
    profit_bps: int


@dataclass(frozen=True, slots=True)
class LoanSwappable(_SwapEvent):
    pass


@dataclass(frozen=True, slots=True)
class LoanSwapped(_SwapEvent):
    pass


@dataclass(frozen=True, slots=True)
class LoanNotSwappable(_SwapEvent):
    pass


@dataclass(frozen=True, slots=True)
class LoanNoLongerSwappable(ContractEvent):
    profit_bps: int


@dataclass(frozen=True, slots=True)
class CarbonCreditPriceUpdated(ContractEvent):
    price_wei: int
    version: int


# ============================================================================
# PROJECTS, NFTS, FACTORY
# ============================================================================

@dataclass(frozen=True, slots=True)
class ProjectAdded(ContractEvent):
    name: str
    link: str
    units: int
    geographic_identifier: str
    verification_link: str
    index: int


@dataclass(frozen=True, slots=True)
class ProjectElementUpdated(ContractEvent):
    token_id: int
    index: int
    key: str
    new_value: bytes


@dataclass(frozen=True, slots=True)
class Minted(ContractEvent):
    to: str
    token_id: int
    name: str
    link: str
    units: int
    geographic_identifier: str
    minters: Tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ContractCreated(ContractEvent):
    contract_address: str


# ============================================================================
# LOG
# ============================================================================

E = TypeVar("E", bound=ContractEvent)


@dataclass(frozen=True, slots=True)
class LoggedEvent:
    """An emitted event with its position in the log."""
    sequence: int
    emitter: str
    timestamp: datetime
    event: ContractEvent
    token_id: Optional[int] = None

    @property
    def name(self) -> str:
        return self.event.event_name


@dataclass
class EventLog:
    """Append-only record of emitted events shared by cooperating contracts."""
    entries: List[LoggedEvent] = field(default_factory=list)

    def emit(
        self,
        emitter: str,
        timestamp: datetime,
        event: ContractEvent,
        token_id: Optional[int] = None,
    ) -> LoggedEvent:
        entry = LoggedEvent(len(self.entries), emitter, timestamp, event, token_id)
        self.entries.append(entry)
        return entry

    def extend(self, emitter: str, timestamp: datetime, events: List[ContractEvent],
               token_id: Optional[int] = None) -> None:
        for event in events:
            self.emit(emitter, timestamp, event, token_id)

    def of_type(self, event_type: Union[Type[E], str]) -> List[E]:
        """Payloads of one event type, oldest first."""
        if isinstance(event_type, str):
            return [e.event for e in self.entries if e.name == event_type]
        return [e.event for e in self.entries if type(e.event) is event_type]

    def for_token(self, token_id: int, emitter: Optional[str] = None) -> List[LoggedEvent]:
        """Entries tagged with token_id, optionally only those from one emitter."""
        return [
            e for e in self.entries
            if e.token_id == token_id and (emitter is None or e.emitter == emitter)
        ]

    def since(self, sequence: int) -> List[LoggedEvent]:
        return self.entries[sequence:]

    def last(self) -> Optional[ContractEvent]:
        return self.entries[-1].event if self.entries else None

    def names(self) -> List[str]:
        return [e.name for e in self.entries]

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[LoggedEvent]:
        return iter(self.entries)
