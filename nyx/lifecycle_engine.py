"""
lifecycle_engine.py - Loan Lifecycle Engine

Drives a loan contract through time for simulations and backtests.

Execution order each step():
1. Advance ledger time
2. Publish the carbon-credit price from the pricing source if it changed
3. Evaluate the swap state of every Taken loan (in token id order)

Evaluations run as the contract owner. The event log is the audit trail:
step() returns the events it caused, and run() concatenates them.
"""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from .core import Address
from .events import ContractEvent
from .ledger import Ledger
from .loan import LoanContract, LoanState
from .pricing_source import CARBON_CREDIT_SYMBOL, PricingSource


class LoanLifecycleEngine:
    """
    Time-stepped driver pairing a loan contract with an external price feed.

    Example:
        pricer = TimeSeriesPricingSource({CARBON_CREDIT_SYMBOL: path})
        engine = LoanLifecycleEngine(ledger, contract, pricer)
        events = engine.run(pricer.get_all_timestamps(CARBON_CREDIT_SYMBOL))
    """

    def __init__(
        self,
        ledger: Ledger,
        contract: LoanContract,
        pricing_source: PricingSource,
        operator: Optional[str] = None,
        unit_symbol: str = CARBON_CREDIT_SYMBOL,
    ):
        """
        Initialize lifecycle engine.

        Args:
            ledger: The ledger whose clock the engine advances
            contract: Loan contract to drive
            pricing_source: Feed supplying the carbon-credit price
            operator: Address the engine calls as (default: contract owner)
            unit_symbol: Symbol of the carbon credit in the pricing source
        """
        self.ledger = ledger
        self.contract = contract
        self.pricing_source = pricing_source
        self.operator: Address = operator or contract.owner
        self.unit_symbol = unit_symbol
        self.verbose = ledger.verbose

    def _publish_price(self, timestamp: datetime) -> Optional[ContractEvent]:
        price = self.pricing_source.get_price(self.unit_symbol, timestamp)
        if price is None or price == self.contract.carbon_credit_price:
            return None
        before = len(self.contract.events)
        self.contract.set_carbon_credit_price(self.operator, Decimal(price))
        return self.contract.events.entries[before].event

    def step(self, timestamp: datetime) -> List[ContractEvent]:
        """
        Advance time, refresh the price and evaluate every Taken loan.

        Args:
            timestamp: New logical time (must not precede the ledger's)

        Returns:
            Events emitted during this step, in order
        """
        self.ledger.advance_time(timestamp)
        emitted: List[ContractEvent] = []

        published = self._publish_price(timestamp)
        if published is not None:
            emitted.append(published)

        snapshot = self.contract.price_oracle.latest()
        for token_id in self.contract.loan_ids():
            if self.contract.loan_state(token_id) != LoanState.TAKEN:
                continue
            before = len(self.contract.events)
            self.contract.evaluate_swap_state(self.operator, token_id, snapshot)
            new_events = [e.event for e in self.contract.events.since(before)]
            emitted.extend(new_events)
            if self.verbose:
                names = ", ".join(e.event_name for e in new_events)
                print(f"[LIFECYCLE] {timestamp.isoformat()} loan {token_id}: {names}")

        return emitted

    def run(self, timestamps: List[datetime]) -> List[ContractEvent]:
        """
        Run step() for each timestamp.

        Returns:
            All events emitted across the run
        """
        events: List[ContractEvent] = []
        for ts in timestamps:
            events.extend(self.step(ts))
        return events
