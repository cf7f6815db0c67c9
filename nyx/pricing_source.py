"""
pricing_source.py - Carbon-credit pricing

The swap evaluator values staked credits at a single global carbon-credit
price. That price is versioned: every publication produces an immutable
CarbonCreditPrice snapshot (price, as_of, version), and evaluate/execute
take the snapshot explicitly so execution re-validates against a known
version instead of whatever the global happens to hold.

Classes:
- CarbonCreditPrice: immutable (price, as_of, version) snapshot
- CarbonCreditPriceOracle: last-writer-wins publisher with full history
- PricingSource: where simulations get the next price to publish
- StaticPricingSource: one fixed quote per symbol
- TimeSeriesPricingSource: a recorded price path per symbol

Prices are Decimal token amounts per credit (52.86 means 52.86 of the
settlement asset per credit).
"""

from __future__ import annotations
from bisect import bisect_right
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Protocol, Set, Tuple, runtime_checkable

from .loan_math import to_wei


CARBON_CREDIT_SYMBOL = "CARBON_CREDIT"

PricePath = List[Tuple[datetime, Decimal]]


def _as_decimal(price) -> Decimal:
    return price if isinstance(price, Decimal) else Decimal(str(price))


def _index_at(times: List[datetime], timestamp: datetime) -> int:
    """Index of the last entry at or before timestamp, -1 if there is none."""
    return bisect_right(times, timestamp) - 1


# ============================================================================
# VERSIONED SNAPSHOTS
# ============================================================================

@dataclass(frozen=True, slots=True)
class CarbonCreditPrice:
    """
    One published carbon-credit price.

    Attributes:
        price: Price per credit in settlement-asset units
        as_of: Logical time of publication
        version: Monotonic publication counter (0 = initial price)
    """
    price: Decimal
    as_of: datetime
    version: int = 0

    def __post_init__(self):
        object.__setattr__(self, 'price', _as_decimal(self.price))
        if self.price < 0:
            raise ValueError(f"Carbon credit price cannot be negative: {self.price}")

    @property
    def price_wei(self) -> int:
        return to_wei(self.price)

    def __repr__(self) -> str:
        return f"CarbonCreditPrice({self.price} @ {self.as_of.isoformat()}, v{self.version})"


class CarbonCreditPriceOracle:
    """
    Global carbon-credit price shared by every loan of a contract.

    publish() never mutates a snapshot; it appends a new one with the next
    version. latest() is what an evaluation sees when no snapshot is
    passed explicitly.
    """

    def __init__(self, initial_price: Decimal = Decimal("0"), as_of: Optional[datetime] = None):
        self._history: List[CarbonCreditPrice] = [
            CarbonCreditPrice(_as_decimal(initial_price), as_of or datetime(1970, 1, 1), 0)
        ]

    def publish(self, price: Decimal, as_of: datetime) -> CarbonCreditPrice:
        """
        Publish a new price.

        Raises:
            ValueError: If as_of precedes the latest publication
        """
        current = self._history[-1]
        if as_of < current.as_of:
            raise ValueError(f"Price time {as_of} precedes latest publication {current.as_of}")
        snapshot = CarbonCreditPrice(_as_decimal(price), as_of, current.version + 1)
        self._history.append(snapshot)
        return snapshot

    def latest(self) -> CarbonCreditPrice:
        return self._history[-1]

    @property
    def version(self) -> int:
        return self._history[-1].version

    def get(self, version: int) -> CarbonCreditPrice:
        if version < 0 or version >= len(self._history):
            raise KeyError(f"No price version {version}")
        return self._history[version]

    def price_at(self, timestamp: datetime) -> Optional[CarbonCreditPrice]:
        """Latest snapshot published at or before timestamp."""
        idx = _index_at([s.as_of for s in self._history], timestamp)
        return self._history[idx] if idx >= 0 else None

    @property
    def history(self) -> Tuple[CarbonCreditPrice, ...]:
        return tuple(self._history)

    def __repr__(self) -> str:
        return f"CarbonCreditPriceOracle({self.latest()!r}, {len(self._history)} versions)"


# ============================================================================
# PRICE FEEDS FOR SIMULATION
# ============================================================================

@runtime_checkable
class PricingSource(Protocol):
    """
    A feed the lifecycle engine polls before publishing to the oracle.

    A price of None means the feed has nothing for that symbol yet. The
    settlement asset (base_currency) always quotes 1.
    """
    base_currency: str

    def get_price(self, unit_symbol: str, timestamp: datetime) -> Optional[Decimal]:
        ...

    def get_prices(self, units: Set[str], timestamp: datetime) -> Dict[str, Decimal]:
        ...


class StaticPricingSource:
    """One quote per symbol, whatever the time."""

    def __init__(self, prices: Dict[str, Decimal], base_currency: str = "LYX"):
        self.base_currency = base_currency
        self.prices = {symbol: _as_decimal(p) for symbol, p in prices.items()}
        self.prices[base_currency] = Decimal("1")

    def get_price(self, unit_symbol: str, timestamp: datetime) -> Optional[Decimal]:
        return self.prices.get(unit_symbol)

    def get_prices(self, units: Set[str], timestamp: datetime) -> Dict[str, Decimal]:
        return {symbol: self.prices[symbol] for symbol in units if symbol in self.prices}

    def update_price(self, unit_symbol: str, price: Decimal):
        """Replace a quote, e.g. to script a price shock between engine steps."""
        self.prices[unit_symbol] = _as_decimal(price)

    def __repr__(self):
        return f"StaticPricingSource({self.prices.get(CARBON_CREDIT_SYMBOL)} per credit, base={self.base_currency})"


class TimeSeriesPricingSource:
    """
    Replays recorded price paths; a lookup returns the newest observation
    at or before the requested time.

        pricer = TimeSeriesPricingSource({
            CARBON_CREDIT_SYMBOL: [(t0, Decimal("40")), (t1, Decimal("52.86"))],
        })
        pricer.get_price(CARBON_CREDIT_SYMBOL, t1)   # Decimal("52.86")
        engine.run(pricer.get_all_timestamps(CARBON_CREDIT_SYMBOL))
    """

    def __init__(self, price_paths: Optional[Dict[str, PricePath]] = None, base_currency: str = "LYX"):
        self.base_currency = base_currency
        self.price_history: Dict[str, PricePath] = {}
        for symbol, path in (price_paths or {}).items():
            for timestamp, price in path:
                self.add_price(symbol, timestamp, price)

    def add_price(self, unit_symbol: str, timestamp: datetime, price: Decimal):
        path = self.price_history.setdefault(unit_symbol, [])
        path.append((timestamp, _as_decimal(price)))
        path.sort(key=lambda observation: observation[0])

    def get_price(self, unit_symbol: str, timestamp: datetime) -> Optional[Decimal]:
        if unit_symbol == self.base_currency:
            return Decimal("1")
        path = self.price_history.get(unit_symbol, [])
        idx = _index_at([ts for ts, _ in path], timestamp)
        return path[idx][1] if idx >= 0 else None

    def get_prices(self, units: Set[str], timestamp: datetime) -> Dict[str, Decimal]:
        quotes = {symbol: self.get_price(symbol, timestamp) for symbol in units}
        return {symbol: price for symbol, price in quotes.items() if price is not None}

    def get_all_timestamps(self, unit_symbol: Optional[str] = None) -> List[datetime]:
        """Observation times of one symbol, or of every symbol merged."""
        paths = [self.price_history.get(unit_symbol, [])] if unit_symbol else self.price_history.values()
        return sorted({ts for path in paths for ts, _ in path})

    def __repr__(self):
        observations = sum(len(path) for path in self.price_history.values())
        return f"TimeSeriesPricingSource({observations} observations over {len(self.price_history)} symbols)"
