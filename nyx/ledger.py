"""
ledger.py - Settlement Ledger

Wallet balances for the assets loans settle in. Funding, acceptance,
installments, fee payouts and refunds all reach the ledger as a
PendingTransaction, and execute() is the only code path that changes a
balance.

Rules the ledger enforces on every settlement:
    - a batch of moves applies whole or not at all
    - no wallet other than SYSTEM_WALLET leaves its unit's [min, max] range
    - an intent id settles once; replays report ALREADY_APPLIED
    - nothing settles with a timestamp ahead of the ledger clock
"""

from __future__ import annotations
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Set, Optional, Tuple, Any
from decimal import Decimal

from .core import (
    Move, Transaction, Unit,
    PendingTransaction,
    ExecuteResult,
    SYSTEM_WALLET,
    OriginType, TransactionOrigin, build_transaction,
    LedgerError, UnitNotRegistered, WalletNotRegistered,
)


_ZERO = Decimal("0")


def _wallet_book() -> Dict[str, Decimal]:
    return defaultdict(lambda: _ZERO)


class Ledger:
    """
    Double-entry settlement ledger with a logical clock.

    Value enters through issue(), which debits SYSTEM_WALLET, so the sum of
    every unit over all wallets stays at zero:

        ledger = Ledger("loans", datetime(2025, 1, 1))
        ledger.register_unit(native_coin())
        ledger.issue(lender, "LYX", Decimal("1000"))
        ledger.verify_double_entry({"LYX": Decimal("0")})["valid"]   # True
    """

    def __init__(
        self,
        name: str,
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
        test_mode: bool = False
    ):
        """
        Args:
            name: Ledger identifier, part of every exec_id
            initial_time: Starting clock (default: 1970-01-01)
            verbose: Print registrations and settlement receipts
            test_mode: Allow set_balance()
        """
        self.name = name
        self.units: Dict[str, Unit] = {}
        self.transaction_log: List[Transaction] = []
        self.verbose = verbose
        self._wallets: Dict[str, Dict[str, Decimal]] = {SYSTEM_WALLET: _wallet_book()}
        self._settled_intents: Set[str] = set()
        self._clock: datetime = initial_time or datetime(1970, 1, 1)
        self._test_mode = test_mode

    def __repr__(self) -> str:
        return f"Ledger({self.name!r}, {len(self._wallets)} wallets, {len(self.transaction_log)} txs)"

    # ========================================================================
    # CLOCK
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        return self._clock

    def advance_time(self, new_time: datetime) -> None:
        """
        Move the clock forward. Installments become payable once it passes their due date.

        Raises:
            ValueError: If new_time is earlier than current_time
        """
        if new_time < self._clock:
            raise ValueError(f"Cannot move time backwards: {new_time} < {self._clock}")
        self._clock = new_time

    # ========================================================================
    # UNITS AND WALLETS
    # ========================================================================

    def register_unit(self, unit: Unit) -> None:
        """
        Make a settlement asset available.

        Raises:
            ValueError: If the symbol is taken
        """
        if unit.symbol in self.units:
            raise ValueError(f"Unit {unit.symbol} already registered")
        self.units[unit.symbol] = unit
        if self.verbose:
            print(f"📝 Registered: {unit.symbol} ({unit.name}) [{unit.unit_type}]")

    def register_wallet(self, wallet_id: str) -> str:
        """
        Open an empty wallet.

        Raises:
            ValueError: If the wallet exists
        """
        if wallet_id in self._wallets:
            raise ValueError(f"Wallet {wallet_id} already registered")
        self._wallets[wallet_id] = _wallet_book()
        return wallet_id

    def ensure_wallet(self, wallet_id: str) -> str:
        if wallet_id not in self._wallets:
            self.register_wallet(wallet_id)
        return wallet_id

    def is_registered(self, wallet_id: str) -> bool:
        return wallet_id in self._wallets

    def list_wallets(self) -> Set[str]:
        return set(self._wallets)

    def list_units(self) -> List[str]:
        return sorted(self.units)

    def get_unit(self, symbol: str) -> Unit:
        self._require_unit(symbol)
        return self.units[symbol]

    def _require_unit(self, unit_symbol: str) -> None:
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")

    def _require_wallet(self, wallet_id: str) -> None:
        if wallet_id not in self._wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")

    # ========================================================================
    # BALANCES
    # ========================================================================

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """
        Raises:
            WalletNotRegistered: Unknown wallet
            UnitNotRegistered: Unknown unit
        """
        self._require_wallet(wallet_id)
        self._require_unit(unit_symbol)
        return self._wallets[wallet_id].get(unit_symbol, _ZERO)

    def get_positions(self, unit_symbol: str) -> Dict[str, Decimal]:
        """Non-zero holdings of one unit, keyed by wallet."""
        return {
            wallet: book[unit_symbol]
            for wallet, book in self._wallets.items()
            if book.get(unit_symbol, _ZERO) != 0
        }

    def total_supply(self, unit_symbol: str) -> Decimal:
        """Sum of a unit over all wallets, added in sorted wallet order."""
        self._require_unit(unit_symbol)
        total = _ZERO
        for wallet in sorted(self._wallets):
            total += self._wallets[wallet].get(unit_symbol, _ZERO)
        return total

    def verify_double_entry(
        self,
        expected_supplies: Optional[Dict[str, Decimal]] = None,
        tolerance: Decimal = Decimal("1e-18")
    ) -> Dict[str, Any]:
        """
        Compare each unit's total supply with what the caller expects.

        Without set_balance() every expectation should be zero: issuance
        leaves the matching debit on SYSTEM_WALLET.

        Returns:
            {'valid': bool, 'supplies': {unit: total}, 'discrepancies': [...]}
        """
        expected_supplies = expected_supplies or {}
        supplies = {symbol: self.total_supply(symbol) for symbol in self.units}
        discrepancies = []
        for symbol, expected in expected_supplies.items():
            actual = supplies.get(symbol, _ZERO)
            difference = abs(actual - expected)
            if symbol not in supplies:
                discrepancies.append({'unit': symbol, 'expected': expected, 'actual': actual,
                                      'difference': difference, 'error': 'unit not registered'})
            elif difference > tolerance:
                discrepancies.append({'unit': symbol, 'expected': expected, 'actual': actual,
                                      'difference': difference})
        return {'valid': not discrepancies, 'supplies': supplies, 'discrepancies': discrepancies}

    def set_balance(self, wallet_id: str, unit_symbol: str, quantity: Decimal) -> None:
        """
        Overwrite a balance without a counterparty. Test fixtures only.

        Raises:
            LedgerError: Outside test mode
        """
        if not self._test_mode:
            raise LedgerError(
                "set_balance() is disabled outside test mode; fund wallets with issue(). "
                "Create the Ledger with test_mode=True to use it."
            )
        self._require_wallet(wallet_id)
        self._require_unit(unit_symbol)
        self._wallets[wallet_id][unit_symbol] = Decimal(quantity)

    # ========================================================================
    # SETTLEMENT
    # ========================================================================

    def issue(self, wallet_id: str, unit_symbol: str, quantity: Decimal) -> ExecuteResult:
        """Credit a wallet (opening it if needed) against SYSTEM_WALLET."""
        self.ensure_wallet(wallet_id)
        if not isinstance(quantity, Decimal):
            quantity = Decimal(str(quantity))
        # every issuance is its own intent, even when identical to an earlier one
        origin = TransactionOrigin(
            OriginType.SYSTEM, "issuance", event_type=f"ISSUE#{len(self.transaction_log)}",
        )
        move = Move(quantity, unit_symbol, SYSTEM_WALLET, wallet_id, "issuance")
        return self.execute(build_transaction(self, [move], origin))

    def validate(self, pending: PendingTransaction) -> Tuple[bool, str]:
        """
        Dry-run a settlement.

        Returns:
            (True, "") if execute() would apply it, else (False, reason)
        """
        if pending.timestamp > self._clock:
            return False, "future timestamp"

        deltas: Dict[Tuple[str, str], Decimal] = defaultdict(lambda: _ZERO)
        for move in pending.moves:
            if move.unit_symbol not in self.units:
                return False, f"unit not registered: {move.unit_symbol}"
            for wallet in (move.source, move.dest):
                if wallet not in self._wallets:
                    return False, f"wallet not registered: {wallet}"
            deltas[move.source, move.unit_symbol] -= move.quantity
            deltas[move.dest, move.unit_symbol] += move.quantity

        for (wallet, symbol), delta in deltas.items():
            if wallet == SYSTEM_WALLET:
                continue
            unit = self.units[symbol]
            after = unit.round(self._wallets[wallet][symbol] + delta)
            if after < unit.min_balance:
                return False, f"{wallet} {symbol}: {after} < min {unit.min_balance}"
            if after > unit.max_balance:
                return False, f"{wallet} {symbol}: {after} > max {unit.max_balance}"
        return True, ""

    def execute(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Settle a PendingTransaction atomically.

        Returns:
            APPLIED on success (and for an empty batch),
            ALREADY_APPLIED if the intent id settled before,
            REJECTED if validate() fails; balances are untouched then.
        """
        if pending.is_empty():
            return ExecuteResult.APPLIED
        if pending.intent_id in self._settled_intents:
            if self.verbose:
                print(f"⚠️  ALREADY_APPLIED: intent_id={pending.intent_id}")
            return ExecuteResult.ALREADY_APPLIED

        ok, reason = self.validate(pending)
        if not ok:
            if self.verbose:
                print(f"✗ REJECTED {pending.origin.tag()}: {reason}")
            return ExecuteResult.REJECTED

        sequence = len(self.transaction_log)
        micros = int(self._clock.timestamp() * 1_000_000)
        tx = Transaction(
            moves=pending.moves,
            origin=pending.origin,
            timestamp=pending.timestamp,
            intent_id=pending.intent_id,
            exec_id=f"exec:{self.name}:{sequence:012d}:{micros}",
            ledger_name=self.name,
            execution_time=self._clock,
            sequence_number=sequence,
        )
        for move in tx.moves:
            unit = self.units[move.unit_symbol]
            source, dest = self._wallets[move.source], self._wallets[move.dest]
            source[move.unit_symbol] = unit.round(source[move.unit_symbol] - move.quantity)
            dest[move.unit_symbol] = unit.round(dest[move.unit_symbol] + move.quantity)

        self.transaction_log.append(tx)
        self._settled_intents.add(tx.intent_id)
        if self.verbose:
            print("✓ " + "\n  ".join(tx.receipt_lines()))
        return ExecuteResult.APPLIED
