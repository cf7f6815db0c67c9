"""
settlement.py - Settlement Asset Capabilities

A loan contract is one state machine parameterized by how value moves.
Two capabilities exist:

    NativeTransfer  - the chain coin. Value is attached to the call and
                      must equal the amount owed exactly.
    TokenTransfer   - an 18-decimal fungible token. The holder authorizes
                      the contract as operator for an allowance; the
                      contract pulls against it.

Both turn an amount in wei into ledger Moves. Checks run before the ledger
executes; allowance consumption happens only after execution succeeds, so
a rejected transfer leaves allowances untouched.
"""

from __future__ import annotations
from typing import Dict, List, Optional, Protocol, Tuple, runtime_checkable

from .core import (
    Move, Unit, LedgerView,
    InvalidPaymentValue, InsufficientAllowance,
    native_coin, fungible_token, normalize_address,
)
from .loan_math import from_wei


@runtime_checkable
class SettlementAsset(Protocol):
    """Interface the loan contract uses to move principal and payments."""

    unit: Unit

    @property
    def unit_symbol(self) -> str:
        ...

    def check_pull(self, view: LedgerView, payer: str, spender: str, amount_wei: int,
                   value: Optional[int]) -> None:
        """Raise if `spender` may not pull `amount_wei` from `payer` with `value` attached."""
        ...

    def commit_pull(self, payer: str, spender: str, amount_wei: int) -> None:
        """Record a completed pull (after the ledger applied it)."""
        ...

    def moves(self, source: str, dest: str, amount_wei: int, contract_id: str) -> List[Move]:
        """Ledger moves for a transfer (empty for a zero amount)."""
        ...


class _SettlementBase:
    """Shared Move construction for both settlement capabilities."""

    def __init__(self, unit: Unit):
        self.unit = unit

    @property
    def unit_symbol(self) -> str:
        return self.unit.symbol

    def moves(self, source: str, dest: str, amount_wei: int, contract_id: str) -> List[Move]:
        if amount_wei < 0:
            raise ValueError(f"Transfer amount cannot be negative: {amount_wei}")
        if amount_wei == 0:
            return []
        return [Move(from_wei(amount_wei), self.unit.symbol, source, dest, contract_id)]


class NativeTransfer(_SettlementBase):
    """
    Settlement in the chain's native coin.

    Calls that pay in (funding, payments) must attach exactly the amount
    owed as `value`.
    """

    def __init__(self, unit: Optional[Unit] = None):
        super().__init__(unit or native_coin())

    def check_pull(self, view: LedgerView, payer: str, spender: str, amount_wei: int,
                   value: Optional[int]) -> None:
        if value is None or value != amount_wei:
            raise InvalidPaymentValue(
                f"Attached value {value} does not match amount owed {amount_wei}"
            )

    def commit_pull(self, payer: str, spender: str, amount_wei: int) -> None:
        return None

    def __repr__(self) -> str:
        return f"NativeTransfer({self.unit.symbol})"


class TokenTransfer(_SettlementBase):
    """
    Settlement in a fungible token pulled through operator allowances.

    Example:
        asset = TokenTransfer()
        asset.authorize_operator(lender, contract.address, to_wei(1000))
        contract.fund_loan(lender, token_id)
    """

    def __init__(self, unit: Optional[Unit] = None):
        super().__init__(unit or fungible_token())
        self._allowances: Dict[Tuple[str, str], int] = {}

    def authorize_operator(self, holder: str, operator: str, amount_wei: int) -> None:
        """Set (not add to) the amount `operator` may pull from `holder`."""
        if amount_wei < 0:
            raise ValueError(f"Allowance cannot be negative: {amount_wei}")
        self._allowances[(normalize_address(holder), normalize_address(operator))] = amount_wei

    def revoke_operator(self, holder: str, operator: str) -> None:
        self._allowances.pop((normalize_address(holder), normalize_address(operator)), None)

    def authorized_amount_for(self, operator: str, holder: str) -> int:
        return self._allowances.get((normalize_address(holder), normalize_address(operator)), 0)

    def check_pull(self, view: LedgerView, payer: str, spender: str, amount_wei: int,
                   value: Optional[int]) -> None:
        if value:
            raise InvalidPaymentValue(f"Token settlement does not accept attached value ({value})")
        allowance = self.authorized_amount_for(spender, payer)
        if allowance < amount_wei:
            raise InsufficientAllowance(
                f"{spender} may pull {allowance} from {payer}, needs {amount_wei}"
            )

    def commit_pull(self, payer: str, spender: str, amount_wei: int) -> None:
        key = (normalize_address(payer), normalize_address(spender))
        self._allowances[key] = self._allowances.get(key, 0) - amount_wei

    def __repr__(self) -> str:
        return f"TokenTransfer({self.unit.symbol}, {len(self._allowances)} allowances)"
