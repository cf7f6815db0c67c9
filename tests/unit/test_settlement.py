"""
test_settlement.py - Unit tests for settlement capabilities

Tests:
- NativeTransfer: attached value must equal the amount owed
- TokenTransfer: operator allowances, attached value rejected
- Move construction (zero amounts produce no moves)
"""

import pytest
from decimal import Decimal

from nyx import (
    NativeTransfer, TokenTransfer, SettlementAsset,
    InvalidPaymentValue, InsufficientAllowance,
    address_from_int, to_wei,
)


HOLDER = address_from_int(0xA)
OPERATOR = address_from_int(0xE)


class TestNativeTransfer:
    """Tests for native-coin settlement."""

    def test_exact_value_accepted(self, ledger):
        NativeTransfer().check_pull(ledger, HOLDER, OPERATOR, 100, 100)

    @pytest.mark.parametrize("value", [None, 0, 99, 101])
    def test_mismatched_value_rejected(self, ledger, value):
        with pytest.raises(InvalidPaymentValue):
            NativeTransfer().check_pull(ledger, HOLDER, OPERATOR, 100, value)

    def test_unit(self):
        asset = NativeTransfer()
        assert asset.unit_symbol == "LYX"
        assert asset.unit.decimal_places == 18
        assert isinstance(asset, SettlementAsset)


class TestTokenTransfer:
    """Tests for allowance-based token settlement."""

    def test_allowance_set_and_read(self):
        asset = TokenTransfer()
        asset.authorize_operator(HOLDER, OPERATOR, to_wei(50))
        assert asset.authorized_amount_for(OPERATOR, HOLDER) == to_wei(50)
        assert asset.authorized_amount_for(HOLDER, OPERATOR) == 0

    def test_authorize_replaces(self):
        asset = TokenTransfer()
        asset.authorize_operator(HOLDER, OPERATOR, 10)
        asset.authorize_operator(HOLDER, OPERATOR, 3)
        assert asset.authorized_amount_for(OPERATOR, HOLDER) == 3

    def test_insufficient_allowance(self, ledger):
        asset = TokenTransfer()
        asset.authorize_operator(HOLDER, OPERATOR, 99)
        with pytest.raises(InsufficientAllowance):
            asset.check_pull(ledger, HOLDER, OPERATOR, 100, None)

    def test_attached_value_rejected(self, ledger):
        asset = TokenTransfer()
        asset.authorize_operator(HOLDER, OPERATOR, 100)
        with pytest.raises(InvalidPaymentValue):
            asset.check_pull(ledger, HOLDER, OPERATOR, 100, 100)

    def test_commit_consumes_allowance(self, ledger):
        asset = TokenTransfer()
        asset.authorize_operator(HOLDER, OPERATOR, 100)
        asset.check_pull(ledger, HOLDER, OPERATOR, 60, None)
        asset.commit_pull(HOLDER, OPERATOR, 60)
        assert asset.authorized_amount_for(OPERATOR, HOLDER) == 40

    def test_revoke(self):
        asset = TokenTransfer()
        asset.authorize_operator(HOLDER, OPERATOR, 100)
        asset.revoke_operator(HOLDER, OPERATOR)
        assert asset.authorized_amount_for(OPERATOR, HOLDER) == 0

    def test_negative_allowance_rejected(self):
        with pytest.raises(ValueError):
            TokenTransfer().authorize_operator(HOLDER, OPERATOR, -1)


class TestMoves:
    """Tests for Move construction."""

    def test_wei_to_decimal_move(self):
        (move,) = NativeTransfer().moves(HOLDER, OPERATOR, 41_154 * 10 ** 15, "loan")
        assert move.quantity == Decimal("41.154")
        assert move.unit_symbol == "LYX"
        assert (move.source, move.dest) == (HOLDER, OPERATOR)

    def test_zero_amount_no_moves(self):
        assert TokenTransfer().moves(HOLDER, OPERATOR, 0, "loan") == []

    def test_negative_amount_rejected(self):
        with pytest.raises(ValueError):
            NativeTransfer().moves(HOLDER, OPERATOR, -1, "loan")
