"""
test_settlement_ledger.py - Unit tests for the settlement ledger

Tests:
- Unit and wallet registration
- Issuance from SYSTEM_WALLET and double-entry totals
- Atomic execution, rejection and idempotency
- Logical time
- Address helpers
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from nyx import (
    Ledger, Move, ExecuteResult, OriginType, TransactionOrigin,
    LedgerError, UnitNotRegistered, WalletNotRegistered,
    SYSTEM_WALLET, native_coin, fungible_token, build_transaction,
    is_address, normalize_address, derive_address, address_from_int,
)


@pytest.fixture
def lyx_ledger(ledger):
    ledger.register_unit(native_coin())
    ledger.register_wallet("alice")
    ledger.register_wallet("bob")
    return ledger


class TestRegistration:
    """Tests for unit and wallet registration."""

    def test_duplicate_unit(self, lyx_ledger):
        with pytest.raises(ValueError):
            lyx_ledger.register_unit(native_coin())

    def test_duplicate_wallet(self, lyx_ledger):
        with pytest.raises(ValueError):
            lyx_ledger.register_wallet("alice")

    def test_ensure_wallet_idempotent(self, lyx_ledger):
        lyx_ledger.ensure_wallet("alice")
        lyx_ledger.ensure_wallet("carol")
        assert {"alice", "carol"} <= lyx_ledger.list_wallets()

    def test_unknown_lookups(self, lyx_ledger):
        with pytest.raises(WalletNotRegistered):
            lyx_ledger.get_balance("nobody", "LYX")
        with pytest.raises(UnitNotRegistered):
            lyx_ledger.get_balance("alice", "NYX")

    def test_list_units(self, lyx_ledger):
        lyx_ledger.register_unit(fungible_token())
        assert lyx_ledger.list_units() == ["LYX", "NYX"]


class TestIssuanceAndTransfers:
    """Tests for issuance and execution."""

    def test_issue_keeps_total_zero(self, lyx_ledger):
        assert lyx_ledger.issue("alice", "LYX", Decimal("100")) == ExecuteResult.APPLIED
        assert lyx_ledger.get_balance("alice", "LYX") == Decimal("100")
        assert lyx_ledger.get_balance(SYSTEM_WALLET, "LYX") == Decimal("-100")
        assert lyx_ledger.total_supply("LYX") == Decimal("0")
        assert lyx_ledger.verify_double_entry({"LYX": Decimal("0")})["valid"]

    def test_repeated_issue_not_deduplicated(self, lyx_ledger):
        lyx_ledger.issue("alice", "LYX", Decimal("1"))
        lyx_ledger.issue("alice", "LYX", Decimal("1"))
        assert lyx_ledger.get_balance("alice", "LYX") == Decimal("2")

    def test_overdraft_rejected_atomically(self, lyx_ledger):
        lyx_ledger.issue("alice", "LYX", Decimal("10"))
        tx = build_transaction(lyx_ledger, [
            Move(Decimal("5"), "LYX", "alice", "bob", "t"),
            Move(Decimal("6"), "LYX", "alice", "bob", "t"),
        ])
        assert lyx_ledger.execute(tx) == ExecuteResult.REJECTED
        assert lyx_ledger.get_balance("alice", "LYX") == Decimal("10")
        assert lyx_ledger.get_balance("bob", "LYX") == Decimal("0")

    def test_idempotent_by_intent(self, lyx_ledger):
        lyx_ledger.issue("alice", "LYX", Decimal("10"))
        tx = build_transaction(lyx_ledger, [Move(Decimal("1"), "LYX", "alice", "bob", "t")])
        assert lyx_ledger.execute(tx) == ExecuteResult.APPLIED
        assert lyx_ledger.execute(tx) == ExecuteResult.ALREADY_APPLIED
        assert lyx_ledger.get_balance("bob", "LYX") == Decimal("1")

    def test_origin_event_type_distinguishes_intents(self, lyx_ledger):
        lyx_ledger.issue("alice", "LYX", Decimal("10"))
        for nonce in range(2):
            tx = build_transaction(
                lyx_ledger,
                [Move(Decimal("1"), "LYX", "alice", "bob", "loan")],
                TransactionOrigin(OriginType.CONTRACT, "loan", 1, f"PAYMENT#{nonce}"),
            )
            assert lyx_ledger.execute(tx) == ExecuteResult.APPLIED
        assert lyx_ledger.get_balance("bob", "LYX") == Decimal("2")

    def test_validate_reports_reason(self, lyx_ledger):
        tx = build_transaction(lyx_ledger, [Move(Decimal("1"), "LYX", "alice", "bob", "t")])
        ok, reason = lyx_ledger.validate(tx)
        assert not ok
        assert "alice" in reason

    def test_rounds_to_unit_precision(self, lyx_ledger):
        lyx_ledger.issue("alice", "LYX", Decimal("1.0000000000000000019"))
        assert lyx_ledger.get_balance("alice", "LYX") == Decimal("1.000000000000000001")

    def test_positions(self, lyx_ledger):
        lyx_ledger.issue("alice", "LYX", Decimal("3"))
        assert lyx_ledger.get_positions("LYX") == {"alice": Decimal("3"), SYSTEM_WALLET: Decimal("-3")}

    def test_receipts_logged_in_order(self, lyx_ledger):
        lyx_ledger.issue("alice", "LYX", Decimal("3"))
        tx = build_transaction(lyx_ledger, [Move(Decimal("1"), "LYX", "alice", "bob", "loan")])
        lyx_ledger.execute(tx)
        log = lyx_ledger.transaction_log
        assert [t.sequence_number for t in log] == [0, 1]
        assert log[1].intent_id == tx.intent_id
        assert log[1].receipt_lines()[-1] == "    1 LYX: alice → bob"

    def test_unexpected_supply_reported(self, lyx_ledger):
        lyx_ledger.issue("alice", "LYX", Decimal("3"))
        result = lyx_ledger.verify_double_entry({"LYX": Decimal("3"), "NYX": Decimal("0")})
        assert not result["valid"]
        assert [d["unit"] for d in result["discrepancies"]] == ["LYX", "NYX"]
        assert result["supplies"] == {"LYX": Decimal("0")}


class TestMoveValidation:
    """Tests for Move invariants."""

    def test_same_source_and_dest(self):
        with pytest.raises(ValueError):
            Move(Decimal("1"), "LYX", "alice", "alice", "t")

    def test_zero_quantity(self):
        with pytest.raises(ValueError):
            Move(Decimal("0"), "LYX", "alice", "bob", "t")

    def test_float_quantity(self):
        with pytest.raises(ValueError):
            Move(1.0, "LYX", "alice", "bob", "t")


class TestTime:
    """Tests for logical time."""

    def test_advance(self, ledger):
        later = ledger.current_time + timedelta(days=1)
        ledger.advance_time(later)
        assert ledger.current_time == later

    def test_backwards_rejected(self, ledger):
        with pytest.raises(ValueError):
            ledger.advance_time(datetime(2024, 1, 1))

    def test_set_balance_requires_test_mode(self):
        prod = Ledger("prod", verbose=False)
        prod.register_unit(native_coin())
        prod.register_wallet("alice")
        with pytest.raises(LedgerError):
            prod.set_balance("alice", "LYX", Decimal("1"))


class TestAddresses:
    """Tests for address helpers."""

    def test_is_address(self):
        assert is_address(address_from_int(1))
        assert not is_address("0x123")
        assert not is_address(None)

    def test_normalize(self):
        assert normalize_address("0x" + "AB" * 20) == "0x" + "ab" * 20
        with pytest.raises(ValueError):
            normalize_address("alice")

    def test_derive_is_deterministic(self):
        a = derive_address(address_from_int(1), 0)
        assert a == derive_address(address_from_int(1).upper().replace("0X", "0x"), 0)
        assert a != derive_address(address_from_int(1), 1)
        assert is_address(a)
