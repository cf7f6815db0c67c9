"""
test_verification_registry.py - Unit tests for carbon-credit ownership records

Tests:
- Owner-only minting with sequential ids
- Raw and decoded record reads
- One-time ownership transfer
- Minted events
"""

import pytest

from nyx import (
    VerificationRegistry, EventLog, Minted,
    Unauthorized, ControlAlreadyTransferred, NonExistentTokenId,
    address_from_int,
)
from nyx.metadata import decode_int256, decode_string


OWNER = address_from_int(0x1)
ALICE = address_from_int(0xA)
BOB = address_from_int(0xB)


@pytest.fixture
def registry(ledger):
    return VerificationRegistry(ledger, OWNER)


class TestMinting:
    """Tests for mint_nft."""

    def test_sequential_ids(self, registry):
        first = registry.mint_nft(OWNER, ALICE, "Kasigau", "https://registry/1", 100, "KE")
        second = registry.mint_nft(OWNER, BOB, "Rimba Raya", "https://registry/2", 50, "ID")
        assert (first, second) == (1, 2)
        assert registry.total_supply == 2

    def test_owner_only(self, registry):
        with pytest.raises(Unauthorized) as exc:
            registry.mint_nft(ALICE, ALICE, "x", "y", 1, "z")
        assert exc.value.caller == ALICE
        assert registry.total_supply == 0

    def test_raw_fields(self, registry):
        token_id = registry.mint_nft(OWNER, ALICE, "Kasigau", "https://registry/1", -5, "KE")
        name, link, units, geo = registry.get_nft(token_id)
        assert decode_string(name) == "Kasigau"
        assert decode_string(link) == "https://registry/1"
        assert len(units) == 32
        assert decode_int256(units) == -5
        assert decode_string(geo) == "KE"

    def test_decoded_record(self, registry):
        token_id = registry.mint_nft(OWNER, ALICE, "Kasigau", "link", 100, "KE")
        record = registry.get_record(token_id)
        assert record.owner == ALICE
        assert record.units == 100

    def test_units_out_of_range_mints_nothing(self, registry):
        with pytest.raises(ValueError):
            registry.mint_nft(OWNER, ALICE, "x", "y", 2 ** 255, "z")
        assert registry.total_supply == 0

    def test_unknown_token(self, registry):
        with pytest.raises(NonExistentTokenId):
            registry.get_nft(1)

    def test_holdings(self, registry):
        registry.mint_nft(OWNER, ALICE, "a", "a", 1, "a")
        registry.mint_nft(OWNER, BOB, "b", "b", 1, "b")
        registry.mint_nft(OWNER, ALICE, "c", "c", 1, "c")
        assert registry.tokens_of(ALICE) == [1, 3]
        assert registry.balance_of(BOB) == 1

    def test_minted_event(self, ledger):
        log = EventLog()
        registry = VerificationRegistry(ledger, OWNER, event_log=log)
        registry.mint_nft(OWNER, ALICE, "Kasigau", "link", 100, "KE")
        assert log.of_type(Minted) == [Minted(ALICE, 1, "Kasigau", "link", 100, "KE", (OWNER,))]


class TestRawMinting:
    """Tests for mint_raw."""

    def test_bytes_kept(self, ledger):
        log = EventLog()
        registry = VerificationRegistry(ledger, OWNER, event_log=log)
        fields = (b"Kasigau", b"\xff", b"\xfa", b"")
        token_id = registry.mint_raw(OWNER, ALICE, fields)
        assert registry.get_nft(token_id) == fields
        record = registry.get_record(token_id)
        assert (record.name, record.units, record.geographic_identifier) == ("Kasigau", 250, "")
        assert record.link == "\ufffd"
        assert log.last().units == 250

    def test_full_width_units_signed(self, registry):
        token_id = registry.mint_raw(OWNER, ALICE, (b"a", b"b", b"\xff" * 32, b"c"))
        assert registry.get_record(token_id).units == -1

    def test_owner_only(self, registry):
        with pytest.raises(Unauthorized):
            registry.mint_raw(ALICE, ALICE, (b"", b"", b"", b""))
        assert registry.total_supply == 0

    def test_field_count(self, registry):
        with pytest.raises(ValueError):
            registry.mint_raw(OWNER, ALICE, (b"a", b"b", b"c"))
        assert registry.total_supply == 0


class TestOwnership:
    """Tests for transfer_ownership."""

    def test_transfer_once(self, registry):
        registry.transfer_ownership(OWNER, ALICE)
        assert registry.owner == ALICE
        with pytest.raises(Unauthorized):
            registry.mint_nft(OWNER, BOB, "x", "y", 1, "z")
        with pytest.raises(ControlAlreadyTransferred):
            registry.transfer_ownership(ALICE, BOB)

    def test_non_owner_cannot_transfer(self, registry):
        with pytest.raises(Unauthorized):
            registry.transfer_ownership(ALICE, ALICE)

    def test_deterministic_address(self, ledger):
        assert VerificationRegistry(ledger, OWNER).address == VerificationRegistry(ledger, OWNER).address
