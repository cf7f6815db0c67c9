"""
verification.py - Carbon-credit ownership records

Non-fungible records of verified carbon-credit projects. When a loan swaps,
the loan contract mints one record per verified project attached to the
loan and assigns it to the lender.

Record fields are kept in a MetadataStore under the verified-project keys
(name, registry link, units as int256, geographic identifier), so a record
and the project it came from use the same encoding. A swap copies the
project's stored bytes as they are, including fields the owner rewrote
with raw bytes, so reading a record back is lenient:

    text fields   UTF-8, undecodable bytes replaced
    units         32 bytes as int256, anything shorter as big-endian unsigned
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .core import (
    Address, LedgerView,
    Unauthorized, ControlAlreadyTransferred,
    derive_address, normalize_address, is_address,
)
from .events import EventLog, Minted
from .keys import (
    _NYX_VERIFIED_PROJECT_NAMES,
    _NYX_VERIFIED_PROJECT_LINKS,
    _NYX_VERIFIED_PROJECT_UNITS,
    _NYX_VERIFIED_PROJECT_GEOGRAPHIC_IDENTIFIERS,
)
from .metadata import MetadataStore, MetadataValue, decode_int256


RECORD_KEYS: Tuple[str, ...] = (
    _NYX_VERIFIED_PROJECT_NAMES,
    _NYX_VERIFIED_PROJECT_LINKS,
    _NYX_VERIFIED_PROJECT_UNITS,
    _NYX_VERIFIED_PROJECT_GEOGRAPHIC_IDENTIFIERS,
)


def read_text(raw: bytes) -> str:
    return raw.decode("utf-8", errors="replace")


def read_units(raw: bytes) -> int:
    """Units as written by add_verified_project (int256) or by a raw update (short big-endian)."""
    if len(raw) == 32:
        return decode_int256(raw)
    return int.from_bytes(raw, "big")


@dataclass(frozen=True, slots=True)
class VerificationRecord:
    """Decoded view of one ownership record."""
    token_id: int
    owner: Address
    name: str
    link: str
    units: int
    geographic_identifier: str


class VerificationRegistry:
    """
    Owner-minted registry of carbon-credit ownership records.

    Token ids are issued sequentially from 1. Ownership of the registry is
    transferred exactly once, from the deployer to the loan contract that
    mints on swap.
    """

    def __init__(
        self,
        view: LedgerView,
        owner: str,
        name: str = "RWAVerification",
        symbol: str = "RWAV",
        event_log: Optional[EventLog] = None,
        address: Optional[str] = None,
    ):
        self.view = view
        self.name = name
        self.symbol = symbol
        self._owner: Address = normalize_address(owner)
        self._ownership_transferred = False
        self.address: Address = normalize_address(address) if address else derive_address(f"{owner}:{name}", 0)
        self.events = event_log if event_log is not None else EventLog()
        self._store = MetadataStore(name, self.address)

    @property
    def owner(self) -> Address:
        return self._owner

    def _require_owner(self, caller: str) -> None:
        if not is_address(caller) or caller.lower() != self._owner:
            raise Unauthorized(caller)

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        """
        Hand minting rights to a new owner. Allowed exactly once.

        Raises:
            Unauthorized: If caller is not the current owner
            ControlAlreadyTransferred: On a second transfer
        """
        self._require_owner(caller)
        if self._ownership_transferred:
            raise ControlAlreadyTransferred(f"{self.name}: ownership already transferred")
        self._owner = normalize_address(new_owner)
        self._ownership_transferred = True

    def mint_nft(
        self,
        caller: str,
        to: str,
        name: str,
        link: str,
        units: int,
        geographic_identifier: str,
    ) -> int:
        """
        Mint a record to `to` and return its token id.

        Raises:
            Unauthorized: If caller is not the owner
            ValueError: If units does not fit int256 or `to` is not an address
        """
        self._require_owner(caller)
        # encode first so a bad value mints nothing
        return self._mint(caller, to, [
            MetadataValue.string(name),
            MetadataValue.string(link),
            MetadataValue.int256(units),
            MetadataValue.string(geographic_identifier),
        ])

    def mint_raw(self, caller: str, to: str, fields: Tuple[bytes, bytes, bytes, bytes]) -> int:
        """
        Mint a record from already-encoded (name, link, units, geographic identifier) bytes.

        The bytes are stored unchanged; nothing is decoded.

        Raises:
            Unauthorized: If caller is not the owner
            ValueError: If there are not exactly four fields
        """
        self._require_owner(caller)
        if len(fields) != len(RECORD_KEYS):
            raise ValueError(f"A record has {len(RECORD_KEYS)} fields, got {len(fields)}")
        return self._mint(caller, to, [MetadataValue.opaque(raw) for raw in fields])

    def _mint(self, caller: str, to: str, values: List[MetadataValue]) -> int:
        recipient = normalize_address(to)
        token_id = self._store.mint(self.address, recipient)
        self._store.set_many(self.address, [(token_id, key, value) for key, value in zip(RECORD_KEYS, values)])
        name, link, units, geo = (value.raw for value in values)
        self.events.emit(
            self.address,
            self.view.current_time,
            Minted(recipient, token_id, read_text(name), read_text(link), read_units(units),
                   read_text(geo), (caller.lower(),)),
            token_id,
        )
        return token_id

    def get_nft(self, token_id: int) -> Tuple[bytes, bytes, bytes, bytes]:
        """Raw (name, link, units, geographic identifier) bytes of a record."""
        self._store.token_owner_of(token_id)
        name, link, units, geo = (self._store.get_data(token_id, key) for key in RECORD_KEYS)
        return name, link, units, geo

    def get_record(self, token_id: int) -> VerificationRecord:
        name, link, units, geo = self.get_nft(token_id)
        return VerificationRecord(
            token_id=token_id,
            owner=self.token_owner_of(token_id),
            name=read_text(name),
            link=read_text(link),
            units=read_units(units),
            geographic_identifier=read_text(geo),
        )

    def token_owner_of(self, token_id: int) -> Address:
        return self._store.token_owner_of(token_id)

    def tokens_of(self, owner: str) -> List[int]:
        target = normalize_address(owner)
        return [tid for tid in self._store.token_ids() if self._store.token_owner_of(tid) == target]

    @property
    def total_supply(self) -> int:
        return self._store.total_supply

    def balance_of(self, owner: str) -> int:
        return len(self.tokens_of(owner))

    def __repr__(self) -> str:
        return f"VerificationRegistry({self.name}, {self.total_supply} records, owner={self._owner})"
