"""
metadata.py - Per-Token Keyed Metadata Store

Generic keyed byte storage attached to token identifiers. Loan state
(lender, borrower, status, balance, payment index, credits balance and the
verified-project lists) lives here, addressed by (token_id, key).

Values are stored as tagged variants: MetadataValue(kind, raw). The raw
bytes follow fixed wire conventions so stored data stays compatible with
existing deployments:

    ADDRESS   exactly 20 bytes
    UINT256   big-endian unsigned, written as 32 bytes, read from 1..32 bytes
    INT256    exactly 32 bytes, two's complement
    STRING    UTF-8
    BYTES     opaque (raw writes through set_data)

Decoding never guesses: a structurally invalid value raises
MetadataDecodeError.

Only the controller may write. Control is handed over exactly once, from
the deployer to the consuming loan contract.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple, Any, Iterable

from .core import (
    Address,
    Unauthorized, MetadataDecodeError, NonExistentTokenId,
    ControlAlreadyTransferred,
    is_address, normalize_address,
)
from .keys import normalize_key, array_element_key


UINT256_MAX = 2 ** 256 - 1
INT256_MIN = -(2 ** 255)
INT256_MAX = 2 ** 255 - 1


# ============================================================================
# TAGGED VALUES
# ============================================================================

class ValueKind(Enum):
    """Type tag of a stored metadata value."""
    ADDRESS = "address"
    UINT256 = "uint256"
    INT256 = "int256"
    STRING = "string"
    BYTES = "bytes"


@dataclass(frozen=True, slots=True)
class MetadataValue:
    """
    A stored value together with the type it was written as.

    Attributes:
        kind: Type tag recorded at write time
        raw: Encoded bytes exactly as stored
    """
    kind: ValueKind
    raw: bytes

    def __post_init__(self):
        if isinstance(self.raw, bytearray):
            object.__setattr__(self, 'raw', bytes(self.raw))
        if not isinstance(self.raw, bytes):
            raise ValueError(f"MetadataValue raw must be bytes, got {type(self.raw)}")

    def decode(self) -> Any:
        """Decode according to the recorded kind (BYTES returns raw)."""
        decoder = _DECODERS.get(self.kind)
        if decoder is None:
            return self.raw
        return decoder(self.raw)

    @classmethod
    def address(cls, value: str) -> MetadataValue:
        return cls(ValueKind.ADDRESS, encode_address(value))

    @classmethod
    def uint256(cls, value: int) -> MetadataValue:
        return cls(ValueKind.UINT256, encode_uint256(value))

    @classmethod
    def int256(cls, value: int) -> MetadataValue:
        return cls(ValueKind.INT256, encode_int256(value))

    @classmethod
    def string(cls, value: str) -> MetadataValue:
        return cls(ValueKind.STRING, encode_string(value))

    @classmethod
    def opaque(cls, value: bytes) -> MetadataValue:
        return cls(ValueKind.BYTES, bytes(value))


# ============================================================================
# ENCODERS
# ============================================================================

def encode_address(value: str) -> bytes:
    """Encode a 0x-prefixed address as its 20 raw bytes."""
    return bytes.fromhex(normalize_address(value)[2:])


def encode_uint256(value: int) -> bytes:
    """Encode an unsigned integer as 32 big-endian bytes."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"uint256 must be int, got {type(value)}")
    if value < 0 or value > UINT256_MAX:
        raise ValueError(f"uint256 out of range: {value}")
    return value.to_bytes(32, "big")


def encode_int256(value: int) -> bytes:
    """Encode a signed integer as 32 bytes two's complement."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"int256 must be int, got {type(value)}")
    if value < INT256_MIN or value > INT256_MAX:
        raise ValueError(f"int256 out of range: {value}")
    return value.to_bytes(32, "big", signed=True)


def encode_string(value: str) -> bytes:
    """Encode a string as UTF-8."""
    if not isinstance(value, str):
        raise ValueError(f"string must be str, got {type(value)}")
    return value.encode("utf-8")


# ============================================================================
# DECODERS
# ============================================================================

def decode_address(raw: bytes) -> Address:
    if len(raw) != 20:
        raise MetadataDecodeError(f"address needs 20 bytes, got {len(raw)}")
    return "0x" + raw.hex()


def decode_uint256(raw: bytes) -> int:
    if not 1 <= len(raw) <= 32:
        raise MetadataDecodeError(f"uint256 needs 1..32 bytes, got {len(raw)}")
    return int.from_bytes(raw, "big")


def decode_int256(raw: bytes) -> int:
    if len(raw) != 32:
        raise MetadataDecodeError(f"int256 needs 32 bytes, got {len(raw)}")
    return int.from_bytes(raw, "big", signed=True)


def decode_string(raw: bytes) -> str:
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MetadataDecodeError(f"string is not valid UTF-8: {e}") from e


_DECODERS = {
    ValueKind.ADDRESS: decode_address,
    ValueKind.UINT256: decode_uint256,
    ValueKind.INT256: decode_int256,
    ValueKind.STRING: decode_string,
}


# ============================================================================
# STORE
# ============================================================================

# A single pending write: (token_id, key, value)
MetadataWrite = Tuple[int, str, MetadataValue]


class MetadataStore:
    """
    Keyed metadata storage for a collection of tokens.

    Tokens are minted sequentially from 1. Reads are open to everyone;
    writes and mints require the controller.

    Example:
        store = MetadataStore("LoanTxData", deployer)
        token_id = store.mint(deployer, deployer)
        store.set_uint256(deployer, token_id, _NYX_LOAN_STATUS, 0)
        store.transfer_control(deployer, loan_contract_address)
    """

    def __init__(self, name: str, controller: str):
        self.name = name
        self._controller: Address = normalize_address(controller)
        self._control_transferred = False
        self._data: Dict[Tuple[int, str], MetadataValue] = {}
        self._owners: Dict[int, Address] = {}
        self._next_token_id = 1

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    @property
    def controller(self) -> Address:
        return self._controller

    @property
    def control_transferred(self) -> bool:
        return self._control_transferred

    def _require_controller(self, caller: str) -> None:
        if not is_address(caller) or caller.lower() != self._controller:
            raise Unauthorized(caller)

    def transfer_control(self, caller: str, new_controller: str) -> None:
        """
        Hand write access to a new controller. Allowed exactly once.

        Raises:
            Unauthorized: If caller is not the current controller
            ControlAlreadyTransferred: On a second transfer
        """
        self._require_controller(caller)
        if self._control_transferred:
            raise ControlAlreadyTransferred(f"{self.name}: control already transferred")
        self._controller = normalize_address(new_controller)
        self._control_transferred = True

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def mint(self, caller: str, to: str) -> int:
        """Issue the next token id to `to` and return it."""
        self._require_controller(caller)
        owner = normalize_address(to)
        token_id = self._next_token_id
        self._next_token_id += 1
        self._owners[token_id] = owner
        return token_id

    def exists(self, token_id: int) -> bool:
        return token_id in self._owners

    def token_owner_of(self, token_id: int) -> Address:
        if token_id not in self._owners:
            raise NonExistentTokenId(f"Token {token_id} does not exist")
        return self._owners[token_id]

    def token_ids(self) -> List[int]:
        return sorted(self._owners)

    @property
    def total_supply(self) -> int:
        return len(self._owners)

    def _require_token(self, token_id: int) -> None:
        if token_id not in self._owners:
            raise NonExistentTokenId(f"Token {token_id} does not exist")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def set_data(self, caller: str, token_id: int, key: str, raw: bytes) -> None:
        """
        Overwrite the value at (token_id, key) with opaque bytes.

        No content validation: typing is the caller's responsibility.
        """
        self.set_value(caller, token_id, key, MetadataValue.opaque(raw))

    def set_value(self, caller: str, token_id: int, key: str, value: MetadataValue) -> None:
        self._require_controller(caller)
        self._require_token(token_id)
        self._data[(token_id, normalize_key(key))] = value

    def set_address(self, caller: str, token_id: int, key: str, value: str) -> None:
        self.set_value(caller, token_id, key, MetadataValue.address(value))

    def set_uint256(self, caller: str, token_id: int, key: str, value: int) -> None:
        self.set_value(caller, token_id, key, MetadataValue.uint256(value))

    def set_int256(self, caller: str, token_id: int, key: str, value: int) -> None:
        self.set_value(caller, token_id, key, MetadataValue.int256(value))

    def set_string(self, caller: str, token_id: int, key: str, value: str) -> None:
        self.set_value(caller, token_id, key, MetadataValue.string(value))

    def set_many(self, caller: str, writes: Iterable[MetadataWrite]) -> None:
        """
        Apply a batch of writes atomically.

        Every write is checked before any is applied, so a bad token id or
        key anywhere in the batch leaves the store untouched.
        """
        self._require_controller(caller)
        staged: List[Tuple[Tuple[int, str], MetadataValue]] = []
        for token_id, key, value in writes:
            self._require_token(token_id)
            if not isinstance(value, MetadataValue):
                raise ValueError(f"Expected MetadataValue, got {type(value)}")
            staged.append(((token_id, normalize_key(key)), value))
        for slot, value in staged:
            self._data[slot] = value

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_value(self, token_id: int, key: str) -> Optional[MetadataValue]:
        """Return the tagged value at (token_id, key), or None if unset."""
        return self._data.get((token_id, normalize_key(key)))

    def get_data(self, token_id: int, key: str) -> bytes:
        """Return the raw bytes at (token_id, key); empty bytes if unset."""
        value = self.get_value(token_id, key)
        return value.raw if value is not None else b""

    def get_decoded_address(self, token_id: int, key: str) -> Address:
        return decode_address(self.get_data(token_id, key))

    def get_decoded_uint256(self, token_id: int, key: str) -> int:
        return decode_uint256(self.get_data(token_id, key))

    def get_decoded_int256(self, token_id: int, key: str) -> int:
        return decode_int256(self.get_data(token_id, key))

    def get_decoded_string(self, token_id: int, key: str) -> str:
        return decode_string(self.get_data(token_id, key))

    def keys_of(self, token_id: int) -> List[str]:
        """All keys set for a token, sorted."""
        return sorted(key for (tid, key) in self._data if tid == token_id)

    # ------------------------------------------------------------------
    # Array-style lists
    # ------------------------------------------------------------------

    def array_length(self, token_id: int, list_key: str) -> int:
        """Number of elements in an array-style list (0 when never written)."""
        raw = self.get_data(token_id, list_key)
        return decode_uint256(raw) if raw else 0

    def array_element(self, token_id: int, list_key: str, index: int) -> bytes:
        return self.get_data(token_id, array_element_key(list_key, index))

    def __repr__(self) -> str:
        return (
            f"MetadataStore({self.name}, {self.total_supply} tokens, "
            f"{len(self._data)} entries, controller={self._controller})"
        )
