"""
keys.py - Metadata key constants

Every loan field lives in the metadata store under a fixed 32-byte key.
The values below must not change: stored data written by existing
deployments is addressed by exactly these keys.

Project lists use array-style keys. The list key itself holds the element
count; element i lives under the first 16 bytes of the list key followed
by i as a 16-byte big-endian integer.
"""

from __future__ import annotations
from typing import Dict, Tuple


# ============================================================================
# LOAN FIELDS
# ============================================================================

_NYX_LENDER = "0x3d4ae42dee4156a448efc6820621c2bb68ddb71f0a85333f1c5ac246fc70519d"
_NYX_LOAN_STATUS = "0x4832cf0e94b7269e1cfb3481a8a7cb077570a24dba26f74290b300d0a11ff694"
_NYX_INITIAL_LOAN_AMOUNT = "0x6c0accaca6d414cfc7227817f26f010988cc73e73753912fdfaa53a8a58da914"
_NYX_BORROWER = "0x85749acc807d69123d0d5506d4f50090a074aeb2606b3c24031343bc2fe32ae9"
_NYX_LOAN_BALANCE = "0xa47b9177880a98391d6c9d9c68ce411d4e34d069439077790d5e35de0e929262"
_NYX_PAYMENT_INDEX = "0x2776cbcfd8490f894b0f24452a3c0cd4be0b007bd35e9a31d338400b8d8635ab"
_NYX_CARBON_CREDITS_BALANCE = "0x0fbaf537829b456ea9ce20bff34b6432649b4d01046f31011b072b99544cb3ba"

# Single carbon-credit project of a directly issued loan
_NYX_CADT_PROJECT_NAME = "0x98199bc97b113a64023a60ced2e5d698bfde533b56b4c126643fad99700b1f15"
_NYX_CADT_REGISTRY_LINK = "0x2ea835a0a77db3df9aa833b6e826b3f23a7f742036378de91f4fc345311e0945"


# ============================================================================
# VERIFIED PROJECT LISTS
# ============================================================================

_NYX_VERIFIED_PROJECT_NAMES = "0x71143f1158ce915633afa53e4290c2a1b637a8aa3ea7fb439ba131fb2d646808"
_NYX_VERIFIED_PROJECT_LINKS = "0x7836eb2501883488d409285c1540ef51e4c8bfa9a862734eb54ff84ce4cc46d7"
_NYX_VERIFIED_PROJECT_UNITS = "0xecce39cdb4f559d5ed120e7490f76f8b55f040094665424b10de24c65aeead6e"
_NYX_VERIFIED_PROJECT_GEOGRAPHIC_IDENTIFIERS = "0x438b3966c6fb3629949c4fd713334177cc151dfe49ac8ba2299b272e333c02eb"
_NYX_VERIFIED_PROJECT_VERIFICATION_LINKS = "0x6c1718525d902c3fbc20ecfb1209acee0fb762f9b0c0b2f6d1814c4627909110"

# Climate Action Data Trust registry entries
_NYX_CADT_PROJECT_NAMES = "0xed35f3c3f45131d15e0da6b3e0141e5ecba2388971467cc7087eb1823f9ee2a4"
_NYX_CADT_REGISTRY_LINKS = "0x3c7a639215f33d27dd9a36381aa3017841a781da636f0335f55fb57b07039e13"
_NYX_CADT_UNITS = "0x9b0cc9b9391ffaf421cc8a6c55b89eca9f92924d9a3c6968631e027a95a92f6f"

# Element order of a verified project record
VERIFIED_PROJECT_KEYS: Tuple[str, ...] = (
    _NYX_VERIFIED_PROJECT_NAMES,
    _NYX_VERIFIED_PROJECT_LINKS,
    _NYX_VERIFIED_PROJECT_UNITS,
    _NYX_VERIFIED_PROJECT_GEOGRAPHIC_IDENTIFIERS,
    _NYX_VERIFIED_PROJECT_VERIFICATION_LINKS,
)

CADT_PROJECT_KEYS: Tuple[str, ...] = (
    _NYX_CADT_PROJECT_NAMES,
    _NYX_CADT_REGISTRY_LINKS,
    _NYX_CADT_UNITS,
)

KEY_NAMES: Dict[str, str] = {
    _NYX_LENDER: "lender",
    _NYX_LOAN_STATUS: "loan_status",
    _NYX_INITIAL_LOAN_AMOUNT: "initial_loan_amount",
    _NYX_BORROWER: "borrower",
    _NYX_LOAN_BALANCE: "loan_balance",
    _NYX_PAYMENT_INDEX: "payment_index",
    _NYX_CARBON_CREDITS_BALANCE: "carbon_credits_balance",
    _NYX_CADT_PROJECT_NAME: "cadt_project_name",
    _NYX_CADT_REGISTRY_LINK: "cadt_registry_link",
    _NYX_VERIFIED_PROJECT_NAMES: "verified_project_names",
    _NYX_VERIFIED_PROJECT_LINKS: "verified_project_links",
    _NYX_VERIFIED_PROJECT_UNITS: "verified_project_units",
    _NYX_VERIFIED_PROJECT_GEOGRAPHIC_IDENTIFIERS: "verified_project_geographic_identifiers",
    _NYX_VERIFIED_PROJECT_VERIFICATION_LINKS: "verified_project_verification_links",
    _NYX_CADT_PROJECT_NAMES: "cadt_project_names",
    _NYX_CADT_REGISTRY_LINKS: "cadt_registry_links",
    _NYX_CADT_UNITS: "cadt_units",
}


def normalize_key(key: str) -> str:
    """
    Return the canonical lowercase form of a 32-byte hex key.

    Raises:
        ValueError: If key is not "0x" followed by 64 hex characters
    """
    if not isinstance(key, str) or not key.startswith("0x") or len(key) != 66:
        raise ValueError(f"Metadata key must be 0x-prefixed 32 bytes, got {key!r}")
    try:
        int(key[2:], 16)
    except ValueError:
        raise ValueError(f"Metadata key is not hex: {key!r}") from None
    return key.lower()


def array_element_key(list_key: str, index: int) -> str:
    """
    Derive the storage key of element `index` of an array-style list.

    Example:
        >>> array_element_key(_NYX_VERIFIED_PROJECT_NAMES, 0)[:34] == _NYX_VERIFIED_PROJECT_NAMES[:34]
        True
    """
    if index < 0 or index >= 2 ** 128:
        raise ValueError(f"Array index out of range: {index}")
    prefix = normalize_key(list_key)[:34]
    return prefix + format(index, "032x")


def describe_key(key: str) -> str:
    """Human-readable field name for a key (the key itself when unknown)."""
    return KEY_NAMES.get(key.lower(), key)
