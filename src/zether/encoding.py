"""
Zether - Wire Encodings

Encodings shared with the ledger's verifier:
- keccak-256 digests
- ABI encoding of static words (uint256 / address / bytes32)
- EIP-55 checksummed addresses
- public-key hash used as the counter lookup key

Any change in byte order or word layout here makes signatures and counters
computed by the client disagree with the ledger.
"""

import secrets
from collections.abc import Sequence
from typing import Any

from eth_abi import encode as abi_encode
from eth_utils import is_address, keccak, to_checksum_address

from .babyjub import Point

ADDRESS_SIZE = 20

# abi.encode(y.x, y.y)
POINT_TYPES = ["uint256", "uint256"]


def keccak256(data: bytes) -> bytes:
    """Compute the keccak-256 digest (Ethereum flavour, not SHA3-256)."""
    return keccak(primitive=data)


# =============================================================================
# Addresses
# =============================================================================


def normalize_address(address: str) -> str:
    """
    Validate and checksum an address.

    Mixed-case input must already carry a valid checksum.

    Raises:
        ValueError: If the input is not a 20-byte hex address or its
            checksum is wrong
    """
    if not isinstance(address, str) or not is_address(address):
        raise ValueError(f"Invalid address: {address!r}")
    return to_checksum_address(address)


def random_address() -> str:
    """Generate a random checksummed address."""
    return to_checksum_address("0x" + secrets.token_hex(ADDRESS_SIZE))


# =============================================================================
# Points
# =============================================================================


def point_words(point: Point) -> list[int]:
    return [point.x, point.y]


def public_key_hash(public_key: Point) -> str:
    """Counter lookup key: keccak256(abi.encode(y.x, y.y)) as 0x-hex."""
    return "0x" + keccak256(abi_encode(POINT_TYPES, point_words(public_key))).hex()


def hash_to_scalar(order: int, types: Sequence[str], values: Sequence[Any]) -> int:
    """Hash ABI-encoded values with keccak-256 and reduce modulo a group order."""
    return int.from_bytes(keccak256(abi_encode(list(types), list(values))), "big") % order
