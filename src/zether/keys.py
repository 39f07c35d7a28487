"""
Zether - Key Management

A BabyJubAccount holds the account's private scalar and its public point
y = sk * Base8. The public key is the account's on-ledger identifier; the
private key never leaves the process: it is excluded from to_dict() and masked
in repr().
"""

import hashlib
import logging
import secrets
from dataclasses import dataclass, field
from typing import Any

from .babyjub import CurveContext, Point, get_curve
from .encoding import public_key_hash
from .exceptions import InvalidKey

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BabyJubAccount:
    """An account keypair on BabyJubJub."""

    private_key: int = field(repr=False)
    public_key: Point

    @property
    def public_key_hash(self) -> str:
        return public_key_hash(self.public_key)

    def to_dict(self) -> dict[str, Any]:
        """Public view of the account. Never includes the private key."""
        return {
            "publicKey": self.public_key.to_strings(),
            "publicKeyHash": self.public_key_hash,
        }

    def __repr__(self) -> str:
        return f"BabyJubAccount(public_key={self.public_key.to_strings()}, private_key=<hidden>)"


def random_scalar(curve: CurveContext | None = None) -> int:
    """Draw a uniform non-zero scalar below the subgroup order."""
    curve = curve or get_curve()
    return secrets.randbelow(curve.order - 1) + 1


def _check_scalar(scalar: int, curve: CurveContext) -> int:
    if isinstance(scalar, bool) or not isinstance(scalar, int):
        raise InvalidKey(f"Private key must be an integer, got {type(scalar).__name__}")
    if not 0 < scalar < curve.order:
        raise InvalidKey("Private key must lie in [1, subgroup order)")
    return scalar


def from_private_key(private_key: int | str, curve: CurveContext | None = None) -> BabyJubAccount:
    """
    Rebuild an account from a known private key.

    Args:
        private_key: Scalar as int or decimal string
        curve: Optional explicit curve context

    Returns:
        The account with its derived public key

    Raises:
        InvalidKey: If the scalar is malformed or out of range
    """
    curve = curve or get_curve()
    if isinstance(private_key, str):
        text = private_key.strip()
        try:
            private_key = int(text, 16) if text.lower().startswith("0x") else int(text)
        except ValueError as e:
            raise InvalidKey("Private key string is not an integer") from e

    sk = _check_scalar(private_key, curve)
    return BabyJubAccount(private_key=sk, public_key=curve.mul_base(sk))


def generate(curve: CurveContext | None = None) -> BabyJubAccount:
    """Generate a fresh random account."""
    curve = curve or get_curve()
    account = from_private_key(random_scalar(curve), curve)
    logger.debug("Generated account", extra={"public_key_hash": account.public_key_hash})
    return account


def from_seed(seed: bytes | str, curve: CurveContext | None = None) -> BabyJubAccount:
    """
    Derive an account deterministically from a seed (for reproducible tests).

    The seed is hashed with SHA-512 and reduced into [1, order).
    """
    curve = curve or get_curve()
    if isinstance(seed, str):
        seed = seed.encode("utf-8")
    if not seed:
        raise InvalidKey("Seed cannot be empty")

    digest = hashlib.sha512(seed).digest()
    sk = int.from_bytes(digest, "big") % (curve.order - 1) + 1
    return from_private_key(sk, curve)


def validate_public_key(public_key: Point, curve: CurveContext | None = None) -> Point:
    """
    Ensure a foreign public key is a non-identity point of the prime subgroup.

    Raises:
        InvalidKey: If the point is off-curve, small-order or the identity
    """
    curve = curve or get_curve()
    if public_key.is_identity or not curve.in_subgroup(public_key):
        raise InvalidKey(
            "Public key is not a valid subgroup point",
            details={"public_key": public_key.to_strings()},
        )
    return public_key
