"""
Zether - Schnorr Lock Authorization

An account can be locked to a single caller address. The lock request carries
a Schnorr signature proving knowledge of sk for y, bound to the ledger
contract and to the lock address so it cannot be replayed elsewhere:

    K = k*G
    c = keccak256(abi.encode(DOMAIN, contract, lock, y.x, y.y, K.x, K.y)) mod l
    s = (k - c*sk) mod l

The verifier recomputes K' = s*G + c*y and accepts iff the hash of K' gives c.
"""

import logging
from dataclasses import dataclass
from typing import Any

from .babyjub import CurveContext, Point, get_curve
from .encoding import POINT_TYPES, hash_to_scalar, keccak256, normalize_address, point_words
from .exceptions import InvalidKey
from .keys import random_scalar

logger = logging.getLogger(__name__)

# Domain separator hashed into every challenge
LOCK_DOMAIN = keccak256(b"zether.lock.v1")

# abi.encode(DOMAIN, contract, lock, y.x, y.y, K.x, K.y)
CHALLENGE_TYPES = ["bytes32", "address", "address", *POINT_TYPES, *POINT_TYPES]


@dataclass(frozen=True)
class LockAuthorization:
    """Schnorr challenge/response pair submitted with a lock request."""

    c: int
    s: int

    def to_dict(self) -> dict[str, Any]:
        return {"c": str(self.c), "s": str(self.s)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LockAuthorization":
        return cls(c=int(data["c"]), s=int(data["s"]))


def _challenge_hash(
    contract_address: str,
    lock_address: str,
    public_key: Point,
    commitment: Point,
    curve: CurveContext,
) -> int:
    return hash_to_scalar(
        curve.order,
        CHALLENGE_TYPES,
        [
            LOCK_DOMAIN,
            normalize_address(contract_address),
            normalize_address(lock_address),
            *point_words(public_key),
            *point_words(commitment),
        ],
    )


def challenge(
    contract_address: str,
    lock_address: str,
    public_key: Point,
    private_key: int,
    k: int | None = None,
    curve: CurveContext | None = None,
) -> LockAuthorization:
    """
    Sign a lock request.

    Args:
        contract_address: Ledger contract address
        lock_address: Address the account is being locked to
        public_key: Account public key y
        private_key: Account private key sk
        k: Nonce (drawn fresh when omitted; never reuse one)
        curve: Optional explicit curve context

    Returns:
        LockAuthorization(c, s)

    Raises:
        ValueError: If either address is malformed
        InvalidKey: If the supplied nonce is out of range
    """
    curve = curve or get_curve()
    if k is None:
        k = random_scalar(curve)
    elif not 0 < k < curve.order:
        raise InvalidKey("Schnorr nonce must lie in [1, subgroup order)")

    commitment = curve.mul_base(k)
    c = _challenge_hash(contract_address, lock_address, public_key, commitment, curve)
    s = (k - c * private_key) % curve.order
    return LockAuthorization(c=c, s=s)


def verify(
    auth: LockAuthorization,
    contract_address: str,
    lock_address: str,
    public_key: Point,
    curve: CurveContext | None = None,
) -> bool:
    """Check a lock authorization the way the ledger's verifier does."""
    curve = curve or get_curve()
    if not (0 <= auth.c < curve.order and 0 <= auth.s < curve.order):
        return False
    if public_key.is_identity or not curve.is_on_curve(public_key):
        return False

    try:
        commitment = curve.add(curve.mul_base(auth.s), curve.mul(public_key, auth.c))
        expected = _challenge_hash(contract_address, lock_address, public_key, commitment, curve)
    except ValueError:
        logger.debug("Lock authorization carries a malformed address")
        return False
    return expected == auth.c
