"""
Zether - Encrypted Balance Codec

ElGamal-style encryption "in the exponent" over BabyJubJub:

    CL = m*G + r*y
    CR = r*G

Ciphertexts under the same key add point-wise, so deposits, transfers and
pending deltas can be folded together without decrypting. Decryption
recovers m*G = CL - sk*CR and then solves a discrete log that is only
tractable because m is bounded by MAX: a baby-step/giant-step search over a
precomputed table answers in O(sqrt(MAX)) group operations.
"""

import logging
import math
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from .babyjub import IDENTITY, CurveContext, Point, get_curve
from .exceptions import BalanceDecodeFailure, InvalidAmount
from .keys import random_scalar
from .monitoring.metrics import metrics

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EncryptedBalance:
    """A ciphertext (CL, CR). Also used for pending deltas."""

    cl: Point
    cr: Point

    def to_strings(self) -> list[list[str]]:
        return [self.cl.to_strings(), self.cr.to_strings()]

    @classmethod
    def from_strings(cls, data: Any) -> "EncryptedBalance":
        """Parse [[CLx, CLy], [CRx, CRy]] or {"CL": ..., "CR": ...}."""
        if isinstance(data, EncryptedBalance):
            return data
        if isinstance(data, dict):
            return cls(Point.from_strings(data["CL"]), Point.from_strings(data["CR"]))
        cl, cr = data
        return cls(Point.from_strings(cl), Point.from_strings(cr))

    @classmethod
    def zero(cls) -> "EncryptedBalance":
        """The encryption of 0 with r = 0 (a never-touched account)."""
        return cls(IDENTITY, IDENTITY)


def encode(
    amount: int,
    public_key: Point,
    r: int,
    curve: CurveContext | None = None,
) -> EncryptedBalance:
    """
    Encrypt an amount under a public key with blinding scalar r.

    r must be fresh for every call; reusing it links ciphertexts.

    Raises:
        InvalidAmount: If amount is not a non-negative int
    """
    curve = curve or get_curve()
    if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
        raise InvalidAmount("Amount to encode must be a non-negative integer", amount=amount)

    cl = curve.add(curve.mul_base(amount), curve.mul(public_key, r))
    cr = curve.mul_base(r)
    return EncryptedBalance(cl, cr)


def encrypt(amount: int, public_key: Point, curve: CurveContext | None = None) -> EncryptedBalance:
    """Encrypt with a freshly drawn blinding scalar."""
    curve = curve or get_curve()
    return encode(amount, public_key, random_scalar(curve), curve)


def combine(
    ct1: EncryptedBalance,
    ct2: EncryptedBalance,
    curve: CurveContext | None = None,
) -> EncryptedBalance:
    """Homomorphic addition: Enc(a) + Enc(b) = Enc(a + b)."""
    curve = curve or get_curve()
    return EncryptedBalance(curve.add(ct1.cl, ct2.cl), curve.add(ct1.cr, ct2.cr))


def subtract(
    ct1: EncryptedBalance,
    ct2: EncryptedBalance,
    curve: CurveContext | None = None,
) -> EncryptedBalance:
    """Homomorphic subtraction: Enc(a) - Enc(b) = Enc(a - b)."""
    curve = curve or get_curve()
    return EncryptedBalance(curve.sub(ct1.cl, ct2.cl), curve.sub(ct1.cr, ct2.cr))


def combine_all(ciphertexts, curve: CurveContext | None = None) -> EncryptedBalance:
    """Fold any number of ciphertexts; the empty fold is the zero ciphertext."""
    curve = curve or get_curve()
    total = EncryptedBalance.zero()
    for ct in ciphertexts:
        total = combine(total, ct, curve)
    return total


# =============================================================================
# Bounded discrete log (baby-step / giant-step)
# =============================================================================


class DiscreteLogTable:
    """
    Baby-step table {j*G: j for j in [0, size)} and the giant stride size*G.

    To solve m*G = B with m in [0, max_value]: write m = i*size + j, then
    walk B - i*size*G for i = 0, 1, ... and look each point up in the table.
    The walk is capped at ceil((max_value + 1) / size) giant steps.
    """

    def __init__(self, size: int, curve: CurveContext | None = None):
        if size < 1:
            raise ValueError("Table size must be at least 1")
        self.curve = curve or get_curve()
        self.size = size

        started = time.perf_counter()
        table: dict[tuple[int, int], int] = {}
        point = IDENTITY
        for j in range(size):
            table[point.to_tuple()] = j
            point = self.curve.add(point, self.curve.base)
        self._table = table
        # point is now size*G
        self._giant_stride = self.curve.neg(point)

        elapsed_ms = (time.perf_counter() - started) * 1000
        metrics.timing("dlog_table_build_ms", elapsed_ms)
        logger.debug("Built discrete log table", extra={"size": size, "elapsed_ms": round(elapsed_ms, 2)})

    def giant_steps_for(self, max_value: int) -> int:
        return (max_value + 1 + self.size - 1) // self.size

    def solve(self, target: Point, max_value: int) -> tuple[int | None, int]:
        """
        Find m in [0, max_value] with m*G == target.

        Returns:
            Tuple of (m or None, giant steps taken)
        """
        limit = self.giant_steps_for(max_value)
        current = target
        for i in range(limit):
            j = self._table.get(current.to_tuple())
            if j is not None:
                m = i * self.size + j
                if m <= max_value:
                    return m, i + 1
                return None, i + 1
            current = self.curve.add(current, self._giant_stride)
        return None, limit


def default_table_size(max_value: int) -> int:
    """ceil(sqrt(MAX + 1)) balances table memory against giant steps."""
    return max(1, math.isqrt(max_value) + 1)


@lru_cache(maxsize=8)
def get_discrete_log_table(size: int, curve: CurveContext | None = None) -> DiscreteLogTable:
    """Get a cached table for a given size."""
    return DiscreteLogTable(size, curve)


def decrypt_to_point(ct: EncryptedBalance, private_key: int, curve: CurveContext | None = None) -> Point:
    """Strip the blinding: B = CL - sk*CR = m*G."""
    curve = curve or get_curve()
    return curve.sub(ct.cl, curve.mul(ct.cr, private_key))


def decode(
    ct: EncryptedBalance,
    private_key: int,
    max_value: int,
    table_size: int | None = None,
    curve: CurveContext | None = None,
) -> int:
    """
    Decrypt a ciphertext to its integer balance in [0, max_value].

    Args:
        ct: The ciphertext
        private_key: Account private key
        max_value: Protocol ceiling MAX
        table_size: Baby-step table size (defaults to isqrt(MAX) + 1)
        curve: Optional explicit curve context

    Returns:
        The plaintext balance

    Raises:
        BalanceDecodeFailure: If no m in range matches; client and ledger
            state have diverged and retrying will not help
    """
    curve = curve or get_curve()
    if max_value < 0:
        raise ValueError("max_value must be non-negative")

    table = get_discrete_log_table(table_size or default_table_size(max_value), curve)
    target = decrypt_to_point(ct, private_key, curve)

    started = time.perf_counter()
    value, giant_steps = table.solve(target, max_value)
    elapsed_ms = (time.perf_counter() - started) * 1000

    metrics.timing("decode_ms", elapsed_ms)
    metrics.set_gauge("decode_last_giant_steps", giant_steps)

    if value is None:
        metrics.increment("decode_failures")
        logger.error(
            "Balance ciphertext is undecodable for this key",
            extra={"max_value": max_value, "giant_steps": giant_steps},
        )
        raise BalanceDecodeFailure(
            "No plaintext in [0, MAX] matches the ciphertext",
            max_value=max_value,
            giant_steps=giant_steps,
        )

    logger.debug("Decoded balance", extra={"giant_steps": giant_steps, "elapsed_ms": round(elapsed_ms, 2)})
    return value
