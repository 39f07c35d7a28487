"""
Zether - Proving Backend Port

The engine never runs a circuit itself. It hands a witness to a
ProvingBackend and gets back a Groth16-shaped proof plus the ordered public
signals, which the ledger verifier consumes as calldata.

InMemoryProvingBackend checks the circuit relations in the clear and emits a
deterministic proof bound to the public signals. It is a test double: its
proofs carry no zero-knowledge and only the in-memory ledger accepts them.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .babyjub import FIELD_MODULUS, CurveContext, Point, get_curve
from .encoding import keccak256
from .exceptions import BackendUnavailable, WitnessInvalid
from .monitoring.metrics import metrics
from .witness import BurnWitness, TransferWitness

logger = logging.getLogger(__name__)


class CircuitKind(Enum):
    """Circuits the proving backend can compile."""

    TRANSFER = "transfer"
    BURN = "burn"


# =============================================================================
# Proof payload
# =============================================================================


@dataclass(frozen=True)
class Proof:
    """
    Groth16 proof in snarkjs layout.

    pi_a and pi_c are [x, y, z] and pi_b is [[x0, x1], [y0, y1], [z0, z1]],
    all as decimal strings.
    """

    pi_a: list[str]
    pi_b: list[list[str]]
    pi_c: list[str]
    protocol: str = "groth16"
    curve: str = "bn128"

    def to_calldata(self) -> tuple[list[int], list[list[int]], list[list[int]]]:
        """
        Convert to verifier calldata (pA, pB, pC).

        The G2 coordinates of pi_b are swapped within each pair, which is how
        the EVM pairing precompile orders Fp2 elements.
        """
        p_a = [int(self.pi_a[0]), int(self.pi_a[1])]
        p_b = [
            [int(self.pi_b[0][1]), int(self.pi_b[0][0])],
            [int(self.pi_b[1][1]), int(self.pi_b[1][0])],
        ]
        p_c = [int(self.pi_c[0]), int(self.pi_c[1])]
        return p_a, p_b, p_c

    def flatten(self) -> list[int]:
        """The 8-word proof array: pA || pB || pC."""
        p_a, p_b, p_c = self.to_calldata()
        return [*p_a, *p_b[0], *p_b[1], *p_c]

    def to_dict(self) -> dict[str, Any]:
        return {
            "pi_a": list(self.pi_a),
            "pi_b": [list(pair) for pair in self.pi_b],
            "pi_c": list(self.pi_c),
            "protocol": self.protocol,
            "curve": self.curve,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Proof":
        return cls(
            pi_a=[str(v) for v in data["pi_a"]],
            pi_b=[[str(v) for v in pair] for pair in data["pi_b"]],
            pi_c=[str(v) for v in data["pi_c"]],
            protocol=data.get("protocol", "groth16"),
            curve=data.get("curve", "bn128"),
        )


@dataclass(frozen=True)
class ProofResult:
    """A proof plus the ordered public signals it was generated for."""

    proof: Proof
    public_signals: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"proof": self.proof.to_dict(), "publicSignals": list(self.public_signals)}


# =============================================================================
# Port
# =============================================================================


class ProvingBackend(ABC):
    """Compiles witnesses into proofs."""

    @abstractmethod
    def compile(self, kind: CircuitKind, witness: TransferWitness | BurnWitness) -> ProofResult:
        """
        Prove a witness against a circuit.

        Raises:
            WitnessInvalid: If the witness violates a circuit constraint
            BackendUnavailable: On infrastructure failure (retryable)
        """


# =============================================================================
# In-memory backend
# =============================================================================


class InMemoryProvingBackend(ProvingBackend):
    """
    Proving backend for tests.

    Evaluates the transfer and burn relations with the witness in the clear,
    then derives the proof words from keccak-256 over the circuit name and
    public signals.
    """

    def __init__(self, curve: CurveContext | None = None):
        self.curve = curve or get_curve()
        self._failures_pending = 0
        self._failure_message = "Proving backend unavailable"
        self.compiled: list[tuple[CircuitKind, list[str]]] = []

    # =========================================================================
    # Test Helpers
    # =========================================================================

    def fail_next(self, count: int = 1, message: str = "Proving backend unavailable") -> None:
        """Make the next `count` compile calls raise BackendUnavailable."""
        self._failures_pending = count
        self._failure_message = message

    @staticmethod
    def proof_for(kind: CircuitKind, public_signals: list[str]) -> Proof:
        """Deterministic proof for a circuit and its public signals."""
        seed = keccak256(kind.value.encode("utf-8") + b"|" + ",".join(public_signals).encode("ascii"))
        words = [
            str(int.from_bytes(keccak256(seed + bytes([i])), "big") % FIELD_MODULUS)
            for i in range(8)
        ]
        return Proof(
            pi_a=[words[0], words[1], "1"],
            pi_b=[[words[2], words[3]], [words[4], words[5]], ["1", "0"]],
            pi_c=[words[6], words[7], "1"],
        )

    @classmethod
    def verify(cls, kind: CircuitKind, proof: list[int], public_signals: list[str]) -> bool:
        """Check flattened calldata against the proof this backend would emit."""
        return list(proof) == cls.proof_for(kind, public_signals).flatten()

    # =========================================================================
    # Compile
    # =========================================================================

    def compile(self, kind: CircuitKind, witness: TransferWitness | BurnWitness) -> ProofResult:
        if self._failures_pending > 0:
            self._failures_pending -= 1
            metrics.increment("prover_unavailable", labels={"circuit": kind.value})
            raise BackendUnavailable(self._failure_message, circuit=kind.value)

        started = time.perf_counter()
        if kind is CircuitKind.TRANSFER:
            if not isinstance(witness, TransferWitness):
                raise WitnessInvalid("Transfer circuit needs a TransferWitness", circuit=kind.value)
            self._check_transfer(witness)
        elif kind is CircuitKind.BURN:
            if not isinstance(witness, BurnWitness):
                raise WitnessInvalid("Burn circuit needs a BurnWitness", circuit=kind.value)
            self._check_burn(witness)
        else:
            raise WitnessInvalid(f"Unknown circuit: {kind}")

        signals = witness.public_signals()
        result = ProofResult(proof=self.proof_for(kind, signals), public_signals=signals)
        self.compiled.append((kind, signals))

        metrics.increment("proofs_compiled", labels={"circuit": kind.value})
        metrics.timing("prove_ms", (time.perf_counter() - started) * 1000, labels={"circuit": kind.value})
        logger.debug("Compiled proof", extra={"circuit": kind.value})
        return result

    def _require(self, condition: bool, constraint: str, circuit: CircuitKind) -> None:
        if not condition:
            metrics.increment("witness_rejections", labels={"circuit": circuit.value})
            raise WitnessInvalid(
                f"Constraint not satisfied: {constraint}",
                circuit=circuit.value,
                details={"constraint": constraint},
            )

    def _is_commitment(self, point: Point, amount: int, blinding: int, key: Point) -> bool:
        curve = self.curve
        return point == curve.add(curve.mul_base(amount), curve.mul(key, blinding))

    def _check_transfer(self, w: TransferWitness) -> None:
        curve = self.curve
        kind = CircuitKind.TRANSFER

        self._require(w.sender_key == curve.mul_base(w.sk), "y == sk*G", kind)
        self._require(0 <= w.amount <= w.max_value, "0 <= sAmount <= MAX", kind)
        self._require(0 <= w.remaining_balance <= w.max_value, "0 <= bRem <= MAX", kind)
        self._require(self._is_commitment(w.c_send, w.amount, w.r, w.sender_key), "CS == sAmount*G + r*y", kind)
        self._require(
            self._is_commitment(w.c_receive, w.amount, w.r, w.receiver_key), "CRe == sAmount*G + r*yR", kind
        )
        self._require(w.d == curve.mul_base(w.r), "D == r*G", kind)

        remaining_cl = curve.sub(w.cl, w.c_send)
        remaining_cr = curve.sub(w.cr, w.d)
        self._require(
            curve.sub(remaining_cl, curve.mul(remaining_cr, w.sk)) == curve.mul_base(w.remaining_balance),
            "(CL - CS) - sk*(CR - D) == bRem*G",
            kind,
        )

    def _check_burn(self, w: BurnWitness) -> None:
        curve = self.curve
        kind = CircuitKind.BURN

        self._require(w.sender_key == curve.mul_base(w.sk), "y == sk*G", kind)
        self._require(
            curve.sub(w.cl, curve.mul(w.cr, w.sk)) == curve.mul_base(w.current_balance),
            "CL - sk*CR == cur_b*G",
            kind,
        )
        self._require(0 <= w.amount <= w.current_balance, "0 <= b <= cur_b", kind)
