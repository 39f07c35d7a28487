"""
Zether - Confidential Account Client Engine

Client-side cryptography for a Zether-style confidential-value ledger:
balances live on the ledger as ElGamal ciphertexts over BabyJubJub, and every
spend is backed by a zero-knowledge proof built from a locally constructed
witness.

Core Components:
    - BabyJubAccount / keys: Account keypairs
    - codec: Encrypted balance encode/combine/decode (bounded discrete log)
    - epoch: Lazy-rollover simulation of the ledger view
    - witness: Transfer and burn witness construction
    - schnorr: Lock authorization signatures
    - Client: End-to-end fund/transfer/burn/lock orchestration

External collaborators (ports with in-memory doubles):
    - LedgerAdapter / InMemoryLedger
    - ProvingBackend / InMemoryProvingBackend

Usage:
    from zether import Client, InMemoryLedger, InMemoryProvingBackend

    ledger = InMemoryLedger(epoch_length=20, decimals=4)
    prover = InMemoryProvingBackend()
    alice, bob = Client(), Client()

    alice.fund(ledger, sender, "1")
    ledger.advance_to_next_epoch()
    alice.transfer(ledger, prover, sender, 250, bob.public_key)
"""

__version__ = "0.1.0"

from .babyjub import CurveContext, Point, get_curve
from .client import Client
from .codec import EncryptedBalance
from .config import ZetherConfig
from .epoch import LedgerAccountState
from .exceptions import (
    BackendUnavailable,
    BalanceDecodeFailure,
    ChainRejected,
    InvalidAmount,
    InvalidKey,
    Replay,
    StaleCounter,
    Unauthorized,
    WitnessInvalid,
    ZetherError,
)
from .keys import BabyJubAccount
from .ledger import ChainReceipt, InMemoryLedger, LedgerAdapter, SubmissionKind
from .prover import CircuitKind, InMemoryProvingBackend, Proof, ProofResult, ProvingBackend
from .schnorr import LockAuthorization
from .witness import BurnWitness, TransferWitness


def get_metrics():
    """
    Get the global metrics collector.

    Example:
        metrics = get_metrics()
        metrics.get_counter("proofs_compiled", labels={"circuit": "transfer"})
    """
    from .monitoring import metrics
    return metrics


def get_logger(name: str):
    """
    Get a structured logger for a module.

    Args:
        name: Logger name (typically __name__)
    """
    from .monitoring import get_logger as _get_logger
    return _get_logger(name)


# =============================================================================
# Public API
# =============================================================================

__all__ = [
    # Version
    "__version__",
    # Curve and keys
    "CurveContext",
    "Point",
    "get_curve",
    "BabyJubAccount",
    # Balances and witnesses
    "EncryptedBalance",
    "LedgerAccountState",
    "TransferWitness",
    "BurnWitness",
    "LockAuthorization",
    # Orchestration
    "Client",
    "ZetherConfig",
    # Ports
    "LedgerAdapter",
    "InMemoryLedger",
    "SubmissionKind",
    "ChainReceipt",
    "ProvingBackend",
    "InMemoryProvingBackend",
    "CircuitKind",
    "Proof",
    "ProofResult",
    # Errors
    "ZetherError",
    "InvalidAmount",
    "InvalidKey",
    "BalanceDecodeFailure",
    "ChainRejected",
    "Unauthorized",
    "StaleCounter",
    "Replay",
    "WitnessInvalid",
    "BackendUnavailable",
    # Accessors
    "get_metrics",
    "get_logger",
]
