"""
Zether - Exception Hierarchy

Every error raised by the account engine derives from ZetherError and carries
a structured ErrorContext for logging and monitoring.

Propagation rules:
- InvalidAmount / InvalidKey are raised while building inputs, before any
  state-mutating ledger call.
- BalanceDecodeFailure means client and ledger state are out of sync; it is
  fatal for the account and never retried.
- ChainRejected (and its Unauthorized / StaleCounter subclasses) wrap a ledger
  revert and keep the revert reason verbatim.
- WitnessInvalid is fatal; BackendUnavailable is the only retryable class.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .retry import NonRetryableError, RetryableError


class ErrorSeverity(Enum):
    """Severity levels for engine errors."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class ErrorContext:
    """Structured context for error tracking and debugging."""
    component: str
    action: str
    timestamp: str = field(default_factory=lambda: datetime.utcnow().isoformat() + "Z")
    details: dict[str, Any] = field(default_factory=dict)
    severity: ErrorSeverity = ErrorSeverity.MEDIUM

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "component": self.component,
            "action": self.action,
            "timestamp": self.timestamp,
            "details": self.details,
            "severity": self.severity.value
        }


class ZetherError(Exception):
    """
    Base exception for all account engine errors.

    Includes structured error context for improved debugging
    and integration with monitoring systems.
    """

    def __init__(
        self,
        message: str,
        component: str = "unknown",
        action: str = "unknown",
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None
    ):
        super().__init__(message)
        self.message = message
        self.context = ErrorContext(
            component=component,
            action=action,
            severity=severity,
            details=details or {}
        )
        self.cause = cause

        if cause:
            self.__cause__ = cause

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        result = {
            "error_type": type(self).__name__,
            "message": self.message,
            **self.context.to_dict()
        }
        if self.cause:
            result["cause"] = {
                "type": type(self.cause).__name__,
                "message": str(self.cause)
            }
        return result

    def __str__(self) -> str:
        base = f"[{self.context.component}:{self.context.action}] {self.message}"
        if self.cause:
            base += f" (caused by: {self.cause})"
        return base


# =============================================================================
# Local construction errors
# =============================================================================


class InvalidAmount(ZetherError, NonRetryableError):
    """Amount is negative, above MAX, above the current balance, or malformed."""

    def __init__(
        self,
        message: str,
        amount: Any = None,
        bound: int | None = None,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            component="witness",
            action="validate_amount",
            severity=ErrorSeverity.LOW,
            details={"amount": str(amount), "bound": bound, **(details or {})}
        )
        self.amount = amount
        self.bound = bound


class InvalidKey(ZetherError, NonRetryableError):
    """A scalar or public key is outside the curve's valid range."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            component="keys",
            action="validate_key",
            severity=ErrorSeverity.MEDIUM,
            details=details
        )


class BalanceDecodeFailure(ZetherError, NonRetryableError):
    """The bounded discrete-log search found no plaintext in [0, MAX]."""

    def __init__(
        self,
        message: str,
        max_value: int | None = None,
        giant_steps: int | None = None,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            component="codec",
            action="decode",
            severity=ErrorSeverity.CRITICAL,
            details={"max_value": max_value, "giant_steps": giant_steps, **(details or {})}
        )
        self.max_value = max_value


# =============================================================================
# Ledger errors
# =============================================================================


class ChainRejected(ZetherError, NonRetryableError):
    """A ledger write reverted. The reason string is kept verbatim."""

    def __init__(
        self,
        reason: str,
        kind: str | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None
    ):
        super().__init__(
            message=reason,
            component="ledger",
            action=kind or "submit",
            severity=ErrorSeverity.HIGH,
            details={"reason": reason, **(details or {})},
            cause=cause
        )
        self.reason = reason
        self.kind = kind


class Unauthorized(ChainRejected):
    """The account is locked to a different caller address."""
    pass


class StaleCounter(ChainRejected):
    """The counter bound into the proof no longer matches the ledger (replay or race)."""
    pass


Replay = StaleCounter

UNAUTHORIZED_REASONS = ("Not authorized",)
STALE_COUNTER_REASONS = ("Stale counter", "Invalid counter", "Replay")


def chain_rejection(reason: str, kind: str | None = None) -> ChainRejected:
    """
    Build the most specific ChainRejected subclass for a revert reason.

    Args:
        reason: Revert reason reported by the ledger
        kind: Submission kind that reverted

    Returns:
        Unauthorized, StaleCounter or a plain ChainRejected
    """
    if any(marker in reason for marker in UNAUTHORIZED_REASONS):
        return Unauthorized(reason, kind=kind)
    if any(marker in reason for marker in STALE_COUNTER_REASONS):
        return StaleCounter(reason, kind=kind)
    return ChainRejected(reason, kind=kind)


# =============================================================================
# Proving backend errors
# =============================================================================


class WitnessInvalid(ZetherError, NonRetryableError):
    """The proving backend found unsatisfied constraints in a witness."""

    def __init__(
        self,
        message: str,
        circuit: str | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None
    ):
        super().__init__(
            message=message,
            component="prover",
            action=circuit or "compile",
            severity=ErrorSeverity.CRITICAL,
            details=details,
            cause=cause
        )
        self.circuit = circuit


class BackendUnavailable(ZetherError, RetryableError):
    """Proving infrastructure failure. Safe to retry."""

    def __init__(
        self,
        message: str,
        circuit: str | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None
    ):
        super().__init__(
            message=message,
            component="prover",
            action=circuit or "compile",
            severity=ErrorSeverity.MEDIUM,
            details=details,
            cause=cause
        )
        self.circuit = circuit
