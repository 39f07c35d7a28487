"""
Zether - Retry for Proving-Backend Calls

Only proving-backend failures that are explicitly retryable
(BackendUnavailable) are retried, with exponential backoff and jitter.
Ledger reads and writes are never retried: a rejected or failed chain call
reaches the caller unchanged.

Environment Variables (read by RetryConfig.from_env):
    RETRY_MAX_ATTEMPTS=3
    RETRY_BASE_DELAY=1.0
    RETRY_MAX_DELAY=60.0
    RETRY_EXPONENTIAL_BASE=2.0
    RETRY_JITTER=0.1
"""

import logging
import os
import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

ENV_VARS = (
    "RETRY_MAX_ATTEMPTS",
    "RETRY_BASE_DELAY",
    "RETRY_MAX_DELAY",
    "RETRY_EXPONENTIAL_BASE",
    "RETRY_JITTER",
)


class RetryableError(Exception):
    """Marker base for transient failures."""


class NonRetryableError(Exception):
    """Marker base for failures that retrying cannot fix."""


@dataclass(frozen=True)
class RetryConfig:
    """Backoff policy: delay = base_delay * exponential_base**attempt, capped at max_delay."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: float = 0.1  # fraction of the delay, applied as +/-
    retryable_exceptions: tuple = (RetryableError,)

    @classmethod
    def from_env(cls) -> "RetryConfig":
        return cls(
            max_retries=int(os.getenv("RETRY_MAX_ATTEMPTS", "3")),
            base_delay=float(os.getenv("RETRY_BASE_DELAY", "1.0")),
            max_delay=float(os.getenv("RETRY_MAX_DELAY", "60.0")),
            exponential_base=float(os.getenv("RETRY_EXPONENTIAL_BASE", "2.0")),
            jitter=float(os.getenv("RETRY_JITTER", "0.1")),
        )


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Backoff before retry number `attempt + 1` (attempt is 0-indexed)."""
    delay = min(config.base_delay * config.exponential_base**attempt, config.max_delay)
    if config.jitter > 0:
        delay *= 1 + config.jitter * (2 * random.random() - 1)
    return max(0.0, delay)


def is_retryable_exception(exception: Exception, retryable_types: tuple) -> bool:
    """NonRetryableError always wins; otherwise RetryableError or a listed type retries."""
    if isinstance(exception, NonRetryableError):
        return False
    return isinstance(exception, (RetryableError, *retryable_types))


def retry_call(
    func: Callable,
    args: tuple = (),
    kwargs: dict | None = None,
    config: RetryConfig | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Any:
    """
    Call `func`, retrying retryable failures up to config.max_retries times.

    Args:
        func: Function to call
        args: Positional arguments
        kwargs: Keyword arguments
        config: Retry policy (defaults to RetryConfig())
        sleep: Sleep function (injectable for tests)

    Returns:
        Result of the first successful call

    Raises:
        The last exception once retries are exhausted, or the first
        non-retryable one
    """
    config = config or RetryConfig()
    kwargs = kwargs or {}

    attempt = 0
    while True:
        try:
            return func(*args, **kwargs)
        except Exception as e:
            if not is_retryable_exception(e, config.retryable_exceptions) or attempt >= config.max_retries:
                raise
            delay = calculate_delay(attempt, config)
            attempt += 1
            logger.warning(
                "Retrying after transient failure",
                extra={"attempt": attempt, "max_retries": config.max_retries, "delay_s": round(delay, 3), "error": str(e)},
            )
            sleep(delay)
