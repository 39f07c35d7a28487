"""
Zether - Configuration

Environment variables (a .env file in the working directory is loaded first):
    ZETHER_MAX=                    MAX used when decoding (default: the ledger's MAX)
    ZETHER_BSGS_TABLE_SIZE=        Baby-step table size (default: isqrt(MAX) + 1)
    LOG_LEVEL=INFO
    LOG_FORMAT=console             "json" for structured output
    RETRY_*                        Prover retry policy, see zether.retry.
                                   Retry stays off unless one of these is set.

Decimals are always read from the ledger.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from .monitoring.logging import configure_logging
from .retry import ENV_VARS as RETRY_ENV_VARS
from .retry import RetryConfig


def _optional_int(name: str) -> int | None:
    value = os.getenv(name, "").strip()
    return int(value) if value else None


@dataclass
class ZetherConfig:
    """Client-side settings; None means defer to the ledger (or disable retry)."""

    max_value: int | None = None
    bsgs_table_size: int | None = None

    log_level: str = "INFO"
    log_format: str = "console"

    retry: RetryConfig | None = None

    def __post_init__(self):
        if self.max_value is not None and self.max_value < 0:
            raise ValueError("max_value must be non-negative")
        if self.bsgs_table_size is not None and self.bsgs_table_size < 1:
            raise ValueError("bsgs_table_size must be at least 1")

    @classmethod
    def from_env(cls, dotenv_path: str | None = None, load_env_file: bool = True) -> "ZetherConfig":
        """Create configuration from environment variables."""
        if load_env_file:
            load_dotenv(dotenv_path)
        retry_set = any(os.getenv(name) for name in RETRY_ENV_VARS)
        return cls(
            max_value=_optional_int("ZETHER_MAX"),
            bsgs_table_size=_optional_int("ZETHER_BSGS_TABLE_SIZE"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "console").lower(),
            retry=RetryConfig.from_env() if retry_set else None,
        )

    def apply_logging(self, log_file: str | None = None) -> None:
        """Install the configured log handlers on the root logger."""
        configure_logging(level=self.log_level, json_output=self.log_format == "json", log_file=log_file)
