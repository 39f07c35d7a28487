"""
Zether - Epoch Simulation

The ledger rolls pending deltas into an account lazily: nothing moves until a
rollover runs, but any proof built in epoch e must reference the balance as if
the rollover for e had already happened. query() reproduces that rule from raw
ledger state without touching the ledger.
"""

from dataclasses import dataclass
from typing import Any

from .babyjub import CurveContext
from .codec import EncryptedBalance, combine


@dataclass(frozen=True)
class LedgerAccountState:
    """Raw per-account state as stored on the ledger."""

    balance: EncryptedBalance
    pending: EncryptedBalance
    last_rollover_epoch: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "balance": self.balance.to_strings(),
            "pending": self.pending.to_strings(),
            "lastRollOver": self.last_rollover_epoch,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LedgerAccountState":
        return cls(
            balance=EncryptedBalance.from_strings(data["balance"]),
            pending=EncryptedBalance.from_strings(data["pending"]),
            last_rollover_epoch=int(data.get("lastRollOver", data.get("last_rollover_epoch", 0))),
        )


def current_epoch(block_number: int, epoch_length: int) -> int:
    """
    epoch = floor(block_number / epoch_length)

    Raises:
        ValueError: If epoch_length is not positive or block_number is negative
    """
    if epoch_length <= 0:
        raise ValueError(f"epoch_length must be positive, got {epoch_length}")
    if block_number < 0:
        raise ValueError(f"block_number must be non-negative, got {block_number}")
    return block_number // epoch_length


def needs_rollover(state: LedgerAccountState, epoch: int) -> bool:
    """Pending deltas merge only once the recorded rollover epoch is strictly behind."""
    return state.last_rollover_epoch < epoch


def simulate_at_epoch(
    state: LedgerAccountState,
    epoch: int,
    curve: CurveContext | None = None,
) -> EncryptedBalance:
    if needs_rollover(state, epoch):
        return combine(state.balance, state.pending, curve)
    return state.balance


def query(
    state: LedgerAccountState,
    epoch_length: int,
    block_number: int,
    curve: CurveContext | None = None,
) -> EncryptedBalance:
    """
    Compute the as-if-rolled-over balance for the current block.

    Args:
        state: Raw ledger state for the account
        epoch_length: Blocks per epoch
        block_number: Current block height
        curve: Optional explicit curve context

    Returns:
        combine(balance, pending) if the account was last rolled over in an
        earlier epoch, otherwise the balance unchanged
    """
    return simulate_at_epoch(state, current_epoch(block_number, epoch_length), curve)
