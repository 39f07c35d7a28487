"""
Zether - Ledger Port

LedgerAdapter is the read/write gateway to the confidential-value ledger.
Reads return raw encrypted state; writes either land atomically or raise
ChainRejected carrying the ledger's revert reason verbatim (mapped to
Unauthorized / StaleCounter where the reason identifies one).

InMemoryLedger reproduces the BasicZether contract semantics locally so the
whole client pipeline can be exercised without a chain:

- fund:      rollOver(y); pending[y].CL += units*G
- transfer:  rollOver(y), rollOver(yR); acc[y] -= (C_send, D);
             pending[yR] += (C_receive, D)
- burn:      rollOver(y); pending[y].CL -= b*G; pays b * 10^(18-decimals) wei
- rollOver:  if lastRollOver[y] < epoch: acc[y] += pending[y]; pending[y] = 0
- lock:      Schnorr-verified; transfer/burn then require the lock holder
- unlock:    only the lock holder

Every successful write mines one block.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .babyjub import CurveContext, Point, get_curve
from .codec import EncryptedBalance, combine, subtract
from .encoding import keccak256, normalize_address, public_key_hash, random_address
from .epoch import LedgerAccountState, current_epoch, simulate_at_epoch
from .exceptions import chain_rejection
from .monitoring.metrics import metrics
from .prover import CircuitKind, InMemoryProvingBackend
from .schnorr import LockAuthorization
from .schnorr import verify as verify_lock

logger = logging.getLogger(__name__)

WEI_PER_ETHER = 10**18
DEFAULT_MAX = 2**32 - 1
DEFAULT_ETHER_BALANCE = 10_000 * WEI_PER_ETHER
ZERO_ADDRESS = "0x" + "0" * 40


class SubmissionKind(Enum):
    """State-mutating ledger calls."""

    FUND = "fund"
    BURN = "burn"
    TRANSFER = "transfer"
    ROLL_OVER = "rollOver"
    LOCK = "lock"
    UNLOCK = "unlock"


@dataclass
class ChainReceipt:
    """Receipt for a write that landed."""

    tx_hash: str
    kind: SubmissionKind
    block_number: int
    sender: str
    status: str = "success"
    events: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "txHash": self.tx_hash,
            "kind": self.kind.value,
            "blockNumber": self.block_number,
            "sender": self.sender,
            "status": self.status,
            "events": self.events,
        }


# =============================================================================
# Port
# =============================================================================


class LedgerAdapter(ABC):
    """Read/write gateway to the ledger."""

    @property
    @abstractmethod
    def address(self) -> str:
        """Checksummed ledger contract address (bound into lock signatures)."""

    @abstractmethod
    def block_number(self) -> int:
        pass

    @abstractmethod
    def pending_block_number(self) -> int:
        """Block the next submitted write executes in; its epoch is the write's epoch."""

    @abstractmethod
    def epoch_length(self) -> int:
        pass

    @abstractmethod
    def max_value(self) -> int:
        pass

    @abstractmethod
    def decimals(self) -> int:
        pass

    @abstractmethod
    def total_supply(self) -> int:
        pass

    @abstractmethod
    def counter(self, public_key_hash: str) -> int:
        pass

    @abstractmethod
    def read_encrypted_state(self, public_key: Point, epoch: int | None = None) -> LedgerAccountState:
        """
        Raw (balance, pending, lastRollOver) for an account.

        Adapters backed by historical state may use `epoch` to pick the
        snapshot; the rollover itself is simulated client side.
        """

    @abstractmethod
    def simulate_accounts(self, public_keys: list[Point], epoch: int) -> list[EncryptedBalance]:
        """Ledger-side view of each account as if rolled over at `epoch`."""

    @abstractmethod
    def submit(
        self,
        kind: SubmissionKind,
        args: dict[str, Any],
        sender: str,
        value: int = 0,
    ) -> ChainReceipt:
        """
        Send a state-mutating call.

        Raises:
            ChainRejected: On revert (Unauthorized / StaleCounter when the
                reason identifies one)
        """


# =============================================================================
# In-memory ledger
# =============================================================================


class InMemoryLedger(LedgerAdapter):
    """
    Deterministic BasicZether ledger for tests and local simulation.

    Proofs are checked against InMemoryProvingBackend's deterministic output
    over public signals rebuilt from ledger state, the way an on-chain
    verifier reads CL, CR and the counter from storage.
    """

    def __init__(
        self,
        epoch_length: int,
        decimals: int = 0,
        max_value: int = DEFAULT_MAX,
        address: str | None = None,
        curve: CurveContext | None = None,
        start_block: int = 0,
    ):
        if epoch_length <= 0:
            raise ValueError("epoch_length must be positive")
        if not 0 <= decimals <= 18:
            raise ValueError("decimals must lie in [0, 18]")

        self.curve = curve or get_curve()
        self._address = normalize_address(address) if address else random_address()
        self._epoch_length = epoch_length
        self._decimals = decimals
        self._max_value = max_value
        self._block_number = start_block

        # Contract storage, keyed by public-key hash
        self._acc: dict[str, EncryptedBalance] = {}
        self._pending: dict[str, EncryptedBalance] = {}
        self._last_rollover: dict[str, int] = {}
        self._counters: dict[str, int] = {}
        self._locks: dict[str, str] = {}
        self._total_supply = 0

        # Externally owned accounts
        self._ether: dict[str, int] = {}

        self._transactions: list[dict[str, Any]] = []
        self.audit_log: list[dict[str, Any]] = []

    # =========================================================================
    # Reads
    # =========================================================================

    @property
    def address(self) -> str:
        return self._address

    def block_number(self) -> int:
        return self._block_number

    def pending_block_number(self) -> int:
        return self._block_number + 1

    def epoch_length(self) -> int:
        return self._epoch_length

    def max_value(self) -> int:
        return self._max_value

    def decimals(self) -> int:
        return self._decimals

    def total_supply(self) -> int:
        return self._total_supply

    def counter(self, public_key_hash: str) -> int:
        return self._counters.get(public_key_hash.lower(), 0)

    def locked_to(self, public_key: Point) -> str:
        return self._locks.get(public_key_hash(public_key), ZERO_ADDRESS)

    def read_encrypted_state(self, public_key: Point, epoch: int | None = None) -> LedgerAccountState:
        key = public_key_hash(public_key)
        return LedgerAccountState(
            balance=self._acc.get(key, EncryptedBalance.zero()),
            pending=self._pending.get(key, EncryptedBalance.zero()),
            last_rollover_epoch=self._last_rollover.get(key, 0),
        )

    def simulate_accounts(self, public_keys: list[Point], epoch: int) -> list[EncryptedBalance]:
        return [simulate_at_epoch(self.read_encrypted_state(pk), epoch, self.curve) for pk in public_keys]

    def balance_of(self, address: str) -> int:
        """Wei held by an externally owned account."""
        return self._ether.get(normalize_address(address), DEFAULT_ETHER_BALANCE)

    # =========================================================================
    # Writes
    # =========================================================================

    def submit(
        self,
        kind: SubmissionKind,
        args: dict[str, Any],
        sender: str,
        value: int = 0,
    ) -> ChainReceipt:
        sender = normalize_address(sender)
        block = self.pending_block_number()
        epoch = current_epoch(block, self._epoch_length)

        snapshot = self._snapshot()
        try:
            ok, data = self._execute(kind, args, sender, value, epoch)
        except (KeyError, TypeError, ValueError) as e:
            ok, data = False, {"reason": f"Malformed {kind.value} call: {e}"}

        self.audit_log.append(
            {
                "timestamp": datetime.utcnow().isoformat(),
                "kind": kind.value,
                "sender": sender,
                "block": block,
                "success": ok,
                "reason": None if ok else data.get("reason"),
            }
        )

        if not ok:
            self._restore(snapshot)
            reason = data.get("reason", "reverted")
            metrics.increment("ledger_rejections", labels={"kind": kind.value})
            logger.info("Ledger call reverted", extra={"kind": kind.value, "reason": reason})
            raise chain_rejection(reason, kind.value)

        self._block_number = block
        tx_hash = "0x" + keccak256(
            f"{self._address}:{block}:{len(self._transactions)}:{kind.value}".encode("utf-8")
        ).hex()
        self._transactions.append({"txHash": tx_hash, "kind": kind.value, "sender": sender, "value": value, **args})
        metrics.increment("ledger_submissions", labels={"kind": kind.value})

        return ChainReceipt(
            tx_hash=tx_hash,
            kind=kind,
            block_number=block,
            sender=sender,
            events=data.get("events", []),
        )

    def _execute(
        self,
        kind: SubmissionKind,
        args: dict[str, Any],
        sender: str,
        value: int,
        epoch: int,
    ) -> tuple[bool, dict[str, Any]]:
        """Route a call to its handler."""
        if value and kind is not SubmissionKind.FUND:
            return False, {"reason": f"{kind.value} is not payable"}

        if kind is SubmissionKind.FUND:
            return self._handle_fund(args, sender, value, epoch)
        elif kind is SubmissionKind.BURN:
            return self._handle_burn(args, sender, epoch)
        elif kind is SubmissionKind.TRANSFER:
            return self._handle_transfer(args, sender, epoch)
        elif kind is SubmissionKind.ROLL_OVER:
            self._roll_over(public_key_hash(Point.from_strings(args["y"])), epoch)
            return True, {}
        elif kind is SubmissionKind.LOCK:
            return self._handle_lock(args, epoch)
        elif kind is SubmissionKind.UNLOCK:
            return self._handle_unlock(args, sender)

        return False, {"reason": f"Unknown call: {kind}"}

    def _roll_over(self, key: str, epoch: int) -> None:
        if self._last_rollover.get(key, 0) < epoch:
            self._acc[key] = combine(
                self._acc.get(key, EncryptedBalance.zero()),
                self._pending.get(key, EncryptedBalance.zero()),
                self.curve,
            )
            self._pending[key] = EncryptedBalance.zero()
            self._last_rollover[key] = epoch

    def _is_authorized(self, key: str, sender: str) -> bool:
        holder = self._locks.get(key, ZERO_ADDRESS)
        return holder == ZERO_ADDRESS or holder == sender

    def _check_counter(self, key: str, args: dict[str, Any]) -> dict[str, Any] | None:
        submitted = args.get("counter")
        if submitted is not None and int(submitted) != self._counters.get(key, 0):
            return {"reason": "Stale counter"}
        return None

    def _handle_fund(
        self, args: dict[str, Any], sender: str, value: int, epoch: int
    ) -> tuple[bool, dict[str, Any]]:
        y = Point.from_strings(args["y"])
        key = public_key_hash(y)

        unit_wei = 10 ** (18 - self._decimals)
        if value <= 0 or value % unit_wei:
            return False, {"reason": "Invalid fund amount"}
        units = value // unit_wei
        if self._total_supply + units > self._max_value:
            return False, {"reason": "Fund pushes contract past maximum value"}
        if self.balance_of(sender) < value:
            return False, {"reason": "Insufficient funds"}

        self._roll_over(key, epoch)
        pending = self._pending.get(key, EncryptedBalance.zero())
        self._pending[key] = EncryptedBalance(self.curve.add(pending.cl, self.curve.mul_base(units)), pending.cr)
        self._total_supply += units
        self._ether[sender] = self.balance_of(sender) - value

        return True, {"events": [{"event": "Fund", "publicKeyHash": key, "units": units}]}

    def _handle_burn(self, args: dict[str, Any], sender: str, epoch: int) -> tuple[bool, dict[str, Any]]:
        y = Point.from_strings(args["y"])
        key = public_key_hash(y)
        amount = int(args["amount"])

        if not self._is_authorized(key, sender):
            return False, {"reason": "Not authorized"}
        stale = self._check_counter(key, args)
        if stale:
            return False, stale
        if not 0 <= amount <= self._total_supply:
            return False, {"reason": "Invalid burn amount"}

        self._roll_over(key, epoch)
        acc = self._acc.get(key, EncryptedBalance.zero())
        counter = self._counters.get(key, 0)
        signals = [*y.to_strings(), *acc.cl.to_strings(), *acc.cr.to_strings(), str(amount), str(counter)]
        if not InMemoryProvingBackend.verify(CircuitKind.BURN, args["proof"], signals):
            return False, {"reason": "Burn proof verification failed"}

        pending = self._pending.get(key, EncryptedBalance.zero())
        self._pending[key] = EncryptedBalance(self.curve.sub(pending.cl, self.curve.mul_base(amount)), pending.cr)
        self._counters[key] = counter + 1
        self._total_supply -= amount

        payout = units_to_wei(amount, self._decimals)
        self._ether[sender] = self.balance_of(sender) + payout

        return True, {"events": [{"event": "Burn", "publicKeyHash": key, "amount": amount, "payout": payout}]}

    def _handle_transfer(self, args: dict[str, Any], sender: str, epoch: int) -> tuple[bool, dict[str, Any]]:
        y = Point.from_strings(args["y"])
        y_r = Point.from_strings(args["yR"])
        c_send = Point.from_strings(args["C_send"])
        c_receive = Point.from_strings(args["C_receive"])
        d = Point.from_strings(args["D"])
        key = public_key_hash(y)
        receiver = public_key_hash(y_r)

        if not self._is_authorized(key, sender):
            return False, {"reason": "Not authorized"}
        stale = self._check_counter(key, args)
        if stale:
            return False, stale

        self._roll_over(key, epoch)
        self._roll_over(receiver, epoch)
        acc = self._acc.get(key, EncryptedBalance.zero())
        counter = self._counters.get(key, 0)
        signals = [
            str(self._max_value),
            *c_send.to_strings(),
            *c_receive.to_strings(),
            *d.to_strings(),
            *y.to_strings(),
            *y_r.to_strings(),
            *acc.cl.to_strings(),
            *acc.cr.to_strings(),
            str(counter),
        ]
        if not InMemoryProvingBackend.verify(CircuitKind.TRANSFER, args["proof"], signals):
            return False, {"reason": "Transfer proof verification failed"}

        self._acc[key] = subtract(acc, EncryptedBalance(c_send, d), self.curve)
        self._pending[receiver] = combine(
            self._pending.get(receiver, EncryptedBalance.zero()),
            EncryptedBalance(c_receive, d),
            self.curve,
        )
        self._counters[key] = counter + 1

        return True, {"events": [{"event": "Transfer", "from": key, "to": receiver}]}

    def _handle_lock(self, args: dict[str, Any], epoch: int) -> tuple[bool, dict[str, Any]]:
        y = Point.from_strings(args["y"])
        key = public_key_hash(y)
        lock_address = normalize_address(args["lockAddress"])

        if self._locks.get(key, ZERO_ADDRESS) != ZERO_ADDRESS:
            return False, {"reason": "Already locked"}
        auth = LockAuthorization(c=int(args["c"]), s=int(args["s"]))
        if not verify_lock(auth, self._address, lock_address, y, self.curve):
            return False, {"reason": "Invalid lock signature"}

        self._roll_over(key, epoch)
        self._locks[key] = lock_address
        return True, {"events": [{"event": "Lock", "publicKeyHash": key, "lockedTo": lock_address}]}

    def _handle_unlock(self, args: dict[str, Any], sender: str) -> tuple[bool, dict[str, Any]]:
        y = Point.from_strings(args["y"])
        key = public_key_hash(y)

        if self._locks.get(key, ZERO_ADDRESS) != sender:
            return False, {"reason": "Not authorized"}
        del self._locks[key]
        return True, {"events": [{"event": "Unlock", "publicKeyHash": key}]}

    def _snapshot(self) -> tuple:
        return (
            dict(self._acc),
            dict(self._pending),
            dict(self._last_rollover),
            dict(self._counters),
            dict(self._locks),
            dict(self._ether),
            self._total_supply,
        )

    def _restore(self, snapshot: tuple) -> None:
        (
            self._acc,
            self._pending,
            self._last_rollover,
            self._counters,
            self._locks,
            self._ether,
            self._total_supply,
        ) = snapshot

    # =========================================================================
    # Test Helpers
    # =========================================================================

    def mine(self, blocks: int = 1) -> int:
        """Advance the chain by a number of empty blocks."""
        if blocks < 0:
            raise ValueError("Cannot mine a negative number of blocks")
        self._block_number += blocks
        return self._block_number

    def advance_to_next_epoch(self) -> int:
        """Mine up to the first block of the next epoch."""
        return self.mine(self._epoch_length - self._block_number % self._epoch_length)

    def set_balance(self, address: str, wei: int) -> None:
        """Set the wei held by an externally owned account."""
        self._ether[normalize_address(address)] = wei

    def get_submitted_transactions(self) -> list[dict[str, Any]]:
        """Get all landed transactions for verification."""
        return self._transactions.copy()

    def get_audit_log(self, limit: int = 100) -> list[dict[str, Any]]:
        """Get recent audit log entries."""
        return self.audit_log[-limit:]

    def clear_audit_log(self):
        """Clear the audit log."""
        self.audit_log = []

    @staticmethod
    def new_address() -> str:
        """Random externally owned account address."""
        return random_address()


def wei_to_units(wei: int, decimals: int) -> int:
    """Convert wei to ledger units (10^decimals units per ether)."""
    return wei * 10**decimals // WEI_PER_ETHER


def units_to_wei(units: int, decimals: int) -> int:
    return units * 10 ** (18 - decimals)
