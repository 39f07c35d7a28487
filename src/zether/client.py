"""
Zether - Account Client

Orchestrates one account's operations against a ledger and a proving
backend. Each confidential operation runs the same pipeline:

    ledger read -> epoch simulation -> balance decode -> witness build
        -> proof compile -> ledger submit

Encrypted state, the counter, the epoch and MAX are re-read on every call
and never cached; a stale read shows up as a ledger rejection. All local
validation happens before the first state-mutating call.
"""

import dataclasses
import logging
from decimal import Decimal
from typing import Any

from . import epoch as epoch_sim
from .babyjub import CurveContext, Point, get_curve
from .codec import EncryptedBalance, decode
from .config import ZetherConfig
from .encoding import normalize_address
from .exceptions import BackendUnavailable, InvalidAmount
from .keys import BabyJubAccount, from_private_key, generate
from .ledger import ChainReceipt, LedgerAdapter, SubmissionKind, units_to_wei
from .monitoring.logging import LoggingContext
from .monitoring.metrics import metrics
from .prover import CircuitKind, ProofResult, ProvingBackend
from .retry import RetryConfig, retry_call
from .schnorr import challenge
from .witness import build_burn_witness, build_transfer_witness, check_amount, to_units

logger = logging.getLogger(__name__)


def _ether_amount(amount: int | str | Decimal) -> str | Decimal:
    """Whole-ether ints are scaled like any other ether amount."""
    if isinstance(amount, int) and not isinstance(amount, bool):
        return Decimal(amount)
    return amount


class Client:
    """
    A confidential account bound to one BabyJubJub keypair.

    Args:
        account: Existing keypair (a fresh one is generated when omitted)
        max_value: MAX used when decoding; defaults to config.max_value, then
            the ledger's MAX
        config: Client settings (MAX override, BSGS table size, retry policy)
        prover_retry: Retry policy for BackendUnavailable; defaults to
            config.retry (no retry when both are None)
    """

    def __init__(
        self,
        account: BabyJubAccount | None = None,
        max_value: int | None = None,
        config: ZetherConfig | None = None,
        prover_retry: RetryConfig | None = None,
        curve: CurveContext | None = None,
    ):
        self.curve = curve or get_curve()
        self.account = account or generate(self.curve)
        self.config = config or ZetherConfig()
        self.max_value = max_value if max_value is not None else self.config.max_value
        self.prover_retry = prover_retry or self.config.retry

    @classmethod
    def from_private_key(cls, private_key: int | str, **kwargs) -> "Client":
        return cls(account=from_private_key(private_key, kwargs.get("curve")), **kwargs)

    @property
    def private_key(self) -> int:
        return self.account.private_key

    @property
    def public_key(self) -> Point:
        return self.account.public_key

    @property
    def public_key_hash(self) -> str:
        return self.account.public_key_hash

    def __repr__(self) -> str:
        return f"Client(public_key_hash={self.public_key_hash})"

    # =========================================================================
    # Reads
    # =========================================================================

    def simulate_account(self, ledger: LedgerAdapter) -> EncryptedBalance:
        """The account ciphertext as the ledger will see it when the next write executes."""
        epoch_length = ledger.epoch_length()
        block_number = ledger.pending_block_number()
        state = ledger.read_encrypted_state(
            self.public_key, epoch_sim.current_epoch(block_number, epoch_length)
        )
        return epoch_sim.query(state, epoch_length, block_number, self.curve)

    def get_current_balance(self, ledger: LedgerAdapter) -> int:
        """Decode the current-epoch balance."""
        return self._decode(self.simulate_account(ledger), ledger)

    def _decode(self, balance: EncryptedBalance, ledger: LedgerAdapter) -> int:
        max_value = self.max_value if self.max_value is not None else ledger.max_value()
        with metrics.timer("balance_read_ms"):
            return decode(
                balance,
                self.private_key,
                max_value,
                table_size=self.config.bsgs_table_size,
                curve=self.curve,
            )

    # =========================================================================
    # Proving
    # =========================================================================

    def _compile(self, prover: ProvingBackend, kind: CircuitKind, witness) -> ProofResult:
        if self.prover_retry is None:
            return prover.compile(kind, witness)

        config = dataclasses.replace(self.prover_retry, retryable_exceptions=(BackendUnavailable,))
        return retry_call(prover.compile, args=(kind, witness), config=config)

    # =========================================================================
    # Operations
    # =========================================================================

    def fund(self, ledger: LedgerAdapter, sender: str, amount: int | str | Decimal) -> ChainReceipt:
        """
        Deposit ether into the account's pending balance.

        Args:
            ledger: Ledger to deposit into
            sender: Externally owned account paying the deposit
            amount: Ether amount ("0.5", 2, Decimal)

        Raises:
            InvalidAmount: If the amount is not positive, exceeds MAX, or is
                finer than the ledger's unit
        """
        with LoggingContext(operation="fund", account=self.public_key_hash[:10]):
            decimals = ledger.decimals()
            units = to_units(_ether_amount(amount), decimals)
            check_amount(units, max_value=ledger.max_value())
            if units == 0:
                raise InvalidAmount("Fund amount must be positive", amount=amount)

            receipt = ledger.submit(
                SubmissionKind.FUND,
                {"y": self.public_key},
                sender=sender,
                value=units_to_wei(units, decimals),
            )
            logger.info("Funded account", extra={"units": units, "block": receipt.block_number})
            return receipt

    def prepare_burn(self, ledger: LedgerAdapter, prover: ProvingBackend, amount: int | str) -> dict[str, Any]:
        """Build and prove a burn, returning the ledger call arguments."""
        amount = to_units(amount)
        max_value = ledger.max_value()
        check_amount(amount, max_value=max_value)

        balance = self.simulate_account(ledger)
        current = self._decode(balance, ledger)
        counter = ledger.counter(self.public_key_hash)

        witness = build_burn_witness(self.account, current, amount, balance, counter, max_value)
        result = self._compile(prover, CircuitKind.BURN, witness)
        return {
            "y": self.public_key,
            "amount": amount,
            "proof": result.proof.flatten(),
            "counter": counter,
        }

    def burn(self, ledger: LedgerAdapter, prover: ProvingBackend, sender: str, amount: int | str) -> ChainReceipt:
        """
        Withdraw `amount` units back to `sender` as ether.

        The encrypted balance drops once the next rollover merges the debit.

        Raises:
            InvalidAmount: If amount is negative, above MAX or above the balance
            BalanceDecodeFailure: If the account ciphertext is undecodable
            ChainRejected: If the ledger reverts
        """
        with LoggingContext(operation="burn", account=self.public_key_hash[:10]):
            with metrics.timer("operation_ms", labels={"operation": "burn"}):
                args = self.prepare_burn(ledger, prover, amount)
                receipt = ledger.submit(SubmissionKind.BURN, args, sender=sender)
            logger.info("Burn submitted", extra={"counter": args["counter"], "block": receipt.block_number})
            return receipt

    def prepare_transfer(
        self,
        ledger: LedgerAdapter,
        prover: ProvingBackend,
        amount: int | str,
        receiver_key: Point,
    ) -> dict[str, Any]:
        """Build and prove a transfer, returning the ledger call arguments."""
        amount = to_units(amount)
        receiver_key = Point.from_strings(receiver_key)
        max_value = ledger.max_value()
        check_amount(amount, max_value=max_value)

        balance = self.simulate_account(ledger)
        current = self._decode(balance, ledger)
        counter = ledger.counter(self.public_key_hash)

        witness = build_transfer_witness(
            self.account,
            receiver_key,
            amount,
            current,
            balance,
            counter,
            max_value,
            curve=self.curve,
        )
        result = self._compile(prover, CircuitKind.TRANSFER, witness)
        return {
            "y": self.public_key,
            "yR": receiver_key,
            "C_send": witness.c_send,
            "C_receive": witness.c_receive,
            "D": witness.d,
            "proof": result.proof.flatten(),
            "counter": counter,
        }

    def transfer(
        self,
        ledger: LedgerAdapter,
        prover: ProvingBackend,
        sender: str,
        amount: int | str,
        receiver_key: Point,
    ) -> ChainReceipt:
        """
        Send `amount` units to another account.

        The receiver sees the funds after their next rollover.

        Raises:
            InvalidAmount: If amount is negative, above MAX or above the balance
            InvalidKey: If the receiver key is not a valid subgroup point
            Unauthorized: If the account is locked to another address
            StaleCounter: If another operation landed first
        """
        with LoggingContext(operation="transfer", account=self.public_key_hash[:10]):
            with metrics.timer("operation_ms", labels={"operation": "transfer"}):
                args = self.prepare_transfer(ledger, prover, amount, receiver_key)
                receipt = ledger.submit(SubmissionKind.TRANSFER, args, sender=sender)
            logger.info("Transfer submitted", extra={"counter": args["counter"], "block": receipt.block_number})
            return receipt

    def roll_over(self, ledger: LedgerAdapter, sender: str) -> ChainReceipt:
        """Merge pending deltas on the ledger for the current epoch."""
        return ledger.submit(SubmissionKind.ROLL_OVER, {"y": self.public_key}, sender=sender)

    def lock(self, ledger: LedgerAdapter, sender: str, lock_address: str) -> ChainReceipt:
        """
        Lock the account so only `lock_address` may transfer or burn.

        Raises:
            ValueError: If lock_address is not a valid address
            ChainRejected: If the account is already locked
        """
        lock_address = normalize_address(lock_address)
        with LoggingContext(operation="lock", account=self.public_key_hash[:10]):
            auth = challenge(ledger.address, lock_address, self.public_key, self.private_key, curve=self.curve)
            receipt = ledger.submit(
                SubmissionKind.LOCK,
                {"y": self.public_key, "lockAddress": lock_address, "c": auth.c, "s": auth.s},
                sender=sender,
            )
            logger.info("Account locked", extra={"lock_address": lock_address})
            return receipt

    def unlock(self, ledger: LedgerAdapter, sender: str) -> ChainReceipt:
        """Release the lock. Only the lock holder may call this."""
        with LoggingContext(operation="unlock", account=self.public_key_hash[:10]):
            receipt = ledger.submit(SubmissionKind.UNLOCK, {"y": self.public_key}, sender=sender)
            logger.info("Account unlocked")
            return receipt
