"""
Zether - Proof Witness Construction

Builds the private and public signal sets consumed by the transfer and burn
circuits. Builders are pure: they read no ledger state and only draw
randomness when the caller does not supply a blinding scalar.

Amounts of any accepted input type are collapsed to a single int at the edge
(to_units) and bound-checked once (check_amount); everything downstream is
exact integer/field arithmetic.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from .babyjub import CurveContext, Point, get_curve
from .codec import EncryptedBalance, encode
from .exceptions import InvalidAmount, InvalidKey
from .keys import BabyJubAccount, random_scalar, validate_public_key
from .monitoring.metrics import metrics

logger = logging.getLogger(__name__)


# =============================================================================
# Amount normalisation
# =============================================================================


def to_units(amount: int | str | Decimal | float, decimals: int = 0) -> int:
    """
    Convert an amount to integer base units.

    "1.5" with decimals=4 gives 15000. Ints pass through unchanged (they are
    already in base units). Precision finer than `decimals` is rejected
    instead of being truncated.

    Raises:
        InvalidAmount: For bools, non-numeric strings, non-finite values or
            excess precision
    """
    if isinstance(amount, bool):
        raise InvalidAmount("Boolean is not an amount", amount=amount)
    if isinstance(amount, int):
        return amount
    if decimals < 0:
        raise ValueError("decimals must be non-negative")

    try:
        value = Decimal(str(amount).strip()) if not isinstance(amount, Decimal) else amount
    except InvalidOperation as e:
        raise InvalidAmount(f"Not a number: {amount!r}", amount=amount) from e

    if not value.is_finite():
        raise InvalidAmount("Amount must be finite", amount=amount)

    scaled = value.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise InvalidAmount(
            f"Amount has more than {decimals} decimal places",
            amount=amount,
            details={"decimals": decimals},
        )
    return int(scaled)


def check_amount(amount: int, max_value: int | None = None, current_balance: int | None = None) -> int:
    """
    Enforce 0 <= amount <= MAX and amount <= current balance.

    Raises:
        InvalidAmount: On any violated bound
    """
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount("Amount must be an integer in base units", amount=amount)
    if amount < 0:
        raise InvalidAmount("Amount cannot be negative", amount=amount, bound=0)
    if max_value is not None and amount > max_value:
        raise InvalidAmount("Amount exceeds MAX", amount=amount, bound=max_value)
    if current_balance is not None and amount > current_balance:
        raise InvalidAmount("Amount exceeds current balance", amount=amount, bound=current_balance)
    return amount


def _check_counter(counter: int) -> int:
    if isinstance(counter, bool) or not isinstance(counter, int) or counter < 0:
        raise ValueError(f"Counter must be a non-negative integer, got {counter!r}")
    return counter


def _check_balance(current_balance: int, max_value: int) -> int:
    if isinstance(current_balance, bool) or not isinstance(current_balance, int) or current_balance < 0:
        raise InvalidAmount("Current balance must be a non-negative integer", amount=current_balance)
    if current_balance > max_value:
        raise InvalidAmount("Current balance exceeds MAX", amount=current_balance, bound=max_value)
    return current_balance


def _flatten(*items: Any) -> list[str]:
    signals: list[str] = []
    for item in items:
        if isinstance(item, Point):
            signals.extend(item.to_strings())
        else:
            signals.append(str(item))
    return signals


# =============================================================================
# Witnesses
# =============================================================================


@dataclass(frozen=True)
class TransferWitness:
    """Signals for the transfer circuit."""

    # private
    sk: int
    r: int
    amount: int
    remaining_balance: int
    # public
    max_value: int
    c_send: Point
    c_receive: Point
    d: Point
    sender_key: Point
    receiver_key: Point
    cl: Point
    cr: Point
    counter: int

    def public_signals(self) -> list[str]:
        """Public inputs in circuit order: MAX, C_send, C_receive, D, y, yR, CL, CR, counter."""
        return _flatten(
            self.max_value,
            self.c_send,
            self.c_receive,
            self.d,
            self.sender_key,
            self.receiver_key,
            self.cl,
            self.cr,
            self.counter,
        )

    def to_circuit_input(self) -> dict[str, Any]:
        """Full signal map keyed by the circuit's input names."""
        return {
            "sk": str(self.sk),
            "r": str(self.r),
            "sAmount": str(self.amount),
            "bRem": str(self.remaining_balance),
            "MAX": str(self.max_value),
            "CS": self.c_send.to_strings(),
            "D": self.d.to_strings(),
            "CRe": self.c_receive.to_strings(),
            "y": self.sender_key.to_strings(),
            "yR": self.receiver_key.to_strings(),
            "CL": self.cl.to_strings(),
            "CR": self.cr.to_strings(),
            "counter": str(self.counter),
        }

    def __repr__(self) -> str:
        return f"TransferWitness(counter={self.counter}, public_signals={len(self.public_signals())})"


@dataclass(frozen=True)
class BurnWitness:
    """Signals for the burn circuit."""

    # private
    sk: int
    current_balance: int
    # public
    sender_key: Point
    cl: Point
    cr: Point
    amount: int
    counter: int

    def public_signals(self) -> list[str]:
        """Public inputs in circuit order: y, CL, CR, amount, counter."""
        return _flatten(self.sender_key, self.cl, self.cr, self.amount, self.counter)

    def to_circuit_input(self) -> dict[str, Any]:
        return {
            "y": self.sender_key.to_strings(),
            "sk": str(self.sk),
            "CL": self.cl.to_strings(),
            "CR": self.cr.to_strings(),
            "b": str(self.amount),
            "cur_b": str(self.current_balance),
            "counter": str(self.counter),
        }

    def __repr__(self) -> str:
        return f"BurnWitness(amount={self.amount}, counter={self.counter})"


# =============================================================================
# Builders
# =============================================================================


def create_transfer_input(
    sender_key: Point,
    receiver_key: Point,
    amount: int,
    r: int,
    curve: CurveContext | None = None,
) -> tuple[Point, Point, Point]:
    """
    Encrypt the transferred amount for both parties under one randomness r.

    Returns:
        (C_send, C_receive, D) with C_send = amount*G + r*y,
        C_receive = amount*G + r*yR and D = r*G shared by both
    """
    curve = curve or get_curve()
    send = encode(amount, sender_key, r, curve)
    receive = encode(amount, receiver_key, r, curve)
    return send.cl, receive.cl, send.cr


def build_transfer_witness(
    sender: BabyJubAccount,
    receiver_key: Point,
    amount: int,
    current_balance: int,
    balance: EncryptedBalance,
    counter: int,
    max_value: int,
    r: int | None = None,
    curve: CurveContext | None = None,
) -> TransferWitness:
    """
    Build the transfer witness.

    Args:
        sender: Sending account (supplies sk and y)
        receiver_key: Receiver's public key yR
        amount: Amount to transfer in base units
        current_balance: Decoded as-if-rolled-over balance
        balance: The ciphertext that current_balance was decoded from
        counter: Sender's current ledger counter
        max_value: Protocol ceiling MAX
        r: Blinding scalar (drawn fresh when omitted)
        curve: Optional explicit curve context

    Raises:
        InvalidAmount: If amount < 0, amount > MAX or amount > current_balance
        InvalidKey: If the receiver key or r is invalid
    """
    curve = curve or get_curve()
    _check_balance(current_balance, max_value)
    check_amount(amount, max_value=max_value, current_balance=current_balance)
    _check_counter(counter)
    validate_public_key(receiver_key, curve)

    if r is None:
        r = random_scalar(curve)
    elif not 0 < r < curve.order:
        raise InvalidKey("Blinding scalar must lie in [1, subgroup order)")

    c_send, c_receive, d = create_transfer_input(sender.public_key, receiver_key, amount, r, curve)

    witness = TransferWitness(
        sk=sender.private_key,
        r=r,
        amount=amount,
        remaining_balance=current_balance - amount,
        max_value=max_value,
        c_send=c_send,
        c_receive=c_receive,
        d=d,
        sender_key=sender.public_key,
        receiver_key=receiver_key,
        cl=balance.cl,
        cr=balance.cr,
        counter=counter,
    )
    metrics.increment("witnesses_built", labels={"circuit": "transfer"})
    logger.debug("Built transfer witness", extra={"counter": counter})
    return witness


def build_burn_witness(
    sender: BabyJubAccount,
    current_balance: int,
    amount: int,
    balance: EncryptedBalance,
    counter: int,
    max_value: int,
) -> BurnWitness:
    """
    Build the burn witness.

    Proves knowledge of sk and current_balance >= amount without revealing
    current_balance.

    Raises:
        InvalidAmount: If amount < 0, amount > MAX or amount > current_balance
    """
    _check_balance(current_balance, max_value)
    check_amount(amount, max_value=max_value, current_balance=current_balance)
    _check_counter(counter)

    witness = BurnWitness(
        sk=sender.private_key,
        current_balance=current_balance,
        sender_key=sender.public_key,
        cl=balance.cl,
        cr=balance.cr,
        amount=amount,
        counter=counter,
    )
    metrics.increment("witnesses_built", labels={"circuit": "burn"})
    logger.debug("Built burn witness", extra={"counter": counter})
    return witness
