"""
Tests for proof witness construction (zether.witness)

Tests cover:
- Amount normalisation and bound checks
- Transfer witness ciphertexts and public signal order
- Burn witness bounds and signals
"""

from decimal import Decimal

import pytest

from zether.babyjub import IDENTITY
from zether.codec import EncryptedBalance, decode, encode
from zether.exceptions import InvalidAmount, InvalidKey
from zether.monitoring.metrics import metrics
from zether.witness import (
    build_burn_witness,
    build_transfer_witness,
    check_amount,
    create_transfer_input,
    to_units,
)

MAX = 10_000
TABLE = 100


@pytest.fixture
def balance(alice_account):
    """Alice holds 500 units."""
    return encode(500, alice_account.public_key, 987654321)


class TestToUnits:
    """Tests for amount normalisation."""

    def test_int_passthrough(self):
        assert to_units(42) == 42
        assert to_units(42, 4) == 42

    def test_integer_string(self):
        assert to_units("42") == 42

    def test_decimal_string_scaled(self):
        assert to_units("1.5", 4) == 15000

    def test_decimal_value(self):
        assert to_units(Decimal("0.0001"), 4) == 1

    def test_integral_float(self):
        assert to_units(2.5, 1) == 25
        assert to_units(3.0) == 3

    def test_rejects_excess_precision(self):
        """No silent truncation."""
        with pytest.raises(InvalidAmount):
            to_units("1.23456", 4)

    def test_rejects_fractional_base_units(self):
        with pytest.raises(InvalidAmount):
            to_units("1.5")

    def test_rejects_bool(self):
        with pytest.raises(InvalidAmount):
            to_units(True)

    def test_rejects_garbage(self):
        with pytest.raises(InvalidAmount):
            to_units("ten")

    def test_rejects_non_finite(self):
        with pytest.raises(InvalidAmount):
            to_units("inf")


class TestCheckAmount:
    """Tests for amount bounds."""

    def test_within_bounds(self):
        assert check_amount(5, max_value=10, current_balance=5) == 5

    def test_negative(self):
        with pytest.raises(InvalidAmount):
            check_amount(-1, max_value=10)

    def test_above_max(self):
        with pytest.raises(InvalidAmount) as exc_info:
            check_amount(11, max_value=10)
        assert exc_info.value.bound == 10

    def test_above_balance(self):
        with pytest.raises(InvalidAmount):
            check_amount(6, max_value=10, current_balance=5)


class TestTransferWitness:
    """Tests for transfer witness construction."""

    def test_create_transfer_input_shares_randomness(self, alice_account, bob_account, curve):
        c_send, c_receive, d = create_transfer_input(alice_account.public_key, bob_account.public_key, 9, 55)
        assert d == curve.mul_base(55)
        assert c_send == curve.add(curve.mul_base(9), curve.mul(alice_account.public_key, 55))
        assert c_receive == curve.add(curve.mul_base(9), curve.mul(bob_account.public_key, 55))

    def test_ciphertexts_decode_for_both_parties(self, alice_account, bob_account, balance):
        """(C_send, D) decodes under sk and (C_receive, D) under skR."""
        w = build_transfer_witness(alice_account, bob_account.public_key, 120, 500, balance, 0, MAX)
        assert decode(EncryptedBalance(w.c_send, w.d), alice_account.private_key, MAX, TABLE) == 120
        assert decode(EncryptedBalance(w.c_receive, w.d), bob_account.private_key, MAX, TABLE) == 120

    def test_remaining_balance(self, alice_account, bob_account, balance):
        w = build_transfer_witness(alice_account, bob_account.public_key, 120, 500, balance, 0, MAX)
        assert w.remaining_balance == 380

    def test_full_balance_transfer(self, alice_account, bob_account, balance):
        w = build_transfer_witness(alice_account, bob_account.public_key, 500, 500, balance, 0, MAX)
        assert w.remaining_balance == 0

    def test_fixed_blinding(self, alice_account, bob_account, balance, curve):
        w = build_transfer_witness(alice_account, bob_account.public_key, 1, 500, balance, 0, MAX, r=77)
        assert w.r == 77
        assert w.d == curve.mul_base(77)

    def test_public_signal_order(self, alice_account, bob_account, balance):
        """MAX, C_send, C_receive, D, y, yR, CL, CR, counter."""
        w = build_transfer_witness(alice_account, bob_account.public_key, 10, 500, balance, 3, MAX)
        signals = w.public_signals()
        assert len(signals) == 16
        assert signals[0] == str(MAX)
        assert signals[1:3] == w.c_send.to_strings()
        assert signals[3:5] == w.c_receive.to_strings()
        assert signals[5:7] == w.d.to_strings()
        assert signals[7:9] == alice_account.public_key.to_strings()
        assert signals[9:11] == bob_account.public_key.to_strings()
        assert signals[11:13] == balance.cl.to_strings()
        assert signals[13:15] == balance.cr.to_strings()
        assert signals[15] == "3"

    def test_circuit_input_names(self, alice_account, bob_account, balance):
        w = build_transfer_witness(alice_account, bob_account.public_key, 10, 500, balance, 0, MAX)
        data = w.to_circuit_input()
        assert set(data) == {"sk", "r", "sAmount", "bRem", "MAX", "CS", "D", "CRe", "y", "yR", "CL", "CR", "counter"}
        assert data["sAmount"] == "10"
        assert data["bRem"] == "490"

    def test_repr_hides_private_signals(self, alice_account, bob_account, balance):
        w = build_transfer_witness(alice_account, bob_account.public_key, 10, 500, balance, 0, MAX)
        assert str(alice_account.private_key) not in repr(w)

    def test_amount_above_balance(self, alice_account, bob_account, balance):
        with pytest.raises(InvalidAmount):
            build_transfer_witness(alice_account, bob_account.public_key, 501, 500, balance, 0, MAX)

    def test_amount_above_max(self, alice_account, bob_account, balance):
        with pytest.raises(InvalidAmount):
            build_transfer_witness(alice_account, bob_account.public_key, 101, 500, balance, 0, 100)

    def test_negative_amount(self, alice_account, bob_account, balance):
        with pytest.raises(InvalidAmount):
            build_transfer_witness(alice_account, bob_account.public_key, -1, 500, balance, 0, MAX)

    def test_invalid_receiver(self, alice_account, balance):
        with pytest.raises(InvalidKey):
            build_transfer_witness(alice_account, IDENTITY, 1, 500, balance, 0, MAX)

    def test_invalid_blinding(self, alice_account, bob_account, balance):
        with pytest.raises(InvalidKey):
            build_transfer_witness(alice_account, bob_account.public_key, 1, 500, balance, 0, MAX, r=0)

    def test_negative_counter(self, alice_account, bob_account, balance):
        with pytest.raises(ValueError):
            build_transfer_witness(alice_account, bob_account.public_key, 1, 500, balance, -1, MAX)

    def test_counts_witnesses(self, alice_account, bob_account, balance):
        build_transfer_witness(alice_account, bob_account.public_key, 1, 500, balance, 0, MAX)
        assert metrics.get_counter("witnesses_built", labels={"circuit": "transfer"}) == 1


class TestBurnWitness:
    """Tests for burn witness construction."""

    def test_public_signal_order(self, alice_account, balance):
        """y, CL, CR, amount, counter."""
        w = build_burn_witness(alice_account, 500, 200, balance, 7, MAX)
        signals = w.public_signals()
        assert len(signals) == 8
        assert signals[0:2] == alice_account.public_key.to_strings()
        assert signals[2:4] == balance.cl.to_strings()
        assert signals[4:6] == balance.cr.to_strings()
        assert signals[6:] == ["200", "7"]

    def test_circuit_input_names(self, alice_account, balance):
        data = build_burn_witness(alice_account, 500, 200, balance, 0, MAX).to_circuit_input()
        assert set(data) == {"y", "sk", "CL", "CR", "b", "cur_b", "counter"}
        assert data["cur_b"] == "500"

    def test_burn_entire_balance(self, alice_account, balance):
        assert build_burn_witness(alice_account, 500, 500, balance, 0, MAX).amount == 500

    def test_amount_above_balance(self, alice_account, balance):
        with pytest.raises(InvalidAmount):
            build_burn_witness(alice_account, 500, 501, balance, 0, MAX)

    def test_amount_above_max(self, alice_account, balance):
        with pytest.raises(InvalidAmount, match="Amount exceeds MAX"):
            build_burn_witness(alice_account, 30, 35, balance, 0, max_value=32)

    def test_balance_above_max(self, alice_account, balance):
        with pytest.raises(InvalidAmount, match="Current balance exceeds MAX"):
            build_burn_witness(alice_account, 50, 10, balance, 0, max_value=40)

    def test_max_value_required(self, alice_account, balance):
        with pytest.raises(TypeError):
            build_burn_witness(alice_account, 500, 200, balance, 0)

    def test_negative_amount(self, alice_account, balance):
        with pytest.raises(InvalidAmount):
            build_burn_witness(alice_account, 500, -5, balance, 0, MAX)
