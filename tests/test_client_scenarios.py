"""
End-to-end account scenarios against the in-memory ledger (zether.client)

Mirrors the BasicZether contract tests (epoch length 20, 4 decimals,
MAX = 2^32 - 1):
1) Fund and read balance after the next epoch
2) Transfer between accounts
3) Burn, total supply and payout
4) Lock to an address; unauthorized transfers revert
5) Counter race between two operations on one account
"""

from decimal import Decimal

import pytest

from zether.client import Client
from zether.config import ZetherConfig
from zether.exceptions import (
    BackendUnavailable,
    BalanceDecodeFailure,
    ChainRejected,
    InvalidAmount,
    InvalidKey,
    StaleCounter,
    Unauthorized,
)
from zether.babyjub import IDENTITY
from zether.ledger import SubmissionKind
from zether.monitoring.metrics import metrics
from zether.retry import RetryConfig

ONE_ETHER = 10**18
UNIT_WEI = 10**14  # 4 decimals

CLIENT1_PRIVATE_KEY = "989684980841917356420192175194090137718385886803255486827734521826538409888"


@pytest.fixture
def funded(ledger, alice, eoa):
    """Alice funded with 1 ether (10000 units) and rolled into a new epoch."""
    payer, _ = eoa
    alice.fund(ledger, payer, "1")
    ledger.advance_to_next_epoch()
    return alice


class TestFundScenario:
    """Scenario A: fund then read the balance."""

    def test_balance_visible_after_epoch(self, ledger, alice, eoa):
        payer, _ = eoa
        alice.fund(ledger, payer, "1")
        assert alice.get_current_balance(ledger) == 0

        ledger.advance_to_next_epoch()
        assert alice.get_current_balance(ledger) == 10_000

    def test_fund_debits_payer(self, ledger, alice, eoa):
        payer, _ = eoa
        before = ledger.balance_of(payer)
        alice.fund(ledger, payer, "0.25")
        assert ledger.balance_of(payer) == before - ONE_ETHER // 4
        assert ledger.total_supply() == 2_500

    def test_fund_accepts_int_and_decimal(self, ledger, alice, eoa):
        payer, _ = eoa
        alice.fund(ledger, payer, 1)
        alice.fund(ledger, payer, Decimal("0.0001"))
        assert ledger.total_supply() == 10_001

    def test_multiple_deposits_accumulate(self, ledger, alice, eoa):
        payer, _ = eoa
        alice.fund(ledger, payer, "1")
        alice.fund(ledger, payer, "0.5")
        ledger.advance_to_next_epoch()
        assert alice.get_current_balance(ledger) == 15_000

    def test_fund_rejects_excess_precision(self, ledger, alice, eoa):
        """Amounts finer than one unit are rejected before any call."""
        payer, _ = eoa
        with pytest.raises(InvalidAmount):
            alice.fund(ledger, payer, "0.00001")
        assert ledger.get_audit_log() == []

    def test_fund_rejects_zero(self, ledger, alice, eoa):
        payer, _ = eoa
        with pytest.raises(InvalidAmount):
            alice.fund(ledger, payer, "0")

    def test_simulate_matches_ledger_view(self, ledger, funded):
        epoch = ledger.pending_block_number() // ledger.epoch_length()
        assert funded.simulate_account(ledger) == ledger.simulate_accounts([funded.public_key], epoch)[0]


class TestEpochBoundary:
    """Reads made in the last block of an epoch target the epoch the write lands in."""

    def mine_to_last_block(self, ledger):
        length = ledger.epoch_length()
        ledger.mine(length - 1 - ledger.block_number() % length)
        assert ledger.pending_block_number() % length == 0

    def test_pending_credit_counts_in_last_block(self, ledger, funded, eoa):
        payer, _ = eoa
        funded.fund(ledger, payer, "1")
        assert funded.get_current_balance(ledger) == 10_000

        self.mine_to_last_block(ledger)
        assert funded.get_current_balance(ledger) == 20_000

    def test_transfer_in_last_block(self, ledger, prover, funded, bob, eoa):
        payer, _ = eoa
        funded.fund(ledger, payer, "1")
        self.mine_to_last_block(ledger)

        # Only spendable once the pending deposit is rolled over by this write
        funded.transfer(ledger, prover, payer, 15_000, bob.public_key)
        assert ledger.counter(funded.public_key_hash) == 1

        ledger.advance_to_next_epoch()
        assert funded.get_current_balance(ledger) == 5_000
        assert bob.get_current_balance(ledger) == 15_000

    def test_burn_in_last_block(self, ledger, prover, funded, eoa):
        payer, _ = eoa
        self.mine_to_last_block(ledger)
        funded.burn(ledger, prover, payer, 4_000)

        ledger.advance_to_next_epoch()
        assert funded.get_current_balance(ledger) == 6_000


class TestTransferScenario:
    """Scenario B: transfer between two accounts."""

    def test_transfer(self, ledger, prover, funded, bob, eoa):
        payer, _ = eoa
        funded.transfer(ledger, prover, payer, 2_500, bob.public_key)

        assert funded.get_current_balance(ledger) == 7_500
        # Receiver's credit sits in pending until the next epoch
        assert bob.get_current_balance(ledger) == 0

        ledger.advance_to_next_epoch()
        assert funded.get_current_balance(ledger) == 7_500
        assert bob.get_current_balance(ledger) == 2_500

    def test_transfer_bumps_counter(self, ledger, prover, funded, bob, eoa):
        payer, _ = eoa
        funded.transfer(ledger, prover, payer, 1, bob.public_key)
        funded.transfer(ledger, prover, payer, 1, bob.public_key)
        assert ledger.counter(funded.public_key_hash) == 2
        assert funded.get_current_balance(ledger) == 9_998

    def test_transfer_entire_balance(self, ledger, prover, funded, bob, eoa):
        payer, _ = eoa
        funded.transfer(ledger, prover, payer, 10_000, bob.public_key)
        ledger.advance_to_next_epoch()
        assert funded.get_current_balance(ledger) == 0
        assert bob.get_current_balance(ledger) == 10_000

    def test_receiver_can_spend(self, ledger, prover, funded, bob, eoa):
        payer, _ = eoa
        funded.transfer(ledger, prover, payer, 3_000, bob.public_key)
        ledger.advance_to_next_epoch()
        bob.transfer(ledger, prover, payer, 1_000, funded.public_key)
        ledger.advance_to_next_epoch()
        assert funded.get_current_balance(ledger) == 8_000
        assert bob.get_current_balance(ledger) == 2_000

    def test_supply_unchanged(self, ledger, prover, funded, bob, eoa):
        payer, _ = eoa
        funded.transfer(ledger, prover, payer, 2_500, bob.public_key)
        assert ledger.total_supply() == 10_000

    def test_overdraw_fails_before_submit(self, ledger, prover, funded, bob, eoa):
        payer, _ = eoa
        ledger.clear_audit_log()
        with pytest.raises(InvalidAmount):
            funded.transfer(ledger, prover, payer, 10_001, bob.public_key)
        assert ledger.get_audit_log() == []
        assert prover.compiled == []

    def test_negative_amount(self, ledger, prover, funded, bob, eoa):
        payer, _ = eoa
        with pytest.raises(InvalidAmount):
            funded.transfer(ledger, prover, payer, -5, bob.public_key)

    def test_fractional_amount(self, ledger, prover, funded, bob, eoa):
        payer, _ = eoa
        with pytest.raises(InvalidAmount):
            funded.transfer(ledger, prover, payer, "1.5", bob.public_key)

    def test_invalid_receiver(self, ledger, prover, funded, eoa):
        payer, _ = eoa
        with pytest.raises(InvalidKey):
            funded.transfer(ledger, prover, payer, 1, IDENTITY)

    def test_unfunded_sender(self, ledger, prover, alice, bob, eoa):
        payer, _ = eoa
        with pytest.raises(InvalidAmount):
            alice.transfer(ledger, prover, payer, 1, bob.public_key)

    def test_metrics(self, ledger, prover, funded, bob, eoa):
        payer, _ = eoa
        funded.transfer(ledger, prover, payer, 1, bob.public_key)
        assert metrics.get_counter("ledger_submissions", labels={"kind": "transfer"}) == 1
        assert metrics.get_histogram("operation_ms", labels={"operation": "transfer"}).count == 1


class TestBurnScenario:
    """Scenario C: burn, total supply and payout."""

    def test_burn(self, ledger, prover, funded, eoa):
        payer, _ = eoa
        before = ledger.balance_of(payer)
        funded.burn(ledger, prover, payer, 4_000)

        assert ledger.total_supply() == 6_000
        assert ledger.balance_of(payer) == before + 4_000 * UNIT_WEI
        # Debit is applied through pending, so it shows after the next rollover
        assert funded.get_current_balance(ledger) == 10_000

        ledger.advance_to_next_epoch()
        assert funded.get_current_balance(ledger) == 6_000

    def test_burn_entire_balance(self, ledger, prover, funded, eoa):
        payer, _ = eoa
        funded.burn(ledger, prover, payer, 10_000)
        ledger.advance_to_next_epoch()
        assert funded.get_current_balance(ledger) == 0
        assert ledger.total_supply() == 0

    def test_burn_bumps_counter(self, ledger, prover, funded, eoa):
        payer, _ = eoa
        funded.burn(ledger, prover, payer, 1)
        assert ledger.counter(funded.public_key_hash) == 1

    def test_overdraw(self, ledger, prover, funded, eoa):
        payer, _ = eoa
        with pytest.raises(InvalidAmount):
            funded.burn(ledger, prover, payer, 10_001)
        assert ledger.total_supply() == 10_000

    def test_burn_then_transfer_same_epoch(self, ledger, prover, funded, bob, eoa):
        """The pending debit is merged with the next epoch's rollover."""
        payer, _ = eoa
        funded.burn(ledger, prover, payer, 2_000)
        funded.transfer(ledger, prover, payer, 3_000, bob.public_key)
        ledger.advance_to_next_epoch()
        assert funded.get_current_balance(ledger) == 5_000
        assert bob.get_current_balance(ledger) == 3_000


class TestLockScenario:
    """Scenario D: lock to an address."""

    def test_locked_account_rejects_other_senders(self, ledger, prover, funded, bob, eoa):
        payer, holder = eoa
        funded.lock(ledger, payer, holder)

        with pytest.raises(Unauthorized) as exc_info:
            funded.transfer(ledger, prover, payer, 100, bob.public_key)
        assert exc_info.value.reason == "Not authorized"

        funded.transfer(ledger, prover, holder, 100, bob.public_key)
        assert funded.get_current_balance(ledger) == 9_900

    def test_locked_burn(self, ledger, prover, funded, eoa):
        payer, holder = eoa
        funded.lock(ledger, payer, holder)
        with pytest.raises(Unauthorized):
            funded.burn(ledger, prover, payer, 100)
        funded.burn(ledger, prover, holder, 100)

    def test_unlock(self, ledger, prover, funded, bob, eoa):
        payer, holder = eoa
        funded.lock(ledger, payer, holder)

        with pytest.raises(Unauthorized):
            funded.unlock(ledger, payer)

        funded.unlock(ledger, holder)
        funded.transfer(ledger, prover, payer, 100, bob.public_key)
        assert ledger.counter(funded.public_key_hash) == 1

    def test_lock_twice(self, ledger, funded, eoa):
        payer, holder = eoa
        funded.lock(ledger, payer, holder)
        with pytest.raises(ChainRejected) as exc_info:
            funded.lock(ledger, payer, payer)
        assert exc_info.value.reason == "Already locked"

    def test_lock_normalizes_address(self, ledger, funded, eoa):
        payer, holder = eoa
        funded.lock(ledger, payer, holder.lower())
        assert ledger.locked_to(funded.public_key) == holder

    def test_lock_rejects_malformed_address(self, ledger, funded, eoa):
        payer, _ = eoa
        with pytest.raises(ValueError):
            funded.lock(ledger, payer, "0x1234")


class TestCounterRace:
    """Two operations proved against the same counter: only one lands."""

    def test_second_submission_is_stale(self, ledger, prover, funded, bob, eoa):
        payer, _ = eoa
        first = funded.prepare_transfer(ledger, prover, 100, bob.public_key)
        second = funded.prepare_transfer(ledger, prover, 200, bob.public_key)
        assert first["counter"] == second["counter"] == 0

        ledger.submit(SubmissionKind.TRANSFER, first, sender=payer)
        with pytest.raises(StaleCounter):
            ledger.submit(SubmissionKind.TRANSFER, second, sender=payer)

        assert funded.get_current_balance(ledger) == 9_900

    def test_replayed_burn(self, ledger, prover, funded, eoa):
        payer, _ = eoa
        args = funded.prepare_burn(ledger, prover, 100)
        ledger.submit(SubmissionKind.BURN, args, sender=payer)
        with pytest.raises(StaleCounter):
            ledger.submit(SubmissionKind.BURN, args, sender=payer)
        assert ledger.total_supply() == 9_900

    def test_stale_balance_rejected(self, ledger, prover, funded, bob, eoa):
        """A proof over an outdated ciphertext fails verification."""
        payer, _ = eoa
        args = funded.prepare_transfer(ledger, prover, 100, bob.public_key)
        args["counter"] = None
        ledger.submit(SubmissionKind.TRANSFER, funded.prepare_transfer(ledger, prover, 1, bob.public_key), sender=payer)
        with pytest.raises(ChainRejected) as exc_info:
            ledger.submit(SubmissionKind.TRANSFER, args, sender=payer)
        assert exc_info.value.reason == "Transfer proof verification failed"


class TestProverRetry:
    """Only BackendUnavailable is retried, and only when asked for."""

    def test_no_retry_by_default(self, ledger, prover, funded, bob, eoa):
        payer, _ = eoa
        prover.fail_next(1)
        with pytest.raises(BackendUnavailable):
            funded.transfer(ledger, prover, payer, 1, bob.public_key)
        assert ledger.counter(funded.public_key_hash) == 0

    def test_retry_recovers(self, ledger, prover, alice_account, bob, eoa, test_config):
        payer, _ = eoa
        client = Client(
            account=alice_account,
            config=test_config,
            prover_retry=RetryConfig(max_retries=3, base_delay=0.0, jitter=0.0),
        )
        client.fund(ledger, payer, "1")
        ledger.advance_to_next_epoch()

        prover.fail_next(2)
        client.transfer(ledger, prover, payer, 1, bob.public_key)
        assert ledger.counter(client.public_key_hash) == 1

    def test_retry_from_config(self, ledger, prover, alice_account, bob, eoa):
        payer, _ = eoa
        config = ZetherConfig(bsgs_table_size=1024, retry=RetryConfig(max_retries=2, base_delay=0.0, jitter=0.0))
        client = Client(account=alice_account, config=config)
        client.fund(ledger, payer, "1")
        ledger.advance_to_next_epoch()

        prover.fail_next(2)
        client.transfer(ledger, prover, payer, 1, bob.public_key)
        assert ledger.counter(client.public_key_hash) == 1

    def test_retry_exhausted(self, ledger, prover, alice_account, bob, eoa, test_config):
        payer, _ = eoa
        client = Client(
            account=alice_account,
            config=test_config,
            prover_retry=RetryConfig(max_retries=1, base_delay=0.0, jitter=0.0),
        )
        client.fund(ledger, payer, "1")
        ledger.advance_to_next_epoch()

        prover.fail_next(5)
        with pytest.raises(BackendUnavailable):
            client.burn(ledger, prover, payer, 1)


class TestClientAccount:
    """Account handling in the client."""

    def test_from_private_key(self, test_config):
        client = Client.from_private_key(CLIENT1_PRIVATE_KEY, config=test_config)
        assert client.private_key == int(CLIENT1_PRIVATE_KEY)
        assert CLIENT1_PRIVATE_KEY not in repr(client)

    def test_generated_account(self):
        assert Client().public_key != Client().public_key

    def test_decode_failure_with_small_max(self, ledger, funded, alice_account):
        """A client MAX below the real balance makes it undecodable."""
        narrow = Client(account=alice_account, max_value=100, config=ZetherConfig(bsgs_table_size=16))
        with pytest.raises(BalanceDecodeFailure):
            narrow.get_current_balance(ledger)

    def test_config_max_value_used_for_decode(self, ledger, funded, alice_account):
        narrow = Client(account=alice_account, config=ZetherConfig(max_value=100, bsgs_table_size=16))
        assert narrow.max_value == 100
        with pytest.raises(BalanceDecodeFailure):
            narrow.get_current_balance(ledger)

    def test_explicit_max_value_beats_config(self, ledger, funded, alice_account):
        config = ZetherConfig(max_value=100, bsgs_table_size=1024)
        client = Client(account=alice_account, max_value=2**32 - 1, config=config)
        assert client.get_current_balance(ledger) == 10_000

    def test_defaults_to_ledger_max(self, ledger, funded, alice_account):
        client = Client(account=alice_account, config=ZetherConfig(bsgs_table_size=1024))
        assert client.max_value is None
        assert client.get_current_balance(ledger) == 10_000

    def test_roll_over(self, ledger, alice, eoa):
        payer, _ = eoa
        alice.fund(ledger, payer, "1")
        ledger.advance_to_next_epoch()
        alice.roll_over(ledger, payer)
        state = ledger.read_encrypted_state(alice.public_key)
        assert state.last_rollover_epoch == ledger.block_number() // ledger.epoch_length()
        assert alice.get_current_balance(ledger) == 10_000
