"""
Pytest configuration and shared fixtures for Zether tests.

This module provides shared fixtures including:
- Deterministic accounts derived from seeds
- A fresh in-memory ledger and proving backend per test
- Clients with a small baby-step table so decodes stay fast
- Metrics reset between tests
"""

import os
import sys

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from zether.babyjub import get_curve
from zether.client import Client
from zether.config import ZetherConfig
from zether.keys import from_seed
from zether.ledger import InMemoryLedger
from zether.monitoring.metrics import metrics
from zether.prover import InMemoryProvingBackend

# Same parameters as the BasicZether contract tests
EPOCH_LENGTH = 20
DECIMALS = 4
MAX = 2**32 - 1

# Small table keeps decodes of test-sized balances to a few giant steps
TEST_TABLE_SIZE = 1024


@pytest.fixture(scope="session")
def curve():
    """Shared curve context."""
    return get_curve()


@pytest.fixture
def alice_account(curve):
    return from_seed("alice", curve)


@pytest.fixture
def bob_account(curve):
    return from_seed("bob", curve)


@pytest.fixture
def ledger():
    """Fresh ledger positioned at the start of an epoch."""
    chain = InMemoryLedger(epoch_length=EPOCH_LENGTH, decimals=DECIMALS, max_value=MAX)
    chain.advance_to_next_epoch()
    return chain


@pytest.fixture
def prover():
    return InMemoryProvingBackend()


@pytest.fixture
def test_config():
    return ZetherConfig(max_value=MAX, bsgs_table_size=TEST_TABLE_SIZE)


@pytest.fixture
def alice(alice_account, test_config):
    return Client(account=alice_account, config=test_config)


@pytest.fixture
def bob(bob_account, test_config):
    return Client(account=bob_account, config=test_config)


@pytest.fixture
def eoa():
    """Two externally owned addresses (payer and lock holder)."""
    return InMemoryLedger.new_address(), InMemoryLedger.new_address()


@pytest.fixture(autouse=True)
def reset_metrics():
    """Reset global metrics before each test."""
    metrics.reset()
    yield
    metrics.reset()
