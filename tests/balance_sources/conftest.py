"""
Shared fixtures for balance source tests.
"""

import pytest

from tests.balance_sources.fakes import DENOM, LP_TOKEN, PAIR, FakeLedger


@pytest.fixture
def ledger() -> FakeLedger:
    """Ledger with one pool: 1000 LP shares backed by 2000 underlying (rate 2.0)."""
    fake = FakeLedger()
    fake.add_pool(
        PAIR,
        LP_TOKEN,
        DENOM,
        share_supply=1000,
        underlying_supply=2000,
        holders={"addr1": "10"},
    )
    return fake


@pytest.fixture
def batches() -> list:
    return []


@pytest.fixture
def collect(batches):
    """Synchronous batch callback that stores every delivered page."""
    def on_batch(records):
        batches.append([r.to_dict() for r in records])
    return on_batch
