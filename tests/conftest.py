"""
Pytest configuration and fixtures.

Shared fixtures for all tests.
"""

import json
import os

import pytest

# Keep developer overrides out of the tests
os.environ.pop("SOROSWAP_PAIRS_DB_PATH", None)
os.environ.pop("SOROSWAP_PAIRS_PROCESS_TIMEOUT", None)


def make_payload(**fields) -> bytes:
    """Encode an event dict the way the host delivers it."""
    return json.dumps(fields).encode("utf-8")


def build_new_pair_payload(
    pair_address: str = "P1",
    token_0: str = "A",
    token_1: str = "B",
    timestamp: str = "2024-01-01T00:00:00Z",
) -> bytes:
    return make_payload(
        type="new_pair",
        pair_address=pair_address,
        token_0=token_0,
        token_1=token_1,
        timestamp=timestamp,
    )


def build_sync_payload(
    contract_id: str = "P1",
    new_reserve_0: str = "100",
    new_reserve_1: str = "50",
    timestamp: str = "2024-01-01T01:00:00Z",
    ledger_sequence: int = 42,
) -> bytes:
    return make_payload(
        type="sync",
        contract_id=contract_id,
        new_reserve_0=new_reserve_0,
        new_reserve_1=new_reserve_1,
        timestamp=timestamp,
        ledger_sequence=ledger_sequence,
    )


@pytest.fixture
def db_path(tmp_path):
    """Path for a fresh SQLite file."""
    return tmp_path / "pairs.sqlite"


@pytest.fixture
def store(db_path):
    """Open pair store, closed after the test."""
    from soroswap_pairs.storage import PairStore

    pair_store = PairStore(db_path)
    yield pair_store
    pair_store.close()


@pytest.fixture
def consumer(db_path):
    """Initialized consumer, closed after the test."""
    from soroswap_pairs.consumer import new

    plugin = new()
    plugin.initialize({"db_path": str(db_path)})
    yield plugin
    plugin.close()


@pytest.fixture
def new_pair_payload():
    """Builder for new_pair payloads (defaults to the P1 scenario)."""
    return build_new_pair_payload


@pytest.fixture
def sync_payload():
    """Builder for sync payloads (defaults to the P1 scenario)."""
    return build_sync_payload


@pytest.fixture
def payload():
    """Builder for arbitrary JSON payloads."""
    return make_payload
