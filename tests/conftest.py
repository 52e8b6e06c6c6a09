"""
Pytest configuration and shared fixtures

Fun fact: The name "conftest" comes from pytest's configuration testing
framework. Files named conftest.py are automatically discovered and their
fixtures are available to all tests in the same directory and subdirectories!
"""

import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

import pytest

from foodxchange.accounts.models import Actor, UserRole
from foodxchange.exchange import Exchange
from foodxchange.kernel.policy import MarketplacePolicy
from foodxchange.kernel.store import SQLiteEntityStore
from foodxchange.kernel.time import TestTimeProvider
from foodxchange.proposal.models import proposal_unique_key


@pytest.fixture
def temp_db() -> Iterator[Path]:
    """Provide a temporary database file that's cleaned up after test"""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)

    yield db_path

    # Cleanup (WAL mode leaves side files next to the database)
    for path in (db_path, Path(f"{db_path}-wal"), Path(f"{db_path}-shm")):
        if path.exists():
            path.unlink()


@pytest.fixture
def test_time() -> TestTimeProvider:
    """
    Provide a controllable time provider for deterministic tests

    Default time: 2025-01-15 12:00:00 UTC, a Wednesday in the middle of the
    first quarter - far enough from month ends that deadline arithmetic
    never crosses a boundary by accident.
    """
    return TestTimeProvider(datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def policy() -> MarketplacePolicy:
    """
    Provide the default marketplace policy

    Fun fact: Weighted scoring sheets like the one this policy encodes were
    standard issue in public procurement decades before e-sourcing existed.
    """
    return MarketplacePolicy()


@pytest.fixture
def store(temp_db: Path, test_time: TestTimeProvider) -> SQLiteEntityStore:
    """Provide a fresh entity store with the proposal unique key registered"""
    return SQLiteEntityStore(
        temp_db, test_time, unique_keys={"proposals": proposal_unique_key}
    )


@pytest.fixture
def exchange(
    temp_db: Path, policy: MarketplacePolicy, test_time: TestTimeProvider
) -> Exchange:
    """Provide a fully wired exchange on the temporary database"""
    return Exchange(temp_db, policy, test_time)


# =============================================================================
# Actors
# =============================================================================


@pytest.fixture
def buyer() -> Actor:
    return Actor(user_id="buyer-1", role=UserRole.BUYER)


@pytest.fixture
def other_buyer() -> Actor:
    return Actor(user_id="buyer-2", role=UserRole.BUYER)


@pytest.fixture
def vendor() -> Actor:
    """Primary bidding vendor"""
    return Actor(user_id="vendor-1", role=UserRole.VENDOR)


@pytest.fixture
def second_vendor() -> Actor:
    return Actor(user_id="vendor-2", role=UserRole.VENDOR)


@pytest.fixture
def third_vendor() -> Actor:
    return Actor(user_id="vendor-3", role=UserRole.VENDOR)
