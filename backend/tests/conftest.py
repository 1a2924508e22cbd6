"""
Pytest configuration for test suite.

Puts the backend on sys.path, registers markers and keeps every test off
real Redis and network services.
"""
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import redis

# Add the backend directory to sys.path for imports
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from market_engine.schemas.transaction import LedgerEntry, TransactionType  # noqa: E402
from market_engine.services.redis_client import reset_redis_client  # noqa: E402


def pytest_configure(config):
    """Register custom markers dynamically."""
    config.addinivalue_line(
        "markers", "integration: integration tests that require external services"
    )
    config.addinivalue_line(
        "markers", "unit: unit tests with mocked dependencies"
    )


@pytest.fixture(autouse=True)
def no_redis():
    """Make the shared Redis client factory behave as if Redis were down."""
    reset_redis_client()
    with patch("market_engine.services.redis_client.redis.from_url") as mock_from_url:
        mock_from_url.return_value.ping.side_effect = redis.ConnectionError("Redis disabled in tests")
        yield mock_from_url
    reset_redis_client()


@pytest.fixture
def mock_graphql():
    """GraphQL client double; set `execute.return_value` / `side_effect` per test."""
    client = MagicMock()
    client.last_error = None
    return client


@pytest.fixture
def make_entry():
    """Factory for ledger entries with sensible defaults."""
    def _make(entry_id="0xabc", entry_type=TransactionType.DEPOSIT, assets="0", shares="0",
              timestamp=0, vault_id="0xvault", curve_id=None, **extra):
        return LedgerEntry(
            id=entry_id,
            type=entry_type,
            assets=assets,
            shares=shares,
            timestamp=timestamp,
            vault_id=vault_id,
            curve_id=curve_id,
            **extra
        )
    return _make
