"""
Pytest configuration and shared fixtures for Advisor CRM tests.

Test Categories:
- unit: Fast tests with no external dependencies (< 100ms each)
- slow: Tests that start the FastAPI app or background threads
- integration: Tests requiring external services (Ollama)

Run categories:
- pytest -m unit              # Fast unit tests only
- pytest -m "not slow"        # Skip slow tests
- pytest -m "not integration" # Skip integration tests
- pytest                      # All tests
"""
import os
import tempfile
import pytest

from api.services.crm_repository import InMemoryCrmRepository
from api.services.duplicate_matcher import DuplicatePersonMatcher
from api.services.store_access import StoreAccess
from tests.factories import FIXED_NOW
from tests.reset_singletons import reset_lightweight_singletons


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "slow: Slow tests (app startup, background threads)")
    config.addinivalue_line("markers", "integration: Integration tests (external services required)")


@pytest.fixture(autouse=True)
def reset_singletons_after_test():
    """Keep module singletons from leaking between tests."""
    yield
    reset_lightweight_singletons()


@pytest.fixture
def temp_db():
    """Create a temporary database path for testing."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        path = f.name
    yield path
    for suffix in ("", "-wal", "-shm"):
        if os.path.exists(path + suffix):
            os.unlink(path + suffix)


@pytest.fixture
def repository():
    """In-memory repository."""
    return InMemoryCrmRepository()


@pytest.fixture
def store(repository):
    """Serialized access over the in-memory repository."""
    return StoreAccess(repository)


@pytest.fixture
def matcher():
    """Matcher with default thresholds."""
    return DuplicatePersonMatcher()


@pytest.fixture
def fixed_clock():
    """Clock returning FIXED_NOW."""
    return lambda: FIXED_NOW


@pytest.fixture(scope="function")
def mock_settings(tmp_path, monkeypatch):
    """
    Mock settings for testing.

    Uses temporary paths to avoid affecting real data.
    """
    from config.settings import Settings

    mock = Settings(
        ADVISOR_DATA_PATH=tmp_path / "data",
        ADVISOR_CONTACTS_CSV=tmp_path / "contacts.csv",
        ADVISOR_CALENDAR_ID="work",
        ADVISOR_CONTACTS_GROUP="Clients",
    )

    # Patch the global settings
    monkeypatch.setattr("config.settings.settings", mock)
    return mock
