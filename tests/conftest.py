"""Pytest configuration and fixtures for kasina-breath tests."""

from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest

from kasina_breath.config import DeviceSettings, RecoverySettings
from tests.helpers.fakes import FakeClientFactory, FakeClock, FakeScanner, FakeUtcClock


def pytest_configure(config):
    """Register custom test markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests that do not require external dependencies"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests combining multiple components"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take significant time (>5 seconds)"
    )


# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture
def config_file(tmp_path, monkeypatch) -> Path:
    """Point the config loader at an empty per-test config file."""
    path = tmp_path / "config.toml"
    monkeypatch.setenv("KASINA_BREATH_CONFIG", str(path))
    return path


@pytest.fixture
def device_settings() -> DeviceSettings:
    """Device settings with timers long enough not to fire unless a test wants them."""
    return DeviceSettings(heartbeat_interval=60.0, stall_timeout=60.0)


@pytest.fixture
def recovery_settings() -> RecoverySettings:
    return RecoverySettings()


# =============================================================================
# BLE Fakes
# =============================================================================


@pytest.fixture
def scanner() -> FakeScanner:
    """Scanner that sees a single belt."""
    return FakeScanner.with_belt()


@pytest.fixture
def client_factory() -> FakeClientFactory:
    return FakeClientFactory()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# =============================================================================
# Session Fixtures
# =============================================================================


@pytest.fixture
def utc_clock() -> FakeUtcClock:
    return FakeUtcClock(datetime(2025, 10, 1, 7, 0, 0, tzinfo=UTC))


@pytest.fixture
def api() -> Mock:
    """Session API whose saves succeed."""
    client = Mock()
    client.save_session = AsyncMock(return_value=True)
    return client


@pytest.fixture
def failing_api() -> Mock:
    """Session API whose saves fail."""
    client = Mock()
    client.save_session = AsyncMock(return_value=False)
    return client


# =============================================================================
# Database Test Fixtures
# =============================================================================


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Path for a throwaway SQLite database."""
    return tmp_path / f"test_kasina_{datetime.now().timestamp()}.db"


@pytest.fixture
def database(temp_db):
    """Open Database on a temporary file, closed after the test."""
    from kasina_breath.database.session import Database

    db = Database(str(temp_db)).open()
    yield db
    db.close()


@pytest.fixture
def recovery_store(database):
    from kasina_breath.database.store import DatabaseRecoveryStore

    return DatabaseRecoveryStore(database)


@pytest.fixture
def profile_store(database):
    from kasina_breath.database.store import CalibrationProfileStore

    return CalibrationProfileStore(database)
