"""
Pytest configuration and shared fixtures for sensor collector tests.
Provides common test fixtures, mock objects, and test utilities.
"""

import pytest
from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import Mock, MagicMock

# Import the modules we're testing
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from sensor_collector.utils.config import CollectorSettings, DeviceTarget, PollSchedule
from sensor_collector.utils.logging import ProductionLogger, PerformanceMonitor
from sensor_collector.storage.readings import ReadingStore


TEST_ADDRESS = "A4:C1:38:12:34:56"


class FakeClock:
    """Deterministic clock that can be moved by hand."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def test_settings(tmp_path):
    """Collector settings pointing at a temporary database with fast timeouts."""
    return CollectorSettings(
        device=DeviceTarget(address=TEST_ADDRESS),
        schedule=PollSchedule(interval=timedelta(minutes=10)),
        database_path=tmp_path / "sensor_data.db",
        connect_timeout=2.0,
        notification_timeout=1.0,
        max_attempts=3,
        retry_delay=0.0,
        log_level="DEBUG",
        log_dir=tmp_path / "logs",
        log_enable_console=False,
    )


@pytest.fixture
def mock_logger():
    """Create a mock logger for testing."""
    logger = Mock(spec=ProductionLogger)
    logger.debug = Mock()
    logger.info = Mock()
    logger.warning = Mock()
    logger.error = Mock()
    logger.critical = Mock()
    return logger


@pytest.fixture
def mock_performance_monitor():
    """Create a mock performance monitor for testing."""
    monitor = Mock(spec=PerformanceMonitor)
    monitor.record_metric = Mock()
    monitor.log_acquisition = Mock()
    monitor.log_store_write = Mock()
    monitor.log_retention = Mock()
    monitor.measure_time = Mock()
    monitor.get_metrics = Mock(return_value={})

    # Mock the context manager for measure_time
    mock_context = MagicMock()
    mock_context.__enter__ = Mock(return_value=mock_context)
    mock_context.__exit__ = Mock(return_value=None)
    monitor.measure_time.return_value = mock_context

    return monitor


@pytest.fixture
def fake_clock():
    """Clock starting at a fixed afternoon."""
    return FakeClock(datetime(2025, 8, 5, 12, 0, 0))


@pytest.fixture
def reading_store(tmp_path, fake_clock):
    """Initialized writable store on a temporary database."""
    store = ReadingStore(tmp_path / "sensor_data.db", clock=fake_clock)
    store.initialize()
    return store


@pytest.fixture
def device_file(tmp_path):
    """Write a device configuration file and return its path."""
    def _write(content: str) -> Path:
        path = tmp_path / "config.json"
        path.write_text(content)
        return path

    return _write


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
    config.addinivalue_line(
        "markers", "requires_bluetooth: mark test as requiring Bluetooth hardware"
    )


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers based on test location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)

        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
