"""
Sensor Collector - BLE temperature/humidity polling service.

Polls a single Bluetooth Low Energy temperature/humidity sensor on a fixed
interval, stores the readings in SQLite, prunes them after a retention
window and serves them through a small read-only HTTP API.

Features:
- Bounded-retry BLE acquisition with guaranteed disconnect
- SQLite time-series store with daily retention
- Read-only JSON API for dashboards
- Command line interface for one-off collection and inspection
"""

__version__ = "1.0.0"
__author__ = "Sensor Collector Team"
__description__ = "BLE temperature/humidity polling service"

# Package imports for convenience
from .utils.config import Config, CollectorSettings, ConfigurationError, load_settings
from .utils.logging import ProductionLogger, PerformanceMonitor
from .ble.collector import SensorCollector, Reading, AcquisitionError
from .storage.readings import ReadingStore, StoredReading, StoreError
from .service.daemon import CollectorDaemon

__all__ = [
    "Config",
    "CollectorSettings",
    "ConfigurationError",
    "load_settings",
    "ProductionLogger",
    "PerformanceMonitor",
    "SensorCollector",
    "Reading",
    "AcquisitionError",
    "ReadingStore",
    "StoredReading",
    "StoreError",
    "CollectorDaemon"
]
