"""
SQLite reading store.
Append-only persistence of sensor readings with a timestamp index, windowed
retention pruning and the read-only queries used by the HTTP API.
"""

import logging
import sqlite3
import time
from contextlib import closing
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Union

from ..ble.collector import Reading
from ..utils.logging import PerformanceMonitor


TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S.%f"

CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS sensor_readings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp DATETIME NOT NULL,
    temperature REAL,
    humidity INTEGER
)
"""

CREATE_INDEX_SQL = "CREATE INDEX IF NOT EXISTS idx_timestamp ON sensor_readings (timestamp)"

# Rows written by other tools may lack a value or carry a foreign timestamp
COMPLETE_ROW_SQL = (
    "temperature IS NOT NULL AND humidity IS NOT NULL "
    "AND timestamp GLOB '[0-9][0-9][0-9][0-9]-[0-9][0-9]-[0-9][0-9] [0-9][0-9]:[0-9][0-9]:[0-9][0-9]*'"
)

SQLITE_MAX_INTEGER = 2 ** 63 - 1


def format_timestamp(value: datetime) -> str:
    """Render a timestamp as stored: 'YYYY-MM-DD HH:MM:SS.mmm'."""
    return value.strftime(TIMESTAMP_FORMAT)[:-3]


def parse_timestamp(value: str) -> datetime:
    """Parse a stored timestamp."""
    return datetime.fromisoformat(value)


class StoreError(Exception):
    """Raised when the backing database cannot be reached or updated."""
    pass


class StoreConnectionError(StoreError):
    """Raised when the database file cannot be opened."""
    pass


@dataclass(frozen=True)
class StoredReading:
    """A reading as persisted in the store."""
    id: int
    timestamp: datetime
    temperature: float
    humidity: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> 'StoredReading':
        return cls(
            id=row['id'],
            timestamp=parse_timestamp(row['timestamp']),
            temperature=float(row['temperature']),
            humidity=int(row['humidity'])
        )


def _order_keyword(order: str) -> str:
    normalized = (order or "").lower()
    if normalized not in ("asc", "desc"):
        raise ValueError(f"Invalid order '{order}'. Use 'asc' or 'desc'.")
    return normalized.upper()


class ReadingStore:
    """
    Time-series store for sensor readings backed by SQLite.

    Every operation opens its own short-lived connection, so the collector
    daemon and API requests can share the database file. Inserts are stamped
    with the store clock, never with a caller supplied time.
    """

    def __init__(self,
                 db_path: Union[str, Path],
                 read_only: bool = False,
                 timeout: float = 5.0,
                 clock: Callable[[], datetime] = datetime.now,
                 logger: Optional[logging.Logger] = None,
                 performance_monitor: Optional[PerformanceMonitor] = None):
        """
        Initialize the store.

        Args:
            db_path: SQLite database file
            read_only: Open connections in read-only mode (API side)
            timeout: Seconds to wait on a locked database
            clock: Source of insert timestamps
            logger: Logger instance
            performance_monitor: Performance monitoring instance
        """
        self.db_path = Path(db_path)
        self.read_only = read_only
        self.timeout = timeout
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)
        self.performance_monitor = performance_monitor

    def _connect(self) -> sqlite3.Connection:
        try:
            if self.read_only:
                conn = sqlite3.connect(f"file:{self.db_path}?mode=ro", uri=True, timeout=self.timeout)
            else:
                conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
        except sqlite3.Error as e:
            raise StoreConnectionError(f"Could not connect to database {self.db_path}: {e}") from e

        conn.row_factory = sqlite3.Row
        return conn

    def initialize(self):
        """
        Create the table and its timestamp index if they do not exist.

        Raises:
            StoreError: If the database cannot be created
        """
        if self.read_only:
            raise StoreError("Cannot initialize a read-only store")

        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreError(f"Failed to create database directory {self.db_path.parent}: {e}") from e

        try:
            with closing(self._connect()) as conn:
                # WAL lets API readers run while the collector writes
                conn.execute("PRAGMA journal_mode=WAL")
                with conn:
                    conn.execute(CREATE_TABLE_SQL)
                    conn.execute(CREATE_INDEX_SQL)
        except sqlite3.Error as e:
            raise StoreError(f"Failed to set up database {self.db_path}: {e}") from e

        self.logger.info(f"Database setup complete ({self.db_path})")

    def append(self, reading: Reading) -> bool:
        """
        Insert one reading stamped with the current store time.

        Returns:
            bool: True if the row was written
        """
        if reading.temperature is None or reading.humidity is None:
            self.logger.error(f"Refusing to store incomplete reading: {reading}")
            return False

        stamped_at = self.clock()
        start = time.monotonic()
        success = False

        try:
            with closing(self._connect()) as conn:
                with conn:
                    conn.execute(
                        "INSERT INTO sensor_readings (timestamp, temperature, humidity) VALUES (?, ?, ?)",
                        (format_timestamp(stamped_at), float(reading.temperature), int(reading.humidity))
                    )
            success = True
        except (sqlite3.Error, StoreError) as e:
            self.logger.error(f"Error storing data: {e}")
        finally:
            if self.performance_monitor:
                self.performance_monitor.log_store_write(time.monotonic() - start, success)

        if success:
            self.logger.info(
                f"Saved data: T={reading.temperature:.2f}°C, H={reading.humidity}% "
                f"at {stamped_at.strftime('%Y-%m-%d %H:%M:%S')}."
            )
        return success

    def prune_older_than(self, cutoff: datetime) -> int:
        """
        Delete every row stamped strictly before cutoff.

        Returns:
            int: Number of rows deleted

        Raises:
            StoreError: If the delete fails
        """
        try:
            with closing(self._connect()) as conn:
                with conn:
                    cursor = conn.execute(
                        "DELETE FROM sensor_readings WHERE timestamp < ?",
                        (format_timestamp(cutoff),)
                    )
                    return cursor.rowcount
        except sqlite3.Error as e:
            raise StoreError(f"Error applying retention policy: {e}") from e

    def _fetch(self, query: str, params: tuple = (), first_only: bool = False) -> List[StoredReading]:
        readings = []
        try:
            with closing(self._connect()) as conn:
                for row in conn.execute(query, params):
                    try:
                        readings.append(StoredReading.from_row(row))
                    except (TypeError, ValueError) as e:
                        self.logger.warning(f"Skipping unreadable row id={row['id']}: {e}")
                        continue
                    if first_only:
                        break
        except sqlite3.Error as e:
            raise StoreError(f"Could not retrieve sensor data: {e}") from e
        return readings

    def query_range(self, start: datetime, end: datetime, order: str = "asc") -> List[StoredReading]:
        """Readings with start <= timestamp < end."""
        keyword = _order_keyword(order)
        return self._fetch(
            "SELECT id, timestamp, temperature, humidity FROM sensor_readings "
            f"WHERE timestamp >= ? AND timestamp < ? AND {COMPLETE_ROW_SQL} ORDER BY timestamp {keyword}, id {keyword}",
            (format_timestamp(start), format_timestamp(end))
        )

    def query_latest(self) -> Optional[StoredReading]:
        """Most recent reading, or None on an empty store."""
        rows = self._fetch(
            "SELECT id, timestamp, temperature, humidity FROM sensor_readings "
            f"WHERE {COMPLETE_ROW_SQL} ORDER BY timestamp DESC, id DESC",
            first_only=True
        )
        return rows[0] if rows else None

    def query_all(self, limit: Optional[int] = None, order: str = "desc") -> List[StoredReading]:
        """All readings ordered by time, optionally limited."""
        keyword = _order_keyword(order)
        query = (
            "SELECT id, timestamp, temperature, humidity FROM sensor_readings "
            f"WHERE {COMPLETE_ROW_SQL} ORDER BY timestamp {keyword}, id {keyword}"
        )
        params: tuple = ()
        if limit is not None:
            if limit < 0 or limit > SQLITE_MAX_INTEGER:
                raise ValueError(f"limit must be between 0 and {SQLITE_MAX_INTEGER}")
            query += " LIMIT ?"
            params = (limit,)
        return self._fetch(query, params)

    def count(self) -> int:
        """Number of stored readings."""
        try:
            with closing(self._connect()) as conn:
                return conn.execute("SELECT COUNT(*) FROM sensor_readings").fetchone()[0]
        except sqlite3.Error as e:
            raise StoreError(f"Could not count sensor data: {e}") from e
