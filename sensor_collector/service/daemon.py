"""
Background daemon for the sensor collector.
Runs the acquisition and retention loops until a termination signal arrives.
"""

import asyncio
import signal
import time
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from ..utils.config import CollectorSettings
from ..utils.logging import ProductionLogger, PerformanceMonitor, setup_logging
from ..ble.collector import SensorCollector
from ..storage.readings import ReadingStore, StoreError
from .policy import collect_with_retries, describe_retention, retention_cutoff


@dataclass
class DaemonStats:
    """Daemon statistics container."""
    start_time: datetime
    ticks: int = 0
    readings_stored: int = 0
    failed_ticks: int = 0
    store_failures: int = 0
    retention_runs: int = 0
    rows_pruned: int = 0
    errors_count: int = 0
    last_reading_time: Optional[datetime] = None
    last_retention_time: Optional[datetime] = None


class CollectorDaemonError(Exception):
    """Base exception for daemon operations."""
    pass


class CollectorDaemon:
    """
    Long-running collector process.

    Two independent tasks share only the reading store:
    - acquisition: bounded-retry collection then append, every poll interval
    - retention: prune rows older than the retention window, daily

    An error inside one iteration is logged and the loop carries on; only
    startup failures stop the daemon.
    """

    def __init__(self,
                 settings: CollectorSettings,
                 collector: Optional[SensorCollector] = None,
                 store: Optional[ReadingStore] = None,
                 logger: Optional[ProductionLogger] = None,
                 performance_monitor: Optional[PerformanceMonitor] = None,
                 clock: Callable[[], datetime] = datetime.now):
        """Initialize daemon."""
        self.settings = settings
        self.logger = logger
        self.performance_monitor = performance_monitor
        self.collector = collector
        self.store = store
        self.clock = clock

        self._running = False
        self._shutdown = asyncio.Event()
        self._acquisition_task: Optional[asyncio.Task] = None
        self._retention_task: Optional[asyncio.Task] = None

        self._stats = DaemonStats(start_time=clock())

    def _initialize_components(self):
        """Build whichever components were not injected and prepare the store."""
        try:
            if self.logger is None:
                self.logger = setup_logging(self.settings)
            if self.performance_monitor is None:
                self.performance_monitor = PerformanceMonitor()
            if self.store is None:
                self.store = ReadingStore(
                    self.settings.database_path,
                    performance_monitor=self.performance_monitor
                )
            if self.collector is None:
                self.collector = SensorCollector.from_settings(
                    self.settings,
                    performance_monitor=self.performance_monitor
                )

            self.store.initialize()
            self.logger.info("Daemon components initialized successfully")

        except (StoreError, OSError) as e:
            if self.logger:
                self.logger.error(f"Component initialization failed: {e}")
            raise CollectorDaemonError(f"Initialization failed: {e}") from e

    def _setup_signal_handlers(self):
        """Set up signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def signal_handler(signum):
            self.logger.info(f"Received {signal.Signals(signum).name}, initiating graceful shutdown...")
            self.request_shutdown()

        for signum in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(signum, signal_handler, signum)
            except (NotImplementedError, RuntimeError):
                # Not available on this platform or outside the main thread
                self.logger.debug(f"Signal handler for {signum} not installed")

    def request_shutdown(self):
        """Ask both loops to stop at their next suspension point."""
        self._shutdown.set()

    async def _sleep(self, seconds: float) -> bool:
        """Sleep unless shutdown is requested first. Returns True on shutdown."""
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    async def run_acquisition_tick(self) -> bool:
        """
        Collect with bounded retries and store the reading.

        Returns:
            bool: True if a reading was stored
        """
        self._stats.ticks += 1
        start = time.monotonic()

        reading, ok = await collect_with_retries(
            self.settings.max_attempts,
            self.settings.retry_delay,
            self.collector.collect_single_reading,
            label=self.settings.device.address,
            sleep=self._sleep,
        )
        self.performance_monitor.log_acquisition(time.monotonic() - start, ok)

        if not ok:
            self._stats.failed_ticks += 1
            return False

        stored = await asyncio.get_running_loop().run_in_executor(None, self.store.append, reading)
        if stored:
            self._stats.readings_stored += 1
            self._stats.last_reading_time = self.clock()
        else:
            self._stats.store_failures += 1
        return stored

    async def run_retention_sweep(self) -> int:
        """
        Delete readings older than the retention window.

        Returns:
            int: Rows deleted, 0 if the sweep failed
        """
        cutoff = retention_cutoff(self.clock(), self.settings.retention)
        start = time.monotonic()

        try:
            deleted = await asyncio.get_running_loop().run_in_executor(
                None, self.store.prune_older_than, cutoff
            )
        except StoreError as e:
            self.logger.error(f"Retention sweep failed: {e}")
            self._stats.errors_count += 1
            return 0

        self.performance_monitor.log_retention(time.monotonic() - start, deleted)
        self._stats.retention_runs += 1
        self._stats.rows_pruned += deleted
        self._stats.last_retention_time = self.clock()
        self.logger.info(describe_retention(deleted, self.settings.retention))
        return deleted

    async def _acquisition_loop(self):
        """Collect now, then once per poll interval, until shutdown."""
        interval = self.settings.schedule.interval.total_seconds()
        self.logger.info(f"Starting acquisition loop for {self.settings.device.address}...")

        while not self._shutdown.is_set():
            try:
                await self.run_acquisition_tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.error(f"Acquisition tick error: {e}")
                self._stats.errors_count += 1

            if self._shutdown.is_set():
                break
            self.logger.info(f"Waiting {interval / 60:g} minutes until next scheduled collection...")
            if await self._sleep(interval):
                break

        self.logger.info("Acquisition loop stopped")

    async def _retention_loop(self):
        """Prune now, then once per retention interval, until shutdown."""
        interval = self.settings.retention_interval.total_seconds()
        self.logger.info("Starting retention loop...")

        while not self._shutdown.is_set():
            try:
                await self.run_retention_sweep()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.error(f"Retention loop error: {e}")
                self._stats.errors_count += 1

            if await self._sleep(interval):
                break
            self.logger.info("Running daily data retention policy...")

        self.logger.info("Retention loop stopped")

    def get_status(self) -> Dict[str, Any]:
        """Get current daemon status."""
        return {
            "running": self._running,
            "shutdown_requested": self._shutdown.is_set(),
            "device": self.settings.device.address,
            "stats": asdict(self._stats),
            "collector": self.collector.get_statistics() if self.collector else None,
        }

    def get_statistics(self) -> DaemonStats:
        """Get daemon statistics."""
        return self._stats

    async def start(self):
        """Start the daemon and block until shutdown is requested."""
        if self._running:
            raise CollectorDaemonError("Daemon is already running")

        self._initialize_components()
        self.logger.info("Starting sensor collector daemon...")
        self._setup_signal_handlers()

        self._running = True
        self._acquisition_task = asyncio.create_task(self._acquisition_loop())
        self._retention_task = asyncio.create_task(self._retention_loop())
        self.logger.info("Sensor collector daemon started successfully")

        try:
            await self._shutdown.wait()
        finally:
            await self.stop()

    async def stop(self):
        """Stop the daemon gracefully."""
        if not self._running:
            return

        self.logger.info("Stopping sensor collector daemon...")
        self._running = False
        self._shutdown.set()

        for task in (self._acquisition_task, self._retention_task):
            if task and not task.done():
                task.cancel()
            if task:
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                except Exception as e:
                    self.logger.error(f"Background task ended with error: {e}")

        self.logger.info("Sensor collector daemon stopped")


async def run_daemon(settings: CollectorSettings):
    """Run the daemon until SIGINT/SIGTERM."""
    daemon = CollectorDaemon(settings)
    await daemon.start()
