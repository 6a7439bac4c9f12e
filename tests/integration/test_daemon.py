"""
Integration tests for the collector daemon.
Drives the acquisition and retention loops with a mocked collector and a
real SQLite store.
"""

import pytest
import asyncio
from dataclasses import replace
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, Mock

from sensor_collector.ble.collector import ConnectTimeout, Reading
from sensor_collector.service.daemon import CollectorDaemon, CollectorDaemonError
from sensor_collector.storage.readings import ReadingStore, StoreError
from sensor_collector.utils.config import PollSchedule


async def wait_until(predicate, timeout: float = 2.0):
    """Poll predicate until it holds or fail the test."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            pytest.fail("Condition not reached in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def mock_collector():
    collector = Mock()
    collector.collect_single_reading = AsyncMock(return_value=Reading(temperature=24.8, humidity=58))
    collector.get_statistics = Mock(return_value={})
    return collector


@pytest.fixture
def daemon_factory(test_settings, mock_collector, reading_store, mock_logger,
                   mock_performance_monitor, fake_clock):
    def _create(**overrides) -> CollectorDaemon:
        options = dict(
            settings=test_settings,
            collector=mock_collector,
            store=reading_store,
            logger=mock_logger,
            performance_monitor=mock_performance_monitor,
            clock=fake_clock,
        )
        options.update(overrides)
        return CollectorDaemon(**options)

    return _create


class TestAcquisitionTick:
    @pytest.mark.asyncio
    async def test_successful_tick_stores_reading(self, daemon_factory, reading_store, mock_performance_monitor):
        daemon = daemon_factory()

        assert await daemon.run_acquisition_tick() is True

        assert reading_store.count() == 1
        stats = daemon.get_statistics()
        assert stats.ticks == 1
        assert stats.readings_stored == 1
        assert stats.last_reading_time is not None
        duration, ok = mock_performance_monitor.log_acquisition.call_args[0]
        assert ok is True

    @pytest.mark.asyncio
    async def test_failed_tick_stores_nothing(self, daemon_factory, mock_collector, reading_store):
        mock_collector.collect_single_reading.side_effect = ConnectTimeout("not found")
        daemon = daemon_factory()

        assert await daemon.run_acquisition_tick() is False

        assert mock_collector.collect_single_reading.await_count == 3
        assert reading_store.count() == 0
        assert daemon.get_statistics().failed_ticks == 1

    @pytest.mark.asyncio
    async def test_store_failure_is_counted(self, daemon_factory):
        store = Mock()
        store.append = Mock(return_value=False)
        daemon = daemon_factory(store=store)

        assert await daemon.run_acquisition_tick() is False

        assert daemon.get_statistics().store_failures == 1


class TestRetentionSweep:
    @pytest.mark.asyncio
    async def test_sweep_deletes_old_rows(self, daemon_factory, reading_store, fake_clock, mock_logger):
        fake_clock.now = datetime(2025, 8, 3, 12, 0)
        reading_store.append(Reading(temperature=20.0, humidity=50))
        fake_clock.now = datetime(2025, 8, 5, 11, 0)
        reading_store.append(Reading(temperature=21.0, humidity=51))
        fake_clock.now = datetime(2025, 8, 5, 12, 0)
        daemon = daemon_factory()

        deleted = await daemon.run_retention_sweep()

        assert deleted == 1
        assert reading_store.count() == 1
        mock_logger.info.assert_any_call("Applied retention policy: Deleted 1 records older than 1 days.")

    @pytest.mark.asyncio
    async def test_sweep_failure_is_logged(self, daemon_factory, mock_logger):
        store = Mock()
        store.prune_older_than = Mock(side_effect=StoreError("database is locked"))
        daemon = daemon_factory(store=store)

        assert await daemon.run_retention_sweep() == 0

        mock_logger.error.assert_called()
        assert daemon.get_statistics().errors_count == 1


class TestDaemonLifecycle:
    @pytest.mark.asyncio
    async def test_start_runs_both_loops_and_stops(self, daemon_factory, mock_collector, reading_store):
        daemon = daemon_factory()
        task = asyncio.create_task(daemon.start())

        await wait_until(lambda: daemon.get_statistics().readings_stored == 1)
        await wait_until(lambda: daemon.get_statistics().retention_runs == 1)
        assert daemon.get_status()["running"] is True

        daemon.request_shutdown()
        await asyncio.wait_for(task, timeout=2.0)

        assert daemon.get_status()["running"] is False
        assert reading_store.count() == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_does_not_stop_loop(self, daemon_factory, mock_collector, test_settings):
        settings = replace(test_settings, schedule=PollSchedule(interval=timedelta(milliseconds=10)))
        reading = Reading(temperature=24.8, humidity=58)
        mock_collector.collect_single_reading.side_effect = [RuntimeError("adapter vanished")] + [reading] * 50
        daemon = daemon_factory(settings=settings)
        task = asyncio.create_task(daemon.start())

        await wait_until(lambda: daemon.get_statistics().readings_stored >= 1)

        daemon.request_shutdown()
        await asyncio.wait_for(task, timeout=2.0)
        assert daemon.get_statistics().errors_count >= 1

    @pytest.mark.asyncio
    async def test_shutdown_interrupts_retry_delay(self, daemon_factory, mock_collector, test_settings):
        settings = replace(test_settings, retry_delay=60.0)
        mock_collector.collect_single_reading.side_effect = ConnectTimeout("not found")
        daemon = daemon_factory(settings=settings)
        task = asyncio.create_task(daemon.start())

        await wait_until(lambda: mock_collector.collect_single_reading.await_count >= 1)

        daemon.request_shutdown()
        await asyncio.wait_for(task, timeout=2.0)

    @pytest.mark.asyncio
    async def test_initialization_failure(self, daemon_factory):
        store = Mock(spec=ReadingStore)
        store.initialize.side_effect = StoreError("read-only file system")
        daemon = daemon_factory(store=store)

        with pytest.raises(CollectorDaemonError):
            await daemon.start()

    @pytest.mark.asyncio
    async def test_double_start_is_rejected(self, daemon_factory):
        daemon = daemon_factory()
        task = asyncio.create_task(daemon.start())
        await wait_until(lambda: daemon.get_status()["running"])

        with pytest.raises(CollectorDaemonError):
            await daemon.start()

        daemon.request_shutdown()
        await asyncio.wait_for(task, timeout=2.0)
