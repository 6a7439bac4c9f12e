"""
Unit tests for error scenarios in sensor acquisition.
Tests each failure class, connection release on every path and the
notification/read race.
"""

import pytest
import asyncio
from unittest.mock import Mock, patch, MagicMock

from bleak.exc import BleakError

from sensor_collector.ble.collector import (
    SensorCollector,
    AcquisitionError,
    ConnectFailed,
    ConnectTimeout,
    ProfileDiscoveryFailed,
    CharacteristicNotFound,
    SubscribeFailed,
    NotificationTimeout,
    MalformedPayload,
)
from sensor_collector.utils.config import DeviceTarget
from tests.fixtures.sensor_data import SensorDataFixtures
from tests.mocks.mock_ble_client import (
    MockBleakClientFactory,
    MockSensorBehavior,
    make_ble_device,
    mock_scanner,
)


ADDRESS = "A4:C1:38:12:34:56"
PAYLOAD_A = SensorDataFixtures.encode(24.80, 58)
PAYLOAD_B = SensorDataFixtures.encode(25.50, 60)


class AcquisitionTestBase:
    """Shared collector setup."""

    def setup_method(self):
        """Set up test fixtures."""
        self.mock_logger = Mock()
        self.mock_performance_monitor = Mock()

        # Mock the context manager for measure_time
        mock_context = MagicMock()
        mock_context.__enter__ = Mock(return_value=mock_context)
        mock_context.__exit__ = Mock(return_value=None)
        self.mock_performance_monitor.measure_time.return_value = mock_context

        self.device = make_ble_device(ADDRESS)

    def make_collector(self, **kwargs) -> SensorCollector:
        options = dict(connect_timeout=1.0, notification_timeout=0.2)
        options.update(kwargs)
        return SensorCollector(
            DeviceTarget(address=ADDRESS),
            logger=self.mock_logger,
            performance_monitor=self.mock_performance_monitor,
            **options
        )

    async def collect(self, factory: MockBleakClientFactory, scanner=None, **kwargs):
        collector = self.make_collector(**kwargs)
        with patch('sensor_collector.ble.collector.BleakScanner', scanner or mock_scanner(self.device)), \
                patch('sensor_collector.ble.collector.BleakClient', factory):
            return await collector.collect_single_reading()


class TestSuccessfulAcquisition(AcquisitionTestBase):
    """Test the happy paths."""

    @pytest.mark.asyncio
    async def test_reading_from_notification(self):
        """Test a reading delivered by notification."""
        factory = MockBleakClientFactory(MockSensorBehavior(notifications=[(0.0, PAYLOAD_A)]))

        reading = await self.collect(factory)

        assert reading.temperature == pytest.approx(24.80)
        assert reading.humidity == 58
        client = factory.last
        assert client.stop_notify_calls == 1
        assert client.disconnect_calls == 1
        assert not client.is_connected

    @pytest.mark.asyncio
    async def test_reading_from_direct_read(self):
        """Sensors that only answer explicit reads still produce a reading."""
        factory = MockBleakClientFactory(MockSensorBehavior(read_payload=PAYLOAD_B))

        reading = await self.collect(factory)

        assert reading.temperature == pytest.approx(25.50)
        assert reading.humidity == 60
        assert factory.last.read_calls == 1
        assert factory.last.disconnect_calls == 1

    @pytest.mark.asyncio
    async def test_notification_beats_slow_read(self):
        """The first valid payload wins when the notification arrives first."""
        factory = MockBleakClientFactory(MockSensorBehavior(
            notifications=[(0.0, PAYLOAD_A)],
            read_payload=PAYLOAD_B,
            read_delay=0.05
        ))

        reading = await self.collect(factory)

        assert reading.humidity == 58

    @pytest.mark.asyncio
    async def test_read_beats_late_notification(self):
        """The first valid payload wins when the read answers first."""
        factory = MockBleakClientFactory(MockSensorBehavior(
            notifications=[(0.05, PAYLOAD_A)],
            read_payload=PAYLOAD_B
        ))

        reading = await self.collect(factory)

        assert reading.humidity == 60

    @pytest.mark.asyncio
    async def test_malformed_notification_is_skipped(self):
        """A short payload is logged and the next valid one is used."""
        factory = MockBleakClientFactory(MockSensorBehavior(
            notifications=[(0.0, b'\x01'), (0.02, PAYLOAD_A)]
        ))

        reading = await self.collect(factory)

        assert reading.humidity == 58
        warnings = [str(call) for call in self.mock_logger.warning.call_args_list]
        assert any("Malformed notification" in message for message in warnings)

    @pytest.mark.asyncio
    async def test_adapter_is_passed_to_bleak(self):
        """Test that a configured adapter reaches scanner and client."""
        factory = MockBleakClientFactory(MockSensorBehavior(notifications=[(0.0, PAYLOAD_A)]))
        scanner = mock_scanner(self.device)

        await self.collect(factory, scanner=scanner, adapter="hci1")

        assert scanner.find_device_by_address.call_args.kwargs['adapter'] == "hci1"
        assert factory.last.kwargs['adapter'] == "hci1"

    @pytest.mark.asyncio
    async def test_disconnect_failure_does_not_lose_reading(self):
        """Cleanup errors are logged, the reading is still returned."""
        factory = MockBleakClientFactory(MockSensorBehavior(
            notifications=[(0.0, PAYLOAD_A)],
            disconnect_error=BleakError("Device busy")
        ))

        reading = await self.collect(factory)

        assert reading.humidity == 58
        self.mock_logger.warning.assert_called()


class TestConnectionErrors(AcquisitionTestBase):
    """Test failures before a link exists."""

    @pytest.mark.asyncio
    async def test_device_not_found(self):
        """Test scan ending without the device."""
        factory = MockBleakClientFactory()

        with pytest.raises(ConnectTimeout):
            await self.collect(factory, scanner=mock_scanner(None))

        assert factory.clients == []

    @pytest.mark.asyncio
    async def test_scan_error(self):
        """Test adapter errors during the scan."""
        factory = MockBleakClientFactory()

        with pytest.raises(ConnectFailed) as exc_info:
            await self.collect(factory, scanner=mock_scanner(error=BleakError("Bluetooth adapter not found")))

        assert not isinstance(exc_info.value, ConnectTimeout)

    @pytest.mark.asyncio
    async def test_connect_error(self):
        """Test the device refusing the connection."""
        factory = MockBleakClientFactory(MockSensorBehavior(connect_error=BleakError("Connection refused")))

        with pytest.raises(ConnectFailed):
            await self.collect(factory)

        assert factory.last.disconnect_calls == 0

    @pytest.mark.asyncio
    async def test_connect_timeout(self):
        """Test a connection that never completes."""
        factory = MockBleakClientFactory(MockSensorBehavior(connect_delay=1.0))

        with pytest.raises(ConnectTimeout):
            await self.collect(factory, connect_timeout=0.05)

        assert not factory.last.is_connected


class TestPostConnectErrors(AcquisitionTestBase):
    """Every failure after connecting must release the link."""

    @pytest.mark.asyncio
    async def test_profile_discovery_failure(self):
        factory = MockBleakClientFactory(MockSensorBehavior(services_error=BleakError("Service discovery failed")))

        with pytest.raises(ProfileDiscoveryFailed):
            await self.collect(factory)

        assert factory.last.disconnect_calls == 1

    @pytest.mark.asyncio
    async def test_missing_profile(self):
        factory = MockBleakClientFactory(MockSensorBehavior(has_profile=False))

        with pytest.raises(ProfileDiscoveryFailed):
            await self.collect(factory)

        assert factory.last.disconnect_calls == 1

    @pytest.mark.asyncio
    async def test_characteristic_not_found(self):
        factory = MockBleakClientFactory(MockSensorBehavior(has_characteristic=False))

        with pytest.raises(CharacteristicNotFound):
            await self.collect(factory)

        assert factory.last.disconnect_calls == 1
        assert factory.last.start_notify_calls == 0

    @pytest.mark.asyncio
    async def test_subscribe_failure(self):
        factory = MockBleakClientFactory(MockSensorBehavior(start_notify_error=BleakError("Notify not permitted")))

        with pytest.raises(SubscribeFailed):
            await self.collect(factory)

        assert factory.last.stop_notify_calls == 0
        assert factory.last.disconnect_calls == 1

    @pytest.mark.asyncio
    async def test_notification_timeout(self):
        factory = MockBleakClientFactory(MockSensorBehavior())

        with pytest.raises(NotificationTimeout):
            await self.collect(factory, notification_timeout=0.05)

        assert factory.last.stop_notify_calls == 1
        assert factory.last.disconnect_calls == 1

    @pytest.mark.asyncio
    async def test_only_malformed_payloads(self):
        """An attempt that only saw short payloads reports them."""
        factory = MockBleakClientFactory(MockSensorBehavior(
            notifications=[(0.0, b'\x01\x02')],
            read_payload=b''
        ))

        with pytest.raises(MalformedPayload):
            await self.collect(factory, notification_timeout=0.05)

        assert factory.last.disconnect_calls == 1


class TestCollectorStatistics(AcquisitionTestBase):
    """Test statistics and attempt serialization."""

    @pytest.mark.asyncio
    async def test_error_counts(self):
        collector = self.make_collector()
        factory = MockBleakClientFactory(
            MockSensorBehavior(has_characteristic=False),
            MockSensorBehavior(notifications=[(0.0, PAYLOAD_A)])
        )

        with patch('sensor_collector.ble.collector.BleakScanner', mock_scanner(self.device)), \
                patch('sensor_collector.ble.collector.BleakClient', factory):
            with pytest.raises(AcquisitionError):
                await collector.collect_single_reading()
            await collector.collect_single_reading()

        stats = collector.get_statistics()
        assert stats['attempt_count'] == 2
        assert stats['success_count'] == 1
        assert stats['error_counts'] == {'CharacteristicNotFound': 1}
        assert stats['last_success_time'] is not None

        collector.reset_statistics()
        assert collector.get_statistics()['attempt_count'] == 0

    @pytest.mark.asyncio
    async def test_attempts_are_serialized(self):
        """Concurrent callers never overlap on the radio."""
        collector = self.make_collector()
        active = 0
        peak = 0

        async def fake_collect():
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return Mock()

        with patch.object(collector, '_collect', side_effect=fake_collect):
            await asyncio.gather(*(collector.collect_single_reading() for _ in range(3)))

        assert peak == 1
        assert collector.get_statistics()['success_count'] == 3
