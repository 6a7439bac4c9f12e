"""
Bluetooth Low Energy collector for the temperature/humidity sensor.
Connects to one fixed device, subscribes to its data characteristic and
returns a single parsed reading per attempt, releasing the connection on
every exit path.
"""

import asyncio
import logging
import struct
import time
from dataclasses import dataclass, field
from datetime import datetime
from functools import partial
from typing import Any, Dict, Optional

from bleak import BleakClient, BleakScanner
from bleak.backends.characteristic import BleakGATTCharacteristic
from bleak.backends.device import BLEDevice
from bleak.exc import BleakError

from ..utils.config import CollectorSettings, DeviceTarget
from ..utils.logging import PerformanceMonitor


PAYLOAD_FORMAT = '<hB'
PAYLOAD_MIN_LENGTH = struct.calcsize(PAYLOAD_FORMAT)


@dataclass(frozen=True)
class Reading:
    """One validated sensor reading."""
    temperature: float  # Celsius
    humidity: int       # %RH
    timestamp: datetime = field(default_factory=datetime.now)


class AcquisitionError(Exception):
    """Base exception for a failed acquisition attempt."""
    pass


class ConnectFailed(AcquisitionError):
    """The adapter could not establish a link to the device."""
    pass


class ConnectTimeout(ConnectFailed):
    """The device was not found or connected within the connect timeout."""
    pass


class ProfileDiscoveryFailed(AcquisitionError):
    """The service/characteristic tree could not be obtained."""
    pass


class CharacteristicNotFound(AcquisitionError):
    """The device does not expose the data characteristic."""
    pass


class SubscribeFailed(AcquisitionError):
    """Notifications on the data characteristic could not be enabled."""
    pass


class NotificationTimeout(AcquisitionError):
    """No valid payload arrived before the notification-wait timeout."""
    pass


class MalformedPayload(AcquisitionError):
    """A payload was too short to hold a reading."""
    pass


def decode_payload(data: bytes, timestamp: Optional[datetime] = None) -> Reading:
    """
    Decode a characteristic value into a reading.

    Layout: bytes 0-1 little-endian signed temperature in hundredths of a
    degree, byte 2 unsigned humidity percent. Trailing bytes are ignored.

    Raises:
        MalformedPayload: If the payload is shorter than 3 bytes
    """
    if data is None or len(data) < PAYLOAD_MIN_LENGTH:
        length = 0 if data is None else len(data)
        raise MalformedPayload(f"Payload too short: {length} bytes, need {PAYLOAD_MIN_LENGTH}")

    raw_temperature, humidity = struct.unpack_from(PAYLOAD_FORMAT, bytes(data))
    return Reading(
        temperature=raw_temperature / 100.0,
        humidity=humidity,
        timestamp=timestamp or datetime.now()
    )


class SensorCollector:
    """
    Single-device BLE collector.

    Each call to collect_single_reading() scans for the configured address,
    connects, subscribes to the data characteristic and races a direct read
    against the first notification. Attempts are serialized so the radio
    has one owner at a time.
    """

    def __init__(self,
                 target: DeviceTarget,
                 connect_timeout: float = 20.0,
                 notification_timeout: float = 30.0,
                 adapter: Optional[str] = None,
                 logger: Optional[logging.Logger] = None,
                 performance_monitor: Optional[PerformanceMonitor] = None):
        """
        Initialize the collector.

        Args:
            target: Device address and characteristic to read
            connect_timeout: Budget in seconds for scanning and connecting
            notification_timeout: Seconds to wait for the first valid payload
            adapter: Bluetooth adapter name, None for the system default
            logger: Logger instance
            performance_monitor: Performance monitoring instance
        """
        self.target = target
        self.connect_timeout = connect_timeout
        self.notification_timeout = notification_timeout
        self.adapter = adapter
        self.logger = logger or logging.getLogger(__name__)
        self.performance_monitor = performance_monitor or PerformanceMonitor()

        self._radio_lock = asyncio.Lock()
        self._malformed: Optional[MalformedPayload] = None

        # Statistics
        self._attempt_count = 0
        self._success_count = 0
        self._error_counts: Dict[str, int] = {}
        self._last_success_time: Optional[datetime] = None

    @classmethod
    def from_settings(cls, settings: CollectorSettings,
                      logger: Optional[logging.Logger] = None,
                      performance_monitor: Optional[PerformanceMonitor] = None) -> 'SensorCollector':
        return cls(
            settings.device,
            connect_timeout=settings.connect_timeout,
            notification_timeout=settings.notification_timeout,
            adapter=settings.adapter,
            logger=logger,
            performance_monitor=performance_monitor
        )

    async def collect_single_reading(self) -> Reading:
        """
        Perform one acquisition attempt.

        Returns:
            Reading: The first valid reading received

        Raises:
            AcquisitionError: One of its subclasses describing the failure
        """
        async with self._radio_lock:
            self._attempt_count += 1
            with self.performance_monitor.measure_time("ble_acquisition"):
                try:
                    reading = await self._collect()
                except AcquisitionError as e:
                    name = type(e).__name__
                    self._error_counts[name] = self._error_counts.get(name, 0) + 1
                    raise

            self._success_count += 1
            self._last_success_time = datetime.now()
            return reading

    async def _find_device(self) -> BLEDevice:
        """Scan until the configured address shows up or the connect budget is spent."""
        address = self.target.address
        self.logger.info(f"Scanning for {address} (timeout {self.connect_timeout:.0f}s)...")

        scanner_kwargs: Dict[str, Any] = {}
        if self.adapter:
            scanner_kwargs['adapter'] = self.adapter

        try:
            device = await BleakScanner.find_device_by_address(
                address, timeout=self.connect_timeout, **scanner_kwargs
            )
        except (BleakError, OSError) as e:
            raise ConnectFailed(f"Scan for {address} failed: {e}") from e

        if device is None:
            raise ConnectTimeout(f"Device {address} not found within {self.connect_timeout:.0f}s")

        self.logger.info(f"Device {address} found during scan: {device.name}")
        return device

    def _locate_characteristic(self, client: BleakClient) -> BleakGATTCharacteristic:
        """Find the data characteristic in the connected device's profile."""
        try:
            services = client.services
        except BleakError as e:
            raise ProfileDiscoveryFailed(f"Failed to discover profile of {self.target.address}: {e}") from e

        if services is None:
            raise ProfileDiscoveryFailed(f"No profile available for {self.target.address}")

        characteristic = services.get_characteristic(self.target.characteristic_uuid)
        if characteristic is None:
            raise CharacteristicNotFound(
                f"Data characteristic {self.target.characteristic_uuid} not found on {self.target.address}"
            )
        return characteristic

    def _offer_payload(self, result: asyncio.Future, source: str, sender: Any, data: bytearray):
        """Decode a payload and hand it to the attempt if it is the first valid one."""
        self.logger.debug(f"Raw {source} data received: {bytes(data).hex()} (length: {len(data)})")

        try:
            reading = decode_payload(data)
        except MalformedPayload as e:
            self.logger.warning(f"Malformed {source} data from {self.target.address}: {e}")
            self._malformed = e
            return

        if result.done():
            self.logger.debug(f"Ignoring {source} value, a reading was already received")
            return

        result.set_result(reading)
        self.logger.info(f"{source.capitalize()} parsed: T={reading.temperature:.2f}, H={reading.humidity}")

    async def _kickstart_read(self, client: BleakClient, characteristic: BleakGATTCharacteristic,
                              result: asyncio.Future):
        """Read the characteristic once; some sensors only report on an explicit read."""
        try:
            data = await client.read_gatt_char(characteristic)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.warning(f"Failed to read characteristic {characteristic.uuid}: {e}")
            return

        self._offer_payload(result, "read", characteristic, data)

    async def _collect(self) -> Reading:
        address = self.target.address
        started = time.monotonic()
        self._malformed = None

        device = await self._find_device()

        remaining = self.connect_timeout - (time.monotonic() - started)
        if remaining <= 0:
            raise ConnectTimeout(f"Connect budget for {address} spent while scanning")

        client_kwargs: Dict[str, Any] = {'timeout': remaining}
        if self.adapter:
            client_kwargs['adapter'] = self.adapter
        client = BleakClient(device, **client_kwargs)

        characteristic = None
        subscribed = False
        read_task: Optional[asyncio.Task] = None

        try:
            self.logger.info(f"Connecting to {address}...")
            try:
                await asyncio.wait_for(client.connect(), timeout=remaining)
            except asyncio.TimeoutError as e:
                raise ConnectTimeout(f"Connecting to {address} timed out after {remaining:.1f}s") from e
            except (BleakError, OSError) as e:
                raise ConnectFailed(f"Failed to connect to {address}: {e}") from e

            self.logger.info(f"Connected to {address}. Discovering services...")
            characteristic = self._locate_characteristic(client)

            result = asyncio.get_running_loop().create_future()

            try:
                await client.start_notify(characteristic, partial(self._offer_payload, result, "notification"))
            except (BleakError, OSError, ValueError) as e:
                raise SubscribeFailed(
                    f"Failed to subscribe to characteristic {self.target.characteristic_uuid}: {e}"
                ) from e
            subscribed = True

            read_task = asyncio.create_task(self._kickstart_read(client, characteristic, result))

            try:
                reading = await asyncio.wait_for(result, timeout=self.notification_timeout)
            except asyncio.TimeoutError as e:
                if self._malformed is not None:
                    raise MalformedPayload(
                        f"No valid payload from {address} within {self.notification_timeout:.0f}s: {self._malformed}"
                    ) from e
                raise NotificationTimeout(
                    f"Timeout waiting for data from {address} after {self.notification_timeout:.0f}s"
                ) from e

            self.logger.info(
                f"Successfully received data: T={reading.temperature:.2f}°C, H={reading.humidity}% from {address}"
            )
            return reading

        finally:
            if read_task and not read_task.done():
                read_task.cancel()
            if read_task:
                await asyncio.gather(read_task, return_exceptions=True)

            if subscribed and client.is_connected:
                try:
                    await client.stop_notify(characteristic)
                except Exception as e:
                    self.logger.warning(f"Error stopping notifications on {address}: {e}")

            if client.is_connected:
                try:
                    await client.disconnect()
                    self.logger.debug(f"Disconnected from {address}")
                except Exception as e:
                    self.logger.warning(f"Error disconnecting from {address}: {e}")

    def get_statistics(self) -> Dict[str, Any]:
        """
        Get collector statistics.

        Returns:
            Dict[str, Any]: Attempt, success and per-error counters
        """
        return {
            "address": self.target.address,
            "attempt_count": self._attempt_count,
            "success_count": self._success_count,
            "error_counts": dict(self._error_counts),
            "last_success_time": self._last_success_time,
        }

    def reset_statistics(self):
        """Reset collector statistics."""
        self._attempt_count = 0
        self._success_count = 0
        self._error_counts.clear()
        self._last_success_time = None
        self.logger.debug("Collector statistics reset")
