"""
Configuration management for the sensor collector.
Loads the device file (config.json) and ambient settings from environment
variables, validates them, and freezes the result into CollectorSettings.
"""

import json
import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Optional, Union
from dotenv import load_dotenv
from pydantic import ValidationError
import logging

from .schema import DeviceConfigFile


DATA_CHARACTERISTIC_UUID = "ebe0ccc1-7a0a-4b0c-8a1a-6ff2997da3a6"
DEFAULT_DATABASE_PATH = "/var/www/sensor-data/sensor_data.db"


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing."""
    pass


@dataclass(frozen=True)
class DeviceTarget:
    """The one BLE device and characteristic the collector talks to."""
    address: str
    characteristic_uuid: str = DATA_CHARACTERISTIC_UUID


@dataclass(frozen=True)
class PollSchedule:
    """Interval between two scheduled collections."""
    interval: timedelta

    def __post_init__(self):
        if self.interval <= timedelta(0):
            raise ConfigurationError("Poll interval must be positive")


@dataclass(frozen=True)
class CollectorSettings:
    """Immutable settings built once at startup and shared by all components."""
    device: DeviceTarget
    schedule: PollSchedule
    database_path: Path
    ble_adapter: str = "auto"
    connect_timeout: float = 20.0
    notification_timeout: float = 30.0
    max_attempts: int = 3
    retry_delay: float = 5.0
    retention: timedelta = timedelta(days=1)
    retention_interval: timedelta = timedelta(hours=24)
    log_level: str = "INFO"
    log_dir: Path = Path("./logs")
    log_max_file_size: int = 10 * 1024 * 1024
    log_backup_count: int = 5
    log_enable_console: bool = True
    log_enable_syslog: bool = False
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    @property
    def adapter(self) -> Optional[str]:
        """BLE adapter name for bleak, None lets bleak choose."""
        return None if self.ble_adapter == "auto" else self.ble_adapter

    def get_summary(self) -> dict:
        """Get configuration summary for logging/debugging."""
        return {
            'device': {
                'address': self.device.address,
                'characteristic': self.device.characteristic_uuid,
                'adapter': self.ble_adapter,
            },
            'collection': {
                'poll_interval_minutes': self.schedule.interval.total_seconds() / 60,
                'connect_timeout': self.connect_timeout,
                'notification_timeout': self.notification_timeout,
                'max_attempts': self.max_attempts,
                'retry_delay': self.retry_delay,
            },
            'storage': {
                'database_path': str(self.database_path),
                'retention_days': self.retention.days,
                'retention_interval_hours': self.retention_interval.total_seconds() / 3600,
            },
            'logging': {
                'level': self.log_level,
                'dir': str(self.log_dir),
                'enable_console': self.log_enable_console,
                'enable_syslog': self.log_enable_syslog,
            },
            'api': {
                'host': self.api_host,
                'port': self.api_port,
            },
        }


class Config:
    """
    Configuration manager that loads settings from environment variables
    and the JSON device file. Provides validation and type conversion.
    """

    def __init__(self, env_file: Optional[Union[str, Path]] = None):
        """
        Initialize configuration manager.

        Args:
            env_file: Path to .env file (defaults to .env in the working directory)
        """
        self.logger = logging.getLogger(__name__)

        if env_file is None:
            env_file = Path.cwd() / ".env"

        if Path(env_file).exists():
            load_dotenv(env_file)
            self.logger.info(f"Loaded environment from {env_file}")
        else:
            self.logger.debug(f"Environment file {env_file} not found, using system environment")

    def get_str(self, key: str, default: Optional[str] = None) -> str:
        """Get string configuration value."""
        value = os.getenv(key, default)
        if value is None:
            raise ConfigurationError(f"Required configuration key '{key}' not found")
        return value

    def get_int(self, key: str, default: Optional[int] = None) -> int:
        """Get integer configuration value."""
        value = os.getenv(key)
        if value is None:
            if default is None:
                raise ConfigurationError(f"Required configuration key '{key}' not found")
            return default

        try:
            return int(value)
        except ValueError:
            raise ConfigurationError(f"Configuration key '{key}' must be an integer, got '{value}'")

    def get_float(self, key: str, default: Optional[float] = None) -> float:
        """Get float configuration value."""
        value = os.getenv(key)
        if value is None:
            if default is None:
                raise ConfigurationError(f"Required configuration key '{key}' not found")
            return default

        try:
            return float(value)
        except ValueError:
            raise ConfigurationError(f"Configuration key '{key}' must be a float, got '{value}'")

    def get_bool(self, key: str, default: Optional[bool] = None) -> bool:
        """Get boolean configuration value."""
        value = os.getenv(key)
        if value is None:
            if default is None:
                raise ConfigurationError(f"Required configuration key '{key}' not found")
            return default

        return value.lower() in ('true', '1', 'yes', 'on', 'enabled')

    def get_path(self, key: str, default: Optional[Union[str, Path]] = None) -> Path:
        """Get path configuration value, relative paths resolve against the working directory."""
        value = os.getenv(key)
        if value is None:
            if default is None:
                raise ConfigurationError(f"Required configuration key '{key}' not found")
            value = str(default)

        path = Path(value)
        if not path.is_absolute():
            path = Path.cwd() / path

        return path

    # Device file
    @property
    def device_config_file(self) -> Path:
        return self.get_path("SENSOR_CONFIG_FILE", "./config.json")

    # Storage Configuration
    @property
    def database_path(self) -> Path:
        return self.get_path("DATABASE_PATH", DEFAULT_DATABASE_PATH)

    @property
    def retention_days(self) -> int:
        return self.get_int("RETENTION_DAYS", 1)

    @property
    def retention_interval_hours(self) -> float:
        return self.get_float("RETENTION_INTERVAL_HOURS", 24.0)

    # BLE Configuration
    @property
    def ble_adapter(self) -> str:
        return self.get_str("BLE_ADAPTER", "auto")

    @property
    def ble_connect_timeout(self) -> float:
        return self.get_float("BLE_CONNECT_TIMEOUT", 20.0)

    @property
    def ble_notification_timeout(self) -> float:
        return self.get_float("BLE_NOTIFICATION_TIMEOUT", 30.0)

    @property
    def collection_max_attempts(self) -> int:
        return self.get_int("COLLECTION_MAX_ATTEMPTS", 3)

    @property
    def collection_retry_delay(self) -> float:
        return self.get_float("COLLECTION_RETRY_DELAY", 5.0)

    # Logging Configuration
    @property
    def log_level(self) -> str:
        return self.get_str("LOG_LEVEL", "INFO").upper()

    @property
    def log_dir(self) -> Path:
        return self.get_path("LOG_DIR", "./logs")

    @property
    def log_max_file_size(self) -> int:
        return self.get_int("LOG_MAX_FILE_SIZE", 10 * 1024 * 1024)  # 10MB

    @property
    def log_backup_count(self) -> int:
        return self.get_int("LOG_BACKUP_COUNT", 5)

    @property
    def log_enable_console(self) -> bool:
        return self.get_bool("LOG_ENABLE_CONSOLE", True)

    @property
    def log_enable_syslog(self) -> bool:
        return self.get_bool("LOG_ENABLE_SYSLOG", False)

    # API Configuration
    @property
    def api_host(self) -> str:
        return self.get_str("API_HOST", "0.0.0.0")

    @property
    def api_port(self) -> int:
        return self.get_int("API_PORT", 8000)

    def load_device_file(self, path: Optional[Path] = None) -> DeviceConfigFile:
        """
        Read and validate the JSON device file.

        Args:
            path: Device file location (defaults to SENSOR_CONFIG_FILE)

        Returns:
            DeviceConfigFile: Validated file content

        Raises:
            ConfigurationError: If the file is missing, unparsable or invalid
        """
        path = path or self.device_config_file

        try:
            raw = Path(path).read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(f"File not found: {path}. Please create it with 'mac_addresses'. Error: {e}")

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Could not parse {path}. Check JSON format. Error: {e}")

        try:
            return DeviceConfigFile.parse_obj(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid device configuration in {path}: {e}")

    def validate_configuration(self) -> bool:
        """
        Validate ambient configuration values.

        Returns:
            bool: True if configuration is valid

        Raises:
            ConfigurationError: If configuration is invalid
        """
        errors = []

        try:
            if self.ble_connect_timeout <= 0:
                errors.append("BLE_CONNECT_TIMEOUT must be positive")
            if self.ble_notification_timeout <= 0:
                errors.append("BLE_NOTIFICATION_TIMEOUT must be positive")
            if self.collection_max_attempts < 1:
                errors.append("COLLECTION_MAX_ATTEMPTS must be at least 1")
            if self.collection_retry_delay < 0:
                errors.append("COLLECTION_RETRY_DELAY cannot be negative")
        except ConfigurationError as e:
            errors.append(str(e))

        try:
            if self.retention_days < 1:
                errors.append("RETENTION_DAYS must be at least 1")
            if self.retention_interval_hours <= 0:
                errors.append("RETENTION_INTERVAL_HOURS must be positive")
        except ConfigurationError as e:
            errors.append(str(e))

        try:
            valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
            if self.log_level not in valid_levels:
                errors.append(f"LOG_LEVEL must be one of {valid_levels}")
        except ConfigurationError as e:
            errors.append(str(e))

        try:
            if self.api_port < 1 or self.api_port > 65535:
                errors.append("API_PORT must be between 1 and 65535")
        except ConfigurationError as e:
            errors.append(str(e))

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"- {error}" for error in errors))

        return True

    def build_settings(self, device_file: Optional[Path] = None) -> CollectorSettings:
        """
        Validate everything and freeze it into CollectorSettings.

        Only the first configured address is used; extra addresses are
        reported with a warning.

        Raises:
            ConfigurationError: If any part of the configuration is invalid
        """
        self.validate_configuration()
        device_config = self.load_device_file(device_file)

        if len(device_config.mac_addresses) > 1:
            self.logger.warning(
                f"Configuration contains {len(device_config.mac_addresses)} MAC addresses. "
                f"Only the first one ({device_config.mac_addresses[0]}) will be monitored."
            )

        return CollectorSettings(
            device=DeviceTarget(address=device_config.mac_addresses[0].upper()),
            schedule=PollSchedule(interval=timedelta(minutes=device_config.poll_interval_minutes)),
            database_path=self.database_path,
            ble_adapter=self.ble_adapter,
            connect_timeout=self.ble_connect_timeout,
            notification_timeout=self.ble_notification_timeout,
            max_attempts=self.collection_max_attempts,
            retry_delay=self.collection_retry_delay,
            retention=timedelta(days=self.retention_days),
            retention_interval=timedelta(hours=self.retention_interval_hours),
            log_level=self.log_level,
            log_dir=self.log_dir,
            log_max_file_size=self.log_max_file_size,
            log_backup_count=self.log_backup_count,
            log_enable_console=self.log_enable_console,
            log_enable_syslog=self.log_enable_syslog,
            api_host=self.api_host,
            api_port=self.api_port,
        )


def load_settings(env_file: Optional[Union[str, Path]] = None,
                  device_file: Optional[Path] = None) -> CollectorSettings:
    """Load and validate the full collector configuration."""
    return Config(env_file).build_settings(device_file)
