"""
Logging configuration for the sensor collector.
Provides logging setup with console, rotating file and syslog handlers, plus
lightweight performance metrics for acquisitions and store writes.
"""

import logging
import logging.handlers
import sys
import time
from collections import deque
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Optional
import colorlog
from datetime import datetime


# Records kept per metric series
METRIC_HISTORY_SIZE = 1000


class ProductionLogger:
    """
    Logging setup for production deployment with multiple handlers and
    per-component log files.
    """

    def __init__(self,
                 app_name: str = "sensor_collector",
                 log_dir: str = "./logs",
                 log_level: str = "INFO",
                 max_file_size: int = 10 * 1024 * 1024,  # 10MB
                 backup_count: int = 5,
                 enable_console: bool = True,
                 enable_syslog: bool = False):

        self.app_name = app_name
        self.log_dir = Path(log_dir)
        self.log_level = getattr(logging, log_level.upper())
        self.max_file_size = max_file_size
        self.backup_count = backup_count
        self.enable_console = enable_console
        self.enable_syslog = enable_syslog

        self.log_dir.mkdir(parents=True, exist_ok=True)

        self._setup_root_logger()
        self._setup_component_loggers()

    def _setup_root_logger(self):
        """Configure root logger with multiple handlers."""
        root_logger = logging.getLogger()
        root_logger.setLevel(self.log_level)

        root_logger.handlers.clear()

        if self.enable_console:
            console_handler = colorlog.StreamHandler(sys.stdout)
            console_handler.setLevel(self.log_level)
            console_formatter = colorlog.ColoredFormatter(
                '%(log_color)s%(asctime)s [%(levelname)8s] %(name)s: %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S',
                log_colors={
                    'DEBUG': 'cyan',
                    'INFO': 'green',
                    'WARNING': 'yellow',
                    'ERROR': 'red',
                    'CRITICAL': 'red,bg_white',
                }
            )
            console_handler.setFormatter(console_formatter)
            root_logger.addHandler(console_handler)

        file_handler = logging.handlers.RotatingFileHandler(
            self.log_dir / f"{self.app_name}.log",
            maxBytes=self.max_file_size,
            backupCount=self.backup_count
        )
        file_handler.setLevel(self.log_level)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)8s] %(name)s [%(process)d:%(thread)d] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        root_logger.addHandler(file_handler)

        # Syslog handler for systemd integration
        if self.enable_syslog:
            try:
                syslog_handler = logging.handlers.SysLogHandler(address='/dev/log')
                syslog_handler.setLevel(logging.WARNING)
                syslog_handler.setFormatter(logging.Formatter(
                    f'{self.app_name}[%(process)d]: %(levelname)s - %(message)s'
                ))
                root_logger.addHandler(syslog_handler)
            except OSError as e:
                root_logger.warning(f"Could not setup syslog handler: {e}")

    def _component_handler(self, file_name: str, label: str) -> logging.Handler:
        handler = logging.handlers.RotatingFileHandler(
            self.log_dir / file_name,
            maxBytes=self.max_file_size,
            backupCount=self.backup_count
        )
        handler.setFormatter(logging.Formatter(f'%(asctime)s [%(levelname)s] {label}: %(message)s'))
        return handler

    def _setup_component_loggers(self):
        """Configure specific loggers for different components."""
        components = (
            ('sensor_collector.ble', "ble_collector.log", "BLE"),
            ('sensor_collector.storage', "storage.log", "STORE"),
            ('sensor_collector.performance', "performance.log", "PERF"),
        )
        for logger_name, file_name, label in components:
            component_logger = logging.getLogger(logger_name)
            for handler in list(component_logger.handlers):
                component_logger.removeHandler(handler)
                handler.close()
            component_logger.addHandler(self._component_handler(file_name, label))

    def get_logger(self, name: str = None) -> logging.Logger:
        """Get a logger instance."""
        if name:
            return logging.getLogger(name)
        return logging.getLogger()

    def debug(self, message: str, *args, **kwargs):
        logging.getLogger(self.app_name).debug(message, *args, **kwargs)

    def info(self, message: str, *args, **kwargs):
        logging.getLogger(self.app_name).info(message, *args, **kwargs)

    def warning(self, message: str, *args, **kwargs):
        logging.getLogger(self.app_name).warning(message, *args, **kwargs)

    def error(self, message: str, *args, **kwargs):
        logging.getLogger(self.app_name).error(message, *args, **kwargs)

    def critical(self, message: str, *args, **kwargs):
        logging.getLogger(self.app_name).critical(message, *args, **kwargs)


class PerformanceMonitor:
    """
    Performance monitoring and metrics collection for acquisitions and
    store operations.

    Only the most recent `history_size` records of each series are kept;
    lifetime totals are tracked as counters so a long-running daemon
    stays bounded.
    """

    def __init__(self, logger=None, history_size: int = METRIC_HISTORY_SIZE):
        self.logger = logger or logging.getLogger('sensor_collector.performance')
        self.history_size = history_size
        self.metrics: Dict[str, deque] = {
            'acquisitions': deque(maxlen=history_size),
            'store_writes': deque(maxlen=history_size),
            'retention_runs': deque(maxlen=history_size),
        }
        self.totals = {
            'acquisitions': 0,
            'acquisitions_successful': 0,
            'store_writes': 0,
            'store_writes_successful': 0,
            'retention_runs': 0,
            'rows_deleted': 0,
        }
        self.start_time = datetime.now()

    def log_acquisition(self, duration: float, success: bool):
        """Log the outcome of one scheduled collection."""
        self.metrics['acquisitions'].append({
            'duration': duration,
            'success': success,
            'timestamp': datetime.now()
        })
        self.totals['acquisitions'] += 1
        if success:
            self.totals['acquisitions_successful'] += 1

        self.logger.info(
            f"ACQUISITION duration={duration:.2f}s success={success}"
        )

    def log_store_write(self, duration: float, success: bool):
        """Log one insert into the reading store."""
        self.metrics['store_writes'].append({
            'duration': duration,
            'success': success,
            'timestamp': datetime.now()
        })
        self.totals['store_writes'] += 1
        if success:
            self.totals['store_writes_successful'] += 1

        self.logger.info(f"STORE_WRITE duration={duration:.3f}s success={success}")

    def log_retention(self, duration: float, deleted: int):
        """Log one retention sweep."""
        self.metrics['retention_runs'].append({
            'duration': duration,
            'deleted': deleted,
            'timestamp': datetime.now()
        })
        self.totals['retention_runs'] += 1
        self.totals['rows_deleted'] += deleted

        self.logger.info(f"RETENTION duration={duration:.3f}s deleted={deleted}")

    def get_performance_summary(self) -> dict:
        """Generate performance summary for the status command."""
        recent_successful = [a for a in self.metrics['acquisitions'] if a['success']]

        summary = {
            'uptime_seconds': (datetime.now() - self.start_time).total_seconds(),
            'acquisitions': {
                'total': self.totals['acquisitions'],
                'successful': self.totals['acquisitions_successful'],
                'avg_duration': 0,
            },
            'store_writes': {
                'total': self.totals['store_writes'],
                'successful': self.totals['store_writes_successful'],
            },
            'retention': {
                'runs': self.totals['retention_runs'],
                'total_deleted': self.totals['rows_deleted'],
            }
        }

        # Average over the retained window
        if recent_successful:
            summary['acquisitions']['avg_duration'] = (
                sum(a['duration'] for a in recent_successful) / len(recent_successful)
            )

        return summary

    def record_metric(self, metric_name: str, value: float):
        """Record a metric value."""
        if metric_name not in self.metrics:
            self.metrics[metric_name] = deque(maxlen=self.history_size)

        self.metrics[metric_name].append({
            'value': value,
            'timestamp': datetime.now()
        })

        self.logger.debug(f"METRIC {metric_name}={value}")

    @contextmanager
    def measure_time(self, operation_name: str):
        """Context manager for measuring operation time."""
        start_time = time.monotonic()
        try:
            yield
        finally:
            duration = time.monotonic() - start_time
            self.record_metric(f"{operation_name}_duration", duration)
            self.logger.info(f"TIMING {operation_name}={duration:.3f}s")

    def get_metrics(self) -> dict:
        """Get all recorded metrics."""
        return self.metrics.copy()


def setup_logging(settings, app_name: str = "sensor_collector") -> ProductionLogger:
    """
    Setup logging from collector settings.

    Args:
        settings: CollectorSettings instance
        app_name: Base name of the main log file

    Returns:
        ProductionLogger instance
    """
    return ProductionLogger(
        app_name=app_name,
        log_level=settings.log_level,
        log_dir=str(settings.log_dir),
        max_file_size=settings.log_max_file_size,
        backup_count=settings.log_backup_count,
        enable_console=settings.log_enable_console,
        enable_syslog=settings.log_enable_syslog
    )
