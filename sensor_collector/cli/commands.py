"""
Command line interface for the sensor collector.
Provides daemon, one-off collection, maintenance and inspection commands
using click and rich.
"""

import asyncio
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .. import __version__
from ..utils.config import Config, CollectorSettings, ConfigurationError
from ..utils.logging import ProductionLogger, PerformanceMonitor, setup_logging
from ..ble.collector import SensorCollector, Reading
from ..storage.readings import ReadingStore, StoredReading, StoreError
from ..service.daemon import CollectorDaemonError, run_daemon
from ..service.policy import collect_with_retries, describe_retention, retention_cutoff


class SensorCLI:
    """
    Shared state for the click commands.

    Environment settings are loaded eagerly; the device file is only read
    by the commands that talk to the sensor.
    """

    def __init__(self, env_file: Optional[Path] = None, device_file: Optional[Path] = None):
        self.console = Console()
        self.env_file = env_file
        self.device_file = device_file
        self.config = Config(env_file)

    def fail(self, message: str):
        """Print an error and exit with status 1."""
        self.console.print(f"[red]{message}[/red]")
        sys.exit(1)

    def load_settings(self) -> CollectorSettings:
        try:
            return self.config.build_settings(self.device_file)
        except ConfigurationError as e:
            self.fail(f"Configuration Error: {e}")

    def open_store(self, read_only: bool = False, performance_monitor: Optional[PerformanceMonitor] = None) -> ReadingStore:
        try:
            return ReadingStore(
                self.config.database_path,
                read_only=read_only,
                performance_monitor=performance_monitor
            )
        except ConfigurationError as e:
            self.fail(f"Configuration Error: {e}")

    def print_reading(self, reading: Reading, title: str = "Reading"):
        self.console.print(Panel.fit(
            f"[bold]Temperature:[/bold] {reading.temperature:.2f} °C\n"
            f"[bold]Humidity:[/bold] {reading.humidity} %\n"
            f"[dim]{reading.timestamp.strftime('%Y-%m-%d %H:%M:%S')}[/dim]",
            title=title,
            border_style="green"
        ))

    def print_readings(self, rows: List[StoredReading], title: str):
        if not rows:
            self.console.print("[yellow]No sensor data found[/yellow]")
            return

        table = Table(title=title, show_header=True, header_style="bold magenta")
        table.add_column("ID", style="dim", justify="right")
        table.add_column("Timestamp", style="cyan")
        table.add_column("Temperature", style="green", justify="right")
        table.add_column("Humidity", style="blue", justify="right")

        for row in rows:
            table.add_row(
                str(row.id),
                row.timestamp.strftime('%Y-%m-%d %H:%M:%S'),
                f"{row.temperature:.2f} °C",
                f"{row.humidity} %"
            )

        self.console.print(table)

    def print_status(self, settings: CollectorSettings, row_count: Optional[int]):
        summary = settings.get_summary()

        table = Table(title="Sensor Collector Status", show_header=True, header_style="bold cyan")
        table.add_column("Section", style="blue")
        table.add_column("Setting", style="magenta")
        table.add_column("Value", style="green")

        for section, values in summary.items():
            for key, value in values.items():
                table.add_row(section, key, str(value))

        table.add_row("storage", "rows", "unavailable" if row_count is None else str(row_count))
        self.console.print(table)


pass_cli = click.make_pass_decorator(SensorCLI)


@click.group()
@click.version_option(version=__version__, prog_name="sensor-collector")
@click.option("--env-file", type=click.Path(dir_okay=False, path_type=Path), default=None,
              help="Environment file (defaults to ./.env)")
@click.option("--config", "device_file", type=click.Path(dir_okay=False, path_type=Path), default=None,
              help="Device configuration file (overrides SENSOR_CONFIG_FILE)")
@click.pass_context
def cli(ctx, env_file, device_file):
    """Sensor Collector - BLE temperature/humidity polling service."""
    ctx.obj = SensorCLI(env_file, device_file)


@cli.command()
@pass_cli
def run(app: SensorCLI):
    """Run the collector daemon until SIGINT/SIGTERM."""
    settings = app.load_settings()
    app.console.print(f"[blue]Starting collector for {settings.device.address}...[/blue]")
    try:
        asyncio.run(run_daemon(settings))
    except CollectorDaemonError as e:
        app.fail(f"Daemon error: {e}")


@cli.command()
@click.option("--store", "store_reading", is_flag=True, help="Append the reading to the database")
@pass_cli
def collect(app: SensorCLI, store_reading: bool):
    """Collect one reading with the configured retry policy."""
    settings = app.load_settings()
    logger = setup_logging(settings)
    performance_monitor = PerformanceMonitor()
    collector = SensorCollector.from_settings(settings, performance_monitor=performance_monitor)

    reading, ok = asyncio.run(collect_with_retries(
        settings.max_attempts,
        settings.retry_delay,
        collector.collect_single_reading,
        label=settings.device.address
    ))

    if not ok:
        app.fail(f"No reading from {settings.device.address} after {settings.max_attempts} attempts")

    app.print_reading(reading, title=settings.device.address)

    if store_reading:
        store = ReadingStore(settings.database_path, performance_monitor=performance_monitor)
        try:
            store.initialize()
        except StoreError as e:
            app.fail(f"Storage Error: {e}")
        if not store.append(reading):
            app.fail("Failed to store reading")
        logger.info("Reading stored")
        app.console.print(f"[green]Stored in {settings.database_path}[/green]")


@cli.command()
@click.option("--days", type=click.IntRange(min=1), default=None,
              help="Retention window in days (defaults to RETENTION_DAYS)")
@pass_cli
def prune(app: SensorCLI, days: Optional[int]):
    """Delete readings older than the retention window."""
    store = app.open_store()
    try:
        window = timedelta(days=days if days is not None else app.config.retention_days)
        deleted = store.prune_older_than(retention_cutoff(datetime.now(), window))
    except (StoreError, ConfigurationError) as e:
        app.fail(f"Prune failed: {e}")

    app.console.print(f"[green]{describe_retention(deleted, window)}[/green]")


@cli.command("init-db")
@pass_cli
def init_db(app: SensorCLI):
    """Create the database file, table and index."""
    store = app.open_store()
    try:
        store.initialize()
    except StoreError as e:
        app.fail(f"Storage Error: {e}")
    app.console.print(f"[green]Database ready at {store.db_path}[/green]")


@cli.command()
@pass_cli
def latest(app: SensorCLI):
    """Show the most recent stored reading."""
    store = app.open_store(read_only=True)
    try:
        row = store.query_latest()
    except StoreError as e:
        app.fail(f"Storage Error: {e}")

    if row is None:
        app.console.print("[yellow]No sensor data found[/yellow]")
        return
    app.print_reading(Reading(row.temperature, row.humidity, row.timestamp), title="Latest reading")


@cli.command()
@click.option("--limit", "-n", type=click.IntRange(min=0), default=20, show_default=True,
              help="Maximum number of rows")
@click.option("--order", type=click.Choice(["asc", "desc"], case_sensitive=False), default="desc",
              show_default=True, help="Sort order by timestamp")
@pass_cli
def history(app: SensorCLI, limit: int, order: str):
    """List stored readings."""
    store = app.open_store(read_only=True)
    try:
        rows = store.query_all(limit=limit, order=order)
    except StoreError as e:
        app.fail(f"Storage Error: {e}")
    app.print_readings(rows, title=f"Sensor History ({order.lower()})")


@cli.command()
@click.option("--host", default=None, help="Bind address (defaults to API_HOST)")
@click.option("--port", type=int, default=None, help="Bind port (defaults to API_PORT)")
@pass_cli
def serve(app: SensorCLI, host: Optional[str], port: Optional[int]):
    """Serve the read-only HTTP API with uvicorn."""
    import uvicorn
    from ..api import create_app

    try:
        ProductionLogger(
            app_name="sensor_api",
            log_dir=str(app.config.log_dir),
            log_level=app.config.log_level,
            max_file_size=app.config.log_max_file_size,
            backup_count=app.config.log_backup_count,
            enable_console=app.config.log_enable_console,
            enable_syslog=app.config.log_enable_syslog
        )
        host = host or app.config.api_host
        port = port or app.config.api_port
    except ConfigurationError as e:
        app.fail(f"Configuration Error: {e}")

    app.console.print(f"[blue]Serving API on http://{host}:{port}/api[/blue]")
    uvicorn.run(create_app(), host=host, port=port, log_config=None)


@cli.command()
@pass_cli
def status(app: SensorCLI):
    """Show configuration summary and stored row count."""
    settings = app.load_settings()
    store = ReadingStore(settings.database_path, read_only=True)
    try:
        row_count = store.count()
    except StoreError as e:
        app.console.print(f"[yellow]Database unavailable: {e}[/yellow]")
        row_count = None
    app.print_status(settings, row_count)


if __name__ == "__main__":
    cli()
