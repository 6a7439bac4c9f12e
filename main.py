#!/usr/bin/env python3
"""
Sensor Collector - Main Entry Point

Polls a BLE temperature/humidity sensor, stores readings in SQLite and
serves them through a read-only HTTP API.

Usage:
    python main.py --help                 # Show help
    python main.py run                    # Run the collector daemon
    python main.py collect --store        # Take and store one reading
    python main.py serve                  # Serve the HTTP API
    python main.py status                 # Show configuration and row count

Environment Setup:
    Copy and configure the environment file:
    cp .env.sample .env
    # Edit .env with your settings

    Copy the device file and set the sensor address:
    cp config.json.sample config.json

Requirements:
    - Python 3.8+
    - Bluetooth adapter available
    - Write access to the database directory
"""

import sys
from pathlib import Path

from sensor_collector import __version__
from sensor_collector.cli.commands import cli


def check_environment():
    """Check if the environment is properly set up."""
    issues = []

    if sys.version_info < (3, 8):
        issues.append(f"Python 3.8+ required, found {sys.version_info.major}.{sys.version_info.minor}")

    if not Path(".env").exists():
        issues.append(".env file not found (optional). Copy .env.sample to .env to change defaults")

    for dir_name in ["logs"]:
        dir_path = Path(dir_name)
        if not dir_path.exists():
            try:
                dir_path.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                issues.append(f"Cannot create directory {dir_name}: {e}")

    return issues


def print_banner():
    """Print application banner."""
    print(f"Sensor Collector {__version__} - BLE temperature/humidity polling")
    print()


def main():
    """Main entry point with environment validation."""
    print_banner()

    issues = check_environment()
    fatal = [issue for issue in issues if "(optional)" not in issue]
    for issue in issues:
        print(f"   • {issue}")
    if fatal:
        print("\nPlease resolve these issues before running the application.")
        sys.exit(1)

    if len(sys.argv) == 1:
        print("Usage: python main.py [COMMAND]")
        print("\nAvailable commands:")
        print("  run       Run the collector daemon")
        print("  collect   Collect one reading")
        print("  prune     Apply the retention policy")
        print("  init-db   Create the database")
        print("  latest    Show the latest reading")
        print("  history   List stored readings")
        print("  serve     Serve the HTTP API")
        print("  status    Show configuration and row count")
        print("  --help    Show detailed help")
        sys.exit(0)

    try:
        cli()
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(0)


if __name__ == "__main__":
    main()
