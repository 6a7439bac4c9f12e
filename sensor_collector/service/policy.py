"""
Retry and retention policies for the collector.
Kept free of scheduling so they can be tested without the daemon's timing.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional, Tuple

from ..ble.collector import AcquisitionError, Reading


logger = logging.getLogger(__name__)


async def collect_with_retries(max_attempts: int,
                               delay: float,
                               attempt_fn: Callable[[], Awaitable[Reading]],
                               label: str = "sensor",
                               sleep: Callable[[float], Awaitable[Optional[bool]]] = asyncio.sleep,
                               log: Optional[logging.Logger] = None) -> Tuple[Optional[Reading], bool]:
    """
    Run attempt_fn until it yields a reading or max_attempts is reached.

    Only AcquisitionError counts as a failed attempt; anything else
    propagates. The delay is applied between attempts, not after the last.

    Args:
        max_attempts: Attempt cap for this tick
        delay: Seconds to wait after a failed attempt
        attempt_fn: Coroutine function performing a single attempt
        label: Name used in log messages
        sleep: Awaitable sleep, replaceable in tests. A truthy result means
            shutdown was requested and no further attempt is made.

    Returns:
        Tuple[Optional[Reading], bool]: The reading and True, or None and False
    """
    log = log or logger
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    for attempt in range(1, max_attempts + 1):
        log.info(f"Collection attempt {attempt}/{max_attempts} for {label}...")
        try:
            reading = await attempt_fn()
        except AcquisitionError as e:
            if attempt < max_attempts:
                log.warning(
                    f"Collection failed for {label} on attempt {attempt}: {e}. Retrying in {delay:.0f}s..."
                )
                if await sleep(delay):
                    log.info(f"Shutdown requested, abandoning collection for {label}")
                    return None, False
            else:
                log.warning(f"Collection failed for {label} on attempt {attempt}: {e}")
            continue

        return reading, True

    log.error(
        f"Failed to collect data from {label} after {max_attempts} attempts. "
        f"Will try again in the next interval."
    )
    return None, False


def retention_cutoff(now: datetime, window: timedelta) -> datetime:
    """Oldest timestamp that survives a retention sweep run at `now`."""
    if window <= timedelta(0):
        raise ValueError("Retention window must be positive")
    return now - window


def describe_retention(deleted: int, window: timedelta) -> str:
    """Human readable summary of one retention sweep."""
    age = f"{window.total_seconds() / 86400:g} days"
    if deleted > 0:
        return f"Applied retention policy: Deleted {deleted} records older than {age}."
    return f"Retention policy ran: No data older than {age} to delete."
