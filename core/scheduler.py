"""
Auto-import scheduling for PosterVault.

A tick decides whether a sweep runs now: the feature must be enabled, no
other sweep may hold the lock, and the configured interval must have
passed since the last successful sweep. Daemon mode calls tick() on a
fixed APScheduler interval.
"""

import logging
import os
import re
import time
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

from core.exceptions import FilesystemError, PosterVaultError
from core.system_utils import SweepLock, ensure_directory

DEFAULT_INTERVAL_SECONDS = 24 * 60 * 60
DAEMON_TICK_MINUTES = 15

INTERVAL_UNITS = {
    "m": 60,
    "h": 60 * 60,
    "d": 24 * 60 * 60,
    "w": 7 * 24 * 60 * 60,
}

_INTERVAL_PATTERN = re.compile(r"^\s*(\d+)\s*([A-Za-z]?)\s*$")


def parse_interval(schedule: str) -> int:
    """Convert a compact duration like "30m", "6h", "1d" or "2w" to seconds.

    An unknown unit means 24 hours, as does a string that is not a
    duration at all.
    """
    match = _INTERVAL_PATTERN.match(schedule or "")
    if not match:
        logging.warning(f"[SCHEDULER] Invalid schedule '{schedule}', using 24h")
        return DEFAULT_INTERVAL_SECONDS
    number, unit = int(match.group(1)), match.group(2).lower()
    if unit not in INTERVAL_UNITS:
        logging.warning(f"[SCHEDULER] Unknown schedule unit in '{schedule}', using 24h")
        return DEFAULT_INTERVAL_SECONDS
    return number * INTERVAL_UNITS[unit]


class TickOutcome(Enum):
    DISABLED = "disabled"
    LOCKED = "locked"
    NOT_DUE = "not_due"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def exit_code(self) -> int:
        return 1 if self is TickOutcome.FAILED else 0


class AutoImportScheduler:
    """Gate for the auto-import sweep."""

    def __init__(self, timestamp_file: str, lock_file: str, schedule: str = "24h",
                 enabled: bool = True):
        self.timestamp_file = str(timestamp_file)
        self.lock_file = str(lock_file)
        self.schedule = schedule
        self.interval = parse_interval(schedule)
        self.enabled = enabled

    def last_run(self) -> Optional[float]:
        """Epoch seconds of the last successful sweep, or None."""
        if not os.path.exists(self.timestamp_file):
            return None
        try:
            with open(self.timestamp_file, 'r') as f:
                return float(f.read().strip())
        except (IOError, ValueError) as e:
            logging.warning(f"[SCHEDULER] Ignoring unreadable last-run file: {e}")
            return None

    def should_run(self, now: Optional[float] = None) -> bool:
        last = self.last_run()
        if last is None:
            return True
        now = now if now is not None else time.time()
        elapsed = now - last
        if elapsed >= self.interval:
            return True
        logging.info(f"[SCHEDULER] Next sweep due in {int(self.interval - elapsed)}s "
                     f"(schedule: {self.schedule})")
        return False

    def record_run(self, now: Optional[float] = None) -> None:
        """Write the last-run time.

        Raises:
            FilesystemError: If the timestamp file cannot be written.
        """
        now = now if now is not None else time.time()
        try:
            ensure_directory(os.path.dirname(self.timestamp_file))
            with open(self.timestamp_file, 'w') as f:
                f.write(str(int(now)))
        except OSError as e:
            raise FilesystemError(f"Could not write last-run file {self.timestamp_file}: {e}")
        logging.debug(f"[SCHEDULER] Recorded sweep at {datetime.fromtimestamp(now).isoformat()}")

    def tick(self, sweep: Callable[[], bool], force: bool = False,
             now: Optional[float] = None) -> TickOutcome:
        """Run the sweep if it is enabled, unlocked and due.

        Args:
            sweep: Callable performing the sweep; returns True on success.
            force: Ignore the interval (never the lock).
            now: Current epoch time, for testing.

        Returns:
            What the tick did. Only SUCCEEDED updates the last-run time; a
            lock or last-run file that cannot be written makes the tick FAILED.
        """
        if not self.enabled:
            logging.info("[SCHEDULER] Auto-import is disabled")
            return TickOutcome.DISABLED

        try:
            with SweepLock(self.lock_file) as lock:
                if not lock.locked:
                    return TickOutcome.LOCKED

                if not force and not self.should_run(now):
                    return TickOutcome.NOT_DUE

                try:
                    succeeded = sweep()
                except PosterVaultError as e:
                    logging.error(f"[SCHEDULER] Sweep aborted: {e}")
                    succeeded = False

                if not succeeded:
                    logging.warning("[SCHEDULER] Sweep failed; last-run time not updated")
                    return TickOutcome.FAILED

                self.record_run(now)
                return TickOutcome.SUCCEEDED
        except FilesystemError as e:
            logging.error(f"[SCHEDULER] {e}")
            return TickOutcome.FAILED


def run_forever(tick: Callable[[], object], minutes: int = DAEMON_TICK_MINUTES) -> None:
    """Call tick every few minutes until interrupted."""
    scheduler = BlockingScheduler(
        job_defaults={
            'coalesce': True,  # Combine missed runs into one
            'max_instances': 1,  # Only one instance at a time
        }
    )
    scheduler.add_job(
        tick,
        trigger=IntervalTrigger(minutes=minutes),
        id="postervault_auto_import",
        name="PosterVault Auto Import",
        next_run_time=datetime.now(),
        replace_existing=True,
    )
    logging.info(f"[SCHEDULER] Daemon started, checking every {minutes} minute(s)")
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logging.info("[SCHEDULER] Daemon stopped")
