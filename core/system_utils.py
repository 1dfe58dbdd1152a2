"""
System utilities for PosterVault.
Handles the sweep lock and directory creation.
"""

import logging
import os
import time
from typing import Optional

from core.exceptions import FilesystemError

# A lock older than this was left behind by a crashed run
STALE_LOCK_SECONDS = 2 * 60 * 60


class SweepLock:
    """
    Prevent two sweeps from running at the same time.

    The lock is a marker file holding the acquisition time. It is advisory:
    a crashed process leaves its marker behind, and the next run reclaims
    it once it is older than the stale threshold. Use as a context manager
    so the marker is removed on every exit path:

        with SweepLock(path) as lock:
            if not lock.locked:
                return
            ...
    """

    def __init__(self, lock_file: str, stale_after: float = STALE_LOCK_SECONDS):
        self.lock_file = str(lock_file)
        self.stale_after = stale_after
        self.locked = False

    def lock_age(self, now: Optional[float] = None) -> Optional[float]:
        """Seconds since the lock file was written, or None if there is none."""
        try:
            mtime = os.path.getmtime(self.lock_file)
        except OSError:
            return None
        return (now if now is not None else time.time()) - mtime

    def acquire(self, now: Optional[float] = None) -> bool:
        """
        Acquire the lock.

        Returns:
            True if the lock was acquired, False if a live run holds it.

        Raises:
            FilesystemError: If the lock file cannot be created or reclaimed.
        """
        now = now if now is not None else time.time()
        age = self.lock_age(now)
        try:
            if age is not None:
                if age < self.stale_after:
                    logging.info(f"[SCHEDULER] Another sweep is running (lock age {int(age)}s), skipping")
                    return False
                logging.warning(f"[SCHEDULER] Removing stale lock file ({int(age)}s old): {self.lock_file}")
                try:
                    os.remove(self.lock_file)
                except FileNotFoundError:
                    pass

            ensure_directory(os.path.dirname(self.lock_file))
            try:
                fd = os.open(self.lock_file, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
            except FileExistsError:
                # Lost the race to another process
                return False
            self.locked = True
            with os.fdopen(fd, 'w') as f:
                f.write(str(int(now)))
        except OSError as e:
            logging.error(f"[SCHEDULER] Could not create lock file {self.lock_file}: {e}")
            self.release()
            raise FilesystemError(f"Could not create lock file {self.lock_file}: {e}")
        return True

    def release(self) -> None:
        """Release the lock and clean up."""
        if not self.locked:
            return
        try:
            os.remove(self.lock_file)
        except FileNotFoundError:
            pass
        except OSError as e:
            logging.error(f"[SCHEDULER] Could not remove lock file {self.lock_file}: {e}")
        self.locked = False

    def __enter__(self) -> "SweepLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


def ensure_directory(path: str, mode: int = 0o755) -> None:
    """Create a directory (and parents) if it does not exist yet."""
    if path and not os.path.isdir(path):
        logging.debug(f"Creating directory: {path}")
        os.makedirs(path, mode=mode, exist_ok=True)
