"""
Logging configuration for PosterVault.
Handles log setup, rotation and the end-of-sweep summary.
"""

import logging
import os
import threading
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List

from core.exceptions import ConfigError

# Global lock for thread-safe console output (shared with tqdm)
_console_lock = threading.RLock()


def get_console_lock() -> threading.RLock:
    """Get the global console output lock for use with tqdm."""
    return _console_lock


class ThreadSafeStreamHandler(logging.StreamHandler):
    """A StreamHandler that holds the console lock while writing.

    Keeps log lines from tearing through a tqdm progress bar that is
    being redrawn on the same terminal.
    """

    def emit(self, record):
        with _console_lock:
            super().emit(record)


# Sits above WARNING so the summary survives a quiet log level
SUMMARY = logging.WARNING + 1
logging.addLevelName(SUMMARY, 'SUMMARY')

LEVEL_MAPPING = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}

# Third-party loggers that are far too chatty at INFO
NOISY_LOGGERS = ("urllib3", "urllib3.connectionpool", "requests", "plexapi", "apscheduler")


class LoggingManager:
    """Manages logging configuration and setup."""

    def __init__(self, logs_folder: str, log_level: str = "", max_log_files: int = 5):
        self.logs_folder = Path(logs_folder)
        self.log_level = log_level
        self.max_log_files = max_log_files
        self.log_file_pattern = "postervault_log_*.log"
        self.logger = logging.getLogger()
        self.summary_messages: List[str] = []
        self._handlers: List[logging.Handler] = []

    def setup_logging(self) -> None:
        """Set up logging configuration.

        Raises:
            ConfigError: If the logs folder or log file cannot be created.
        """
        try:
            self._ensure_logs_folder()
            self._setup_log_file()
        except OSError as e:
            self.shutdown()
            raise ConfigError(f"{self.logs_folder} not writable, please fix the logs_folder setting: {e}")
        self._set_log_level()
        self._clean_old_log_files()
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    def _ensure_logs_folder(self) -> None:
        if not self.logs_folder.exists():
            self.logs_folder.mkdir(parents=True, exist_ok=True)

    def _setup_log_file(self) -> None:
        """Set up the log file with rotation and the console handler."""
        current_time = datetime.now().strftime("%Y%m%d_%H%M")
        log_file = self.logs_folder / f"postervault_log_{current_time}.log"
        latest_log_file = self.logs_folder / "postervault_log_latest.log"

        formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(message)s')

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=20*1024*1024,
            backupCount=self.max_log_files
        )
        file_handler.setFormatter(formatter)
        self.logger.addHandler(file_handler)
        self._handlers.append(file_handler)

        console_handler = ThreadSafeStreamHandler()
        console_handler.setFormatter(formatter)
        self.logger.addHandler(console_handler)
        self._handlers.append(console_handler)

        # Point the "latest" link at this run's file
        try:
            if latest_log_file.exists() or latest_log_file.is_symlink():
                latest_log_file.unlink()
            latest_log_file.symlink_to(log_file.name)
        except OSError as e:
            logging.debug(f"Could not update latest log link: {e}")

    def _set_log_level(self) -> None:
        if self.log_level:
            log_level = self.log_level.lower()
            if log_level in LEVEL_MAPPING:
                self.logger.setLevel(LEVEL_MAPPING[log_level])
            else:
                logging.warning(f"Invalid log_level: {log_level}. Using default level: INFO")
                self.logger.setLevel(logging.INFO)
        else:
            self.logger.setLevel(logging.INFO)

    def _clean_old_log_files(self) -> None:
        """Clean old log files to maintain the maximum count."""
        existing_log_files = [p for p in self.logs_folder.glob(self.log_file_pattern)
                              if not p.is_symlink()]
        existing_log_files.sort(key=lambda x: x.stat().st_mtime)

        while len(existing_log_files) > self.max_log_files:
            old_log = existing_log_files.pop(0)
            try:
                os.remove(old_log)
            except OSError as e:
                logging.warning(f"Could not remove old log file {old_log}: {e}")

    def add_summary_message(self, message: str) -> None:
        """Add a line to the end-of-sweep summary."""
        self.summary_messages.append(message)

    def log_summary(self) -> None:
        """Log the accumulated summary once, then forget it.

        Uses newlines for multi-line output when there are multiple messages.
        """
        if self.summary_messages:
            if len(self.summary_messages) == 1:
                summary_message = self.summary_messages[0]
            else:
                summary_message = '\n  ' + '\n  '.join(self.summary_messages)
            self.logger.log(SUMMARY, summary_message)
            self.summary_messages = []

    def shutdown(self) -> None:
        """Detach and close this manager's handlers."""
        for handler in self._handlers:
            self.logger.removeHandler(handler)
            handler.close()
        self._handlers = []
