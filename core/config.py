"""
Configuration management for PosterVault.
Handles loading, validation, and management of application settings.

Settings come from a JSON file; environment variables override individual
values. A missing settings file means every option takes its default.
"""

import json
import os
import logging
from pathlib import Path
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field

from core.exceptions import ConfigError

# Get the directory where config.py is located
_SCRIPT_DIR = Path(os.path.dirname(os.path.abspath(__file__)))

# Project root detection: if we're in core/, go up one level
if _SCRIPT_DIR.name == 'core':
    _PROJECT_ROOT = _SCRIPT_DIR.parent
else:
    _PROJECT_ROOT = _SCRIPT_DIR

DEFAULT_SETTINGS_FILE = str(_PROJECT_ROOT / "postervault_settings.json")

OVERWRITE_OPTIONS = ("overwrite", "copy", "skip")

# Poster directory per media type, relative to posters_folder
MEDIA_TYPE_DIRECTORIES = {
    "movies": "movies",
    "shows": "tv-shows",
    "seasons": "tv-seasons",
    "collections": "collections",
}


@dataclass
class PlexConfig:
    """Configuration for Plex server settings."""
    plex_url: str = ""
    plex_token: str = ""
    connect_timeout: int = 10
    request_timeout: int = 60
    # Page size when listing a library's shows and a show's seasons
    page_size: int = 25
    # Items per import step: one remote page, written as one batch
    import_batch_size: int = 25
    # Pause between batches, in seconds
    batch_delay: float = 0.5


@dataclass
class ImportConfig:
    """Configuration for the auto-import sweep."""
    enabled: bool = True
    schedule: str = "24h"
    import_movies: bool = True
    import_shows: bool = True
    import_seasons: bool = True
    import_collections: bool = True
    excluded_libraries: List[str] = field(default_factory=list)
    overwrite_option: str = "overwrite"

    def enabled_media_types(self) -> List[str]:
        """Media types to sweep, in sweep order."""
        flags = [
            ("movies", self.import_movies),
            ("shows", self.import_shows),
            ("seasons", self.import_seasons),
            ("collections", self.import_collections),
        ]
        return [media_type for media_type, enabled in flags if enabled]


@dataclass
class PathConfig:
    """Configuration for file paths and directories."""
    posters_folder: str = str(_PROJECT_ROOT / "posters")
    data_folder: str = str(_PROJECT_ROOT / "data")
    logs_folder: str = str(_PROJECT_ROOT / "logs")


@dataclass
class LoggingConfig:
    """Configuration for log output."""
    log_level: str = "info"
    max_log_files: int = 5


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes")


def _parse_list(value: str) -> List[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


# Environment variable -> (section, attribute, converter)
ENV_OVERRIDES: Dict[str, tuple] = {
    "PLEX_SERVER_URL": ("plex", "plex_url", str),
    "PLEX_TOKEN": ("plex", "plex_token", str),
    "PLEX_CONNECT_TIMEOUT": ("plex", "connect_timeout", int),
    "PLEX_REQUEST_TIMEOUT": ("plex", "request_timeout", int),
    "PLEX_IMPORT_BATCH_SIZE": ("plex", "import_batch_size", int),
    "PLEX_PAGE_SIZE": ("plex", "page_size", int),
    "AUTO_IMPORT_ENABLED": ("imports", "enabled", _parse_bool),
    "AUTO_IMPORT_SCHEDULE": ("imports", "schedule", str),
    "AUTO_IMPORT_MOVIES": ("imports", "import_movies", _parse_bool),
    "AUTO_IMPORT_SHOWS": ("imports", "import_shows", _parse_bool),
    "AUTO_IMPORT_SEASONS": ("imports", "import_seasons", _parse_bool),
    "AUTO_IMPORT_COLLECTIONS": ("imports", "import_collections", _parse_bool),
    "AUTO_IMPORT_EXCLUDED_LIBRARIES": ("imports", "excluded_libraries", _parse_list),
    "POSTERVAULT_LOG_LEVEL": ("logging", "log_level", str),
}


class ConfigManager:
    """Manages application configuration loading and validation."""

    def __init__(self, config_file: Optional[str] = None,
                 environ: Optional[Dict[str, str]] = None):
        self.config_file = Path(config_file or DEFAULT_SETTINGS_FILE)
        self.environ = environ if environ is not None else os.environ
        self.settings_data: Dict[str, Any] = {}
        self.plex = PlexConfig()
        self.imports = ImportConfig()
        self.paths = PathConfig()
        self.logging = LoggingConfig()

    def load_config(self) -> None:
        """Load configuration from the settings file and environment.

        Raises:
            ConfigError: If the file is not valid JSON or a value has the wrong type.
        """
        logging.debug(f"Loading configuration from: {self.config_file}")

        if self.config_file.exists():
            try:
                with open(self.config_file, 'r', encoding='utf-8') as config_file:
                    self.settings_data = json.load(config_file)
                logging.debug("Configuration file loaded successfully")
            except json.JSONDecodeError as e:
                logging.error(f"Invalid JSON in settings file: {type(e).__name__}: {e}")
                raise ConfigError(f"Invalid JSON in settings file: {e}")
            if not isinstance(self.settings_data, dict):
                raise ConfigError("Settings file must contain a JSON object")
        else:
            logging.debug(f"Settings file not found, using defaults: {self.config_file}")
            self.settings_data = {}

        self._validate_types()
        self._load_all_configs()
        self._apply_env_overrides()
        self._validate_values()
        logging.debug("Configuration loaded and validated successfully")

    def _load_all_configs(self) -> None:
        self._load_plex_config()
        self._load_import_config()
        self._load_path_config()
        self._load_logging_config()

    def _load_plex_config(self) -> None:
        """Load Plex-related configuration."""
        data = self.settings_data
        self.plex.plex_url = data.get('PLEX_URL', self.plex.plex_url)
        self.plex.plex_token = data.get('PLEX_TOKEN', self.plex.plex_token)
        self.plex.connect_timeout = data.get('connect_timeout', self.plex.connect_timeout)
        self.plex.request_timeout = data.get('request_timeout', self.plex.request_timeout)
        self.plex.page_size = data.get('page_size', self.plex.page_size)
        self.plex.import_batch_size = data.get('import_batch_size', self.plex.import_batch_size)
        self.plex.batch_delay = data.get('batch_delay', self.plex.batch_delay)

    def _load_import_config(self) -> None:
        """Load auto-import configuration."""
        data = self.settings_data
        self.imports.enabled = data.get('auto_import_enabled', self.imports.enabled)
        self.imports.schedule = data.get('auto_import_schedule', self.imports.schedule)
        self.imports.import_movies = data.get('import_movies', self.imports.import_movies)
        self.imports.import_shows = data.get('import_shows', self.imports.import_shows)
        self.imports.import_seasons = data.get('import_seasons', self.imports.import_seasons)
        self.imports.import_collections = data.get('import_collections', self.imports.import_collections)
        self.imports.excluded_libraries = list(data.get('excluded_libraries', []))
        self.imports.overwrite_option = data.get('overwrite_option', self.imports.overwrite_option)

    def _load_path_config(self) -> None:
        """Load path-related configuration."""
        data = self.settings_data
        self.paths.posters_folder = data.get('posters_folder', self.paths.posters_folder)
        self.paths.data_folder = data.get('data_folder', self.paths.data_folder)
        self.paths.logs_folder = data.get('logs_folder', self.paths.logs_folder)

    def _load_logging_config(self) -> None:
        self.logging.log_level = self.settings_data.get('log_level', self.logging.log_level)
        self.logging.max_log_files = self.settings_data.get('max_log_files', self.logging.max_log_files)

    def _apply_env_overrides(self) -> None:
        """Environment variables win over the settings file."""
        for env_name, (section, attribute, convert) in ENV_OVERRIDES.items():
            raw = self.environ.get(env_name)
            if raw is None or raw == "":
                continue
            try:
                value = convert(raw)
            except ValueError:
                raise ConfigError(f"Invalid value for {env_name}: {raw!r}")
            setattr(getattr(self, section), attribute, value)
            logging.debug(f"Setting {section}.{attribute} overridden by {env_name}")

    def _validate_types(self) -> None:
        """Validate that configuration values have correct types."""
        logging.debug("Validating configuration types...")

        type_checks = {
            'PLEX_URL': str,
            'PLEX_TOKEN': str,
            'connect_timeout': int,
            'request_timeout': int,
            'page_size': int,
            'import_batch_size': int,
            'batch_delay': (int, float),
            'auto_import_enabled': bool,
            'auto_import_schedule': str,
            'import_movies': bool,
            'import_shows': bool,
            'import_seasons': bool,
            'import_collections': bool,
            'excluded_libraries': list,
            'overwrite_option': str,
            'posters_folder': str,
            'data_folder': str,
            'logs_folder': str,
            'log_level': str,
            'max_log_files': int,
        }

        type_errors = []
        for key, expected_type in type_checks.items():
            if key in self.settings_data:
                value = self.settings_data[key]
                # bool is an int subclass; a flag is never a valid count
                if isinstance(value, bool) and expected_type is not bool:
                    type_errors.append(f"'{key}' expected a number, got bool")
                elif not isinstance(value, expected_type):
                    expected = (expected_type.__name__ if isinstance(expected_type, type)
                                else "number")
                    type_errors.append(f"'{key}' expected {expected}, got {type(value).__name__}")

        if type_errors:
            error_msg = "Type validation errors: " + "; ".join(type_errors)
            logging.error(error_msg)
            raise ConfigError(error_msg)

        logging.debug("Type validation successful")

    def _validate_values(self) -> None:
        """Validate configuration value ranges and constraints."""
        logging.debug("Validating configuration values...")
        errors = []

        for name in ('connect_timeout', 'request_timeout', 'page_size', 'import_batch_size'):
            if getattr(self.plex, name) <= 0:
                errors.append(f"{name} must be positive")
        if self.plex.batch_delay < 0:
            errors.append("batch_delay cannot be negative")
        if self.logging.max_log_files <= 0:
            errors.append("max_log_files must be positive")

        self.imports.overwrite_option = self.imports.overwrite_option.lower()
        if self.imports.overwrite_option not in OVERWRITE_OPTIONS:
            errors.append(f"overwrite_option must be one of {', '.join(OVERWRITE_OPTIONS)}")

        self.plex.plex_url = self.plex.plex_url.rstrip('/')

        if errors:
            error_msg = "Configuration value errors: " + "; ".join(errors)
            logging.error(error_msg)
            raise ConfigError(error_msg)

        logging.debug("Value validation successful")

    def validate_for_sweep(self) -> None:
        """Check the settings a sweep cannot start without.

        Raises:
            ConfigError: If the server URL or token is missing.
        """
        missing = []
        if not self.plex.plex_url:
            missing.append("PLEX_URL")
        if not self.plex.plex_token:
            missing.append("PLEX_TOKEN")
        if missing:
            logging.error(f"Missing required settings: {missing}")
            raise ConfigError(f"Missing required settings: {', '.join(missing)}")

    def get_data_folder(self) -> Path:
        return Path(self.paths.data_folder)

    def get_valid_ids_file(self) -> Path:
        return self.get_data_folder() / "plex_valid_ids.json"

    def get_library_tracker_file(self) -> Path:
        return self.get_data_folder() / "plex_libraries.json"

    def get_lock_file(self) -> Path:
        return self.get_data_folder() / "auto_import.lock"

    def get_timestamp_file(self) -> Path:
        """Get the path to the last auto-import timestamp file."""
        return self.get_data_folder() / "last_auto_import.txt"

    def get_poster_directory(self, media_type: str) -> Path:
        """Get the poster directory for a media type."""
        if media_type not in MEDIA_TYPE_DIRECTORIES:
            raise ConfigError(f"Unknown media type: {media_type}")
        return Path(self.paths.posters_folder) / MEDIA_TYPE_DIRECTORIES[media_type]

    def ensure_folders(self) -> None:
        """Create the data folder and every poster directory."""
        folders = [self.get_data_folder()] + [
            self.get_poster_directory(media_type) for media_type in MEDIA_TYPE_DIRECTORIES
        ]
        for folder in folders:
            if not folder.exists():
                folder.mkdir(parents=True, exist_ok=True)
                logging.debug(f"Created folder: {folder}")
