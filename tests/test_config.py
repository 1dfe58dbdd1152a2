"""Tests for configuration loading (core/config.py)."""

import json
import os

import pytest

from conftest import create_test_file
from core.config import ConfigManager
from core.exceptions import ConfigError
from core.logging_config import LoggingManager


def _write_settings(temp_dir, data):
    path = os.path.join(temp_dir, "postervault_settings.json")
    create_test_file(path, json.dumps(data) if not isinstance(data, (bytes, str)) else data)
    return path


def _load(path, environ=None):
    config = ConfigManager(path, environ=environ or {})
    config.load_config()
    return config


# ============================================================================
# TestLoadConfig
# ============================================================================

class TestLoadConfig:

    def test_missing_file_uses_defaults(self, temp_dir):
        config = _load(os.path.join(temp_dir, "absent.json"))
        assert config.plex.plex_url == ""
        assert config.plex.connect_timeout == 10
        assert config.imports.schedule == "24h"
        assert config.imports.enabled_media_types() == ["movies", "shows", "seasons", "collections"]
        assert config.imports.overwrite_option == "overwrite"

    def test_file_values(self, temp_dir):
        path = _write_settings(temp_dir, {
            "PLEX_URL": "http://plex.local:32400/",
            "PLEX_TOKEN": "abc",
            "auto_import_schedule": "6h",
            "import_seasons": False,
            "excluded_libraries": ["Home Videos"],
            "overwrite_option": "COPY",
            "posters_folder": "/srv/posters",
        })
        config = _load(path)
        assert config.plex.plex_url == "http://plex.local:32400"
        assert config.plex.plex_token == "abc"
        assert config.imports.schedule == "6h"
        assert config.imports.enabled_media_types() == ["movies", "shows", "collections"]
        assert config.imports.excluded_libraries == ["Home Videos"]
        assert config.imports.overwrite_option == "copy"
        assert str(config.get_poster_directory("seasons")) == "/srv/posters/tv-seasons"

    def test_environment_overrides_file(self, temp_dir):
        path = _write_settings(temp_dir, {"PLEX_TOKEN": "from-file", "import_movies": True})
        config = _load(path, environ={
            "PLEX_TOKEN": "from-env",
            "PLEX_SERVER_URL": "http://env:32400",
            "PLEX_CONNECT_TIMEOUT": "3",
            "AUTO_IMPORT_MOVIES": "false",
            "AUTO_IMPORT_EXCLUDED_LIBRARIES": "Kids, Music ,",
        })
        assert config.plex.plex_token == "from-env"
        assert config.plex.plex_url == "http://env:32400"
        assert config.plex.connect_timeout == 3
        assert config.imports.import_movies is False
        assert config.imports.excluded_libraries == ["Kids", "Music"]

    def test_empty_environment_value_is_ignored(self, temp_dir):
        path = _write_settings(temp_dir, {"PLEX_TOKEN": "from-file"})
        assert _load(path, environ={"PLEX_TOKEN": ""}).plex.plex_token == "from-file"


# ============================================================================
# TestConfigErrors
# ============================================================================

class TestConfigErrors:

    def test_invalid_json(self, temp_dir):
        path = _write_settings(temp_dir, "{not json")
        with pytest.raises(ConfigError, match="Invalid JSON"):
            _load(path)

    def test_non_object(self, temp_dir):
        path = _write_settings(temp_dir, [1, 2])
        with pytest.raises(ConfigError):
            _load(path)

    @pytest.mark.parametrize("key,value", [
        ("connect_timeout", "10"),
        ("import_movies", "yes"),
        ("page_size", True),
        ("excluded_libraries", "Kids"),
    ])
    def test_wrong_type(self, temp_dir, key, value):
        path = _write_settings(temp_dir, {key: value})
        with pytest.raises(ConfigError, match=key):
            _load(path)

    @pytest.mark.parametrize("key,value", [
        ("overwrite_option", "replace"),
        ("page_size", 0),
        ("batch_delay", -1),
        ("max_log_files", 0),
    ])
    def test_invalid_value(self, temp_dir, key, value):
        path = _write_settings(temp_dir, {key: value})
        with pytest.raises(ConfigError):
            _load(path)

    def test_bad_environment_int(self, temp_dir):
        with pytest.raises(ConfigError, match="PLEX_PAGE_SIZE"):
            _load(os.path.join(temp_dir, "absent.json"), environ={"PLEX_PAGE_SIZE": "lots"})

    def test_validate_for_sweep_names_missing_settings(self, temp_dir):
        config = _load(os.path.join(temp_dir, "absent.json"))
        with pytest.raises(ConfigError, match="PLEX_URL, PLEX_TOKEN"):
            config.validate_for_sweep()

    def test_unknown_media_type_directory(self, temp_dir):
        config = _load(os.path.join(temp_dir, "absent.json"))
        with pytest.raises(ConfigError):
            config.get_poster_directory("music")


# ============================================================================
# TestFolders
# ============================================================================

class TestFolders:

    def test_ensure_folders_creates_every_poster_directory(self, make_config):
        config = make_config()
        config.ensure_folders()
        for media_type in ("movies", "shows", "seasons", "collections"):
            assert config.get_poster_directory(media_type).is_dir()
        assert config.get_data_folder().is_dir()

    def test_data_files_live_in_data_folder(self, make_config):
        config = make_config()
        for path in (config.get_valid_ids_file(), config.get_library_tracker_file(),
                     config.get_lock_file(), config.get_timestamp_file()):
            assert path.parent == config.get_data_folder()


# ============================================================================
# TestLoggingSetup
# ============================================================================

class TestLoggingSetup:

    def test_unwritable_logs_folder_is_config_error(self, temp_dir):
        blocker = create_test_file(os.path.join(temp_dir, "blocker"))
        manager = LoggingManager(logs_folder=os.path.join(blocker, "logs"))
        with pytest.raises(ConfigError, match="logs_folder"):
            manager.setup_logging()
        assert manager._handlers == []
