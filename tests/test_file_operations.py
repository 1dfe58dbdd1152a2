"""Tests for poster directory operations (core/file_operations.py)."""

import os

import pytest

from conftest import create_test_file
from core.exceptions import FilesystemError
from core.file_operations import PosterDirectory


def _read(path):
    with open(path, 'rb') as f:
        return f.read()


# ============================================================================
# TestRename
# ============================================================================

class TestRename:

    def test_rename(self, poster_dir):
        create_test_file(os.path.join(poster_dir, "Alien [5] **Plex**.jpg"))
        PosterDirectory(poster_dir).rename("Alien [5] **Plex**.jpg", "Alien [5] **Orphaned**.jpg")
        assert os.listdir(poster_dir) == ["Alien [5] **Orphaned**.jpg"]

    def test_existing_target_is_never_replaced(self, poster_dir):
        old = create_test_file(os.path.join(poster_dir, "Alien [5] **Plex**.jpg"), b"newer art")
        new = create_test_file(os.path.join(poster_dir, "Alien [5] **Orphaned**.jpg"), b"older art")

        with pytest.raises(FilesystemError, match="target already exists"):
            PosterDirectory(poster_dir).rename("Alien [5] **Plex**.jpg", "Alien [5] **Orphaned**.jpg")

        assert _read(old) == b"newer art"
        assert _read(new) == b"older art"

    def test_missing_source(self, poster_dir):
        with pytest.raises(FilesystemError):
            PosterDirectory(poster_dir).rename("Gone [1] **Plex**.jpg", "Gone [1] **Orphaned**.jpg")

    @pytest.mark.parametrize("name", ["../escape.jpg", "sub/poster.jpg", "..", ""])
    def test_unsafe_names_rejected(self, poster_dir, name):
        create_test_file(os.path.join(poster_dir, "Alien [5] **Plex**.jpg"))
        with pytest.raises(FilesystemError, match="unsafe"):
            PosterDirectory(poster_dir).rename("Alien [5] **Plex**.jpg", name)
        assert os.listdir(poster_dir) == ["Alien [5] **Plex**.jpg"]


# ============================================================================
# TestListing
# ============================================================================

class TestListing:

    def test_index_by_item_id(self, poster_dir):
        for name in ("Alien [5] [[Movies]] **Plex**.jpg", "Alien [5] **Plex**.jpg",
                     "Heat [6] **Plex**.jpg", "Heat [6] **Orphaned**.jpg", "My art [7].jpg"):
            create_test_file(os.path.join(poster_dir, name))

        index = PosterDirectory(poster_dir).index_by_item_id()

        assert index == {
            "5": ["Alien [5] **Plex**.jpg", "Alien [5] [[Movies]] **Plex**.jpg"],
            "6": ["Heat [6] **Plex**.jpg"],
        }

    def test_subdirectories_are_not_listed(self, poster_dir):
        os.makedirs(os.path.join(poster_dir, "Nested [1] **Plex**.jpg"))
        assert PosterDirectory(poster_dir).list_files() == []

    def test_missing_directory_lists_nothing(self, temp_dir):
        directory = PosterDirectory(os.path.join(temp_dir, "nowhere"))
        assert directory.list_files() == []
        assert directory.index_by_item_id() == {}


# ============================================================================
# TestSaveIfChanged
# ============================================================================

class TestSaveIfChanged:

    def test_writes_new_file(self, poster_dir):
        directory = PosterDirectory(poster_dir)
        assert directory.save_if_changed("Alien [5] **Plex**.jpg", b"art")
        assert _read(os.path.join(poster_dir, "Alien [5] **Plex**.jpg")) == b"art"

    def test_identical_bytes_left_alone(self, poster_dir):
        path = create_test_file(os.path.join(poster_dir, "Alien [5] **Plex**.jpg"), b"art")
        os.utime(path, (0, 0))
        assert not PosterDirectory(poster_dir).save_if_changed("Alien [5] **Plex**.jpg", b"art")
        assert os.path.getmtime(path) == 0

    def test_changed_bytes_overwrite(self, poster_dir):
        path = create_test_file(os.path.join(poster_dir, "Alien [5] **Plex**.jpg"), b"old")
        assert PosterDirectory(poster_dir).save_if_changed("Alien [5] **Plex**.jpg", b"new")
        assert _read(path) == b"new"
