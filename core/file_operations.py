"""
File operations for PosterVault.
Handles reading, writing and renaming poster files inside one media type's
poster directory.
"""

import os
import logging
from typing import Dict, List

from core.exceptions import FilesystemError
from core.filename_codec import decode_item_id, has_source_tag, is_safe_filename
from core.system_utils import ensure_directory

POSTER_PERMISSIONS = 0o644


class PosterDirectory:
    """A directory of poster files for a single media type.

    Every method takes bare filenames; anything that could escape the
    directory is rejected with FilesystemError before touching the disk.
    """

    def __init__(self, directory: str):
        self.directory = str(directory)

    def ensure(self) -> None:
        try:
            ensure_directory(self.directory)
        except OSError as e:
            raise FilesystemError(f"Could not create poster directory {self.directory}: {e}")

    def path(self, filename: str) -> str:
        if not is_safe_filename(filename):
            raise FilesystemError(f"Refusing unsafe filename: {filename!r}")
        return os.path.join(self.directory, filename)

    def exists(self, filename: str) -> bool:
        return os.path.isfile(self.path(filename))

    def list_files(self) -> List[str]:
        """Filenames in the directory, sorted."""
        if not os.path.isdir(self.directory):
            return []
        return sorted(
            entry.name for entry in os.scandir(self.directory) if entry.is_file()
        )

    def list_source_tagged(self) -> List[str]:
        return [name for name in self.list_files() if has_source_tag(name)]

    def index_by_item_id(self) -> Dict[str, List[str]]:
        """Map item ID -> source-tagged filenames encoding that ID."""
        index: Dict[str, List[str]] = {}
        for name in self.list_source_tagged():
            item_id = decode_item_id(name)
            if item_id:
                index.setdefault(item_id, []).append(name)
        return index

    def read_bytes(self, filename: str) -> bytes:
        try:
            with open(self.path(filename), 'rb') as f:
                return f.read()
        except OSError as e:
            raise FilesystemError(f"Could not read {filename}: {e}")

    def write_bytes(self, filename: str, data: bytes) -> None:
        """Write a poster and give it standard read permissions."""
        target = self.path(filename)
        try:
            with open(target, 'wb') as f:
                f.write(data)
            os.chmod(target, POSTER_PERMISSIONS)
        except OSError as e:
            logging.error(f"Error writing poster {target}: {type(e).__name__}: {e}")
            raise FilesystemError(f"Could not write {filename}: {e}")
        logging.debug(f"Wrote poster: {filename} ({len(data)} bytes)")

    def save_if_changed(self, filename: str, data: bytes) -> bool:
        """Write data unless the existing file already holds the same bytes.

        Returns:
            True if the file was written, False if it was left unchanged.
        """
        if self.exists(filename) and self.read_bytes(filename) == data:
            return False
        self.write_bytes(filename, data)
        return True

    def rename(self, old_name: str, new_name: str) -> None:
        """Rename a poster; an existing file at new_name is never replaced."""
        source = self.path(old_name)
        target = self.path(new_name)
        if os.path.lexists(target):
            logging.error(f"Error renaming {old_name} -> {new_name}: target already exists")
            raise FilesystemError(f"Could not rename {old_name} to {new_name}: target already exists")
        try:
            os.rename(source, target)
        except OSError as e:
            logging.error(f"Error renaming {old_name} -> {new_name}: {type(e).__name__}: {e}")
            raise FilesystemError(f"Could not rename {old_name} to {new_name}: {e}")
        logging.debug(f"Renamed: {old_name} -> {new_name}")
