"""
Valid ID storage for PosterVault.

Keeps track of which media-server item IDs were confirmed valid, per media
type and per library. Two layers hold the same shape:

- a durable JSON file that survives process restarts
- an in-memory session overlay that lives for one run

Reads merge both layers; writes update both. The durable file is a single
shared resource: two processes saving at the same time race, and the last
full-file save wins. The sweep lock is what keeps that from happening in
normal operation.
"""

import json
import logging
import os
import tempfile
import threading
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set, Any

from core.exceptions import FilesystemError


class ValidIdSet:
    """Mapping of media type -> library ID -> set of item IDs."""

    def __init__(self, data: Optional[Dict[str, Dict[str, Iterable[str]]]] = None):
        self._data: Dict[str, Dict[str, Set[str]]] = {}
        for media_type, libraries in (data or {}).items():
            for library_id, ids in libraries.items():
                self.set_library(media_type, library_id, ids)

    def set_library(self, media_type: str, library_id: str, ids: Iterable[str]) -> None:
        """Replace a library's entry with the given IDs."""
        self._data.setdefault(media_type, {})[str(library_id)] = {str(i) for i in ids}

    def add_to_library(self, media_type: str, library_id: str, ids: Iterable[str]) -> None:
        """Union IDs into a library's entry."""
        entry = self._data.setdefault(media_type, {}).setdefault(str(library_id), set())
        entry.update(str(i) for i in ids)

    def library_ids(self, media_type: str, library_id: str) -> Set[str]:
        return set(self._data.get(media_type, {}).get(str(library_id), set()))

    def ids_for(self, media_type: str) -> Set[str]:
        """All IDs for a media type across every library."""
        result: Set[str] = set()
        for ids in self._data.get(media_type, {}).values():
            result.update(ids)
        return result

    def library_keys(self, media_type: str) -> List[str]:
        return list(self._data.get(media_type, {}).keys())

    def media_types(self) -> List[str]:
        return list(self._data.keys())

    def remove(self, media_type: str, library_id: Optional[str] = None) -> bool:
        """Drop one library's entry, or the whole media type if library_id is None.

        Returns:
            True if anything was removed.
        """
        if media_type not in self._data:
            return False
        if library_id is None:
            del self._data[media_type]
            return True
        libraries = self._data[media_type]
        if str(library_id) in libraries:
            del libraries[str(library_id)]
            return True
        return False

    def overlay(self, other: "ValidIdSet") -> None:
        """Copy every library entry from other, replacing entries with the same key."""
        for media_type in other.media_types():
            for library_id in other.library_keys(media_type):
                self.set_library(media_type, library_id, other.library_ids(media_type, library_id))

    def is_empty(self) -> bool:
        return not any(self._data.values())

    def to_dict(self) -> Dict[str, Dict[str, List[str]]]:
        return {
            media_type: {library_id: sorted(ids) for library_id, ids in libraries.items()}
            for media_type, libraries in self._data.items()
        }

    def copy(self) -> "ValidIdSet":
        return ValidIdSet(self.to_dict())

    def __eq__(self, other) -> bool:
        if not isinstance(other, ValidIdSet):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        counts = {mt: len(self.ids_for(mt)) for mt in self._data}
        return f"ValidIdSet({counts})"


def validate_id_data(data: Any) -> bool:
    """Check that loaded JSON has the {media type: {library: [ids]}} shape."""
    if not isinstance(data, dict):
        return False
    for media_type, libraries in data.items():
        if not isinstance(media_type, str) or not isinstance(libraries, dict):
            return False
        for library_id, ids in libraries.items():
            if not isinstance(ids, list):
                return False
            if not all(isinstance(i, (str, int)) and not isinstance(i, bool) for i in ids):
                return False
    return True


class JSONTracker:
    """Base class for thread-safe JSON file trackers.

    Provides loading and atomic saving of JSON tracking data. Subclasses
    override _post_load() for validation or migration and use self._data
    for storage.
    """

    def __init__(self, tracker_file: str, tracker_name: str = "tracker"):
        """Initialize the tracker.

        Args:
            tracker_file: Path to the JSON file storing tracker data.
            tracker_name: Human-readable name for logging (e.g., "valid ID", "library").
        """
        self.tracker_file = str(tracker_file)
        self._tracker_name = tracker_name
        self._lock = threading.Lock()
        self._data: Dict[str, Any] = {}
        self._load()

    def _load(self) -> None:
        """Load tracker data from file; a missing or unreadable file means empty."""
        self._data = {}
        try:
            if os.path.exists(self.tracker_file):
                with open(self.tracker_file, 'r', encoding='utf-8') as f:
                    self._data = json.load(f)
                self._post_load()
                logging.debug(f"Loaded {len(self._data)} {self._tracker_name} entries from {self.tracker_file}")
        except (json.JSONDecodeError, UnicodeDecodeError, IOError) as e:
            logging.warning(f"Could not load {self._tracker_name} file: {type(e).__name__}: {e}")
            self._data = {}

    def _post_load(self) -> None:
        """Hook for subclasses to perform post-load processing (e.g., validation)."""
        pass

    def _save(self) -> None:
        """Write tracker data through a temp file so readers never see a partial file."""
        directory = os.path.dirname(self.tracker_file) or "."
        try:
            os.makedirs(directory, mode=0o755, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=".tmp_", suffix=".json", dir=directory)
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(self._data, f, indent=2)
                os.replace(tmp_path, self.tracker_file)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise
        except OSError as e:
            logging.error(f"Could not save {self._tracker_name} file: {type(e).__name__}: {e}")
            raise FilesystemError(f"Could not save {self._tracker_name} file {self.tracker_file}: {e}") from e


class PersistentIdStore(JSONTracker):
    """Durable ValidIdSet backed by a JSON file."""

    def __init__(self, store_file: str):
        super().__init__(store_file, "valid ID")

    def _post_load(self) -> None:
        if not validate_id_data(self._data):
            logging.warning(f"[ID STORE] Ignoring malformed valid ID file: {self.tracker_file}")
            self._data = {}

    def load(self) -> ValidIdSet:
        """Read the durable store. Never raises; returns an empty set if missing or corrupt."""
        with self._lock:
            self._load()
            return ValidIdSet(self._data)

    def save(self, ids: ValidIdSet) -> None:
        """Overwrite the durable store, creating its directory if needed.

        Raises:
            FilesystemError: If the file cannot be written.
        """
        with self._lock:
            self._data = ids.to_dict()
            self._save()

    def delete(self) -> None:
        with self._lock:
            self._data = {}
            if os.path.exists(self.tracker_file):
                os.remove(self.tracker_file)


class SessionIdCache:
    """In-memory ValidIdSet overlay valid for one run."""

    def __init__(self):
        self.ids = ValidIdSet()
        self.initialized = False

    def initialize(self, baseline: ValidIdSet) -> None:
        if not self.initialized:
            self.ids = baseline.copy()
            self.initialized = True

    def reset(self) -> None:
        self.ids = ValidIdSet()
        self.initialized = False


class IdStore:
    """Read-merged, write-through access to valid IDs across both layers."""

    def __init__(self, store_file: str, session: Optional[SessionIdCache] = None):
        self.persistent = PersistentIdStore(store_file)
        self.session = session if session is not None else SessionIdCache()

    def initialize_session(self) -> None:
        """Seed the session overlay from durable storage (once per run)."""
        if not self.session.initialized:
            self.session.initialize(self.persistent.load())
            logging.debug("[ID STORE] Initialized session IDs from persistent storage")

    def store_ids(self, new_ids: Iterable[str], media_type: str, library_id: str,
                  replace: bool = True) -> bool:
        """Record IDs for one library in both layers.

        Args:
            new_ids: IDs confirmed in this run.
            media_type: movies, shows, seasons or collections.
            library_id: Media-server library ID the IDs came from.
            replace: Replace the library's entry instead of merging into it.

        Returns:
            True if the durable write succeeded.
        """
        new_ids = [str(i) for i in new_ids]
        self._apply(self.session.ids, new_ids, media_type, library_id, replace)

        stored = self.persistent.load()
        self._apply(stored, new_ids, media_type, library_id, replace)
        ok = self._save(stored)

        logging.debug(f"[ID STORE] Stored {len(new_ids)} {media_type} IDs for library {library_id} "
                      f"(replace: {'yes' if replace else 'no'})")
        return ok

    @staticmethod
    def _apply(target: ValidIdSet, ids: List[str], media_type: str, library_id: str, replace: bool) -> None:
        if replace:
            target.set_library(media_type, library_id, ids)
        else:
            target.add_to_library(media_type, library_id, ids)

    def all_valid_ids(self, media_type: str) -> Set[str]:
        """Union of every library's IDs for a media type, across both layers."""
        all_ids = self.session.ids.ids_for(media_type) | self.persistent.load().ids_for(media_type)
        logging.debug(f"[ID STORE] {len(all_ids)} valid {media_type} IDs across all libraries")
        return all_ids

    def library_ids(self, media_type: str, library_id: str) -> Set[str]:
        return (self.session.ids.library_ids(media_type, library_id)
                | self.persistent.load().library_ids(media_type, library_id))

    def clear(self, media_type: str, library_id: Optional[str] = None) -> bool:
        """Remove one library's entry, or the whole media type, from both layers."""
        self.session.ids.remove(media_type, library_id)
        stored = self.persistent.load()
        if stored.remove(media_type, library_id):
            scope = f"library {library_id}" if library_id is not None else "all libraries"
            logging.debug(f"[ID STORE] Cleared stored {media_type} IDs for {scope}")
            return self._save(stored)
        return True

    def sync(self) -> bool:
        """Write the session overlay's entries into durable storage.

        Entries only present in durable storage are kept; entries present in
        the session replace their durable counterparts.
        """
        stored = self.persistent.load()
        stored.overlay(self.session.ids)
        ok = self._save(stored)
        if ok:
            logging.debug("[ID STORE] Synchronized session IDs to persistent storage")
        return ok

    def snapshot(self) -> ValidIdSet:
        """Merged view of both layers."""
        merged = self.persistent.load()
        for media_type in self.session.ids.media_types():
            for library_id in self.session.ids.library_keys(media_type):
                merged.add_to_library(media_type, library_id,
                                      self.session.ids.library_ids(media_type, library_id))
        return merged

    def reset(self) -> None:
        """Wipe both layers."""
        self.session.reset()
        self.persistent.delete()
        logging.info("[ID STORE] Reset all stored valid IDs")

    def _save(self, ids: ValidIdSet) -> bool:
        try:
            self.persistent.save(ids)
            return True
        except FilesystemError as e:
            logging.error(f"[ID STORE] {e}")
            return False


class LibraryTracker(JSONTracker):
    """Remembers which libraries were seen per media type.

    When a library disappears from the server, its stored IDs would keep
    masking orphans forever; prune_missing() clears them.
    """

    def __init__(self, tracker_file: str):
        super().__init__(tracker_file, "library")

    def _post_load(self) -> None:
        if not isinstance(self._data, dict) or not all(isinstance(v, dict) for v in self._data.values()):
            logging.warning(f"Ignoring malformed library tracking file: {self.tracker_file}")
            self._data = {}

    def known_libraries(self, media_type: str) -> Dict[str, dict]:
        with self._lock:
            return dict(self._data.get(media_type, {}))

    def record(self, media_type: str, libraries: Iterable) -> None:
        """Store the libraries currently reported for a media type."""
        now = datetime.now().isoformat()
        with self._lock:
            entries = self._data.setdefault(media_type, {})
            for library in libraries:
                entries[str(library.id)] = {
                    "id": str(library.id),
                    "title": library.title,
                    "type": library.type,
                    "last_seen": now,
                }
            self._save()

    def prune_missing(self, media_type: str, current_libraries: Iterable,
                      id_store: IdStore) -> List[dict]:
        """Clear stored IDs for libraries that are no longer on the server.

        Args:
            media_type: Media type being swept.
            current_libraries: Libraries the server reports for this media type.
            id_store: Store whose entries for missing libraries are cleared.

        Returns:
            List of {id, title} for each cleared library.
        """
        current_libraries = list(current_libraries)
        current_ids = {str(library.id) for library in current_libraries}
        cleared = []

        with self._lock:
            entries = self._data.get(media_type, {})
            missing = [lib_id for lib_id in entries if lib_id not in current_ids]
            for lib_id in missing:
                info = entries.pop(lib_id)
                cleared.append({"id": lib_id, "title": info.get("title", "Unknown")})
            if missing:
                self._save()

        for entry in cleared:
            id_store.clear(media_type, entry["id"])
            logging.info(f"[ID STORE] Library '{entry['title']}' (ID: {entry['id']}) no longer exists; "
                         f"cleared its stored {media_type} IDs")

        self.record(media_type, current_libraries)
        return cleared
