"""
Orphan reconciliation for PosterVault.

A poster becomes an orphan when its item no longer exists on the server.
Orphans are found by comparing the IDs encoded in source-tagged filenames
against every valid ID stored for the media type, across all libraries.
That union is only complete once the last library of the media type has
reported in, so nothing is retagged before then.

Per media type the reconciler moves through three states during a sweep:

    IDLE -> ACCUMULATING (a non-final library reported its IDs)
         -> FINALIZING   (the final library reported; files are reconciled)
         -> IDLE
"""

import html
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set

from core.exceptions import FilesystemError
from core.file_operations import PosterDirectory
from core.filename_codec import (
    collection_type_marker,
    decode_item_id,
    has_orphan_tag,
    has_source_tag,
    next_copy_name,
    retag,
    sanitize_title,
)
from core.id_store import IdStore


class ReconcileState(Enum):
    IDLE = "idle"
    ACCUMULATING = "accumulating"
    FINALIZING = "finalizing"


@dataclass
class OrphanResult:
    """Outcome of one reconciliation pass."""
    orphaned: int = 0
    # Files that should have been retagged but could not be renamed
    unmarked: int = 0
    details: List[Dict[str, str]] = field(default_factory=list)

    def merge(self, other: "OrphanResult") -> None:
        self.orphaned += other.orphaned
        self.unmarked += other.unmarked
        self.details.extend(other.details)


def matches_show(filename: str, show_title: str) -> bool:
    """Check whether a season poster filename belongs to the given show.

    Season posters are named from "<Show> - <Season>", so the sanitized
    show title followed by " - " must open the filename. A show whose title
    merely starts with the same words ("Lost Girl" for "Lost") does not match.
    """
    wanted = sanitize_title(html.unescape(show_title or "")).lower()
    if not wanted:
        return True
    return filename.lower().startswith(f"{wanted} - ")


def collection_matches_library_type(filename: str, library_type: str) -> bool:
    """Collections carry a (Movies)/(TV) marker; unmarked ones match any pass."""
    if not library_type:
        return True
    marker = collection_type_marker(filename)
    return marker is None or marker == library_type


class OrphanReconciler:
    """Tracks per-media-type reconciliation state for one sweep."""

    def __init__(self, id_store: IdStore):
        self.id_store = id_store
        self._states: Dict[str, ReconcileState] = {}
        self._reported: Dict[str, Set[str]] = {}

    def state(self, media_type: str) -> ReconcileState:
        return self._states.get(media_type, ReconcileState.IDLE)

    def reported_libraries(self, media_type: str) -> Set[str]:
        """Libraries that reported IDs since the media type was last finalized."""
        return set(self._reported.get(media_type, set()))

    def record_library(self, media_type: str, library_id: str, ids: Iterable[str],
                       is_last: bool, directory: PosterDirectory,
                       library_type: str = "", show_title: str = "",
                       replace: bool = True) -> Optional[OrphanResult]:
        """Store a finished library's IDs and reconcile if it was the last one.

        Args:
            media_type: Media type the library was imported as.
            library_id: Library the IDs came from.
            ids: Every ID confirmed during the library's run.
            is_last: Whether the sweep designated this as the final library.
            directory: Poster directory for the media type.
            library_type: "movie"/"show"; scopes collection reconciliation.
            show_title: Scopes season reconciliation to one show.
            replace: Replace the library's stored IDs instead of merging. A
                merging single-show season run still drops that show's
                season IDs the run did not confirm.

        Returns:
            The reconciliation result for a final library, otherwise None.
        """
        ids = list(dict.fromkeys(str(i) for i in ids))
        if media_type == "seasons" and show_title and not replace:
            ids = self._rescope_show_ids(media_type, library_id, ids, directory, show_title)
            replace = True
        self.id_store.store_ids(ids, media_type, library_id, replace=replace)
        self._reported.setdefault(media_type, set()).add(str(library_id))

        if not is_last:
            self._states[media_type] = ReconcileState.ACCUMULATING
            logging.debug(f"[ORPHANS] {media_type}: library {library_id} reported {len(ids)} IDs, "
                          f"waiting for the final library")
            return None

        self._states[media_type] = ReconcileState.FINALIZING
        try:
            return self.reconcile(media_type, directory, library_type, show_title)
        finally:
            self.finish(media_type)

    def _rescope_show_ids(self, media_type: str, library_id: str, ids: List[str],
                          directory: PosterDirectory, show_title: str) -> List[str]:
        """Library IDs after a single-show import.

        The show's season IDs that still have posters on disk but were not
        confirmed by this run are dropped; every other show's IDs are kept.
        """
        confirmed = set(ids)
        stale = set()
        for filename in directory.list_source_tagged():
            if not matches_show(filename, show_title):
                continue
            item_id = decode_item_id(filename)
            if item_id is not None and item_id not in confirmed:
                stale.add(item_id)

        kept = self.id_store.library_ids(media_type, library_id) - stale
        if stale:
            logging.debug(f"[ORPHANS] {show_title}: dropping {len(stale)} season IDs no longer on the server")
        return sorted(kept | confirmed)

    def finish(self, media_type: str) -> None:
        """Return a media type to IDLE and forget this sweep's reports."""
        self._states[media_type] = ReconcileState.IDLE
        self._reported.pop(media_type, None)

    def reconcile(self, media_type: str, directory: PosterDirectory,
                  library_type: str = "", show_title: str = "") -> OrphanResult:
        """Retag every source-tagged file whose ID is no longer valid.

        Files without a decodable ID are left alone. A failed rename is
        counted as unmarked and does not stop the pass.
        """
        result = OrphanResult()
        valid_ids = self.id_store.all_valid_ids(media_type)
        scope = []
        if media_type == "collections" and library_type:
            scope.append(f"library type {library_type}")
        if media_type == "seasons" and show_title:
            scope.append(f"show '{show_title}'")
        scope_text = f" ({', '.join(scope)})" if scope else ""
        logging.info(f"[ORPHANS] Checking {media_type} posters{scope_text} against {len(valid_ids)} valid IDs")

        for filename in directory.list_files():
            if has_orphan_tag(filename) or not has_source_tag(filename):
                continue
            if media_type == "collections" and not collection_matches_library_type(filename, library_type):
                continue
            if media_type == "seasons" and show_title and not matches_show(filename, show_title):
                continue

            item_id = decode_item_id(filename)
            if item_id is None or item_id in valid_ids:
                continue

            # An older orphan of the same item may already hold the retagged name
            new_name = next_copy_name(directory.directory, retag(filename))
            try:
                directory.rename(filename, new_name)
            except FilesystemError as e:
                logging.warning(f"[ORPHANS] Could not mark {filename} as orphaned: {e}")
                result.unmarked += 1
                continue
            result.orphaned += 1
            result.details.append({"oldName": filename, "newName": new_name})
            logging.info(f"[ORPHANS] Marked as orphaned: {filename}")

        logging.info(f"[ORPHANS] {media_type}: {result.orphaned} orphaned, {result.unmarked} could not be marked")
        return result
