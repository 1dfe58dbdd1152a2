"""
Batch import pipeline for PosterVault.

A run imports one (library, media type) pair as a sequence of batches.
Everything a run needs between batches lives in a RunCursor, which
serializes to a plain dict, so a run can be driven one batch per process
invocation as well as start to finish by LibraryImporter.run().
"""

import logging
import os
import sys
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from tqdm import tqdm

from core.config import MEDIA_TYPE_DIRECTORIES, ConfigManager
from core.exceptions import DataError, FilesystemError, TransportError
from core.file_operations import PosterDirectory
from core.filename_codec import encode_filename, is_naming_upgrade, next_copy_name
from core.id_store import IdStore
from core.logging_config import get_console_lock
from core.orphans import OrphanReconciler, OrphanResult
from core.plex_api import MediaItem, PageCursor, PlexManager, fetch_all, next_page


class MediaType(Enum):
    MOVIES = "movies"
    SHOWS = "shows"
    SEASONS = "seasons"
    COLLECTIONS = "collections"

    @property
    def directory_name(self) -> str:
        return MEDIA_TYPE_DIRECTORIES[self.value]

    @property
    def library_types(self) -> Sequence[str]:
        """Library section types this media type is imported from."""
        if self is MediaType.MOVIES:
            return ("movie",)
        if self is MediaType.COLLECTIONS:
            return ("movie", "show")
        return ("show",)

    def accepts(self, library_type: str) -> bool:
        return library_type in self.library_types


class OverwriteOption(Enum):
    OVERWRITE = "overwrite"
    COPY = "copy"
    SKIP = "skip"


@dataclass
class BatchResult:
    """Counts and details for a batch, or the running total of a run."""
    successful: int = 0
    skipped: int = 0
    # Subset of skipped: downloaded bytes matched the file on disk
    unchanged: int = 0
    # Subset of successful: renamed in place to the current naming scheme
    renamed: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)
    skipped_details: List[Dict[str, str]] = field(default_factory=list)
    imported_ids: List[str] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.successful + self.skipped + self.failed

    def merge(self, other: "BatchResult") -> None:
        self.successful += other.successful
        self.skipped += other.skipped
        self.unchanged += other.unchanged
        self.renamed += other.renamed
        self.failed += other.failed
        self.errors.extend(other.errors)
        self.skipped_details.extend(other.skipped_details)
        self.imported_ids.extend(other.imported_ids)

    def summary(self) -> str:
        return (f"{self.successful} imported ({self.renamed} renamed), "
                f"{self.skipped} skipped ({self.unchanged} unchanged), {self.failed} failed")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BatchResult":
        return cls(**{key: data[key] for key in cls.__dataclass_fields__ if key in data})


@dataclass
class RunCursor:
    """State carried between the batches of one run.

    For seasons the cursor walks the library's shows, one show per batch;
    for every other media type it walks remote pages.
    """
    media_type: str
    library_id: str
    library_name: str = ""
    library_type: str = ""
    is_last: bool = False
    page: PageCursor = field(default_factory=PageCursor)
    # Seasons only: shows of the library as {"id", "title"}; None until listed
    shows: Optional[List[Dict[str, str]]] = None
    show_index: int = 0
    # Scopes season reconciliation to a single show
    show_title: str = ""
    # Replace the library's stored IDs at the end of the run instead of merging
    replace_ids: bool = True
    totals: BatchResult = field(default_factory=BatchResult)
    batches: int = 0

    @property
    def is_complete(self) -> bool:
        if self.media_type == MediaType.SEASONS.value:
            return self.shows is not None and self.show_index >= len(self.shows)
        return self.page.exhausted

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["page"] = self.page.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunCursor":
        data = dict(data)
        data["page"] = PageCursor.from_dict(data.get("page") or {})
        data["totals"] = BatchResult.from_dict(data.get("totals") or {})
        return cls(**data)


@dataclass
class StepResult:
    batch: BatchResult
    cursor: RunCursor
    is_complete: bool
    # Units of progress this step covered, out of total
    progress: int = 0
    total: int = 0
    orphan_result: Optional[OrphanResult] = None


@dataclass
class RunResult:
    """Outcome of one (library, media type) run."""
    media_type: str
    library_id: str
    library_name: str
    success: bool
    totals: BatchResult = field(default_factory=BatchResult)
    orphan_result: Optional[OrphanResult] = None
    error: str = ""


@dataclass
class RunContext:
    """Everything a run needs that outlives a single batch.

    One context is shared by every run of a sweep; it owns the ID store
    and the reconciler whose per-media-type state spans libraries.
    """
    id_store: IdStore
    reconciler: OrphanReconciler
    posters_folder: str
    page_size: int = 25
    import_batch_size: int = 25
    batch_delay: float = 0.5
    overwrite_option: OverwriteOption = OverwriteOption.OVERWRITE
    show_progress: bool = True

    @classmethod
    def from_config(cls, config: ConfigManager, id_store: IdStore,
                    show_progress: bool = True) -> "RunContext":
        return cls(
            id_store=id_store,
            reconciler=OrphanReconciler(id_store),
            posters_folder=config.paths.posters_folder,
            page_size=config.plex.page_size,
            import_batch_size=config.plex.import_batch_size,
            batch_delay=config.plex.batch_delay,
            overwrite_option=OverwriteOption(config.imports.overwrite_option),
            show_progress=show_progress,
        )

    def directory_for(self, media_type: str) -> PosterDirectory:
        return PosterDirectory(os.path.join(self.posters_folder, MediaType(media_type).directory_name))


class PosterImporter:
    """Writes one batch of items into a poster directory."""

    def __init__(self, fetch_image: Callable[[str], bytes]):
        self.fetch_image = fetch_image

    def process_batch(self, items: Sequence[MediaItem], directory: PosterDirectory,
                      media_type: str, library_type: str = "", library_name: str = "",
                      overwrite_option: OverwriteOption = OverwriteOption.OVERWRITE) -> BatchResult:
        """Import every item of a batch; a failing item never stops the batch.

        Every item that ends up on disk (written, unchanged, skipped or
        renamed) contributes its ID to imported_ids. Failed items do not.
        """
        result = BatchResult()
        directory.ensure()
        # Source-tagged files by item ID, built once per batch
        index = directory.index_by_item_id()

        for item in items:
            if not item.title or not item.item_id or not item.thumb:
                result.failed += 1
                result.errors.append(
                    f"Invalid item data (title={item.title!r}, id={item.item_id!r}): "
                    f"missing title, ID or artwork")
                continue

            target = encode_filename(item.title, item.item_id, media_type,
                                     library_type=library_type, library_name=library_name)
            try:
                self._import_item(item, target, directory, media_type,
                                  library_type, library_name, overwrite_option, result, index)
            except (TransportError, FilesystemError) as e:
                result.failed += 1
                result.errors.append(f"Error processing {item.title}: {e}")
                logging.warning(f"[IMPORT] Failed to import {item.title} [{item.item_id}]: {e}")

        return result

    def _import_item(self, item: MediaItem, target: str, directory: PosterDirectory,
                     media_type: str, library_type: str, library_name: str,
                     overwrite_option: OverwriteOption, result: BatchResult,
                     index: Dict[str, List[str]]) -> None:
        exists = directory.exists(target)

        if not exists:
            for existing in [name for name in index.get(item.item_id, []) if name != target]:
                if is_naming_upgrade(existing, target, media_type, library_type, library_name):
                    directory.rename(existing, target)
                    names = index[item.item_id]
                    names[names.index(existing)] = target
                    result.renamed += 1
                    result.successful += 1
                    result.imported_ids.append(item.item_id)
                    logging.debug(f"[IMPORT] Renamed to current naming scheme: {existing} -> {target}")
                    return

        if exists and overwrite_option is OverwriteOption.SKIP:
            result.skipped += 1
            result.skipped_details.append({
                "file": target,
                "reason": "skip_option",
                "message": f"Skipped {item.title}: file already exists and skip option is selected",
            })
            result.imported_ids.append(item.item_id)
            return

        if exists and overwrite_option is OverwriteOption.COPY:
            target = next_copy_name(directory.directory, target)

        data = self.fetch_image(item.thumb)

        if overwrite_option is OverwriteOption.OVERWRITE:
            if not directory.save_if_changed(target, data):
                result.skipped += 1
                result.unchanged += 1
                result.skipped_details.append({
                    "file": target,
                    "reason": "unchanged",
                    "message": f"Skipped {item.title}: file content unchanged",
                })
                result.imported_ids.append(item.item_id)
                return
        else:
            directory.write_bytes(target, data)

        names = index.setdefault(item.item_id, [])
        if target not in names:
            names.append(target)
        result.successful += 1
        result.imported_ids.append(item.item_id)


class LibraryImporter:
    """Drives runs batch by batch against the server."""

    def __init__(self, client: PlexManager, context: RunContext):
        self.client = client
        self.context = context
        self.poster_importer = PosterImporter(client.fetch_image_bytes)

    def new_cursor(self, media_type: str, library_id: str, library_name: str = "",
                   library_type: str = "", is_last: bool = False) -> RunCursor:
        return RunCursor(media_type=media_type, library_id=str(library_id),
                         library_name=library_name, library_type=library_type,
                         is_last=is_last)

    def _fetcher(self, media_type: str):
        if media_type == MediaType.COLLECTIONS.value:
            return self.client.list_collections
        return self.client.list_items

    def step(self, cursor: RunCursor) -> StepResult:
        """Process exactly one batch of a run.

        The cursor is updated in place and returned; persist it to resume
        later. When the run completes, its accumulated IDs are handed to
        the reconciler.

        Raises:
            TransportError: The server could not be reached for this batch.
            DataError: The server response could not be understood.
        """
        context = self.context
        directory = context.directory_for(cursor.media_type)

        if cursor.media_type == MediaType.SEASONS.value:
            batch, progress, total = self._step_seasons(cursor, directory)
        else:
            page, cursor.page = next_page(self._fetcher(cursor.media_type), cursor.library_id,
                                          context.import_batch_size, cursor.page)
            batch = self.poster_importer.process_batch(
                page.items, directory, cursor.media_type,
                library_type=cursor.library_type, library_name=cursor.library_name,
                overwrite_option=context.overwrite_option)
            progress, total = page.fetched, page.total_count

        cursor.totals.merge(batch)
        cursor.batches += 1

        orphan_result = None
        if cursor.is_complete:
            orphan_result = context.reconciler.record_library(
                cursor.media_type, cursor.library_id, cursor.totals.imported_ids,
                cursor.is_last, directory,
                library_type=cursor.library_type, show_title=cursor.show_title,
                replace=cursor.replace_ids)

        return StepResult(batch=batch, cursor=cursor, is_complete=cursor.is_complete,
                          progress=progress, total=total, orphan_result=orphan_result)

    def _step_seasons(self, cursor: RunCursor, directory: PosterDirectory):
        if cursor.shows is None:
            shows = fetch_all(self.client.list_items, cursor.library_id, self.context.page_size,
                              delay=self.context.batch_delay)
            cursor.shows = [{"id": show.item_id, "title": show.title} for show in shows if show.item_id]
            logging.debug(f"[IMPORT] {cursor.library_name}: {len(cursor.shows)} shows to scan for seasons")

        if cursor.show_index >= len(cursor.shows):
            return BatchResult(), 0, len(cursor.shows)

        show = cursor.shows[cursor.show_index]
        seasons = fetch_all(self.client.list_children, show["id"], self.context.page_size)
        batch = self.poster_importer.process_batch(
            seasons, directory, cursor.media_type,
            library_type=cursor.library_type, library_name=cursor.library_name,
            overwrite_option=self.context.overwrite_option)
        cursor.show_index += 1
        return batch, 1, len(cursor.shows)

    def run(self, cursor: RunCursor) -> RunResult:
        """Drive a run to completion, pausing between batches.

        Transport and data errors end the run and are reported in the
        result rather than raised.
        """
        label = f"{cursor.library_name or cursor.library_id} ({cursor.media_type})"
        logging.info(f"[IMPORT] Importing {label}")
        orphan_result = None

        try:
            with tqdm(desc=label[:30], unit="item",
                      bar_format="{l_bar}{bar:20}| {n_fmt}/{total_fmt} [{elapsed}<{remaining}]",
                      mininterval=0.5, ncols=80, file=sys.stdout,
                      disable=not self.context.show_progress) as pbar:
                while not cursor.is_complete:
                    if cursor.batches and self.context.batch_delay:
                        time.sleep(self.context.batch_delay)
                    step = self.step(cursor)
                    with get_console_lock():
                        if step.total and pbar.total != step.total:
                            pbar.total = step.total
                            pbar.refresh()
                        pbar.update(step.progress)
                    for error in step.batch.errors:
                        logging.debug(f"[IMPORT] {error}")
                    if step.orphan_result is not None:
                        orphan_result = step.orphan_result
        except (TransportError, DataError) as e:
            logging.error(f"[IMPORT] {label} failed: {e}")
            return RunResult(media_type=cursor.media_type, library_id=cursor.library_id,
                             library_name=cursor.library_name, success=False,
                             totals=cursor.totals, error=str(e))

        logging.info(f"[IMPORT] {label}: {cursor.totals.summary()}")
        return RunResult(media_type=cursor.media_type, library_id=cursor.library_id,
                         library_name=cursor.library_name, success=True,
                         totals=cursor.totals, orphan_result=orphan_result)

    def import_show_seasons(self, show_key: str, show_title: str, library_id: str,
                            library_name: str = "", is_last: bool = True) -> RunResult:
        """Import one show's seasons.

        The show's season IDs are merged into the library's stored IDs, and
        a final run reconciles only this show's season posters.
        """
        cursor = self.new_cursor(MediaType.SEASONS.value, library_id, library_name,
                                 library_type="show", is_last=is_last)
        cursor.shows = [{"id": str(show_key), "title": show_title}]
        cursor.show_title = show_title
        cursor.replace_ids = False
        return self.run(cursor)
