"""
Main PosterVault application.
Drives the auto-import sweep across every library and media type.
"""

import sys
import time
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from core import __version__
from core.config import ConfigManager
from core.exceptions import ConfigError, FilesystemError, PosterVaultError
from core.id_store import IdStore, LibraryTracker
from core.importer import BatchResult, LibraryImporter, MediaType, RunContext, RunResult
from core.logging_config import LoggingManager
from core.orphans import OrphanResult
from core.plex_api import Library, PlexManager
from core.scheduler import AutoImportScheduler, TickOutcome, run_forever


@dataclass
class SweepResult:
    """Outcome of one full sweep."""
    runs: List[RunResult] = field(default_factory=list)
    orphans: Dict[str, OrphanResult] = field(default_factory=dict)
    cleared_libraries: Dict[str, List[dict]] = field(default_factory=dict)
    # Set when the sweep stopped before or between runs
    error: str = ""

    @property
    def failed_runs(self) -> List[RunResult]:
        return [run for run in self.runs if not run.success]

    @property
    def success(self) -> bool:
        return not self.error and not self.failed_runs

    def totals(self) -> BatchResult:
        totals = BatchResult()
        for run in self.runs:
            totals.merge(run.totals)
        return totals


def plan_sweep(libraries: Sequence[Library], media_type: str) -> List[Tuple[Library, bool]]:
    """Pair each library a media type imports from with its is-last flag.

    Libraries keep server order. The last library is the final one of the
    media type; collections get one per library type, because a
    collection pass only reconciles files of its own library type.
    """
    eligible = [library for library in libraries if MediaType(media_type).accepts(library.type)]
    if media_type == MediaType.COLLECTIONS.value:
        last_by_type = {library.type: library.id for library in eligible}
        last_ids = set(last_by_type.values())
    else:
        last_ids = {eligible[-1].id} if eligible else set()
    return [(library, library.id in last_ids) for library in eligible]


class PosterVaultApp:
    """Main PosterVault application class."""

    def __init__(self, config_file: Optional[str] = None, config: Optional[ConfigManager] = None,
                 client: Optional[PlexManager] = None, verbose: bool = False,
                 show_progress: bool = True):
        self.config_manager = config or ConfigManager(config_file)
        self._config_loaded = config is not None
        self.client = client
        self.verbose = verbose
        self.show_progress = show_progress
        self.logging_manager: Optional[LoggingManager] = None

    def load_config(self) -> None:
        if not self._config_loaded:
            self.config_manager.load_config()
            self._config_loaded = True

    def _setup_logging(self) -> None:
        """Set up logging from the loaded configuration."""
        config = self.config_manager
        self.logging_manager = LoggingManager(
            logs_folder=config.paths.logs_folder,
            log_level="debug" if self.verbose else config.logging.log_level,
            max_log_files=config.logging.max_log_files,
        )
        self.logging_manager.setup_logging()
        logging.info("")
        logging.info(f"=== PosterVault v{__version__} ===")
        if self.verbose:
            logging.info("VERBOSE MODE - Showing DEBUG level logs")

    def _shutdown_logging(self) -> None:
        if self.logging_manager:
            self.logging_manager.shutdown()
            self.logging_manager = None

    def id_store(self) -> IdStore:
        return IdStore(str(self.config_manager.get_valid_ids_file()))

    def scheduler(self) -> AutoImportScheduler:
        config = self.config_manager
        return AutoImportScheduler(
            timestamp_file=str(config.get_timestamp_file()),
            lock_file=str(config.get_lock_file()),
            schedule=config.imports.schedule,
            enabled=config.imports.enabled,
        )

    def tick(self, force: bool = False) -> TickOutcome:
        """One gated auto-import attempt."""
        outcome = self.scheduler().tick(self.sweep, force=force)
        logging.info(f"[SCHEDULER] Tick finished: {outcome.value}")
        return outcome

    def run(self, force: bool = False, daemon: bool = False) -> int:
        """Load config, set up logging and tick once (or forever in daemon mode).

        Returns:
            Process exit code.
        """
        try:
            self.load_config()
            self._setup_logging()
        except ConfigError as e:
            self.logging_manager = None
            logging.basicConfig(level=logging.INFO)
            logging.error(f"Configuration error: {e}")
            return 1

        try:
            if daemon:
                run_forever(lambda: self.tick(force=False))
                return 0
            return self.tick(force=force).exit_code
        finally:
            self._shutdown_logging()

    def sweep(self) -> bool:
        """Run a sweep and log its summary; True on success."""
        start_time = time.time()
        result = self.run_sweep()
        self._log_summary(result, time.time() - start_time)
        return result.success

    def run_sweep(self) -> SweepResult:
        """Import every enabled media type from every library.

        Configuration and connection problems stop the sweep before any
        import work; a failing library run is recorded and the sweep moves
        on to the next library.
        """
        result = SweepResult()
        config = self.config_manager

        try:
            config.validate_for_sweep()
            config.ensure_folders()
        except (ConfigError, OSError) as e:
            result.error = str(e)
            logging.error(f"[IMPORT] Sweep aborted: {e}")
            return result

        client = self.client or PlexManager(
            config.plex.plex_url, config.plex.plex_token,
            connect_timeout=config.plex.connect_timeout,
            request_timeout=config.plex.request_timeout,
        )
        try:
            client.connect()
            libraries = client.list_libraries(config.imports.excluded_libraries)
        except PosterVaultError as e:
            result.error = str(e)
            logging.error(f"[IMPORT] Sweep aborted: {e}")
            return result

        id_store = self.id_store()
        id_store.initialize_session()
        tracker = LibraryTracker(str(config.get_library_tracker_file()))
        context = RunContext.from_config(config, id_store, show_progress=self.show_progress)
        importer = LibraryImporter(client, context)

        for media_type in config.imports.enabled_media_types():
            plan = plan_sweep(libraries, media_type)
            try:
                cleared = tracker.prune_missing(media_type, [library for library, _ in plan], id_store)
            except FilesystemError as e:
                logging.warning(f"[ID STORE] Could not update library tracking for {media_type}: {e}")
                cleared = []
            if cleared:
                result.cleared_libraries[media_type] = cleared

            if not plan:
                logging.info(f"[IMPORT] No libraries to import {media_type} from")
                continue

            for library, is_last in plan:
                cursor = importer.new_cursor(media_type, library.id, library.title,
                                             library_type=library.type, is_last=is_last)
                run_result = importer.run(cursor)
                result.runs.append(run_result)
                if not id_store.sync():
                    logging.warning(f"[ID STORE] Could not sync valid IDs after {library.title}")

                if run_result.orphan_result is not None:
                    result.orphans.setdefault(media_type, OrphanResult()).merge(run_result.orphan_result)
                elif is_last and not run_result.success:
                    context.reconciler.finish(media_type)
                    logging.warning(f"[ORPHANS] Final {media_type} library '{library.title}' failed; "
                                    f"skipping orphan detection for {media_type} this sweep")

        return result

    def _log_summary(self, result: SweepResult, duration: float) -> None:
        lines = []
        if result.error:
            lines.append(f"Sweep aborted: {result.error}")
        for run in result.runs:
            status = run.totals.summary() if run.success else f"FAILED: {run.error}"
            lines.append(f"{run.library_name} ({run.media_type}): {status}")
        for media_type, orphans in result.orphans.items():
            lines.append(f"{media_type}: {orphans.orphaned} newly orphaned, {orphans.unmarked} could not be marked")
        for media_type, cleared in result.cleared_libraries.items():
            titles = ", ".join(entry["title"] for entry in cleared)
            lines.append(f"{media_type}: cleared IDs of removed libraries: {titles}")
        lines.append(f"Completed in {int(duration)}s ({'success' if result.success else 'failed'})")

        if self.logging_manager:
            for line in lines:
                self.logging_manager.add_summary_message(line)
            self.logging_manager.log_summary()
        else:
            for line in lines:
                logging.info(line)


def _run_show_ids(app: PosterVaultApp) -> int:
    """Print the stored valid IDs per media type and library."""
    snapshot = app.id_store().snapshot()
    if snapshot.is_empty():
        print("No valid IDs stored.")
        return 0
    for media_type in snapshot.media_types():
        print(f"{media_type}: {len(snapshot.ids_for(media_type))} IDs")
        for library_id in snapshot.library_keys(media_type):
            print(f"  library {library_id}: {len(snapshot.library_ids(media_type, library_id))} IDs")
    return 0


def main() -> int:
    """Main entry point."""
    force = "--force" in sys.argv
    daemon = "--daemon" in sys.argv
    verbose = "--verbose" in sys.argv or "-v" in sys.argv
    show_ids = "--show-ids" in sys.argv
    reset_ids = "--reset-ids" in sys.argv

    app = PosterVaultApp(verbose=verbose)

    if show_ids or reset_ids:
        try:
            app.load_config()
        except ConfigError as e:
            print(f"Configuration error: {e}")
            return 1
        if reset_ids:
            app.id_store().reset()
            print("Stored valid IDs have been reset.")
            return 0
        return _run_show_ids(app)

    return app.run(force=force, daemon=daemon)
