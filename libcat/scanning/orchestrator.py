import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, Union

from ..exceptions import (
    ConstraintViolation, GenerationError, NoMatchError, NotReadyError, RemoteError,
)
from ..metadata.tmdb import TMDBClient
from ..models import (
    DiscoveredFile, FileState, Movie, ScanCancelledEvent, ScanProgressEvent, ScanResult,
)
from ..workspace import Workspace
from .filesystem import VideoWalker

ScanEvent = Union[ScanProgressEvent, ScanCancelledEvent]
EventSink = Callable[[ScanEvent], None]

# Failures of the optional enrichment step; the catalog entry is kept as inserted
ENRICHMENT_ERRORS = (RemoteError, NoMatchError, KeyError, TypeError, ValueError)


class CancellationToken:
    """
    Per-scan cancel handle. cancel() may be called from any thread and any
    number of times; the scan loop checks it once at the start of each file.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class ScanOrchestrator:
    """
    Drives the per-file pipeline for folder scans and ad-hoc path lists:

        lookup -> [skip] -> thumbnail -> insert -> [enrich] -> progress

    Files are processed one at a time in enumeration order. Only
    NotReadyError / ScanInProgressError escape; every per-file failure is
    logged and the file is still cataloged.
    """

    def __init__(self,
                 workspace: Workspace,
                 walker: Optional[VideoWalker] = None,
                 sink: Optional[EventSink] = None):
        self.workspace = workspace
        self.walker = walker or VideoWalker()
        self.sink = sink
        self._token: Optional[CancellationToken] = None

    def scan_folder(self, root: Path, token: Optional[CancellationToken] = None) -> List[ScanResult]:
        """Walks root and catalogs every video file found."""
        self.workspace.require()
        token = token or CancellationToken()
        with self._scan_slot(token):
            logging.info(f"Scanning {root}...")
            files = self.walker.walk(Path(root))
            return self._run(files, token)

    def add_paths(self, paths: Sequence[Union[str, Path]], token: Optional[CancellationToken] = None) -> List[ScanResult]:
        """
        Catalogs an explicit list of files (e.g. dropped onto the window).
        Missing or non-video paths are silently ignored.
        """
        self.workspace.require()
        token = token or CancellationToken()
        with self._scan_slot(token):
            logging.info(f"Adding {len(paths)} paths...")
            return self._run([self.walker.describe(p) for p in paths], token)

    def cancel(self):
        """Requests cancellation of the current scan. No-op when none is running."""
        token = self._token
        if token is not None:
            token.cancel()

    def process_file(self, file: DiscoveredFile, matcher: Optional[TMDBClient]) -> ScanResult:
        """Runs one discovered file through the pipeline."""
        try:
            return self._process_file(file, matcher)
        except sqlite3.ProgrammingError as e:
            # The workspace was locked under us and the connection closed
            if not self.workspace.is_unlocked:
                raise NotReadyError("Profile was locked during the scan") from e
            raise

    @contextmanager
    def _scan_slot(self, token: CancellationToken):
        """
        Holds the workspace scan slot and publishes token to cancel() while
        this scan owns it. A rejected scan never replaces the running one's token.
        """
        with self.workspace.active_scan():
            self._token = token
            try:
                yield
            finally:
                self._token = None

    def _run(self, entries: Iterable[Optional[DiscoveredFile]], token: CancellationToken) -> List[ScanResult]:
        entries = list(entries)
        total = len(entries)
        results: List[ScanResult] = []
        matcher = self.workspace.matcher()

        for i, file in enumerate(entries):
            if token.cancelled:
                processed = sum(1 for r in results if not r.skipped)
                logging.info(f"Scan cancelled after {processed} new files ({i}/{total} visited).")
                self._emit(ScanCancelledEvent(processed=processed, total=total))
                return results

            if file is None:
                continue

            results.append(self.process_file(file, matcher))
            self._emit(ScanProgressEvent(current=i + 1, total=total, file_name=file.name))

        new_count = sum(1 for r in results if not r.skipped)
        logging.info(f"Scan complete. {new_count} new, {len(results) - new_count} already cataloged.")
        return results

    def _process_file(self, file: DiscoveredFile, matcher: Optional[TMDBClient]) -> ScanResult:
        # Fails fast once the workspace has been locked
        store, thumbnails = self.workspace.require()

        existing = store.find_by_path(file.path)
        if existing:
            logging.debug(f"Already cataloged: {file.path}")
            return ScanResult(movie=existing, state=FileState.DEDUPLICATED)

        thumbnail_path = None
        duration = None
        try:
            generated = thumbnails.generate(file.path)
            thumbnail_path = generated.thumbnail_path
            duration = generated.duration
        except (GenerationError, OSError) as e:
            logging.warning(f"Failed to generate thumbnail for {file.path}: {e}")

        try:
            movie = store.insert(
                file_path=file.path,
                title=file.name,
                thumbnail_path=thumbnail_path,
                file_size=file.size_bytes,
                duration=duration,
            )
        except ConstraintViolation:
            existing = store.find_by_path(file.path)
            if existing is None:
                raise
            logging.debug(f"Cataloged concurrently, treating as existing: {file.path}")
            return ScanResult(movie=existing, state=FileState.DEDUPLICATED)

        if matcher is None:
            return ScanResult(movie=movie, state=FileState.CATALOGED)

        try:
            movie = self._enrich(store, movie, file, matcher)
        except ENRICHMENT_ERRORS as e:
            logging.warning(f"TMDB auto-match failed for {file.name}: {e}")
            return ScanResult(movie=movie, state=FileState.ENRICHMENT_FAILED)

        return ScanResult(movie=movie, state=FileState.ENRICHED)

    def _enrich(self, store, movie: Movie, file: DiscoveredFile, matcher: TMDBClient) -> Movie:
        guess = matcher.parse_filename(file.name)
        candidate = matcher.match(guess.title, guess.year)
        if candidate is None:
            raise NoMatchError(f"No TMDB match for '{guess.title}' ({guess.year or 'any year'})")

        fields = matcher.fetch_full(candidate.id, movie.id)
        updated = store.update(movie.id, fields.to_patch())
        logging.debug(f"Matched {file.name} -> TMDB {candidate.id} '{fields.title}'")
        return updated or movie

    def _emit(self, event: ScanEvent):
        if self.sink is None:
            return
        try:
            self.sink(event)
        except Exception as e:
            logging.error(f"Progress sink failed on {event}: {e}")
