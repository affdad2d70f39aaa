"""
The active library context.

A workspace is bound to one unlocked profile and owns that profile's store
and thumbnail generator. Locking tears both down; anything still holding the
workspace sees NotReadyError from then on.
"""
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Optional, Tuple

from . import config
from .database.db import DBManager
from .database.ops import LibraryStore
from .exceptions import NotReadyError, ScanInProgressError, ProfileError
from .metadata.tmdb import TMDBClient
from .profiles import ProfileService
from .thumbnails.generator import ThumbnailGenerator

MatcherFactory = Callable[[str, Path], TMDBClient]


class Workspace:
    def __init__(self, profiles: ProfileService, matcher_factory: Optional[MatcherFactory] = None):
        self.profiles = profiles
        self.matcher_factory = matcher_factory or TMDBClient
        self.profile_id: Optional[str] = None
        self.profile_dir: Optional[Path] = None
        self.store: Optional[LibraryStore] = None
        self.thumbnails: Optional[ThumbnailGenerator] = None
        self._db: Optional[DBManager] = None
        self._scan_lock = threading.Lock()

    @property
    def is_unlocked(self) -> bool:
        return self.store is not None and self.thumbnails is not None

    def unlock(self, profile_id: str, password: Optional[str] = None):
        """Verifies the password and opens the profile's database and thumbnails."""
        if not self.profiles.verify_password(profile_id, password):
            raise ProfileError("Invalid password")

        self.lock()
        profile_dir = self.profiles.profile_path(profile_id)
        profile_dir.mkdir(parents=True, exist_ok=True)

        db = DBManager(profile_dir / config.DB_FILENAME)
        store = LibraryStore(db.connect())
        self.attach(store, ThumbnailGenerator(profile_dir), profile_dir=profile_dir, db=db)
        self.profile_id = profile_id
        logging.info(f"Unlocked profile {profile_id}")

    def attach(self,
               store: LibraryStore,
               thumbnails: ThumbnailGenerator,
               profile_dir: Optional[Path] = None,
               db: Optional[DBManager] = None):
        """Binds already-open collaborators (unlock uses this too)."""
        self.store = store
        self.thumbnails = thumbnails
        self.profile_dir = profile_dir
        self._db = db

    def lock(self):
        """Closes the database and drops every handle. Safe to call twice."""
        if self._db:
            self._db.close()
        if self.profile_id:
            logging.info(f"Locked profile {self.profile_id}")
        self._db = None
        self.store = None
        self.thumbnails = None
        self.profile_id = None
        self.profile_dir = None

    def require(self) -> Tuple[LibraryStore, ThumbnailGenerator]:
        store, thumbnails = self.store, self.thumbnails
        if store is None or thumbnails is None:
            raise NotReadyError("No profile selected")
        return store, thumbnails

    def matcher(self) -> Optional[TMDBClient]:
        """A TMDB client when an API key is configured for this profile, else None."""
        store, _ = self.require()
        api_key = store.get_setting(config.SETTING_TMDB_API_KEY)
        if not api_key:
            return None
        return self.matcher_factory(api_key, self.profile_dir or Path("."))

    @contextmanager
    def active_scan(self):
        """Reserves the single scan slot of this workspace."""
        if not self._scan_lock.acquire(blocking=False):
            raise ScanInProgressError("A scan is already running for this profile")
        try:
            yield
        finally:
            self._scan_lock.release()
