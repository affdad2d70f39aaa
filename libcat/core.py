import logging
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple, Union

from . import config
from .exceptions import (
    ConfigurationError, ConstraintViolation, GenerationError, MovieNotFoundError, NotLinkedError,
    ProfileError, TagNotFoundError,
)
from .metadata.tmdb import TMDBClient
from .models import Candidate, Movie, MoviePatch, Profile, ScanResult, Tag
from .profiles import ProfileService
from .scanning.filesystem import VideoWalker
from .scanning.orchestrator import CancellationToken, EventSink, ScanOrchestrator
from .workspace import MatcherFactory, Workspace

TagRef = Union[int, str]


class LibraryApp:
    def __init__(self,
                 data_dir: Path = config.DEFAULT_DATA_DIR,
                 matcher_factory: Optional[MatcherFactory] = None,
                 sink: Optional[EventSink] = None):
        self.data_dir = Path(data_dir)
        self.profiles = ProfileService(self.data_dir)
        if not self.profiles.profiles:
            self.profiles.migrate_existing_data()

        self.workspace = Workspace(self.profiles, matcher_factory=matcher_factory)
        self.orchestrator = ScanOrchestrator(self.workspace, walker=VideoWalker(), sink=sink)

    # --- Profiles ---

    def unlock(self, profile_id: str, password: Optional[str] = None):
        self.workspace.unlock(profile_id, password)

    def lock(self):
        self.workspace.lock()

    def resolve_profile(self, name_or_id: str) -> Profile:
        """Finds a profile by id or (case-insensitive) name."""
        profile = self.profiles.get(name_or_id) or self.profiles.find_by_name(name_or_id)
        if not profile:
            raise ProfileError(f"Profile not found: {name_or_id}")
        return profile

    # --- Scanning ---

    def scan_folder(self, root: Path, token: Optional[CancellationToken] = None) -> List[ScanResult]:
        return self.orchestrator.scan_folder(root, token)

    def add_paths(self, paths: Sequence[Union[str, Path]], token: Optional[CancellationToken] = None) -> List[ScanResult]:
        return self.orchestrator.add_paths(paths, token)

    def cancel_scan(self):
        self.orchestrator.cancel()

    # --- Library ---

    def get_movie(self, movie_id: int) -> Movie:
        store, _ = self.workspace.require()
        movie = store.get(movie_id)
        if movie is None:
            raise MovieNotFoundError(f"Movie not found: {movie_id}")
        return movie

    def list_movies(self, filter: Optional[str] = None) -> List[Movie]:
        store, _ = self.workspace.require()
        return store.list_movies(filter)

    def search_movies(self, query: str) -> List[Movie]:
        store, _ = self.workspace.require()
        return store.search(query)

    def update_movie(self, movie_id: int, **fields: Any) -> Movie:
        """Applies user edits (rating, notes, watched, ...). Unknown fields are ignored."""
        store, _ = self.workspace.require()
        self.get_movie(movie_id)
        return store.update(movie_id, MoviePatch.from_dict(fields))

    def delete_movie(self, movie_id: int):
        store, _ = self.workspace.require()
        store.delete(movie_id)

    # --- Tags ---

    def list_tags(self) -> List[Tag]:
        store, _ = self.workspace.require()
        return store.list_tags()

    def resolve_tag(self, name_or_id: TagRef) -> Tag:
        """Finds a tag by id or (case-insensitive) name."""
        store, _ = self.workspace.require()
        if isinstance(name_or_id, int) or str(name_or_id).isdigit():
            tag = store.get_tag(int(name_or_id))
            if tag:
                return tag
        wanted = str(name_or_id).strip().lower()
        for tag in store.list_tags():
            if tag.name.lower() == wanted:
                return tag
        raise TagNotFoundError(f"Tag not found: {name_or_id}")

    def create_tag(self, name: str, color: Optional[str] = None) -> Tag:
        store, _ = self.workspace.require()
        name = name.strip()
        if not name:
            raise ConstraintViolation("Tag name cannot be empty")
        return store.create_tag(name, color or config.DEFAULT_TAG_COLOR)

    def rename_tag(self, tag: TagRef, name: Optional[str] = None, color: Optional[str] = None) -> Tag:
        """Changes a tag's name and/or colour; omitted values stay as they are."""
        store, _ = self.workspace.require()
        tag = self.resolve_tag(tag)
        new_name = (name or "").strip() or tag.name
        return store.update_tag(tag.id, new_name, color or tag.color)

    def delete_tag(self, tag: TagRef):
        store, _ = self.workspace.require()
        tag = self.resolve_tag(tag)
        store.delete_tag(tag.id)

    def tag_movie(self, movie_id: int, tag: TagRef) -> List[Tag]:
        """Adds the tag to the movie (no-op when already tagged). Returns the movie's tags."""
        store, _ = self.workspace.require()
        self.get_movie(movie_id)
        tag = self.resolve_tag(tag)
        store.tag_movie(movie_id, tag.id)
        return store.tags_for_movie(movie_id)

    def untag_movie(self, movie_id: int, tag: TagRef) -> List[Tag]:
        store, _ = self.workspace.require()
        self.get_movie(movie_id)
        tag = self.resolve_tag(tag)
        store.untag_movie(movie_id, tag.id)
        return store.tags_for_movie(movie_id)

    def tags_for_movie(self, movie_id: int) -> List[Tag]:
        store, _ = self.workspace.require()
        self.get_movie(movie_id)
        return store.tags_for_movie(movie_id)

    def movies_for_tag(self, tag: TagRef) -> List[Movie]:
        store, _ = self.workspace.require()
        return store.movies_for_tag(self.resolve_tag(tag).id)

    # --- Thumbnails ---

    def regenerate_thumbnail(self, movie_id: int) -> Optional[str]:
        """Re-extracts the frame thumbnail. Returns None when generation fails."""
        store, thumbnails = self.workspace.require()
        movie = self.get_movie(movie_id)
        try:
            result = thumbnails.generate(movie.file_path, force=True)
        except (GenerationError, OSError) as e:
            logging.warning(f"Failed to regenerate thumbnail for {movie.file_path}: {e}")
            return None

        patch = MoviePatch(thumbnail_path=result.thumbnail_path)
        if result.duration:
            patch.duration = result.duration
        store.update(movie_id, patch)
        return result.thumbnail_path

    def set_custom_thumbnail(self, movie_id: int, image: Path) -> str:
        store, thumbnails = self.workspace.require()
        self.get_movie(movie_id)
        path = thumbnails.copy_custom(image)
        store.update(movie_id, MoviePatch(thumbnail_path=path))
        return path

    # --- TMDB ---

    def get_api_key(self) -> Optional[str]:
        store, _ = self.workspace.require()
        return store.get_setting(config.SETTING_TMDB_API_KEY)

    def set_api_key(self, api_key: Optional[str]):
        """Validates and stores the key. An empty key removes it."""
        store, _ = self.workspace.require()
        if not api_key:
            store.delete_setting(config.SETTING_TMDB_API_KEY)
            logging.info("TMDB API key removed")
            return

        client = self.workspace.matcher_factory(api_key, self.workspace.profile_dir or self.data_dir)
        if not client.validate_api_key():
            raise ConfigurationError("Invalid TMDB API key")
        store.set_setting(config.SETTING_TMDB_API_KEY, api_key)
        logging.info("TMDB API key saved")

    def search_tmdb(self, query: str, year: Optional[int] = None) -> List[Candidate]:
        return self._matcher().search_movies(query, year)

    def link_movie(self, movie_id: int, tmdb_id: int) -> Movie:
        """Links a movie to a specific TMDB entry, taking over its title and year."""
        store, _ = self.workspace.require()
        matcher = self._matcher()
        self.get_movie(movie_id)
        fields = matcher.fetch_full(tmdb_id, movie_id)
        return store.update(movie_id, fields.to_patch())

    def unlink_movie(self, movie_id: int) -> Movie:
        store, _ = self.workspace.require()
        self.get_movie(movie_id)
        return store.unlink_tmdb(movie_id)

    def refresh_metadata(self, movie_id: int) -> Movie:
        """Re-fetches TMDB data for a linked movie. Title and year are left as edited."""
        store, _ = self.workspace.require()
        matcher = self._matcher()
        movie = self.get_movie(movie_id)
        if not movie.tmdb_id:
            raise NotLinkedError("Movie not linked to TMDB")
        fields = matcher.fetch_full(movie.tmdb_id, movie_id)
        return store.update(movie_id, fields.to_patch(include_identity=False))

    def auto_match(self, movie_id: int) -> Tuple[bool, Movie]:
        """Matches a single movie by its file name. Returns (matched, movie)."""
        store, _ = self.workspace.require()
        matcher = self._matcher()
        movie = self.get_movie(movie_id)

        guess = matcher.parse_filename(Path(movie.file_path).name)
        candidate = matcher.match(guess.title, guess.year)
        if candidate is None:
            return False, movie

        fields = matcher.fetch_full(candidate.id, movie_id)
        return True, store.update(movie_id, fields.to_patch())

    def _matcher(self) -> TMDBClient:
        matcher = self.workspace.matcher()
        if matcher is None:
            raise ConfigurationError("TMDB API key not configured")
        return matcher
