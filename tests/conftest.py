import pytest
import sqlite3
from pathlib import Path

from libcat import config
from libcat.database.schema import init_schema
from libcat.database.ops import LibraryStore
from libcat.exceptions import GenerationError, RemoteError
from libcat.metadata.filename import parse_filename
from libcat.models import Candidate, EnrichmentFields, ThumbnailResult
from libcat.profiles import ProfileService
from libcat.scanning.orchestrator import ScanOrchestrator
from libcat.workspace import Workspace


class FakeThumbnails:
    """Stands in for ThumbnailGenerator; no ffmpeg involved."""

    def __init__(self):
        self.calls = []
        self.fail_on = set()

    def generate(self, video_path, force=False):
        self.calls.append((video_path, force))
        if Path(video_path).stem in self.fail_on:
            raise GenerationError(f"ffmpeg failed for {video_path}")
        return ThumbnailResult(thumbnail_path=f"/thumbs/{Path(video_path).stem}.jpg", duration=120.0)

    def copy_custom(self, source_image):
        return f"/thumbs/custom_{Path(source_image).name}"


class FakeMatcher:
    """
    Stands in for TMDBClient. `catalog` maps a parsed title to the TMDB
    entry it should match; unknown titles have no match.
    """

    def __init__(self, catalog=None):
        self.catalog = catalog or {}
        self.remote_down = False
        self.match_calls = []
        self.fetch_calls = []

    parse_filename = staticmethod(parse_filename)

    def match(self, title, year=None):
        self.match_calls.append((title, year))
        if self.remote_down:
            raise RemoteError("TMDB request failed: connection refused")
        entry = self.catalog.get(title)
        if entry is None:
            return None
        return Candidate(id=entry['id'], title=entry['title'], popularity=10.0)

    def fetch_full(self, tmdb_id, movie_id):
        self.fetch_calls.append((tmdb_id, movie_id))
        entry = next(e for e in self.catalog.values() if e['id'] == tmdb_id)
        return EnrichmentFields(
            tmdb_id=tmdb_id,
            title=entry['title'],
            year=entry.get('year'),
            tmdb_rating=8.4,
            tmdb_director=entry.get('director'),
            tmdb_cast='[]',
            tmdb_genres='["Drama"]',
            tmdb_release_date=f"{entry.get('year')}-07-16" if entry.get('year') else None,
        )

    def search_movies(self, query, year=None):
        return [
            Candidate(id=e['id'], title=e['title'])
            for t, e in self.catalog.items() if query.lower() in t.lower()
        ]

    def validate_api_key(self):
        return True


@pytest.fixture
def conn():
    """Returns an in-memory SQLite connection with the schema initialized."""
    c = sqlite3.connect(":memory:", check_same_thread=False)
    init_schema(c)
    try:
        yield c
    finally:
        c.close()


@pytest.fixture
def store(conn):
    """Returns a LibraryStore attached to the in-memory DB."""
    return LibraryStore(conn)


@pytest.fixture
def thumbnails():
    return FakeThumbnails()


@pytest.fixture
def matcher():
    return FakeMatcher({
        "Inception": {'id': 27205, 'title': "Inception", 'year': 2010, 'director': "Christopher Nolan"},
        "The Matrix": {'id': 603, 'title': "The Matrix", 'year': 1999, 'director': "Lana Wachowski"},
    })


@pytest.fixture
def workspace(tmp_path, store, thumbnails, matcher):
    """An unlocked workspace backed by the in-memory store and fakes."""
    ws = Workspace(ProfileService(tmp_path / "data"), matcher_factory=lambda key, d: matcher)
    ws.attach(store, thumbnails, profile_dir=tmp_path)
    return ws


@pytest.fixture
def enable_tmdb(store):
    """Configures an API key so scans try to enrich."""
    store.set_setting(config.SETTING_TMDB_API_KEY, "test-key")


@pytest.fixture
def events():
    return []


@pytest.fixture
def orchestrator(workspace, events):
    return ScanOrchestrator(workspace, sink=events.append)


@pytest.fixture
def make_video(tmp_path):
    """Creates a fake video file (bytes only) under tmp_path/videos."""
    root = tmp_path / "videos"

    def _make(rel_path: str, size: int = 16) -> Path:
        p = root / rel_path
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(b"\x00" * size)
        return p

    return _make
