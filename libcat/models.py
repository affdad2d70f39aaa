import math
import logging
import sqlite3
from dataclasses import dataclass, fields
from enum import Enum
from typing import Optional, Dict, Any

from . import config

# Columns a caller may change through LibraryStore.update
MUTABLE_COLUMNS = (
    'file_path', 'title', 'year', 'rating', 'notes', 'watched', 'favorite',
    'thumbnail_path', 'file_size', 'duration',
    'tmdb_id', 'tmdb_poster_path', 'tmdb_rating', 'tmdb_overview',
    'tmdb_director', 'tmdb_cast', 'tmdb_release_date', 'tmdb_genres',
)

TMDB_COLUMNS = tuple(c for c in MUTABLE_COLUMNS if c.startswith('tmdb_'))


class _Unset:
    def __repr__(self):
        return "UNSET"

    def __bool__(self):
        return False


UNSET: Any = _Unset()


@dataclass
class DiscoveredFile:
    """
    A video file found by the walker. Never persisted directly.
    """
    path: str
    name: str           # base name, extension stripped
    size_bytes: int


@dataclass
class Movie:
    """
    A cataloged video file as stored in the `movies` table.
    """
    id: int
    file_path: str
    title: Optional[str] = None
    year: Optional[int] = None
    rating: Optional[int] = None
    notes: Optional[str] = None
    watched: bool = False
    favorite: bool = False
    thumbnail_path: Optional[str] = None
    file_size: Optional[int] = None
    duration: Optional[float] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    # TMDB enrichment
    tmdb_id: Optional[int] = None
    tmdb_poster_path: Optional[str] = None
    tmdb_rating: Optional[float] = None
    tmdb_overview: Optional[str] = None
    tmdb_director: Optional[str] = None
    tmdb_cast: Optional[str] = None          # JSON list of {name, character}
    tmdb_release_date: Optional[str] = None
    tmdb_genres: Optional[str] = None        # JSON list of names

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Movie":
        known = {f.name for f in fields(cls)}
        data = {k: row[k] for k in row.keys() if k in known}
        data['watched'] = bool(data.get('watched'))
        data['favorite'] = bool(data.get('favorite'))
        return cls(**data)

    @property
    def is_enriched(self) -> bool:
        return self.tmdb_id is not None


@dataclass
class MoviePatch:
    """
    Partial update for a Movie. Only fields that were explicitly assigned are
    written; assigning None clears the column.
    """
    file_path: Optional[str] = UNSET
    title: Optional[str] = UNSET
    year: Optional[int] = UNSET
    rating: Optional[int] = UNSET
    notes: Optional[str] = UNSET
    watched: Optional[bool] = UNSET
    favorite: Optional[bool] = UNSET
    thumbnail_path: Optional[str] = UNSET
    file_size: Optional[int] = UNSET
    duration: Optional[float] = UNSET
    tmdb_id: Optional[int] = UNSET
    tmdb_poster_path: Optional[str] = UNSET
    tmdb_rating: Optional[float] = UNSET
    tmdb_overview: Optional[str] = UNSET
    tmdb_director: Optional[str] = UNSET
    tmdb_cast: Optional[str] = UNSET
    tmdb_release_date: Optional[str] = UNSET
    tmdb_genres: Optional[str] = UNSET

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MoviePatch":
        """Builds a patch from a loose mapping, dropping unknown keys."""
        accepted = {k: v for k, v in data.items() if k in MUTABLE_COLUMNS}
        dropped = set(data) - set(accepted)
        if dropped:
            logging.debug(f"Ignoring unknown movie fields: {sorted(dropped)}")
        return cls(**accepted)

    def to_columns(self) -> Dict[str, Any]:
        """
        Returns {column: sqlite value} for every assigned field.

        Booleans become 0/1. Non-finite numbers, ratings outside 0-5 and
        values SQLite cannot store sensibly (lists, dicts, ...) are skipped.
        """
        columns: Dict[str, Any] = {}
        for name in MUTABLE_COLUMNS:
            value = getattr(self, name)
            if value is UNSET:
                continue
            if value is None or isinstance(value, str):
                columns[name] = value
            elif isinstance(value, bool):
                columns[name] = int(value)
            elif isinstance(value, (int, float)):
                if not math.isfinite(value):
                    logging.debug(f"Dropping non-finite value for {name}: {value}")
                    continue
                if name == 'rating' and not config.MIN_RATING <= value <= config.MAX_RATING:
                    logging.debug(f"Dropping out-of-range rating: {value}")
                    continue
                columns[name] = value
            else:
                logging.debug(f"Dropping unsupported value type for {name}: {type(value).__name__}")
        return columns


@dataclass
class TitleGuess:
    title: str
    year: Optional[int] = None


@dataclass
class Candidate:
    """A TMDB search hit."""
    id: int
    title: str
    original_title: str = ""
    overview: str = ""
    poster_path: Optional[str] = None
    release_date: str = ""
    vote_average: float = 0.0
    popularity: float = 0.0

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Candidate":
        return cls(
            id=int(data['id']),
            title=data.get('title') or "",
            original_title=data.get('original_title') or "",
            overview=data.get('overview') or "",
            poster_path=data.get('poster_path'),
            release_date=data.get('release_date') or "",
            vote_average=float(data.get('vote_average') or 0.0),
            popularity=float(data.get('popularity') or 0.0),
        )


@dataclass
class EnrichmentFields:
    """Remote-sourced fields ready to be written onto a Movie."""
    tmdb_id: int
    title: str
    tmdb_poster_path: Optional[str] = None
    tmdb_rating: Optional[float] = None
    tmdb_overview: Optional[str] = None
    tmdb_director: Optional[str] = None
    tmdb_cast: Optional[str] = None
    tmdb_release_date: Optional[str] = None
    tmdb_genres: Optional[str] = None
    year: Optional[int] = None

    def to_patch(self, include_identity: bool = True) -> MoviePatch:
        """
        include_identity=False leaves tmdb_id, title and year alone
        (used when refreshing an already linked movie).
        """
        patch = MoviePatch(
            tmdb_poster_path=self.tmdb_poster_path,
            tmdb_rating=self.tmdb_rating,
            tmdb_overview=self.tmdb_overview,
            tmdb_director=self.tmdb_director,
            tmdb_cast=self.tmdb_cast,
            tmdb_release_date=self.tmdb_release_date,
            tmdb_genres=self.tmdb_genres,
        )
        if include_identity:
            patch.tmdb_id = self.tmdb_id
            patch.title = self.title
            patch.year = self.year
        return patch


@dataclass
class ThumbnailResult:
    thumbnail_path: str
    duration: Optional[float] = None


@dataclass
class Tag:
    id: int
    name: str
    color: str
    created_at: Optional[str] = None


class FileState(Enum):
    DEDUPLICATED = "deduplicated"
    CATALOGED = "cataloged"
    ENRICHED = "enriched"
    ENRICHMENT_FAILED = "enrichment_failed"


@dataclass
class ScanResult:
    movie: Movie
    state: FileState

    @property
    def skipped(self) -> bool:
        return self.state is FileState.DEDUPLICATED


@dataclass
class ScanProgressEvent:
    current: int
    total: int
    file_name: str


@dataclass
class ScanCancelledEvent:
    processed: int
    total: int


@dataclass
class Profile:
    id: str
    name: str
    password_hash: Optional[str]
    created_at: str

    def to_json(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'passwordHash': self.password_hash,
            'createdAt': self.created_at,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "Profile":
        return cls(
            id=data['id'],
            name=data['name'],
            password_hash=data.get('passwordHash'),
            created_at=data.get('createdAt', ""),
        )

    def masked(self) -> "Profile":
        """Copy safe to show to a user: the hash is replaced by a marker."""
        return Profile(
            id=self.id,
            name=self.name,
            password_hash="protected" if self.password_hash else None,
            created_at=self.created_at,
        )
