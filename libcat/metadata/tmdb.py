import hashlib
import json
import logging
from pathlib import Path
from typing import Optional, List, Dict, Any

import requests

from .. import config
from ..exceptions import RemoteError
from ..models import Candidate, EnrichmentFields, TitleGuess
from .filename import parse_filename, clean_title


class TMDBClient:
    """
    Thin client for The Movie Database API plus the matching policy used
    during scans.

    Every network failure (transport error, non-200 status, invalid JSON or
    a body that is not an object) surfaces as RemoteError. Poster downloads are best effort and never raise.
    """

    def __init__(self, api_key: str, data_dir: Path, session: Optional[requests.Session] = None):
        self.api_key = api_key
        self.posters_dir = Path(data_dir) / config.POSTERS_DIRNAME
        self.posters_dir.mkdir(parents=True, exist_ok=True)
        self.session = session or requests.Session()

    # --- Matching (used by the scan orchestrator) ---

    @staticmethod
    def parse_filename(name: str) -> TitleGuess:
        return parse_filename(name)

    def match(self, title: str, year: Optional[int] = None) -> Optional[Candidate]:
        """
        Searches with the year first (when known), then without.
        Returns the most popular hit, or None.
        """
        query = clean_title(title)
        if not query:
            return None

        if year:
            results = self.search_movies(query, year)
            if results:
                return max(results, key=lambda c: c.popularity)

        results = self.search_movies(query)
        if results:
            return max(results, key=lambda c: c.popularity)
        return None

    def fetch_full(self, tmdb_id: int, movie_id: int) -> EnrichmentFields:
        """Fetches details + credits and caches the poster locally."""
        details = self.get_movie_details(tmdb_id)

        poster = details.get('poster_path')
        local_poster = self.download_poster(poster, movie_id) if poster else None

        credits = details.get('credits')
        if not isinstance(credits, dict):
            credits = {}
        director = next(
            (c.get('name') for c in _entries(credits, 'crew') if c.get('job') == 'Director'),
            None,
        )
        cast = [
            {'name': c.get('name'), 'character': c.get('character')}
            for c in _entries(credits, 'cast')[: config.TMDB_CAST_LIMIT]
        ]
        genres = [g.get('name') for g in _entries(details, 'genres')]

        release_date = details.get('release_date')
        if not isinstance(release_date, str) or not release_date:
            release_date = None
        year = None
        if release_date:
            try:
                year = int(release_date.split('-')[0])
            except ValueError:
                logging.debug(f"Unparseable TMDB release date: {release_date}")

        rating = details.get('vote_average')
        return EnrichmentFields(
            tmdb_id=tmdb_id,
            title=details.get('title') or "",
            tmdb_poster_path=local_poster,
            tmdb_rating=float(rating) if rating is not None else None,
            tmdb_overview=details.get('overview'),
            tmdb_director=director,
            tmdb_cast=json.dumps(cast),
            tmdb_release_date=release_date,
            tmdb_genres=json.dumps(genres),
            year=year,
        )

    # --- API calls ---

    def validate_api_key(self) -> bool:
        try:
            self._get_json("/configuration")
            return True
        except RemoteError as e:
            logging.warning(f"TMDB API key validation failed: {e}")
            return False

    def search_movies(self, query: str, year: Optional[int] = None) -> List[Candidate]:
        params: Dict[str, Any] = {'query': query}
        if year:
            params['year'] = year
        data = self._get_json("/search/movie", params)
        return [Candidate.from_api(r) for r in _entries(data, 'results') if r.get('id') is not None]

    def get_movie_details(self, tmdb_id: int) -> Dict[str, Any]:
        return self._get_json(f"/movie/{tmdb_id}", {'append_to_response': 'credits'})

    def download_poster(self, poster_path: str, movie_id: int) -> Optional[str]:
        """
        Downloads a w500 poster into the posters directory.
        Returns the local path, or None on any failure.
        """
        if not poster_path:
            return None

        digest = hashlib.md5(f"{movie_id}-{poster_path}".encode('utf-8')).hexdigest()
        local_path = self.posters_dir / f"{digest}.jpg"
        if local_path.exists():
            return str(local_path)

        url = f"{config.TMDB_IMAGE_BASE}{poster_path}"
        try:
            # requests follows redirects on GET by default
            with self.session.get(url, stream=True, timeout=config.TMDB_TIMEOUT) as r:
                r.raise_for_status()
                with open(local_path, 'wb') as f:
                    for chunk in r.iter_content(chunk_size=64 * 1024):
                        f.write(chunk)
        except (requests.RequestException, OSError) as e:
            logging.warning(f"Poster download failed for {url}: {e}")
            local_path.unlink(missing_ok=True)
            return None

        return str(local_path)

    @staticmethod
    def movie_url(tmdb_id: int) -> str:
        return config.TMDB_MOVIE_URL.format(tmdb_id=tmdb_id)

    def _get_json(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        query = dict(params or {}, api_key=self.api_key)
        url = f"{config.TMDB_API_BASE}{endpoint}"
        logging.debug(f"TMDB request: {endpoint} {params or ''}")
        try:
            r = self.session.get(url, params=query, timeout=config.TMDB_TIMEOUT)
        except requests.RequestException as e:
            raise RemoteError(f"TMDB request failed for {endpoint}: {e}") from e

        if r.status_code != 200:
            raise RemoteError(f"TMDB returned HTTP {r.status_code} for {endpoint}")
        try:
            data = r.json()
        except ValueError as e:
            raise RemoteError(f"TMDB returned invalid JSON for {endpoint}") from e
        if not isinstance(data, dict):
            raise RemoteError(f"TMDB returned {type(data).__name__} instead of an object for {endpoint}")
        return data


def _entries(data: Dict[str, Any], key: str) -> List[Dict[str, Any]]:
    """The object entries of a list field; anything else in the payload is ignored."""
    value = data.get(key)
    if not isinstance(value, list):
        return []
    return [e for e in value if isinstance(e, dict)]
