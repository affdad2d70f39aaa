import sqlite3
from datetime import datetime, UTC
from pathlib import Path
from typing import Optional, List

from .. import config
from ..exceptions import ConstraintViolation, DatabaseError
from ..models import Movie, MoviePatch, Tag, TMDB_COLUMNS

MOVIE_FILTERS = ('all', 'watched', 'favorites', 'untagged')

class LibraryStore:
    """
    Parameterized-query wrapper around one profile's library database.
    Every write runs in its own transaction.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.conn.row_factory = sqlite3.Row

    # --- Movies ---

    def get(self, movie_id: int) -> Optional[Movie]:
        row = self.conn.execute("SELECT * FROM movies WHERE id = ?", (movie_id,)).fetchone()
        return Movie.from_row(row) if row else None

    def find_by_path(self, file_path: str) -> Optional[Movie]:
        """Exact path match; no normalisation is applied."""
        row = self.conn.execute("SELECT * FROM movies WHERE file_path = ?", (str(file_path),)).fetchone()
        return Movie.from_row(row) if row else None

    def insert(self,
               file_path: str,
               title: Optional[str] = None,
               thumbnail_path: Optional[str] = None,
               file_size: Optional[int] = None,
               duration: Optional[float] = None) -> Movie:
        """
        Adds a new movie. Title defaults to the file's base name.
        Raises ConstraintViolation if the path is already cataloged.
        """
        now_iso = datetime.now(UTC).isoformat()
        file_path = str(file_path)
        try:
            with self.conn:
                cur = self.conn.execute("""
                    INSERT INTO movies (file_path, title, thumbnail_path, file_size, duration, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                """, (
                    file_path, title or Path(file_path).stem, thumbnail_path or None,
                    file_size or None, duration or None, now_iso, now_iso,
                ))
        except sqlite3.IntegrityError as e:
            raise ConstraintViolation(f"Already cataloged: {file_path}") from e

        if cur.lastrowid is None:
            raise DatabaseError("Database INSERT failed to return a row ID.")
        return self.get(cur.lastrowid)

    def update(self, movie_id: int, patch: MoviePatch) -> Optional[Movie]:
        """
        Writes the assigned fields of `patch` and bumps updated_at.
        Returns the refreshed movie (None if the id does not exist).
        """
        columns = patch.to_columns()
        if columns:
            assignments = ", ".join(f"{name} = :{name}" for name in columns)
            params = dict(columns, id=movie_id, updated_at=datetime.now(UTC).isoformat())
            try:
                with self.conn:
                    self.conn.execute(
                        f"UPDATE movies SET {assignments}, updated_at = :updated_at WHERE id = :id",
                        params,
                    )
            except sqlite3.IntegrityError as e:
                raise ConstraintViolation(f"Rejected update for movie {movie_id}: {e}") from e
        return self.get(movie_id)

    def unlink_tmdb(self, movie_id: int) -> Optional[Movie]:
        """Clears every TMDB-sourced column; local fields are kept."""
        return self.update(movie_id, MoviePatch(**{c: None for c in TMDB_COLUMNS}))

    def delete(self, movie_id: int):
        with self.conn:
            self.conn.execute("DELETE FROM movies WHERE id = ?", (movie_id,))

    def list_movies(self, filter: Optional[str] = None) -> List[Movie]:
        if filter == 'watched':
            sql = "SELECT * FROM movies WHERE watched = 1 ORDER BY title ASC"
        elif filter == 'favorites':
            sql = "SELECT * FROM movies WHERE favorite = 1 ORDER BY title ASC"
        elif filter == 'untagged':
            sql = """
                SELECT m.* FROM movies m
                LEFT JOIN movie_tags mt ON m.id = mt.movie_id
                WHERE mt.tag_id IS NULL
                ORDER BY m.title ASC
            """
        else:
            sql = "SELECT * FROM movies ORDER BY title ASC"
        return [Movie.from_row(r) for r in self.conn.execute(sql).fetchall()]

    def search(self, query: str) -> List[Movie]:
        like = f"%{query}%"
        rows = self.conn.execute("""
            SELECT * FROM movies
            WHERE title LIKE ? OR notes LIKE ? OR file_path LIKE ?
            ORDER BY title ASC
        """, (like, like, like)).fetchall()
        return [Movie.from_row(r) for r in rows]

    # --- Settings ---

    def get_setting(self, key: str) -> Optional[str]:
        row = self.conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        return row['value'] if row else None

    def set_setting(self, key: str, value: str):
        with self.conn:
            self.conn.execute("""
                INSERT INTO settings (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """, (key, value))

    def delete_setting(self, key: str):
        with self.conn:
            self.conn.execute("DELETE FROM settings WHERE key = ?", (key,))

    # --- Tags ---

    def list_tags(self) -> List[Tag]:
        """Newest first."""
        rows = self.conn.execute("SELECT * FROM tags ORDER BY created_at DESC, id DESC").fetchall()
        return [self._tag(r) for r in rows]

    def get_tag(self, tag_id: int) -> Optional[Tag]:
        row = self.conn.execute("SELECT * FROM tags WHERE id = ?", (tag_id,)).fetchone()
        return self._tag(row) if row else None

    def create_tag(self, name: str, color: str = config.DEFAULT_TAG_COLOR) -> Tag:
        try:
            with self.conn:
                cur = self.conn.execute(
                    "INSERT INTO tags (name, color, created_at) VALUES (?, ?, ?)",
                    (name, color, datetime.now(UTC).isoformat()),
                )
        except sqlite3.IntegrityError as e:
            raise ConstraintViolation(f"Tag already exists: {name}") from e
        return self.get_tag(cur.lastrowid)

    def update_tag(self, tag_id: int, name: str, color: str) -> Optional[Tag]:
        try:
            with self.conn:
                self.conn.execute("UPDATE tags SET name = ?, color = ? WHERE id = ?", (name, color, tag_id))
        except sqlite3.IntegrityError as e:
            raise ConstraintViolation(f"Tag already exists: {name}") from e
        return self.get_tag(tag_id)

    def delete_tag(self, tag_id: int):
        with self.conn:
            self.conn.execute("DELETE FROM movie_tags WHERE tag_id = ?", (tag_id,))
            self.conn.execute("DELETE FROM tags WHERE id = ?", (tag_id,))

    def tag_movie(self, movie_id: int, tag_id: int):
        with self.conn:
            self.conn.execute(
                "INSERT OR IGNORE INTO movie_tags (movie_id, tag_id) VALUES (?, ?)",
                (movie_id, tag_id),
            )

    def untag_movie(self, movie_id: int, tag_id: int):
        with self.conn:
            self.conn.execute("DELETE FROM movie_tags WHERE movie_id = ? AND tag_id = ?", (movie_id, tag_id))

    def tags_for_movie(self, movie_id: int) -> List[Tag]:
        rows = self.conn.execute("""
            SELECT t.* FROM tags t
            INNER JOIN movie_tags mt ON t.id = mt.tag_id
            WHERE mt.movie_id = ?
            ORDER BY t.name ASC
        """, (movie_id,)).fetchall()
        return [self._tag(r) for r in rows]

    def movies_for_tag(self, tag_id: int) -> List[Movie]:
        rows = self.conn.execute("""
            SELECT m.* FROM movies m
            INNER JOIN movie_tags mt ON m.id = mt.movie_id
            WHERE mt.tag_id = ?
            ORDER BY m.title ASC
        """, (tag_id,)).fetchall()
        return [Movie.from_row(r) for r in rows]

    def _tag(self, row: sqlite3.Row) -> Tag:
        return Tag(id=row['id'], name=row['name'], color=row['color'], created_at=row['created_at'])
