"""
Database schema definitions.
"""
import sqlite3
import logging

CURRENT_SCHEMA_VERSION = 2

# Columns added after the first release; older libraries get them on open.
_LATE_MOVIE_COLUMNS = {
    'file_size': 'INTEGER',
    'duration': 'REAL',
    'tmdb_id': 'INTEGER',
    'tmdb_poster_path': 'TEXT',
    'tmdb_rating': 'REAL',
    'tmdb_overview': 'TEXT',
    'tmdb_director': 'TEXT',
    'tmdb_cast': 'TEXT',
    'tmdb_release_date': 'TEXT',
    'tmdb_genres': 'TEXT',
}

def init_schema(conn: sqlite3.Connection):
    """
    Applies the core schema to the database.
    Idempotent: safe to run on every startup.
    """
    with conn:
        # 1. Version Tracking (For future migrations)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY
            );
        """)

        cur = conn.cursor()
        cur.execute("SELECT MAX(version) FROM schema_version")
        row = cur.fetchone()
        if row is None or row[0] is None:
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", (CURRENT_SCHEMA_VERSION,))

        # 2. Movies
        # file_path is the identity of a file on disk; id is the record identity
        conn.execute("""
        CREATE TABLE IF NOT EXISTS movies (
            id                INTEGER PRIMARY KEY AUTOINCREMENT,
            file_path         TEXT UNIQUE NOT NULL,
            title             TEXT,
            year              INTEGER,
            rating            INTEGER CHECK(rating >= 0 AND rating <= 5),
            notes             TEXT,
            watched           INTEGER NOT NULL DEFAULT 0,
            favorite          INTEGER NOT NULL DEFAULT 0,
            thumbnail_path    TEXT,
            file_size         INTEGER,
            duration          REAL,
            created_at        TEXT NOT NULL,
            updated_at        TEXT NOT NULL,
            tmdb_id           INTEGER,
            tmdb_poster_path  TEXT,
            tmdb_rating       REAL,
            tmdb_overview     TEXT,
            tmdb_director     TEXT,
            tmdb_cast         TEXT,
            tmdb_release_date TEXT,
            tmdb_genres       TEXT
        );
        """)
        _add_missing_columns(conn, "movies", _LATE_MOVIE_COLUMNS)

        # 3. Settings (per-profile key/value, e.g. the TMDB API key)
        conn.execute("""
        CREATE TABLE IF NOT EXISTS settings (
            key   TEXT PRIMARY KEY,
            value TEXT
        );
        """)

        # 4. Tags
        conn.execute("""
        CREATE TABLE IF NOT EXISTS tags (
            id         INTEGER PRIMARY KEY AUTOINCREMENT,
            name       TEXT UNIQUE NOT NULL,
            color      TEXT NOT NULL DEFAULT '#f4a261',
            created_at TEXT NOT NULL
        );
        """)

        conn.execute("""
        CREATE TABLE IF NOT EXISTS movie_tags (
            movie_id INTEGER NOT NULL,
            tag_id   INTEGER NOT NULL,
            PRIMARY KEY (movie_id, tag_id),
            FOREIGN KEY(movie_id) REFERENCES movies(id) ON DELETE CASCADE,
            FOREIGN KEY(tag_id) REFERENCES tags(id) ON DELETE CASCADE
        );
        """)

        # 5. Indices for Performance
        conn.execute("CREATE INDEX IF NOT EXISTS idx_movies_title ON movies(title);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_movies_watched ON movies(watched);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_movies_favorite ON movies(favorite);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_movie_tags_movie ON movie_tags(movie_id);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_movie_tags_tag ON movie_tags(tag_id);")

    logging.debug("Database schema initialized.")

def _add_missing_columns(conn: sqlite3.Connection, table: str, columns: dict):
    existing = {row[1] for row in conn.execute(f"PRAGMA table_info({table})")}
    for name, col_type in columns.items():
        if name not in existing:
            logging.info(f"Adding missing '{name}' column to {table} table...")
            conn.execute(f"ALTER TABLE {table} ADD COLUMN {name} {col_type}")
