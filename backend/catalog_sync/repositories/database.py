from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

CONTENT_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS content (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    watchmode_id INTEGER NOT NULL UNIQUE,
    title TEXT NOT NULL,
    year INTEGER NOT NULL,
    end_year INTEGER NULL,
    content_type TEXT NOT NULL,
    runtime_minutes INTEGER NULL,
    description TEXT NOT NULL,
    poster_url TEXT NOT NULL,
    average_rating REAL NULL,
    critics_rating REAL NULL,
    users_rating REAL NULL,
    imdb_id TEXT NULL,
    tmdb_id INTEGER NULL,
    original_title TEXT NULL,
    release_date TEXT NULL,
    us_rating TEXT NULL,
    original_language TEXT NULL,
    genres_json TEXT NOT NULL,
    source_release_date TEXT NULL,
    hidden INTEGER NOT NULL DEFAULT 0,
    watchmode_data_json TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_content_imdb_id ON content(imdb_id);

CREATE INDEX IF NOT EXISTS idx_content_tmdb_id ON content(tmdb_id);

CREATE INDEX IF NOT EXISTS idx_content_year ON content(year);

CREATE TABLE IF NOT EXISTS content_platforms (
    content_id INTEGER NOT NULL REFERENCES content(id) ON DELETE CASCADE,
    source_id INTEGER NOT NULL,
    platform_name TEXT NULL,
    web_url TEXT NOT NULL,
    format TEXT NULL,
    seasons INTEGER NULL,
    episodes INTEGER NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (content_id, source_id)
);
"""

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS catalog_api_usage_monthly (
    month TEXT PRIMARY KEY,
    watchmode_requests INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


class Database:
    def __init__(self, path: Path) -> None:
        self._path = path

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._path, timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def initialize(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self.connection() as conn:
            conn.executescript(SCHEMA_SQL)
            conn.executescript(CONTENT_SCHEMA_SQL)
            _maybe_migrate_content_schema(conn)


def _maybe_migrate_content_schema(conn: sqlite3.Connection) -> None:
    columns = _table_columns(conn, "content")

    # Rows written before release-based syncing existed lack the availability date.
    if "source_release_date" not in columns:
        conn.execute("ALTER TABLE content ADD COLUMN source_release_date TEXT NULL")
    if "hidden" not in columns:
        conn.execute("ALTER TABLE content ADD COLUMN hidden INTEGER NOT NULL DEFAULT 0")


def _table_columns(conn: sqlite3.Connection, table_name: str) -> set[str]:
    rows = conn.execute(f"PRAGMA table_info({table_name})").fetchall()
    return {str(row["name"]) for row in rows}
