from __future__ import annotations

import json
import re
import sqlite3
from collections.abc import Sequence
from typing import Any, cast

from backend.catalog_sync.models.catalog_records import (
    CanonicalContent,
    ContentPlatform,
    ContentType,
    StoredContent,
)
from backend.catalog_sync.repositories.common import utc_now_iso
from backend.catalog_sync.repositories.database import Database

_DECADE_PATTERN = re.compile(r"^(\d{4})s$", re.IGNORECASE)
_CONTENT_COLUMNS = (
    "watchmode_id",
    "title",
    "year",
    "end_year",
    "content_type",
    "runtime_minutes",
    "description",
    "poster_url",
    "average_rating",
    "critics_rating",
    "users_rating",
    "imdb_id",
    "tmdb_id",
    "original_title",
    "release_date",
    "us_rating",
    "original_language",
    "genres_json",
    "source_release_date",
    "hidden",
    "watchmode_data_json",
)


def decade_to_range(label: str | None) -> tuple[int, int] | None:
    """Map a label like "1950s" to the half-open year range (1950, 1960)."""
    if not label:
        return None
    match = _DECADE_PATTERN.match(label.strip())
    if match is None:
        return None
    start = int(match.group(1))
    return (start, start + 10)


class ContentRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def find_by_watchmode_id(self, watchmode_id: int) -> StoredContent | None:
        with self._db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM content WHERE watchmode_id = ?",
                (watchmode_id,),
            ).fetchone()
        return _row_to_stored(row) if row is not None else None

    def find_by_external_ids(
        self,
        *,
        watchmode_id: int | None,
        imdb_id: str | None,
        tmdb_id: int | None,
    ) -> StoredContent | None:
        clauses: list[str] = []
        params: list[object] = []
        if watchmode_id is not None:
            clauses.append("watchmode_id = ?")
            params.append(watchmode_id)
        if imdb_id:
            clauses.append("imdb_id = ?")
            params.append(imdb_id)
        if tmdb_id is not None:
            clauses.append("tmdb_id = ?")
            params.append(tmdb_id)
        if not clauses:
            return None

        with self._db.connection() as conn:
            row = conn.execute(
                f"SELECT * FROM content WHERE {' OR '.join(clauses)} ORDER BY id LIMIT 1",
                tuple(params),
            ).fetchone()
        return _row_to_stored(row) if row is not None else None

    def upsert_content(self, content: CanonicalContent) -> StoredContent:
        now_iso = utc_now_iso()
        values = _content_values(content)
        placeholders = ", ".join("?" for _ in _CONTENT_COLUMNS)
        updates = ",\n                    ".join(
            f"{column} = excluded.{column}"
            for column in _CONTENT_COLUMNS
            if column != "watchmode_id"
        )

        with self._db.connection() as conn:
            conn.execute(
                f"""
                INSERT INTO content ({", ".join(_CONTENT_COLUMNS)}, created_at, updated_at)
                VALUES ({placeholders}, ?, ?)
                ON CONFLICT(watchmode_id) DO UPDATE SET
                    {updates},
                    updated_at = excluded.updated_at
                """,
                (*values, now_iso, now_iso),
            )
            row = conn.execute(
                "SELECT * FROM content WHERE watchmode_id = ?",
                (content.watchmode_id,),
            ).fetchone()

        if row is None:
            raise sqlite3.DatabaseError(
                f"Content row for watchmode_id={content.watchmode_id} vanished after upsert."
            )
        return _row_to_stored(row)

    def delete_by_watchmode_id(self, watchmode_id: int) -> bool:
        with self._db.connection() as conn:
            cursor = conn.execute("DELETE FROM content WHERE watchmode_id = ?", (watchmode_id,))
        return cursor.rowcount > 0

    def list_content(
        self,
        *,
        decade: str | None = None,
        content_type: ContentType | None = None,
        limit: int = 100,
        oldest_first: bool = False,
        include_hidden: bool = False,
    ) -> list[StoredContent]:
        clauses: list[str] = []
        params: list[object] = []
        if not include_hidden:
            clauses.append("hidden = 0")
        year_range = decade_to_range(decade)
        if year_range is not None:
            clauses.append("year >= ? AND year < ?")
            params.extend(year_range)
        if content_type is not None:
            clauses.append("content_type = ?")
            params.append(content_type)

        where_sql = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        order_sql = (
            "ORDER BY id ASC"
            if oldest_first
            else "ORDER BY average_rating IS NULL, average_rating DESC, id ASC"
        )
        params.append(max(1, limit))

        with self._db.connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM content {where_sql} {order_sql} LIMIT ?",
                tuple(params),
            ).fetchall()
        return [_row_to_stored(row) for row in rows]

    def replace_platforms(self, content_id: int, platforms: Sequence[ContentPlatform]) -> None:
        now_iso = utc_now_iso()
        with self._db.connection() as conn:
            conn.execute("DELETE FROM content_platforms WHERE content_id = ?", (content_id,))
            conn.executemany(
                """
                INSERT INTO content_platforms (
                    content_id,
                    source_id,
                    platform_name,
                    web_url,
                    format,
                    seasons,
                    episodes,
                    updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(content_id, source_id) DO UPDATE SET
                    platform_name = excluded.platform_name,
                    web_url = excluded.web_url,
                    format = excluded.format,
                    seasons = excluded.seasons,
                    episodes = excluded.episodes,
                    updated_at = excluded.updated_at
                """,
                [
                    (
                        content_id,
                        platform.source_id,
                        platform.name,
                        platform.web_url,
                        platform.format,
                        platform.seasons,
                        platform.episodes,
                        now_iso,
                    )
                    for platform in platforms
                ],
            )

    def list_platforms(self, watchmode_id: int) -> list[ContentPlatform]:
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT p.*
                FROM content_platforms AS p
                JOIN content AS c ON c.id = p.content_id
                WHERE c.watchmode_id = ?
                ORDER BY p.source_id
                """,
                (watchmode_id,),
            ).fetchall()
        return [
            ContentPlatform(
                source_id=int(row["source_id"]),
                name=_optional_text(row["platform_name"]),
                web_url=str(row["web_url"]),
                format=_optional_text(row["format"]),
                seasons=_optional_int(row["seasons"]),
                episodes=_optional_int(row["episodes"]),
            )
            for row in rows
        ]

    def count_content(self) -> int:
        with self._db.connection() as conn:
            row = conn.execute("SELECT COUNT(*) AS total FROM content").fetchone()
        return int(row["total"]) if row is not None else 0


def _content_values(content: CanonicalContent) -> tuple[object, ...]:
    return (
        content.watchmode_id,
        content.title,
        content.year,
        content.end_year,
        content.content_type,
        content.runtime_minutes,
        content.description,
        content.poster_url,
        content.average_rating,
        content.critics_rating,
        content.users_rating,
        content.imdb_id,
        content.tmdb_id,
        content.original_title,
        content.release_date,
        content.us_rating,
        content.original_language,
        json.dumps(list(content.genres)),
        content.source_release_date,
        1 if content.hidden else 0,
        json.dumps(content.watchmode_data, sort_keys=True, ensure_ascii=True),
    )


def _row_to_stored(row: sqlite3.Row) -> StoredContent:
    content_type = str(row["content_type"])
    return StoredContent(
        id=int(row["id"]),
        content=CanonicalContent(
            watchmode_id=int(row["watchmode_id"]),
            title=str(row["title"]),
            year=int(row["year"]),
            content_type="series" if content_type == "series" else "movie",
            description=str(row["description"]),
            poster_url=str(row["poster_url"]),
            end_year=_optional_int(row["end_year"]),
            runtime_minutes=_optional_int(row["runtime_minutes"]),
            average_rating=_optional_float(row["average_rating"]),
            critics_rating=_optional_float(row["critics_rating"]),
            users_rating=_optional_float(row["users_rating"]),
            imdb_id=_optional_text(row["imdb_id"]),
            tmdb_id=_optional_int(row["tmdb_id"]),
            original_title=_optional_text(row["original_title"]),
            release_date=_optional_text(row["release_date"]),
            us_rating=_optional_text(row["us_rating"]),
            original_language=_optional_text(row["original_language"]),
            genres=tuple(_load_int_list(row["genres_json"])),
            source_release_date=_optional_text(row["source_release_date"]),
            hidden=bool(row["hidden"]),
            watchmode_data=_load_object_dict(row["watchmode_data_json"]),
        ),
        created_at=str(row["created_at"]),
        updated_at=str(row["updated_at"]),
    )


def _optional_int(value: object) -> int | None:
    return int(cast(int, value)) if value is not None else None


def _optional_float(value: object) -> float | None:
    return float(cast(float, value)) if value is not None else None


def _optional_text(value: object) -> str | None:
    return str(value) if value is not None else None


def _load_int_list(raw: object) -> list[int]:
    if not isinstance(raw, str):
        return []
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return []
    if not isinstance(parsed, list):
        return []
    return [item for item in cast(list[object], parsed) if isinstance(item, int)]


def _load_object_dict(raw: object) -> dict[str, Any]:
    if not isinstance(raw, str):
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    if not isinstance(parsed, dict):
        return {}
    return {
        str(key): value
        for key, value in cast(dict[object, object], parsed).items()
    }
