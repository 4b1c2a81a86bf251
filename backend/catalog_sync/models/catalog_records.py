from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Any, Literal, cast

ContentType = Literal["movie", "series"]
TitleAction = Literal["added", "skipped_existing", "filtered_out", "error"]
SyncState = Literal["done", "aborted"]


class CatalogPayloadError(ValueError):
    """Raised when a provider payload cannot be read as a catalog record."""


@dataclass(frozen=True)
class SearchHit:
    watchmode_id: int
    title: str
    year: int | None
    title_type: str | None
    imdb_id: str | None
    tmdb_id: int | None


@dataclass(frozen=True)
class TitleSearchPage:
    titles: list[SearchHit]
    total_results: int
    total_pages: int


@dataclass(frozen=True)
class TitleSource:
    source_id: int
    name: str | None
    source_type: str | None
    region: str | None
    web_url: str | None
    format: str | None = None
    seasons: int | None = None
    episodes: int | None = None


@dataclass(frozen=True)
class RawTitle:
    watchmode_id: int
    title: str
    year: int
    title_type: str
    original_title: str | None = None
    end_year: int | None = None
    runtime_minutes: int | None = None
    plot_overview: str | None = None
    poster: str | None = None
    critic_score: float | None = None
    user_rating: float | None = None
    genres: tuple[int, ...] = ()
    original_language: str | None = None
    us_rating: str | None = None
    release_date: str | None = None
    imdb_id: str | None = None
    tmdb_id: int | None = None
    payload: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class RawRelease:
    title: RawTitle
    source_release_date: str | None
    source_id: int | None
    source_name: str | None


@dataclass(frozen=True)
class ReleaseRow:
    """A `/releases/` entry before its title details are fetched."""

    watchmode_id: int
    title: str
    title_type: str | None
    imdb_id: str | None
    tmdb_id: int | None
    poster_url: str | None
    source_release_date: str | None
    source_id: int | None
    source_name: str | None


@dataclass(frozen=True)
class CanonicalContent:
    watchmode_id: int
    title: str
    year: int
    content_type: ContentType
    description: str
    poster_url: str
    end_year: int | None = None
    runtime_minutes: int | None = None
    average_rating: float | None = None
    critics_rating: float | None = None
    users_rating: float | None = None
    imdb_id: str | None = None
    tmdb_id: int | None = None
    original_title: str | None = None
    release_date: str | None = None
    us_rating: str | None = None
    original_language: str | None = None
    genres: tuple[int, ...] = ()
    source_release_date: str | None = None
    hidden: bool = False
    watchmode_data: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class StoredContent:
    id: int
    content: CanonicalContent
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class ContentPlatform:
    """A subscription source where a stored title can be watched."""

    source_id: int
    name: str | None
    web_url: str
    format: str | None = None
    seasons: int | None = None
    episodes: int | None = None


@dataclass(frozen=True)
class TitleOutcome:
    title: str
    year: int | None
    action: TitleAction
    reason: str | None = None


@dataclass(frozen=True)
class SearchStats:
    total_titles_found: int = 0
    pages_searched: int = 0
    duplicates_skipped: int = 0
    filtered_out: int = 0


@dataclass(frozen=True)
class SyncResult:
    state: SyncState
    new_titles_added: int
    titles_validated: int
    titles_removed: int
    requests_used: int
    errors: tuple[str, ...]
    summary: str
    titles_processed: tuple[TitleOutcome, ...]
    search_stats: SearchStats


def parse_search_page(payload: dict[str, Any]) -> TitleSearchPage:
    titles = parse_search_hits(payload.get("titles"))
    total_results = _as_int(payload.get("total_results"))
    total_pages = _as_int(payload.get("total_pages"))
    return TitleSearchPage(
        titles=titles,
        total_results=total_results if total_results is not None else len(titles),
        total_pages=total_pages if total_pages is not None else 1,
    )


def parse_search_hits(raw: object) -> list[SearchHit]:
    if not isinstance(raw, list):
        return []
    hits: list[SearchHit] = []
    for entry in cast(list[object], raw):
        if not isinstance(entry, dict):
            continue
        item = _normalize_object_dict(cast(dict[object, object], entry))
        watchmode_id = _as_int(item.get("id"))
        title = _as_str(item.get("title")) or _as_str(item.get("name"))
        if watchmode_id is None or title is None:
            continue
        hits.append(
            SearchHit(
                watchmode_id=watchmode_id,
                title=title,
                year=_as_int(item.get("year")),
                title_type=_as_str(item.get("type")),
                imdb_id=_as_str(item.get("imdb_id")),
                tmdb_id=_as_int(item.get("tmdb_id")),
            )
        )
    return hits


def parse_raw_title(payload: dict[str, Any]) -> RawTitle:
    watchmode_id = _as_int(payload.get("id"))
    if watchmode_id is None:
        raise CatalogPayloadError("Title payload is missing an integer id.")
    title = _as_str(payload.get("title"))
    if title is None:
        raise CatalogPayloadError(f"Title {watchmode_id} payload is missing a title.")
    year = _as_int(payload.get("year"))
    if year is None:
        raise CatalogPayloadError(f"Title {watchmode_id} payload is missing a year.")

    return RawTitle(
        watchmode_id=watchmode_id,
        title=title,
        year=year,
        title_type=_as_str(payload.get("type")) or "movie",
        original_title=_as_str(payload.get("original_title")),
        end_year=_as_int(payload.get("end_year")),
        runtime_minutes=_as_int(payload.get("runtime_minutes")),
        plot_overview=_as_str(payload.get("plot_overview")),
        poster=_as_str(payload.get("poster")),
        critic_score=_as_float(payload.get("critic_score")),
        user_rating=_as_float(payload.get("user_rating")),
        genres=_as_int_tuple(payload.get("genres")),
        original_language=_as_str(payload.get("original_language")),
        us_rating=_as_str(payload.get("us_rating")),
        release_date=_as_str(payload.get("release_date")),
        imdb_id=_as_str(payload.get("imdb_id")),
        tmdb_id=_as_int(payload.get("tmdb_id")),
        payload=dict(payload),
    )


def parse_release_rows(raw: object) -> list[ReleaseRow]:
    if not isinstance(raw, list):
        return []
    rows: list[ReleaseRow] = []
    for entry in cast(list[object], raw):
        if not isinstance(entry, dict):
            continue
        item = _normalize_object_dict(cast(dict[object, object], entry))
        watchmode_id = _as_int(item.get("id"))
        title = _as_str(item.get("title"))
        if watchmode_id is None or title is None:
            continue
        rows.append(
            ReleaseRow(
                watchmode_id=watchmode_id,
                title=title,
                title_type=_as_str(item.get("type")),
                imdb_id=_as_str(item.get("imdb_id")),
                tmdb_id=_as_int(item.get("tmdb_id")),
                poster_url=_as_str(item.get("poster_url")),
                source_release_date=_as_str(item.get("source_release_date")),
                source_id=_as_int(item.get("source_id")),
                source_name=_as_str(item.get("source_name")),
            )
        )
    return rows


def parse_title_sources(raw: object) -> list[TitleSource]:
    if not isinstance(raw, list):
        return []
    sources: list[TitleSource] = []
    for entry in cast(list[object], raw):
        if not isinstance(entry, dict):
            continue
        item = _normalize_object_dict(cast(dict[object, object], entry))
        source_id = _as_int(item.get("source_id"))
        if source_id is None:
            continue
        sources.append(
            TitleSource(
                source_id=source_id,
                name=_as_str(item.get("name")),
                source_type=_as_str(item.get("type")),
                region=_as_str(item.get("region")),
                web_url=_as_str(item.get("web_url")),
                format=_as_str(item.get("format")),
                seasons=_as_int(item.get("seasons")),
                episodes=_as_int(item.get("episodes")),
            )
        )
    return sources


def parse_year(value: str | None) -> int | None:
    if value is None:
        return None
    match = re.search(r"(18|19|20)\d{2}", value)
    if match is None:
        return None
    return int(match.group(0))


def _normalize_object_dict(raw: dict[object, object]) -> dict[str, Any]:
    normalized: dict[str, Any] = {}
    for key, value in raw.items():
        if isinstance(key, str):
            normalized[key] = value
    return normalized


def _as_int_tuple(value: object) -> tuple[int, ...]:
    if not isinstance(value, list):
        return ()
    output: list[int] = []
    for item in cast(list[object], value):
        parsed = _as_int(item)
        if parsed is not None:
            output.append(parsed)
    return tuple(output)


def _as_int(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return int(value)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None
        try:
            return int(stripped)
        except ValueError:
            return None
    return None


def _as_float(value: object) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, int):
        return float(value)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None
        try:
            parsed = float(stripped)
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None
    return None


def _as_str(value: object) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        stripped = value.strip()
        if stripped:
            return stripped
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, (int, float)):
        return str(value)
    return None
