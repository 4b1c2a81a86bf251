from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import ParamSpec, TypeVar

from backend.catalog_sync.models.catalog_records import CatalogPayloadError, RawRelease
from backend.catalog_sync.repositories.content_repository import ContentRepository
from backend.catalog_sync.services.content_normalizer import normalize_release
from backend.catalog_sync.services.quota_tracker import QuotaExceededError
from backend.catalog_sync.services.tvdb_artwork_matcher import TvdbArtworkMatcher
from backend.catalog_sync.services.watchmode_client import (
    CatalogProviderError,
    ReleaseFilters,
    TitleSearchFilters,
    WatchmodeClient,
)
from backend.catalog_sync.telemetry import TelemetryClient

LOGGER = logging.getLogger("catalog_sync.new_to_streaming")
SEARCH_LIMIT = 15
SEARCH_HITS_EXPANDED = 8
RELEASE_DAYS_BACK = 30
RELEASE_LIMIT = 100
MAX_TITLES_STORED = 15

_P = ParamSpec("_P")
_T = TypeVar("_T")


@dataclass(frozen=True)
class NewToStreamingSummary:
    new_titles_added: int
    duplicates_skipped: int
    total_processed: int
    api_calls_used: int
    timestamp: str


class _QuotaStop(Exception):
    pass


class NewToStreamingSyncService:
    """Store titles that recently became available on the configured platforms.

    Two sources feed one queue: the newest genre titles by release date and the
    provider's recent availability events. The queue is deduplicated by
    Watchmode, IMDB and TMDB ids before storage is consulted.
    """

    def __init__(
        self,
        *,
        catalog_client: WatchmodeClient,
        content_repository: ContentRepository,
        artwork_matcher: TvdbArtworkMatcher,
        source_ids: Sequence[int],
        genre_ids: Sequence[int] = (11,),
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._client = catalog_client
        self._content_repository = content_repository
        self._artwork_matcher = artwork_matcher
        self._source_ids = tuple(source_ids)
        self._genre_ids = tuple(genre_ids)
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()
        self._api_calls = 0

    def run(self) -> NewToStreamingSummary:
        self._api_calls = 0
        with self._telemetry.span("catalog.new_to_streaming") as span:
            queue: list[RawRelease] = []
            try:
                self._collect_recent_genre_titles(queue)
                self._collect_recent_releases(queue)
            except _QuotaStop:
                LOGGER.warning("new-to-streaming collection stopped by quota queued=%s", len(queue))

            unique, duplicates = _dedupe_releases(queue)
            added = 0
            for release in unique:
                if added >= MAX_TITLES_STORED:
                    break
                try:
                    stored = self._already_stored(release)
                except sqlite3.Error as exc:
                    LOGGER.warning(
                        "storage lookup failed watchmode_id=%s error=%s",
                        release.title.watchmode_id,
                        exc,
                    )
                    continue
                if stored:
                    duplicates += 1
                    continue
                if self._store(release):
                    added += 1

            summary = NewToStreamingSummary(
                new_titles_added=added,
                duplicates_skipped=duplicates,
                total_processed=len(queue),
                api_calls_used=self._api_calls,
                timestamp=datetime.now(UTC).isoformat(),
            )
            span.set(
                added=summary.new_titles_added,
                duplicates=summary.duplicates_skipped,
                api_calls=summary.api_calls_used,
            )

        LOGGER.info(
            "new-to-streaming sync finished added=%s duplicates=%s processed=%s api_calls=%s",
            summary.new_titles_added,
            summary.duplicates_skipped,
            summary.total_processed,
            summary.api_calls_used,
        )
        return summary

    def _collect_recent_genre_titles(self, queue: list[RawRelease]) -> None:
        filters = TitleSearchFilters(
            genre_ids=self._genre_ids,
            source_ids=self._source_ids,
            sort_by="release_date_desc",
            limit=SEARCH_LIMIT,
        )
        try:
            page = self._call(self._client.search_titles, filters)
        except (CatalogProviderError, CatalogPayloadError) as exc:
            LOGGER.warning("recent genre search failed error=%s", exc)
            return

        for hit in page.titles[:SEARCH_HITS_EXPANDED]:
            try:
                details = self._call(self._client.get_title_details, hit.watchmode_id)
            except (CatalogProviderError, CatalogPayloadError) as exc:
                LOGGER.warning("title details failed watchmode_id=%s error=%s", hit.watchmode_id, exc)
                continue
            queue.append(
                RawRelease(
                    title=details,
                    source_release_date=None,
                    source_id=None,
                    source_name=None,
                )
            )

    def _collect_recent_releases(self, queue: list[RawRelease]) -> None:
        filters = ReleaseFilters(
            source_ids=self._source_ids,
            change_type="new,subscription",
            types="movie,tv",
            days_back=RELEASE_DAYS_BACK,
            limit=RELEASE_LIMIT,
        )
        try:
            rows = self._call(self._client.get_recent_releases, filters)
        except (CatalogProviderError, CatalogPayloadError) as exc:
            LOGGER.warning("recent releases lookup failed error=%s", exc)
            return

        genre_ids = set(self._genre_ids)
        for row in rows:
            try:
                details = self._call(self._client.get_title_details, row.watchmode_id)
            except (CatalogProviderError, CatalogPayloadError) as exc:
                LOGGER.warning("release details failed watchmode_id=%s error=%s", row.watchmode_id, exc)
                continue
            if genre_ids and not genre_ids.intersection(details.genres):
                continue
            queue.append(
                RawRelease(
                    title=details,
                    source_release_date=row.source_release_date,
                    source_id=row.source_id,
                    source_name=row.source_name,
                )
            )

    def _already_stored(self, release: RawRelease) -> bool:
        title = release.title
        existing = self._content_repository.find_by_external_ids(
            watchmode_id=title.watchmode_id,
            imdb_id=title.imdb_id,
            tmdb_id=title.tmdb_id,
        )
        return existing is not None

    def _store(self, release: RawRelease) -> bool:
        title = release.title
        dated = replace(
            release,
            source_release_date=(
                release.source_release_date
                or title.release_date
                or datetime.now(UTC).date().isoformat()
            ),
        )
        poster_url = self._artwork_matcher.find_poster_url(title)
        try:
            self._content_repository.upsert_content(normalize_release(dated, poster_override=poster_url))
        except sqlite3.Error as exc:
            LOGGER.warning("new-to-streaming upsert failed watchmode_id=%s error=%s", title.watchmode_id, exc)
            return False
        LOGGER.debug("new-to-streaming title added watchmode_id=%s", title.watchmode_id)
        return True

    def _call(self, call: Callable[_P, _T], *args: _P.args, **kwargs: _P.kwargs) -> _T:
        try:
            result = call(*args, **kwargs)
        except QuotaExceededError as exc:
            raise _QuotaStop() from exc
        except (CatalogProviderError, CatalogPayloadError):
            self._api_calls += 1
            raise
        self._api_calls += 1
        return result


def _dedupe_releases(queue: Sequence[RawRelease]) -> tuple[list[RawRelease], int]:
    seen_watchmode: set[int] = set()
    seen_imdb: set[str] = set()
    seen_tmdb: set[int] = set()
    unique: list[RawRelease] = []
    duplicates = 0
    for release in queue:
        title = release.title
        if (
            title.watchmode_id in seen_watchmode
            or (title.imdb_id is not None and title.imdb_id in seen_imdb)
            or (title.tmdb_id is not None and title.tmdb_id in seen_tmdb)
        ):
            duplicates += 1
            continue
        seen_watchmode.add(title.watchmode_id)
        if title.imdb_id is not None:
            seen_imdb.add(title.imdb_id)
        if title.tmdb_id is not None:
            seen_tmdb.add(title.tmdb_id)
        unique.append(release)
    return unique, duplicates
