from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from threading import Event, Lock
from typing import Literal, ParamSpec, TypeVar
from uuid import uuid4

from structlog.contextvars import bind_contextvars, reset_contextvars

from backend.catalog_sync.models.catalog_records import (
    CatalogPayloadError,
    ContentPlatform,
    RawTitle,
    SearchHit,
    SearchStats,
    SyncResult,
    SyncState,
    TitleOutcome,
)
from backend.catalog_sync.repositories.content_repository import ContentRepository
from backend.catalog_sync.services.content_normalizer import (
    calculate_average_rating,
    normalize_title,
)
from backend.catalog_sync.services.quota_tracker import QuotaExceededError, QuotaTracker
from backend.catalog_sync.services.tvdb_artwork_matcher import TvdbArtworkMatcher
from backend.catalog_sync.services.watchmode_client import (
    CatalogProviderError,
    TitleSearchFilters,
    WatchmodeClient,
)
from backend.catalog_sync.telemetry import TelemetryClient

LOGGER = logging.getLogger("catalog_sync.sync")
DEFAULT_SELECTED_PLATFORMS: tuple[str, ...] = (
    "Netflix",
    "Amazon Prime Video",
    "Hulu",
    "HBO Max",
    "Shudder",
)
QUOTA_EXHAUSTED_MESSAGE = "Monthly request limit reached for the primary catalog provider."
SyncPhase = Literal["searching", "enriching", "upserting", "done", "aborted"]

_P = ParamSpec("_P")
_T = TypeVar("_T")


@dataclass(frozen=True)
class SyncOptions:
    titles_to_sync_count: int = 25
    selected_platforms: tuple[str, ...] = DEFAULT_SELECTED_PLATFORMS
    min_rating: float = 0.0


class _RunLedger:
    """Mutable accumulator for one run; shared by enrichment workers."""

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        self.phase: SyncPhase = "searching"
        self.aborted = Event()
        self._lock = Lock()
        self._errors: list[str] = []
        self._requests_used = 0
        self._total_titles_found = 0
        self._pages_searched = 0
        self._duplicates_skipped = 0
        self._filtered_out = 0
        self.validated = 0
        self.removed = 0

    def enter(self, phase: SyncPhase) -> None:
        LOGGER.debug("catalog sync phase run_id=%s from=%s to=%s", self.run_id, self.phase, phase)
        self.phase = phase

    def count_request(self) -> None:
        with self._lock:
            self._requests_used += 1

    def add_error(self, message: str) -> None:
        with self._lock:
            self._errors.append(message)

    def abort(self, reason: str) -> None:
        with self._lock:
            if self.aborted.is_set():
                return
            self.aborted.set()
            self._errors.append(f"Sync aborted: {reason}")
        self.enter("aborted")

    @property
    def pages_searched(self) -> int:
        with self._lock:
            return self._pages_searched

    def record_page(self, titles_found: int) -> None:
        with self._lock:
            self._pages_searched += 1
            self._total_titles_found += titles_found

    def record_duplicate(self) -> None:
        with self._lock:
            self._duplicates_skipped += 1

    def record_filtered(self) -> None:
        with self._lock:
            self._filtered_out += 1

    def build_result(self, outcomes: Sequence[TitleOutcome]) -> SyncResult:
        state: SyncState = "aborted" if self.aborted.is_set() else "done"
        if state == "done":
            self.enter("done")
        with self._lock:
            stats = SearchStats(
                total_titles_found=self._total_titles_found,
                pages_searched=self._pages_searched,
                duplicates_skipped=self._duplicates_skipped,
                filtered_out=self._filtered_out,
            )
            errors = tuple(self._errors)
            requests_used = self._requests_used

        added = sum(1 for outcome in outcomes if outcome.action == "added")
        failed = sum(1 for outcome in outcomes if outcome.action == "error")
        return SyncResult(
            state=state,
            new_titles_added=added,
            titles_validated=self.validated,
            titles_removed=self.removed,
            requests_used=requests_used,
            errors=errors,
            summary=_summarize(
                added=added,
                validated=self.validated,
                removed=self.removed,
                failed_titles=failed,
                stats=stats,
                requests_used=requests_used,
                error_count=len(errors),
            ),
            titles_processed=tuple(outcomes),
            search_stats=stats,
        )


class CatalogSyncService:
    def __init__(
        self,
        *,
        catalog_client: WatchmodeClient,
        content_repository: ContentRepository,
        artwork_matcher: TvdbArtworkMatcher,
        quota_tracker: QuotaTracker,
        platform_source_ids: Mapping[str, int],
        genre_ids: Sequence[int] = (11,),
        page_size: int = 250,
        max_workers: int = 1,
        fetch_platform_sources: bool = False,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._client = catalog_client
        self._content_repository = content_repository
        self._artwork_matcher = artwork_matcher
        self._quota_tracker = quota_tracker
        self._platform_source_ids = dict(platform_source_ids)
        self._genre_ids = tuple(genre_ids)
        self._page_size = max(1, page_size)
        self._max_workers = max(1, max_workers)
        self._fetch_platform_sources = fetch_platform_sources
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()

    def run(self, options: SyncOptions | None = None) -> SyncResult:
        active = options if options is not None else SyncOptions()
        ledger = _RunLedger(run_id=uuid4().hex[:12])
        context_tokens = bind_contextvars(sync_run_id=ledger.run_id)
        try:
            with self._telemetry.span(
                "catalog.sync",
                run_id=ledger.run_id,
                titles_to_sync_count=active.titles_to_sync_count,
                platforms=len(active.selected_platforms),
                min_rating=active.min_rating,
            ) as span:
                result = self._run(ledger, active)
                span.set(
                    state=result.state,
                    added=result.new_titles_added,
                    requests_used=result.requests_used,
                    errors=len(result.errors),
                )
        finally:
            reset_contextvars(**context_tokens)

        LOGGER.info(
            "catalog sync finished run_id=%s state=%s summary=%s",
            ledger.run_id,
            result.state,
            result.summary,
        )
        return result

    def validate_existing(self, *, max_titles: int = 50) -> SyncResult:
        """Re-check stored titles against the provider, removing ones it no longer knows."""
        ledger = _RunLedger(run_id=uuid4().hex[:12])
        ledger.enter("enriching")
        outcomes: list[TitleOutcome] = []
        try:
            stored_rows = self._content_repository.list_content(
                limit=max(1, max_titles),
                oldest_first=True,
                include_hidden=True,
            )
        except sqlite3.Error as exc:
            ledger.abort(f"Unable to read stored content: {exc}")
            return ledger.build_result(outcomes)

        for stored in stored_rows:
            content = stored.content
            try:
                self._counted(ledger, self._client.get_title_details, content.watchmode_id)
                ledger.validated += 1
            except QuotaExceededError as exc:
                ledger.abort(str(exc))
                break
            except CatalogProviderError as exc:
                if exc.status_code == 404:
                    try:
                        self._content_repository.delete_by_watchmode_id(content.watchmode_id)
                    except sqlite3.Error as delete_exc:
                        outcomes.append(_error_outcome(content.title, content.year, delete_exc))
                        continue
                    ledger.removed += 1
                    LOGGER.info(
                        "removed content missing upstream watchmode_id=%s title=%s",
                        content.watchmode_id,
                        content.title,
                    )
                else:
                    outcomes.append(_error_outcome(content.title, content.year, exc))
            except CatalogPayloadError as exc:
                outcomes.append(_error_outcome(content.title, content.year, exc))

        return ledger.build_result(outcomes)

    def _run(self, ledger: _RunLedger, options: SyncOptions) -> SyncResult:
        try:
            usage = self._quota_tracker.usage()
            # Only start titles the remaining budget can carry through enrichment.
            max_titles = usage.remaining // self._requests_per_title()
            if max_titles <= 0:
                ledger.abort(QUOTA_EXHAUSTED_MESSAGE)
                return ledger.build_result([])

            cap = min(max(0, options.titles_to_sync_count), max_titles)
            if cap < options.titles_to_sync_count:
                LOGGER.info(
                    "catalog sync capped by quota run_id=%s requested=%s cap=%s remaining=%s",
                    ledger.run_id,
                    options.titles_to_sync_count,
                    cap,
                    usage.remaining,
                )
            candidates = self._search(ledger, options, cap=cap)
        except QuotaExceededError as exc:
            ledger.abort(str(exc))
            return ledger.build_result([])
        except sqlite3.Error as exc:
            LOGGER.exception("catalog sync storage failure run_id=%s", ledger.run_id)
            ledger.abort(f"Storage unavailable: {exc}")
            return ledger.build_result([])

        ledger.enter("enriching")
        outcomes = self._enrich_all(ledger, candidates, min_rating=options.min_rating)
        return ledger.build_result(outcomes)

    def _requests_per_title(self) -> int:
        return 2 if self._fetch_platform_sources else 1

    def _search(self, ledger: _RunLedger, options: SyncOptions, *, cap: int) -> list[SearchHit]:
        source_ids = [
            self._platform_source_ids[name]
            for name in options.selected_platforms
            if name in self._platform_source_ids
        ]
        candidates: list[SearchHit] = []
        seen_ids: set[int] = set()
        new_candidates = 0
        page = 1

        while new_candidates < cap:
            filters = TitleSearchFilters(
                genre_ids=self._genre_ids,
                source_ids=source_ids,
                minimum_rating=options.min_rating or None,
                sort_by="popularity_desc",
                page=page,
                limit=self._page_size,
            )
            try:
                search_page = self._counted(ledger, self._client.search_titles, filters)
            except (CatalogProviderError, CatalogPayloadError) as exc:
                LOGGER.warning("title search failed run_id=%s page=%s error=%s", ledger.run_id, page, exc)
                ledger.add_error(f"Title search failed on page {page}: {exc}")
                break

            ledger.record_page(len(search_page.titles))
            if not search_page.titles:
                break

            for hit in search_page.titles:
                if new_candidates >= cap:
                    break
                if hit.watchmode_id in seen_ids:
                    ledger.record_duplicate()
                    continue
                seen_ids.add(hit.watchmode_id)
                candidates.append(hit)
                # Stored titles are reported but do not use up the per-run title budget.
                if self._content_repository.find_by_watchmode_id(hit.watchmode_id) is None:
                    new_candidates += 1

            if page >= search_page.total_pages:
                break
            page += 1

        LOGGER.info(
            "catalog search complete run_id=%s candidates=%s new=%s pages=%s",
            ledger.run_id,
            len(candidates),
            new_candidates,
            ledger.pages_searched,
        )
        return candidates

    def _enrich_all(
        self,
        ledger: _RunLedger,
        candidates: list[SearchHit],
        *,
        min_rating: float,
    ) -> list[TitleOutcome]:
        if self._max_workers == 1 or len(candidates) <= 1:
            results = [self._process_candidate(ledger, hit, min_rating) for hit in candidates]
        else:
            with ThreadPoolExecutor(
                max_workers=self._max_workers,
                thread_name_prefix="catalog-sync",
            ) as executor:
                futures = [
                    executor.submit(self._process_candidate, ledger, hit, min_rating)
                    for hit in candidates
                ]
                results = [future.result() for future in futures]
        # Candidate order, not completion order; titles never started after an abort are dropped.
        return [outcome for outcome in results if outcome is not None]

    def _process_candidate(
        self,
        ledger: _RunLedger,
        hit: SearchHit,
        min_rating: float,
    ) -> TitleOutcome | None:
        if ledger.aborted.is_set():
            return None
        try:
            if self._content_repository.find_by_watchmode_id(hit.watchmode_id) is not None:
                return TitleOutcome(
                    title=hit.title,
                    year=hit.year,
                    action="skipped_existing",
                    reason="Already in database",
                )

            details = self._counted(ledger, self._client.get_title_details, hit.watchmode_id)
            average_rating = calculate_average_rating(details.critic_score, details.user_rating)
            if min_rating > 0 and (average_rating is None or average_rating < min_rating):
                ledger.record_filtered()
                return TitleOutcome(
                    title=hit.title,
                    year=hit.year,
                    action="filtered_out",
                    reason=(
                        f"Average rating {_format_rating(average_rating)} "
                        f"is below minimum {min_rating}"
                    ),
                )

            platforms = (
                self._platform_sources(ledger, details) if self._fetch_platform_sources else []
            )
            poster_url = self._artwork_matcher.find_poster_url(details)
            content = normalize_title(details, poster_override=poster_url)
            stored = self._content_repository.upsert_content(content)
        except QuotaExceededError as exc:
            ledger.abort(str(exc))
            return _error_outcome(hit.title, hit.year, exc)
        except (CatalogProviderError, CatalogPayloadError) as exc:
            LOGGER.warning(
                "title enrichment failed run_id=%s watchmode_id=%s error=%s",
                ledger.run_id,
                hit.watchmode_id,
                exc,
            )
            return _error_outcome(hit.title, hit.year, exc)
        except sqlite3.Error as exc:
            LOGGER.warning(
                "title upsert failed run_id=%s watchmode_id=%s error=%s",
                ledger.run_id,
                hit.watchmode_id,
                exc,
            )
            return _error_outcome(hit.title, hit.year, exc, prefix="Failed to store title")
        except (ValueError, OverflowError) as exc:
            LOGGER.warning(
                "title normalization failed run_id=%s watchmode_id=%s error=%s",
                ledger.run_id,
                hit.watchmode_id,
                exc,
            )
            return _error_outcome(hit.title, hit.year, exc, prefix="Invalid title data")

        if platforms:
            self._store_platforms(ledger, stored.id, hit.watchmode_id, platforms)

        LOGGER.debug("title added run_id=%s watchmode_id=%s", ledger.run_id, hit.watchmode_id)
        return TitleOutcome(title=hit.title, year=hit.year, action="added")

    def _platform_sources(self, ledger: _RunLedger, details: RawTitle) -> list[ContentPlatform]:
        # Availability is best effort; a title is still stored without it.
        try:
            sources = self._counted(ledger, self._client.get_title_sources, details.watchmode_id)
        except QuotaExceededError as exc:
            ledger.abort(str(exc))
            return []
        except (CatalogProviderError, CatalogPayloadError) as exc:
            LOGGER.info(
                "title sources unavailable run_id=%s watchmode_id=%s error=%s",
                ledger.run_id,
                details.watchmode_id,
                exc,
            )
            return []

        known_source_ids = set(self._platform_source_ids.values())
        return [
            ContentPlatform(
                source_id=source.source_id,
                name=source.name,
                web_url=source.web_url,
                format=source.format,
                seasons=source.seasons,
                episodes=source.episodes,
            )
            for source in sources
            if source.web_url
            and source.source_type == "sub"
            and source.region == "US"
            and source.source_id in known_source_ids
        ]

    def _store_platforms(
        self,
        ledger: _RunLedger,
        content_id: int,
        watchmode_id: int,
        platforms: list[ContentPlatform],
    ) -> None:
        try:
            self._content_repository.replace_platforms(content_id, platforms)
        except sqlite3.Error as exc:
            LOGGER.warning(
                "platform upsert failed run_id=%s watchmode_id=%s error=%s",
                ledger.run_id,
                watchmode_id,
                exc,
            )

    def _counted(
        self,
        ledger: _RunLedger,
        call: Callable[_P, _T],
        *args: _P.args,
        **kwargs: _P.kwargs,
    ) -> _T:
        # A refused reservation sends nothing; any other outcome spent one request.
        try:
            result = call(*args, **kwargs)
        except QuotaExceededError:
            raise
        except (CatalogProviderError, CatalogPayloadError):
            ledger.count_request()
            raise
        ledger.count_request()
        return result


def _error_outcome(
    title: str,
    year: int | None,
    exc: Exception,
    *,
    prefix: str | None = None,
) -> TitleOutcome:
    reason = f"{prefix}: {exc}" if prefix else str(exc)
    return TitleOutcome(title=title, year=year, action="error", reason=reason)


def _format_rating(value: float | None) -> str:
    return "unknown" if value is None else f"{value:.1f}"


def _summarize(
    *,
    added: int,
    validated: int,
    removed: int,
    failed_titles: int,
    stats: SearchStats,
    requests_used: int,
    error_count: int,
) -> str:
    parts: list[str] = []
    if added > 0:
        parts.append(f"{added} new content items added")
    if validated > 0:
        parts.append(f"{validated} items validated")
    if removed > 0:
        parts.append(f"{removed} items removed")
    if stats.duplicates_skipped > 0:
        parts.append(f"{stats.duplicates_skipped} duplicates skipped")
    if stats.filtered_out > 0:
        parts.append(f"{stats.filtered_out} filtered out")
    if failed_titles > 0:
        parts.append(f"{failed_titles} titles failed")
    if requests_used > 0:
        parts.append(f"{requests_used} API requests used")
    if stats.pages_searched > 0:
        parts.append(f"{stats.pages_searched} pages searched")
    if error_count > 0:
        parts.append(f"{error_count} errors occurred")
    return ", ".join(parts) + "." if parts else "No changes made."
