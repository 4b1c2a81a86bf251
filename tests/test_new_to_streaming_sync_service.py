from __future__ import annotations

from datetime import UTC, datetime
from urllib.parse import parse_qs, urlparse

from backend.catalog_sync.models.catalog_records import CanonicalContent
from backend.catalog_sync.repositories.catalog_quota_repository import CatalogQuotaRepository
from backend.catalog_sync.repositories.content_repository import ContentRepository
from backend.catalog_sync.repositories.database import Database
from backend.catalog_sync.services.new_to_streaming_sync_service import NewToStreamingSyncService
from backend.catalog_sync.services.quota_tracker import QuotaTracker
from backend.catalog_sync.services.tvdb_artwork_matcher import TvdbArtworkMatcher
from backend.catalog_sync.services.watchmode_client import WatchmodeClient
from conftest import FakeWatchmodeApi, title_payload


def _service(database: Database, *, monthly_limit: int = 100) -> NewToStreamingSyncService:
    tracker = QuotaTracker(repository=CatalogQuotaRepository(database), monthly_limit=monthly_limit)
    return NewToStreamingSyncService(
        catalog_client=WatchmodeClient(api_key="wm-key", quota_tracker=tracker),
        content_repository=ContentRepository(database),
        artwork_matcher=TvdbArtworkMatcher(None),
        source_ids=[203, 99],
    )


def _release(watchmode_id: int, title: str, *, date: str | None, **extra: object) -> dict[str, object]:
    row: dict[str, object] = {
        "id": watchmode_id,
        "title": title,
        "type": "movie",
        "source_release_date": date,
        "source_id": 99,
        "source_name": "Shudder",
    }
    row.update(extra)
    return row


def test_new_to_streaming_stores_recent_titles(
    database: Database,
    watchmode_api: FakeWatchmodeApi,
) -> None:
    watchmode_api.add_title(title_payload(1, "Talk to Me", year=2023, release_date="2023-07-28"))
    watchmode_api.add_title(title_payload(2, "Smile", year=2022))
    watchmode_api.add_title(title_payload(3, "Barbie", year=2023, genres=[4]))
    watchmode_api.search_pages = [[watchmode_api.search_hit(1)]]
    watchmode_api.releases = [
        _release(2, "Smile", date="2024-09-30"),
        _release(3, "Barbie", date="2024-09-29"),
    ]

    summary = _service(database).run()

    assert summary.new_titles_added == 2
    assert summary.duplicates_skipped == 0
    assert summary.total_processed == 2
    assert summary.api_calls_used == 5

    repository = ContentRepository(database)
    searched = repository.find_by_watchmode_id(1)
    released = repository.find_by_watchmode_id(2)
    assert searched is not None
    assert released is not None
    assert searched.content.source_release_date == "2023-07-28"
    assert released.content.source_release_date == "2024-09-30"
    assert repository.find_by_watchmode_id(3) is None

    search_query = parse_qs(urlparse(watchmode_api.urls[0]).query)
    assert search_query["sort_by"] == ["release_date_desc"]
    assert search_query["limit"] == ["15"]
    releases_query = parse_qs(urlparse(watchmode_api.urls[2]).query)
    assert releases_query["types"] == ["movie,tv"]
    assert releases_query["source_ids"] == ["203,99"]


def test_new_to_streaming_dedupes_by_external_ids(
    database: Database,
    watchmode_api: FakeWatchmodeApi,
) -> None:
    watchmode_api.add_title(title_payload(1, "Longlegs", year=2024, imdb_id="tt23468450"))
    watchmode_api.add_title(title_payload(2, "Longlegs (Alt)", year=2024, imdb_id="tt23468450"))
    watchmode_api.add_title(title_payload(3, "Infinity Pool", year=2023, tmdb_id=667216))
    watchmode_api.search_pages = [[watchmode_api.search_hit(1)]]
    watchmode_api.releases = [
        _release(1, "Longlegs", date="2024-10-01"),
        _release(2, "Longlegs (Alt)", date="2024-10-01"),
        _release(3, "Infinity Pool", date="2024-10-02"),
    ]
    ContentRepository(database).upsert_content(
        CanonicalContent(
            watchmode_id=900,
            title="Infinity Pool",
            year=2023,
            content_type="movie",
            description="Stored earlier under another id.",
            poster_url="/posters/default_poster.svg",
            tmdb_id=667216,
        )
    )

    summary = _service(database).run()

    assert summary.total_processed == 4
    assert summary.duplicates_skipped == 3
    assert summary.new_titles_added == 1
    assert ContentRepository(database).count_content() == 2


def test_new_to_streaming_falls_back_to_today_for_release_date(
    database: Database,
    watchmode_api: FakeWatchmodeApi,
) -> None:
    watchmode_api.add_title(title_payload(1, "Undated", year=2024))
    watchmode_api.search_pages = [[watchmode_api.search_hit(1)]]

    _service(database).run()

    stored = ContentRepository(database).find_by_watchmode_id(1)
    assert stored is not None
    assert stored.content.source_release_date == datetime.now(UTC).date().isoformat()


def test_new_to_streaming_stops_calling_when_quota_runs_out(
    database: Database,
    watchmode_api: FakeWatchmodeApi,
) -> None:
    for index in range(1, 5):
        watchmode_api.add_title(title_payload(index, f"Title {index}", year=2024))
    watchmode_api.search_pages = [[watchmode_api.search_hit(index) for index in range(1, 5)]]

    summary = _service(database, monthly_limit=3).run()

    assert summary.api_calls_used == 3
    assert summary.new_titles_added == 2
    assert len(watchmode_api.urls) == 3
    assert not any(path.endswith("/releases/") for path in watchmode_api.paths())


def test_new_to_streaming_skips_titles_that_fail(
    database: Database,
    watchmode_api: FakeWatchmodeApi,
) -> None:
    watchmode_api.add_title(title_payload(1, "Broken", year=2024))
    watchmode_api.add_title(title_payload(2, "Fine", year=2024))
    watchmode_api.search_pages = [[watchmode_api.search_hit(1), watchmode_api.search_hit(2)]]
    watchmode_api.failing_ids.add(1)

    summary = _service(database).run()

    assert summary.new_titles_added == 1
    assert summary.total_processed == 1
    assert ContentRepository(database).find_by_watchmode_id(2) is not None
