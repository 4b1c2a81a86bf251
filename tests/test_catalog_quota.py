from __future__ import annotations

from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest

from backend.catalog_sync.repositories.catalog_quota_repository import CatalogQuotaRepository
from backend.catalog_sync.repositories.common import utc_month_key
from backend.catalog_sync.repositories.database import Database
from backend.catalog_sync.services.quota_tracker import QuotaExceededError, QuotaTracker
from backend.catalog_sync.telemetry import TelemetryClient


class _CaptureSink:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self.events.append((event_name, dict(attributes)))


def test_quota_repository_blocks_after_monthly_limit(database: Database) -> None:
    repository = CatalogQuotaRepository(database)

    first = repository.try_reserve(requests=1, monthly_limit=2)
    second = repository.try_reserve(requests=1, monthly_limit=2)
    third = repository.try_reserve(requests=1, monthly_limit=2)

    assert first.allowed is True
    assert second.allowed is True
    assert third.allowed is False
    assert third.requests_used == 2
    assert third.remaining == 0


def test_quota_repository_refuses_batch_that_would_cross_limit(database: Database) -> None:
    repository = CatalogQuotaRepository(database)
    repository.try_reserve(requests=3, monthly_limit=5)

    refused = repository.try_reserve(requests=3, monthly_limit=5)
    granted = repository.try_reserve(requests=2, monthly_limit=5)

    assert refused.allowed is False
    assert refused.requests_used == 3
    assert granted.allowed is True
    assert granted.requests_used == 5


def test_quota_repository_reports_zero_for_fresh_month(database: Database) -> None:
    snapshot = CatalogQuotaRepository(database).get_current_month_usage(monthly_limit=1000)

    assert snapshot.month == utc_month_key()
    assert snapshot.requests_used == 0
    assert snapshot.remaining == 1000


def test_quota_repository_zero_limit_refuses_everything(database: Database) -> None:
    snapshot = CatalogQuotaRepository(database).try_reserve(requests=1, monthly_limit=0)

    assert snapshot.allowed is False
    assert snapshot.requests_used == 0


def test_utc_month_key_uses_utc_calendar_month() -> None:
    assert utc_month_key(datetime(2024, 1, 31, 23, 59, tzinfo=UTC)) == "2024-01"
    assert utc_month_key(datetime(2024, 2, 1, 0, 0, tzinfo=UTC)) == "2024-02"


def test_concurrent_reservations_grant_exactly_the_remaining_budget(tmp_path: Path) -> None:
    database = Database(tmp_path / "state.db")
    database.initialize()
    repository = CatalogQuotaRepository(database)
    repository.try_reserve(requests=9, monthly_limit=10)

    def _reserve() -> bool:
        # Each thread gets its own tracker; the shared state is the database.
        tracker = QuotaTracker(repository=CatalogQuotaRepository(database), monthly_limit=10)
        try:
            tracker.reserve(1)
        except QuotaExceededError:
            return False
        return True

    with ThreadPoolExecutor(max_workers=8) as executor:
        results = list(executor.map(lambda _: _reserve(), range(8)))

    assert results.count(True) == 1
    assert repository.get_current_month_usage(monthly_limit=10).requests_used == 10


def test_quota_tracker_raises_and_emits_telemetry_when_exhausted(database: Database) -> None:
    sink = _CaptureSink()
    tracker = QuotaTracker(
        repository=CatalogQuotaRepository(database),
        monthly_limit=1,
        telemetry=TelemetryClient(enabled=True, sink=sink),
    )
    tracker.reserve()

    with pytest.raises(QuotaExceededError) as exc_info:
        tracker.reserve()

    assert exc_info.value.used == 1
    assert exc_info.value.limit == 1
    assert "Monthly request limit reached" in str(exc_info.value)
    assert [name for name, _ in sink.events] == ["catalog.quota.exceeded"]
    assert sink.events[0][1]["limit"] == 1
    assert tracker.usage().requests_used == 1


def test_quota_is_shared_across_trackers_on_one_database(database: Database) -> None:
    first = QuotaTracker(repository=CatalogQuotaRepository(database), monthly_limit=2)
    second = QuotaTracker(repository=CatalogQuotaRepository(database), monthly_limit=2)

    first.reserve()
    second.reserve()

    with pytest.raises(QuotaExceededError):
        first.reserve()
