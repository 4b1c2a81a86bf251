from __future__ import annotations

import logging

from backend.catalog_sync.repositories.catalog_quota_repository import (
    CatalogQuotaRepository,
    CatalogQuotaSnapshot,
)
from backend.catalog_sync.telemetry import TelemetryClient

LOGGER = logging.getLogger("catalog_sync.quota")


class QuotaExceededError(RuntimeError):
    def __init__(self, *, month: str, used: int, limit: int, requested: int) -> None:
        super().__init__(
            f"Monthly request limit reached for the primary catalog provider "
            f"({used}/{limit} used in {month}, {requested} requested)."
        )
        self.month = month
        self.used = used
        self.limit = limit
        self.requested = requested


class QuotaTracker:
    """Gate for primary-provider requests against a shared monthly budget.

    The counter lives in storage, so every tracker built over the same database
    (threads, workers, processes) draws from one budget.
    """

    def __init__(
        self,
        *,
        repository: CatalogQuotaRepository,
        monthly_limit: int,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._repository = repository
        self._monthly_limit = max(0, monthly_limit)
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()

    @property
    def monthly_limit(self) -> int:
        return self._monthly_limit

    def reserve(self, requests: int = 1) -> CatalogQuotaSnapshot:
        snapshot = self._repository.try_reserve(
            requests=requests,
            monthly_limit=self._monthly_limit,
        )
        if not snapshot.allowed:
            LOGGER.warning(
                "catalog quota exhausted month=%s used=%s limit=%s requested=%s",
                snapshot.month,
                snapshot.requests_used,
                snapshot.monthly_limit,
                snapshot.requested,
            )
            self._telemetry.emit(
                "catalog.quota.exceeded",
                month=snapshot.month,
                used=snapshot.requests_used,
                limit=snapshot.monthly_limit,
                requested=snapshot.requested,
            )
            raise QuotaExceededError(
                month=snapshot.month,
                used=snapshot.requests_used,
                limit=snapshot.monthly_limit,
                requested=snapshot.requested,
            )
        return snapshot

    def usage(self) -> CatalogQuotaSnapshot:
        return self._repository.get_current_month_usage(monthly_limit=self._monthly_limit)
