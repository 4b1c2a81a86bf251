from __future__ import annotations

from functools import lru_cache

from backend.catalog_sync.config import AppSettings, load_settings
from backend.catalog_sync.repositories.catalog_quota_repository import CatalogQuotaRepository
from backend.catalog_sync.repositories.content_repository import ContentRepository
from backend.catalog_sync.repositories.database import Database
from backend.catalog_sync.services.catalog_sync_service import CatalogSyncService
from backend.catalog_sync.services.new_to_streaming_sync_service import (
    NewToStreamingSyncService,
)
from backend.catalog_sync.services.quota_tracker import QuotaTracker
from backend.catalog_sync.services.tvdb_artwork_matcher import TvdbArtworkMatcher, TvdbClient
from backend.catalog_sync.services.watchmode_client import WatchmodeClient
from backend.catalog_sync.telemetry import TelemetryClient, build_telemetry_client


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_database() -> Database:
    database = Database(get_settings().db_path)
    database.initialize()
    return database


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


@lru_cache(maxsize=1)
def get_content_repository() -> ContentRepository:
    return ContentRepository(get_database())


@lru_cache(maxsize=1)
def get_quota_tracker() -> QuotaTracker:
    return QuotaTracker(
        repository=CatalogQuotaRepository(get_database()),
        monthly_limit=get_settings().watchmode_monthly_request_limit,
        telemetry=get_telemetry(),
    )


@lru_cache(maxsize=1)
def get_catalog_client() -> WatchmodeClient:
    settings = get_settings()
    return WatchmodeClient(
        api_key=settings.watchmode_api_key,
        quota_tracker=get_quota_tracker(),
        base_url=settings.watchmode_base_url,
        http_timeout_seconds=settings.watchmode_http_timeout_seconds,
    )


@lru_cache(maxsize=1)
def get_artwork_matcher() -> TvdbArtworkMatcher:
    settings = get_settings()
    if settings.tvdb_api_key is None:
        return TvdbArtworkMatcher(None)
    return TvdbArtworkMatcher(
        TvdbClient(
            api_key=settings.tvdb_api_key,
            pin=settings.tvdb_pin,
            base_url=settings.tvdb_base_url,
            image_base_url=settings.tvdb_image_base_url,
            http_timeout_seconds=settings.tvdb_http_timeout_seconds,
        )
    )


@lru_cache(maxsize=1)
def get_sync_service() -> CatalogSyncService:
    settings = get_settings()
    return CatalogSyncService(
        catalog_client=get_catalog_client(),
        content_repository=get_content_repository(),
        artwork_matcher=get_artwork_matcher(),
        quota_tracker=get_quota_tracker(),
        platform_source_ids=settings.sync_platform_source_ids,
        genre_ids=settings.sync_genre_ids,
        page_size=settings.sync_page_size,
        max_workers=settings.sync_max_workers,
        fetch_platform_sources=settings.sync_fetch_platform_sources,
        telemetry=get_telemetry(),
    )


@lru_cache(maxsize=1)
def get_new_to_streaming_service() -> NewToStreamingSyncService:
    settings = get_settings()
    return NewToStreamingSyncService(
        catalog_client=get_catalog_client(),
        content_repository=get_content_repository(),
        artwork_matcher=get_artwork_matcher(),
        source_ids=settings.selected_source_ids(),
        genre_ids=settings.sync_genre_ids,
        telemetry=get_telemetry(),
    )


def reset_cached_dependencies() -> None:
    get_new_to_streaming_service.cache_clear()
    get_sync_service.cache_clear()
    get_artwork_matcher.cache_clear()
    get_catalog_client.cache_clear()
    get_quota_tracker.cache_clear()
    get_content_repository.cache_clear()
    get_telemetry.cache_clear()
    get_database.cache_clear()
    get_settings.cache_clear()
