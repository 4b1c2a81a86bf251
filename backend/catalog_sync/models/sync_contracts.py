from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from backend.catalog_sync.models.catalog_records import ContentPlatform, StoredContent, SyncResult
from backend.catalog_sync.repositories.catalog_quota_repository import CatalogQuotaSnapshot
from backend.catalog_sync.services.new_to_streaming_sync_service import NewToStreamingSummary


class SyncRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    titles_to_sync_count: int | None = Field(default=None, ge=0, le=1000)
    selected_platforms: list[str] | None = None
    min_rating: float = Field(default=0.0, ge=0.0, le=10.0)


class ValidateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_titles: int | None = Field(default=None, ge=1, le=1000)


class TitleOutcomeModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str
    year: int | None
    action: Literal["added", "skipped_existing", "filtered_out", "error"]
    reason: str | None = None


class SearchStatsModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    total_titles_found: int
    pages_searched: int
    duplicates_skipped: int
    filtered_out: int


class SyncResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    state: Literal["done", "aborted"]
    new_titles_added: int
    titles_validated: int
    titles_removed: int
    requests_used: int
    errors: list[str]
    summary: str
    titles_processed: list[TitleOutcomeModel]
    search_stats: SearchStatsModel

    @classmethod
    def from_result(cls, result: SyncResult) -> SyncResponse:
        return cls(
            state=result.state,
            new_titles_added=result.new_titles_added,
            titles_validated=result.titles_validated,
            titles_removed=result.titles_removed,
            requests_used=result.requests_used,
            errors=list(result.errors),
            summary=result.summary,
            titles_processed=[
                TitleOutcomeModel(
                    title=outcome.title,
                    year=outcome.year,
                    action=outcome.action,
                    reason=outcome.reason,
                )
                for outcome in result.titles_processed
            ],
            search_stats=SearchStatsModel(
                total_titles_found=result.search_stats.total_titles_found,
                pages_searched=result.search_stats.pages_searched,
                duplicates_skipped=result.search_stats.duplicates_skipped,
                filtered_out=result.search_stats.filtered_out,
            ),
        )


class NewToStreamingResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    new_titles_added: int
    duplicates_skipped: int
    total_processed: int
    api_calls_used: int
    timestamp: str

    @classmethod
    def from_summary(cls, summary: NewToStreamingSummary) -> NewToStreamingResponse:
        return cls(
            new_titles_added=summary.new_titles_added,
            duplicates_skipped=summary.duplicates_skipped,
            total_processed=summary.total_processed,
            api_calls_used=summary.api_calls_used,
            timestamp=summary.timestamp,
        )


class QuotaResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    month: str
    requests_used: int
    monthly_limit: int
    remaining: int

    @classmethod
    def from_snapshot(cls, snapshot: CatalogQuotaSnapshot) -> QuotaResponse:
        return cls(
            month=snapshot.month,
            requests_used=snapshot.requests_used,
            monthly_limit=snapshot.monthly_limit,
            remaining=snapshot.remaining,
        )


class ContentItem(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: int
    watchmode_id: int
    title: str
    year: int
    end_year: int | None
    content_type: Literal["movie", "series"]
    description: str
    poster_url: str
    runtime_minutes: int | None
    average_rating: float | None
    critics_rating: float | None
    users_rating: float | None
    imdb_id: str | None
    tmdb_id: int | None
    original_title: str | None
    release_date: str | None
    us_rating: str | None
    original_language: str | None
    genres: list[int]
    source_release_date: str | None
    hidden: bool
    created_at: str
    updated_at: str

    @classmethod
    def from_stored(cls, stored: StoredContent) -> ContentItem:
        content = stored.content
        return cls(
            id=stored.id,
            watchmode_id=content.watchmode_id,
            title=content.title,
            year=content.year,
            end_year=content.end_year,
            content_type=content.content_type,
            description=content.description,
            poster_url=content.poster_url,
            runtime_minutes=content.runtime_minutes,
            average_rating=content.average_rating,
            critics_rating=content.critics_rating,
            users_rating=content.users_rating,
            imdb_id=content.imdb_id,
            tmdb_id=content.tmdb_id,
            original_title=content.original_title,
            release_date=content.release_date,
            us_rating=content.us_rating,
            original_language=content.original_language,
            genres=list(content.genres),
            source_release_date=content.source_release_date,
            hidden=content.hidden,
            created_at=stored.created_at,
            updated_at=stored.updated_at,
        )


class ContentListResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    decade: str | None
    items: list[ContentItem]


class PlatformItem(BaseModel):
    model_config = ConfigDict(extra="forbid")

    source_id: int
    name: str | None
    web_url: str
    format: str | None
    seasons: int | None
    episodes: int | None

    @classmethod
    def from_platform(cls, platform: ContentPlatform) -> PlatformItem:
        return cls(
            source_id=platform.source_id,
            name=platform.name,
            web_url=platform.web_url,
            format=platform.format,
            seasons=platform.seasons,
            episodes=platform.episodes,
        )


class ContentPlatformsResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    watchmode_id: int
    platforms: list[PlatformItem]
