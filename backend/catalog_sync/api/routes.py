from __future__ import annotations

from typing import Annotated, Literal

from fastapi import APIRouter, Depends, HTTPException, Query
from structlog.contextvars import bind_contextvars, reset_contextvars

from backend.catalog_sync.config import AppSettings
from backend.catalog_sync.dependencies import (
    get_content_repository,
    get_new_to_streaming_service,
    get_quota_tracker,
    get_settings,
    get_sync_service,
)
from backend.catalog_sync.models.sync_contracts import (
    ContentItem,
    ContentListResponse,
    ContentPlatformsResponse,
    NewToStreamingResponse,
    PlatformItem,
    QuotaResponse,
    SyncRequest,
    SyncResponse,
    ValidateRequest,
)
from backend.catalog_sync.repositories.content_repository import (
    ContentRepository,
    decade_to_range,
)
from backend.catalog_sync.services.catalog_sync_service import CatalogSyncService, SyncOptions
from backend.catalog_sync.services.new_to_streaming_sync_service import (
    NewToStreamingSyncService,
)
from backend.catalog_sync.services.quota_tracker import QuotaTracker

router = APIRouter()


def _sync_options(request: SyncRequest, settings: AppSettings) -> SyncOptions:
    platforms = (
        request.selected_platforms
        if request.selected_platforms
        else settings.sync_default_platforms
    )
    unknown = [name for name in platforms if name not in settings.sync_platform_source_ids]
    if unknown:
        raise HTTPException(
            status_code=400,
            detail=f"Unknown platforms: {', '.join(unknown)}",
        )
    titles_to_sync_count = (
        request.titles_to_sync_count
        if request.titles_to_sync_count is not None
        else settings.sync_default_titles_count
    )
    return SyncOptions(
        titles_to_sync_count=titles_to_sync_count,
        selected_platforms=tuple(platforms),
        min_rating=request.min_rating,
    )


@router.post(
    "/admin/catalog/sync",
    response_model=SyncResponse,
    tags=["admin"],
    operation_id="catalog_sync_run",
)
def catalog_sync_run(
    request: SyncRequest,
    settings: Annotated[AppSettings, Depends(get_settings)],
    service: Annotated[CatalogSyncService, Depends(get_sync_service)],
) -> SyncResponse:
    options = _sync_options(request, settings)
    context_tokens = bind_contextvars(sync_trigger="admin_api")
    try:
        return SyncResponse.from_result(service.run(options))
    finally:
        reset_contextvars(**context_tokens)


@router.post(
    "/admin/catalog/validate",
    response_model=SyncResponse,
    tags=["admin"],
    operation_id="catalog_validate_existing",
)
def catalog_validate_existing(
    settings: Annotated[AppSettings, Depends(get_settings)],
    service: Annotated[CatalogSyncService, Depends(get_sync_service)],
    request: ValidateRequest | None = None,
) -> SyncResponse:
    max_titles = (
        request.max_titles
        if request is not None and request.max_titles is not None
        else settings.sync_validate_batch_size
    )
    return SyncResponse.from_result(service.validate_existing(max_titles=max_titles))


@router.post(
    "/admin/catalog/new-to-streaming",
    response_model=NewToStreamingResponse,
    tags=["admin"],
    operation_id="catalog_new_to_streaming",
)
def catalog_new_to_streaming(
    service: Annotated[NewToStreamingSyncService, Depends(get_new_to_streaming_service)],
) -> NewToStreamingResponse:
    return NewToStreamingResponse.from_summary(service.run())


@router.get(
    "/admin/catalog/quota",
    response_model=QuotaResponse,
    tags=["admin"],
    operation_id="catalog_quota_usage",
)
def catalog_quota_usage(
    quota_tracker: Annotated[QuotaTracker, Depends(get_quota_tracker)],
) -> QuotaResponse:
    return QuotaResponse.from_snapshot(quota_tracker.usage())


@router.get(
    "/catalog/content",
    response_model=ContentListResponse,
    tags=["catalog"],
    operation_id="catalog_content_list",
)
def catalog_content_list(
    repository: Annotated[ContentRepository, Depends(get_content_repository)],
    decade: str | None = None,
    content_type: Annotated[Literal["movie", "series"] | None, Query(alias="type")] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
    include_hidden: bool = False,
) -> ContentListResponse:
    if decade is not None and decade_to_range(decade) is None:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid decade {decade!r}; expected a label like 1980s.",
        )
    rows = repository.list_content(
        decade=decade,
        content_type=content_type,
        limit=limit,
        include_hidden=include_hidden,
    )
    return ContentListResponse(
        decade=decade,
        items=[ContentItem.from_stored(row) for row in rows],
    )


@router.get(
    "/catalog/content/{watchmode_id}/platforms",
    response_model=ContentPlatformsResponse,
    tags=["catalog"],
    operation_id="catalog_content_platforms",
)
def catalog_content_platforms(
    watchmode_id: int,
    repository: Annotated[ContentRepository, Depends(get_content_repository)],
) -> ContentPlatformsResponse:
    if repository.find_by_watchmode_id(watchmode_id) is None:
        raise HTTPException(status_code=404, detail=f"Unknown title {watchmode_id}.")
    return ContentPlatformsResponse(
        watchmode_id=watchmode_id,
        platforms=[
            PlatformItem.from_platform(platform)
            for platform in repository.list_platforms(watchmode_id)
        ],
    )
