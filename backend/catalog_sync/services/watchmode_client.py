from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Literal, cast
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from backend.catalog_sync.models.catalog_records import (
    CatalogPayloadError,
    RawTitle,
    ReleaseRow,
    SearchHit,
    TitleSearchPage,
    TitleSource,
    parse_raw_title,
    parse_release_rows,
    parse_search_hits,
    parse_search_page,
    parse_title_sources,
)
from backend.catalog_sync.services.quota_tracker import QuotaTracker

LOGGER = logging.getLogger("catalog_sync.watchmode")
DEFAULT_WATCHMODE_BASE_URL = "https://api.watchmode.com/v1"


class CatalogProviderError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class TitleSearchFilters:
    genre_ids: Sequence[int] = ()
    source_ids: Sequence[int] = ()
    title_type: Literal["movie", "tv"] | None = None
    minimum_rating: float | None = None
    sort_by: str | None = None
    page: int | None = None
    limit: int | None = None


@dataclass(frozen=True)
class ReleaseFilters:
    source_ids: Sequence[int] = ()
    change_type: str | None = None
    types: str | None = None
    days_back: int | None = None
    limit: int | None = None


class WatchmodeClient:
    """Typed wrapper over the Watchmode v1 API.

    Every request reserves one unit of the monthly quota before it is sent;
    `QuotaExceededError` from the tracker propagates unchanged. Non-2xx
    responses raise `CatalogProviderError`. Nothing is retried here.
    """

    def __init__(
        self,
        *,
        api_key: str | None,
        quota_tracker: QuotaTracker,
        base_url: str = DEFAULT_WATCHMODE_BASE_URL,
        http_timeout_seconds: float = 10.0,
    ) -> None:
        normalized_key = api_key.strip() if isinstance(api_key, str) else ""
        if not normalized_key:
            raise ValueError("A Watchmode API key is required to build the catalog client.")
        self._api_key = normalized_key
        self._quota_tracker = quota_tracker
        self._base_url = base_url.rstrip("/")
        self._http_timeout_seconds = max(0.5, http_timeout_seconds)

    def search_titles(self, filters: TitleSearchFilters) -> TitleSearchPage:
        params: dict[str, str] = {}
        if filters.genre_ids:
            params["genres"] = _join_ids(filters.genre_ids)
        if filters.source_ids:
            params["source_ids"] = _join_ids(filters.source_ids)
        if filters.title_type:
            params["types"] = filters.title_type
        if filters.minimum_rating:
            params["critic_score_low"] = _format_number(filters.minimum_rating)
            params["user_rating_low"] = _format_number(filters.minimum_rating)
        if filters.sort_by:
            params["sort_by"] = filters.sort_by
        if filters.page:
            params["page"] = str(filters.page)
        if filters.limit:
            params["limit"] = str(filters.limit)

        payload = self._get_object("/list-titles/", params)
        return parse_search_page(payload)

    def get_title_details(self, watchmode_id: int) -> RawTitle:
        payload = self._get_object(f"/title/{watchmode_id}/details/", {})
        return parse_raw_title(payload)

    def get_title_sources(self, watchmode_id: int) -> list[TitleSource]:
        return parse_title_sources(self._request(f"/title/{watchmode_id}/sources/", {}))

    def get_recent_releases(self, filters: ReleaseFilters | None = None) -> list[ReleaseRow]:
        active = filters if filters is not None else ReleaseFilters()
        params: dict[str, str] = {}
        if active.source_ids:
            params["source_ids"] = _join_ids(active.source_ids)
        if active.change_type:
            params["change_type"] = active.change_type
        if active.types:
            params["types"] = active.types
        if active.days_back:
            params["days_back"] = str(active.days_back)
        if active.limit:
            params["limit"] = str(active.limit)

        payload = self._get_object("/releases/", params)
        return parse_release_rows(payload.get("releases"))

    def search_by_imdb_id(self, imdb_id: str) -> list[SearchHit]:
        payload = self._get_object("/autocomplete-search/", {"imdb_id": imdb_id})
        return parse_search_hits(payload.get("title_results"))

    def search_by_name(
        self,
        name: str,
        title_type: Literal["movie", "tv"] | None = None,
    ) -> list[SearchHit]:
        params = {"search_value": name}
        if title_type:
            params["search_type"] = title_type
        payload = self._get_object("/autocomplete-search/", params)
        return parse_search_hits(payload.get("title_results"))

    def _get_object(self, endpoint: str, params: dict[str, str]) -> dict[str, Any]:
        raw = self._request(endpoint, params)
        if not isinstance(raw, dict):
            raise CatalogPayloadError(f"Watchmode {endpoint} returned a non-object body.")
        payload: dict[str, Any] = {}
        for key, value in cast(dict[object, object], raw).items():
            if isinstance(key, str):
                payload[key] = value
        return payload

    def _request(self, endpoint: str, params: dict[str, str]) -> object:
        self._quota_tracker.reserve(1)
        query = urlencode({"apiKey": self._api_key, **params})
        url = f"{self._base_url}{endpoint}?{query}"
        LOGGER.debug("watchmode request endpoint=%s params=%s", endpoint, sorted(params))
        return _request_json(url, timeout_seconds=self._http_timeout_seconds)


def _request_json(url: str, *, timeout_seconds: float) -> object:
    request = Request(url, headers={"Accept": "application/json"}, method="GET")
    try:
        with urlopen(request, timeout=timeout_seconds) as response:
            raw_body = response.read().decode("utf-8", errors="replace")
    except HTTPError as exc:
        raise CatalogProviderError(
            f"Watchmode API error: {exc.code} {exc.reason}",
            status_code=exc.code,
        ) from exc
    except (URLError, TimeoutError, OSError) as exc:
        reason = exc.reason if isinstance(exc, URLError) else exc
        raise CatalogProviderError(
            f"Watchmode request failed: {reason}",
            status_code=None,
        ) from exc

    try:
        return json.loads(raw_body)
    except json.JSONDecodeError as exc:
        raise CatalogPayloadError("Watchmode returned a body that is not valid JSON.") from exc


def _join_ids(values: Sequence[int]) -> str:
    return ",".join(str(value) for value in values)


def _format_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)
