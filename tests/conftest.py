from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient

from backend.catalog_sync.dependencies import reset_cached_dependencies
from backend.catalog_sync.main import create_app
from backend.catalog_sync.repositories.database import Database
from backend.catalog_sync.services.watchmode_client import CatalogProviderError


def title_payload(
    watchmode_id: int,
    title: str,
    *,
    year: int = 1980,
    title_type: str = "movie",
    critic_score: float | None = 70,
    user_rating: float | None = 7.0,
    genres: list[int] | None = None,
    **extra: Any,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": watchmode_id,
        "title": title,
        "year": year,
        "type": title_type,
        "critic_score": critic_score,
        "user_rating": user_rating,
        "genres": genres if genres is not None else [11],
        "plot_overview": f"{title} overview.",
        "poster": f"https://cdn.watchmode.com/posters/{watchmode_id}_poster_w185.jpg",
    }
    payload.update(extra)
    return payload


class FakeWatchmodeApi:
    """Stands in for the Watchmode HTTP endpoints behind `_request_json`."""

    def __init__(self) -> None:
        self.titles: dict[int, dict[str, Any]] = {}
        self.search_pages: list[list[dict[str, Any]]] = []
        self.releases: list[dict[str, Any]] = []
        self.missing_ids: set[int] = set()
        self.failing_ids: set[int] = set()
        self.failing_search_pages: set[int] = set()
        self.sources: dict[int, list[dict[str, Any]]] = {}
        self.failing_source_ids: set[int] = set()
        self.autocomplete_results: list[dict[str, Any]] = []
        self.urls: list[str] = []

    def add_title(self, payload: dict[str, Any]) -> None:
        self.titles[int(payload["id"])] = payload

    def search_hit(self, watchmode_id: int) -> dict[str, Any]:
        payload = self.titles[watchmode_id]
        return {
            "id": watchmode_id,
            "title": payload["title"],
            "year": payload["year"],
            "type": payload["type"],
            "imdb_id": payload.get("imdb_id"),
            "tmdb_id": payload.get("tmdb_id"),
        }

    def paths(self) -> list[str]:
        return [urlparse(url).path for url in self.urls]

    def __call__(self, url: str, *, timeout_seconds: float) -> object:
        _ = timeout_seconds
        self.urls.append(url)
        parsed = urlparse(url)
        query = {key: values[0] for key, values in parse_qs(parsed.query).items()}
        path = parsed.path

        if path.endswith("/list-titles/"):
            page = int(query.get("page", "1"))
            if page in self.failing_search_pages:
                raise CatalogProviderError("Watchmode API error: 500 Server Error", status_code=500)
            titles = self.search_pages[page - 1] if page <= len(self.search_pages) else []
            return {
                "titles": titles,
                "page": page,
                "total_results": sum(len(entries) for entries in self.search_pages),
                "total_pages": max(1, len(self.search_pages)),
            }
        if path.endswith("/releases/"):
            return {"releases": self.releases}
        if "/title/" in path and path.endswith("/details/"):
            watchmode_id = int(path.split("/title/")[1].split("/")[0])
            if watchmode_id in self.missing_ids:
                raise CatalogProviderError("Watchmode API error: 404 Not Found", status_code=404)
            if watchmode_id in self.failing_ids:
                raise CatalogProviderError("Watchmode API error: 503 Service Unavailable", status_code=503)
            return self.titles[watchmode_id]
        if "/title/" in path and path.endswith("/sources/"):
            watchmode_id = int(path.split("/title/")[1].split("/")[0])
            if watchmode_id in self.failing_source_ids:
                raise CatalogProviderError("Watchmode API error: 502 Bad Gateway", status_code=502)
            return self.sources.get(watchmode_id, [])
        if path.endswith("/autocomplete-search/"):
            return {"title_results": self.autocomplete_results}
        raise AssertionError(f"unexpected Watchmode url: {url}")


@pytest.fixture
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "state.db")
    db.initialize()
    return db


@pytest.fixture
def watchmode_api(monkeypatch: pytest.MonkeyPatch) -> FakeWatchmodeApi:
    api = FakeWatchmodeApi()
    monkeypatch.setattr("backend.catalog_sync.services.watchmode_client._request_json", api)
    return api


@pytest.fixture
def client(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    watchmode_api: FakeWatchmodeApi,
) -> Iterator[TestClient]:
    _ = watchmode_api
    data_dir = tmp_path / "runtime-data"
    data_dir.mkdir(parents=True, exist_ok=True)

    monkeypatch.setenv("CATALOG_SYNC_DATA_DIR", str(data_dir))
    monkeypatch.setenv("CATALOG_SYNC_WATCHMODE_API_KEY", "test-watchmode-key")
    monkeypatch.setenv("CATALOG_SYNC_WATCHMODE_MONTHLY_REQUEST_LIMIT", "50")
    monkeypatch.delenv("CATALOG_SYNC_TVDB_API_KEY", raising=False)
    reset_cached_dependencies()

    app = create_app()
    with TestClient(app) as test_client:
        yield test_client

    reset_cached_dependencies()
