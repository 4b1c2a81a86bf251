from __future__ import annotations

from fastapi.testclient import TestClient

from conftest import FakeWatchmodeApi, title_payload


def _seed(api: FakeWatchmodeApi) -> None:
    for payload in (
        title_payload(1, "The Exorcist", year=1973, critic_score=86, user_rating=8.1),
        title_payload(2, "Evil Dead II", year=1987, critic_score=78, user_rating=7.7),
        title_payload(3, "The Babadook", year=2014, title_type="movie"),
    ):
        api.add_title(payload)
    api.search_pages = [[api.search_hit(1), api.search_hit(2), api.search_hit(3)]]


def test_health_returns_request_id(client: TestClient) -> None:
    response = client.get("/health", headers={"X-Request-ID": "req-42"})

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert response.headers["X-Request-ID"] == "req-42"


def test_sync_endpoint_runs_and_lists_content(
    client: TestClient,
    watchmode_api: FakeWatchmodeApi,
) -> None:
    _seed(watchmode_api)

    response = client.post(
        "/admin/catalog/sync",
        json={"titles_to_sync_count": 10, "selected_platforms": ["Shudder"]},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["state"] == "done"
    assert body["new_titles_added"] == 3
    assert body["requests_used"] == 7
    assert [item["action"] for item in body["titles_processed"]] == ["added", "added", "added"]
    assert "source_ids=99" in watchmode_api.urls[0]

    listing = client.get("/catalog/content", params={"decade": "1980s"})
    assert listing.status_code == 200
    assert [item["title"] for item in listing.json()["items"]] == ["Evil Dead II"]

    everything = client.get("/catalog/content", params={"type": "movie"}).json()["items"]
    assert [item["title"] for item in everything] == ["The Exorcist", "Evil Dead II", "The Babadook"]

    quota = client.get("/admin/catalog/quota").json()
    assert quota["requests_used"] == 7
    assert quota["monthly_limit"] == 50
    assert quota["remaining"] == 43


def test_sync_endpoint_rejects_unknown_platform(client: TestClient) -> None:
    response = client.post("/admin/catalog/sync", json={"selected_platforms": ["Betamax+"]})

    assert response.status_code == 400
    assert "Betamax+" in response.json()["detail"]


def test_content_endpoint_rejects_bad_decade(client: TestClient) -> None:
    response = client.get("/catalog/content", params={"decade": "80s"})

    assert response.status_code == 400


def test_validate_endpoint_removes_missing_titles(
    client: TestClient,
    watchmode_api: FakeWatchmodeApi,
) -> None:
    _seed(watchmode_api)
    client.post("/admin/catalog/sync", json={"titles_to_sync_count": 10})
    watchmode_api.missing_ids.add(3)

    response = client.post("/admin/catalog/validate", json={"max_titles": 10})

    assert response.status_code == 200
    body = response.json()
    assert body["titles_validated"] == 2
    assert body["titles_removed"] == 1
    titles = [item["title"] for item in client.get("/catalog/content").json()["items"]]
    assert "The Babadook" not in titles


def test_new_to_streaming_endpoint(client: TestClient, watchmode_api: FakeWatchmodeApi) -> None:
    _seed(watchmode_api)

    response = client.post("/admin/catalog/new-to-streaming")

    assert response.status_code == 200
    body = response.json()
    assert body["new_titles_added"] == 3
    assert body["api_calls_used"] == 5
    assert body["timestamp"]


def test_hidden_titles_and_platforms_endpoint(
    client: TestClient,
    watchmode_api: FakeWatchmodeApi,
) -> None:
    watchmode_api.add_title(title_payload(1, "Possession", year=1981))
    watchmode_api.add_title(title_payload(2, "Flagged", year=1982, genres=[11, 33]))
    watchmode_api.search_pages = [[watchmode_api.search_hit(1), watchmode_api.search_hit(2)]]
    watchmode_api.sources[1] = [
        {
            "source_id": 99,
            "name": "Shudder",
            "type": "sub",
            "region": "US",
            "web_url": "https://www.shudder.com/movies/watch/possession",
        },
    ]

    sync = client.post("/admin/catalog/sync", json={"titles_to_sync_count": 5})
    assert sync.json()["new_titles_added"] == 2

    listed = client.get("/catalog/content").json()["items"]
    assert [item["title"] for item in listed] == ["Possession"]
    everything = client.get("/catalog/content", params={"include_hidden": "true"}).json()["items"]
    assert {item["title"]: item["hidden"] for item in everything} == {
        "Possession": False,
        "Flagged": True,
    }

    platforms = client.get("/catalog/content/1/platforms")
    assert platforms.status_code == 200
    assert platforms.json() == {
        "watchmode_id": 1,
        "platforms": [
            {
                "source_id": 99,
                "name": "Shudder",
                "web_url": "https://www.shudder.com/movies/watch/possession",
                "format": None,
                "seasons": None,
                "episodes": None,
            }
        ],
    }
    assert client.get("/catalog/content/404/platforms").status_code == 404
