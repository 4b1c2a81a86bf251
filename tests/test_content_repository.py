from __future__ import annotations

from backend.catalog_sync.models.catalog_records import CanonicalContent
from backend.catalog_sync.repositories.content_repository import ContentRepository, decade_to_range
from backend.catalog_sync.repositories.database import Database


def _content(watchmode_id: int, title: str, *, year: int, **overrides: object) -> CanonicalContent:
    fields: dict[str, object] = {
        "watchmode_id": watchmode_id,
        "title": title,
        "year": year,
        "content_type": "movie",
        "description": f"{title} description",
        "poster_url": "/posters/default_poster.svg",
    }
    fields.update(overrides)
    return CanonicalContent(**fields)  # type: ignore[arg-type]


def test_decade_to_range() -> None:
    assert decade_to_range("1950s") == (1950, 1960)
    assert decade_to_range("2020S") == (2020, 2030)
    assert decade_to_range("90s") is None
    assert decade_to_range("1950") is None
    assert decade_to_range(None) is None


def test_upsert_is_idempotent_per_watchmode_id(database: Database) -> None:
    repository = ContentRepository(database)

    first = repository.upsert_content(_content(1, "Alien", year=1979, average_rating=8.0))
    second = repository.upsert_content(_content(1, "Alien", year=1979, average_rating=8.4))

    assert first.id == second.id
    assert second.content.average_rating == 8.4
    assert repository.count_content() == 1


def test_upsert_round_trips_optional_fields(database: Database) -> None:
    repository = ContentRepository(database)

    stored = repository.upsert_content(
        _content(
            2,
            "Twin Peaks",
            year=1990,
            content_type="series",
            end_year=1991,
            genres=(11, 9),
            imdb_id="tt0098936",
            tmdb_id=1920,
            source_release_date="2024-05-01",
            watchmode_data={"id": 2, "title": "Twin Peaks"},
        )
    )

    loaded = repository.find_by_watchmode_id(2)
    assert loaded is not None
    assert loaded.id == stored.id
    assert loaded.content.content_type == "series"
    assert loaded.content.end_year == 1991
    assert loaded.content.genres == (11, 9)
    assert loaded.content.source_release_date == "2024-05-01"
    assert loaded.content.watchmode_data == {"id": 2, "title": "Twin Peaks"}


def test_find_by_external_ids_matches_any_identifier(database: Database) -> None:
    repository = ContentRepository(database)
    repository.upsert_content(_content(3, "Hereditary", year=2018, imdb_id="tt7784604", tmdb_id=493922))

    assert repository.find_by_external_ids(watchmode_id=999, imdb_id="tt7784604", tmdb_id=None) is not None
    assert repository.find_by_external_ids(watchmode_id=999, imdb_id=None, tmdb_id=493922) is not None
    assert repository.find_by_external_ids(watchmode_id=999, imdb_id="tt0000001", tmdb_id=1) is None
    assert repository.find_by_external_ids(watchmode_id=None, imdb_id=None, tmdb_id=None) is None


def test_list_content_filters_by_decade_and_orders_by_rating(database: Database) -> None:
    repository = ContentRepository(database)
    repository.upsert_content(_content(10, "Psycho", year=1960, average_rating=8.5))
    repository.upsert_content(_content(11, "Night of the Living Dead", year=1968, average_rating=7.9))
    repository.upsert_content(_content(12, "Carnival of Souls", year=1962))
    repository.upsert_content(_content(13, "House of Wax", year=1953, average_rating=9.0))

    sixties = repository.list_content(decade="1960s")

    assert [row.content.title for row in sixties] == [
        "Psycho",
        "Night of the Living Dead",
        "Carnival of Souls",
    ]
    assert len(repository.list_content()) == 4
    assert [row.content.watchmode_id for row in repository.list_content(oldest_first=True)] == [
        10,
        11,
        12,
        13,
    ]


def test_delete_by_watchmode_id(database: Database) -> None:
    repository = ContentRepository(database)
    repository.upsert_content(_content(20, "The Fog", year=1980))

    assert repository.delete_by_watchmode_id(20) is True
    assert repository.delete_by_watchmode_id(20) is False
    assert repository.find_by_watchmode_id(20) is None
