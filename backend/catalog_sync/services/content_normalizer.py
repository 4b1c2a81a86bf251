from __future__ import annotations

import math
import re
from typing import Literal

from backend.catalog_sync.models.catalog_records import (
    CanonicalContent,
    ContentType,
    RawRelease,
    RawTitle,
)

DEFAULT_POSTER_URL = "/posters/default_poster.svg"
# Titles tagged with this genre are stored but kept out of default listings.
HIDDEN_GENRE_ID = 33
PosterSize = Literal["small", "medium", "large"]
_POSTER_SIZE_TOKENS: dict[str, str] = {
    "small": "w185",
    "medium": "w342",
    "large": "w500",
}
_POSTER_SIZE_PATTERN = re.compile(r"w\d+")


def normalize_title(
    title: RawTitle,
    *,
    poster_override: str | None = None,
    source_release_date: str | None = None,
) -> CanonicalContent:
    content_type = content_type_for(title.title_type)
    critics_rating = title.critic_score / 10 if title.critic_score is not None else None
    description = (title.plot_overview or "").strip() or f"A {content_type} from {title.year}"
    original_title = title.original_title if title.original_title != title.title else None

    return CanonicalContent(
        watchmode_id=title.watchmode_id,
        title=title.title,
        year=title.year,
        content_type=content_type,
        description=description,
        poster_url=resolve_poster_url(title.poster, poster_override=poster_override),
        end_year=title.end_year,
        runtime_minutes=title.runtime_minutes,
        average_rating=calculate_average_rating(title.critic_score, title.user_rating),
        critics_rating=critics_rating,
        users_rating=title.user_rating,
        imdb_id=title.imdb_id,
        tmdb_id=title.tmdb_id,
        original_title=original_title,
        release_date=title.release_date,
        us_rating=title.us_rating,
        original_language=title.original_language,
        genres=title.genres,
        source_release_date=source_release_date,
        hidden=HIDDEN_GENRE_ID in title.genres,
        watchmode_data=title.payload,
    )


def normalize_release(
    release: RawRelease,
    *,
    poster_override: str | None = None,
) -> CanonicalContent:
    return normalize_title(
        release.title,
        poster_override=poster_override,
        source_release_date=release.source_release_date,
    )


def content_type_for(provider_type: str | None) -> ContentType:
    return "series" if provider_type == "tv_series" else "movie"


def calculate_average_rating(
    critic_score: float | None,
    user_rating: float | None,
) -> float | None:
    """Average the critic score (0-100, scaled to 0-10) with the 0-10 user rating.

    Absent ratings are left out of the mean. A mean that rounds to 0.0 means the
    provider has no real signal for the title, so it is reported as unknown.
    """
    scores: list[float] = []
    if critic_score is not None:
        scores.append(critic_score / 10)
    if user_rating is not None:
        scores.append(user_rating)
    if not scores:
        return None

    # Half-up rounding to one decimal, not banker's rounding.
    average = math.floor(sum(scores) / len(scores) * 10 + 0.5) / 10
    if average == 0:
        return None
    return average


def resolve_poster_url(provider_poster: str | None, *, poster_override: str | None) -> str:
    if poster_override:
        return poster_override
    resized = optimal_poster_url(provider_poster or "", "medium")
    if resized:
        return resized
    return DEFAULT_POSTER_URL


def optimal_poster_url(poster_url: str, size: PosterSize = "medium") -> str:
    if not poster_url:
        return ""
    return _POSTER_SIZE_PATTERN.sub(_POSTER_SIZE_TOKENS[size], poster_url, count=1)
