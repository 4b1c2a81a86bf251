from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from threading import Lock
from typing import Any, Literal, cast
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode
from urllib.request import Request, urlopen

from backend.catalog_sync.models.catalog_records import RawTitle, parse_year
from backend.catalog_sync.services.content_normalizer import content_type_for

LOGGER = logging.getLogger("catalog_sync.tvdb")
DEFAULT_TVDB_BASE_URL = "https://api4.thetvdb.com/v4"
DEFAULT_TVDB_IMAGE_BASE_URL = "https://artworks.thetvdb.com/banners/"
TOKEN_LIFETIME = timedelta(days=29)


class TvdbApiError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class TvdbSearchResult:
    name: str
    year: int | None
    image_url: str | None
    primary_type: str | None


class TvdbClient:
    def __init__(
        self,
        *,
        api_key: str,
        pin: str | None = None,
        base_url: str = DEFAULT_TVDB_BASE_URL,
        image_base_url: str = DEFAULT_TVDB_IMAGE_BASE_URL,
        http_timeout_seconds: float = 5.0,
    ) -> None:
        self._api_key = api_key
        self._pin = pin
        self._base_url = base_url.rstrip("/")
        self._image_base_url = image_base_url if image_base_url.endswith("/") else f"{image_base_url}/"
        self._http_timeout_seconds = max(0.5, http_timeout_seconds)
        self._token: str | None = None
        self._token_expires_at: datetime | None = None
        self._token_lock = Lock()

    def search(self, query: str, content_type: Literal["movie", "series"]) -> list[TvdbSearchResult]:
        payload = self._get("/search", {"query": query, "type": content_type})
        data = payload.get("data")
        if not isinstance(data, list):
            return []
        results: list[TvdbSearchResult] = []
        for entry in cast(list[object], data):
            if not isinstance(entry, dict):
                continue
            item = cast(dict[str, Any], entry)
            name = _as_text(item.get("name"))
            if name is None:
                continue
            results.append(
                TvdbSearchResult(
                    name=name,
                    year=parse_year(_as_text(item.get("year"))),
                    image_url=_as_text(item.get("image_url")),
                    primary_type=_as_text(item.get("primary_type")),
                )
            )
        return results

    def image_by_remote_id(
        self,
        remote_id: str,
        content_type: Literal["movie", "series"],
    ) -> str | None:
        payload = self._get(f"/search/remoteid/{quote(remote_id, safe='')}", {})
        record = _remote_id_record(payload.get("data"), content_type=content_type)
        if record is None:
            return None
        return _as_text(record.get("image"))

    def image_url(self, image: str) -> str:
        if image.startswith(("http://", "https://")):
            return image
        return f"{self._image_base_url}{image.lstrip('/')}"

    def _get(self, path: str, params: dict[str, str]) -> dict[str, Any]:
        token = self._ensure_token()
        query = urlencode({key: value for key, value in params.items() if value})
        url = f"{self._base_url}{path}" + (f"?{query}" if query else "")
        request = Request(
            url,
            headers={"Accept": "application/json", "Authorization": f"Bearer {token}"},
            method="GET",
        )
        return _send_json(request, timeout_seconds=self._http_timeout_seconds)

    def _ensure_token(self) -> str:
        with self._token_lock:
            now = datetime.now(UTC)
            if self._token is not None and self._token_expires_at is not None:
                if self._token_expires_at > now:
                    return self._token

            body: dict[str, str] = {"apikey": self._api_key}
            if self._pin:
                body["pin"] = self._pin
            request = Request(
                f"{self._base_url}/login",
                data=json.dumps(body).encode("utf-8"),
                headers={"Accept": "application/json", "Content-Type": "application/json"},
                method="POST",
            )
            payload = _send_json(request, timeout_seconds=self._http_timeout_seconds)
            data = payload.get("data")
            token = _as_text(cast(dict[str, Any], data).get("token")) if isinstance(data, dict) else None
            if token is None:
                raise TvdbApiError("TVDB login response did not include a token.", status_code=None)

            self._token = token
            self._token_expires_at = now + TOKEN_LIFETIME
            LOGGER.info("tvdb authentication succeeded")
            return token


class TvdbArtworkMatcher:
    """Best-effort poster lookup on TheTVDB for a Watchmode title.

    Remote-id lookup by IMDB id first, then a name search. The name search takes
    the first candidate within one year whose name equals, contains or is
    contained in the title (case-insensitive). First match wins: an exact name
    match later in the result list does not beat an earlier substring match.
    """

    def __init__(self, client: TvdbClient | None) -> None:
        self._client = client

    @property
    def enabled(self) -> bool:
        return self._client is not None

    def find_poster_url(self, title: RawTitle) -> str | None:
        if self._client is None:
            return None
        try:
            return self._lookup(self._client, title)
        except Exception as exc:
            LOGGER.warning(
                "tvdb poster lookup failed title=%s watchmode_id=%s error=%s",
                title.title,
                title.watchmode_id,
                exc,
            )
            return None

    def _lookup(self, client: TvdbClient, title: RawTitle) -> str | None:
        content_type = content_type_for(title.title_type)

        if title.imdb_id:
            image = client.image_by_remote_id(title.imdb_id, content_type)
            if image:
                return client.image_url(image)

        candidates = client.search(title.title, content_type)
        match = first_matching_candidate(candidates, title=title.title, year=title.year)
        if match is None or not match.image_url:
            return None
        return client.image_url(match.image_url)


def first_matching_candidate(
    candidates: list[TvdbSearchResult],
    *,
    title: str,
    year: int,
) -> TvdbSearchResult | None:
    wanted = title.lower()
    for candidate in candidates:
        if candidate.year is None or abs(candidate.year - year) > 1:
            continue
        name = candidate.name.lower()
        if name == wanted or wanted in name or name in wanted:
            return candidate
    return None


def _remote_id_record(
    data: object,
    *,
    content_type: Literal["movie", "series"],
) -> dict[str, Any] | None:
    # v4 answers with a list of {"movie": {...}} / {"series": {...}} wrappers;
    # older responses carried the record itself.
    if isinstance(data, dict):
        record = cast(dict[str, Any], data)
        nested = record.get(content_type)
        if isinstance(nested, dict):
            return cast(dict[str, Any], nested)
        return record
    if isinstance(data, list):
        for entry in cast(list[object], data):
            if not isinstance(entry, dict):
                continue
            nested = cast(dict[str, Any], entry).get(content_type)
            if isinstance(nested, dict):
                return cast(dict[str, Any], nested)
    return None


def _send_json(request: Request, *, timeout_seconds: float) -> dict[str, Any]:
    try:
        with urlopen(request, timeout=timeout_seconds) as response:
            raw_body = response.read().decode("utf-8", errors="replace")
    except HTTPError as exc:
        raise TvdbApiError(f"TVDB API error: {exc.code} {exc.reason}", status_code=exc.code) from exc
    except (URLError, TimeoutError, OSError) as exc:
        raise TvdbApiError(f"TVDB request failed: {exc}", status_code=None) from exc

    try:
        parsed = json.loads(raw_body)
    except json.JSONDecodeError as exc:
        raise TvdbApiError("TVDB returned a body that is not valid JSON.", status_code=None) from exc
    if not isinstance(parsed, dict):
        raise TvdbApiError("TVDB returned a non-object body.", status_code=None)
    return cast(dict[str, Any], parsed)


def _as_text(value: object) -> str | None:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped if stripped else None
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return None
