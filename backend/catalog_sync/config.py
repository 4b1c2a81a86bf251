from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATA_DIR = ".catalog-sync"
DEFAULT_PLATFORM_SOURCE_IDS: dict[str, int] = {
    "Netflix": 203,
    "Amazon Prime Video": 26,
    "Hulu": 157,
    "HBO Max": 384,
    "Shudder": 99,
    "Tubi": 283,
}
_DATA_DIR_RELATIVE_DEFAULTS: tuple[tuple[str, Path], ...] = (
    ("db_path", Path("state.db")),
    ("log_dir", Path("logs")),
)
_PATH_FIELDS: tuple[str, ...] = (
    "data_dir",
    *(field_name for field_name, _ in _DATA_DIR_RELATIVE_DEFAULTS),
)
_BOOLEAN_COERCION_FIELDS: tuple[str, ...] = ("telemetry_enabled", "sync_fetch_platform_sources")
_BASE_URL_FIELDS: tuple[str, ...] = (
    "watchmode_base_url",
    "tvdb_base_url",
    "tvdb_image_base_url",
)


def _default_in_data_dir(relative_path: Path) -> Path:
    return Path(DEFAULT_DATA_DIR) / relative_path


def _data_dir_default_note(relative_path: Path) -> str:
    return f"Defaults to `${{CATALOG_SYNC_DATA_DIR}}/{relative_path}` when not explicitly set."


def _resolve_path(value: str | Path) -> Path:
    return Path(value).expanduser().resolve()


def _parse_bool_with_default(value: Any, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return {1: True, 0: False}.get(value, default)
    if not isinstance(value, str):
        return default

    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _normalize_optional_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    return normalized or None


class AppSettings(BaseSettings):
    """
    Runtime configuration for the catalog sync service.

    Every option is read from a `CATALOG_SYNC_*` environment variable (or `.env`).
    Provider secrets are optional at construction time; `load_settings` decides
    whether their absence is fatal.
    """

    model_config = SettingsConfigDict(
        env_prefix="CATALOG_SYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Core paths.
    data_dir: Path = Field(
        default=Path(DEFAULT_DATA_DIR),
        description="Root runtime directory for the SQLite database and logs.",
    )
    db_path: Path = Field(
        default=_default_in_data_dir(Path("state.db")),
        description=f"SQLite database path. {_data_dir_default_note(Path('state.db'))}",
    )

    # Primary catalog provider.
    watchmode_api_key: str | None = Field(
        default=None,
        description="Watchmode API key. Required for any sync run.",
    )
    watchmode_base_url: str = Field(
        default="https://api.watchmode.com/v1",
        description="Watchmode API base URL.",
    )
    watchmode_monthly_request_limit: int = Field(
        default=1000,
        ge=0,
        description="Hard cap on Watchmode requests per UTC calendar month.",
    )
    watchmode_http_timeout_seconds: float = Field(
        default=10.0,
        description="HTTP timeout for Watchmode requests.",
    )

    # Secondary artwork provider.
    tvdb_api_key: str | None = Field(
        default=None,
        description="TheTVDB v4 API key. Poster matching is skipped when unset.",
    )
    tvdb_pin: str | None = Field(
        default=None,
        description="Optional TheTVDB subscriber PIN sent at login.",
    )
    tvdb_base_url: str = Field(
        default="https://api4.thetvdb.com/v4",
        description="TheTVDB API base URL.",
    )
    tvdb_image_base_url: str = Field(
        default="https://artworks.thetvdb.com/banners",
        description="Prefix for relative TheTVDB artwork paths.",
    )
    tvdb_http_timeout_seconds: float = Field(
        default=5.0,
        description="HTTP timeout for TheTVDB requests.",
    )

    # Sync behavior.
    sync_genre_ids: list[int] = Field(
        default_factory=lambda: [11],
        description="Watchmode genre ids searched by every run (11 is horror).",
    )
    sync_platform_source_ids: dict[str, int] = Field(
        default_factory=lambda: dict(DEFAULT_PLATFORM_SOURCE_IDS),
        description="Platform display name to Watchmode source id.",
    )
    sync_default_platforms: list[str] = Field(
        default_factory=lambda: ["Netflix", "Amazon Prime Video", "Hulu", "HBO Max", "Shudder"],
        description="Platforms used when a sync request does not name any.",
    )
    sync_default_titles_count: int = Field(
        default=25,
        ge=0,
        description="Default number of new titles examined per run.",
    )
    sync_page_size: int = Field(
        default=250,
        ge=1,
        le=250,
        description="Page size for title search requests.",
    )
    sync_max_workers: int = Field(
        default=1,
        ge=1,
        le=16,
        description="Worker threads used while enriching candidates. 1 runs sequentially.",
    )
    sync_validate_batch_size: int = Field(
        default=50,
        ge=1,
        description="Stored titles re-checked by one validation run.",
    )
    sync_fetch_platform_sources: bool = Field(
        default=True,
        description=(
            "Fetch US subscription sources for each new title and store them as platform rows. "
            "Costs one extra request per title."
        ),
    )

    # Logging.
    log_dir: Path = Field(
        default=_default_in_data_dir(Path("logs")),
        description=f"Directory for log files. {_data_dir_default_note(Path('logs'))}",
    )
    log_level: str = Field(
        default="INFO",
        description="Console log level (stdout).",
    )

    # Telemetry.
    telemetry_enabled: bool = Field(
        default=True,
        description="Enable lightweight internal telemetry events.",
    )
    telemetry_sink: Literal["none", "log"] = Field(
        default="log",
        description=(
            "Telemetry sink backend. `log` emits structured telemetry locally; "
            "`none` disables sink output."
        ),
    )

    @field_validator("telemetry_sink", mode="before")
    @classmethod
    def _normalize_telemetry_sink(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("CATALOG_SYNC_TELEMETRY_SINK must be a string.")
        normalized = value.strip().lower()
        if normalized in {"none", "log"}:
            return normalized
        raise ValueError("CATALOG_SYNC_TELEMETRY_SINK must be set to: none, log.")

    @field_validator(*_BASE_URL_FIELDS, mode="before")
    @classmethod
    def _normalize_base_urls(cls, value: Any, info: ValidationInfo) -> str:
        env_name = f"CATALOG_SYNC_{str(info.field_name).upper()}"
        if not isinstance(value, str):
            raise ValueError(f"{env_name} must be a string.")
        normalized = value.strip().rstrip("/")
        if not normalized:
            raise ValueError(f"{env_name} must not be empty.")
        return normalized

    @field_validator(*_PATH_FIELDS, mode="before")
    @classmethod
    def _normalize_paths(cls, value: Any) -> Any:
        if value is None:
            return None
        return _resolve_path(value)

    @field_validator(*_BOOLEAN_COERCION_FIELDS, mode="before")
    @classmethod
    def _normalize_booleans(cls, value: Any, info: ValidationInfo) -> bool:
        field_name = info.field_name
        assert field_name is not None
        default_value = cls.model_fields[field_name].default
        assert isinstance(default_value, bool)
        return _parse_bool_with_default(value, default=default_value)

    @field_validator("watchmode_api_key", "tvdb_api_key", "tvdb_pin", mode="before")
    @classmethod
    def _normalize_optional_strings(cls, value: Any) -> str | None:
        return _normalize_optional_text(value)

    @field_validator("sync_genre_ids")
    @classmethod
    def _require_genres(cls, value: list[int]) -> list[int]:
        if not value:
            raise ValueError("CATALOG_SYNC_SYNC_GENRE_IDS must list at least one genre id.")
        return value

    def selected_source_ids(self, platforms: list[str] | tuple[str, ...] | None = None) -> list[int]:
        names = platforms if platforms is not None else self.sync_default_platforms
        return [
            self.sync_platform_source_ids[name]
            for name in names
            if name in self.sync_platform_source_ids
        ]


def _validate_provider_configuration(*, watchmode_api_key: str | None) -> None:
    errors: list[str] = []

    if watchmode_api_key is None:
        errors.append("CATALOG_SYNC_WATCHMODE_API_KEY is required for catalog sync.")

    if errors:
        bullets = "\n".join(f"- {message}" for message in errors)
        raise ValueError(f"Invalid catalog provider configuration:\n{bullets}")


def _apply_path_defaults(settings: AppSettings) -> AppSettings:
    updates: dict[str, Path] = {}
    for field_name, relative_default in _DATA_DIR_RELATIVE_DEFAULTS:
        if field_name in settings.model_fields_set:
            continue
        updates[field_name] = settings.data_dir / relative_default
    if not updates:
        return settings
    return settings.model_copy(update=updates)


def _resolve_path_fields(settings: AppSettings) -> AppSettings:
    resolved_updates = {
        field_name: _resolve_path(getattr(settings, field_name))
        for field_name in _PATH_FIELDS
    }
    return settings.model_copy(update=resolved_updates)


def load_settings(*, validate_provider_secrets: bool = True) -> AppSettings:
    settings = AppSettings()
    settings = _apply_path_defaults(settings)
    settings = _resolve_path_fields(settings)

    if validate_provider_secrets:
        _validate_provider_configuration(watchmode_api_key=settings.watchmode_api_key)

    return settings
