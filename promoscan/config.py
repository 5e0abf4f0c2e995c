from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import Field, ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATA_DIR = ".promoscan"
DEFAULT_LINK_PROBE_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
_DATA_DIR_RELATIVE_DEFAULTS: tuple[tuple[str, Path], ...] = (
    ("db_path", Path("state.db")),
    ("log_dir", Path("logs")),
)
_PATH_FIELDS: tuple[str, ...] = (
    "data_dir",
    *(field_name for field_name, _ in _DATA_DIR_RELATIVE_DEFAULTS),
)
_BOOLEAN_COERCION_FIELDS: tuple[str, ...] = ("telemetry_enabled",)
_OPTIONAL_TEXT_FIELDS: tuple[str, ...] = (
    "youtube_api_key",
    "redis_url",
)
# Well-known unprefixed names, consulted in order after the PROMOSCAN_* variable.
_ENV_FALLBACKS: tuple[tuple[str, str, tuple[str, ...]], ...] = (
    ("youtube_api_key", "PROMOSCAN_YOUTUBE_API_KEY", ("YOUTUBE_API_KEY",)),
    ("redis_url", "PROMOSCAN_REDIS_URL", ("REDIS_URL", "KV_URL", "UPSTASH_REDIS_URL")),
)


def _default_in_data_dir(relative_path: Path) -> Path:
    return Path(DEFAULT_DATA_DIR) / relative_path


def _data_dir_default_note(relative_path: Path) -> str:
    return f"Defaults to `${{PROMOSCAN_DATA_DIR}}/{relative_path}` when not explicitly set."


def _resolve_path(value: str | Path) -> Path:
    return Path(value).expanduser().resolve()


def _parse_bool_with_default(value: Any, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value == 1:
            return True
        if value == 0:
            return False
        return default
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
    Runtime configuration for the channel scanner.

    Every option is read from `PROMOSCAN_*` (plus a few well-known
    unprefixed names for the API key and the Redis URL).
    A missing YouTube API key is allowed here; upstream-backed features
    report it when they are called.
    """

    model_config = SettingsConfigDict(
        env_prefix="PROMOSCAN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    # Paths.
    data_dir: Path = Field(
        default=Path(DEFAULT_DATA_DIR),
        description="Root runtime directory for local state and logs.",
    )
    db_path: Path = Field(
        default=_default_in_data_dir(Path("state.db")),
        description=f"SQLite database path. {_data_dir_default_note(Path('state.db'))}",
    )

    # YouTube Data API.
    youtube_api_key: str | None = Field(
        default=None,
        validation_alias="PROMOSCAN_YOUTUBE_API_KEY",
        description="Static YouTube Data API v3 key.",
    )
    youtube_api_base_url: str = Field(
        default="https://www.googleapis.com/youtube/v3",
        description="YouTube Data API base URL.",
    )
    youtube_http_timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        description="HTTP timeout for YouTube Data API requests.",
    )

    # Quota ledger.
    quota_daily_limit: int = Field(
        default=10_000,
        ge=1,
        description="Daily YouTube Data API quota budget in units.",
    )
    quota_safety_buffer: int = Field(
        default=500,
        ge=0,
        description="Units held back from the daily limit; spending stops at limit minus buffer.",
    )
    quota_low_threshold: int = Field(
        default=1_000,
        ge=0,
        description="Usable remaining units below which quota status is flagged as low.",
    )
    quota_mirror_key_prefix: str = Field(
        default="yt_promo_quota",
        description="Key prefix for the durable daily usage record.",
    )
    quota_mirror_ttl_seconds: int = Field(
        default=86_400,
        ge=1,
        description="Expiry applied to durable daily usage records.",
    )
    redis_url: str | None = Field(
        default=None,
        validation_alias="PROMOSCAN_REDIS_URL",
        description=(
            "Redis URL (e.g. an Upstash or Vercel KV `rediss://` URL). When set, daily usage "
            "is mirrored to Redis instead of the local SQLite database."
        ),
    )

    # Raw unprefixed variables; folded into the fields above by `_apply_env_fallbacks`.
    plain_youtube_api_key: str | None = Field(
        default=None, validation_alias="YOUTUBE_API_KEY", exclude=True, repr=False
    )
    plain_redis_url: str | None = Field(
        default=None, validation_alias="REDIS_URL", exclude=True, repr=False
    )
    kv_url: str | None = Field(default=None, validation_alias="KV_URL", exclude=True, repr=False)
    upstash_redis_url: str | None = Field(
        default=None, validation_alias="UPSTASH_REDIS_URL", exclude=True, repr=False
    )

    # Response cache.
    response_cache_ttl_seconds: float = Field(
        default=900.0,
        gt=0,
        description="How long a feature response is served from memory.",
    )

    # Link probing.
    link_probe_concurrency: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Links probed concurrently per batch.",
    )
    link_probe_timeout_seconds: float = Field(
        default=8.0,
        gt=0,
        description="Per-attempt timeout for a single link probe.",
    )
    link_probe_max_links: int = Field(
        default=100,
        ge=0,
        description="Maximum links probed per request; the rest are reported unchecked.",
    )
    link_probe_user_agent: str = Field(
        default=DEFAULT_LINK_PROBE_USER_AGENT,
        description="User-Agent sent with link probes.",
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

    @model_validator(mode="before")
    @classmethod
    def _apply_env_fallbacks(cls, data: Any) -> Any:
        # Alias lookup stops at the first variable present, even a blank one.
        if not isinstance(data, dict):
            return data
        resolved = dict(data)
        for field_name, primary_name, fallback_names in _ENV_FALLBACKS:
            for key in (field_name, primary_name, *fallback_names):
                candidate = _normalize_optional_text(resolved.get(key))
                if candidate is not None:
                    resolved.pop(primary_name, None)
                    resolved[field_name] = candidate
                    break
        return resolved

    @field_validator("telemetry_sink", mode="before")
    @classmethod
    def _normalize_telemetry_sink(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("PROMOSCAN_TELEMETRY_SINK must be a string.")
        normalized = value.strip().lower()
        if normalized in {"none", "log"}:
            return normalized
        raise ValueError("PROMOSCAN_TELEMETRY_SINK must be set to: none, log.")

    @field_validator("youtube_api_base_url", mode="before")
    @classmethod
    def _normalize_base_url(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("PROMOSCAN_YOUTUBE_API_BASE_URL must be a string.")
        normalized = value.strip().rstrip("/")
        if not normalized:
            raise ValueError("PROMOSCAN_YOUTUBE_API_BASE_URL must not be empty.")
        return normalized

    @field_validator("link_probe_user_agent", mode="before")
    @classmethod
    def _normalize_user_agent(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("PROMOSCAN_LINK_PROBE_USER_AGENT must be a string.")
        normalized = value.strip()
        if not normalized:
            raise ValueError("PROMOSCAN_LINK_PROBE_USER_AGENT must not be empty.")
        return normalized

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            return "INFO"
        return value.strip().upper()

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

    @field_validator(*_OPTIONAL_TEXT_FIELDS, mode="before")
    @classmethod
    def _normalize_optional_strings(cls, value: Any) -> str | None:
        return _normalize_optional_text(value)

    @property
    def remote_mirror_configured(self) -> bool:
        return self.redis_url is not None


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


def load_settings() -> AppSettings:
    settings = AppSettings()
    settings = _apply_path_defaults(settings)
    return _resolve_path_fields(settings)
