"""Library settings.

Settings are grouped into dataclasses. Defaults come from environment
variables so deployments can tune them without code changes:

    EDITORCORE_CACHE_MAX_SIZE: Max cache entries (default: 100)
    EDITORCORE_CACHE_TTL: Default entry TTL in seconds (default: 300)
    EDITORCORE_CACHE_BACKGROUND_THRESHOLD: Seconds before expiry at which a
        read schedules a background refresh (default: 60)
    EDITORCORE_PAGE_SIZE: Default list page size (default: 20)
    EDITORCORE_MAX_PAGE_SIZE: Largest accepted page size (default: 100)
    EDITORCORE_AUTOSAVE_ENABLED: Enable auto-save (default: true)
    EDITORCORE_AUTOSAVE_DELAY: Auto-save debounce in seconds (default: 30)
    EDITORCORE_AUTOSAVE_MIN_INTERVAL: Minimum seconds between auto-saves (default: 1)
    EDITORCORE_AUTOSAVE_MAX_RETRIES: Retries for a failed auto-save (default: 3)
    EDITORCORE_AUTOSAVE_RETRY_DELAY: Base retry delay in seconds; retry n waits
        n times this (default: 1)
    EDITORCORE_ERROR_HISTORY_LIMIT: Error records kept (default: 50)
    EDITORCORE_POSTGREST_URL: PostgREST base URL
    EDITORCORE_POSTGREST_API_KEY: PostgREST API key
    EDITORCORE_STORE_TIMEOUT: Store request timeout in seconds (default: 10)
    EDITORCORE_STORE_RETRY_COUNT: Retries for transient store errors (default: 3)
    EDITORCORE_DB_PATH: SQLite database path (default: ./editorcore.db)
"""

import os
from dataclasses import dataclass, field

ENV_PREFIX = "EDITORCORE_"


def _env(name: str, default: str) -> str:
    return os.environ.get(f"{ENV_PREFIX}{name}", default)


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(f"{ENV_PREFIX}{name}")
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class CacheSettings:
    """Read-through cache settings (seconds)."""

    max_size: int = 100
    default_ttl: float = 300.0
    background_threshold: float = 60.0


@dataclass
class FetchSettings:
    """List fetch settings."""

    page_size: int = 20
    max_page_size: int = 100


@dataclass
class AutoSaveSettings:
    """Auto-save settings."""

    enabled: bool = True
    delay_seconds: float = 30.0
    min_interval_seconds: float = 1.0
    max_retries: int = 3
    retry_delay_seconds: float = 1.0


@dataclass
class ErrorSettings:
    """Error handler settings."""

    history_limit: int = 50


@dataclass
class StoreSettings:
    """Record store connection settings."""

    postgrest_url: str | None = None
    postgrest_api_key: str | None = None
    timeout: float = 10.0
    retry_count: int = 3
    db_path: str = "./editorcore.db"


@dataclass
class AllSettings:
    """Complete library settings."""

    cache: CacheSettings = field(default_factory=CacheSettings)
    fetch: FetchSettings = field(default_factory=FetchSettings)
    autosave: AutoSaveSettings = field(default_factory=AutoSaveSettings)
    errors: ErrorSettings = field(default_factory=ErrorSettings)
    store: StoreSettings = field(default_factory=StoreSettings)


def get_settings() -> AllSettings:
    """Build settings from the environment.

    Returns:
        AllSettings with environment overrides applied
    """
    return AllSettings(
        cache=CacheSettings(
            max_size=int(_env("CACHE_MAX_SIZE", "100")),
            default_ttl=float(_env("CACHE_TTL", "300")),
            background_threshold=float(_env("CACHE_BACKGROUND_THRESHOLD", "60")),
        ),
        fetch=FetchSettings(
            page_size=int(_env("PAGE_SIZE", "20")),
            max_page_size=int(_env("MAX_PAGE_SIZE", "100")),
        ),
        autosave=AutoSaveSettings(
            enabled=_env_bool("AUTOSAVE_ENABLED", True),
            delay_seconds=float(_env("AUTOSAVE_DELAY", "30")),
            min_interval_seconds=float(_env("AUTOSAVE_MIN_INTERVAL", "1")),
            max_retries=int(_env("AUTOSAVE_MAX_RETRIES", "3")),
            retry_delay_seconds=float(_env("AUTOSAVE_RETRY_DELAY", "1")),
        ),
        errors=ErrorSettings(
            history_limit=int(_env("ERROR_HISTORY_LIMIT", "50")),
        ),
        store=StoreSettings(
            postgrest_url=os.environ.get(f"{ENV_PREFIX}POSTGREST_URL"),
            postgrest_api_key=os.environ.get(f"{ENV_PREFIX}POSTGREST_API_KEY"),
            timeout=float(_env("STORE_TIMEOUT", "10")),
            retry_count=int(_env("STORE_RETRY_COUNT", "3")),
            db_path=_env("DB_PATH", "./editorcore.db"),
        ),
    )
