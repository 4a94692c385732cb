# src/bookworm/config.py
"""
Runtime settings.

``BookwormSettings`` is an immutable value object handed to every component
at construction time. It is assembled from ``BOOKWORM_*`` environment
variables and then overlaid with the values a user saved through the
settings API (Calibre path, Hardcover list id, Hardcover API key).

``get_settings()`` returns the cached object; ``reload_settings()`` is the
single place that rebuilds it (called after the settings API writes).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from threading import Lock
from typing import Mapping, Optional

from loguru import logger

from bookworm.domain.errors import NotConfiguredError

DEFAULT_DB_URL = "sqlite:///data/bookworm.db"
HARDCOVER_GRAPHQL_URL = "https://api.hardcover.app/v1/graphql"
MIN_RATE_LIMIT_COOLDOWN_SECONDS = 20.0

API_KEY_ENV = "BOOKWORM_HARDCOVER_API_KEY"
CALIBRE_PATH_ENV = "BOOKWORM_CALIBRE_DB_PATH"


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "y")


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"{name}={raw!r} is not an integer; using {default}")
        return default


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"{name}={raw!r} is not a number; using {default}")
        return default


def _env_str(env: Mapping[str, str], name: str) -> Optional[str]:
    value = (env.get(name) or "").strip()
    return value or None


def normalize_api_key(raw: Optional[str]) -> Optional[str]:
    """Accept keys pasted with or without the ``Bearer`` prefix."""
    if not raw:
        return None
    key = raw.strip()
    if key.lower().startswith("bearer "):
        key = key[7:].strip()
    return key or None


@dataclass(frozen=True)
class BookwormSettings:
    db_url: str = DEFAULT_DB_URL

    hardcover_api_key: Optional[str] = None
    hardcover_endpoint: str = HARDCOVER_GRAPHQL_URL
    hardcover_list_id: Optional[str] = None
    calibre_db_path: Optional[str] = None

    search_timeout_seconds: float = 8.0
    list_timeout_seconds: float = 30.0
    rate_limit_cooldown_seconds: float = MIN_RATE_LIMIT_COOLDOWN_SECONDS

    calibre_sync_interval_minutes: int = 30
    want_sync_interval_minutes: int = 30
    bookshelf_sync_interval_minutes: int = 30
    suggested_dedup_interval_minutes: int = 30
    scheduler_enabled: bool = True

    activity_log_max_entries: int = 1000

    redis_host: str = "127.0.0.1"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: Optional[str] = None

    @property
    def hardcover_configured(self) -> bool:
        return bool(self.hardcover_api_key)

    def require_hardcover_api_key(self) -> str:
        if not self.hardcover_api_key:
            raise NotConfiguredError(
                f"Hardcover API key not configured. Set {API_KEY_ENV} "
                "or save it via POST /api/settings/hardcover/api-key.",
                setting=API_KEY_ENV,
            )
        return self.hardcover_api_key

    def require_calibre_path(self) -> str:
        if not self.calibre_db_path:
            raise NotConfiguredError("Calibre path not configured.", setting=CALIBRE_PATH_ENV)
        return self.calibre_db_path

    def hardcover_list_id_int(self) -> Optional[int]:
        try:
            return int(self.hardcover_list_id) if self.hardcover_list_id else None
        except ValueError:
            return None

    def with_overrides(self, **changes) -> "BookwormSettings":
        return replace(self, **changes)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "BookwormSettings":
        env = os.environ if environ is None else environ
        cooldown = _env_float(env, "BOOKWORM_RATE_LIMIT_COOLDOWN_SECONDS", MIN_RATE_LIMIT_COOLDOWN_SECONDS)
        return cls(
            db_url=_env_str(env, "BOOKWORM_DB_URL") or DEFAULT_DB_URL,
            hardcover_api_key=normalize_api_key(_env_str(env, API_KEY_ENV)),
            hardcover_endpoint=_env_str(env, "BOOKWORM_HARDCOVER_ENDPOINT") or HARDCOVER_GRAPHQL_URL,
            hardcover_list_id=_env_str(env, "BOOKWORM_HARDCOVER_LIST_ID"),
            calibre_db_path=_env_str(env, CALIBRE_PATH_ENV),
            search_timeout_seconds=_env_float(env, "BOOKWORM_SEARCH_TIMEOUT_SECONDS", 8.0),
            list_timeout_seconds=_env_float(env, "BOOKWORM_LIST_TIMEOUT_SECONDS", 30.0),
            rate_limit_cooldown_seconds=max(MIN_RATE_LIMIT_COOLDOWN_SECONDS, cooldown),
            calibre_sync_interval_minutes=_env_int(env, "BOOKWORM_CALIBRE_SYNC_INTERVAL_MINUTES", 30),
            want_sync_interval_minutes=_env_int(env, "BOOKWORM_WANT_SYNC_INTERVAL_MINUTES", 30),
            bookshelf_sync_interval_minutes=_env_int(env, "BOOKWORM_BOOKSHELF_SYNC_INTERVAL_MINUTES", 30),
            suggested_dedup_interval_minutes=_env_int(env, "BOOKWORM_SUGGESTED_DEDUP_INTERVAL_MINUTES", 30),
            scheduler_enabled=_env_bool(env, "BOOKWORM_SCHEDULER_ENABLED", True),
            activity_log_max_entries=max(50, _env_int(env, "BOOKWORM_ACTIVITY_LOG_MAX_ENTRIES", 1000)),
            redis_host=_env_str(env, "BOOKWORM_REDIS_HOST") or "127.0.0.1",
            redis_port=_env_int(env, "BOOKWORM_REDIS_PORT", 6379),
            redis_db=_env_int(env, "BOOKWORM_REDIS_DB", 0),
            redis_password=_env_str(env, "BOOKWORM_REDIS_PASSWORD"),
        )


def load_settings(environ: Optional[Mapping[str, str]] = None) -> BookwormSettings:
    """Environment values overlaid with the persisted user settings."""
    from bookworm.infrastructure.stores.user_settings_store import UserSettingsStore

    base = BookwormSettings.from_env(environ)
    saved = UserSettingsStore(db_url=base.db_url).load()
    overrides = {}
    if saved.get("calibre_db_path"):
        overrides["calibre_db_path"] = saved["calibre_db_path"]
    if saved.get("hardcover_list_id"):
        overrides["hardcover_list_id"] = saved["hardcover_list_id"]
    if saved.get("hardcover_api_key"):
        overrides["hardcover_api_key"] = normalize_api_key(saved["hardcover_api_key"])
    return base.with_overrides(**overrides) if overrides else base


_settings: Optional[BookwormSettings] = None
_settings_lock = Lock()


def get_settings() -> BookwormSettings:
    global _settings
    with _settings_lock:
        if _settings is None:
            _settings = load_settings()
        return _settings


def reload_settings() -> BookwormSettings:
    global _settings
    fresh = load_settings()
    with _settings_lock:
        _settings = fresh
    return fresh
