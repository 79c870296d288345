"""Configuration helpers for gcalview."""

from __future__ import annotations

import os
from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import List
from zoneinfo import ZoneInfo

AUTH_HOST = "localhost"
DEFAULT_AUTH_PORT = 61432
DEFAULT_AUTH_TIMEOUT_SECONDS = 300

SCOPE_READONLY = "https://www.googleapis.com/auth/calendar.readonly"
SCOPE_READWRITE = "https://www.googleapis.com/auth/calendar"
SCOPES_IDENTITY = [
    "openid",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
]

MAX_AGE_CALENDARS = timedelta(hours=3)
MIN_AGE_EVENTS = timedelta(minutes=5)
OLD_FILE_AGE = timedelta(days=14)

# seconds the launcher should wait before re-invoking us
RERUN_INTERVAL = 0.1
RERUN_INTERVAL_CALENDARS = 0.3

GOOGLE_MAPS_URL = "https://www.google.com/maps/search/"
APPLE_MAPS_URL = "http://maps.apple.com/"


@lru_cache(maxsize=1)
def timezone() -> ZoneInfo:
    tz = os.getenv("APP_TIMEZONE", "UTC")
    try:
        return ZoneInfo(tz)
    except Exception:
        return ZoneInfo("UTC")


def cache_dir() -> Path:
    raw = os.getenv("GCALVIEW_CACHE_DIR")
    if raw and raw.strip():
        return Path(raw.strip()).expanduser()
    return Path.home() / ".cache" / "gcalview"


def data_dir() -> Path:
    raw = os.getenv("GCALVIEW_DATA_DIR")
    if raw and raw.strip():
        return Path(raw.strip()).expanduser()
    return Path.home() / ".local" / "share" / "gcalview"


def google_client_id() -> str | None:
    raw = os.getenv("GOOGLE_CLIENT_ID")
    return raw.strip() if raw and raw.strip() else None


def google_client_secret() -> str | None:
    raw = os.getenv("GOOGLE_CLIENT_SECRET")
    return raw.strip() if raw and raw.strip() else None


def auth_port() -> int:
    return _env_int("GOOGLE_AUTH_PORT", DEFAULT_AUTH_PORT)


def auth_timeout() -> float:
    return float(_env_int("GOOGLE_AUTH_TIMEOUT", DEFAULT_AUTH_TIMEOUT_SECONDS))


def google_redirect_uri() -> str:
    return f"http://{AUTH_HOST}:{auth_port()}"


def google_scopes(read_write: bool = False) -> List[str]:
    calendar_scope = SCOPE_READWRITE if read_write else SCOPE_READONLY
    return [calendar_scope, *SCOPES_IDENTITY]


def max_age_events() -> timedelta:
    age = timedelta(minutes=_env_int("EVENT_CACHE_MINS", 30))
    return max(age, MIN_AGE_EVENTS)


def schedule_duration() -> timedelta:
    return timedelta(days=_env_int("SCHEDULE_DAYS", 3))


def use_apple_maps() -> bool:
    return _env_flag("APPLE_MAPS")


def _env_flag(name: str) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    return raw in ("1", "yes", "true", "on")


def _env_int(name: str, fallback: int) -> int:
    raw = os.getenv(name)
    try:
        return int(raw) if raw else fallback
    except (TypeError, ValueError):
        return fallback
