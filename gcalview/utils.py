from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Tuple
from urllib.parse import urlencode

from dateutil import parser

from . import config

DATE_FORMAT = "%Y-%m-%d"


def now() -> datetime:
    return datetime.now(config.timezone())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_datetime(raw: str) -> datetime:
    dt = parser.isoparse(raw)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def parse_date(raw: str) -> date:
    return datetime.strptime(raw, DATE_FORMAT).date()


def format_date(day: date) -> str:
    return day.strftime(DATE_FORMAT)


def midnight(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=config.timezone())


def day_window(day: date, length: timedelta = timedelta(days=1)) -> Tuple[datetime, datetime]:
    start = midnight(day)
    return start, start + length


def as_aware_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def as_naive_utc(dt: datetime) -> datetime:
    return as_aware_utc(dt).replace(tzinfo=None)


def map_url(location: str, apple: bool | None = None) -> str:
    if not location:
        return ""
    if apple is None:
        apple = config.use_apple_maps()
    if apple:
        return f"{config.APPLE_MAPS_URL}?{urlencode({'address': location})}"
    return f"{config.GOOGLE_MAPS_URL}?{urlencode({'api': 1, 'query': location})}"
