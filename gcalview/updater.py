"""Work done by the detached ``update`` processes.

These run with nobody watching: failures are logged to the job's own log
file and raised so the process exits non-zero.
"""

from __future__ import annotations

import logging
from datetime import date
from pathlib import Path
from typing import List

from . import config
from .calendars import CALENDARS_KEY, active_calendar_ids, events_key
from .context import Context
from .errors import AuthenticationError, RevokedCredentialError
from .google import download_avatar
from .models import Calendar, Event
from .serialization import serialize_calendar, serialize_events
from .utils import format_date, midnight

logger = logging.getLogger(__name__)

OLD_FILE_SKIP_DIRS = ("jobs",)


def _is_old_cache_file(path: Path) -> bool:
    name = path.name
    return (name.startswith("events-") and name.endswith(".json")) or path.suffix == ".png"


def clear_old_files(ctx: Context) -> int:
    removed = ctx.cache.clear_old_files(config.OLD_FILE_AGE, [_is_old_cache_file], skip_dirs=OLD_FILE_SKIP_DIRS)
    if removed:
        logger.info("[update] deleted %d old cache file(s)", removed)
    return removed


def update_calendars(ctx: Context) -> List[Calendar]:
    logger.info("[update] reloading calendars...")
    accounts = ctx.accounts()
    if not accounts:
        logger.info("[update] no Google accounts configured")

    combined: List[Calendar] = []
    for account in accounts:
        if not account.logged_in:
            logger.warning("[update] account %r is logged out, keeping its calendars", account.name)
            combined.extend(account.calendars)
            continue

        auth = ctx.authenticator_for(account)
        try:
            account.calendars = ctx.service.list_calendars(auth)
        except (RevokedCredentialError, AuthenticationError) as exc:
            logger.error("[update] calendars for %r: %s", account.name, exc)
            combined.extend(account.calendars)
            continue

        stored = ctx.tokens.load(account.name) or account
        stored.calendars = account.calendars
        ctx.tokens.save(stored)
        combined.extend(account.calendars)
        logger.info("[update] %d calendar(s) in account %r", len(account.calendars), account.name)

        avatar = ctx.tokens.avatar_path(account)
        if account.avatar_url and not avatar.exists():
            download_avatar(account.avatar_url, avatar)

    combined.sort(key=lambda calendar: calendar.title)
    ctx.cache.store_json(CALENDARS_KEY, [serialize_calendar(calendar) for calendar in combined])
    return combined


def update_events(ctx: Context, day: date) -> List[Event]:
    logger.info("[update] fetching events for %s ...", format_date(day))

    try:
        clear_old_files(ctx)
    except OSError as exc:
        logger.error("[update] delete old cache files: %s", exc)

    accounts = ctx.accounts()
    if not accounts:
        logger.info("[update] no Google accounts configured")
        return []

    ids = active_calendar_ids(ctx)
    if not ids:
        logger.info("[update] no active calendars")
        return []
    logger.info("[update] %d active calendar(s)", len(ids))

    start = midnight(day)
    end = start + config.schedule_duration()
    events = ctx.fetcher.fetch_all(accounts, ids, start, end)
    for event in events:
        logger.debug("[update] %s", event)

    ctx.cache.store_json(events_key(day), serialize_events(events))
    logger.info("[update] stored %d event(s) for %s", len(events), format_date(day))
    return events
