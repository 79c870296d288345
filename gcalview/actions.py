"""Explicit user actions. Errors here are shown to the user."""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, Optional

from .calendars import CALENDARS_KEY, active_calendar_ids, save_active_calendar_ids
from .context import JOB_UPDATE_CALENDARS, Context
from .errors import GcalviewError, JobExistsError, NotAuthenticatedError
from .models import Account
from .updater import update_events
from .utils import now

logger = logging.getLogger(__name__)


def login(ctx: Context, read_write: bool = False) -> Account:
    """Authorize a new Google account and schedule a calendar refresh."""
    account = Account()
    ctx.authenticator_for(account, read_write=read_write).get_credentials()
    _refresh_calendars(ctx)
    return account


def reauth(ctx: Context, name: str) -> Account:
    account = ctx.tokens.load(name)
    if account is None:
        raise NotAuthenticatedError(f"no such account: {name}")
    account.credential = None
    ctx.tokens.save(account)
    ctx.authenticator_for(account).get_credentials()
    _refresh_calendars(ctx)
    return account


def logout(ctx: Context, name: str) -> bool:
    removed = ctx.tokens.delete(name)
    if removed:
        ctx.cache.remove(CALENDARS_KEY)
    return removed


def toggle_calendar(ctx: Context, calendar_id: str) -> bool:
    """Switch a calendar in or out of the active set; returns the new state."""
    ids = active_calendar_ids(ctx) or set()
    if calendar_id in ids:
        ids.discard(calendar_id)
        enabled = False
    else:
        ids.add(calendar_id)
        enabled = True
    save_active_calendar_ids(ctx, ids)
    logger.info("calendar %r %s", calendar_id, "activated" if enabled else "deactivated")
    clear_caches(ctx, calendars=False)
    return enabled


def clear_caches(ctx: Context, calendars: bool = True) -> int:
    removed = 0
    if calendars and ctx.cache.remove(CALENDARS_KEY):
        removed += 1
    for key in ctx.cache.keys(prefix="events-", suffix=".json"):
        if ctx.cache.remove(key):
            removed += 1
    return removed


def quick_add(ctx: Context, text: str, calendar_id: str, day: Optional[date] = None) -> Dict[str, Any]:
    """Create an event from free text, then refresh that day's events."""
    accounts = ctx.accounts()
    if not accounts:
        raise NotAuthenticatedError("no Google accounts configured")

    for account in accounts:
        if not any(calendar.id == calendar_id for calendar in account.calendars):
            continue
        if not account.read_write:
            raise NotAuthenticatedError(f"account {account.name!r} is read-only; log in again with write access")
        created = ctx.service.quick_add(ctx.authenticator_for(account), calendar_id, text)
        logger.info("created event %r in %r", created.get("summary"), calendar_id)
        update_events(ctx, day or now().date())
        return created
    raise GcalviewError(f"unknown calendar: {calendar_id}")


def _refresh_calendars(ctx: Context) -> None:
    try:
        ctx.jobs.run_in_background(JOB_UPDATE_CALENDARS, ctx.refresh_command("update", "calendars"))
    except JobExistsError:
        logger.debug("calendar refresh already running")
