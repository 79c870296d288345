"""Fast read path: calendar lists, the active set, and cached events."""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import List, Optional, Sequence, Set

from . import config
from .context import JOB_UPDATE_CALENDARS, JOB_UPDATE_EVENTS, Context
from .models import Calendar, CalendarSelection, Event, RefreshResult, SelectionKind
from .serialization import deserialize_calendars, deserialize_events
from .utils import format_date, map_url, midnight

logger = logging.getLogger(__name__)

CALENDARS_KEY = "calendars.json"
ACTIVE_KEY = "active.json"


def events_key(day: date) -> str:
    return f"events-{format_date(day)}.json"


def all_calendars(ctx: Context) -> RefreshResult:
    result = ctx.orchestrator.get_or_refresh(
        CALENDARS_KEY,
        config.MAX_AGE_CALENDARS,
        JOB_UPDATE_CALENDARS,
        ctx.refresh_command("update", "calendars"),
        decode=deserialize_calendars,
    )
    if result.value is None:
        result.value = []
    return result


def active_calendar_ids(ctx: Context) -> Optional[Set[str]]:
    """IDs the user has switched on; None if no selection was ever made."""
    if not ctx.data.exists(ACTIVE_KEY):
        return None
    raw = ctx.data.load_json(ACTIVE_KEY)
    if not isinstance(raw, list):
        return set()
    return {str(item) for item in raw}


def save_active_calendar_ids(ctx: Context, ids: Set[str]) -> None:
    ctx.data.store_json(ACTIVE_KEY, sorted(ids))


def active_calendars(ctx: Context) -> CalendarSelection:
    if not ctx.accounts():
        return CalendarSelection(SelectionKind.NO_ACCOUNTS)

    ids = active_calendar_ids(ctx)
    if ids is None:
        return CalendarSelection(SelectionKind.NO_ACTIVE)

    result = all_calendars(ctx)
    calendars: List[Calendar] = result.value
    if not calendars:
        return CalendarSelection(SelectionKind.NO_CALENDARS, still_refreshing=result.still_refreshing)

    active = [calendar for calendar in calendars if calendar.id in ids]
    if not active:
        return CalendarSelection(SelectionKind.NO_ACTIVE, still_refreshing=result.still_refreshing)
    logger.debug("%d active calendar(s)", len(active))
    return CalendarSelection(SelectionKind.OK, active, still_refreshing=result.still_refreshing)


def writable_calendars(ctx: Context) -> CalendarSelection:
    accounts = ctx.accounts()
    if not accounts:
        return CalendarSelection(SelectionKind.NO_ACCOUNTS)

    writable = [
        calendar
        for account in accounts
        if account.read_write and account.logged_in
        for calendar in account.calendars
        if calendar.writable
    ]
    if not writable:
        return CalendarSelection(SelectionKind.NO_WRITABLE)
    return CalendarSelection(SelectionKind.OK, sorted(writable, key=lambda calendar: calendar.title))


def load_events(ctx: Context, day: date, calendars: Optional[Sequence[Calendar]] = None) -> RefreshResult:
    """Cached events starting on ``day``'s schedule window, refreshing in the background when stale."""
    result = ctx.orchestrator.get_or_refresh(
        events_key(day),
        config.max_age_events(),
        JOB_UPDATE_EVENTS,
        ctx.refresh_command("update", "events", format_date(day)),
        decode=deserialize_events,
    )
    events: List[Event] = result.value or []
    if calendars is not None:
        wanted = {calendar.id for calendar in calendars}
        events = [event for event in events if event.calendar_id in wanted]

    apple = config.use_apple_maps()
    for event in events:
        event.map_url = map_url(event.location, apple=apple)
    result.value = events
    return result


def events_on(events: Sequence[Event], day: date) -> List[Event]:
    end = midnight(day + timedelta(days=1))
    return [event for event in events if event.start < end]
