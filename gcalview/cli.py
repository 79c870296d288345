"""Command-line entry point.

Query commands print one JSON document on stdout: ``items``, ``status`` and
``rerun`` (seconds after which the caller should invoke the command again,
or null). The ``update`` commands are what background refresh jobs run.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional

import click

from . import actions, calendars, config, updater
from .context import Context
from .errors import GcalviewError
from .models import Calendar, Event, SelectionKind
from .serialization import serialize_calendar, serialize_event
from .utils import format_date, now, parse_date

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s: %(name)s: %(message)s"


class DateType(click.ParamType):
    name = "date"

    def convert(self, value: Any, param: Optional[click.Parameter], ctx: Optional[click.Context]) -> date:
        if isinstance(value, date):
            return value
        try:
            return parse_date(value)
        except ValueError:
            self.fail(f"{value!r} is not a YYYY-MM-DD date", param, ctx)


DATE = DateType()


@click.group()
@click.version_option(version="0.1.0")
@click.option("--cache-dir", type=click.Path(path_type=Path), default=None, help="Cache directory")
@click.option("--data-dir", type=click.Path(path_type=Path), default=None, help="Data directory")
@click.option("-v", "--verbose", is_flag=True, help="Log debug output")
@click.pass_context
def cli(ctx: click.Context, cache_dir: Optional[Path], data_dir: Optional[Path], verbose: bool) -> None:
    """gcalview - view Google Calendar events from a launcher."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)
    ctx.obj = Context(
        cache_dir=cache_dir or config.cache_dir(),
        data_dir=data_dir or config.data_dir(),
    )


def _emit(items: List[Dict[str, Any]], status: str = "ok", rerun: Optional[float] = None) -> None:
    click.echo(json.dumps({"items": items, "status": status, "rerun": rerun}, indent=2))


def _event_item(event: Event) -> Dict[str, Any]:
    item = serialize_event(event)
    item["map_url"] = event.map_url
    return item


def _calendar_item(calendar: Calendar, active: bool) -> Dict[str, Any]:
    item = serialize_calendar(calendar)
    item["active"] = active
    return item


@cli.group()
def update() -> None:
    """Refresh cached data (run by background jobs)."""
    logging.getLogger().setLevel(logging.INFO)


@update.command("calendars")
@click.pass_obj
def update_calendars(ctx: Context) -> None:
    """Reload every account's calendar list."""
    try:
        updater.update_calendars(ctx)
    except Exception:
        logger.exception("[update] calendar update failed")
        sys.exit(1)


@update.command("events")
@click.argument("day", type=DATE)
@click.pass_obj
def update_events(ctx: Context, day: date) -> None:
    """Fetch events of the active calendars for DAY."""
    try:
        updater.update_events(ctx, day)
    except Exception:
        logger.exception("[update] event update failed")
        sys.exit(1)


@cli.command()
@click.option("--date", "day", type=DATE, default=None, help="Day to show (default: today)")
@click.option("--schedule", is_flag=True, help="Show the whole schedule window")
@click.pass_obj
def events(ctx: Context, day: Optional[date], schedule: bool) -> None:
    """Show cached events, refreshing in the background if stale."""
    day = day or now().date()
    selection = calendars.active_calendars(ctx)
    if selection.kind is SelectionKind.NO_CALENDARS:
        _emit([], status="loading", rerun=config.RERUN_INTERVAL)
        return
    if not selection.ok:
        _emit([], status=selection.kind.value)
        return

    result = calendars.load_events(ctx, day, selection.calendars)
    found: List[Event] = result.value
    if not schedule:
        found = calendars.events_on(found, day)

    rerun = config.RERUN_INTERVAL if result.still_refreshing else None
    status = "loading" if not found and result.still_refreshing else "ok"
    _emit([_event_item(event) for event in found], status=status, rerun=rerun)


@cli.command("calendars")
@click.option("--writable", is_flag=True, help="Only calendars that accept new events")
@click.pass_obj
def list_calendars(ctx: Context, writable: bool) -> None:
    """List calendars and whether each one is active."""
    if writable:
        selection = calendars.writable_calendars(ctx)
        active = calendars.active_calendar_ids(ctx) or set()
        items = [_calendar_item(calendar, calendar.id in active) for calendar in selection.calendars]
        _emit(items, status=selection.kind.value)
        return

    if not ctx.accounts():
        _emit([], status=SelectionKind.NO_ACCOUNTS.value)
        return

    result = calendars.all_calendars(ctx)
    active = calendars.active_calendar_ids(ctx) or set()
    rerun = config.RERUN_INTERVAL_CALENDARS if result.still_refreshing else None
    status = "loading" if not result.value and result.still_refreshing else "ok"
    _emit([_calendar_item(calendar, calendar.id in active) for calendar in result.value], status=status, rerun=rerun)


@cli.command()
@click.argument("calendar_id")
@click.pass_obj
def toggle(ctx: Context, calendar_id: str) -> None:
    """Activate or deactivate a calendar."""
    enabled = actions.toggle_calendar(ctx, calendar_id)
    click.echo(f"{'Activated' if enabled else 'Deactivated'} {calendar_id}")


@cli.command()
@click.option("--readwrite", is_flag=True, help="Request permission to create events")
@click.pass_obj
def login(ctx: Context, readwrite: bool) -> None:
    """Add a Google account."""
    try:
        account = actions.login(ctx, read_write=readwrite)
    except GcalviewError as exc:
        raise click.ClickException(str(exc)) from exc
    access = "read-write" if account.read_write else "read-only"
    click.echo(f"Logged in as {account.name} ({access})")


@cli.command()
@click.argument("email")
@click.pass_obj
def logout(ctx: Context, email: str) -> None:
    """Remove a Google account."""
    if not actions.logout(ctx, email):
        raise click.ClickException(f"no such account: {email}")
    click.echo(f"Logged out {email}")


@cli.command()
@click.argument("email")
@click.pass_obj
def reauth(ctx: Context, email: str) -> None:
    """Authorize an existing account again."""
    try:
        account = actions.reauth(ctx, email)
    except GcalviewError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Re-authorized {account.name}")


@cli.command()
@click.pass_obj
def clear(ctx: Context) -> None:
    """Delete cached calendars and events."""
    removed = actions.clear_caches(ctx)
    click.echo(f"Deleted {removed} cache file(s)")


@cli.command()
@click.argument("text")
@click.argument("calendar_id")
@click.option("--date", "day", type=DATE, default=None, help="Day whose events to refresh afterwards")
@click.pass_obj
def create(ctx: Context, text: str, calendar_id: str, day: Optional[date]) -> None:
    """Create an event from TEXT in CALENDAR_ID."""
    try:
        created = actions.quick_add(ctx, text, calendar_id, day)
    except GcalviewError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Created {created.get('summary') or text!r} on {format_date(day or now().date())}")
