from __future__ import annotations

import logging
import queue
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Sequence, Set, Tuple

from .auth import Authenticator
from .google import GoogleCalendarService
from .models import Account, Calendar, Event

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 8


class ConcurrentFetcher:
    """Fetches events for many calendars in parallel and merges them.

    One worker runs per calendar. A calendar that fails is logged and left
    out; the merged result is sorted by start time (stable with respect to
    arrival order) and holds each (calendar id, event id) pair once.
    """

    def __init__(
        self,
        service: GoogleCalendarService,
        authenticator_for: Callable[[Account], Authenticator],
        max_workers: int = DEFAULT_MAX_WORKERS,
    ) -> None:
        self.service = service
        self.authenticator_for = authenticator_for
        self.max_workers = max_workers

    def fetch_events(
        self,
        account: Account,
        calendars: Sequence[Calendar],
        start: datetime,
        end: datetime,
    ) -> List[Event]:
        auth = self.authenticator_for(account)
        return self._fan_out([(auth, calendar) for calendar in calendars], start, end)

    def fetch_all(
        self,
        accounts: Iterable[Account],
        calendar_ids: Optional[Set[str]],
        start: datetime,
        end: datetime,
    ) -> List[Event]:
        """Fetch across accounts; ``calendar_ids`` of None means every calendar."""
        tasks: List[Tuple[Authenticator, Calendar]] = []
        for account in accounts:
            calendars = [
                calendar
                for calendar in account.calendars
                if calendar_ids is None or calendar.id in calendar_ids
            ]
            if not calendars:
                continue
            auth = self.authenticator_for(account)
            tasks.extend((auth, calendar) for calendar in calendars)
        return self._fan_out(tasks, start, end)

    def _fan_out(
        self,
        tasks: Sequence[Tuple[Authenticator, Calendar]],
        start: datetime,
        end: datetime,
    ) -> List[Event]:
        if not tasks:
            return []

        results: "queue.Queue[List[Event]]" = queue.Queue()

        def _fetch(auth: Authenticator, calendar: Calendar) -> None:
            try:
                events = self.service.list_events(auth, calendar, start, end)
            except Exception as exc:
                logger.error("[events] fetching calendar %r (%s) failed: %s", calendar.title, calendar.id, exc)
                return
            logger.info("[events] %d event(s) in calendar %r", len(events), calendar.title)
            results.put(events)

        workers = max(1, min(self.max_workers, len(tasks)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fetch") as executor:
            for auth, calendar in tasks:
                executor.submit(_fetch, auth, calendar)

        merged: List[Event] = []
        seen: Set[Tuple[str, str]] = set()
        while True:
            try:
                batch = results.get_nowait()
            except queue.Empty:
                break
            for event in batch:
                key = (event.calendar_id, event.id)
                if key in seen:
                    continue
                seen.add(key)
                merged.append(event)

        merged.sort(key=lambda event: event.start)
        return merged
