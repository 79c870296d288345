from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional


@dataclass
class Credential:
    access_token: Optional[str]
    refresh_token: Optional[str] = None
    token_type: Optional[str] = None
    scope: Optional[str] = None
    expires_at: Optional[datetime] = None

    def expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def usable(self, now: datetime) -> bool:
        """True if the credential can authorize a call without a web handshake."""
        if self.refresh_token:
            return True
        return bool(self.access_token) and not self.expired(now)


@dataclass
class Calendar:
    id: str
    title: str
    description: str = ""
    colour: str = ""
    account_name: str = ""
    writable: bool = False


@dataclass
class Account:
    name: str = ""
    email: str = ""
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    read_write: bool = False
    calendars: List[Calendar] = field(default_factory=list)
    credential: Optional[Credential] = None

    @property
    def logged_in(self) -> bool:
        return self.credential is not None


@dataclass
class Event:
    id: str
    title: str
    start: datetime
    end: datetime
    calendar_id: str
    ical_uid: str = ""
    description: str = ""
    url: str = ""
    location: str = ""
    colour: str = ""
    calendar_title: str = ""
    map_url: str = ""

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def __str__(self) -> str:
        minutes = self.duration.total_seconds() / 60
        return f'"{self.title}" on {self.start:%d/%m at %H:%M} for {minutes:.0f}m'


class SelectionKind(str, enum.Enum):
    OK = "ok"
    NO_ACCOUNTS = "no_accounts"
    NO_CALENDARS = "no_calendars"
    NO_ACTIVE = "no_active"
    NO_WRITABLE = "no_writable"


@dataclass
class CalendarSelection:
    kind: SelectionKind
    calendars: List[Calendar] = field(default_factory=list)
    still_refreshing: bool = False

    @property
    def ok(self) -> bool:
        return self.kind is SelectionKind.OK


@dataclass
class RefreshResult:
    value: object
    still_refreshing: bool = False
    error: Optional[Exception] = None
