from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from .models import Account, Calendar, Credential, Event
from .utils import parse_datetime


def serialize_credential(credential: Credential) -> Dict[str, Any]:
    payload = asdict(credential)
    if isinstance(credential.expires_at, datetime):
        payload["expires_at"] = credential.expires_at.isoformat()
    return payload


def deserialize_credential(raw: Mapping[str, Any]) -> Optional[Credential]:
    access_token = _coerce_string(raw.get("access_token"))
    refresh_token = _coerce_string(raw.get("refresh_token"))
    if not access_token and not refresh_token:
        return None
    return Credential(
        access_token=access_token,
        refresh_token=refresh_token,
        token_type=_coerce_string(raw.get("token_type")),
        scope=_coerce_string(raw.get("scope")),
        expires_at=_parse_optional_datetime(raw.get("expires_at")),
    )


def serialize_calendar(calendar: Calendar) -> Dict[str, Any]:
    return asdict(calendar)


def deserialize_calendar(raw: Mapping[str, Any]) -> Calendar:
    return Calendar(
        id=_coerce_string(raw.get("id")) or "",
        title=_coerce_string(raw.get("title")) or "",
        description=_coerce_string(raw.get("description")) or "",
        colour=_coerce_string(raw.get("colour")) or "",
        account_name=_coerce_string(raw.get("account_name")) or "",
        writable=bool(raw.get("writable")),
    )


def serialize_account(account: Account) -> Dict[str, Any]:
    return {
        "name": account.name,
        "email": account.email,
        "display_name": account.display_name,
        "avatar_url": account.avatar_url,
        "read_write": account.read_write,
        "calendars": [serialize_calendar(calendar) for calendar in account.calendars],
        "credential": serialize_credential(account.credential) if account.credential else None,
    }


def deserialize_account(raw: Mapping[str, Any]) -> Account:
    credential = raw.get("credential")
    calendars = raw.get("calendars")
    return Account(
        name=_coerce_string(raw.get("name")) or "",
        email=_coerce_string(raw.get("email")) or "",
        display_name=_coerce_string(raw.get("display_name")),
        avatar_url=_coerce_string(raw.get("avatar_url")),
        read_write=bool(raw.get("read_write")),
        calendars=[
            deserialize_calendar(item) for item in calendars if isinstance(item, Mapping)
        ]
        if isinstance(calendars, list)
        else [],
        credential=deserialize_credential(credential) if isinstance(credential, Mapping) else None,
    )


def serialize_event(event: Event) -> Dict[str, Any]:
    payload = asdict(event)
    payload["start"] = event.start.isoformat()
    payload["end"] = event.end.isoformat()
    payload.pop("map_url", None)
    return payload


def deserialize_event(raw: Mapping[str, Any]) -> Event:
    return Event(
        id=_coerce_string(raw.get("id")) or "",
        title=_coerce_string(raw.get("title")) or "",
        start=parse_datetime(str(raw["start"])),
        end=parse_datetime(str(raw["end"])),
        calendar_id=_coerce_string(raw.get("calendar_id")) or "",
        ical_uid=_coerce_string(raw.get("ical_uid")) or "",
        description=_coerce_string(raw.get("description")) or "",
        url=_coerce_string(raw.get("url")) or "",
        location=_coerce_string(raw.get("location")) or "",
        colour=_coerce_string(raw.get("colour")) or "",
        calendar_title=_coerce_string(raw.get("calendar_title")) or "",
    )


def serialize_events(events: List[Event]) -> List[Dict[str, Any]]:
    return [serialize_event(event) for event in events]


def deserialize_events(raw: Any) -> List[Event]:
    if not isinstance(raw, list):
        return []
    return [deserialize_event(item) for item in raw if isinstance(item, Mapping)]


def deserialize_calendars(raw: Any) -> List[Calendar]:
    if not isinstance(raw, list):
        return []
    return [deserialize_calendar(item) for item in raw if isinstance(item, Mapping)]


def _parse_optional_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return parse_datetime(value)
        except ValueError:
            return None
    return None


def _coerce_string(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    if value is None:
        return None
    return str(value)
