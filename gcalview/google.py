from __future__ import annotations

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, NamedTuple, Optional, Tuple

import httpx

from . import config
from .errors import GoogleNotConfigured
from .models import Account, Calendar, Credential, Event
from .utils import as_aware_utc, as_naive_utc, parse_datetime

if TYPE_CHECKING:  # pragma: no cover
    from google.oauth2.credentials import Credentials  # type: ignore
    from google_auth_oauthlib.flow import Flow  # type: ignore

    from .auth import Authenticator

logger = logging.getLogger(__name__)

TOKEN_URI = "https://oauth2.googleapis.com/token"
AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
WRITABLE_ROLES = ("owner", "writer")
MAX_RESULTS = 2500


class _GoogleModules(NamedTuple):
    build: Any
    credentials: Any
    flow: Any
    request: Any


_GOOGLE_MODULES: _GoogleModules | None = None


def _google_modules() -> _GoogleModules:
    global _GOOGLE_MODULES
    if _GOOGLE_MODULES is not None:
        return _GOOGLE_MODULES

    try:
        from googleapiclient.discovery import build as _build  # type: ignore
        from google.oauth2.credentials import Credentials as _Credentials  # type: ignore
        from google_auth_oauthlib.flow import Flow as _Flow  # type: ignore
        from google.auth.transport.requests import Request as _Request  # type: ignore
    except ImportError as exc:  # pragma: no cover - import guard
        raise GoogleNotConfigured(
            "Google client libraries are not installed. Install google-api-python-client, google-auth, and google-auth-oauthlib."
        ) from exc

    _GOOGLE_MODULES = _GoogleModules(
        build=_build,
        credentials=_Credentials,
        flow=_Flow,
        request=_Request,
    )
    return _GOOGLE_MODULES


def ensure_google_configured() -> None:
    if not config.google_client_id() or not config.google_client_secret():
        raise GoogleNotConfigured("Google OAuth is not configured.")


def build_flow(state: str, scopes: List[str]) -> Flow:
    ensure_google_configured()
    # the user may grant fewer scopes than requested
    os.environ.setdefault("OAUTHLIB_RELAX_TOKEN_SCOPE", "1")
    Flow = _google_modules().flow
    return Flow.from_client_config(
        {
            "web": {
                "client_id": config.google_client_id(),
                "client_secret": config.google_client_secret(),
                "redirect_uris": [config.google_redirect_uri()],
                "auth_uri": AUTH_URI,
                "token_uri": TOKEN_URI,
            }
        },
        scopes=scopes,
        redirect_uri=config.google_redirect_uri(),
        state=state,
    )


def credentials_for(credential: Credential, scopes: List[str]) -> Credentials:
    modules = _google_modules()
    return modules.credentials(
        token=credential.access_token,
        refresh_token=credential.refresh_token,
        token_uri=TOKEN_URI,
        client_id=config.google_client_id(),
        client_secret=config.google_client_secret(),
        scopes=scopes,
        expiry=as_naive_utc(credential.expires_at) if credential.expires_at else None,
    )


def credential_from_google(creds: Credentials, token: Mapping[str, Any] | None = None) -> Credential:
    token = token or {}
    expiry = getattr(creds, "expiry", None)
    return Credential(
        access_token=creds.token,
        refresh_token=creds.refresh_token,
        token_type=token.get("token_type"),
        scope=" ".join(granted_scopes(token.get("scope"))) or None,
        expires_at=as_aware_utc(expiry) if isinstance(expiry, datetime) else None,
    )


def granted_scopes(raw: Any) -> List[str]:
    if isinstance(raw, str):
        return [scope for scope in raw.split() if scope]
    if isinstance(raw, (list, tuple, set)):
        return [str(scope) for scope in raw if scope]
    return []


def oauth_error_details(exc: BaseException) -> Optional[Tuple[str, Optional[str]]]:
    """Extract ``(error, error_description)`` from an OAuth2 failure, if it is one.

    Token refresh failures carry the provider's JSON body as an argument;
    HTTP errors from the API client carry it as ``content``.
    """
    for arg in getattr(exc, "args", ()):
        if isinstance(arg, Mapping) and isinstance(arg.get("error"), str):
            return arg["error"], arg.get("error_description")

    content = getattr(exc, "content", None)
    if isinstance(content, (bytes, str)):
        try:
            body = json.loads(content)
        except (ValueError, UnicodeDecodeError):
            body = None
        if isinstance(body, Mapping) and isinstance(body.get("error"), str):
            return body["error"], body.get("error_description")

    if exc.args and isinstance(exc.args[0], str):
        name, _, description = exc.args[0].partition(":")
        if name in ("invalid_grant", "invalid_client", "unauthorized_client"):
            return name, description.strip() or None
    return None


def lookup_profile(creds: Credentials) -> Dict[str, Any]:
    modules = _google_modules()
    service = modules.build("oauth2", "v2", credentials=creds, cache_discovery=False)
    return service.userinfo().get().execute()


def download_avatar(url: str, path: Path) -> None:
    response = httpx.get(url, timeout=30.0, follow_redirects=True)
    response.raise_for_status()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(response.content)
    logger.info("[account] saved avatar %s", path)


def map_calendar(entry: Mapping[str, Any], account_name: str) -> Calendar:
    return Calendar(
        id=entry.get("id") or "",
        title=entry.get("summaryOverride") or entry.get("summary") or "",
        description=entry.get("description") or "",
        colour=entry.get("backgroundColor") or "",
        account_name=account_name,
        writable=entry.get("accessRole") in WRITABLE_ROLES,
    )


def map_event(item: Mapping[str, Any], calendar: Calendar) -> Optional[Event]:
    """Build an Event from an API item; None for all-day or unparsable items."""
    start_raw = (item.get("start") or {}).get("dateTime")
    end_raw = (item.get("end") or {}).get("dateTime")
    if not start_raw:
        return None

    try:
        start = parse_datetime(start_raw)
    except (ValueError, OverflowError) as exc:
        logger.error("[events] parse start time (%s): %s", start_raw, exc)
        return None
    try:
        end = parse_datetime(end_raw or "")
    except (ValueError, OverflowError) as exc:
        logger.error("[events] parse end time (%s): %s", end_raw, exc)
        return None

    return Event(
        id=item.get("id") or "",
        ical_uid=item.get("iCalUID") or "",
        title=item.get("summary") or "",
        description=item.get("description") or "",
        url=item.get("htmlLink") or "",
        location=item.get("location") or "",
        start=start,
        end=end,
        colour=calendar.colour,
        calendar_id=calendar.id,
        calendar_title=calendar.title,
    )


class GoogleCalendarService:
    def _execute(self, auth: Authenticator, request: Callable[[Any], Any]) -> Any:
        modules = _google_modules()
        try:
            service = modules.build("calendar", "v3", credentials=auth.get_credentials(), cache_discovery=False)
            response = request(service).execute()
        except Exception as exc:
            error = auth.handle_api_error(exc)
            if error is exc:
                raise
            raise error from exc
        auth.persist_refreshed()
        return response

    def list_calendars(self, auth: Authenticator) -> List[Calendar]:
        account: Account = auth.account
        response = self._execute(auth, lambda service: service.calendarList().list())

        calendars: List[Calendar] = []
        for entry in response.get("items") or []:
            if entry.get("hidden"):
                logger.info("[account] ignoring hidden calendar %r in %r", entry.get("summary"), account.name)
                continue
            calendars.append(map_calendar(entry, account.name))
        calendars.sort(key=lambda calendar: calendar.title)
        return calendars

    def list_events(
        self,
        auth: Authenticator,
        calendar: Calendar,
        start: datetime,
        end: datetime,
    ) -> List[Event]:
        logger.info(
            "[events] account=%r, cal=%r, start=%s, end=%s", auth.account.name, calendar.title, start, end
        )
        response = self._execute(
            auth,
            lambda service: service.events().list(
                calendarId=calendar.id,
                timeMin=start.isoformat(),
                timeMax=end.isoformat(),
                singleEvents=True,
                maxResults=MAX_RESULTS,
                orderBy="startTime",
            ),
        )

        events: List[Event] = []
        for item in response.get("items") or []:
            event = map_event(item, calendar)
            if event is not None:
                events.append(event)
        return events

    def quick_add(self, auth: Authenticator, calendar_id: str, text: str) -> Dict[str, Any]:
        return self._execute(auth, lambda service: service.events().quickAdd(calendarId=calendar_id, text=text))
