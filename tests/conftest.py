from __future__ import annotations

import os
import signal
from datetime import datetime, timedelta, timezone
from typing import List
from unittest.mock import MagicMock

import pytest

from gcalview import config, google
from gcalview.context import Context
from gcalview.models import Account, Calendar, Credential

ENV_VARS = (
    "GCALVIEW_CACHE_DIR",
    "GCALVIEW_DATA_DIR",
    "GOOGLE_AUTH_PORT",
    "GOOGLE_AUTH_TIMEOUT",
    "EVENT_CACHE_MINS",
    "SCHEDULE_DAYS",
    "APP_TIMEZONE",
    "APPLE_MAPS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("GOOGLE_CLIENT_ID", "client-id")
    monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "client-secret")
    config.timezone.cache_clear()
    yield
    config.timezone.cache_clear()


@pytest.fixture
def context(tmp_path):
    return Context(cache_dir=tmp_path / "cache", data_dir=tmp_path / "data")


@pytest.fixture
def google_modules(monkeypatch):
    """Replace the Google client libraries with mocks."""
    modules = google._GoogleModules(
        build=MagicMock(name="build"),
        credentials=MagicMock(name="Credentials"),
        flow=MagicMock(name="Flow"),
        request=MagicMock(name="Request"),
    )
    monkeypatch.setattr(google, "_GOOGLE_MODULES", modules)
    return modules


@pytest.fixture
def spawned_pids():
    """Collects pids of real background processes and kills them afterwards."""
    pids: List[int] = []
    yield pids
    for pid in filter(None, pids):
        try:
            os.kill(pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        try:
            os.waitpid(pid, 0)
        except ChildProcessError:
            pass


def make_credential(**overrides) -> Credential:
    values = dict(
        access_token="access-token",
        refresh_token="refresh-token",
        token_type="Bearer",
        scope=config.SCOPE_READONLY,
        expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
    )
    values.update(overrides)
    return Credential(**values)


def make_account(name: str = "someone@example.com", calendars=None, **overrides) -> Account:
    values = dict(
        name=name,
        email=name,
        display_name="Someone",
        read_write=False,
        calendars=list(calendars or []),
        credential=make_credential(),
    )
    values.update(overrides)
    return Account(**values)


def make_calendar(calendar_id: str, title: str = "", account_name: str = "someone@example.com", **overrides) -> Calendar:
    return Calendar(id=calendar_id, title=title or calendar_id, account_name=account_name, **overrides)
