from __future__ import annotations

import sys
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from . import config
from .auth import Authenticator
from .cache import CacheStore
from .fetcher import ConcurrentFetcher
from .google import GoogleCalendarService
from .jobs import JobCoordinator
from .models import Account
from .orchestrator import RefreshOrchestrator
from .token_store import TokenStore

JOB_UPDATE_CALENDARS = "update-calendars"
JOB_UPDATE_EVENTS = "update-events"


@dataclass
class Context:
    """Everything one invocation needs: storage roots, stores, and the clock."""

    cache_dir: Path
    data_dir: Path
    clock: Callable[[], float] = time.time
    open_url: Optional[Callable[[str], bool]] = None
    service: GoogleCalendarService = field(default_factory=GoogleCalendarService)
    auth_failed: threading.Event = field(default_factory=threading.Event)
    handshake_lock: threading.Lock = field(default_factory=threading.Lock)

    def __post_init__(self) -> None:
        self.cache_dir = Path(self.cache_dir)
        self.data_dir = Path(self.data_dir)
        self.cache = CacheStore(self.cache_dir, clock=self.clock)
        self.data = CacheStore(self.data_dir, clock=self.clock)
        self.tokens = TokenStore(self.data, self.icons_dir)
        self.jobs = JobCoordinator(self.cache_dir / "jobs", clock=self.clock)
        self.orchestrator = RefreshOrchestrator(self.cache, self.jobs)
        self.fetcher = ConcurrentFetcher(self.service, self.authenticator_for)
        self._authenticators: Dict[str, Authenticator] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_env(cls) -> "Context":
        return cls(cache_dir=config.cache_dir(), data_dir=config.data_dir())

    @property
    def icons_dir(self) -> Path:
        return self.cache_dir / "icons"

    def accounts(self) -> List[Account]:
        return self.tokens.load_all()

    def authenticator_for(self, account: Account, read_write: Optional[bool] = None) -> Authenticator:
        """Authenticator for ``account``; one per stored account per invocation."""
        kwargs: Dict[str, Any] = {
            "failed": self.auth_failed,
            "handshake_lock": self.handshake_lock,
            "read_write": read_write,
        }
        if self.open_url is not None:
            kwargs["open_url"] = self.open_url
        if not account.name:
            return Authenticator(account, self.tokens, **kwargs)
        with self._lock:
            auth = self._authenticators.get(account.name)
            if auth is None:
                auth = Authenticator(account, self.tokens, **kwargs)
                self._authenticators[account.name] = auth
            return auth

    def refresh_command(self, *args: str) -> List[str]:
        return [
            sys.executable,
            "-m",
            "gcalview",
            "--cache-dir",
            str(self.cache_dir),
            "--data-dir",
            str(self.data_dir),
            *args,
        ]
