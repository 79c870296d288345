"""Per-account credential acquisition.

An Authenticator hands out Google credentials for one account. A stored,
usable credential is returned without any network traffic. Otherwise the
browser-based authorization-code handshake runs once: concurrent callers
wait for it, and a failure is sticky for the rest of the process. The
failure flag is shared by every Authenticator built from the same context,
so one failed handshake stops all further prompts. They also share a
handshake lock, so the browser is opened for one account at a time.
"""

from __future__ import annotations

import enum
import logging
import secrets
import threading
import webbrowser
from datetime import datetime
from typing import Any, Callable, Optional

from . import config
from .callback import CallbackListener
from .errors import AuthenticationError, RevokedCredentialError
from .google import (
    build_flow,
    credential_from_google,
    credentials_for,
    download_avatar,
    granted_scopes,
    lookup_profile,
    oauth_error_details,
)
from .models import Account
from .token_store import TokenStore
from .utils import utcnow

logger = logging.getLogger(__name__)


class AuthState(enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


class Authenticator:
    def __init__(
        self,
        account: Account,
        token_store: TokenStore,
        *,
        failed: Optional[threading.Event] = None,
        handshake_lock: Optional[threading.Lock] = None,
        read_write: Optional[bool] = None,
        open_url: Callable[[str], bool] = webbrowser.open,
        listener_factory: Callable[[str], CallbackListener] = CallbackListener,
        timeout: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.account = account
        self.token_store = token_store
        self.failed = failed if failed is not None else threading.Event()
        self.handshake_lock = handshake_lock if handshake_lock is not None else threading.Lock()
        self.read_write = account.read_write if read_write is None else read_write
        self.open_url = open_url
        self.listener_factory = listener_factory
        self.timeout = timeout if timeout is not None else config.auth_timeout()
        self.clock = clock

        self.state = AuthState.UNAUTHENTICATED
        self._lock = threading.Lock()
        self._credentials: Any = None

    def get_credentials(self) -> Any:
        """Return google-auth credentials for the account, authorizing if needed."""
        with self._lock:
            if self.state is AuthState.FAILED or self.failed.is_set():
                self.state = AuthState.FAILED
                raise AuthenticationError("authentication failed")
            if self.state is AuthState.AUTHENTICATED:
                return self._credentials

            credential = self.account.credential
            if credential is not None and credential.usable(self.clock()):
                scopes = granted_scopes(credential.scope) or config.google_scopes(self.account.read_write)
                self._credentials = credentials_for(credential, scopes)
                self.state = AuthState.AUTHENTICATED
                return self._credentials

            try:
                with self.handshake_lock:
                    if self.failed.is_set():
                        raise AuthenticationError("authentication failed")
                    self._credentials = self._handshake()
            except Exception as exc:
                self.state = AuthState.FAILED
                self.failed.set()
                logger.error("[auth] authorization for %r failed: %s", self.account.name or "new account", exc)
                if isinstance(exc, AuthenticationError):
                    raise
                raise AuthenticationError(str(exc)) from exc
            self.state = AuthState.AUTHENTICATED
            return self._credentials

    def _handshake(self) -> Any:
        state = secrets.token_hex(32)
        scopes = config.google_scopes(self.read_write)
        flow = build_flow(state, scopes)
        url, _ = flow.authorization_url(access_type="offline", prompt="consent", include_granted_scopes="true")

        with self.listener_factory(state) as listener:
            logger.info("[auth] opening browser for authorization (state=%s...)", state[:8])
            if not self.open_url(url):
                raise AuthenticationError("could not open a browser for authorization")
            code = listener.wait(self.timeout)

        try:
            flow.fetch_token(code=code)
        except Exception as exc:
            raise AuthenticationError(f"token exchange failed: {exc}") from exc

        creds = flow.credentials
        token = dict(getattr(flow.oauth2session, "token", None) or {})
        granted = granted_scopes(token.get("scope")) or list(getattr(creds, "granted_scopes", None) or scopes)
        self.account.read_write = config.SCOPE_READWRITE in granted
        if self.read_write and not self.account.read_write:
            logger.warning("[auth] read-write access requested but only read-only was granted")
        token.setdefault("scope", granted)
        self.account.credential = credential_from_google(creds, token)

        if not self.account.name:
            self._identify(creds)
        self.token_store.save(self.account)
        return creds

    def _identify(self, creds: Any) -> None:
        try:
            profile = lookup_profile(creds)
        except Exception as exc:
            raise AuthenticationError(f"could not retrieve user info: {exc}") from exc
        email = profile.get("email")
        if not email:
            raise AuthenticationError("user info did not include an email address")
        self.account.name = email
        self.account.email = email
        self.account.display_name = profile.get("name")
        self.account.avatar_url = profile.get("picture")
        logger.info("[auth] authorized %r", email)

        if self.account.avatar_url:
            try:
                download_avatar(self.account.avatar_url, self.token_store.avatar_path(self.account))
            except Exception as exc:
                logger.warning("[auth] could not download avatar for %r: %s", email, exc)

    def persist_refreshed(self) -> None:
        """Save the access token if the client library refreshed it."""
        creds = self._credentials
        current = self.account.credential
        if creds is None or current is None or not self.account.name:
            return
        if creds.token == current.access_token:
            return
        refreshed = credential_from_google(creds, {"token_type": current.token_type, "scope": current.scope})
        refreshed.refresh_token = refreshed.refresh_token or current.refresh_token
        self.account.credential = refreshed
        stored = self.token_store.load(self.account.name) or self.account
        stored.credential = refreshed
        self.token_store.save(stored)
        logger.debug("[auth] saved refreshed token for %r", self.account.name)

    def handle_api_error(self, exc: BaseException) -> BaseException:
        """Map a provider failure to the exception callers should see.

        A revoked or expired grant clears and persists the account's
        credential so the next run starts a fresh authorization.
        """
        details = oauth_error_details(exc)
        if details is None:
            return exc
        error, description = details
        logger.error("[auth] OAuth error for %r: %s (%s)", self.account.name, error, description)
        if error != "invalid_grant":
            return AuthenticationError(f"{error}: {description or 'no description'}")

        self.account.credential = None
        if self.account.name:
            stored = self.token_store.load(self.account.name) or self.account
            stored.credential = None
            self.token_store.save(stored)
        return RevokedCredentialError(self.account.name, error, description)
