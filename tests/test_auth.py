"""Tests for credential acquisition and revocation handling."""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from gcalview import config
from gcalview.auth import Authenticator, AuthState
from gcalview.errors import AuthenticationError, AuthTimeoutError, RevokedCredentialError, StateMismatchError
from gcalview.google import GoogleCalendarService
from gcalview.models import Account
from tests.conftest import make_account, make_credential

pytestmark = pytest.mark.unit


class FakeListener:
    """Stands in for the loopback listener; records how it was used."""

    def __init__(self, state: str, code: str | None = "auth-code", error: Exception | None = None) -> None:
        self.state = state
        self.code = code
        self.error = error
        self.entered = False
        self.closed = False

    def __enter__(self):
        self.entered = True
        return self

    def __exit__(self, *exc_info):
        self.closed = True

    def wait(self, timeout: float) -> str:
        if self.error is not None:
            raise self.error
        return self.code


class ListenerFactory:
    def __init__(self, **kwargs) -> None:
        self.kwargs = kwargs
        self.listeners: list[FakeListener] = []

    def __call__(self, state: str) -> FakeListener:
        listener = FakeListener(state, **self.kwargs)
        self.listeners.append(listener)
        return listener


class ProviderError(Exception):
    """Shaped like google-auth's RefreshError: message plus the response body."""


def configure_flow(google_modules, granted_scopes):
    flow = google_modules.flow.from_client_config.return_value
    flow.authorization_url.return_value = ("https://accounts.example.com/auth?state=x", "x")
    flow.oauth2session.token = {"token_type": "Bearer", "scope": granted_scopes}
    flow.credentials = MagicMock(
        token="new-access-token",
        refresh_token="new-refresh-token",
        expiry=datetime(2030, 1, 1, 12, 0),
    )
    profile = google_modules.build.return_value.userinfo.return_value.get.return_value.execute
    profile.return_value = {
        "email": "new@example.com",
        "name": "New Person",
        "picture": None,
    }
    return flow


class TestStoredCredential:
    def test_valid_credential_needs_no_handshake(self, context, google_modules):
        account = make_account(read_write=False)
        context.tokens.save(account)
        open_url = MagicMock()
        factory = ListenerFactory()
        auth = Authenticator(account, context.tokens, open_url=open_url, listener_factory=factory)

        creds = auth.get_credentials()

        assert creds is google_modules.credentials.return_value
        assert auth.state is AuthState.AUTHENTICATED
        open_url.assert_not_called()
        google_modules.flow.from_client_config.assert_not_called()
        google_modules.build.assert_not_called()
        assert factory.listeners == []

        kwargs = google_modules.credentials.call_args.kwargs
        assert kwargs["token"] == "access-token"
        assert kwargs["refresh_token"] == "refresh-token"
        assert kwargs["expiry"].tzinfo is None

    def test_authenticated_client_is_reused(self, context, google_modules):
        auth = Authenticator(make_account(), context.tokens, open_url=MagicMock())
        assert auth.get_credentials() is auth.get_credentials()
        assert google_modules.credentials.call_count == 1

    def test_expired_access_token_with_refresh_token_is_usable(self, context, google_modules):
        expired = make_credential(expires_at=datetime.now(timezone.utc) - timedelta(hours=1))
        open_url = MagicMock()
        auth = Authenticator(make_account(credential=expired), context.tokens, open_url=open_url)

        auth.get_credentials()
        open_url.assert_not_called()


class TestHandshake:
    def test_first_login_resolves_identity_and_persists(self, context, google_modules):
        flow = configure_flow(google_modules, [config.SCOPE_READONLY, *config.SCOPES_IDENTITY])
        open_url = MagicMock(return_value=True)
        factory = ListenerFactory()
        account = Account()
        auth = Authenticator(account, context.tokens, open_url=open_url, listener_factory=factory)

        creds = auth.get_credentials()

        assert creds is flow.credentials
        state = google_modules.flow.from_client_config.call_args.kwargs["state"]
        assert len(state) == 64
        assert factory.listeners[0].state == state
        assert factory.listeners[0].closed
        open_url.assert_called_once_with("https://accounts.example.com/auth?state=x")
        flow.fetch_token.assert_called_once_with(code="auth-code")

        stored = context.tokens.load("new@example.com")
        assert stored is not None
        assert stored.display_name == "New Person"
        assert stored.read_write is False
        assert stored.credential.access_token == "new-access-token"
        assert stored.credential.refresh_token == "new-refresh-token"
        assert stored.credential.expires_at == datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)

    def test_granted_scope_decides_capability(self, context, google_modules):
        configure_flow(google_modules, f"{config.SCOPE_READWRITE} openid")
        auth = Authenticator(
            Account(), context.tokens, read_write=True, open_url=MagicMock(), listener_factory=ListenerFactory()
        )
        auth.get_credentials()

        assert context.tokens.load("new@example.com").read_write is True
        scopes = google_modules.flow.from_client_config.call_args.kwargs["scopes"]
        assert config.SCOPE_READWRITE in scopes

    def test_read_write_request_downgraded_when_not_granted(self, context, google_modules):
        configure_flow(google_modules, [config.SCOPE_READONLY])
        auth = Authenticator(
            Account(), context.tokens, read_write=True, open_url=MagicMock(), listener_factory=ListenerFactory()
        )
        auth.get_credentials()
        assert context.tokens.load("new@example.com").read_write is False

    def test_known_account_skips_user_info(self, context, google_modules):
        configure_flow(google_modules, [config.SCOPE_READONLY])
        account = make_account(credential=None)
        auth = Authenticator(account, context.tokens, open_url=MagicMock(), listener_factory=ListenerFactory())
        auth.get_credentials()

        google_modules.build.assert_not_called()
        assert context.tokens.load(account.name).credential.access_token == "new-access-token"


class TestFailure:
    def test_state_mismatch_fails_and_poisons(self, context, google_modules):
        flow = configure_flow(google_modules, [config.SCOPE_READONLY])
        factory = ListenerFactory(error=StateMismatchError("OAuth state mismatch"))
        auth = Authenticator(Account(), context.tokens, open_url=MagicMock(), listener_factory=factory)

        with pytest.raises(StateMismatchError):
            auth.get_credentials()

        assert auth.state is AuthState.FAILED
        assert factory.listeners[0].closed
        flow.fetch_token.assert_not_called()
        assert context.tokens.load_all() == []

        with pytest.raises(AuthenticationError):
            auth.get_credentials()
        assert len(factory.listeners) == 1

    def test_failure_is_sticky_across_accounts(self, context, google_modules):
        configure_flow(google_modules, [config.SCOPE_READONLY])
        failed = threading.Event()
        factory = ListenerFactory(error=AuthTimeoutError("no authorization received"))
        first = Authenticator(Account(), context.tokens, failed=failed, open_url=MagicMock(), listener_factory=factory)
        second = Authenticator(
            make_account("other@example.com", credential=None),
            context.tokens,
            failed=failed,
            open_url=MagicMock(),
            listener_factory=factory,
        )

        with pytest.raises(AuthTimeoutError):
            first.get_credentials()
        with pytest.raises(AuthenticationError):
            second.get_credentials()

        assert second.state is AuthState.FAILED
        assert len(factory.listeners) == 1

    def test_browser_failure_is_fatal(self, context, google_modules):
        configure_flow(google_modules, [config.SCOPE_READONLY])
        factory = ListenerFactory()
        auth = Authenticator(Account(), context.tokens, open_url=MagicMock(return_value=False), listener_factory=factory)

        with pytest.raises(AuthenticationError):
            auth.get_credentials()
        assert factory.listeners[0].closed
        assert auth.failed.is_set()

    def test_token_exchange_failure_is_wrapped(self, context, google_modules):
        flow = configure_flow(google_modules, [config.SCOPE_READONLY])
        flow.fetch_token.side_effect = RuntimeError("boom")
        auth = Authenticator(Account(), context.tokens, open_url=MagicMock(), listener_factory=ListenerFactory())

        with pytest.raises(AuthenticationError, match="token exchange failed"):
            auth.get_credentials()
        assert auth.state is AuthState.FAILED

    def test_concurrent_callers_share_one_handshake(self, context, google_modules):
        configure_flow(google_modules, [config.SCOPE_READONLY])
        factory = ListenerFactory()
        auth = Authenticator(Account(), context.tokens, open_url=MagicMock(), listener_factory=factory)
        results = []

        threads = [threading.Thread(target=lambda: results.append(auth.get_credentials())) for _ in range(5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(factory.listeners) == 1
        assert len(results) == 5
        assert all(result is results[0] for result in results)


class TestRevocation:
    def test_invalid_grant_clears_and_persists_credential(self, context, google_modules):
        account = make_account()
        context.tokens.save(account)
        execute = google_modules.build.return_value.calendarList.return_value.list.return_value.execute
        execute.side_effect = ProviderError(
            "invalid_grant: Token has been expired or revoked.",
            {"error": "invalid_grant", "error_description": "Token has been expired or revoked."},
        )
        auth = Authenticator(account, context.tokens, open_url=MagicMock())

        with pytest.raises(RevokedCredentialError) as excinfo:
            GoogleCalendarService().list_calendars(auth)

        assert excinfo.value.error == "invalid_grant"
        assert excinfo.value.description == "Token has been expired or revoked."
        assert account.credential is None
        assert context.tokens.load(account.name).credential is None

    def test_other_oauth_errors_keep_credential(self, context, google_modules):
        account = make_account()
        context.tokens.save(account)
        auth = Authenticator(account, context.tokens)

        error = auth.handle_api_error(ProviderError("invalid_client: Unauthorized", {"error": "invalid_client"}))

        assert isinstance(error, AuthenticationError)
        assert context.tokens.load(account.name).credential is not None

    def test_non_oauth_errors_pass_through(self, context):
        auth = Authenticator(make_account(), context.tokens)
        original = ConnectionError("network down")
        assert auth.handle_api_error(original) is original


class SlowListener(FakeListener):
    """Holds the loopback port for a moment, tracking how many are open at once."""

    open_now = 0
    most_open = 0
    guard = threading.Lock()

    def __enter__(self):
        with SlowListener.guard:
            SlowListener.open_now += 1
            SlowListener.most_open = max(SlowListener.most_open, SlowListener.open_now)
        return super().__enter__()

    def __exit__(self, *exc_info):
        with SlowListener.guard:
            SlowListener.open_now -= 1
        super().__exit__(*exc_info)

    def wait(self, timeout: float) -> str:
        threading.Event().wait(0.1)
        return super().wait(timeout)


def test_handshakes_for_different_accounts_run_one_at_a_time(context, google_modules, monkeypatch):
    configure_flow(google_modules, [config.SCOPE_READONLY])
    monkeypatch.setattr(SlowListener, "open_now", 0)
    monkeypatch.setattr(SlowListener, "most_open", 0)
    opened = []
    open_url = MagicMock(side_effect=lambda url: opened.append(url) or True)
    authenticators = [
        Authenticator(
            make_account(name, credential=None),
            context.tokens,
            failed=context.auth_failed,
            handshake_lock=context.handshake_lock,
            open_url=open_url,
            listener_factory=SlowListener,
        )
        for name in ("a@example.com", "b@example.com")
    ]

    threads = [threading.Thread(target=auth.get_credentials) for auth in authenticators]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert SlowListener.most_open == 1
    assert len(opened) == 2
    assert all(auth.state is AuthState.AUTHENTICATED for auth in authenticators)
    assert not context.auth_failed.is_set()


def test_waiting_handshake_gives_up_after_another_fails(context, google_modules):
    configure_flow(google_modules, [config.SCOPE_READONLY])
    open_url = MagicMock()
    auth = Authenticator(
        make_account(credential=None),
        context.tokens,
        failed=context.auth_failed,
        handshake_lock=context.handshake_lock,
        open_url=open_url,
        listener_factory=ListenerFactory(),
    )

    with context.handshake_lock:
        waiter = threading.Thread(target=lambda: pytest.raises(AuthenticationError, auth.get_credentials))
        waiter.start()
        threading.Event().wait(0.1)
        context.auth_failed.set()
    waiter.join()

    open_url.assert_not_called()
    assert auth.state is AuthState.FAILED
