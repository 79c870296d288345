from __future__ import annotations

from typing import Optional


class GcalviewError(Exception):
    pass


class GoogleNotConfigured(GcalviewError):
    pass


class CacheError(GcalviewError):
    pass


class NotAuthenticatedError(GcalviewError):
    pass


class JobExistsError(GcalviewError):
    """A live process already owns the job name."""

    def __init__(self, name: str, pid: Optional[int] = None) -> None:
        super().__init__(f"job {name!r} is already running (pid={pid})")
        self.name = name
        self.pid = pid


class AuthenticationError(GcalviewError):
    pass


class StateMismatchError(AuthenticationError):
    pass


class AuthorizationDenied(AuthenticationError):
    pass


class AuthTimeoutError(AuthenticationError):
    pass


class RevokedCredentialError(GcalviewError):
    """The provider rejected the stored grant; the credential has been cleared."""

    def __init__(self, account: str, error: str, description: Optional[str] = None) -> None:
        super().__init__(f"authentication error for {account!r}: {error} ({description or 'no description'})")
        self.account = account
        self.error = error
        self.description = description
