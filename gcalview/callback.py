"""One-shot loopback listener for the OAuth redirect.

The listener accepts a single delivery: the first request to "/" decides
the outcome and later requests are acknowledged but ignored.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

import uvicorn
from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from . import config
from .errors import AuthenticationError, AuthorizationDenied, AuthTimeoutError, StateMismatchError

logger = logging.getLogger(__name__)

STARTUP_TIMEOUT_SECONDS = 5.0
SHUTDOWN_TIMEOUT_SECONDS = 5.0


@dataclass
class CallbackResult:
    code: Optional[str] = None
    error: Optional[AuthenticationError] = None


def create_callback_app(expected_state: str, deliver: Callable[[CallbackResult], None]) -> FastAPI:
    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)
    delivered = threading.Event()

    def _deliver(result: CallbackResult) -> None:
        if delivered.is_set():
            return
        delivered.set()
        deliver(result)

    @app.get("/", response_class=PlainTextResponse)
    def oauth_callback(
        code: Optional[str] = None,
        state: Optional[str] = None,
        error: Optional[str] = None,
    ) -> str:
        if state != expected_state:
            logger.error("[auth] state mismatch: expected=%s..., got=%s...", expected_state[:8], (state or "")[:8])
            _deliver(CallbackResult(error=StateMismatchError("OAuth state mismatch")))
            return "bad state"
        if error:
            logger.error("[auth] authorization denied: %s", error)
            _deliver(CallbackResult(error=AuthorizationDenied(error)))
            return error
        if not code:
            _deliver(CallbackResult(error=AuthorizationDenied("access denied by user")))
            return "access denied by user"
        _deliver(CallbackResult(code=code))
        return "ok"

    return app


class CallbackListener:
    """Serves the callback app on the loopback address until closed."""

    def __init__(self, expected_state: str, host: str = config.AUTH_HOST, port: Optional[int] = None) -> None:
        self.expected_state = expected_state
        self.host = host
        self.port = port if port is not None else config.auth_port()
        self._results: "queue.Queue[CallbackResult]" = queue.Queue()
        self._server: Optional[uvicorn.Server] = None
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        app = create_callback_app(self.expected_state, self._results.put)
        server_config = uvicorn.Config(app, host=self.host, port=self.port, log_level="warning", lifespan="off")
        self._server = uvicorn.Server(server_config)
        self._thread = threading.Thread(target=self._server.run, name="oauth-callback", daemon=True)
        self._thread.start()

        deadline = time.monotonic() + STARTUP_TIMEOUT_SECONDS
        while not self._server.started:
            if not self._thread.is_alive() or time.monotonic() > deadline:
                self.close()
                raise AuthenticationError(f"could not listen on {self.host}:{self.port}")
            time.sleep(0.05)
        logger.info("[auth] listening for callback on %s:%d", self.host, self.port)

    def wait(self, timeout: float) -> str:
        try:
            result = self._results.get(timeout=timeout)
        except queue.Empty:
            raise AuthTimeoutError(f"no authorization received within {timeout:.0f}s") from None
        if result.error is not None:
            raise result.error
        if not result.code:
            raise AuthorizationDenied("access denied by user")
        return result.code

    def close(self) -> None:
        if self._server is not None:
            self._server.should_exit = True
        if self._thread is not None:
            self._thread.join(timeout=SHUTDOWN_TIMEOUT_SECONDS)
        self._server = None
        self._thread = None

    def __enter__(self) -> "CallbackListener":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
