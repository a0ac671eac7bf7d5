"""Local OAuth redirect endpoint and the single-flight guard around it.

Google redirects the browser to a fixed local URI (``http://localhost:4100/code``
by default) after the user approves access. ``CallbackListener`` serves that
one route from a background thread and hands the outcome to the event loop.
Only one listener can own the port, so ``AuthFlowCoordinator`` admits one
interactive flow per process and rejects the rest with ``AuthFlowBusy``.
"""

import asyncio
import logging
import threading
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import parse_qs, urlparse

from gsuite_mcp.auth.models import PendingAuthorization
from gsuite_mcp.errors import AuthFlowBusy, AuthorizationDenied, AuthTimeout

logger = logging.getLogger(__name__)

DEFAULT_CALLBACK_HOST = "localhost"
DEFAULT_CALLBACK_PORT = 4100
DEFAULT_CALLBACK_PATH = "/code"
DEFAULT_AUTH_TIMEOUT = 300.0

SUCCESS_PAGE = (
    b"<html><body><h1>Authentication Successful!</h1>"
    b"<p>You can close this tab.</p></body></html>"
)
DENIED_PAGE = (
    b"<html><body><h1>Authentication Failed</h1>"
    b"<p>Please close this window and try again.</p></body></html>"
)
MISSING_CODE_PAGE = (
    b"<html><body><h1>Authentication Failed</h1>"
    b"<p>No authorization code received.</p></body></html>"
)


class _CallbackHTTPServer(ThreadingHTTPServer):
    daemon_threads = True
    # A second process on the same port must fail to bind
    allow_reuse_port = False

    def __init__(self, address: tuple[str, int], listener: "CallbackListener") -> None:
        self.listener = listener
        super().__init__(address, _CallbackHandler)

    def verify_request(self, request, client_address) -> bool:  # type: ignore[no-untyped-def]
        # One-shot: nothing is served once the flow has an outcome
        return not self.listener.resolved


class _CallbackHandler(BaseHTTPRequestHandler):
    """HTTP handler for the OAuth redirect."""

    server: _CallbackHTTPServer

    def log_message(self, format: str, *args) -> None:  # noqa: A002
        logger.debug("OAuth callback: " + format, *args)

    def _respond(self, status: int, body: bytes = b"") -> None:
        self.send_response(status)
        self.send_header("Content-type", "text/html")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def do_GET(self) -> None:
        listener = self.server.listener
        request_parsed = urlparse(self.path)

        if request_parsed.path != listener.path:
            self._respond(404, b"Not Found")
            return

        query_params = parse_qs(request_parsed.query)

        state = query_params.get("state", [None])[0]
        if not listener.accepts_state(state):
            logger.warning("Ignoring OAuth callback with a state not issued for this flow")
            self._respond(400, MISSING_CODE_PAGE)
            return

        if "error" in query_params:
            reason = query_params["error"][0]
            if listener.resolve(error=AuthorizationDenied(reason)):
                self._respond(400, DENIED_PAGE)
            else:
                self._respond(400)
            return

        code = query_params.get("code", [None])[0]
        if not code:
            self._respond(400, MISSING_CODE_PAGE)
            return

        if listener.resolve(code=code):
            self._respond(200, SUCCESS_PAGE)
        else:
            self._respond(400)


class CallbackListener:
    """One-shot local HTTP endpoint receiving the authorization code.

    Created per authorization attempt. The first request carrying a code (or
    a provider error) resolves the flow; afterwards no further requests are
    served and the port is released by ``close()``.

    Attributes:
        host: Interface to bind.
        path: The only route served.
    """

    def __init__(
        self,
        host: str = DEFAULT_CALLBACK_HOST,
        port: int = DEFAULT_CALLBACK_PORT,
        path: str = DEFAULT_CALLBACK_PATH,
        state_validator: Callable[[str], bool] | None = None,
    ) -> None:
        self.host = host
        self.path = path
        self._port = port
        self._state_validator = state_validator
        self._lock = threading.Lock()
        self._resolved = False
        self._server: _CallbackHTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._outcome: asyncio.Future[str] | None = None

    @classmethod
    def from_redirect_uri(
        cls, redirect_uri: str, state_validator: Callable[[str], bool] | None = None
    ) -> "CallbackListener":
        """Create a listener serving exactly the registered redirect URI."""
        parsed = urlparse(redirect_uri)
        return cls(
            host=parsed.hostname or DEFAULT_CALLBACK_HOST,
            port=parsed.port or DEFAULT_CALLBACK_PORT,
            path=parsed.path or DEFAULT_CALLBACK_PATH,
            state_validator=state_validator,
        )

    @property
    def port(self) -> int:
        """The bound port (differs from the requested one only for port 0)."""
        if self._server is not None:
            return self._server.server_address[1]
        return self._port

    @property
    def resolved(self) -> bool:
        return self._resolved

    @property
    def is_listening(self) -> bool:
        return self._server is not None

    def accepts_state(self, state: str | None) -> bool:
        """Check a callback state. A missing state fails when a validator is set."""
        if self._state_validator is None:
            return True
        return state is not None and self._state_validator(state)

    async def start(self) -> None:
        """Bind the port and start serving in a background thread.

        Raises:
            AuthFlowBusy: If the port is held by another listener or process.
        """
        self._loop = asyncio.get_running_loop()
        self._outcome = self._loop.create_future()
        try:
            self._server = _CallbackHTTPServer((self.host, self._port), self)
        except OSError as e:
            raise AuthFlowBusy(
                f"OAuth callback port {self._port} is already in use: {e.strerror or e}"
            ) from e

        self._thread = threading.Thread(
            target=self._server.serve_forever,
            name="gsuite-mcp-oauth-callback",
            daemon=True,
        )
        self._thread.start()
        logger.info("Waiting for OAuth callback on http://%s:%d%s", self.host, self.port, self.path)

    def resolve(self, code: str | None = None, error: Exception | None = None) -> bool:
        """Record the flow outcome. Called from the HTTP server thread.

        Returns:
            True if this call resolved the flow, False if it was already
            resolved.
        """
        with self._lock:
            if self._resolved:
                return False
            self._resolved = True

        if self._loop is not None:
            self._loop.call_soon_threadsafe(self._set_outcome, code, error)
        return True

    def _set_outcome(self, code: str | None, error: Exception | None) -> None:
        if self._outcome is None or self._outcome.done():
            return
        if error is not None:
            self._outcome.set_exception(error)
        else:
            self._outcome.set_result(code or "")

    async def wait_for_code(self, timeout: float = DEFAULT_AUTH_TIMEOUT) -> str:
        """Wait for the redirect and return the authorization code.

        The listener is closed on every exit path.

        Raises:
            AuthorizationDenied: If the provider redirected with an error.
            AuthTimeout: If no callback arrived within ``timeout`` seconds.
        """
        if self._outcome is None:
            raise RuntimeError("CallbackListener.start() must be awaited first")
        try:
            return await asyncio.wait_for(asyncio.shield(self._outcome), timeout)
        except asyncio.TimeoutError:
            raise AuthTimeout(timeout) from None
        finally:
            await self.close()

    async def close(self) -> None:
        """Stop serving and release the port. Safe to call repeatedly."""
        with self._lock:
            self._resolved = True
        server, self._server = self._server, None
        if server is None:
            return

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, server.shutdown)
        server.server_close()
        if self._thread is not None:
            self._thread.join(timeout=1)
            self._thread = None

        if self._outcome is not None and not self._outcome.done():
            self._outcome.cancel()
        logger.debug("OAuth callback listener on port %d closed", self._port)


class AuthFlowCoordinator:
    """Process-wide guard admitting one interactive authorization at a time.

    Example:
        ```python
        async with coordinator.acquire("a@example.com", url) as pending:
            ...  # the callback port belongs to this flow
        ```
    """

    def __init__(self) -> None:
        self._pending: PendingAuthorization | None = None

    @property
    def pending(self) -> PendingAuthorization | None:
        """The flow currently holding the callback port, if any."""
        return self._pending

    def is_pending(self, user_id: str) -> bool:
        return self._pending is not None and self._pending.user_id == user_id

    @asynccontextmanager
    async def acquire(
        self, user_id: str, authorization_url: str
    ) -> AsyncIterator[PendingAuthorization]:
        """Hold the callback resource for the duration of one flow.

        Raises:
            AuthFlowBusy: If another flow is already in progress.
        """
        if self._pending is not None:
            holder = self._pending.user_id
            raise AuthFlowBusy(
                f"An authorization flow for {holder} is already in progress; "
                "complete it in the browser and retry",
                user_id=user_id,
                holder=holder,
            )

        pending = PendingAuthorization(user_id=user_id, authorization_url=authorization_url)
        self._pending = pending
        try:
            yield pending
        finally:
            if self._pending is pending:
                self._pending = None
