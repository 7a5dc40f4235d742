"""Localhost callback server for OAuth redirects.

This module provides an ephemeral, single-use HTTP server that receives
the Azure AD authorization redirect. It:
- Binds an OS-assigned port on the loopback interface
- Delivers the first redirect on the callback path through a future
- Stops accepting connections once that redirect has been delivered
- Returns a user-friendly HTML page with success/error message
- Ignores unrelated requests (favicon, other paths)
"""

import asyncio
import html
import logging
from dataclasses import dataclass, field
from enum import Enum
from http import HTTPStatus
from typing import Any
from urllib.parse import parse_qs, urlparse

logger = logging.getLogger(__name__)

CALLBACK_HOST = "127.0.0.1"
CALLBACK_PATH = "/"


class CallbackError(Exception):
    """Error during OAuth callback handling."""

    pass


class BindError(CallbackError):
    """No local port could be bound for the callback server."""

    pass


class CallbackTimeoutError(CallbackError):
    """Timeout waiting for OAuth callback."""

    pass


class ListenerState(Enum):
    """Lifecycle of a callback server. There is no way back to LISTENING."""

    IDLE = "idle"
    LISTENING = "listening"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


@dataclass
class CallbackResult:
    """Result from OAuth callback.

    Attributes:
        code: The authorization code from the callback
        state: The state parameter from the callback
        error: Error code if authorization failed
        error_description: Human-readable error description
        params: All query parameters (first value of each)
    """

    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None
    params: dict[str, str] = field(default_factory=dict)

    def is_success(self) -> bool:
        """Check if callback was successful."""
        return self.code is not None and self.error is None


# HTML templates for callback responses
SUCCESS_HTML = """<!DOCTYPE html>
<html>
<head>
    <title>Login Successful</title>
    <style>
        body {{
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
            display: flex;
            justify-content: center;
            align-items: center;
            height: 100vh;
            margin: 0;
            background: #0078d4;
        }}
        .card {{
            background: white;
            padding: 40px 60px;
            border-radius: 8px;
            text-align: center;
        }}
        h1 {{ color: #1a1a1a; margin: 0 0 8px 0; font-size: 24px; }}
        p {{ color: #666; margin: 0; }}
    </style>
</head>
<body>
    <div class="card">
        <h1>Login Successful</h1>
        <p>You can close this window and return to the terminal.</p>
    </div>
</body>
</html>"""

ERROR_HTML = """<!DOCTYPE html>
<html>
<head>
    <title>Login Failed</title>
    <style>
        body {{
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
            display: flex;
            justify-content: center;
            align-items: center;
            height: 100vh;
            margin: 0;
            background: #a80000;
        }}
        .card {{
            background: white;
            padding: 40px 60px;
            border-radius: 8px;
            text-align: center;
            max-width: 400px;
        }}
        h1 {{ color: #1a1a1a; margin: 0 0 8px 0; font-size: 24px; }}
        p {{ color: #666; margin: 0 0 16px 0; }}
        .error {{
            background: #fee;
            padding: 12px;
            border-radius: 4px;
            color: #a80000;
            font-family: monospace;
            font-size: 14px;
        }}
    </style>
</head>
<body>
    <div class="card">
        <h1>Login Failed</h1>
        <p>Azure reported an error during login.</p>
        <div class="error">{error}: {description}</div>
    </div>
</body>
</html>"""


def parse_callback_url(url: str) -> CallbackResult:
    """Parse OAuth callback URL parameters.

    Args:
        url: The callback URL (or request target) with query parameters

    Returns:
        CallbackResult with parsed parameters
    """
    parsed = urlparse(url)
    query = parse_qs(parsed.query, keep_blank_values=True)

    # First value of each parameter
    params = {name: values[0] for name, values in query.items() if values}

    return CallbackResult(
        code=params.get("code"),
        state=params.get("state"),
        error=params.get("error"),
        error_description=params.get("error_description"),
        params=params,
    )


class LocalhostCallbackServer:
    """Single-use HTTP server for the OAuth redirect.

    Binds the loopback interface on a port chosen by the OS and resolves
    a future with the first GET on the callback path. After that the
    listening socket is closed and late requests that still reach the
    server are answered with 410 Gone.

    Usage:
        async with LocalhostCallbackServer() as server:
            redirect_uri = server.redirect_uri
            # Open browser with authorization URL using redirect_uri
            result = await server.wait_for_callback()
    """

    def __init__(self, timeout: float | None = None, path: str = CALLBACK_PATH):
        """Initialize callback server.

        Args:
            timeout: Seconds to wait for the callback (None waits until cancelled)
            path: URL path to listen on (default "/")
        """
        self.timeout = timeout
        self.path = path
        self.port: int = 0
        self.redirect_uri: str = ""
        self.state = ListenerState.IDLE

        self._server: asyncio.Server | None = None
        self._result: asyncio.Future[CallbackResult] | None = None

    async def start(self) -> str:
        """Start the callback server.

        Uses port=0 to let the OS atomically assign an available port,
        avoiding races between port discovery and binding.

        Returns:
            The redirect URI to use in the authorization request

        Raises:
            BindError: If no local port could be bound
            CallbackError: If this server has already been used
        """
        if self.state is not ListenerState.IDLE:
            raise CallbackError(f"Callback server is single-use (state: {self.state.value})")

        try:
            self._server = await asyncio.start_server(
                self._handle_connection,
                CALLBACK_HOST,
                0,
            )
        except OSError as e:
            raise BindError(f"Could not bind a local port for the login callback: {e}") from e

        sockets = self._server.sockets
        if not sockets:
            self._server.close()
            raise BindError("Failed to start callback server: no sockets created")

        self._result = asyncio.get_running_loop().create_future()
        self.port = sockets[0].getsockname()[1]
        # Azure CLI's app registration allows http://localhost with any port
        self.redirect_uri = f"http://localhost:{self.port}"
        if self.path != "/":
            self.redirect_uri += self.path
        self.state = ListenerState.LISTENING

        logger.debug(f"Callback server started on {self.redirect_uri}")
        return self.redirect_uri

    async def stop(self) -> None:
        """Stop the callback server and release its port."""
        if self.state is ListenerState.LISTENING:
            self.state = ListenerState.CANCELLED
        if self._result is not None and not self._result.done():
            self._result.cancel()
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
            logger.debug(f"Callback server stopped ({self.state.value})")

    async def wait_for_callback(self) -> CallbackResult:
        """Wait for the OAuth callback.

        Returns:
            CallbackResult with the authorization code or error

        Raises:
            CallbackTimeoutError: If a timeout is configured and reached
            CallbackError: If the server was never started or was stopped
        """
        if self._result is None:
            raise CallbackError("Server not started")

        try:
            # shield: a timeout must not cancel the shared future
            return await asyncio.wait_for(asyncio.shield(self._result), timeout=self.timeout)
        except TimeoutError:
            raise CallbackTimeoutError(
                f"Timeout waiting for login callback after {self.timeout} seconds"
            ) from None
        except asyncio.CancelledError:
            if self._result.cancelled():
                raise CallbackError("Callback server stopped before a callback arrived") from None
            raise

    def _deliver(self, result: CallbackResult) -> bool:
        """Resolve the pending future and stop accepting connections.

        Returns:
            False if a callback was already delivered (or the server stopped)
        """
        if self._result is None or self._result.done():
            return False

        self._result.set_result(result)
        self.state = ListenerState.DELIVERED
        # Only close the listening socket here; wait_closed() would wait
        # for this very handler to finish
        if self._server:
            self._server.close()
        return True

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Handle incoming HTTP connection."""
        try:
            # Parse request line (e.g., "GET /?code=xxx&state=yyy HTTP/1.1")
            request_line = await reader.readline()
            request_text = request_line.decode("utf-8", errors="replace")

            parts = request_text.strip().split(" ")
            if len(parts) < 2:
                await self._send_response(writer, HTTPStatus.BAD_REQUEST, "Invalid request")
                return

            method, target = parts[0], parts[1]

            # Read headers (consume them but we don't need them)
            while True:
                header_line = await reader.readline()
                if header_line in (b"\r\n", b"\n", b""):
                    break

            if urlparse(target).path != self.path:
                await self._send_response(writer, HTTPStatus.NOT_FOUND, "Not found")
                return

            if method != "GET":
                await self._send_response(
                    writer, HTTPStatus.METHOD_NOT_ALLOWED, "Method not allowed"
                )
                return

            result = parse_callback_url(target)

            # Deliver before responding so the browser always gets a page,
            # whether or not anyone is waiting on the result
            if not self._deliver(result):
                logger.debug("Ignoring callback received after delivery")
                await self._send_response(writer, HTTPStatus.GONE, "Login already completed")
                return

            logger.debug("Login callback received")

            if result.is_success():
                await self._send_html_response(writer, HTTPStatus.OK, SUCCESS_HTML.format())
            else:
                # HTML-escape error messages to prevent XSS attacks
                error_html = ERROR_HTML.format(
                    error=html.escape(result.error or "unknown_error"),
                    description=html.escape(result.error_description or "No description provided"),
                )
                await self._send_html_response(writer, HTTPStatus.OK, error_html)

        except (ConnectionError, asyncio.IncompleteReadError) as e:
            logger.debug(f"Callback connection dropped: {e}")

        except Exception as e:
            logger.warning(f"Error handling callback request: {e}")
            try:
                await self._send_response(
                    writer, HTTPStatus.INTERNAL_SERVER_ERROR, "Internal error"
                )
            except ConnectionError:
                pass

        finally:
            try:
                writer.close()
                await writer.wait_closed()
            except ConnectionError:
                pass

    async def _send_response(
        self,
        writer: asyncio.StreamWriter,
        status: HTTPStatus,
        body: str,
    ) -> None:
        """Send a plain text HTTP response."""
        response = (
            f"HTTP/1.1 {status.value} {status.phrase}\r\n"
            f"Content-Type: text/plain\r\n"
            f"Content-Length: {len(body)}\r\n"
            f"Connection: close\r\n"
            f"\r\n"
            f"{body}"
        )
        writer.write(response.encode("utf-8"))
        await writer.drain()

    async def _send_html_response(
        self,
        writer: asyncio.StreamWriter,
        status: HTTPStatus,
        html_content: str,
    ) -> None:
        """Send an HTML HTTP response with security headers."""
        body = html_content.encode("utf-8")
        headers = (
            f"HTTP/1.1 {status.value} {status.phrase}\r\n"
            f"Content-Type: text/html; charset=utf-8\r\n"
            f"Content-Length: {len(body)}\r\n"
            f"X-Content-Type-Options: nosniff\r\n"
            f"X-Frame-Options: DENY\r\n"
            f"Content-Security-Policy: default-src 'none'; style-src 'unsafe-inline'\r\n"
            f"Connection: close\r\n"
            f"\r\n"
        )
        writer.write(headers.encode("utf-8") + body)
        await writer.drain()

    async def __aenter__(self) -> "LocalhostCallbackServer":
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.stop()
