"""Interactive Azure login via the OAuth authorization code flow.

This module orchestrates the complete browser login:
1. Start localhost callback server
2. Build authorization URL and open browser
3. Wait for callback (or cancellation)
4. Exchange code for tokens on the multi-tenant endpoint
5. Discover the user's tenant
6. Rebind the token to that tenant
7. Store the login record
"""

import asyncio
import hmac
import logging
import secrets
from typing import Callable
from urllib.parse import urlencode

from ..config import LoginConfig
from ..platform import BrowserOpenError, open_browser
from .callback import CallbackResult, CallbackTimeoutError, LocalhostCallbackServer
from .client import AuthError, IdentityClient, IdentityProviderError
from .store import TokenStore, TokenStoreError
from .tokens import LoginInfo

logger = logging.getLogger(__name__)


class LoginFailedError(Exception):
    """The interactive login produced no usable credential."""

    pass


def generate_state() -> str:
    """Generate a cryptographically random state parameter.

    The state parameter protects against CSRF attacks by ensuring
    the authorization response came from a request we initiated.

    Returns:
        32-character random hex string
    """
    return secrets.token_hex(16)


def build_authorization_url(config: LoginConfig, redirect_uri: str, state: str) -> str:
    """Build the authorization URL for browser redirect.

    Parameter order matches what the Azure CLI sends; prompt=select_account
    always shows the account chooser.

    Args:
        config: Login configuration (authorize endpoint, client id, scopes)
        redirect_uri: The callback URI
        state: State parameter for CSRF protection

    Returns:
        Complete authorization URL
    """
    params: dict[str, str] = {
        "response_type": "code",
        "client_id": config.client_id,
        "redirect_uri": redirect_uri,
        "state": state,
        "prompt": "select_account",
        "response_mode": "query",
        "scope": config.scopes,
    }
    return f"{config.authorize_url}?{urlencode(params)}"


class LoginFlow:
    """Orchestrates one interactive login.

    A flow instance owns nothing but its collaborators; each run() uses a
    fresh callback server and state value.

    Usage:
        flow = LoginFlow(config, token_store, IdentityClient(config))
        login_info = await flow.run(cancel=cancel_event)
    """

    def __init__(
        self,
        config: LoginConfig,
        token_store: TokenStore,
        client: IdentityClient,
        browser: Callable[[str], None] = open_browser,
        on_status: Callable[[str], None] | None = None,
    ):
        """Initialize login flow.

        Args:
            config: Login configuration
            token_store: Where the resulting login is persisted
            client: Identity provider client
            browser: Opens a URL; raises BrowserOpenError on failure
            on_status: Optional callback for status messages
        """
        self.config = config
        self.token_store = token_store
        self.client = client
        self.browser = browser
        self.on_status = on_status or (lambda msg: None)

    def _emit_status(self, message: str) -> None:
        """Emit a status message."""
        logger.info(message)
        self.on_status(message)

    async def _wait_for_callback(
        self,
        server: LocalhostCallbackServer,
        cancel: asyncio.Event | None,
    ) -> CallbackResult | None:
        """Wait for the redirect, or return None if cancel fires first."""
        if cancel is None:
            return await server.wait_for_callback()

        callback_task = asyncio.ensure_future(server.wait_for_callback())
        cancel_task = asyncio.ensure_future(cancel.wait())

        try:
            done, _ = await asyncio.wait(
                {callback_task, cancel_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for task in (callback_task, cancel_task):
                if not task.done():
                    task.cancel()
            await asyncio.gather(callback_task, cancel_task, return_exceptions=True)

        if callback_task in done:
            return callback_task.result()
        return None

    async def run(self, cancel: asyncio.Event | None = None) -> LoginInfo | None:
        """Execute the complete login.

        Args:
            cancel: Optional event; setting it while waiting for the browser
                abandons the login

        Returns:
            The stored LoginInfo, or None if the login was cancelled

        Raises:
            BindError: If no local port is available for the callback
            LoginFailedError: If the provider reports an error, the callback is
                malformed or times out, tenant discovery fails, or the login
                cannot be stored
            AuthError: If the authorization code is rejected
        """
        async with LocalhostCallbackServer(timeout=self.config.callback_timeout) as server:
            redirect_uri = server.redirect_uri
            state = generate_state()

            auth_url = build_authorization_url(self.config, redirect_uri, state)

            self._emit_status("Opening browser for Azure login...")
            self._emit_status(f"Waiting for callback on {redirect_uri}")
            try:
                self.browser(auth_url)
            except BrowserOpenError as e:
                raise LoginFailedError(str(e)) from e

            try:
                result = await self._wait_for_callback(server, cancel)
            except CallbackTimeoutError as e:
                raise LoginFailedError(f"Login failed: {e}") from e

        if result is None:
            logger.info("Login cancelled before a callback arrived")
            return None

        code = self._validate_callback(result, state)

        self._emit_status("Exchanging code for tokens...")
        try:
            token = await self.client.exchange_code(code, redirect_uri)
        except AuthError as e:
            raise AuthError(f"Access token request failed: {e}") from e

        try:
            tenants = await self.client.discover_tenants(token.access_token)
        except IdentityProviderError as e:
            raise LoginFailedError(f"Login failed: {e}") from e

        if not tenants:
            raise LoginFailedError("Login failed: no tenant found for this account")

        # TODO: let the user pick when the account belongs to several tenants
        tenant_id = tenants[0]
        logger.debug(f"Discovered {len(tenants)} tenant(s), using {tenant_id}")

        try:
            tenant_token = await self.client.refresh(token.refresh_token, tenant_id)
        except AuthError as e:
            raise LoginFailedError(f"Login failed: {e}") from e

        login_info = LoginInfo(tenant_id=tenant_id, token=tenant_token.to_token())

        try:
            self.token_store.write(login_info)
        except TokenStoreError as e:
            raise LoginFailedError(f"Login failed: {e}") from e

        self._emit_status("Login Succeeded")
        return login_info

    def _validate_callback(self, result: CallbackResult, state: str) -> str:
        """Check the redirect and return its authorization code."""
        if result.error is not None:
            detail = f" - {result.error_description}" if result.error_description else ""
            raise LoginFailedError(f"Login failed: {result.error}{detail}")

        if result.code is None:
            raise LoginFailedError("Login failed: no authorization code in callback")

        # Use constant-time comparison to prevent timing attacks
        if not hmac.compare_digest(result.state or "", state):
            raise LoginFailedError("Login failed: state mismatch in callback")

        return result.code
