"""High-level login manager for azure-login.

This module provides the main interface for token operations, used by
the CLI and by API clients that need an Azure access token.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from ..config import LoginConfig, load_config
from ..platform import open_browser
from .client import AuthError, IdentityClient
from .flow import LoginFlow
from .store import NotLoggedInError, TokenStore, TokenStoreError
from .tokens import LoginInfo, Token

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _format_timedelta(td: timedelta) -> str:
    """Format a timedelta into a human-readable string.

    Examples:
        - "45 minutes"
        - "2 hours"
        - "3 days"

    Args:
        td: The timedelta to format

    Returns:
        Human-readable string representation
    """
    total_seconds = int(td.total_seconds())

    if total_seconds < 0:
        return "Expired"

    if total_seconds < 60:
        return f"{total_seconds} seconds"

    minutes = total_seconds // 60
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''}"

    hours = minutes // 60
    if hours < 24:
        return f"{hours} hour{'s' if hours != 1 else ''}"

    days = hours // 24
    return f"{days} day{'s' if days != 1 else ''}"


@dataclass
class AuthStatus:
    """Login status, without any secrets.

    Attributes:
        logged_in: Whether a login record is stored
        tenant_id: The tenant the stored token is bound to
        expired: Whether the access token has expired
        expires_at: When the access token expires (ISO format string)
        expires_in_human: Human-readable time until expiry (e.g., "45 minutes")
        has_refresh_token: Whether a refresh token is available
        using_keyring: Whether the store's encryption key lives in the OS keyring
        error: Any error reading the store
    """

    logged_in: bool = False
    tenant_id: str | None = None
    expired: bool = False
    expires_at: str | None = None
    expires_in_human: str | None = None
    has_refresh_token: bool = False
    using_keyring: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "logged_in": self.logged_in,
            "tenant_id": self.tenant_id,
            "expired": self.expired,
            "expires_at": self.expires_at,
            "expires_in_human": self.expires_in_human,
            "has_refresh_token": self.has_refresh_token,
            "using_keyring": self.using_keyring,
            "error": self.error,
        }


class LoginManager:
    """Manages the stored Azure login.

    This is the main interface for token operations. It handles:
    - Running the interactive login
    - Returning a valid access token, refreshing it when expired
    - Providing Authorization headers for HTTP requests
    - Reporting login status

    Usage:
        manager = LoginManager()

        await manager.login(on_status=print)
        token = await manager.get_valid_token()
    """

    def __init__(
        self,
        config: LoginConfig | None = None,
        token_store: TokenStore | None = None,
        client: IdentityClient | None = None,
        browser: Callable[[str], None] = open_browser,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """Initialize the manager.

        Args:
            config: Login configuration (defaults to the built-in Azure settings)
            token_store: Login record storage (defaults to config.store_path)
            client: Identity provider client
            browser: Opens the authorization URL
            clock: Returns the current UTC time; used for expiry checks
        """
        self.config = config or LoginConfig()
        self.token_store = token_store or TokenStore(self.config.store_path)
        self.client = client or IdentityClient(self.config)
        self.browser = browser
        self.clock = clock

    async def login(
        self,
        cancel: asyncio.Event | None = None,
        on_status: Callable[[str], None] | None = None,
    ) -> LoginInfo | None:
        """Run the interactive browser login.

        Args:
            cancel: Optional event that abandons the login while waiting
            on_status: Callback for status messages

        Returns:
            The stored LoginInfo, or None if cancelled

        Raises:
            BindError, LoginFailedError, AuthError: See LoginFlow.run
        """
        flow = LoginFlow(
            config=self.config,
            token_store=self.token_store,
            client=self.client,
            browser=self.browser,
            on_status=on_status,
        )
        return await flow.run(cancel=cancel)

    async def get_valid_token(self) -> Token:
        """Return a non-expired access token, refreshing it if needed.

        Returns:
            A token whose expiry is after the current time

        Raises:
            NotLoggedInError: If no login is stored
            AuthError: If the refresh is rejected; the user likely has to log in again
            TokenStoreError: If the stored or refreshed login cannot be read or written
        """
        login_info = self.token_store.read()
        token = login_info.token

        if token.is_valid(self.clock()):
            logger.debug("Stored access token is still valid, no refresh needed")
            return token

        tenant_id = login_info.tenant_id
        logger.info(f"Access token expired at {token.expiry.isoformat()}, refreshing")

        try:
            provider_token = await self.client.refresh(token.refresh_token, tenant_id)
        except AuthError as e:
            raise AuthError(
                f"Access token request failed. Maybe you need to login to Azure again: {e}"
            ) from e

        new_token = provider_token.to_token(self.clock())
        self.token_store.write(LoginInfo(tenant_id=tenant_id, token=new_token))
        logger.info(f"Access token refreshed for tenant {tenant_id}")

        return new_token

    async def get_auth_header(self) -> str:
        """Get the Authorization header value for Azure API requests.

        Returns:
            Authorization header value (e.g., "Bearer abc...")
        """
        token = await self.get_valid_token()
        return token.get_auth_header()

    def get_status(self) -> AuthStatus:
        """Get the login status without refreshing anything.

        Returns:
            AuthStatus describing the stored login
        """
        using_keyring = self.token_store.is_using_keyring()
        try:
            login_info = self.token_store.read()
        except NotLoggedInError:
            return AuthStatus(using_keyring=using_keyring)
        except TokenStoreError as e:
            logger.warning(f"Cannot read stored login: {e}")
            return AuthStatus(using_keyring=using_keyring, error=str(e))

        token = login_info.token
        now = self.clock()
        remaining = token.expiry - now

        return AuthStatus(
            logged_in=True,
            tenant_id=login_info.tenant_id,
            expired=not token.is_valid(now),
            expires_at=token.expiry.isoformat(),
            expires_in_human=_format_timedelta(remaining),
            has_refresh_token=token.has_refresh_token(),
            using_keyring=using_keyring,
        )


# Global singleton for convenient access (thread-safe)
_manager: LoginManager | None = None
_manager_lock = threading.Lock()


def get_login_manager() -> LoginManager:
    """Get the global login manager instance (thread-safe).

    Uses double-checked locking; the first call loads configuration
    from the environment.

    Returns:
        The singleton LoginManager instance
    """
    global _manager
    if _manager is None:
        with _manager_lock:
            # Double-check after acquiring lock
            if _manager is None:
                _manager = LoginManager(config=load_config())
    return _manager
