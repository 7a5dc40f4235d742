"""Azure AD browser login and token lifecycle for azure-login.

This package implements the OAuth authorization code login used by the
Azure CLI public client, persists the resulting token, and refreshes it
when it expires.

Main Components:
    LoginManager: High-level manager for login and token operations
    LoginFlow: Interactive browser login orchestration
    IdentityClient: Azure AD token endpoint and tenant discovery
    TokenStore: Encrypted login record storage
    LocalhostCallbackServer: Single-use redirect listener

Quick Start:
    from azure_login.oauth import get_login_manager

    manager = get_login_manager()

    # Interactive login
    await manager.login(on_status=print)

    # Get auth header for requests (refreshes if expired)
    header = await manager.get_auth_header()
"""

from .auth import BearerAuth
from .callback import (
    BindError,
    CallbackError,
    CallbackResult,
    CallbackTimeoutError,
    ListenerState,
    LocalhostCallbackServer,
)
from .client import AuthError, IdentityClient, IdentityProviderError, ParseError
from .flow import LoginFailedError, LoginFlow, build_authorization_url
from .manager import AuthStatus, LoginManager, get_login_manager
from .store import NotLoggedInError, TokenDecryptionError, TokenStore, TokenStoreError
from .tokens import LoginInfo, ProviderToken, Token

__all__ = [
    # Manager (main entry point)
    "LoginManager",
    "AuthStatus",
    "get_login_manager",
    "BearerAuth",
    # Flow
    "LoginFlow",
    "LoginFailedError",
    "build_authorization_url",
    # Identity provider
    "IdentityClient",
    "IdentityProviderError",
    "AuthError",
    "ParseError",
    # Tokens
    "Token",
    "LoginInfo",
    "ProviderToken",
    # Storage
    "TokenStore",
    "TokenStoreError",
    "NotLoggedInError",
    "TokenDecryptionError",
    # Callback
    "LocalhostCallbackServer",
    "ListenerState",
    "CallbackResult",
    "CallbackError",
    "BindError",
    "CallbackTimeoutError",
]
