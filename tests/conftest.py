"""Shared fixtures and utilities for azure-login tests."""

from collections.abc import Callable, Generator
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from cryptography.fernet import Fernet

from azure_login.config import LoginConfig
from azure_login.oauth.client import IdentityClient
from azure_login.oauth.store import TokenStore
from azure_login.oauth.tokens import LoginInfo, ProviderToken, Token

# Fixed "now" for tests that pin the clock
NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


# ============================================================================
# Sample Data Fixtures
# ============================================================================


def make_provider_token(
    access_token: str = "access-1",
    refresh_token: str = "refresh-1",
    expires_in: int = 3600,
) -> ProviderToken:
    """Build a provider token response like Azure AD returns."""
    return ProviderToken(
        token_type="Bearer",
        scope="https://management.azure.com/user_impersonation",
        expires_in=expires_in,
        ext_expires_in=expires_in,
        access_token=access_token,
        refresh_token=refresh_token,
        foci="1",
    )


@pytest.fixture
def now() -> datetime:
    """The pinned current time."""
    return NOW


@pytest.fixture
def provider_token_factory() -> Callable[..., ProviderToken]:
    """Factory for provider token responses."""
    return make_provider_token


@pytest.fixture
def valid_token() -> Token:
    """A token that expires an hour after NOW."""
    return Token(
        access_token="stored-access",
        refresh_token="stored-refresh",
        token_type="Bearer",
        expiry=NOW + timedelta(hours=1),
    )


@pytest.fixture
def expired_token() -> Token:
    """A token that expired a minute before NOW."""
    return Token(
        access_token="stored-access",
        refresh_token="stored-refresh",
        token_type="Bearer",
        expiry=NOW - timedelta(minutes=1),
    )


# ============================================================================
# Store / Config Fixtures
# ============================================================================


@pytest.fixture
def mock_keyring() -> Generator[MagicMock, None, None]:
    """Replace the OS keyring with an in-memory one."""
    key = Fernet.generate_key().decode("ascii")
    with patch("azure_login.oauth.store.keyring") as keyring_mock:
        keyring_mock.get_password.return_value = key
        yield keyring_mock


@pytest.fixture
def store_path(tmp_path: Path) -> Path:
    """Location of the login record for a test."""
    return tmp_path / "azure" / "dockerAccessToken.json"


@pytest.fixture
def token_store(store_path: Path, mock_keyring: MagicMock) -> TokenStore:
    """Create a token store in a temporary directory."""
    return TokenStore(store_path)


@pytest.fixture
def login_config(store_path: Path) -> LoginConfig:
    """Config pointing at mock endpoints and a temporary store."""
    return LoginConfig(
        authorize_url="https://login.example.com/organizations/oauth2/v2.0/authorize",
        token_url_template="https://login.example.com/{tenant}/oauth2/v2.0/token",
        tenants_url="https://management.example.com/tenants?api-version=2019-11-01",
        store_path=store_path,
    )


@pytest.fixture
def mock_client() -> MagicMock:
    """Identity client whose network calls are AsyncMocks."""
    client = MagicMock(spec=IdentityClient)
    client.exchange_code = AsyncMock(return_value=make_provider_token("org-access", "org-refresh"))
    client.discover_tenants = AsyncMock(return_value=["tenant-1", "tenant-2"])
    client.refresh = AsyncMock(return_value=make_provider_token("tenant-access", "tenant-refresh"))
    return client


@pytest.fixture
def stored_login(token_store: TokenStore, valid_token: Token) -> LoginInfo:
    """Write a valid login record to the store."""
    login_info = LoginInfo(tenant_id="tenant-1", token=valid_token)
    token_store.write(login_info)
    return login_info


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Remove AZLOGIN_* overrides and point the Azure config dir at tmp_path."""
    for name in (
        "AZLOGIN_CLIENT_ID",
        "AZLOGIN_SCOPES",
        "AZLOGIN_AUTHORIZE_URL",
        "AZLOGIN_TOKEN_URL",
        "AZLOGIN_TENANTS_URL",
        "AZLOGIN_STORE_PATH",
        "AZLOGIN_HTTP_TIMEOUT",
        "AZLOGIN_CALLBACK_TIMEOUT",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("AZURE_CONFIG_DIR", str(tmp_path / "azure-config"))
    monkeypatch.chdir(tmp_path)
