"""Tests for the login manager."""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from azure_login.config import LoginConfig
from azure_login.oauth import manager as manager_module
from azure_login.oauth.auth import BearerAuth
from azure_login.oauth.client import AuthError
from azure_login.oauth.manager import (
    AuthStatus,
    LoginManager,
    _format_timedelta,
    get_login_manager,
)
from azure_login.oauth.store import NotLoggedInError, TokenDecryptionError, TokenStore
from azure_login.oauth.tokens import LoginInfo, Token


@pytest.fixture
def manager(
    login_config: LoginConfig,
    token_store: TokenStore,
    mock_client: MagicMock,
    now: datetime,
) -> LoginManager:
    """Manager with a pinned clock and mocked provider."""
    return LoginManager(
        config=login_config,
        token_store=token_store,
        client=mock_client,
        browser=MagicMock(),
        clock=lambda: now,
    )


class TestFormatTimedelta:
    """Tests for _format_timedelta function."""

    def test_negative_timedelta_returns_expired(self) -> None:
        """Test that negative timedeltas return 'Expired'."""
        assert _format_timedelta(timedelta(seconds=-1)) == "Expired"
        assert _format_timedelta(timedelta(days=-1)) == "Expired"

    def test_seconds_range(self) -> None:
        """Test formatting of seconds (0-59)."""
        assert _format_timedelta(timedelta(seconds=0)) == "0 seconds"
        assert _format_timedelta(timedelta(seconds=59)) == "59 seconds"

    def test_minutes(self) -> None:
        """Test singular and plural minutes."""
        assert _format_timedelta(timedelta(minutes=1)) == "1 minute"
        assert _format_timedelta(timedelta(minutes=45)) == "45 minutes"

    def test_hours(self) -> None:
        """Test singular and plural hours."""
        assert _format_timedelta(timedelta(hours=1)) == "1 hour"
        assert _format_timedelta(timedelta(hours=23, minutes=59)) == "23 hours"

    def test_days(self) -> None:
        """Test that anything a day or longer is shown in days."""
        assert _format_timedelta(timedelta(days=1)) == "1 day"
        assert _format_timedelta(timedelta(days=90)) == "90 days"


class TestGetValidToken:
    """Tests for LoginManager.get_valid_token."""

    @pytest.mark.asyncio
    async def test_not_logged_in(self, manager: LoginManager, mock_client: MagicMock) -> None:
        """Test that an empty store raises NotLoggedInError without network calls."""
        with pytest.raises(NotLoggedInError):
            await manager.get_valid_token()
        mock_client.refresh.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_valid_token_returned_as_is(
        self, manager: LoginManager, mock_client: MagicMock, stored_login: LoginInfo
    ) -> None:
        """Test that an unexpired token is returned without refreshing."""
        token = await manager.get_valid_token()

        assert token == stored_login.token
        mock_client.refresh.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_expired_token_refreshed_and_persisted(
        self,
        manager: LoginManager,
        token_store: TokenStore,
        mock_client: MagicMock,
        expired_token: Token,
        now: datetime,
    ) -> None:
        """Test that an expired token is refreshed against the stored tenant."""
        token_store.write(LoginInfo(tenant_id="tenant-7", token=expired_token))

        token = await manager.get_valid_token()

        mock_client.refresh.assert_awaited_once_with("stored-refresh", "tenant-7")
        assert token.access_token == "tenant-access"
        assert token.refresh_token == "tenant-refresh"
        assert token.expiry == now + timedelta(seconds=3600)
        assert token.is_valid(now)

        stored = token_store.read()
        assert stored.tenant_id == "tenant-7"
        assert stored.token == token

    @pytest.mark.asyncio
    async def test_expiry_exactly_now_refreshes(
        self,
        manager: LoginManager,
        token_store: TokenStore,
        mock_client: MagicMock,
        now: datetime,
    ) -> None:
        """Test that a token expiring at this instant counts as expired."""
        token = Token("stored-access", "stored-refresh", "Bearer", expiry=now)
        token_store.write(LoginInfo(tenant_id="tenant-1", token=token))

        await manager.get_valid_token()

        mock_client.refresh.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_second_call_uses_refreshed_token(
        self,
        manager: LoginManager,
        token_store: TokenStore,
        mock_client: MagicMock,
        expired_token: Token,
    ) -> None:
        """Test that a refreshed token is reused by the next call."""
        token_store.write(LoginInfo(tenant_id="tenant-1", token=expired_token))

        first = await manager.get_valid_token()
        second = await manager.get_valid_token()

        assert first == second
        assert mock_client.refresh.await_count == 1

    @pytest.mark.asyncio
    async def test_refresh_rejected_leaves_store_unchanged(
        self,
        manager: LoginManager,
        token_store: TokenStore,
        mock_client: MagicMock,
        expired_token: Token,
    ) -> None:
        """Test that a failed refresh raises AuthError and keeps the old record."""
        original = LoginInfo(tenant_id="tenant-1", token=expired_token)
        token_store.write(original)
        mock_client.refresh.side_effect = AuthError("Token request failed (HTTP 400): invalid_grant")

        with pytest.raises(AuthError) as exc_info:
            await manager.get_valid_token()

        assert "login to Azure again" in str(exc_info.value)
        assert "invalid_grant" in str(exc_info.value)
        assert token_store.read() == original

    @pytest.mark.asyncio
    async def test_corrupted_store(
        self, manager: LoginManager, token_store: TokenStore, stored_login: LoginInfo
    ) -> None:
        """Test that an unreadable record is reported, not treated as logged out."""
        token_store.path.write_text("garbage")

        with pytest.raises(TokenDecryptionError):
            await manager.get_valid_token()

    @pytest.mark.asyncio
    async def test_get_auth_header(self, manager: LoginManager, stored_login: LoginInfo) -> None:
        """Test the Authorization header value."""
        assert await manager.get_auth_header() == "Bearer stored-access"


class TestLogin:
    """Tests for LoginManager.login."""

    @pytest.mark.asyncio
    async def test_delegates_to_flow(self, manager: LoginManager, login_config: LoginConfig) -> None:
        """Test that login runs a LoginFlow with the manager's collaborators."""
        login_info = MagicMock(spec=LoginInfo)
        with patch("azure_login.oauth.manager.LoginFlow") as flow_cls:
            flow_cls.return_value.run = AsyncMock(return_value=login_info)
            result = await manager.login(cancel=None, on_status=print)

        assert result is login_info
        kwargs = flow_cls.call_args.kwargs
        assert kwargs["config"] is login_config
        assert kwargs["token_store"] is manager.token_store
        assert kwargs["client"] is manager.client
        assert kwargs["browser"] is manager.browser
        assert kwargs["on_status"] is print


class TestGetStatus:
    """Tests for LoginManager.get_status."""

    def test_not_logged_in(self, manager: LoginManager) -> None:
        """Test status with an empty store."""
        status = manager.get_status()

        assert status == AuthStatus(using_keyring=True)
        assert not status.logged_in

    def test_logged_in(self, manager: LoginManager, stored_login: LoginInfo) -> None:
        """Test status with a valid stored token."""
        status = manager.get_status()

        assert status.logged_in
        assert status.tenant_id == "tenant-1"
        assert not status.expired
        assert status.expires_in_human == "1 hour"
        assert status.has_refresh_token
        assert status.error is None

    def test_expired(
        self, manager: LoginManager, token_store: TokenStore, expired_token: Token, mock_client: MagicMock
    ) -> None:
        """Test that status reports expiry without refreshing."""
        token_store.write(LoginInfo(tenant_id="tenant-1", token=expired_token))

        status = manager.get_status()

        assert status.expired
        assert status.expires_in_human == "Expired"
        mock_client.refresh.assert_not_awaited()

    def test_unreadable_record(self, manager: LoginManager, token_store: TokenStore, stored_login: LoginInfo) -> None:
        """Test that a corrupted record is reported as an error."""
        token_store.path.write_text("garbage")

        status = manager.get_status()

        assert not status.logged_in
        assert status.error is not None

    def test_to_dict_has_no_secrets(self, manager: LoginManager, stored_login: LoginInfo) -> None:
        """Test that the status dictionary never contains tokens."""
        data = manager.get_status().to_dict()

        assert "stored-access" not in str(data)
        assert "stored-refresh" not in str(data)
        assert data["tenant_id"] == "tenant-1"


class TestGetLoginManager:
    """Tests for the global manager singleton."""

    def test_returns_same_instance(
        self, monkeypatch: pytest.MonkeyPatch, clean_env: None, mock_keyring: MagicMock
    ) -> None:
        """Test that repeated calls return one manager."""
        monkeypatch.setattr(manager_module, "_manager", None)

        first = get_login_manager()
        second = get_login_manager()

        assert first is second
        assert first.config.client_id == "04b07795-8ddb-461a-bbee-02f9e1bf7b46"

    def test_reads_environment(
        self, monkeypatch: pytest.MonkeyPatch, clean_env: None, mock_keyring: MagicMock
    ) -> None:
        """Test that the singleton is built from load_config()."""
        monkeypatch.setattr(manager_module, "_manager", None)
        monkeypatch.setenv("AZLOGIN_CLIENT_ID", "my-app")

        assert get_login_manager().config.client_id == "my-app"


class TestBearerAuth:
    """Tests for the httpx auth adapter."""

    @pytest.mark.asyncio
    async def test_sets_authorization_header(self) -> None:
        """Test that each request carries the manager's header."""
        login_manager = MagicMock(spec=LoginManager)
        login_manager.get_auth_header = AsyncMock(return_value="Bearer fresh-token")
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers["Authorization"])
            return httpx.Response(200, json={"value": []})

        async with httpx.AsyncClient(
            transport=httpx.MockTransport(handler), auth=BearerAuth(login_manager)
        ) as client:
            await client.get("https://management.example.com/subscriptions")
            await client.get("https://management.example.com/subscriptions")

        assert seen == ["Bearer fresh-token", "Bearer fresh-token"]
        assert login_manager.get_auth_header.await_count == 2

    @pytest.mark.asyncio
    async def test_refreshes_expired_token(
        self, manager: LoginManager, token_store: TokenStore, expired_token: Token, mock_client: MagicMock
    ) -> None:
        """Test that an expired stored token is refreshed before the request."""
        token_store.write(LoginInfo(tenant_id="tenant-1", token=expired_token))
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers["Authorization"])
            return httpx.Response(200)

        async with httpx.AsyncClient(
            transport=httpx.MockTransport(handler), auth=BearerAuth(manager)
        ) as client:
            await client.get("https://management.example.com/subscriptions")

        assert seen == ["Bearer tenant-access"]
        mock_client.refresh.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_not_logged_in_propagates(self, manager: LoginManager) -> None:
        """Test that a missing login fails the request."""
        async with httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200)),
            auth=BearerAuth(manager),
        ) as client:
            with pytest.raises(NotLoggedInError):
                await client.get("https://management.example.com/subscriptions")
