"""httpx authentication backed by the stored Azure login."""

from typing import AsyncGenerator

import httpx

from .manager import LoginManager, get_login_manager


class BearerAuth(httpx.Auth):
    """Attach a valid Azure access token to each request.

    The token comes from LoginManager.get_valid_token(), so an expired
    token is refreshed (and persisted) before the request goes out.

    Usage:
        async with httpx.AsyncClient(auth=BearerAuth()) as client:
            await client.get("https://management.azure.com/subscriptions?api-version=2020-01-01")
    """

    def __init__(self, manager: LoginManager | None = None):
        self.manager = manager

    async def async_auth_flow(
        self, request: httpx.Request
    ) -> AsyncGenerator[httpx.Request, httpx.Response]:
        manager = self.manager or get_login_manager()
        request.headers["Authorization"] = await manager.get_auth_header()
        yield request
