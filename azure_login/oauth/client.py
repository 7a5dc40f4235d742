"""Azure AD token endpoint and tenant discovery client.

This module handles the two provider APIs the login needs:
- The tenant-scoped token endpoint (authorization_code and refresh_token grants)
- The ARM tenant listing used to find which tenant a user belongs to

Nothing is cached between calls and nothing is retried; every failure is
raised to the caller.
"""

import json
import logging
from typing import Any

import httpx

from ..config import LoginConfig
from .tokens import ProviderToken

logger = logging.getLogger(__name__)

# Tenant placeholder for the multi-tenant endpoint used before the real
# tenant is known
ORGANIZATIONS_TENANT = "organizations"


class IdentityProviderError(Exception):
    """Error talking to the identity provider."""

    pass


class AuthError(IdentityProviderError):
    """Token request rejected by the provider (or never answered)."""

    pass


class ParseError(IdentityProviderError):
    """Provider response body could not be decoded."""

    pass


def _error_detail(response: httpx.Response) -> str:
    """Extract the provider's error fields from a failed response.

    Only the OAuth error fields are surfaced; the raw body may contain
    tokens and is never included.
    """
    try:
        error_data = response.json()
    except ValueError:
        return ""
    if not isinstance(error_data, dict):
        return ""
    error = error_data.get("error", "")
    description = error_data.get("error_description", "")
    if isinstance(error, dict):
        # ARM wraps errors as {"error": {"code": ..., "message": ...}}
        description = error.get("message", "")
        error = error.get("code", "")
    if not error and not description:
        return ""
    return f": {error} - {description}"


class IdentityClient:
    """Client for the Azure AD token endpoint and ARM tenant listing.

    Usage:
        client = IdentityClient(config)
        token = await client.exchange_code(code, redirect_uri)
        tenants = await client.discover_tenants(token.access_token)
    """

    def __init__(
        self,
        config: LoginConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        """Initialize the client.

        Args:
            config: Endpoints, client id and scopes (defaults to the Azure CLI app)
            http_client: Optional shared HTTP client; when omitted a client is
                created and closed for each request
        """
        self.config = config or LoginConfig()
        self.http_client = http_client

    def _http(self) -> tuple[httpx.AsyncClient, bool]:
        if self.http_client is not None:
            return self.http_client, False
        return httpx.AsyncClient(timeout=self.config.http_timeout), True

    async def exchange_token(self, form: dict[str, str], tenant: str) -> ProviderToken:
        """POST a token request to a tenant's token endpoint.

        Args:
            form: Form parameters (grant_type, client_id, scope, ...)
            tenant: Tenant id, or "organizations" for the multi-tenant endpoint

        Returns:
            ProviderToken decoded from the response

        Raises:
            AuthError: On a non-2xx status, network error, or malformed body
        """
        http, should_close = self._http()
        grant_type = form.get("grant_type", "unknown")
        url = self.config.token_url(tenant)

        try:
            logger.debug(f"Requesting token ({grant_type}) from {url}")
            response = await http.post(
                url,
                data=form,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )

            if not response.is_success:
                raise AuthError(
                    f"Token request failed (HTTP {response.status_code}){_error_detail(response)}"
                )

            try:
                return ProviderToken.from_response(response.json())
            except (ValueError, KeyError, TypeError) as e:
                raise AuthError(f"Invalid token response from {url}: {e}") from e

        except httpx.RequestError as e:
            raise AuthError(f"Network error during token request: {e}") from e
        finally:
            if should_close:
                await http.aclose()

    async def exchange_code(
        self,
        code: str,
        redirect_uri: str,
        tenant: str = ORGANIZATIONS_TENANT,
    ) -> ProviderToken:
        """Exchange an authorization code for tokens."""
        form = {
            "grant_type": "authorization_code",
            "client_id": self.config.client_id,
            "code": code,
            "scope": self.config.scopes,
            "redirect_uri": redirect_uri,
        }
        return await self.exchange_token(form, tenant)

    async def refresh(self, refresh_token: str, tenant: str) -> ProviderToken:
        """Redeem a refresh token against a specific tenant.

        This is also how a token issued by the multi-tenant endpoint is
        rebound to a concrete tenant.
        """
        form = {
            "grant_type": "refresh_token",
            "client_id": self.config.client_id,
            "scope": self.config.scopes,
            "refresh_token": refresh_token,
        }
        return await self.exchange_token(form, tenant)

    async def discover_tenants(self, access_token: str) -> list[str]:
        """List the tenant ids the signed-in user belongs to.

        Args:
            access_token: Bearer token from the code exchange

        Returns:
            Tenant ids in the order the API returned them (may be empty)

        Raises:
            AuthError: If the status is not exactly 200 or the request fails
            ParseError: If the body is not {"value": [{"tenantId": ...}, ...]}
        """
        http, should_close = self._http()

        try:
            response = await http.get(
                self.config.tenants_url,
                headers={"Authorization": f"Bearer {access_token}"},
            )

            if response.status_code != 200:
                raise AuthError(
                    f"Tenant discovery failed (HTTP {response.status_code}){_error_detail(response)}"
                )

            return _parse_tenants(response.content)

        except httpx.RequestError as e:
            raise AuthError(f"Network error during tenant discovery: {e}") from e
        finally:
            if should_close:
                await http.aclose()


def _parse_tenants(body: bytes) -> list[str]:
    try:
        data: Any = json.loads(body)
    except ValueError as e:
        raise ParseError(f"Tenant list is not valid JSON: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get("value"), list):
        raise ParseError("Tenant list response has no 'value' array")

    tenants: list[str] = []
    for entry in data["value"]:
        if not isinstance(entry, dict) or not isinstance(entry.get("tenantId"), str):
            raise ParseError("Tenant list entry has no 'tenantId'")
        tenants.append(entry["tenantId"])

    return tenants
