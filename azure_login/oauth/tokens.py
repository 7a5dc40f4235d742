"""OAuth token data structures and utilities.

This module provides the token types that flow through a login:

- ProviderToken: the raw token endpoint response, relative expiry
- Token: an access/refresh token pair with an absolute expiry
- LoginInfo: the persisted credential (tenant + token)
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class Token:
    """OAuth token with an absolute expiry.

    Attributes:
        access_token: The access token string
        refresh_token: Refresh token used to obtain new access tokens
        token_type: Token type as returned by the provider (typically "Bearer")
        expiry: When the access token expires (UTC datetime)
    """

    access_token: str
    refresh_token: str
    token_type: str
    expiry: datetime

    def is_valid(self, now: datetime | None = None) -> bool:
        """Check if the access token can still be used.

        A token is valid when it carries an access token and its expiry is
        strictly after ``now``. No grace period is applied.

        Args:
            now: Reference time (defaults to the current UTC time)

        Returns:
            True if the token has not expired
        """
        if not self.access_token:
            return False
        now = _as_utc(now or _utcnow())
        return _as_utc(self.expiry) > now

    def has_refresh_token(self) -> bool:
        """Check if this token has a refresh token."""
        return len(self.refresh_token) > 0

    def get_auth_header(self) -> str:
        """Get the Authorization header value for this token.

        Returns:
            Authorization header value (e.g., "Bearer abc123...")
        """
        # Always "Bearer" per RFC 6750, whatever casing token_type has
        return f"Bearer {self.access_token}"

    def to_dict(self) -> dict[str, Any]:
        """Serialize token to dictionary for storage."""
        return {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "refresh_token": self.refresh_token,
            "expiry": _as_utc(self.expiry).isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Token":
        """Deserialize token from dictionary.

        Raises:
            KeyError: If access_token or expiry is missing
            ValueError: If expiry is not an ISO-8601 timestamp
        """
        expiry = _as_utc(datetime.fromisoformat(data["expiry"]))
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token", ""),
            token_type=data.get("token_type", "Bearer"),
            expiry=expiry,
        )


@dataclass
class LoginInfo:
    """Persisted login record: the tenant a token is bound to plus the token."""

    tenant_id: str
    token: Token

    def to_dict(self) -> dict[str, Any]:
        return {"tenantId": self.tenant_id, "token": self.token.to_dict()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LoginInfo":
        return cls(tenant_id=data["tenantId"], token=Token.from_dict(data["token"]))


@dataclass
class ProviderToken:
    """Token endpoint response from the identity provider.

    Only lives long enough to be converted into a Token; expires_in is
    relative to the moment the response was received.
    """

    token_type: str
    scope: str
    expires_in: int
    ext_expires_in: int
    access_token: str
    refresh_token: str
    foci: str = ""

    @classmethod
    def from_response(cls, response: dict[str, Any]) -> "ProviderToken":
        """Create a ProviderToken from a decoded token endpoint response.

        Args:
            response: JSON object returned by the token endpoint

        Returns:
            ProviderToken instance

        Raises:
            KeyError: If access_token is missing
            ValueError: If the expiry fields are not integers
        """
        if not isinstance(response, dict):
            raise ValueError(f"Expected a JSON object, got {type(response).__name__}")

        return cls(
            token_type=response.get("token_type", "Bearer"),
            scope=response.get("scope", ""),
            expires_in=int(response.get("expires_in", 0)),
            ext_expires_in=int(response.get("ext_expires_in", 0)),
            access_token=response["access_token"],
            refresh_token=response.get("refresh_token", ""),
            foci=str(response.get("foci", "")),
        )

    def to_token(self, now: datetime | None = None) -> Token:
        """Convert to a Token with an absolute expiry (now + expires_in)."""
        now = _as_utc(now or _utcnow())
        return Token(
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            token_type=self.token_type,
            expiry=now + timedelta(seconds=self.expires_in),
        )
