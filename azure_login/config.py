"""Config discovery and loading for azure-login."""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from .platform import get_azure_config_dir

# Azure CLI public client id
DEFAULT_CLIENT_ID = "04b07795-8ddb-461a-bbee-02f9e1bf7b46"

# Multi-tenant apps accept openid/email scopes, but an ARM token needs the
# v1-style resource scope alongside offline_access
DEFAULT_SCOPES = "offline_access https://management.azure.com/.default"

DEFAULT_AUTHORIZE_URL = "https://login.microsoftonline.com/organizations/oauth2/v2.0/authorize"
DEFAULT_TOKEN_URL = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"
DEFAULT_TENANTS_URL = "https://management.azure.com/tenants?api-version=2019-11-01"

TOKEN_STORE_FILENAME = "dockerAccessToken.json"

DEFAULT_HTTP_TIMEOUT = 30.0


class ConfigError(Exception):
    """Invalid configuration value."""

    pass


def default_store_path() -> Path:
    """Location of the persisted login record."""
    return get_azure_config_dir() / TOKEN_STORE_FILENAME


@dataclass
class LoginConfig:
    """Identity provider settings injected into the login flow and client.

    Attributes:
        client_id: OAuth client id sent with every request
        scopes: Space-separated scopes for authorization and token requests
        authorize_url: Authorization endpoint opened in the browser
        token_url_template: Token endpoint with a {tenant} placeholder
        tenants_url: Tenant listing API used to discover the user's tenant
        store_path: Where the login record is persisted
        http_timeout: Timeout in seconds for provider requests
        callback_timeout: Seconds to wait for the browser redirect
            (None waits until the login is cancelled)
        env_path: The .env file that was loaded, if any
    """

    client_id: str = DEFAULT_CLIENT_ID
    scopes: str = DEFAULT_SCOPES
    authorize_url: str = DEFAULT_AUTHORIZE_URL
    token_url_template: str = DEFAULT_TOKEN_URL
    tenants_url: str = DEFAULT_TENANTS_URL
    store_path: Path = field(default_factory=default_store_path)
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    callback_timeout: float | None = None
    env_path: Path | None = None

    def token_url(self, tenant: str) -> str:
        """Token endpoint scoped to a tenant (or "organizations")."""
        return self.token_url_template.format(tenant=tenant)


# Environment variables mapped onto LoginConfig string fields
STRING_OVERRIDES = {
    "AZLOGIN_CLIENT_ID": "client_id",
    "AZLOGIN_SCOPES": "scopes",
    "AZLOGIN_AUTHORIZE_URL": "authorize_url",
    "AZLOGIN_TOKEN_URL": "token_url_template",
    "AZLOGIN_TENANTS_URL": "tenants_url",
}


# Env file search paths in priority order
def _env_search_paths() -> list[Path]:
    return [
        Path(".env"),
        get_azure_config_dir() / ".env",
    ]


def find_env_file(explicit_path: Path | None = None) -> Path | None:
    """Find the .env file, checking project then Azure config dir."""
    if explicit_path:
        if explicit_path.exists():
            return explicit_path
        return None

    for path in _env_search_paths():
        if path.exists():
            return path
    return None


def _parse_float(name: str, value: str) -> float:
    try:
        return float(value)
    except ValueError:
        raise ConfigError(f"{name} must be a number of seconds, got {value!r}") from None


def load_config(env_path: Path | None = None) -> LoginConfig:
    """Load login configuration from defaults and the environment.

    A .env file (explicit, ./.env or <azure config dir>/.env) is loaded
    first; AZLOGIN_* variables then override the built-in defaults.

    Args:
        env_path: Explicit path to .env file (optional)

    Returns:
        LoginConfig with overrides applied

    Raises:
        ConfigError: If a numeric override is not a number or the token
            URL has no {tenant} placeholder
    """
    env_file = find_env_file(env_path)
    if env_file:
        load_dotenv(env_file)

    config = LoginConfig(env_path=env_file)

    # Plain string overrides
    for env_var, attr in STRING_OVERRIDES.items():
        value = os.environ.get(env_var)
        if value:
            setattr(config, attr, value)

    if "{tenant}" not in config.token_url_template:
        raise ConfigError(
            f"AZLOGIN_TOKEN_URL must contain a {{tenant}} placeholder, "
            f"got {config.token_url_template!r}"
        )

    store_path = os.environ.get("AZLOGIN_STORE_PATH")
    if store_path:
        config.store_path = Path(store_path).expanduser()

    http_timeout = os.environ.get("AZLOGIN_HTTP_TIMEOUT")
    if http_timeout:
        config.http_timeout = _parse_float("AZLOGIN_HTTP_TIMEOUT", http_timeout)

    callback_timeout = os.environ.get("AZLOGIN_CALLBACK_TIMEOUT")
    if callback_timeout:
        config.callback_timeout = _parse_float("AZLOGIN_CALLBACK_TIMEOUT", callback_timeout)

    return config
