"""azure-login - Browser login and token refresh for Azure AD."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("azure-login")
except PackageNotFoundError:
    __version__ = "0.1.0"  # Fallback for development

__all__ = [
    "__version__",
    "LoginConfig",
    "load_config",
    "LoginManager",
    "get_login_manager",
    "BearerAuth",
    "OutputHandler",
]


# Lazy imports keep `azlogin --version` from loading httpx and keyring
def __getattr__(name: str) -> object:
    """Lazy import module components."""
    if name in ("LoginConfig", "load_config"):
        from .config import LoginConfig, load_config
        return {"LoginConfig": LoginConfig, "load_config": load_config}[name]
    elif name in ("LoginManager", "get_login_manager", "BearerAuth"):
        from .oauth import BearerAuth, LoginManager, get_login_manager
        return {
            "LoginManager": LoginManager,
            "get_login_manager": get_login_manager,
            "BearerAuth": BearerAuth,
        }[name]
    elif name == "OutputHandler":
        from .output import OutputHandler
        return OutputHandler
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
