"""Cross-platform utilities for credential storage and browser launch."""

import logging
import os
import sys
import webbrowser
from pathlib import Path

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"


class BrowserOpenError(Exception):
    """No browser could be launched to open a URL."""

    pass


def get_azure_config_dir() -> Path:
    r"""Get the Azure CLI configuration directory.

    Priority order:
    1. AZURE_CONFIG_DIR - same override the Azure CLI honors
    2. ~/.azure (on Windows: %USERPROFILE%\.azure)
    """
    override = os.environ.get("AZURE_CONFIG_DIR")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".azure"


def open_browser(url: str) -> None:
    """Open a URL in the user's default browser.

    webbrowser picks the platform launcher (xdg-open on Linux, open on
    macOS, the shell URL handler on Windows).

    Raises:
        BrowserOpenError: If no browser could be launched
    """
    logger.debug("Launching default browser for authorization")
    try:
        opened = webbrowser.open(url)
    except webbrowser.Error as e:
        raise BrowserOpenError(f"Could not open browser: {e}") from e

    if not opened:
        raise BrowserOpenError(
            f"Could not open browser. Please open this URL manually:\n{url}"
        )
