"""Encrypted storage for the Azure login record.

This module persists a single LoginInfo (tenant + token) using:
- Fernet symmetric encryption (AES-128-CBC + HMAC)
- OS keyring for encryption key storage (Keychain, libsecret, DPAPI)
- Write to a temp file + atomic rename, so a crash never leaves a
  record that mixes old and new token fields
- File locking to keep concurrent logins from interleaving writes
"""

import base64
import hashlib
import json
import logging
import os
import stat
import sys
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator

import keyring
from cryptography.fernet import Fernet, InvalidToken

from ..config import default_store_path
from .tokens import LoginInfo

logger = logging.getLogger(__name__)

# File locking support
if sys.platform != "win32":
    import fcntl

    @contextmanager
    def _file_lock(filepath: Path, exclusive: bool = True) -> Generator[None, None, None]:
        """Acquire a file lock (Unix implementation using fcntl).

        Args:
            filepath: Path to the file to lock
            exclusive: If True, acquire exclusive lock; otherwise shared lock
        """
        lock_path = filepath.with_suffix(filepath.suffix + ".lock")
        lock_path.touch(exist_ok=True)

        with open(lock_path, "r") as lock_file:
            try:
                if exclusive:
                    fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
                else:
                    fcntl.flock(lock_file.fileno(), fcntl.LOCK_SH)
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
else:
    # Windows: use msvcrt for file locking
    import msvcrt

    @contextmanager
    def _file_lock(filepath: Path, exclusive: bool = True) -> Generator[None, None, None]:
        """Acquire a file lock (Windows implementation using msvcrt).

        msvcrt has no shared locks, so readers also lock exclusively.
        """
        lock_path = filepath.with_suffix(filepath.suffix + ".lock")
        lock_path.touch(exist_ok=True)

        with open(lock_path, "r+") as lock_file:
            try:
                msvcrt.locking(lock_file.fileno(), msvcrt.LK_LOCK, 1)
                yield
            finally:
                try:
                    msvcrt.locking(lock_file.fileno(), msvcrt.LK_UNLCK, 1)
                except OSError:
                    pass


# Keyring service name for azlogin
KEYRING_SERVICE = "azure-login"
KEYRING_USERNAME = "token-encryption-key"


class TokenStoreError(Exception):
    """Error in token storage operations."""

    pass


class NotLoggedInError(TokenStoreError):
    """No login record has been stored yet."""

    pass


class TokenDecryptionError(TokenStoreError):
    """Failed to decrypt the login record.

    The encryption key has changed (keyring cleared, different machine)
    or the file is corrupted. Logging in again overwrites the record.
    """

    pass


def _derive_fallback_key() -> bytes:
    """Derive a fallback encryption key from machine-specific data.

    Used when keyring is not available. Less secure than keyring but
    still provides encryption at rest.

    Returns:
        32-byte key suitable for Fernet
    """
    components = []

    # Machine ID (Linux)
    machine_id_path = Path("/etc/machine-id")
    if machine_id_path.exists():
        components.append(machine_id_path.read_text().strip())

    components.append(str(Path.home()))
    components.append(os.environ.get("USER", os.environ.get("USERNAME", "azlogin")))

    combined = ":".join(components)
    key_bytes = hashlib.sha256(combined.encode()).digest()

    # Fernet requires base64-encoded 32-byte key
    return base64.urlsafe_b64encode(key_bytes)


class TokenStore:
    """Encrypted storage for the login record.

    The record is re-read and re-written on every call; there is no
    in-memory cache, so the file is the source of truth across process
    restarts.
    """

    def __init__(self, path: Path | None = None):
        """Initialize token store.

        Args:
            path: Optional custom location for the login record
        """
        self.path = path or default_store_path()
        self._cipher: Fernet | None = None
        self._using_keyring = False

        self._init_encryption()

    def _init_storage(self) -> None:
        """Create the storage directory with owner-only permissions."""
        directory = self.path.parent
        if directory.exists():
            return

        directory.mkdir(parents=True, exist_ok=True)
        try:
            directory.chmod(stat.S_IRWXU)
        except OSError as e:
            logger.warning(f"Could not set directory permissions: {e}")

    def _init_encryption(self) -> None:
        """Initialize encryption using keyring or fallback."""
        try:
            key = keyring.get_password(KEYRING_SERVICE, KEYRING_USERNAME)

            if key is None:
                key = Fernet.generate_key().decode("ascii")
                keyring.set_password(KEYRING_SERVICE, KEYRING_USERNAME, key)
                logger.debug("Generated new encryption key in keyring")

            self._cipher = Fernet(key.encode("ascii"))
            self._using_keyring = True
            logger.debug("Using keyring for encryption key storage")

        except Exception as e:
            error_type = type(e).__name__
            logger.warning(
                f"Keyring not available: {error_type}: {e}. "
                f"Using fallback encryption (machine-derived key). "
                f"Tokens are still encrypted but with reduced security."
            )
            logger.debug(f"Full keyring error: {e!r}")
            self._cipher = Fernet(_derive_fallback_key())
            self._using_keyring = False

    def _encrypt(self, data: str) -> str:
        if self._cipher is None:
            raise TokenStoreError("Encryption not initialized")
        return self._cipher.encrypt(data.encode("utf-8")).decode("ascii")

    def _decrypt(self, data: str) -> str:
        if self._cipher is None:
            raise TokenStoreError("Encryption not initialized")
        try:
            return self._cipher.decrypt(data.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError) as e:
            raise TokenDecryptionError(
                f"Cannot decrypt {self.path}. The encryption key may have changed. "
                f"Run 'azlogin login' to store a new login."
            ) from e

    def exists(self) -> bool:
        """Check if a login record has been stored."""
        return self.path.exists()

    def read(self) -> LoginInfo:
        """Read the stored login record.

        Uses a shared lock so reads never observe a write in progress.

        Returns:
            The stored LoginInfo

        Raises:
            NotLoggedInError: If no record has been stored
            TokenDecryptionError: If the record cannot be decrypted or parsed
            TokenStoreError: If the file cannot be read
        """
        if not self.path.exists():
            raise NotLoggedInError("Not logged in. Run 'azlogin login' first.")

        try:
            with _file_lock(self.path, exclusive=False):
                encrypted_data = self.path.read_text()
        except FileNotFoundError:
            raise NotLoggedInError("Not logged in. Run 'azlogin login' first.") from None
        except OSError as e:
            raise TokenStoreError(f"Cannot read login record {self.path}: {e}") from e

        decrypted_json = self._decrypt(encrypted_data)
        try:
            data: dict[str, Any] = json.loads(decrypted_json)
            return LoginInfo.from_dict(data)
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise TokenDecryptionError(
                f"Login record {self.path} is corrupted. "
                f"Run 'azlogin login' to store a new login."
            ) from e

    def write(self, login_info: LoginInfo) -> None:
        """Replace the stored login record.

        The encrypted record is written to a temporary file next to the
        target and renamed over it, under an exclusive lock.

        Args:
            login_info: The record to persist

        Raises:
            TokenStoreError: If the record cannot be written
        """
        json_data = json.dumps(login_info.to_dict(), indent=2)
        encrypted_data = self._encrypt(json_data)

        try:
            self._init_storage()
            with _file_lock(self.path, exclusive=True):
                self._atomic_write(encrypted_data)
        except OSError as e:
            raise TokenStoreError(f"Cannot write login record {self.path}: {e}") from e

        logger.debug(f"Stored login for tenant {login_info.tenant_id}")

    def _atomic_write(self, data: str) -> None:
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            try:
                tmp_path.chmod(stat.S_IRUSR | stat.S_IWUSR)  # 0600
            except OSError as e:
                logger.warning(f"Could not set file permissions: {e}")
            os.replace(tmp_path, self.path)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise

    def is_using_keyring(self) -> bool:
        """Check if keyring is being used for encryption key storage.

        Returns:
            True if using OS keyring, False if using fallback
        """
        return self._using_keyring
