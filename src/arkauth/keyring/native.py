"""OS-native secret store backend.

Delegates to the ``keyring`` library, which picks the platform store:
macOS Keychain, Windows Credential Locker, or the Secret Service over
D-Bus on Linux. Every library failure is re-raised as
:class:`~arkauth.exceptions.CacheError` so the vault can fall back to the
basic backend.
"""

from __future__ import annotations

import sys
from typing import Optional

import keyring
from keyring.backends.fail import Keyring as FailKeyring
from keyring.errors import KeyringError, PasswordDeleteError

from arkauth.exceptions import CacheError
from arkauth.output import Logger

_logger = Logger("NativeKeyring")


def is_native_keyring_available() -> bool:
    """Check that the ``keyring`` library resolved a usable backend.

    Only the backend type is inspected; no secret is written.
    """
    try:
        backend = keyring.get_keyring()
    except Exception as exc:  # D-Bus and permission errors surface as arbitrary types
        _logger.debug("Keyring backend lookup failed: %s", exc)
        return False
    if isinstance(backend, FailKeyring):
        _logger.debug("No usable OS keyring backend (fail backend selected)")
        return False
    return True


class NativeKeyring:
    """Keyring backend stored in the operating system's secret store."""

    name = "native"

    def set_password(self, service: str, username: str, password: str) -> None:
        try:
            keyring.set_password(service, username, password)
        except KeyringError as exc:
            raise CacheError(f"OS keyring write failed: {exc}") from exc

    def get_password(self, service: str, username: str) -> Optional[str]:
        try:
            return keyring.get_password(service, username)
        except KeyringError as exc:
            raise CacheError(f"OS keyring read failed: {exc}") from exc

    def delete_password(self, service: str, username: str) -> None:
        """Remove a record. Deleting a missing record is a no-op."""
        try:
            keyring.delete_password(service, username)
        except PasswordDeleteError:
            return
        except KeyringError as exc:
            raise CacheError(f"OS keyring delete failed: {exc}") from exc

    def clear_all_passwords(self) -> None:
        """Not supported: OS stores cannot be enumerated portably."""
        raise CacheError(
            f"Clearing every record is not supported by the OS keyring on {sys.platform}"
        )
