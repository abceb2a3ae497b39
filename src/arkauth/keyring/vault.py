"""Credential vault: backend selection and token persistence.

:class:`ArkKeyring` stores :class:`~arkauth.models.ArkToken` records as
JSON under the keyring service ``"<service_name>-<postfix>"`` and the
account ``profile.profile_name``.

Backend selection is a prioritised decision list; the first matching
condition forces the basic (file) backend:

1. running inside a container (``/.dockerenv`` exists, or ``docker``
   appears in ``/proc/self/cgroup``);
2. running under WSL (``Microsoft`` in ``/proc/version``);
3. ``$ARK_BASIC_KEYRING`` is set;
4. the caller asked for the basic backend.

Otherwise the OS-native store is used when the ``keyring`` library has a
usable backend (on Linux only when ``$DBUS_SESSION_BUS_ADDRESS`` says a
Secret Service is reachable), and the basic backend when it has not.
A failed read or write against the native store is retried once against
the basic backend.
"""

from __future__ import annotations

import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional, Protocol

from pydantic import ValidationError

from arkauth.exceptions import CacheError
from arkauth.keyring.basic import BasicKeyring
from arkauth.keyring.native import NativeKeyring, is_native_keyring_available
from arkauth.models import ArkToken, Profile, TokenType
from arkauth.output import Logger

BASIC_KEYRING_OVERRIDE_ENV = "ARK_BASIC_KEYRING"
DBUS_SESSION_ENV = "DBUS_SESSION_BUS_ADDRESS"

EXPIRATION_GRACE = timedelta(seconds=60)
MAX_KEYRING_RECORD_AGE = timedelta(hours=12)


class KeyringBackend(Protocol):
    """Minimal interface shared by the basic and native backends."""

    name: str

    def set_password(self, service: str, username: str, password: str) -> None: ...

    def get_password(self, service: str, username: str) -> Optional[str]: ...

    def delete_password(self, service: str, username: str) -> None: ...

    def clear_all_passwords(self) -> None: ...


def utcnow() -> datetime:
    """Timezone-aware current time, the reference clock for token expiry."""
    return datetime.now(timezone.utc)


def as_aware(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=timezone.utc)


def is_docker() -> bool:
    """Whether the process runs inside a Docker container."""
    if Path("/.dockerenv").exists():
        return True
    try:
        return "docker" in Path("/proc/self/cgroup").read_text(errors="ignore")
    except OSError:
        return False


def is_wsl() -> bool:
    """Whether the process runs under Windows Subsystem for Linux."""
    try:
        return "Microsoft" in Path("/proc/version").read_text(errors="ignore")
    except OSError:
        return False


class ArkKeyring:
    """Token vault for one authenticator.

    Args:
        service_name: Keyring service prefix, e.g. ``"ark-identity"``.
        basic: Basic backend instance (defaults to :class:`BasicKeyring`).
        native: Native backend instance (defaults to :class:`NativeKeyring`).
        clock: Returns the current aware datetime. Injected by tests.
        logger: Optional :class:`~arkauth.output.Logger`.
    """

    def __init__(
        self,
        service_name: str,
        basic: Optional[KeyringBackend] = None,
        native: Optional[KeyringBackend] = None,
        clock: Callable[[], datetime] = utcnow,
        logger: Optional[Logger] = None,
    ) -> None:
        self.service_name = service_name
        self._basic = basic
        self._native = native
        self._clock = clock
        self._logger = logger or Logger("ArkKeyring")

    # ------------------------------------------------------------------ #
    # Backend selection
    # ------------------------------------------------------------------ #

    def get_keyring(self, enforce_basic: bool = False) -> KeyringBackend:
        """Pick the backend for the current environment (see module docs)."""
        if is_docker() or is_wsl() or os.environ.get(BASIC_KEYRING_OVERRIDE_ENV) or enforce_basic:
            return self._basic_backend()
        if sys.platform.startswith("linux") and not os.environ.get(DBUS_SESSION_ENV):
            return self._basic_backend()
        if self._native is not None:
            return self._native
        if is_native_keyring_available():
            self._native = NativeKeyring()
            return self._native
        return self._basic_backend()

    def _basic_backend(self) -> KeyringBackend:
        if self._basic is None:
            self._basic = BasicKeyring()
        return self._basic

    def service_for(self, postfix: str) -> str:
        """Keyring service name for *postfix*."""
        return f"{self.service_name}-{postfix}"

    # ------------------------------------------------------------------ #
    # Tokens
    # ------------------------------------------------------------------ #

    def save_token(
        self,
        profile: Profile,
        token: ArkToken,
        postfix: str,
        enforce_basic: bool = False,
    ) -> None:
        """Persist *token* for *profile*.

        Raises:
            CacheError: If the write fails on the basic backend, either
                directly or after falling back from the native one.
        """
        service = self.service_for(postfix)
        self._logger.info("Saving token [%s] of profile [%s]", service, profile.profile_name)
        backend = self.get_keyring(enforce_basic)
        try:
            backend.set_password(service, profile.profile_name, token.model_dump_json())
        except CacheError as exc:
            if backend.name != BasicKeyring.name:
                self._logger.warning(
                    "Falling back to the basic keyring, saving to the %s keyring failed: %s",
                    backend.name,
                    exc,
                )
                self.save_token(profile, token, postfix, enforce_basic=True)
                return
            raise

    def load_token(
        self,
        profile: Profile,
        postfix: str,
        enforce_basic: bool = False,
    ) -> Optional[ArkToken]:
        """Load the token for *profile*, purging it if it went stale.

        A record is stale when it has no refresh token, is not
        :attr:`~arkauth.models.TokenType.INTERNAL`, and expired more than
        60 seconds ago; or when it has a refresh token and expired more
        than 12 hours ago.

        Returns:
            The token, or ``None`` if there is none or it was purged.

        Raises:
            CacheError: On read failures (after the basic fallback), on an
                unparseable record, or when purging fails.
        """
        service = self.service_for(postfix)
        self._logger.info("Loading token [%s] of profile [%s]", service, profile.profile_name)
        backend = self.get_keyring(enforce_basic)
        try:
            data = backend.get_password(service, profile.profile_name)
        except CacheError as exc:
            if backend.name != BasicKeyring.name:
                self._logger.warning(
                    "Falling back to the basic keyring, loading from the %s keyring failed: %s",
                    backend.name,
                    exc,
                )
                return self.load_token(profile, postfix, enforce_basic=True)
            raise
        if not data:
            self._logger.info("No token found")
            return None

        try:
            token = ArkToken.model_validate_json(data)
        except ValidationError as exc:
            raise CacheError(f"Cached token [{service}] could not be parsed: {exc}") from exc

        if token.expires_in is not None and self._is_stale(token):
            backend.delete_password(service, profile.profile_name)
            return None
        return token

    def clear_token(self, profile: Profile, postfix: str, enforce_basic: bool = False) -> None:
        """Delete the token for *profile* and *postfix* if present.

        Raises:
            CacheError: If the delete fails on the basic backend, either
                directly or after falling back from the native one.
        """
        backend = self.get_keyring(enforce_basic)
        try:
            backend.delete_password(self.service_for(postfix), profile.profile_name)
        except CacheError as exc:
            if backend.name != BasicKeyring.name:
                self._logger.warning(
                    "Falling back to the basic keyring, clearing from the %s keyring failed: %s",
                    backend.name,
                    exc,
                )
                self.clear_token(profile, postfix, enforce_basic=True)
                return
            raise

    def _is_stale(self, token: ArkToken) -> bool:
        assert token.expires_in is not None
        now = self._clock()
        expires = as_aware(token.expires_in)
        if (
            not token.refresh_token
            and token.token_type != TokenType.INTERNAL
            and expires < now - EXPIRATION_GRACE
        ):
            self._logger.info("Token is expired and no refresh token exists")
            return True
        if token.refresh_token and expires + MAX_KEYRING_RECORD_AGE < now:
            self._logger.info("Token sat in the cache too long without being refreshed")
            return True
        return False
