"""Abstract base class for authenticators.

An authenticator turns an :class:`~arkauth.models.AuthProfile` into an
:class:`~arkauth.models.ArkToken`. This module holds everything that does
not depend on *how* the token is obtained:

- picking the auth profile out of a :class:`~arkauth.models.Profile` and
  mapping :attr:`~arkauth.models.AuthMethod.DEFAULT` to the
  authenticator's default method;
- caching tokens in the credential vault, keyed by
  :meth:`ArkAuth.resolve_cache_postfix`;
- refreshing expired tokens when a refresh token is available;
- building :class:`~arkauth.client.SessionClient` instances that re-load
  the token on HTTP 401.

To implement a new authenticator, subclass :class:`ArkAuth`, fill in the
name and method properties, and implement :meth:`_perform_authentication`
and :meth:`_perform_refresh_authentication`.

See Also:
    :mod:`arkauth.auth.manager` for registration and lookup.
"""

from __future__ import annotations

import base64
import binascii
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, Optional
from urllib.parse import urlparse

import httpx

from arkauth.client import SessionClient, marshal_cookies, unmarshal_cookies
from arkauth.config import get_deploy_env, load_default_profile
from arkauth.exceptions import AuthError, ConfigError, InvalidUsageError
from arkauth.keyring import ArkKeyring
from arkauth.keyring.vault import as_aware, utcnow
from arkauth.models import (
    AUTH_METHODS_REQUIRING_CREDENTIALS,
    ArkSecret,
    ArkToken,
    AuthMethod,
    AuthMethodSettings,
    AuthProfile,
    DirectAuthMethodSettings,
    Profile,
)
from arkauth.output import Logger

EXPIRATION_GRACE = timedelta(seconds=60)


def token_metadata(cookies: httpx.Cookies) -> dict[str, Any]:
    """Metadata stored with platform tokens: deploy env and session cookies."""
    return {
        "env": get_deploy_env().value,
        "cookies": base64.b64encode(marshal_cookies(cookies)).decode("ascii"),
    }


def token_cookies(token: ArkToken) -> Optional[httpx.Cookies]:
    """Cookies saved in *token* metadata by :func:`token_metadata`, if any."""
    encoded = token.metadata.get("cookies")
    if not encoded:
        return None
    try:
        return unmarshal_cookies(base64.b64decode(encoded))
    except (ValueError, binascii.Error) as exc:
        raise AuthError(f"Token cookies could not be decoded: {exc}") from exc


class ArkAuth(ABC):
    """Abstract base class for authenticators.

    Args:
        cache_authentication: Load and store tokens in the vault.
        keyring: Vault instance (defaults to ``ArkKeyring("ark-<name>")``).
        logger: Optional :class:`~arkauth.output.Logger`.

    Attributes:
        token: Token of the last successful :meth:`authenticate` or
            :meth:`load_authentication`.
        active_profile: Profile that token belongs to.
        active_auth_profile: Auth profile that token belongs to.
    """

    def __init__(
        self,
        cache_authentication: bool = True,
        keyring: Optional[ArkKeyring] = None,
        logger: Optional[Logger] = None,
    ) -> None:
        self._logger = logger or Logger(self.__class__.__name__)
        self._cache_authentication = cache_authentication
        self._keyring = keyring
        if self._keyring is None and cache_authentication:
            self._keyring = ArkKeyring(f"ark-{self.authenticator_name}", logger=self._logger)
        self.token: Optional[ArkToken] = None
        self.active_profile: Optional[Profile] = None
        self.active_auth_profile: Optional[AuthProfile] = None

    # ------------------------------------------------------------------ #
    # Authenticator description
    # ------------------------------------------------------------------ #

    @property
    @abstractmethod
    def authenticator_name(self) -> str:
        """Key of this authenticator in :attr:`Profile.auth_profiles`."""
        ...

    @property
    @abstractmethod
    def authenticator_human_readable_name(self) -> str:
        ...

    @property
    @abstractmethod
    def supported_auth_methods(self) -> list[AuthMethod]:
        ...

    @property
    @abstractmethod
    def default_auth_method(self) -> tuple[AuthMethod, AuthMethodSettings]:
        """Method and settings used for :attr:`AuthMethod.DEFAULT` profiles."""
        ...

    @abstractmethod
    def _perform_authentication(
        self,
        profile: Profile,
        auth_profile: AuthProfile,
        secret: Optional[ArkSecret],
        force: bool,
    ) -> ArkToken:
        ...

    @abstractmethod
    def _perform_refresh_authentication(
        self, profile: Profile, auth_profile: AuthProfile, token: Optional[ArkToken]
    ) -> Optional[ArkToken]:
        ...

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def resolve_cache_postfix(self, auth_profile: AuthProfile) -> str:
        """Vault postfix of *auth_profile*: the username, plus the host for direct endpoints."""
        postfix = auth_profile.username
        settings = auth_profile.auth_method_settings
        if auth_profile.auth_method == AuthMethod.DIRECT and isinstance(
            settings, DirectAuthMethodSettings
        ):
            if settings.endpoint:
                postfix = f"{postfix}_{urlparse(settings.endpoint).netloc}"
        return postfix

    def authenticate(
        self,
        profile: Optional[Profile] = None,
        auth_profile: Optional[AuthProfile] = None,
        secret: Optional[ArkSecret] = None,
        force: bool = False,
        refresh_auth: bool = False,
    ) -> ArkToken:
        """Return a token for *profile*, from the vault when possible.

        Args:
            profile: Profile to authenticate; the default profile if omitted.
            auth_profile: Overrides ``profile.auth_profiles[name]``.
            secret: Password or service-user token.
            force: Skip the vault and log in again.
            refresh_auth: Refresh the token even when it is still valid.

        Returns:
            The token, also kept in :attr:`token`.

        Raises:
            InvalidUsageError: Neither profile nor auth profile given, or
                a username is required but missing.
            ConfigError: The profile has no section for this authenticator
                or uses an unsupported method.
            AuthError: The login failed.
            CacheError: The vault could not be read or written.
        """
        if auth_profile is None and profile is None:
            raise InvalidUsageError("Either a profile or a specific auth profile must be supplied")
        if auth_profile is None:
            assert profile is not None
            auth_profile = profile.auth_profiles.get(self.authenticator_name)
            if auth_profile is None:
                raise ConfigError(
                    f"{self.authenticator_human_readable_name} [{self.authenticator_name}] "
                    "is not defined within the authentication profiles"
                )
        if profile is None:
            profile = load_default_profile()

        if (
            auth_profile.auth_method not in self.supported_auth_methods
            and auth_profile.auth_method != AuthMethod.DEFAULT
        ):
            raise ConfigError(
                f"{self.authenticator_human_readable_name} does not support "
                f"authentication method {auth_profile.auth_method.value}"
            )
        if auth_profile.auth_method == AuthMethod.DEFAULT:
            method, settings = self.default_auth_method
            auth_profile = auth_profile.model_copy(
                update={
                    "auth_method": method,
                    "auth_method_settings": auth_profile.auth_method_settings or settings,
                }
            )
        if auth_profile.auth_method in AUTH_METHODS_REQUIRING_CREDENTIALS and not auth_profile.username:
            raise InvalidUsageError(
                f"{self.authenticator_human_readable_name} requires a username and optionally a secret"
            )

        postfix = self.resolve_cache_postfix(auth_profile)
        token: Optional[ArkToken] = None
        refreshed = False
        if self._cache_authentication and self._keyring is not None and not force:
            token = self._keyring.load_token(profile, postfix)
            if token is not None and self._is_expired(token):
                if refresh_auth and token.refresh_token:
                    token = self._try_refresh(profile, auth_profile, postfix, token)
                    refreshed = token is not None
                else:
                    token = None

        if token is None:
            token = self._perform_authentication(profile, auth_profile, secret, force)
            self._save(profile, token, postfix)
        elif refresh_auth and not refreshed:
            refreshed_token = self._perform_refresh_authentication(profile, auth_profile, token)
            if refreshed_token is not None:
                token = refreshed_token
                self._save(profile, token, postfix)

        self.token = token
        self.active_profile = profile
        self.active_auth_profile = auth_profile
        return token

    def is_authenticated(self, profile: Profile) -> bool:
        """Whether a live token is loaded or cached for *profile*."""
        self._logger.info("Checking if [%s] is authenticated", self.authenticator_name)
        if self.token is not None:
            self._logger.info("Token is already loaded")
            return True
        auth_profile = profile.auth_profiles.get(self.authenticator_name)
        if auth_profile is None or self._keyring is None:
            return False
        token = self._keyring.load_token(profile, self.resolve_cache_postfix(auth_profile))
        if token is None or self._is_expired(token):
            return False
        self._logger.info("Loaded token from cache successfully")
        self.token = token
        return True

    def load_authentication(
        self, profile: Optional[Profile] = None, refresh_auth: bool = False
    ) -> Optional[ArkToken]:
        """Load the cached token, refreshing it when it is about to expire.

        With *refresh_auth*, a token expiring within 60 seconds is
        refreshed. A failed refresh leaves no token.

        Returns:
            The live token, or ``None``.
        """
        self._logger.info("Trying to load [%s] authentication", self.authenticator_name)
        profile = profile or self.active_profile or load_default_profile()
        auth_profile = self.active_auth_profile or profile.auth_profiles.get(self.authenticator_name)
        if auth_profile is None:
            return None
        self._logger.info(
            "Loading authentication for profile [%s] and auth profile [%s] of type [%s]",
            profile.profile_name,
            self.authenticator_name,
            auth_profile.auth_method.value,
        )
        postfix = self.resolve_cache_postfix(auth_profile)
        token = self._keyring.load_token(profile, postfix) if self._keyring is not None else self.token

        if refresh_auth:
            if token is not None and not self._is_expired(token, grace=EXPIRATION_GRACE):
                self._logger.info("Token did not pass grace expiration, no need to refresh")
            else:
                token = self._try_refresh(profile, auth_profile, postfix, token)

        if token is not None and self._is_expired(token):
            token = None
        self.token = token
        if token is not None:
            self.active_profile = profile
            self.active_auth_profile = auth_profile
        return token

    def client(
        self, base_url: str, transport: Optional[httpx.BaseTransport] = None
    ) -> SessionClient:
        """Return a client for *base_url* carrying the current token.

        On HTTP 401 the client calls :meth:`refresh_client`.

        Raises:
            AuthError: If nothing is authenticated yet.
        """
        if self.token is None:
            raise AuthError(f"{self.authenticator_human_readable_name} is not authenticated")
        return SessionClient(
            base_url,
            token=self.token.token,
            cookies=token_cookies(self.token),
            refresh_callback=self.refresh_client,
            transport=transport,
            logger=self._logger,
        )

    def refresh_client(self, client: SessionClient) -> None:
        """Refresh callback of :meth:`client`: reload the token into *client*.

        Raises:
            AuthError: If no live token can be obtained.
        """
        token = self.load_authentication(self.active_profile, refresh_auth=True)
        if token is None:
            raise AuthError("Session expired, log in again")
        client.update_token(token.token, client.token_type)
        cookies = token_cookies(token)
        if cookies is not None:
            client.update_cookies(cookies)

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _is_expired(token: ArkToken, grace: timedelta = timedelta(0)) -> bool:
        if token.expires_in is None:
            return False
        return as_aware(token.expires_in) - grace <= utcnow()

    def _try_refresh(
        self,
        profile: Profile,
        auth_profile: AuthProfile,
        postfix: str,
        token: Optional[ArkToken],
    ) -> Optional[ArkToken]:
        self._logger.info("Trying to refresh token authentication")
        try:
            refreshed = self._perform_refresh_authentication(profile, auth_profile, token)
        except AuthError as exc:
            self._logger.warning("Token refresh failed, a new login is required: %s", exc)
            return None
        if refreshed is not None:
            self._save(profile, refreshed, postfix)
        return refreshed

    def _save(self, profile: Profile, token: ArkToken, postfix: str) -> None:
        if self._cache_authentication and self._keyring is not None:
            self._keyring.save_token(profile, token, postfix)
