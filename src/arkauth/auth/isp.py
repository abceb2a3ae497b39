"""Identity Security Platform authenticator.

:class:`ArkISPAuth` logs in through the identity service, either as a
human user (:attr:`~arkauth.models.AuthMethod.IDENTITY`, with MFA and IdP
federation) or as a service user
(:attr:`~arkauth.models.AuthMethod.IDENTITY_SERVICE_USER`). The resulting
platform token is a JWT; its metadata carries the deploy environment and
the identity session cookies.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Optional

import httpx

from arkauth.auth.base import ArkAuth, token_metadata
from arkauth.auth.identity import (
    DEFAULT_TOKEN_LIFETIME,
    ArkIdentity,
    ArkIdentityServiceUser,
    Interaction,
    LastStartAuthCache,
)
from arkauth.auth.identity.interaction import BrowserOpener
from arkauth.auth.identity.service_user import SERVICE_USER_SESSION_LIFETIME
from arkauth.config import is_interactive
from arkauth.exceptions import AuthError, ConfigError
from arkauth.keyring import ArkKeyring
from arkauth.keyring.vault import utcnow
from arkauth.models import (
    ArkSecret,
    ArkToken,
    AuthMethod,
    AuthMethodSettings,
    AuthProfile,
    IdentityAuthMethodSettings,
    IdentityServiceUserAuthMethodSettings,
    Profile,
    TokenType,
)
from arkauth.output import Logger


class ArkISPAuth(ArkAuth):
    """Authenticator for the ``isp`` section of a profile.

    Args:
        cache_authentication: Load and store tokens and identity sessions
            in the vault.
        keyring: Vault of platform tokens.
        identity_keyring: Vault of identity sessions, passed to
            :class:`ArkIdentity` and :class:`ArkIdentityServiceUser`.
        interaction: Operator prompts used during MFA.
        browser_opener: Opens IdP login pages.
        start_auth_cache: Shared start-authentication cache.
        transport: Optional httpx transport, mainly for tests.
        logger: Optional :class:`~arkauth.output.Logger`.
    """

    def __init__(
        self,
        cache_authentication: bool = True,
        keyring: Optional[ArkKeyring] = None,
        identity_keyring: Optional[ArkKeyring] = None,
        interaction: Optional[Interaction] = None,
        browser_opener: Optional[BrowserOpener] = None,
        start_auth_cache: Optional[LastStartAuthCache] = None,
        transport: Optional[httpx.BaseTransport] = None,
        logger: Optional[Logger] = None,
    ) -> None:
        super().__init__(cache_authentication, keyring, logger)
        self._identity_keyring = identity_keyring
        self._interaction = interaction
        self._browser_opener = browser_opener
        self._start_auth_cache = start_auth_cache
        self._transport = transport

    @property
    def authenticator_name(self) -> str:
        return "isp"

    @property
    def authenticator_human_readable_name(self) -> str:
        return "Identity Security Platform"

    @property
    def supported_auth_methods(self) -> list[AuthMethod]:
        return [AuthMethod.IDENTITY, AuthMethod.IDENTITY_SERVICE_USER]

    @property
    def default_auth_method(self) -> tuple[AuthMethod, AuthMethodSettings]:
        return AuthMethod.IDENTITY, IdentityAuthMethodSettings()

    # ------------------------------------------------------------------ #
    # Authentication
    # ------------------------------------------------------------------ #

    def _perform_authentication(
        self,
        profile: Profile,
        auth_profile: AuthProfile,
        secret: Optional[ArkSecret],
        force: bool,
    ) -> ArkToken:
        self._logger.info("Performing authentication to ISP")
        if auth_profile.auth_method in (AuthMethod.IDENTITY, AuthMethod.DEFAULT):
            return self._perform_identity_authentication(profile, auth_profile, secret, force)
        if auth_profile.auth_method == AuthMethod.IDENTITY_SERVICE_USER:
            return self._perform_service_user_authentication(profile, auth_profile, secret, force)
        raise ConfigError(f"Auth method {auth_profile.auth_method.value} is not supported")

    def _perform_refresh_authentication(
        self, profile: Profile, auth_profile: AuthProfile, token: Optional[ArkToken]
    ) -> Optional[ArkToken]:
        self._logger.info("Performing refresh authentication to ISP")
        if auth_profile.auth_method not in (AuthMethod.IDENTITY, AuthMethod.DEFAULT):
            return token
        settings = self._identity_settings(auth_profile)
        identity = self._identity(profile, auth_profile, settings, password=None)
        identity.refresh_auth_identity(
            profile, is_interactive() and settings.identity_mfa_interactive, force=False
        )
        return self._identity_token(identity, auth_profile)

    def _perform_identity_authentication(
        self,
        profile: Profile,
        auth_profile: AuthProfile,
        secret: Optional[ArkSecret],
        force: bool,
    ) -> ArkToken:
        settings = self._identity_settings(auth_profile)
        identity = self._identity(
            profile, auth_profile, settings, password=secret.get() if secret else None
        )
        identity.auth_identity(
            profile, is_interactive() and settings.identity_mfa_interactive, force
        )
        return self._identity_token(identity, auth_profile)

    def _perform_service_user_authentication(
        self,
        profile: Profile,
        auth_profile: AuthProfile,
        secret: Optional[ArkSecret],
        force: bool,
    ) -> ArkToken:
        if secret is None or not secret.get():
            raise AuthError("Token secret is required for identity service user auth")
        settings = auth_profile.auth_method_settings
        if not isinstance(settings, IdentityServiceUserAuthMethodSettings):
            settings = IdentityServiceUserAuthMethodSettings()
        service_user = ArkIdentityServiceUser(
            auth_profile.username,
            secret.get(),
            settings.identity_authorization_application,
            identity_url=settings.identity_url,
            identity_tenant_subdomain=settings.identity_tenant_subdomain,
            logger=self._logger,
            cache_authentication=self._cache_authentication,
            load_cache=self._cache_authentication,
            cache_profile=profile,
            keyring=self._identity_keyring,
            transport=self._transport,
        )
        service_user.auth_identity(profile, force)
        if not service_user.session_token:
            raise AuthError("Service user login did not produce a session token")
        return ArkToken(
            token=service_user.session_token,
            username=auth_profile.username,
            endpoint=service_user.identity_url,
            token_type=TokenType.JWT,
            auth_method=AuthMethod.IDENTITY_SERVICE_USER,
            expires_in=utcnow() + SERVICE_USER_SESSION_LIFETIME,
            metadata=token_metadata(service_user.session.cookie_jar),
        )

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _identity_settings(auth_profile: AuthProfile) -> IdentityAuthMethodSettings:
        settings = auth_profile.auth_method_settings
        if isinstance(settings, IdentityAuthMethodSettings):
            return settings
        return IdentityAuthMethodSettings()

    def _identity(
        self,
        profile: Profile,
        auth_profile: AuthProfile,
        settings: IdentityAuthMethodSettings,
        password: Optional[str],
    ) -> ArkIdentity:
        return ArkIdentity(
            auth_profile.username,
            password=password,
            identity_url=settings.identity_url,
            identity_tenant_subdomain=settings.identity_tenant_subdomain,
            mfa_type=settings.identity_mfa_method or None,
            logger=self._logger,
            cache_authentication=self._cache_authentication,
            load_cache=self._cache_authentication,
            cache_profile=profile,
            keyring=self._identity_keyring,
            start_auth_cache=self._start_auth_cache,
            interaction=self._interaction,
            browser_opener=self._browser_opener,
            transport=self._transport,
        )

    @staticmethod
    def _identity_token(identity: ArkIdentity, auth_profile: AuthProfile) -> ArkToken:
        details = identity.session_details
        token = identity.session_token
        if details is None or not token:
            raise AuthError("Identity login did not produce a session token")
        return ArkToken(
            token=token,
            username=auth_profile.username,
            endpoint=identity.identity_url,
            token_type=TokenType.JWT,
            auth_method=AuthMethod.IDENTITY,
            expires_in=utcnow() + timedelta(seconds=details.token_lifetime or DEFAULT_TOKEN_LIFETIME),
            refresh_token=details.refresh_token or None,
            metadata=token_metadata(identity.session.cookie_jar),
        )
