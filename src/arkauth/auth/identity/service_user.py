"""Non-interactive identity login for service users.

A service user trades its username and token for an OAuth2 access token
(client-credentials grant on ``Oauth2/Token/<app>``), then asks
``OAuth2/Authorize/<app>`` for an id token, which the service returns in
the fragment of a ``302`` redirect. The id token is the platform session
and is valid for :data:`SERVICE_USER_SESSION_LIFETIME`.
"""

from __future__ import annotations

import base64
from datetime import datetime, timedelta
from typing import Optional
from urllib.parse import parse_qs

import httpx
from pydantic import ValidationError

from arkauth.auth.identity.identity import IDENTITY_KEYRING_SERVICE
from arkauth.auth.identity.schemas import ClientCredentialsTokenResponse
from arkauth.auth.identity.tenant import resolve_identity_url
from arkauth.client import SessionClient
from arkauth.exceptions import AuthError, CacheError, ProtocolError
from arkauth.keyring import ArkKeyring
from arkauth.keyring.vault import as_aware, utcnow
from arkauth.models import DEFAULT_IDENTITY_APPLICATION, ArkToken, AuthMethod, Profile, TokenType
from arkauth.output import Logger

SERVICE_USER_SESSION_LIFETIME = timedelta(hours=4)
AUTHORIZE_REDIRECT_URI = "https://cyberark.cloud/redirect"


class ArkIdentityServiceUser:
    """Service-user login against one identity tenant.

    Args:
        username: Service user name.
        token: Service user secret.
        app_name: OAuth2 application granting the platform token.
        identity_url: Tenant URL, resolved like :class:`ArkIdentity` when omitted.
        identity_tenant_subdomain: Platform subdomain of the tenant.
        logger: Optional :class:`~arkauth.output.Logger`.
        cache_authentication: Load and store the session in the vault.
        load_cache: Load the cached session of *cache_profile* right away.
        cache_profile: Profile whose cache :attr:`load_cache` reads.
        keyring: Vault instance (defaults to ``ArkKeyring("ark-identity")``).
        transport: Optional httpx transport, mainly for tests.
    """

    def __init__(
        self,
        username: str,
        token: str,
        app_name: str = DEFAULT_IDENTITY_APPLICATION,
        identity_url: Optional[str] = None,
        identity_tenant_subdomain: Optional[str] = None,
        logger: Optional[Logger] = None,
        cache_authentication: bool = True,
        load_cache: bool = False,
        cache_profile: Optional[Profile] = None,
        keyring: Optional[ArkKeyring] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._username = username
        self._token = token
        self._app_name = app_name
        self._logger = logger or Logger("ArkIdentityServiceUser")
        self._cache_authentication = cache_authentication
        self._cache_profile = cache_profile
        self._keyring = keyring
        if self._keyring is None and cache_authentication:
            self._keyring = ArkKeyring(IDENTITY_KEYRING_SERVICE, logger=self._logger)
        base_url = resolve_identity_url(
            username, identity_url, identity_tenant_subdomain, transport=transport
        )
        self._session = SessionClient(base_url, transport=transport, logger=self._logger)
        self._session_token: Optional[str] = None
        self._session_expiry: Optional[datetime] = None

        if load_cache and cache_authentication and cache_profile is not None:
            self._load_cache(cache_profile)

    @property
    def session(self) -> SessionClient:
        return self._session

    @property
    def session_token(self) -> Optional[str]:
        return self._session_token

    @property
    def session_expiry(self) -> Optional[datetime]:
        return self._session_expiry

    @property
    def identity_url(self) -> str:
        return self._session.base_url

    def auth_identity(self, profile: Optional[Profile] = None, force: bool = False) -> None:
        """Log the service user in, reusing an unexpired cached session.

        Raises:
            AuthError: If either exchange is refused.
            ProtocolError: If a response lacks the expected token.
            TransportError: The service is unreachable.
            CacheError: The session could not be stored.
        """
        profile = profile or self._cache_profile
        self._logger.info("Authenticating to service user via endpoint [%s]", self.identity_url)
        if self._cache_authentication and not force and self._load_cache(profile):
            if self._session_expiry is not None and self._session_expiry > utcnow():
                self._logger.info("Loaded identity service user details from cache")
                return

        credentials = base64.b64encode(f"{self._username}:{self._token}".encode("utf-8"))
        self._session.update_token(credentials.decode("ascii"), "Basic")
        access_token = self._client_credentials_token()

        self._session.update_token(access_token, "Bearer")
        self._session_token = self._authorize_id_token()
        self._session.update_token(self._session_token, "Bearer")
        self._session_expiry = utcnow() + SERVICE_USER_SESSION_LIFETIME
        self._logger.info(
            "Created a service user session via endpoint [%s] with user [%s] to platform",
            self.identity_url,
            self._username,
        )
        if self._cache_authentication:
            self._save_cache(profile)

    def _client_credentials_token(self) -> str:
        response = self._session.post(
            f"Oauth2/Token/{self._app_name}",
            body={"grant_type": "client_credentials", "scope": "api"},
        )
        if response.status_code != 200:
            raise AuthError(
                f"Failed logging in to identity service user: HTTP {response.status_code}"
            )
        try:
            return ClientCredentialsTokenResponse.model_validate_json(response.content).access_token
        except ValidationError as exc:
            raise ProtocolError(
                "Failed logging in to identity service user, access token not found"
            ) from exc

    def _authorize_id_token(self) -> str:
        response = self._session.get(
            f"OAuth2/Authorize/{self._app_name}",
            params={
                "client_id": self._app_name,
                "response_type": "id_token",
                "scope": "openid profile api",
                "redirect_uri": AUTHORIZE_REDIRECT_URI,
            },
        )
        location = response.headers.get("Location", "")
        if response.status_code != 302 or not location:
            raise AuthError(
                f"Failed to authorize to application [{self._app_name}]: HTTP {response.status_code}"
            )
        parts = location.split("#")
        if len(parts) != 2:
            raise ProtocolError("Failed to parse location header to retrieve token from")
        id_tokens = parse_qs(parts[1]).get("id_token", [])
        if len(id_tokens) != 1:
            raise ProtocolError("Failed to parse id token from location header")
        return id_tokens[0]

    def _postfix(self) -> str:
        return f"{self._username}_identity_service_user"

    def _load_cache(self, profile: Optional[Profile]) -> bool:
        if self._keyring is None or profile is None:
            return False
        try:
            token = self._keyring.load_token(profile, self._postfix())
        except CacheError as exc:
            self._logger.error("Error loading token from cache: %s", exc)
            return False
        if token is None or token.username != self._username:
            return False
        self._session_token = token.token
        self._session_expiry = as_aware(token.expires_in) if token.expires_in else None
        self._session.update_token(self._session_token, "Bearer")
        return True

    def _save_cache(self, profile: Optional[Profile]) -> None:
        if self._keyring is None or profile is None or not self._session_token:
            return
        self._keyring.save_token(
            profile,
            ArkToken(
                token=self._session_token,
                username=self._username,
                endpoint=self.identity_url,
                token_type=TokenType.INTERNAL,
                auth_method=AuthMethod.OTHER,
                expires_in=self._session_expiry,
            ),
            self._postfix(),
        )
