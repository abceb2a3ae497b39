"""Canonical Pydantic models shared across arkauth modules.

The models fall into two groups:

**Configuration models** -- serialised as JSON in the profiles folder:
    :class:`IdentityAuthMethodSettings`,
    :class:`IdentityServiceUserAuthMethodSettings`,
    :class:`DirectAuthMethodSettings`, :class:`AuthProfile`, and
    :class:`Profile`.

**Credential models** -- produced by authenticators and persisted in the
credential vault:
    :class:`TokenType`, :class:`AuthMethod`, :class:`ArkToken`, and
    :class:`ArkSecret`.

Identity wire-protocol shapes live next to the protocol code in
:mod:`arkauth.auth.identity.schemas`.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, SecretStr, model_validator

DEFAULT_IDENTITY_APPLICATION = "__idaptive_cybr_user_oidc"


# --- Enums ---


class TokenType(str, enum.Enum):
    """Kind of credential held in :attr:`ArkToken.token`."""

    JWT = "JSON Web Token"
    COOKIES = "Cookies"
    TOKEN = "Token"
    PASSWORD = "Password"
    CUSTOM = "Custom"
    INTERNAL = "Internal"


class AuthMethod(str, enum.Enum):
    """Authentication method configured on an :class:`AuthProfile`."""

    IDENTITY = "identity"
    IDENTITY_SERVICE_USER = "identity_service_user"
    DIRECT = "direct"
    DEFAULT = "default"
    OTHER = "other"


AUTH_METHODS_REQUIRING_CREDENTIALS = (
    AuthMethod.IDENTITY,
    AuthMethod.IDENTITY_SERVICE_USER,
)


# --- Auth method settings ---


class IdentityAuthMethodSettings(BaseModel):
    """Settings for interactive identity logins.

    Example::

        IdentityAuthMethodSettings(
            identity_mfa_method="otp",
            identity_tenant_subdomain="acme",
        )
    """

    identity_mfa_method: str = Field(
        default="", description="Preferred MFA mechanism: pf, sms, email, otp, oath"
    )
    identity_mfa_interactive: bool = Field(
        default=True, description="Allow prompting the operator during MFA"
    )
    identity_url: Optional[str] = Field(
        default=None, description="Explicit identity tenant URL"
    )
    identity_tenant_subdomain: Optional[str] = Field(
        default=None, description="Platform subdomain used to discover the identity URL"
    )


class IdentityServiceUserAuthMethodSettings(BaseModel):
    """Settings for non-interactive service-user logins."""

    identity_authorization_application: str = Field(
        default=DEFAULT_IDENTITY_APPLICATION,
        description="OAuth2 application granting the platform token",
    )
    identity_url: Optional[str] = None
    identity_tenant_subdomain: Optional[str] = None


class DirectAuthMethodSettings(BaseModel):
    """Settings for authenticators that talk to a fixed endpoint."""

    endpoint: str = ""
    interactive: bool = True


AuthMethodSettings = Union[
    IdentityAuthMethodSettings,
    IdentityServiceUserAuthMethodSettings,
    DirectAuthMethodSettings,
]

AUTH_METHOD_SETTINGS: dict[AuthMethod, type[BaseModel]] = {
    AuthMethod.IDENTITY: IdentityAuthMethodSettings,
    AuthMethod.IDENTITY_SERVICE_USER: IdentityServiceUserAuthMethodSettings,
    AuthMethod.DIRECT: DirectAuthMethodSettings,
    AuthMethod.DEFAULT: IdentityAuthMethodSettings,
}


# --- Profiles ---


class AuthProfile(BaseModel):
    """Per-authenticator section of a :class:`Profile`.

    ``auth_method_settings`` is validated against the settings model that
    matches ``auth_method`` (see :data:`AUTH_METHOD_SETTINGS`).
    """

    username: str = ""
    auth_method: AuthMethod = AuthMethod.DEFAULT
    auth_method_settings: Optional[AuthMethodSettings] = None

    @model_validator(mode="before")
    @classmethod
    def _coerce_settings(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        settings = data.get("auth_method_settings")
        if isinstance(settings, dict):
            method = AuthMethod(data.get("auth_method", AuthMethod.DEFAULT))
            model = AUTH_METHOD_SETTINGS.get(method)
            if model is not None:
                data = {**data, "auth_method_settings": model.model_validate(settings)}
        return data


class Profile(BaseModel):
    """A named set of authenticator configurations.

    The profile name is stable: it is the vault "account" under which
    every cached session of this profile is stored. ``auth_profiles`` maps
    an authenticator name (e.g. ``"isp"``) to its :class:`AuthProfile`
    and may be mutated in place before :func:`~arkauth.config.save_profile`.

    Example::

        Profile(
            profile_name="ark",
            auth_profiles={
                "isp": AuthProfile(
                    username="me@example.com",
                    auth_method=AuthMethod.IDENTITY,
                    auth_method_settings=IdentityAuthMethodSettings(),
                )
            },
        )
    """

    profile_name: str = "ark"
    profile_description: str = "Default Ark Profile"
    auth_profiles: dict[str, AuthProfile] = Field(default_factory=dict)


# --- Credentials ---


class ArkToken(BaseModel):
    """A session credential as stored in the credential vault.

    ``expires_in`` is an absolute timestamp. ``metadata`` carries
    authenticator-specific extras such as the deploy environment and the
    base64 encoded session cookies.
    """

    token: str
    username: Optional[str] = None
    endpoint: Optional[str] = None
    token_type: TokenType = TokenType.JWT
    auth_method: Optional[AuthMethod] = None
    expires_in: Optional[datetime] = None
    refresh_token: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ArkSecret(BaseModel):
    """A secret (password or service-user token) supplied for authentication."""

    secret: Optional[SecretStr] = None

    def get(self) -> str:
        """Return the plain secret value, or an empty string when unset."""
        return self.secret.get_secret_value() if self.secret is not None else ""
