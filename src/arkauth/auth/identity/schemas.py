"""Identity service wire models.

The identity REST API speaks PascalCase JSON (``SessionId``,
``MechanismId``...) except for the top-level ``success`` flag, which is
lowercase in practice. Every model accepts both spellings and ignores
unknown keys, since the service adds fields freely. JSON ``null`` values
are treated as absent.
"""

from __future__ import annotations

import enum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator


class _IdentityModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        # The service sends ``null`` for absent values (``"Result": null`` on
        # a failed answer); those fall back to the field defaults.
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data


class AuthAction(str, enum.Enum):
    """``Action`` values accepted by ``Security/AdvanceAuthentication``."""

    ANSWER = "Answer"
    POLL = "Poll"
    START_OOB = "StartOOB"


class AuthSummary(str, enum.Enum):
    """Known ``Summary`` values of advance-authentication responses."""

    LOGIN_SUCCESS = "LoginSuccess"
    NEW_PACKAGE = "NewPackage"
    OOB_PENDING = "OobPending"
    START_NEXT_CHALLENGE = "StartNextChallenge"


# --- Requests ---


class StartAuthenticationRequest(_IdentityModel):
    user: str = Field(serialization_alias="User")
    version: str = Field(default="1.0", serialization_alias="Version")
    platform_token_response: bool = Field(default=True, serialization_alias="PlatformTokenResponse")
    mfa_requestor: str = Field(default="DeviceAgent", serialization_alias="MfaRequestor")


class AdvanceAuthenticationRequest(_IdentityModel):
    session_id: str = Field(serialization_alias="SessionId")
    mechanism_id: str = Field(serialization_alias="MechanismId")
    action: AuthAction = Field(serialization_alias="Action")
    answer: str = Field(default="", serialization_alias="Answer")


class OobAuthStatusRequest(_IdentityModel):
    session_id: str = Field(serialization_alias="SessionId")


# --- Responses ---


class IdentityResponse(_IdentityModel):
    """Envelope shared by every identity response."""

    success: bool = Field(default=False, validation_alias=AliasChoices("success", "Success"))
    message: Optional[str] = Field(default=None, validation_alias=AliasChoices("Message", "message"))
    error_code: Optional[str] = Field(default=None, validation_alias=AliasChoices("ErrorCode", "errorCode"))
    exception: Optional[str] = Field(default=None, validation_alias=AliasChoices("Exception", "exception"))

    def describe_failure(self) -> str:
        """Best human-readable reason for a ``success: false`` response."""
        return self.message or self.exception or self.error_code or "no reason given"


class Mechanism(_IdentityModel):
    """One way to satisfy a challenge (password, push, SMS...)."""

    answer_type: str = Field(alias="AnswerType")
    name: str = Field(alias="Name")
    mechanism_id: str = Field(alias="MechanismId")
    prompt_mech_chosen: str = Field(default="", alias="PromptMechChosen")
    prompt_select_mech: str = Field(default="", alias="PromptSelectMech")

    @property
    def lower_name(self) -> str:
        return self.name.lower()


class Challenge(_IdentityModel):
    """One authentication round: any of its mechanisms satisfies it."""

    mechanisms: list[Mechanism] = Field(default_factory=list, alias="Mechanisms")


class StartAuthResult(_IdentityModel):
    challenges: list[Challenge] = Field(default_factory=list, alias="Challenges")
    session_id: str = Field(default="", alias="SessionId")
    idp_redirect_url: str = Field(default="", alias="IdpRedirectUrl")
    idp_redirect_short_url: str = Field(default="", alias="IdpRedirectShortUrl")
    idp_login_session_id: str = Field(default="", alias="IdpLoginSessionId")
    tenant_id: str = Field(default="", alias="TenantId")
    pod_fqdn: str = Field(default="", alias="PodFqdn")


class StartAuthResponse(IdentityResponse):
    result: StartAuthResult = Field(
        default_factory=StartAuthResult, validation_alias=AliasChoices("Result", "result")
    )


class AdvanceAuthResult(_IdentityModel):
    """Result of an advance call: intermediate, or terminal on ``LoginSuccess``."""

    summary: str = Field(default="", alias="Summary")
    generated_auth_value: str = Field(default="", alias="GeneratedAuthValue")
    auth: str = Field(default="", alias="Auth")
    token: str = Field(default="", alias="Token")
    refresh_token: str = Field(default="", alias="RefreshToken")
    token_lifetime: int = Field(default=0, alias="TokenLifetime")
    display_name: str = Field(default="", alias="DisplayName")
    customer_id: str = Field(default="", alias="CustomerID")
    user_id: str = Field(default="", alias="UserId")
    pod_fqdn: str = Field(default="", alias="PodFqdn")

    @property
    def is_login_success(self) -> bool:
        return self.summary == AuthSummary.LOGIN_SUCCESS.value and bool(self.token or self.auth)

    @property
    def is_new_package(self) -> bool:
        return self.summary == AuthSummary.NEW_PACKAGE.value


class AdvanceAuthResponse(IdentityResponse):
    result: AdvanceAuthResult = Field(
        default_factory=AdvanceAuthResult, validation_alias=AliasChoices("Result", "result")
    )


class IdpAuthStatusResult(_IdentityModel):
    state: str = Field(default="", alias="State")
    token: str = Field(default="", alias="Token")
    token_lifetime: int = Field(default=0, alias="TokenLifetime")
    refresh_token: str = Field(default="", alias="RefreshToken")


class IdpAuthStatusResponse(IdentityResponse):
    result: IdpAuthStatusResult = Field(
        default_factory=IdpAuthStatusResult, validation_alias=AliasChoices("Result", "result")
    )


class PodFqdnResult(_IdentityModel):
    pod_fqdn: str = Field(default="", alias="PodFqdn")

    @property
    def tenant_id(self) -> str:
        return self.pod_fqdn.split(".")[0]


class TenantFqdnResponse(IdentityResponse):
    result: PodFqdnResult = Field(
        default_factory=PodFqdnResult, validation_alias=AliasChoices("Result", "result")
    )


class TenantEndpointResponse(_IdentityModel):
    endpoint: str


class ClientCredentialsTokenResponse(_IdentityModel):
    access_token: str
    token_type: str = "Bearer"
    expires_in: Optional[int] = None


# --- Session state ---


class IdentitySessionDetails(BaseModel):
    """Session obtained after a successful login, cached between runs."""

    token: str
    refresh_token: str = ""
    token_lifetime: int = 0
    auth: str = ""
    display_name: str = ""
    customer_id: str = ""
    user_id: str = ""
    pod_fqdn: str = ""

    @classmethod
    def from_advance_result(cls, result: AdvanceAuthResult) -> IdentitySessionDetails:
        return cls(
            token=result.token or result.auth,
            refresh_token=result.refresh_token,
            token_lifetime=result.token_lifetime,
            auth=result.auth,
            display_name=result.display_name,
            customer_id=result.customer_id,
            user_id=result.user_id,
            pod_fqdn=result.pod_fqdn,
        )


class IdentitySessionState(BaseModel):
    """Headers and cookies of the identity session, cached next to the details."""

    headers: dict[str, str] = Field(default_factory=dict)
    cookies: str = ""
