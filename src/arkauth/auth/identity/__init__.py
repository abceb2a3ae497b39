"""Identity service logins.

Re-exports:
    ArkIdentity: Interactive login with MFA and IdP federation.
    ArkIdentityServiceUser: Service-user (client credentials) login.
    LastStartAuthCache: Short-lived cache of start-authentication responses.
    has_cache_record / is_idp_user / is_password_required: Login probes.
"""

from arkauth.auth.identity.identity import (
    DEFAULT_TOKEN_LIFETIME,
    IDENTITY_KEYRING_SERVICE,
    ArkIdentity,
    clear_cache_records,
    has_cache_record,
    is_idp_user,
    is_password_required,
)
from arkauth.auth.identity.interaction import ConsoleInteraction, Interaction, open_browser
from arkauth.auth.identity.mechanisms import (
    FACTORS,
    SUPPORTED_MECHANISMS,
    MechanismSelector,
    OOBPoller,
    PollOutcome,
    PollStatus,
    Prompter,
)
from arkauth.auth.identity.service_user import ArkIdentityServiceUser
from arkauth.auth.identity.start_auth_cache import LastStartAuthCache, default_start_auth_cache
from arkauth.auth.identity.tenant import default_headers, resolve_identity_url

__all__ = [
    "DEFAULT_TOKEN_LIFETIME",
    "FACTORS",
    "IDENTITY_KEYRING_SERVICE",
    "SUPPORTED_MECHANISMS",
    "ArkIdentity",
    "ArkIdentityServiceUser",
    "ConsoleInteraction",
    "Interaction",
    "LastStartAuthCache",
    "MechanismSelector",
    "OOBPoller",
    "PollOutcome",
    "PollStatus",
    "Prompter",
    "clear_cache_records",
    "default_headers",
    "default_start_auth_cache",
    "has_cache_record",
    "is_idp_user",
    "is_password_required",
    "open_browser",
    "resolve_identity_url",
]
