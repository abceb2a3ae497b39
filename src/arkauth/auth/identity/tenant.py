"""Identity tenant discovery and default protocol headers."""

from __future__ import annotations

from typing import Optional

import httpx
from pydantic import ValidationError

from arkauth.auth.identity.schemas import (
    StartAuthenticationRequest,
    TenantEndpointResponse,
    TenantFqdnResponse,
)
from arkauth.client.session import SessionClient
from arkauth.config import IDENTITY_ENV_URLS, ROOT_DOMAIN, DeployEnv, get_deploy_env
from arkauth.exceptions import ConfigError, ProtocolError


def default_headers() -> dict[str, str]:
    """Headers every identity protocol request carries."""
    return {
        "Content-Type": "application/json",
        "X-IDAP-NATIVE-CLIENT": "true",
        "OobIdPAuth": "true",
    }


def resolve_tenant_fqdn_from_subdomain(
    subdomain: str,
    env: Optional[DeployEnv] = None,
    transport: Optional[httpx.BaseTransport] = None,
) -> str:
    """Ask platform discovery for the identity URL of *subdomain*.

    Raises:
        ProtocolError: If discovery does not answer with an endpoint.
    """
    env = env or get_deploy_env()
    with SessionClient(f"platform-discovery.{ROOT_DOMAIN[env]}", transport=transport) as client:
        response = client.get(f"api/identity-endpoint/{subdomain}")
    if response.status_code != 200:
        raise ProtocolError(
            f"Failed to discover identity URL of subdomain [{subdomain}]: "
            f"HTTP {response.status_code}"
        )
    try:
        return TenantEndpointResponse.model_validate_json(response.content).endpoint
    except ValidationError as exc:
        raise ProtocolError(f"Unexpected platform discovery response: {exc}") from exc


def resolve_tenant_fqdn_from_suffix(
    tenant_suffix: str,
    env: Optional[DeployEnv] = None,
    transport: Optional[httpx.BaseTransport] = None,
) -> str:
    """Ask the identity entry pod which tenant owns the login suffix *tenant_suffix*.

    Starting an authentication for the bare suffix on ``pod0`` answers with
    the ``PodFqdn`` of the owning tenant.

    Raises:
        ProtocolError: If the pod cannot map the suffix to a tenant.
    """
    env = env or get_deploy_env()
    with SessionClient(
        f"pod0.{IDENTITY_ENV_URLS[env]}", headers=default_headers(), transport=transport
    ) as client:
        response = client.post(
            "Security/StartAuthentication",
            body=StartAuthenticationRequest(user=tenant_suffix).model_dump(by_alias=True),
        )
    try:
        parsed = TenantFqdnResponse.model_validate_json(response.content)
    except ValidationError as exc:
        raise ProtocolError(f"Unexpected tenant lookup response: {exc}") from exc
    if not parsed.success or not parsed.result.pod_fqdn:
        raise ProtocolError(
            f"Failed to resolve tenant of [{tenant_suffix}]: {parsed.describe_failure()}"
        )
    return f"https://{parsed.result.pod_fqdn}"


def resolve_identity_url(
    username: str,
    identity_url: Optional[str] = None,
    subdomain: Optional[str] = None,
    transport: Optional[httpx.BaseTransport] = None,
) -> str:
    """Return the identity tenant URL to authenticate *username* against.

    Precedence: explicit *identity_url*, then discovery by *subdomain*, then
    the tenant owning the ``@suffix`` of *username*.

    Raises:
        ConfigError: If nothing identifies the tenant.
    """
    if identity_url:
        return identity_url
    if subdomain:
        return resolve_tenant_fqdn_from_subdomain(subdomain, transport=transport)
    if "@" not in username:
        raise ConfigError(
            f"Cannot resolve the identity tenant of [{username}]: "
            "set an identity URL or tenant subdomain"
        )
    return resolve_tenant_fqdn_from_suffix(username[username.index("@"):], transport=transport)
