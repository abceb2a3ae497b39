"""Login command -- authenticate every authenticator of a profile.

Implements the ``ark login`` top-level command. For each section of the
profile's ``auth_profiles`` it resolves the secret (from ``--secret`` or
an interactive prompt, skipped when a cached identity session can be
reused or the tenant does not ask for a password) and calls
:meth:`~arkauth.auth.base.ArkAuth.authenticate`.
"""

from __future__ import annotations

from typing import Optional

import typer

from arkauth.output import debug, error, print_json, success, suggest


def login_command(
    profile_name: Optional[str] = typer.Option(
        None, "--profile-name", help="Profile to log in with (default: $ARK_PROFILE or 'ark')."
    ),
    username: Optional[str] = typer.Option(
        None, "--username", "-u", help="Override the username of every auth profile."
    ),
    secret: Optional[str] = typer.Option(
        None, "--secret", "-s", help="Password or service user token."
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Ignore cached sessions and log in again."
    ),
    refresh_auth: bool = typer.Option(
        False, "--refresh-auth", help="Refresh cached sessions instead of reusing them."
    ),
    show_tokens: bool = typer.Option(
        False, "--show-tokens", help="Print the resulting tokens as JSON."
    ),
) -> None:
    """Log in with every authenticator configured on a profile.

    Args:
        profile_name: Profile name; defaults to ``$ARK_PROFILE`` or ``ark``.
        username: Replaces the username of each auth profile for this
            login only. The profile on disk is not changed.
        secret: Secret used for every authenticator that needs one.
        force: Skip the vault and run a full login.
        refresh_auth: Refresh cached sessions when possible.
        show_tokens: Print the tokens to stdout.

    Raises:
        typer.Exit: With code 2 if the profile has no auth profiles, or
            with the failing error's exit code.

    Example::

        ark login
        ark login --profile-name prod --username me@example.com
        ark login --secret "$SERVICE_TOKEN" --force
    """
    from arkauth.auth import create_default_manager
    from arkauth.config import default_profile_name, load_profile
    from arkauth.exceptions import ArkError

    name = profile_name or default_profile_name()
    try:
        profile = load_profile(name)
    except ArkError as exc:
        error(str(exc))
        suggest("Create one: ark profiles configure")
        raise typer.Exit(code=2) from None

    if not profile.auth_profiles:
        error(f'Profile "{name}" has no auth profiles configured.')
        suggest(f"Configure one: ark profiles configure --profile-name {name}")
        raise typer.Exit(code=2)

    manager = create_default_manager()
    tokens: dict[str, dict] = {}
    for authenticator_name, auth_profile in profile.auth_profiles.items():
        try:
            authenticator = manager.get(authenticator_name)
            if username:
                auth_profile.username = username
            ark_secret = _resolve_secret(
                authenticator, profile, auth_profile, secret, force, refresh_auth
            )
            token = authenticator.authenticate(
                profile, auth_profile, ark_secret, force=force, refresh_auth=refresh_auth
            )
        except ArkError as exc:
            error(f"{authenticator_name}: {exc}")
            raise typer.Exit(code=exc.exit_code) from None
        success(
            f"Logged in to {authenticator.authenticator_human_readable_name} "
            f"as {auth_profile.username}"
        )
        tokens[authenticator_name] = token.model_dump(mode="json")

    if show_tokens:
        print_json(tokens)


def _resolve_secret(
    authenticator,
    profile,
    auth_profile,
    secret: Optional[str],
    force: bool,
    refresh_auth: bool,
):
    """Work out the :class:`~arkauth.models.ArkSecret` for one auth profile.

    Returns ``None`` when no secret is needed: the method takes no
    credentials, a cached identity session is still usable, or the tenant
    does not start with a password round.

    Raises:
        InvalidUsageError: A service user logs in without a secret and
            prompting is disabled.
    """
    from arkauth.auth.identity import has_cache_record, is_password_required
    from arkauth.config import is_interactive
    from arkauth.exceptions import InvalidUsageError
    from arkauth.models import (
        AUTH_METHODS_REQUIRING_CREDENTIALS,
        ArkSecret,
        AuthMethod,
        IdentityAuthMethodSettings,
    )

    if secret:
        return ArkSecret(secret=secret)

    method = auth_profile.auth_method
    if method == AuthMethod.DEFAULT:
        method = authenticator.default_auth_method[0]
    if method not in AUTH_METHODS_REQUIRING_CREDENTIALS:
        return None

    prompt = f"{authenticator.authenticator_human_readable_name} Secret"
    if method == AuthMethod.IDENTITY_SERVICE_USER:
        if not is_interactive():
            raise InvalidUsageError("A service user token is required, pass it with --secret")
        return ArkSecret(secret=typer.prompt(prompt, hide_input=True))

    if not force and has_cache_record(profile, auth_profile.username, refresh_auth):
        debug("Reusing cached identity session")
        return None
    if not is_interactive():
        return None
    settings = auth_profile.auth_method_settings
    if not isinstance(settings, IdentityAuthMethodSettings):
        settings = IdentityAuthMethodSettings()
    if not is_password_required(
        auth_profile.username,
        identity_url=settings.identity_url,
        identity_tenant_subdomain=settings.identity_tenant_subdomain,
    ):
        debug("Tenant does not ask for a password first")
        return None
    return ArkSecret(secret=typer.prompt(prompt, hide_input=True))
