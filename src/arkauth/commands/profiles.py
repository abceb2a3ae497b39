"""Profile commands -- create, list, and delete profiles.

Provides the ``ark profiles`` sub-command group. Profiles are JSON files
in the profiles folder (see :func:`~arkauth.config.get_profiles_dir`);
``configure`` writes the ``isp`` section of one.
"""

from __future__ import annotations

from typing import Optional

import typer

from arkauth.output import error, info, print_table, success, suggest


profiles_app = typer.Typer(no_args_is_help=True)


@profiles_app.command("configure")
def profiles_configure(
    profile_name: Optional[str] = typer.Option(
        None, "--profile-name", help="Profile to create or update (default: $ARK_PROFILE or 'ark')."
    ),
    username: str = typer.Option(..., "--username", "-u", help="Identity username."),
    auth_method: str = typer.Option(
        "identity",
        "--auth-method",
        "-m",
        help="identity or identity_service_user.",
    ),
    identity_url: Optional[str] = typer.Option(
        None, "--identity-url", help="Explicit identity tenant URL."
    ),
    identity_tenant_subdomain: Optional[str] = typer.Option(
        None, "--identity-tenant-subdomain", help="Platform subdomain of the tenant."
    ),
    mfa_method: str = typer.Option(
        "", "--mfa-method", help="Preferred MFA method: pf, sms, email, otp, oath."
    ),
    no_mfa_interactive: bool = typer.Option(
        False, "--no-mfa-interactive", help="Never prompt during MFA for this profile."
    ),
    application: Optional[str] = typer.Option(
        None,
        "--authorization-application",
        help="OAuth2 application of a service user.",
    ),
    description: Optional[str] = typer.Option(
        None, "--description", help="Profile description."
    ),
) -> None:
    """Create or update the ``isp`` auth profile of a profile.

    Other sections of an existing profile are kept as they are.

    Raises:
        typer.Exit: With code 2 on an unsupported auth method or an
            unreadable existing profile.

    Example::

        ark profiles configure --username me@example.com --mfa-method otp
        ark profiles configure --profile-name ci -u svc@acme -m identity_service_user
    """
    from arkauth.config import default_profile_name, load_profile, profile_exists, save_profile
    from arkauth.exceptions import ConfigError
    from arkauth.models import (
        AuthMethod,
        AuthProfile,
        IdentityAuthMethodSettings,
        IdentityServiceUserAuthMethodSettings,
        Profile,
    )

    name = profile_name or default_profile_name()
    try:
        method = AuthMethod(auth_method)
    except ValueError:
        error(f"Unsupported auth method: {auth_method}")
        raise typer.Exit(code=2) from None

    if method == AuthMethod.IDENTITY:
        settings = IdentityAuthMethodSettings(
            identity_mfa_method=mfa_method,
            identity_mfa_interactive=not no_mfa_interactive,
            identity_url=identity_url,
            identity_tenant_subdomain=identity_tenant_subdomain,
        )
    elif method == AuthMethod.IDENTITY_SERVICE_USER:
        settings = IdentityServiceUserAuthMethodSettings(
            identity_url=identity_url,
            identity_tenant_subdomain=identity_tenant_subdomain,
        )
        if application:
            settings.identity_authorization_application = application
    else:
        error(f"Auth method {method.value} cannot be configured from the CLI.")
        raise typer.Exit(code=2)

    try:
        profile = load_profile(name) if profile_exists(name) else Profile(profile_name=name)
    except ConfigError as exc:
        error(str(exc))
        raise typer.Exit(code=2) from None

    if description:
        profile.profile_description = description
    profile.auth_profiles["isp"] = AuthProfile(
        username=username, auth_method=method, auth_method_settings=settings
    )
    save_profile(profile)
    success(f'Profile "{name}" saved.')
    suggest(f"Log in: ark login --profile-name {name}")


@profiles_app.command("list")
def profiles_list() -> None:
    """List configured profiles and their auth profiles.

    Profiles that fail to load are shown with an ``error`` status.

    Example::

        ark profiles list
    """
    from arkauth.config import list_profiles, load_profile
    from arkauth.exceptions import ConfigError

    names = list_profiles()
    if not names:
        info("No profiles configured.")
        suggest("Create one: ark profiles configure --username <user>")
        return

    rows: list[list[str]] = []
    for name in names:
        try:
            profile = load_profile(name)
        except ConfigError:
            rows.append([name, "error", "-", "-"])
            continue
        if not profile.auth_profiles:
            rows.append([name, "-", "-", "-"])
        for authenticator_name, auth_profile in profile.auth_profiles.items():
            rows.append(
                [name, authenticator_name, auth_profile.username, auth_profile.auth_method.value]
            )

    print_table(["Profile", "Authenticator", "Username", "Method"], rows, title="Profiles")


@profiles_app.command("delete")
def profiles_delete(
    profile_name: str = typer.Argument(help="Profile to delete."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
) -> None:
    """Delete a profile file.

    Cached sessions are left in place; run ``ark cache clear --profile-name``
    first to forget them as well.

    Example::

        ark profiles delete old --yes
    """
    from arkauth.config import delete_profile
    from arkauth.exceptions import ConfigError

    if not yes:
        confirmed = typer.confirm(f'Delete profile "{profile_name}"?')
        if not confirmed:
            info("Cancelled.")
            raise typer.Exit()
    try:
        delete_profile(profile_name)
    except ConfigError as exc:
        error(str(exc))
        raise typer.Exit(code=2) from None
    success(f'Profile "{profile_name}" deleted.')
