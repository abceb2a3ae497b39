"""Cache commands -- forget cached sessions.

Provides the ``ark cache`` sub-command group. Sessions live in the
credential vault (:mod:`arkauth.keyring`): platform tokens under
``ark-<authenticator>`` and identity sessions under ``ark-identity``.
"""

from __future__ import annotations

from typing import Optional

import typer

from arkauth.output import error, info, success, warning


cache_app = typer.Typer(no_args_is_help=True)


@cache_app.command("clear")
def cache_clear(
    profile_name: Optional[str] = typer.Option(
        None,
        "--profile-name",
        help="Only forget the sessions of this profile.",
    ),
) -> None:
    """Forget cached sessions.

    With ``--profile-name``, every token and identity session of that
    profile's auth profiles is deleted from whichever backend holds it.
    Without it, the basic keyring files are removed entirely; records in
    the OS keyring cannot be enumerated and have to be cleared per
    profile.

    Raises:
        typer.Exit: With code 2 if the profile cannot be loaded, or with
            the cache error's exit code.

    Example::

        ark cache clear
        ark cache clear --profile-name prod
    """
    from arkauth.auth import create_default_manager
    from arkauth.auth.identity import clear_cache_records
    from arkauth.config import load_profile
    from arkauth.exceptions import CacheError, ConfigError
    from arkauth.keyring import ArkKeyring, BasicKeyring

    if profile_name is None:
        try:
            BasicKeyring().clear_all_passwords()
        except CacheError as exc:
            error(str(exc))
            raise typer.Exit(code=exc.exit_code) from None
        success("Cleared the basic keyring.")
        warning("Sessions in the OS keyring are cleared per profile: ark cache clear --profile-name <name>")
        return

    try:
        profile = load_profile(profile_name)
    except ConfigError as exc:
        error(str(exc))
        raise typer.Exit(code=2) from None

    manager = create_default_manager(cache_authentication=False)
    try:
        for authenticator_name, auth_profile in profile.auth_profiles.items():
            authenticator = manager.get(authenticator_name)
            keyring = ArkKeyring(f"ark-{authenticator.authenticator_name}")
            keyring.clear_token(profile, authenticator.resolve_cache_postfix(auth_profile))
            if auth_profile.username:
                clear_cache_records(profile, auth_profile.username)
            info(f"Cleared {authenticator_name} sessions of {auth_profile.username or '-'}")
    except (CacheError, ConfigError) as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
    success(f'Cleared cached sessions of "{profile_name}".')
