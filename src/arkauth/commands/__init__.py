"""Built-in CLI sub-commands for arkauth.

This package groups the Typer modules that form the CLI's command tree:

* :mod:`~arkauth.commands.login` -- log in with every authenticator of a
  profile.
* :mod:`~arkauth.commands.profiles` -- create and list profiles.
* :mod:`~arkauth.commands.cache` -- clear cached sessions.

Each module exports either a :class:`typer.Typer` sub-application (for
groups like ``profiles``) or a plain callback registered directly on the
root app (for single commands like ``login``).
"""
