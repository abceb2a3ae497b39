"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~arkauth.exceptions.ArkError` subclass.
Shell wrappers can inspect the exit code to tell a rejected login from a
network outage or an expired MFA poll without parsing stderr.

Example::

    $ ark login --no-interactive
    $ echo $?
    3   # EXIT_AUTH_FAILURE -- the identity service rejected the login
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or missing required parameters."""

EXIT_AUTH_FAILURE = 3
"""Authentication failed or was rejected by the identity service."""

EXIT_AUTH_TIMEOUT = 4
"""An MFA or IdP polling round ran out of time."""

EXIT_CACHE_ERROR = 5
"""The local credential vault could not be read, written, or verified."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (timeout, DNS failure, connection refused)."""

EXIT_CANCELLED = 130
"""The operation was cancelled by the operator."""
