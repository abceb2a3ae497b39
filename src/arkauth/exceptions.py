"""Exception hierarchy for arkauth.

All exceptions inherit from :class:`ArkError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`arkauth.exit_codes`.
The top-level error handler in :func:`arkauth.app.main` catches
``ArkError`` and exits with the appropriate code, while unexpected
exceptions produce a crash log and exit with :data:`EXIT_GENERIC_FAILURE`.

Subclass hierarchy::

    ArkError (exit 1)
    +-- InvalidUsageError            (exit 2)
    +-- ConfigError                  (exit 1)
    +-- TransportError               (exit 6)
    +-- AuthError                    (exit 3)
    |   +-- ProtocolError            (exit 3)
    |   +-- AuthRejectedError        (exit 3)
    |   +-- InputError               (exit 3)
    |   +-- InteractionRequiredError (exit 3)
    |   +-- PollingInProgressError   (exit 3)
    |   +-- AuthTimeoutError         (exit 4)
    |   +-- AuthCancelledError       (exit 130)
    +-- CacheError                   (exit 5)
        +-- KeyringIntegrityError    (exit 5)
"""

from arkauth.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_AUTH_TIMEOUT,
    EXIT_CACHE_ERROR,
    EXIT_CANCELLED,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
)


class ArkError(Exception):
    """Base exception for all arkauth errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`arkauth.exit_codes`. The entry point catches
    this exception type and calls ``sys.exit(exc.exit_code)``.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidUsageError(ArkError):
    """Raised for invalid CLI arguments or missing required parameters."""

    exit_code = EXIT_INVALID_USAGE


class ConfigError(ArkError):
    """Raised for configuration problems (missing profiles, invalid JSON, unknown auth methods)."""

    exit_code = EXIT_GENERIC_FAILURE


class TransportError(ArkError):
    """Raised on network-level failures (DNS resolution, connection refused, TLS errors).

    The message carries the underlying transport error text unchanged.
    Transport errors are never retried inside the authentication core.
    """

    exit_code = EXIT_CONNECTION_ERROR


class AuthError(ArkError):
    """Raised when authentication fails or a session cannot be established."""

    exit_code = EXIT_AUTH_FAILURE


class ProtocolError(AuthError):
    """Raised when the identity service answers ``Success: false`` or omits required fields."""


class AuthRejectedError(AuthError):
    """Raised when the identity service explicitly rejects a submitted answer."""


class InputError(AuthError):
    """Raised when the operator supplies empty input or exhausts the prompt budget."""


class InteractionRequiredError(AuthError):
    """Raised when a login needs operator input but interactive mode is disabled."""


class PollingInProgressError(AuthError):
    """Raised when an authentication is started on an instance that is already authenticating."""


class AuthTimeoutError(AuthError):
    """Raised when an MFA or IdP polling round exceeds its time budget.

    Kept distinct from :class:`AuthRejectedError` so callers can decide to
    restart the login instead of treating it as a hard failure.
    """

    exit_code = EXIT_AUTH_TIMEOUT


class AuthCancelledError(AuthError):
    """Raised when a caller cancels an in-flight authentication round."""

    exit_code = EXIT_CANCELLED


class CacheError(ArkError):
    """Raised when the credential vault cannot be read, written, or purged."""

    exit_code = EXIT_CACHE_ERROR


class KeyringIntegrityError(CacheError):
    """Raised when the basic keyring file does not match its digest file."""
