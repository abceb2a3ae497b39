"""arkauth -- authenticate to the Identity Security Platform from Python and the shell.

The package wraps the platform's identity service: it negotiates
multi-factor challenge/response logins (including out-of-band push, SMS
and e-mail verification and IdP browser redirects), exchanges machine
credentials for service-user sessions, and keeps the resulting sessions
in an encrypted local keyring so subsequent invocations can reuse them.

Typical workflow::

    ark profiles configure --username me@example.com   # write a profile
    ark login                                          # authenticate and cache

Modules:
    app: Typer application and CLI entry point.
    models: Pydantic models for profiles and tokens.
    config: Profile storage and process-wide switches.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr output manager and the ``Logger`` sink.
    client: Session-aware HTTP client.
    keyring: Encrypted credential vault and backend selection.
    auth: Authenticators built on the identity protocol.
"""

__version__ = "0.3.0"
