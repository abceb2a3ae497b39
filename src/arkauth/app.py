"""Typer application and CLI entry point for arkauth.

This module wires together the top-level Typer application and registers
the built-in sub-commands (``login``, ``profiles``, ``cache``).

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``. It installs signal handlers, registers commands and
invokes the Typer app. :class:`~arkauth.exceptions.ArkError` instances exit
with their ``exit_code``; anything else is written to a crash log under the
data directory.

See Also:
    :mod:`arkauth.config`: Profiles and the process-wide switches set by
    :func:`main_callback`.
    :mod:`arkauth.output`: Output formatting initialised in
    :func:`main_callback`.
"""

from __future__ import annotations

import signal
import sys
import traceback
from datetime import datetime
from typing import Any

import typer

from arkauth import __version__
from arkauth.commands.cache import cache_app
from arkauth.commands.login import login_command
from arkauth.commands.profiles import profiles_app
from arkauth.exit_codes import EXIT_CANCELLED, EXIT_GENERIC_FAILURE


app = typer.Typer(
    name="ark",
    help="Log in to the Identity Security Platform and manage cached sessions.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)

app.command("login")(login_command)
app.add_typer(profiles_app, name="profiles", help="Profile management.")
app.add_typer(cache_app, name="cache", help="Cached session management.")


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"arkauth {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    json_output: bool = typer.Option(
        False, "--json", help="JSON output format."
    ),
    no_color: bool = typer.Option(
        False, "--no-color", help="Disable color output."
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress non-essential output."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug output."
    ),
    no_interactive: bool = typer.Option(
        False, "--no-interactive", help="Never prompt; fail when input is needed."
    ),
    disable_cert_verification: bool = typer.Option(
        False,
        "--disable-cert-verification",
        help="Skip TLS certificate verification.",
    ),
) -> None:
    """Root callback executed before every sub-command.

    Initialises the global :class:`~arkauth.output.OutputManager` from CLI
    flags and flips the process-wide interactive and certificate switches.

    Args:
        version: If ``True``, print the version string and exit.
        json_output: Force JSON output format.
        no_color: Disable all colour and Rich markup.
        quiet: Suppress non-essential diagnostic output.
        verbose: Enable debug-level diagnostic output.
        no_interactive: Disable all interactive prompts.
        disable_cert_verification: Do not verify TLS certificates.
    """
    from arkauth.config import disable_certificate_verification, disable_interactive
    from arkauth.output import OutputFormat, OutputManager, set_output

    output = OutputManager(
        format=OutputFormat.JSON if json_output else OutputFormat.AUTO,
        no_color=no_color,
        quiet=quiet,
        verbose=verbose,
    )
    set_output(output)

    if no_interactive:
        disable_interactive()
    if disable_cert_verification:
        disable_certificate_verification()


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_CANCELLED)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log(exc: Exception) -> str:
    """Write a crash traceback to disk and return the log file path.

    Args:
        exc: The unhandled exception to log.

    Returns:
        Absolute path to the written crash log file.
    """
    from arkauth.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def main() -> None:
    """CLI entry point invoked by the ``ark`` console script.

    Unhandled :class:`~arkauth.exceptions.ArkError` instances cause a
    clean exit with the error's ``exit_code``. All other exceptions
    produce a crash log and a generic failure exit.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_CANCELLED)
    except Exception as exc:
        from arkauth.exceptions import ArkError
        from arkauth.output import error

        if isinstance(exc, ArkError):
            error(str(exc))
            sys.exit(exc.exit_code)
        else:
            log_path = _write_crash_log(exc)
            error(f"Unexpected error. Debug log: {log_path}")
            sys.exit(EXIT_GENERIC_FAILURE)
