"""Operator-facing collaborators of the identity login.

The login never talks to the terminal directly: it goes through an
:class:`Interaction` (prompts) and a browser opener. The console versions
below are the defaults; tests inject scripted ones.
"""

from __future__ import annotations

import getpass
import threading
import webbrowser
from typing import Callable, Protocol, Sequence

import typer

from arkauth.exceptions import InputError
from arkauth.output import info

BrowserOpener = Callable[[str], None]


class Interaction(Protocol):
    """Prompts an operator."""

    def secret(self, message: str) -> str:
        """Ask for a hidden value (password, OTP). May return ``""``."""
        ...

    def select(self, message: str, options: Sequence[str], default_index: int = 0) -> int:
        """Ask the operator to choose one of *options*; return its index."""
        ...

    def notify(self, message: str) -> None:
        """Show *message* without expecting an answer."""
        ...


_TERMINAL_LOCK = threading.Lock()


class ConsoleInteraction:
    """:class:`Interaction` on the controlling terminal.

    Prompts are serialised on one process-wide lock, so at most one prompt
    reads from the terminal at a time. A prompt left over from a finished
    MFA round still consumes the next line typed; the following prompt is
    only shown once that line is read.
    """

    def secret(self, message: str) -> str:
        with _TERMINAL_LOCK:
            try:
                return getpass.getpass(f"{message}: ")
            except (EOFError, KeyboardInterrupt) as exc:
                raise InputError("Prompt aborted by user") from exc

    def select(self, message: str, options: Sequence[str], default_index: int = 0) -> int:
        if not options:
            raise InputError("Nothing to choose from")
        with _TERMINAL_LOCK:
            info(message)
            for i, option in enumerate(options, 1):
                info(f"  {i}. {option}")
            try:
                choice = typer.prompt("Select number", default=str(default_index + 1))
                idx = int(choice) - 1
            except (ValueError, EOFError, KeyboardInterrupt, typer.Abort) as exc:
                raise InputError("Invalid selection") from exc
        if idx < 0 or idx >= len(options):
            raise InputError(f"Selection must be between 1 and {len(options)}")
        return idx

    def notify(self, message: str) -> None:
        info(message)


def open_browser(url: str) -> None:
    """Open *url* in the default browser without blocking the caller.

    Failures are ignored: the URL is always printed as well.
    """

    def _open() -> None:
        try:
            webbrowser.open(url)
        except webbrowser.Error:
            pass

    threading.Thread(target=_open, name="ark-browser", daemon=True).start()
