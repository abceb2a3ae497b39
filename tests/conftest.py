"""Shared test fixtures for arkauth.

Every test runs with the profiles folder and the basic keyring redirected
into ``tmp_path`` and the OS keyring disabled, so nothing touches the real
user's sessions.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable

import httpx
import pytest

from arkauth.config import reset_system_switches
from arkauth.keyring import ArkKeyring, BasicKeyring
from arkauth.models import AuthMethod, AuthProfile, IdentityAuthMethodSettings, Profile
from arkauth.output import OutputFormat, OutputManager, reset_output, set_output


IDENTITY_URL = "https://aax1234.id.cyberark.cloud"


# ---------------------------------------------------------------------------
# Auto-reset global state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time. When Typer's CliRunner redirects those streams the
    cached references go stale, so a fresh manager is created on next use.
    """
    yield
    reset_output()


@pytest.fixture(autouse=True)
def _reset_switches_between_tests() -> None:
    """Restore the interactive and certificate switches after every test."""
    reset_system_switches()
    yield
    reset_system_switches()


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point profiles and the basic keyring at ``tmp_path``.

    Returns:
        The tmp_path root directory for additional file creation.
    """
    monkeypatch.setenv("ARK_PROFILES_FOLDER", str(tmp_path / "profiles"))
    monkeypatch.setenv("ARK_KEYRING_FOLDER", str(tmp_path / "keyring"))
    monkeypatch.setenv("ARK_BASIC_KEYRING", "1")
    for var in ["ARK_PROFILE", "DEPLOY_ENV", "ARK_DISABLE_CERTIFICATE_VERIFICATION"]:
        monkeypatch.delenv(var, raising=False)
    return tmp_path


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> OutputManager:
    """Install a PLAIN-format, quiet OutputManager for the test."""
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True)
    set_output(output)
    yield output
    reset_output()


# ---------------------------------------------------------------------------
# Vault fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def basic_keyring(tmp_path: Path) -> BasicKeyring:
    """A basic keyring in its own folder with a fixed hostname key."""
    return BasicKeyring(tmp_path / "vault", hostname="test-host")


@pytest.fixture
def identity_keyring(basic_keyring: BasicKeyring) -> ArkKeyring:
    """Identity session vault backed by :func:`basic_keyring`."""
    return ArkKeyring("ark-identity", basic=basic_keyring)


@pytest.fixture
def isp_keyring(basic_keyring: BasicKeyring) -> ArkKeyring:
    """Platform token vault backed by :func:`basic_keyring`."""
    return ArkKeyring("ark-isp", basic=basic_keyring)


# ---------------------------------------------------------------------------
# Profile fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def profile() -> Profile:
    """A profile with an identity ``isp`` section pointing at IDENTITY_URL."""
    return Profile(
        profile_name="test",
        auth_profiles={
            "isp": AuthProfile(
                username="user@acme.com",
                auth_method=AuthMethod.IDENTITY,
                auth_method_settings=IdentityAuthMethodSettings(identity_url=IDENTITY_URL),
            )
        },
    )


# ---------------------------------------------------------------------------
# HTTP fixtures
# ---------------------------------------------------------------------------


class Router:
    """Route-keyed fake identity service for :class:`httpx.MockTransport`.

    Each route maps to a list of responses (or callables taking the
    request) consumed in order; the last one repeats. Every request is
    recorded in :attr:`requests`.
    """

    def __init__(self) -> None:
        self.routes: dict[str, list] = {}
        self.requests: list[httpx.Request] = []

    def add(self, path: str, *responses: httpx.Response | Callable | dict) -> None:
        self.routes.setdefault(path, []).extend(responses)

    def calls(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get(request.url.path)
        if not queue:
            return httpx.Response(404, json={"success": False, "Message": "not found"})
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(response) and not isinstance(response, httpx.Response):
            response = response(request)
        if isinstance(response, dict):
            response = httpx.Response(200, json=response)
        return response

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def router() -> Router:
    """A fresh :class:`Router`."""
    return Router()


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()
