"""Configuration: profile storage, process-wide switches, and deploy environments.

This module handles all persistent and process-level configuration:

* **Profiles** -- One JSON file per profile in the profiles folder
  (``$ARK_PROFILES_FOLDER``, default ``~/.ark_profiles``), each
  deserialised into a :class:`~arkauth.models.Profile`. Managed via
  :func:`load_profile`, :func:`save_profile`, :func:`delete_profile`.
* **System switches** -- interactive mode and TLS certificate verification.
  These are process-wide and read on every use, so a CLI flag (or a test)
  can flip them at any time.
* **Deploy environment** -- ``$DEPLOY_ENV`` selects the platform and
  identity root domains (:func:`get_deploy_env`).

All file writes use an atomic temp-file-then-rename strategy
(:func:`_atomic_write`) with owner-only permissions, since profiles and
keyring files live next to each other in the user's home directory.
"""

from __future__ import annotations

import json
import os
import sys
import tempfile
from enum import Enum
from pathlib import Path
from typing import Optional

from arkauth.exceptions import ConfigError
from arkauth.models import Profile

PROFILES_FOLDER_ENV = "ARK_PROFILES_FOLDER"
PROFILE_ENV = "ARK_PROFILE"
DISABLE_CERT_VERIFICATION_ENV = "ARK_DISABLE_CERTIFICATE_VERIFICATION"
DEPLOY_ENV_ENV = "DEPLOY_ENV"

DEFAULT_PROFILE_NAME = "ark"
_DEFAULT_PROFILES_FOLDER = ".ark_profiles"


# --- Deploy environment ---


class DeployEnv(str, Enum):
    """Platform deployment the SDK talks to."""

    PROD = "prod"
    GOV_PROD = "gov-prod"


ROOT_DOMAIN: dict[DeployEnv, str] = {
    DeployEnv.PROD: "cyberark.cloud",
    DeployEnv.GOV_PROD: "cyberarkgov.cloud",
}

IDENTITY_ENV_URLS: dict[DeployEnv, str] = {
    DeployEnv.PROD: "idaptive.app",
    DeployEnv.GOV_PROD: "id.cyberarkgov.cloud",
}


def get_deploy_env() -> DeployEnv:
    """Return the deploy environment from ``$DEPLOY_ENV`` (default ``prod``).

    Unknown values fall back to :attr:`DeployEnv.PROD`.
    """
    value = os.environ.get(DEPLOY_ENV_ENV, DeployEnv.PROD.value)
    try:
        return DeployEnv(value)
    except ValueError:
        return DeployEnv.PROD


# --- System switches ---

_interactive: Optional[bool] = None
_verify_certificates = True


def is_interactive() -> bool:
    """Whether operator prompts are allowed.

    Defaults to whether stdin is a TTY until :func:`enable_interactive` or
    :func:`disable_interactive` is called.
    """
    if _interactive is None:
        return hasattr(sys.stdin, "isatty") and sys.stdin.isatty()
    return _interactive


def enable_interactive() -> None:
    """Allow operator prompts for the rest of the process."""
    global _interactive
    _interactive = True


def disable_interactive() -> None:
    """Forbid operator prompts for the rest of the process."""
    global _interactive
    _interactive = False


def is_verifying_certificates() -> bool:
    """Whether TLS certificates are verified.

    ``$ARK_DISABLE_CERTIFICATE_VERIFICATION`` set to any non-empty value
    overrides the process-wide switch.
    """
    if os.environ.get(DISABLE_CERT_VERIFICATION_ENV):
        return False
    return _verify_certificates


def enable_certificate_verification() -> None:
    """Verify TLS certificates on every subsequent request."""
    global _verify_certificates
    _verify_certificates = True


def disable_certificate_verification() -> None:
    """Skip TLS certificate verification on every subsequent request."""
    global _verify_certificates
    _verify_certificates = False


def reset_system_switches() -> None:
    """Restore the interactive and certificate switches to their defaults."""
    global _interactive, _verify_certificates
    _interactive = None
    _verify_certificates = True


# --- Paths ---


def get_profiles_dir() -> Path:
    """Return the profiles directory, creating it if necessary.

    ``$ARK_PROFILES_FOLDER`` overrides the default ``~/.ark_profiles``.

    Returns:
        Absolute path to the profiles directory (guaranteed to exist).
    """
    override = os.environ.get(PROFILES_FOLDER_ENV, "")
    path = Path(override).expanduser() if override else Path.home() / _DEFAULT_PROFILES_FOLDER
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the directory for crash logs, creating it if necessary."""
    path = Path.home() / ".ark_cache"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def _atomic_write(path: Path, data: str | bytes, mode: int = 0o600) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is an atomic rename on POSIX systems. Permissions are
    set on the temp file before the rename, so the target is never visible
    with wider permissions. On any failure the temp file is cleaned up.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="wb",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
        )
        tmp_path = fd.name
        fd.write(data.encode("utf-8") if isinstance(data, str) else data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close below
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except BaseException:
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Profiles ---


def _profile_path(name: str) -> Path:
    """Path to a named profile's JSON file."""
    return get_profiles_dir() / f"{name}.json"


def default_profile_name() -> str:
    """Return ``$ARK_PROFILE`` or ``"ark"``."""
    return os.environ.get(PROFILE_ENV) or DEFAULT_PROFILE_NAME


def list_profiles() -> list[str]:
    """Return all profile names found in the profiles directory, sorted alphabetically."""
    return sorted(p.stem for p in get_profiles_dir().glob("*.json") if p.is_file())


def load_profile(name: str) -> Profile:
    """Load and validate a profile from disk.

    Args:
        name: Profile name (corresponds to ``<name>.json`` in the profiles
            directory).

    Returns:
        The deserialised :class:`~arkauth.models.Profile`.

    Raises:
        ConfigError: If the profile file does not exist, contains invalid
            JSON, or fails validation.
    """
    path = _profile_path(name)
    if not path.is_file():
        raise ConfigError(f"Profile '{name}' not found at {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return Profile.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid profile '{name}' at {path}: {exc}") from exc


def load_default_profile() -> Profile:
    """Load the default profile, or return an empty one if it does not exist yet."""
    name = default_profile_name()
    if not profile_exists(name):
        return Profile(profile_name=name)
    return load_profile(name)


def save_profile(profile: Profile) -> None:
    """Persist a profile atomically to the profiles directory.

    Args:
        profile: The profile to save. The file name is derived from
            ``profile.profile_name``.
    """
    data = profile.model_dump(mode="json")
    _atomic_write(_profile_path(profile.profile_name), json.dumps(data, indent=2) + "\n")


def delete_profile(name: str) -> None:
    """Delete a profile's JSON file from disk.

    Raises:
        ConfigError: If the profile does not exist.
    """
    path = _profile_path(name)
    if not path.is_file():
        raise ConfigError(f"Profile '{name}' not found at {path}")
    path.unlink()


def profile_exists(name: str) -> bool:
    """Check whether a profile file exists on disk."""
    return _profile_path(name).is_file()
