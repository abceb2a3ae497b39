"""File-based encrypted keyring.

Records live in one JSON document, ``<folder>/keyring``, laid out as::

    {"<service>": {"<username>": {"nonce": "...", "ciphertext": "...", "tag": "..."}}}

with every value base64 encoded. ``<folder>/mac`` holds the hex SHA-256
digest of the whole ``keyring`` file. The digest is tamper *evidence*
only: anyone able to rewrite both files can forge a consistent pair.

Secrets are sealed with AES-256-GCM (16-byte nonce, 16-byte tag) under a
key derived from the local hostname, PKCS7-padded and truncated to 32
bytes. The hostname is not a secret. It ties the file to one machine and
keeps casual readers out, nothing more; prefer an OS-native store
(:mod:`arkauth.keyring.native`) where one is available.

Each write draws a fresh random nonce. The file format is unchanged, so
records written with a fixed all-zero nonce by older releases still
decrypt, and are re-sealed with a random nonce the next time they are
saved.

Readers and writers hold a process-local lock plus an OS advisory lock on
``<folder>/keyring.lock`` for the whole read-modify-write cycle, and both
files are replaced atomically. That lock file is the only file in the
folder besides ``keyring`` and ``mac``; it holds no data.
"""

from __future__ import annotations

import base64
import binascii
import contextlib
import hashlib
import json
import os
import socket
import sys
import threading
from pathlib import Path
from typing import Any, Iterator, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from arkauth.config import _atomic_write
from arkauth.exceptions import CacheError, KeyringIntegrityError

if sys.platform == "win32":
    import msvcrt
else:
    import fcntl

KEYRING_FOLDER_ENV = "ARK_KEYRING_FOLDER"
DEFAULT_KEYRING_FOLDER = Path(".ark_cache") / "keyring"

KEYRING_FILENAME = "keyring"
MAC_FILENAME = "mac"
LOCK_FILENAME = "keyring.lock"

NONCE_SIZE = 16
TAG_SIZE = 16
KEY_SIZE = 32

_process_locks: dict[Path, threading.RLock] = {}
_process_locks_guard = threading.Lock()


def default_keyring_folder() -> Path:
    """Return ``$ARK_KEYRING_FOLDER`` or ``~/.ark_cache/keyring``."""
    override = os.environ.get(KEYRING_FOLDER_ENV, "")
    if override:
        return Path(override).expanduser()
    return Path.home() / DEFAULT_KEYRING_FOLDER


def derive_key(hostname: Optional[str] = None) -> bytes:
    """Derive the 32-byte AES key from *hostname* (default: this machine's)."""
    data = (hostname if hostname is not None else socket.gethostname()).encode("utf-8")
    padding = KEY_SIZE - len(data) % KEY_SIZE
    return (data + bytes([padding]) * padding)[:KEY_SIZE]


def _process_lock(folder: Path) -> threading.RLock:
    with _process_locks_guard:
        lock = _process_locks.get(folder)
        if lock is None:
            lock = _process_locks[folder] = threading.RLock()
        return lock


class BasicKeyring:
    """Encrypted key/value store backed by two files in *folder*.

    Args:
        folder: Keyring directory. Defaults to :func:`default_keyring_folder`.
        hostname: Overrides the hostname the key is derived from.

    Example::

        keyring = BasicKeyring()
        keyring.set_password("ark-identity", "me@example.com", "s3cr3t")
        assert keyring.get_password("ark-identity", "me@example.com") == "s3cr3t"
    """

    name = "basic"

    def __init__(self, folder: Optional[Path] = None, hostname: Optional[str] = None) -> None:
        self.folder = Path(folder) if folder is not None else default_keyring_folder()
        self.keyring_path = self.folder / KEYRING_FILENAME
        self.mac_path = self.folder / MAC_FILENAME
        self.lock_path = self.folder / LOCK_FILENAME
        self._key = derive_key(hostname)

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def set_password(self, service: str, username: str, password: str) -> None:
        """Encrypt and store *password*, overwriting any previous value.

        Raises:
            KeyringIntegrityError: If the existing file fails its digest check.
            CacheError: If the file cannot be read or written.
        """
        with self._locked():
            records = self._read()
            records.setdefault(service, {})[username] = self._encrypt(password)
            self._write(records)

    def get_password(self, service: str, username: str) -> Optional[str]:
        """Return the stored password, or ``None`` when there is none.

        Raises:
            KeyringIntegrityError: If the file fails its digest check.
            CacheError: If the record cannot be decrypted.
        """
        with self._locked():
            records = self._read()
        record = records.get(service, {}).get(username)
        if record is None:
            return None
        return self._decrypt(record)

    def delete_password(self, service: str, username: str) -> None:
        """Remove a record. Deleting a missing record is a no-op."""
        with self._locked():
            if not self.keyring_path.exists():
                return
            records = self._read()
            entries = records.get(service)
            if entries is None or username not in entries:
                return
            del entries[username]
            self._write(records)

    def clear_all_passwords(self) -> None:
        """Delete both keyring files."""
        with self._locked():
            for path in (self.keyring_path, self.mac_path):
                try:
                    path.unlink()
                except FileNotFoundError:
                    pass
                except OSError as exc:
                    raise CacheError(f"Failed to remove {path}: {exc}") from exc

    # ------------------------------------------------------------------ #
    # Encryption
    # ------------------------------------------------------------------ #

    def _encrypt(self, plaintext: str) -> dict[str, str]:
        nonce = os.urandom(NONCE_SIZE)
        sealed = AESGCM(self._key).encrypt(nonce, plaintext.encode("utf-8"), None)
        return {
            "nonce": base64.b64encode(nonce).decode("ascii"),
            "ciphertext": base64.b64encode(sealed[:-TAG_SIZE]).decode("ascii"),
            "tag": base64.b64encode(sealed[-TAG_SIZE:]).decode("ascii"),
        }

    def _decrypt(self, record: dict[str, str]) -> str:
        try:
            nonce = base64.b64decode(record["nonce"])
            ciphertext = base64.b64decode(record["ciphertext"])
            tag = base64.b64decode(record["tag"])
            plaintext = AESGCM(self._key).decrypt(nonce, ciphertext + tag, None)
        except (KeyError, TypeError, ValueError, binascii.Error) as exc:
            raise CacheError(f"Malformed keyring record: {exc}") from exc
        except InvalidTag as exc:
            raise CacheError(
                "Keyring record could not be decrypted on this machine"
            ) from exc
        return plaintext.decode("utf-8")

    # ------------------------------------------------------------------ #
    # File handling
    # ------------------------------------------------------------------ #

    @contextlib.contextmanager
    def _locked(self) -> Iterator[None]:
        """Hold the process lock and the OS file lock for the keyring folder."""
        try:
            self.folder.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise CacheError(f"Cannot create keyring folder {self.folder}: {exc}") from exc
        with _process_lock(self.folder.resolve()):
            with open(self.lock_path, "a+b") as handle:
                _lock_file(handle)
                try:
                    yield
                finally:
                    _unlock_file(handle)

    def _read(self) -> dict[str, dict[str, dict[str, str]]]:
        """Load and verify the keyring document. A missing file is empty."""
        if not self.keyring_path.exists():
            return {}
        if not self.mac_path.exists():
            raise KeyringIntegrityError(
                f"Invalid keyring: digest file {self.mac_path} is missing"
            )
        try:
            data = self.keyring_path.read_bytes()
            mac = self.mac_path.read_text(encoding="ascii").strip()
        except (OSError, UnicodeDecodeError) as exc:
            raise CacheError(f"Failed to read keyring: {exc}") from exc
        if hashlib.sha256(data).hexdigest() != mac:
            raise KeyringIntegrityError(
                f"Invalid keyring: {self.keyring_path} does not match its digest"
            )
        try:
            records: Any = json.loads(data)
        except json.JSONDecodeError as exc:
            raise CacheError(f"Keyring is not valid JSON: {exc}") from exc
        if not isinstance(records, dict):
            raise CacheError("Keyring document must be a JSON object")
        return records

    def _write(self, records: dict[str, dict[str, dict[str, str]]]) -> None:
        data = json.dumps(records, separators=(",", ":"), sort_keys=True).encode("utf-8")
        try:
            _atomic_write(self.keyring_path, data)
            _atomic_write(self.mac_path, hashlib.sha256(data).hexdigest())
        except OSError as exc:
            raise CacheError(f"Failed to write keyring: {exc}") from exc


def _lock_file(handle: Any) -> None:
    if sys.platform == "win32":
        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_LOCK, 1)
    else:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)


def _unlock_file(handle: Any) -> None:
    if sys.platform == "win32":
        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
    else:
        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
