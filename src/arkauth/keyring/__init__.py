"""Credential vault.

Re-exports:
    ArkKeyring: Token persistence with backend selection and expiry purge.
    BasicKeyring: Encrypted two-file store.
    NativeKeyring: OS secret store via the ``keyring`` library.
"""

from arkauth.keyring.basic import BasicKeyring, default_keyring_folder
from arkauth.keyring.native import NativeKeyring, is_native_keyring_available
from arkauth.keyring.vault import ArkKeyring, KeyringBackend

__all__ = [
    "ArkKeyring",
    "BasicKeyring",
    "KeyringBackend",
    "NativeKeyring",
    "default_keyring_folder",
    "is_native_keyring_available",
]
