"""Authenticators for arkauth.

The main entry points are:

- :class:`ArkAuth` -- abstract base class handling profiles, caching and refresh.
- :class:`ArkISPAuth` -- Identity Security Platform logins (user and service user).
- :class:`AuthManager` / :func:`create_default_manager` -- authenticator registry.
- :mod:`arkauth.auth.identity` -- the identity protocol itself.

Typical usage::

    from arkauth.auth import create_default_manager
    from arkauth.config import load_profile

    manager = create_default_manager()
    token = manager.get("isp").authenticate(load_profile("ark"))
"""

from arkauth.auth.base import ArkAuth, token_cookies, token_metadata
from arkauth.auth.isp import ArkISPAuth
from arkauth.auth.manager import AuthManager, create_default_manager

__all__ = [
    "ArkAuth",
    "ArkISPAuth",
    "AuthManager",
    "create_default_manager",
    "token_cookies",
    "token_metadata",
]
