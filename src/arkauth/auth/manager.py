"""Auth manager -- registry of authenticators.

The :class:`AuthManager` maps authenticator names (the keys of
:attr:`Profile.auth_profiles <arkauth.models.Profile.auth_profiles>`, e.g.
``"isp"``) to :class:`~arkauth.auth.base.ArkAuth` instances. The CLI looks
authenticators up here instead of importing them directly.

For most use cases, call :func:`create_default_manager` to get a manager
pre-loaded with every built-in authenticator.
"""

from __future__ import annotations

from typing import Any

from arkauth.auth.base import ArkAuth
from arkauth.exceptions import ConfigError


class AuthManager:
    """Registry of authenticators, keyed by :attr:`~ArkAuth.authenticator_name`.

    Example::

        manager = AuthManager()
        manager.register(ArkISPAuth())
        token = manager.get("isp").authenticate(profile)
    """

    def __init__(self) -> None:
        self._authenticators: dict[str, ArkAuth] = {}

    def register(self, authenticator: ArkAuth) -> None:
        """Register *authenticator*, replacing any with the same name."""
        self._authenticators[authenticator.authenticator_name] = authenticator

    def get(self, name: str) -> ArkAuth:
        """Return the authenticator registered as *name*.

        Raises:
            ConfigError: If no authenticator has that name.
        """
        authenticator = self._authenticators.get(name)
        if authenticator is None:
            available = ", ".join(sorted(self._authenticators)) or "(none)"
            raise ConfigError(
                f"No authenticator registered as '{name}'. Available: {available}"
            )
        return authenticator

    def names(self) -> list[str]:
        """Sorted names of all registered authenticators."""
        return sorted(self._authenticators)

    def __iter__(self):
        return iter(self._authenticators[name] for name in self.names())


def create_default_manager(**kwargs: Any) -> AuthManager:
    """Create an :class:`AuthManager` with every built-in authenticator.

    Currently that is ``isp`` (:class:`~arkauth.auth.isp.ArkISPAuth`).
    Keyword arguments are passed to each authenticator's constructor.
    """
    from arkauth.auth.isp import ArkISPAuth

    manager = AuthManager()
    manager.register(ArkISPAuth(**kwargs))
    return manager
