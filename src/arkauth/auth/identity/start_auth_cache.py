"""Short-lived cache of StartAuthentication responses.

Capability probes such as :func:`~arkauth.auth.identity.identity.is_password_required`
start an authentication to learn which challenges a user gets. When the
real login follows within :data:`START_AUTH_TTL`, it reuses that response
(and the cookies that came with it) instead of starting a second one.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from arkauth.auth.identity.schemas import StartAuthResponse

START_AUTH_TTL = 30.0


@dataclass
class StartAuthEntry:
    """A cached start-authentication response with its session cookies."""

    response: StartAuthResponse
    cookies: dict[str, str] = field(default_factory=dict)
    timestamp: float = 0.0


class LastStartAuthCache:
    """Thread-safe map of ``(identity_url, username)`` to :class:`StartAuthEntry`.

    Entries are consumed by :meth:`pop`, fresh or not. Expired entries left
    by probes that no login followed are dropped on the next :meth:`put`.

    Args:
        ttl: Seconds an entry stays usable.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(self, ttl: float = START_AUTH_TTL, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[tuple[str, str], StartAuthEntry] = {}
        self._lock = threading.Lock()

    def put(
        self,
        identity_url: str,
        username: str,
        response: StartAuthResponse,
        cookies: Optional[dict[str, str]] = None,
    ) -> None:
        now = self._clock()
        entry = StartAuthEntry(response=response, cookies=dict(cookies or {}), timestamp=now)
        with self._lock:
            for key in [k for k, e in self._entries.items() if now - e.timestamp > self._ttl]:
                del self._entries[key]
            self._entries[(identity_url, username)] = entry

    def pop(self, identity_url: str, username: str) -> Optional[StartAuthEntry]:
        """Remove and return the entry if it is younger than the TTL."""
        with self._lock:
            entry = self._entries.pop((identity_url, username), None)
        if entry is None or self._clock() - entry.timestamp > self._ttl:
            return None
        return entry

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


default_start_auth_cache = LastStartAuthCache()
"""Process-wide instance used when callers do not inject their own."""
