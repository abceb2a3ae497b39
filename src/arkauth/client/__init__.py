"""HTTP client used by the authenticators and by authenticated callers.

Re-exports:
    SessionClient: Stateful client with 401 refresh-retry.
    marshal_cookies / unmarshal_cookies: Cookie jar serialisation helpers.
"""

from arkauth.client.cookies import marshal_cookies, unmarshal_cookies
from arkauth.client.session import SessionClient, join_route, normalize_base_url

__all__ = [
    "SessionClient",
    "join_route",
    "marshal_cookies",
    "normalize_base_url",
    "unmarshal_cookies",
]
