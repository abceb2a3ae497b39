"""Cookie jar (de)serialisation for cached sessions.

Identity sessions depend on cookies set during login (the refresh and id
tokens used by ``OAuth2/RefreshPlatformToken`` travel as cookies), so
cached tokens carry the jar alongside the bearer token.
"""

from __future__ import annotations

import json
from http.cookiejar import Cookie
from typing import Any

import httpx


def marshal_cookies(cookies: httpx.Cookies) -> bytes:
    """Serialise every cookie in *cookies* to a JSON array."""
    records: list[dict[str, Any]] = [
        {
            "name": cookie.name,
            "value": cookie.value,
            "domain": cookie.domain,
            "path": cookie.path,
            "secure": cookie.secure,
            "expires": cookie.expires,
        }
        for cookie in cookies.jar
    ]
    return json.dumps(records).encode("utf-8")


def unmarshal_cookies(data: bytes | str) -> httpx.Cookies:
    """Rebuild an :class:`httpx.Cookies` jar from :func:`marshal_cookies` output.

    Raises:
        ValueError: If *data* is not a JSON array of cookie records.
    """
    records = json.loads(data)
    if not isinstance(records, list):
        raise ValueError("Serialised cookies must be a JSON array")
    cookies = httpx.Cookies()
    for record in records:
        domain = record.get("domain") or ""
        cookies.jar.set_cookie(
            Cookie(
                version=0,
                name=record["name"],
                value=record["value"],
                port=None,
                port_specified=False,
                domain=domain,
                domain_specified=bool(domain),
                domain_initial_dot=domain.startswith("."),
                path=record.get("path") or "/",
                path_specified=True,
                secure=bool(record.get("secure")),
                expires=record.get("expires"),
                discard=False,
                comment=None,
                comment_url=None,
                rest={},
            )
        )
    return cookies
