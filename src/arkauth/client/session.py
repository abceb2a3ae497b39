"""Session-aware synchronous HTTP client with transparent token refresh.

This module provides :class:`SessionClient`, the blocking HTTP client that
carries identity protocol messages and, later, authenticated platform
calls.  It wraps :class:`httpx.Client` and layers on:

- **Base URL and route handling** -- schemeless base URLs get ``https://``;
  route segments are escaped one by one and joined to the base with
  exactly one ``/``.
- **Mutable session state** -- headers, cookies and an ``Authorization``
  token that the authenticators update as a login progresses.
- **401 recovery** -- when a refresh callback is configured, an HTTP 401
  triggers the callback and a retry of the same request, bounded by
  :attr:`SessionClient.max_refresh_retries`.
- **Process-wide TLS switch** -- certificate verification is read from
  :func:`arkauth.config.is_verifying_certificates` on every request and the
  underlying transport is rebuilt when it changes.
"""

from __future__ import annotations

import base64
import binascii
from typing import Any, Callable, Optional
from urllib.parse import quote

import httpx

from arkauth import __version__
from arkauth.config import is_verifying_certificates
from arkauth.exceptions import AuthError, TransportError
from arkauth.output import Logger

USER_AGENT = f"arkauth/{__version__}"
DEFAULT_TIMEOUT = 30.0

RefreshCallback = Callable[["SessionClient"], None]


def normalize_base_url(base_url: str) -> str:
    """Return *base_url* with an ``https://`` scheme and no trailing slash.

    Example::

        >>> normalize_base_url("tenant.id.example.com/")
        'https://tenant.id.example.com'
    """
    if not base_url.startswith(("http://", "https://")):
        base_url = f"https://{base_url}"
    return base_url.rstrip("/")


def join_route(base_url: str, route: str) -> str:
    """Escape each segment of *route* and append it to *base_url*.

    Leading, trailing and repeated slashes in *route* are dropped so that
    exactly one ``/`` separates the base from the route.
    """
    segments = [quote(segment, safe="") for segment in route.split("/") if segment]
    if not segments:
        return base_url
    return f"{base_url.rstrip('/')}/{'/'.join(segments)}"


class SessionClient:
    """Stateful HTTP client bound to one base URL.

    Args:
        base_url: Service root, with or without scheme.
        token: Optional token placed in the ``Authorization`` header.
        token_type: Authorization scheme for *token* (``"Bearer"``,
            ``"Basic"``, ...). See :meth:`update_token`.
        headers: Extra headers sent with every request.
        cookies: Initial cookies.
        refresh_callback: Called with this client when a request returns
            HTTP 401. It is expected to update the client's token, headers
            or cookies in place; the request is then retried.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport, mainly for tests.
        logger: Optional :class:`~arkauth.output.Logger`.

    Example::

        with SessionClient("tenant.id.example.com") as client:
            response = client.post("Security/StartAuthentication", body={...})
    """

    max_refresh_retries = 3

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        token_type: str = "Bearer",
        headers: Optional[dict[str, str]] = None,
        cookies: Optional[dict[str, str] | httpx.Cookies] = None,
        refresh_callback: Optional[RefreshCallback] = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
        logger: Optional[Logger] = None,
    ) -> None:
        self.base_url = normalize_base_url(base_url)
        self.refresh_callback = refresh_callback
        self._timeout = timeout
        self._transport = transport
        self._logger = logger or Logger("SessionClient")
        self._headers: dict[str, str] = {"User-Agent": USER_AGENT}
        if headers:
            self._headers.update(headers)
        self._cookies = httpx.Cookies(cookies)
        self._token: Optional[str] = None
        self._token_type = token_type
        self._client: Optional[httpx.Client] = None
        self._client_verify: Optional[bool] = None
        if token:
            self.update_token(token, token_type)

    # ------------------------------------------------------------------ #
    # Context manager
    # ------------------------------------------------------------------ #

    def __enter__(self) -> SessionClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the underlying transport. The client can still be reused."""
        if self._client is not None:
            self._cookies = httpx.Cookies(self._client.cookies)
            self._client.close()
            self._client = None

    # ------------------------------------------------------------------ #
    # Session state
    # ------------------------------------------------------------------ #

    @property
    def token(self) -> Optional[str]:
        """The current authorization token, as given to :meth:`update_token`."""
        return self._token

    @property
    def token_type(self) -> str:
        """The authorization scheme of :attr:`token`."""
        return self._token_type

    @property
    def headers(self) -> dict[str, str]:
        """A copy of the headers sent with every request."""
        return dict(self._headers)

    def set_headers(self, headers: dict[str, str]) -> None:
        """Replace all session headers, keeping the ``User-Agent``."""
        self._headers = {"User-Agent": USER_AGENT, **headers}

    def update_headers(self, headers: dict[str, str]) -> None:
        """Add or overwrite session headers."""
        self._headers.update(headers)

    def update_token(self, token: Optional[str], token_type: str = "Bearer") -> None:
        """Set (or clear) the ``Authorization`` header.

        ``Basic`` tokens are expected base64 encoded: the value is decoded
        and sent as ``Basic <decoded>``. Every other type is sent as
        ``"<token_type> <token>"``.

        Raises:
            AuthError: If a ``Basic`` token is not valid base64.
        """
        self._token = token
        self._token_type = token_type
        if not token:
            self._headers.pop("Authorization", None)
            return
        if token_type == "Basic":
            try:
                decoded = base64.b64decode(token, validate=True).decode("utf-8")
            except (binascii.Error, UnicodeDecodeError) as exc:
                raise AuthError(f"Basic token is not valid base64: {exc}") from exc
            self._headers["Authorization"] = f"Basic {decoded}"
        else:
            self._headers["Authorization"] = f"{token_type} {token}"

    @property
    def cookie_jar(self) -> httpx.Cookies:
        """The live cookie jar shared with the underlying transport."""
        return self._client.cookies if self._client is not None else self._cookies

    @property
    def cookies(self) -> dict[str, str]:
        """Cookie name to value mapping for every cookie in the jar."""
        return {cookie.name: cookie.value for cookie in self.cookie_jar.jar}

    def set_cookies(self, cookies: dict[str, str] | httpx.Cookies) -> None:
        """Replace the whole cookie jar."""
        self.cookie_jar.clear()
        self.update_cookies(cookies)

    def update_cookies(self, cookies: dict[str, str] | httpx.Cookies) -> None:
        """Add or overwrite cookies."""
        if isinstance(cookies, httpx.Cookies):
            for cookie in cookies.jar:
                self.cookie_jar.jar.set_cookie(cookie)
        else:
            for name, value in cookies.items():
                self.cookie_jar.set(name, value)

    # ------------------------------------------------------------------ #
    # Requests
    # ------------------------------------------------------------------ #

    def request(
        self,
        method: str,
        route: str,
        body: Any = None,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> httpx.Response:
        """Send a request relative to :attr:`base_url`.

        Non-2xx responses are returned, not raised; callers inspect the
        status themselves. Only a 401 with a refresh callback configured is
        handled here.

        Args:
            method: HTTP method.
            route: Path relative to the base URL.
            body: ``dict``/``list`` bodies are sent as JSON, ``str``/``bytes``
                verbatim.
            params: Query parameters.
            headers: Extra headers for this request only.

        Returns:
            The :class:`httpx.Response`.

        Raises:
            TransportError: On DNS, connection, TLS or timeout failures.
            AuthError: When 401 persists after the refresh budget is spent.
        """
        return self._send(method, route, body, params, headers, self.max_refresh_retries)

    def get(self, route: str, **kwargs: Any) -> httpx.Response:
        """Send a GET request."""
        return self.request("GET", route, **kwargs)

    def post(self, route: str, **kwargs: Any) -> httpx.Response:
        """Send a POST request."""
        return self.request("POST", route, **kwargs)

    def put(self, route: str, **kwargs: Any) -> httpx.Response:
        """Send a PUT request."""
        return self.request("PUT", route, **kwargs)

    def patch(self, route: str, **kwargs: Any) -> httpx.Response:
        """Send a PATCH request."""
        return self.request("PATCH", route, **kwargs)

    def delete(self, route: str, **kwargs: Any) -> httpx.Response:
        """Send a DELETE request."""
        return self.request("DELETE", route, **kwargs)

    def options(self, route: str, **kwargs: Any) -> httpx.Response:
        """Send an OPTIONS request."""
        return self.request("OPTIONS", route, **kwargs)

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _get_client(self) -> httpx.Client:
        """Return the transport, rebuilding it if the TLS switch changed."""
        verify = is_verifying_certificates()
        if self._client is not None and self._client_verify == verify:
            return self._client
        if self._client is not None:
            self._logger.debug("Certificate verification changed to %s, reopening session", verify)
            self.close()
        self._client = httpx.Client(
            cookies=self._cookies,
            timeout=self._timeout,
            verify=verify,
            follow_redirects=False,
            transport=self._transport,
        )
        self._client_verify = verify
        return self._client

    def _send(
        self,
        method: str,
        route: str,
        body: Any,
        params: Optional[dict[str, Any]],
        headers: Optional[dict[str, str]],
        retries_left: int,
    ) -> httpx.Response:
        client = self._get_client()
        url = join_route(self.base_url, route)
        kwargs: dict[str, Any] = {
            "params": params,
            "headers": {**self._headers, **(headers or {})},
        }
        if isinstance(body, (dict, list)):
            kwargs["json"] = body
        elif body is not None:
            kwargs["content"] = body

        try:
            response = client.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            raise TransportError(str(exc) or exc.__class__.__name__) from exc

        if response.status_code != 401 or self.refresh_callback is None:
            return response

        if retries_left <= 0:
            raise AuthError(
                f"{method} {route} still unauthorized after "
                f"{self.max_refresh_retries} token refresh attempts"
            )
        self._logger.debug("Got 401 for %s %s, refreshing session", method, route)
        self.refresh_callback(self)
        return self._send(method, route, body, params, headers, retries_left - 1)
