"""Interactive identity login.

:class:`ArkIdentity` negotiates a session with the identity service for one
user:

1. reuse a cached, unexpired session unless ``force`` is given;
2. ``StartAuthentication`` (or reuse a fresh response left by a probe such
   as :func:`is_password_required`);
3. follow an IdP redirect if the tenant federates the user, polling
   ``OobAuthStatus`` while the operator logs in through the browser;
4. otherwise resolve each challenge round in order: password rounds with
   a single ``Answer``, out-of-band rounds with ``StartOOB`` and an
   :class:`~arkauth.auth.identity.mechanisms.OOBPoller`;
5. store the session details, headers and cookies in the vault.

Only one login may run per instance at a time; a concurrent attempt raises
:class:`~arkauth.exceptions.PollingInProgressError`.
"""

from __future__ import annotations

import base64
import binascii
import re
import threading
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

import httpx
import jwt
from pydantic import ValidationError

from arkauth.auth.identity.interaction import (
    BrowserOpener,
    ConsoleInteraction,
    Interaction,
    open_browser,
)
from arkauth.auth.identity.mechanisms import (
    POLL_INTERVAL,
    POLL_TIMEOUT,
    MechanismSelector,
    OOBPoller,
    PollStatus,
)
from arkauth.auth.identity.schemas import (
    AdvanceAuthenticationRequest,
    AdvanceAuthResponse,
    AdvanceAuthResult,
    AuthAction,
    Challenge,
    IdentitySessionDetails,
    IdentitySessionState,
    IdpAuthStatusResponse,
    Mechanism,
    OobAuthStatusRequest,
    StartAuthenticationRequest,
    StartAuthResponse,
)
from arkauth.auth.identity.start_auth_cache import LastStartAuthCache, default_start_auth_cache
from arkauth.auth.identity.tenant import default_headers, resolve_identity_url
from arkauth.client import SessionClient, marshal_cookies, unmarshal_cookies
from arkauth.exceptions import (
    ArkError,
    AuthCancelledError,
    AuthError,
    AuthRejectedError,
    AuthTimeoutError,
    CacheError,
    InputError,
    InteractionRequiredError,
    PollingInProgressError,
    ProtocolError,
)
from arkauth.keyring import ArkKeyring
from arkauth.keyring.vault import as_aware, utcnow
from arkauth.models import ArkToken, AuthMethod, Profile, TokenType
from arkauth.output import Logger

IDENTITY_KEYRING_SERVICE = "ark-identity"
DEFAULT_TOKEN_LIFETIME = 3600

UP_MECHANISM = "up"
SECRET_PROMPT = "Identity Security Platform Secret"
IDP_SUCCESS_STATE = "Success"
IDP_REDIRECT_MESSAGE = (
    "\nYou are now being redirected from your browser to your external identity "
    "provider for authentication\n"
    "If the browser did not open, you may also click the following URL to access "
    "your identity provider authentication\n\n{url}\n"
)

_MANAGED_USER = re.compile(r".*@cyberark\.cloud\.\d+")


def _identity_postfix(username: str) -> str:
    return f"{username}_identity"


def _session_postfix(username: str) -> str:
    return f"{username}_identity_session"


def _expiry_from_lifetime(lifetime: int) -> datetime:
    return utcnow() + timedelta(seconds=lifetime or DEFAULT_TOKEN_LIFETIME)


def _unverified_claims(token: str) -> dict:
    try:
        return jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError as exc:
        raise ProtocolError(f"Platform token is not a valid JWT: {exc}") from exc


class ArkIdentity:
    """Identity login for one user against one tenant.

    Args:
        username: Login name, e.g. ``"me@acme.example"``.
        password: Password answered to ``up`` challenges; prompted for
            when missing and interactive.
        identity_url: Tenant URL. Resolved from *identity_tenant_subdomain*
            or the username suffix when omitted.
        identity_tenant_subdomain: Platform subdomain of the tenant.
        mfa_type: Preferred MFA mechanism (``"otp"``, ``"sms"``...).
        logger: Optional :class:`~arkauth.output.Logger`.
        cache_authentication: Load and store sessions in the vault.
        load_cache: Load the cached session of *cache_profile* right away.
        cache_profile: Profile whose cache :attr:`load_cache` reads.
        keyring: Vault instance (defaults to ``ArkKeyring("ark-identity")``).
        start_auth_cache: Shared :class:`LastStartAuthCache`.
        interaction: Operator prompts (defaults to the console).
        browser_opener: Opens the IdP URL (defaults to the web browser).
        transport: Optional httpx transport, mainly for tests.
        poll_interval: Seconds between MFA and IdP status polls.
        poll_timeout: Budget of one polling round, in seconds.
        clock: Monotonic clock for polling deadlines.
        sleep: Waits between non-interactive polls.
    """

    def __init__(
        self,
        username: str,
        password: Optional[str] = None,
        identity_url: Optional[str] = None,
        identity_tenant_subdomain: Optional[str] = None,
        mfa_type: Optional[str] = None,
        logger: Optional[Logger] = None,
        cache_authentication: bool = True,
        load_cache: bool = False,
        cache_profile: Optional[Profile] = None,
        keyring: Optional[ArkKeyring] = None,
        start_auth_cache: Optional[LastStartAuthCache] = None,
        interaction: Optional[Interaction] = None,
        browser_opener: Optional[BrowserOpener] = None,
        transport: Optional[httpx.BaseTransport] = None,
        poll_interval: float = POLL_INTERVAL,
        poll_timeout: float = POLL_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._username = username
        self._password = password or ""
        self._logger = logger or Logger("ArkIdentity")
        self._cache_authentication = cache_authentication
        self._cache_profile = cache_profile
        self._keyring = keyring
        if self._keyring is None and cache_authentication:
            self._keyring = ArkKeyring(IDENTITY_KEYRING_SERVICE, logger=self._logger)
        self._start_auth_cache = start_auth_cache or default_start_auth_cache
        self._interaction = interaction or ConsoleInteraction()
        self._browser_opener = browser_opener or open_browser
        self._transport = transport
        self._poll_interval = poll_interval
        self._poll_timeout = poll_timeout
        self._clock = clock
        self._sleep = sleep
        self._selector = MechanismSelector(self._interaction, mfa_type, logger=self._logger)
        self._poller = OOBPoller(
            self.advance_authentication,
            interaction=self._interaction,
            logger=self._logger,
            poll_interval=poll_interval,
            timeout=poll_timeout,
            clock=clock,
            sleep=sleep,
        )
        self._auth_lock = threading.Lock()

        base_url = resolve_identity_url(
            username, identity_url, identity_tenant_subdomain, transport=transport
        )
        self._session = self._new_session(base_url)
        self._session_details: Optional[IdentitySessionDetails] = None
        self._session_expiry: Optional[datetime] = None

        if load_cache and cache_authentication and cache_profile is not None:
            self._load_cache(cache_profile)

    # ------------------------------------------------------------------ #
    # Accessors
    # ------------------------------------------------------------------ #

    @property
    def username(self) -> str:
        return self._username

    @property
    def session(self) -> SessionClient:
        """Client bound to the identity tenant, carrying the session token."""
        return self._session

    @property
    def session_details(self) -> Optional[IdentitySessionDetails]:
        return self._session_details

    @property
    def session_expiry(self) -> Optional[datetime]:
        return self._session_expiry

    @property
    def session_token(self) -> Optional[str]:
        """Platform token of the current session, or ``None`` before login."""
        if self._session_details is None:
            return None
        return self._session_details.token or self._session_details.auth or None

    @property
    def identity_url(self) -> str:
        return self._session.base_url

    # ------------------------------------------------------------------ #
    # Login
    # ------------------------------------------------------------------ #

    def auth_identity(
        self,
        profile: Optional[Profile] = None,
        interactive: bool = False,
        force: bool = False,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        """Authenticate, reusing the cached session when allowed.

        Args:
            profile: Profile the session is cached under (defaults to the
                constructor's *cache_profile*).
            interactive: Allow prompting the operator.
            force: Ignore the cached session.
            cancel: Set by another thread to abort polling.

        Raises:
            PollingInProgressError: Another login runs on this instance.
            InteractionRequiredError: Input is needed but not interactive.
            AuthTimeoutError: A polling round ran out of time.
            AuthRejectedError: The service failed an answer.
            ProtocolError: The service answered something unusable.
            TransportError: The service is unreachable.
            CacheError: The session could not be stored.
        """
        if not self._auth_lock.acquire(blocking=False):
            raise PollingInProgressError("MFA / IdP polling is already in progress")
        try:
            self._auth_identity(profile or self._cache_profile, interactive, force, cancel)
        finally:
            self._auth_lock.release()

    def refresh_auth_identity(
        self,
        profile: Optional[Profile] = None,
        interactive: bool = False,
        force: bool = False,
    ) -> None:
        """Exchange the refresh token for a new platform token.

        Without a live session this performs a full :meth:`auth_identity`.

        Raises:
            AuthError: If the service refuses the refresh.
            ProtocolError: If a token is not a JWT or cookies are missing.
        """
        profile = profile or self._cache_profile
        if self._session_details is None or not self._session_details.token:
            self.auth_identity(profile, interactive, force)
            return
        if not self._auth_lock.acquire(blocking=False):
            raise PollingInProgressError("MFA / IdP polling is already in progress")
        try:
            self._refresh(profile)
        finally:
            self._auth_lock.release()

    def advance_authentication(
        self, mechanism_id: str, session_id: str, action: AuthAction, answer: str = ""
    ) -> AdvanceAuthResponse:
        """Send one ``Security/AdvanceAuthentication`` request."""
        self._logger.info("Advancing authentication with action %s", action.value)
        body = AdvanceAuthenticationRequest(
            session_id=session_id, mechanism_id=mechanism_id, action=action, answer=answer
        )
        response = self._session.post(
            "Security/AdvanceAuthentication", body=body.model_dump(mode="json", by_alias=True)
        )
        return self._parse(AdvanceAuthResponse, response, "advance authentication")

    def get_apps(self) -> dict[str, Any]:
        """Return the user portal data (``UPRest/GetUPData``) of the session.

        The session cookies are left as they were before the call.

        Raises:
            AuthError: Before a login, or if the service refuses the call.
            ProtocolError: If the response is not a JSON object.
        """
        if self._session_details is None:
            raise AuthError("Identity authentication is required first")
        saved_cookies = httpx.Cookies(self._session.cookie_jar)
        response = self._session.post("UPRest/GetUPData")
        self._session.set_cookies(saved_cookies)
        if response.status_code != 200:
            raise AuthError(f"Failed to get apps: HTTP {response.status_code}")
        try:
            data = response.json()
        except ValueError as exc:
            raise ProtocolError(f"Failed to get apps: invalid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise ProtocolError("Failed to get apps: expected a JSON object")
        return data

    # ------------------------------------------------------------------ #
    # Flow
    # ------------------------------------------------------------------ #

    def _auth_identity(
        self,
        profile: Optional[Profile],
        interactive: bool,
        force: bool,
        cancel: Optional[threading.Event],
    ) -> None:
        self._logger.debug("Attempting to authenticate to Identity")
        self._session_details = None
        if self._cache_authentication and not force and self._load_cache(profile):
            if self._session_expiry is not None and self._session_expiry > utcnow():
                self._logger.info("Loaded identity details from cache")
                return
            self._session_details = None

        self._session = self._new_session(self._session.base_url)
        start = self._pop_start_response()
        if start is None:
            start = self.start_authentication()

        if start.result.idp_redirect_url:
            self._perform_idp_authentication(start, profile, interactive, cancel)
            return
        self._perform_challenges(start, profile, interactive, cancel)

    def start_authentication(self) -> StartAuthResponse:
        """Send ``Security/StartAuthentication`` for :attr:`username`.

        Raises:
            ProtocolError: On ``success: false`` or a response with neither
                challenges nor an IdP redirect.
        """
        self._logger.info(
            "Starting authentication with user %s and fqdn %s",
            self._username,
            self._session.base_url,
        )
        response = self._session.post(
            "Security/StartAuthentication",
            body=StartAuthenticationRequest(user=self._username).model_dump(by_alias=True),
        )
        parsed = self._parse(StartAuthResponse, response, "start authentication")
        if not parsed.success:
            raise ProtocolError(f"Failed to start authentication: {parsed.describe_failure()}")
        if not parsed.result.challenges and not parsed.result.idp_redirect_url:
            raise ProtocolError("No challenges or IdP redirect URL on start authentication")
        return parsed

    def _pop_start_response(self) -> Optional[StartAuthResponse]:
        entry = self._start_auth_cache.pop(self._session.base_url, self._username)
        if entry is None:
            return None
        self._logger.debug("Reusing recent start authentication response")
        self._session.set_cookies(entry.cookies)
        return entry.response

    def _perform_challenges(
        self,
        start: StartAuthResponse,
        profile: Optional[Profile],
        interactive: bool,
        cancel: Optional[threading.Event],
    ) -> None:
        session_id = start.result.session_id
        for index, challenge in enumerate(start.result.challenges):
            if cancel is not None and cancel.is_set():
                raise AuthCancelledError("Authentication was cancelled")
            mechanism = self._resolve_mechanism(challenge, interactive)
            self._logger.debug(
                "Challenge round %d: using mechanism [%s]", index + 1, mechanism.name
            )

            if mechanism.lower_name == UP_MECHANISM:
                result = self._perform_up_authentication(mechanism, session_id, interactive)
                if result.is_login_success:
                    self._finalize(result, profile)
                    return
                continue

            oob = self.advance_authentication(
                mechanism.mechanism_id, session_id, AuthAction.START_OOB
            )
            if not oob.success:
                raise AuthRejectedError(
                    f"Failed to start out-of-band authentication: {oob.describe_failure()}"
                )
            if oob.result.is_login_success:
                self._finalize(oob.result, profile)
                return
            if oob.result.is_new_package:
                continue
            outcome = self._poller.poll(
                mechanism, session_id, interactive, cancel=cancel, oob_result=oob.result
            )
            if outcome.status is PollStatus.AUTHENTICATED:
                assert outcome.result is not None
                self._finalize(outcome.result, profile)
                return

        raise ProtocolError("All challenges were answered but no session was issued")

    def _resolve_mechanism(self, challenge: Challenge, interactive: bool) -> Mechanism:
        supported = self._selector.supported(challenge)
        if not interactive and self._password and len(supported) > 1:
            for mechanism in supported:
                if mechanism.lower_name == UP_MECHANISM:
                    return mechanism
        return self._selector.resolve(challenge, interactive)

    def _perform_up_authentication(
        self, mechanism: Mechanism, session_id: str, interactive: bool
    ) -> AdvanceAuthResult:
        password = self._password
        if not password:
            if not interactive:
                raise InteractionRequiredError("No password and not interactive, cannot continue")
            password = self._interaction.secret(SECRET_PROMPT)
            if not password:
                raise InputError("Empty response by user")
        response = self.advance_authentication(
            mechanism.mechanism_id, session_id, AuthAction.ANSWER, password
        )
        if not response.success:
            raise AuthRejectedError(
                f"Failed to advance authentication: {response.describe_failure()}"
            )
        return response.result

    def _perform_idp_authentication(
        self,
        start: StartAuthResponse,
        profile: Optional[Profile],
        interactive: bool,
        cancel: Optional[threading.Event],
    ) -> None:
        url = start.result.idp_redirect_short_url or start.result.idp_redirect_url
        if interactive:
            self._interaction.notify(IDP_REDIRECT_MESSAGE.format(url=url))
        self._browser_opener(url)

        body = OobAuthStatusRequest(session_id=start.result.idp_login_session_id)
        deadline = self._clock() + self._poll_timeout
        while True:
            if cancel is not None and cancel.is_set():
                raise AuthCancelledError("Authentication was cancelled")
            if self._clock() >= deadline:
                raise AuthTimeoutError(
                    f"Timeout reached after {self._poll_timeout:g}s while polling for IdP authentication"
                )
            self._logger.info("Checking identity IdP authentication status")
            response = self._session.post(
                "Security/OobAuthStatus", body=body.model_dump(by_alias=True)
            )
            status = self._parse(IdpAuthStatusResponse, response, "check IdP authentication status")
            if not status.success:
                raise AuthRejectedError(
                    f"Failed to perform IdP authentication: {status.describe_failure()}"
                )
            if status.result.state == IDP_SUCCESS_STATE and status.result.token:
                self._finalize(
                    AdvanceAuthResult(
                        token=status.result.token,
                        token_lifetime=status.result.token_lifetime,
                        refresh_token=status.result.refresh_token,
                    ),
                    profile,
                )
                return
            self._sleep(self._poll_interval)

    def _finalize(self, result: AdvanceAuthResult, profile: Optional[Profile]) -> None:
        self._session_details = IdentitySessionDetails.from_advance_result(result)
        self._session.update_token(self._session_details.token, "Bearer")
        self._session_expiry = _expiry_from_lifetime(self._session_details.token_lifetime)
        self._logger.info("Authenticated to identity as %s", self._username)
        if self._cache_authentication:
            self._save_cache(profile)

    def _refresh(self, profile: Optional[Profile]) -> None:
        assert self._session_details is not None
        self._logger.debug("Attempting to refresh authenticate to Identity")
        saved_cookies = httpx.Cookies(self._session.cookie_jar)
        self._session = self._new_session(self._session.base_url)

        tenant_id = _unverified_claims(self._session_details.token).get("tenant_id")
        if not tenant_id:
            raise ProtocolError("Platform token does not carry a tenant_id claim")
        id_cookie = f"idToken-{tenant_id}"
        refresh_cookie = f"refreshToken-{tenant_id}"
        self._session.set_cookies(
            {
                refresh_cookie: self._session_details.refresh_token,
                id_cookie: self._session_details.token,
            }
        )
        response = self._session.post("OAuth2/RefreshPlatformToken")
        if response.status_code != 200:
            raise AuthError(f"Failed to refresh token: HTTP {response.status_code}")

        new_token = response.cookies.get(id_cookie)
        new_refresh_token = response.cookies.get(refresh_cookie)
        if not new_token or not new_refresh_token:
            raise ProtocolError("Failed to retrieve refresh tokens cookies")

        self._session.set_cookies(saved_cookies)
        self._session.update_token(new_token, "Bearer")
        claims = _unverified_claims(new_token)
        try:
            lifetime = int(claims["exp"]) - int(claims["iat"])
        except (KeyError, TypeError, ValueError):
            lifetime = DEFAULT_TOKEN_LIFETIME
        self._session_details = self._session_details.model_copy(
            update={
                "token": new_token,
                "refresh_token": new_refresh_token,
                "token_lifetime": lifetime,
            }
        )
        self._session_expiry = _expiry_from_lifetime(lifetime)
        if self._cache_authentication:
            self._save_cache(profile)

    # ------------------------------------------------------------------ #
    # Cache
    # ------------------------------------------------------------------ #

    def _load_cache(self, profile: Optional[Profile]) -> bool:
        """Restore the cached session; any failure counts as a miss."""
        if self._keyring is None or profile is None:
            return False
        try:
            token = self._keyring.load_token(profile, _identity_postfix(self._username))
            session = self._keyring.load_token(profile, _session_postfix(self._username))
        except CacheError as exc:
            self._logger.error("Error loading identity session from cache: %s", exc)
            return False
        if token is None or session is None:
            return False
        try:
            details = IdentitySessionDetails.model_validate_json(token.token)
            state = IdentitySessionState.model_validate_json(session.token)
            cookies = (
                unmarshal_cookies(base64.b64decode(state.cookies)) if state.cookies else None
            )
        except (ValidationError, ValueError, binascii.Error) as exc:
            self._logger.error("Cached identity session is unreadable: %s", exc)
            return False

        client = SessionClient(
            session.endpoint or self._session.base_url,
            transport=self._transport,
            logger=self._logger,
        )
        client.set_headers(state.headers)
        if cookies is not None:
            client.set_cookies(cookies)
        client.update_token(details.token, "Bearer")
        self._session = client
        self._session_details = details
        self._session_expiry = as_aware(token.expires_in) if token.expires_in else None
        return True

    def _save_cache(self, profile: Optional[Profile]) -> None:
        if self._keyring is None or profile is None or self._session_details is None:
            return
        state = IdentitySessionState(
            headers={k: v for k, v in self._session.headers.items() if k != "Authorization"},
            cookies=base64.b64encode(marshal_cookies(self._session.cookie_jar)).decode("ascii"),
        )
        for postfix, payload in (
            (_identity_postfix(self._username), self._session_details.model_dump_json()),
            (_session_postfix(self._username), state.model_dump_json()),
        ):
            self._keyring.save_token(
                profile,
                ArkToken(
                    token=payload,
                    username=self._username,
                    endpoint=self._session.base_url,
                    token_type=TokenType.INTERNAL,
                    auth_method=AuthMethod.OTHER,
                    expires_in=self._session_expiry,
                ),
                postfix,
            )

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _new_session(self, base_url: str) -> SessionClient:
        return SessionClient(
            base_url, headers=default_headers(), transport=self._transport, logger=self._logger
        )

    @staticmethod
    def _parse(model, response: httpx.Response, what: str):
        try:
            return model.model_validate_json(response.content)
        except ValidationError as exc:
            raise ProtocolError(
                f"Failed to {what}: unexpected response (HTTP {response.status_code}): {exc}"
            ) from exc


# ---------------------------------------------------------------------- #
# Probes
# ---------------------------------------------------------------------- #


def has_cache_record(
    profile: Profile,
    username: str,
    refresh_auth_allowed: bool,
    keyring: Optional[ArkKeyring] = None,
) -> bool:
    """Whether a usable identity session of *username* is cached.

    An expired session counts only when it can be refreshed.
    """
    keyring = keyring or ArkKeyring(IDENTITY_KEYRING_SERVICE)
    token = keyring.load_token(profile, _identity_postfix(username))
    session = keyring.load_token(profile, _session_postfix(username))
    if token is None or session is None:
        return False
    if token.expires_in is not None and as_aware(token.expires_in) < utcnow():
        if not refresh_auth_allowed:
            return False
        try:
            details = IdentitySessionDetails.model_validate_json(token.token)
        except ValidationError:
            return False
        return bool(details.refresh_token)
    return True


def clear_cache_records(
    profile: Profile, username: str, keyring: Optional[ArkKeyring] = None
) -> None:
    """Forget every cached identity session of *username* in *profile*."""
    keyring = keyring or ArkKeyring(IDENTITY_KEYRING_SERVICE)
    for postfix in (
        _identity_postfix(username),
        _session_postfix(username),
        f"{username}_identity_service_user",
    ):
        keyring.clear_token(profile, postfix)


def is_idp_user(
    username: str,
    identity_url: Optional[str] = None,
    identity_tenant_subdomain: Optional[str] = None,
    transport: Optional[httpx.BaseTransport] = None,
) -> bool:
    """Whether the tenant redirects *username* to an external IdP.

    Platform-managed users (``...@cyberark.cloud.<n>``) never are.
    """
    if _MANAGED_USER.match(username):
        return False
    identity = ArkIdentity(
        username,
        identity_url=identity_url,
        identity_tenant_subdomain=identity_tenant_subdomain,
        logger=Logger("IsIdpUser"),
        cache_authentication=False,
        transport=transport,
    )
    return bool(identity.start_authentication().result.idp_redirect_url)


def is_password_required(
    username: str,
    identity_url: Optional[str] = None,
    identity_tenant_subdomain: Optional[str] = None,
    start_auth_cache: Optional[LastStartAuthCache] = None,
    transport: Optional[httpx.BaseTransport] = None,
) -> bool:
    """Whether logging in *username* starts with a password round.

    The start response is left in *start_auth_cache* so a login that
    follows shortly does not start a second authentication. Any failure
    answers ``True``.
    """
    cache = start_auth_cache or default_start_auth_cache
    try:
        identity = ArkIdentity(
            username,
            identity_url=identity_url,
            identity_tenant_subdomain=identity_tenant_subdomain,
            logger=Logger("IsPasswordRequired"),
            cache_authentication=False,
            start_auth_cache=cache,
            transport=transport,
        )
        response = identity.start_authentication()
    except ArkError:
        return True
    cache.put(identity.identity_url, username, response, identity.session.cookies)
    challenges = response.result.challenges
    if not challenges:
        return False
    mechanisms = challenges[0].mechanisms
    return bool(mechanisms) and mechanisms[0].lower_name == UP_MECHANISM
