"""Tests for ArkISPAuth, the ArkAuth caching layer and the AuthManager."""

from __future__ import annotations

import json
from datetime import timedelta

import httpx
import jwt
import pytest

from arkauth.auth import ArkISPAuth, AuthManager, create_default_manager, token_cookies
from arkauth.auth.identity import LastStartAuthCache
from arkauth.config import disable_interactive
from arkauth.exceptions import AuthError, ConfigError, InvalidUsageError
from arkauth.keyring import ArkKeyring
from arkauth.keyring.vault import utcnow
from arkauth.models import (
    ArkSecret,
    AuthMethod,
    AuthProfile,
    DirectAuthMethodSettings,
    IdentityAuthMethodSettings,
    IdentityServiceUserAuthMethodSettings,
    Profile,
    TokenType,
)


IDENTITY_URL = "https://aax1234.id.cyberark.cloud"
START = "/Security/StartAuthentication"
ADVANCE = "/Security/AdvanceAuthentication"
REFRESH = "/OAuth2/RefreshPlatformToken"

TOKEN = jwt.encode({"tenant_id": "t1", "iat": 1_000, "exp": 4_600}, "k", algorithm="HS256")
REFRESHED = jwt.encode({"tenant_id": "t1", "iat": 2_000, "exp": 9_200}, "k", algorithm="HS256")

START_UP = {
    "success": True,
    "Result": {
        "SessionId": "sess-1",
        "Challenges": [
            {"Mechanisms": [{"AnswerType": "Text", "Name": "UP", "MechanismId": "m-up"}]}
        ],
    },
}
LOGIN_SUCCESS = {
    "success": True,
    "Result": {
        "Summary": "LoginSuccess",
        "Token": TOKEN,
        "TokenLifetime": 3600,
        "RefreshToken": "r1",
    },
}


def _refreshed(request: httpx.Request) -> httpx.Response:
    if "refreshToken-t1=r1" not in request.headers.get("Cookie", ""):
        return httpx.Response(401)
    return httpx.Response(
        200,
        headers=[
            ("Set-Cookie", f"idToken-t1={REFRESHED}; Path=/"),
            ("Set-Cookie", "refreshToken-t1=r2; Path=/"),
        ],
    )


@pytest.fixture(autouse=True)
def _non_interactive() -> None:
    disable_interactive()


@pytest.fixture
def make_auth(router, isp_keyring: ArkKeyring, identity_keyring: ArkKeyring):
    start_auth_cache = LastStartAuthCache()

    def _make(**kwargs: object) -> ArkISPAuth:
        options: dict = {
            "keyring": isp_keyring,
            "identity_keyring": identity_keyring,
            "start_auth_cache": start_auth_cache,
            "browser_opener": lambda url: None,
            "transport": router.transport,
        }
        options.update(kwargs)
        return ArkISPAuth(**options)

    return _make


@pytest.fixture
def logged_in(router, make_auth, profile: Profile) -> ArkISPAuth:
    """An authenticator that completed a password login of :func:`profile`."""
    router.add(START, START_UP)
    router.add(ADVANCE, LOGIN_SUCCESS)
    auth = make_auth()
    auth.authenticate(profile, secret=ArkSecret(secret="pw"))
    return auth


def _expire(keyring: ArkKeyring, profile: Profile, postfix: str, seconds_ago: int = 30) -> None:
    token = keyring.load_token(profile, postfix)
    assert token is not None
    keyring.save_token(
        profile,
        token.model_copy(update={"expires_in": utcnow() - timedelta(seconds=seconds_ago)}),
        postfix,
    )


# ---------------------------------------------------------------------------
# Authenticator description
# ---------------------------------------------------------------------------


class TestDescription:
    def test_names(self, make_auth) -> None:
        auth = make_auth()
        assert auth.authenticator_name == "isp"
        assert auth.authenticator_human_readable_name == "Identity Security Platform"
        assert auth.supported_auth_methods == [
            AuthMethod.IDENTITY,
            AuthMethod.IDENTITY_SERVICE_USER,
        ]
        method, settings = auth.default_auth_method
        assert method == AuthMethod.IDENTITY
        assert isinstance(settings, IdentityAuthMethodSettings)

    def test_cache_postfix(self, make_auth) -> None:
        auth = make_auth()
        assert auth.resolve_cache_postfix(AuthProfile(username="a@b.com")) == "a@b.com"
        direct = AuthProfile(
            username="a@b.com",
            auth_method=AuthMethod.DIRECT,
            auth_method_settings=DirectAuthMethodSettings(endpoint="https://vault.acme.com/api"),
        )
        assert auth.resolve_cache_postfix(direct) == "a@b.com_vault.acme.com"


# ---------------------------------------------------------------------------
# Identity login
# ---------------------------------------------------------------------------


class TestIdentityAuthentication:
    def test_authenticate(self, router, logged_in: ArkISPAuth, profile: Profile, isp_keyring: ArkKeyring) -> None:
        token = logged_in.token
        assert token is not None
        assert token.token == TOKEN
        assert token.token_type == TokenType.JWT
        assert token.auth_method == AuthMethod.IDENTITY
        assert token.username == "user@acme.com"
        assert token.refresh_token == "r1"
        assert token.endpoint == IDENTITY_URL
        assert token.metadata["env"] == "prod"
        assert token.expires_in is not None
        assert abs((token.expires_in - (utcnow() + timedelta(seconds=3600))).total_seconds()) < 60
        assert logged_in.active_profile is profile

        cached = isp_keyring.load_token(profile, "user@acme.com")
        assert cached is not None and cached.token == TOKEN
        answer = json.loads(router.calls(ADVANCE)[0].content)
        assert answer["Answer"] == "pw"

    def test_cached_token_is_reused(self, router, logged_in: ArkISPAuth, make_auth, profile: Profile) -> None:
        requests_before = len(router.requests)
        token = make_auth().authenticate(profile)
        assert token.token == TOKEN
        assert len(router.requests) == requests_before

    def test_force_logs_in_again(self, router, logged_in: ArkISPAuth, make_auth, profile: Profile) -> None:
        make_auth().authenticate(profile, secret=ArkSecret(secret="pw"), force=True)
        assert len(router.calls(START)) == 2

    def test_without_cache(self, router, make_auth, profile: Profile, isp_keyring: ArkKeyring) -> None:
        router.add(START, START_UP)
        router.add(ADVANCE, LOGIN_SUCCESS)
        auth = make_auth(cache_authentication=False, keyring=None, identity_keyring=None)
        token = auth.authenticate(profile, secret=ArkSecret(secret="pw"))
        assert token.token == TOKEN
        assert isp_keyring.load_token(profile, "user@acme.com") is None

    def test_default_method(self, router, make_auth, profile: Profile) -> None:
        router.add(START, START_UP)
        router.add(ADVANCE, LOGIN_SUCCESS)
        auth_profile = AuthProfile(
            username="user@acme.com",
            auth_method=AuthMethod.DEFAULT,
            auth_method_settings=IdentityAuthMethodSettings(identity_url=IDENTITY_URL),
        )
        auth = make_auth()
        token = auth.authenticate(profile, auth_profile, secret=ArkSecret(secret="pw"))
        assert token.auth_method == AuthMethod.IDENTITY
        assert auth.active_auth_profile is not None
        assert auth.active_auth_profile.auth_method == AuthMethod.IDENTITY

    def test_missing_password_non_interactive(self, router, make_auth, profile: Profile) -> None:
        router.add(START, START_UP)
        with pytest.raises(AuthError):
            make_auth().authenticate(profile)
        assert router.calls(ADVANCE) == []


# ---------------------------------------------------------------------------
# Profile validation
# ---------------------------------------------------------------------------


class TestProfileValidation:
    def test_nothing_given(self, make_auth) -> None:
        with pytest.raises(InvalidUsageError):
            make_auth().authenticate()

    def test_missing_section(self, make_auth) -> None:
        with pytest.raises(ConfigError, match="not defined"):
            make_auth().authenticate(Profile(profile_name="empty"))

    def test_unsupported_method(self, make_auth, profile: Profile) -> None:
        auth_profile = AuthProfile(username="a@b.com", auth_method=AuthMethod.DIRECT)
        with pytest.raises(ConfigError, match="does not support"):
            make_auth().authenticate(profile, auth_profile)

    def test_missing_username(self, make_auth, profile: Profile) -> None:
        auth_profile = AuthProfile(auth_method=AuthMethod.IDENTITY)
        with pytest.raises(InvalidUsageError, match="username"):
            make_auth().authenticate(profile, auth_profile)


# ---------------------------------------------------------------------------
# Service user
# ---------------------------------------------------------------------------


SERVICE_USER = AuthProfile(
    username="svc@acme",
    auth_method=AuthMethod.IDENTITY_SERVICE_USER,
    auth_method_settings=IdentityServiceUserAuthMethodSettings(
        identity_authorization_application="app1", identity_url=IDENTITY_URL
    ),
)


class TestServiceUserAuthentication:
    def test_requires_secret(self, router, make_auth, profile: Profile) -> None:
        with pytest.raises(AuthError, match="secret is required"):
            make_auth().authenticate(profile, SERVICE_USER)
        assert router.requests == []

    def test_authenticate(self, router, make_auth, profile: Profile) -> None:
        router.add("/Oauth2/Token/app1", {"access_token": "access-1"})
        router.add(
            "/OAuth2/Authorize/app1",
            lambda request: httpx.Response(
                302, headers={"Location": "https://cyberark.cloud/redirect#id_token=svc-token"}
            ),
        )
        token = make_auth().authenticate(profile, SERVICE_USER, secret=ArkSecret(secret="s3cret"))
        assert token.token == "svc-token"
        assert token.auth_method == AuthMethod.IDENTITY_SERVICE_USER
        assert token.token_type == TokenType.JWT
        assert token.refresh_token is None


# ---------------------------------------------------------------------------
# Refresh
# ---------------------------------------------------------------------------


class TestRefresh:
    def test_load_authentication(self, logged_in: ArkISPAuth, make_auth, profile: Profile) -> None:
        token = make_auth().load_authentication(profile)
        assert token is not None
        assert token.token == TOKEN

    def test_is_authenticated(self, logged_in: ArkISPAuth, make_auth, profile: Profile) -> None:
        assert logged_in.is_authenticated(profile)
        assert make_auth().is_authenticated(profile)
        assert not make_auth().is_authenticated(Profile(profile_name="other"))

    def test_expired_token_is_refreshed(
        self, router, logged_in: ArkISPAuth, make_auth, profile: Profile, isp_keyring: ArkKeyring
    ) -> None:
        _expire(isp_keyring, profile, "user@acme.com")
        router.add(REFRESH, _refreshed)

        token = make_auth().load_authentication(profile, refresh_auth=True)

        assert token is not None
        assert token.token == REFRESHED
        assert token.refresh_token == "r2"
        cached = isp_keyring.load_token(profile, "user@acme.com")
        assert cached is not None and cached.token == REFRESHED

    def test_expired_token_without_refresh(
        self, logged_in: ArkISPAuth, make_auth, profile: Profile, isp_keyring: ArkKeyring
    ) -> None:
        _expire(isp_keyring, profile, "user@acme.com")
        assert make_auth().load_authentication(profile) is None

    def test_failed_refresh_leaves_no_token(
        self, router, logged_in: ArkISPAuth, make_auth, profile: Profile, isp_keyring: ArkKeyring
    ) -> None:
        _expire(isp_keyring, profile, "user@acme.com")
        router.add(REFRESH, httpx.Response(401))
        auth = make_auth()
        assert auth.load_authentication(profile, refresh_auth=True) is None
        assert auth.token is None

    def test_authenticate_refreshes_expired_token(
        self, router, logged_in: ArkISPAuth, make_auth, profile: Profile, isp_keyring: ArkKeyring
    ) -> None:
        _expire(isp_keyring, profile, "user@acme.com")
        router.add(REFRESH, _refreshed)
        token = make_auth().authenticate(profile, refresh_auth=True)
        assert token.token == REFRESHED
        assert len(router.calls(START)) == 1


# ---------------------------------------------------------------------------
# Clients
# ---------------------------------------------------------------------------


class TestClient:
    def test_requires_token(self, make_auth) -> None:
        with pytest.raises(AuthError, match="not authenticated"):
            make_auth().client("https://acme.cyberark.cloud/api")

    def test_client_carries_token(self, router, logged_in: ArkISPAuth) -> None:
        router.add("/api/things", {"items": []})
        client = logged_in.client("https://acme.cyberark.cloud/api", transport=router.transport)
        response = client.get("things")
        assert response.status_code == 200
        assert router.calls("/api/things")[0].headers["Authorization"] == f"Bearer {TOKEN}"

    def test_client_reloads_token_on_401(self, router, logged_in: ArkISPAuth) -> None:
        router.add("/api/things", httpx.Response(401), {"items": []})
        client = logged_in.client("https://acme.cyberark.cloud/api", transport=router.transport)
        response = client.get("things")
        assert response.status_code == 200
        assert len(router.calls("/api/things")) == 2

    def test_token_cookies(self, logged_in: ArkISPAuth) -> None:
        assert logged_in.token is not None
        cookies = token_cookies(logged_in.token)
        assert cookies is not None
        assert list(cookies.jar) == []


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


class TestAuthManager:
    def test_default_manager(self) -> None:
        manager = create_default_manager(cache_authentication=False)
        assert manager.names() == ["isp"]
        assert isinstance(manager.get("isp"), ArkISPAuth)
        assert [a.authenticator_name for a in manager] == ["isp"]

    def test_unknown_authenticator(self) -> None:
        manager = AuthManager()
        with pytest.raises(ConfigError, match="Available: \\(none\\)"):
            manager.get("pcloud")

    def test_register_replaces(self, make_auth) -> None:
        manager = AuthManager()
        first, second = make_auth(), make_auth()
        manager.register(first)
        manager.register(second)
        assert manager.get("isp") is second
