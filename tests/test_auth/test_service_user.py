"""Tests for the service-user login (client credentials then authorize)."""

from __future__ import annotations

import json

import httpx
import pytest

from arkauth.auth.identity import ArkIdentityServiceUser
from arkauth.auth.identity.service_user import AUTHORIZE_REDIRECT_URI
from arkauth.exceptions import AuthError, ProtocolError
from arkauth.keyring import ArkKeyring
from arkauth.keyring.vault import utcnow
from arkauth.models import DEFAULT_IDENTITY_APPLICATION, Profile


IDENTITY_URL = "https://aax1234.id.cyberark.cloud"
TOKEN_PATH = f"/Oauth2/Token/{DEFAULT_IDENTITY_APPLICATION}"
AUTHORIZE_PATH = f"/OAuth2/Authorize/{DEFAULT_IDENTITY_APPLICATION}"


def _authorized(id_token: str = "id-token-1") -> httpx.Response:
    return httpx.Response(
        302,
        headers={"Location": f"{AUTHORIZE_REDIRECT_URI}#id_token={id_token}&token_type=Bearer"},
    )


@pytest.fixture
def make_service_user(router, identity_keyring: ArkKeyring):
    def _make(**kwargs: object) -> ArkIdentityServiceUser:
        options: dict = {
            "identity_url": IDENTITY_URL,
            "keyring": identity_keyring,
            "transport": router.transport,
        }
        options.update(kwargs)
        return ArkIdentityServiceUser("svc@acme", "s3cret", **options)

    return _make


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


class TestServiceUserLogin:
    def test_login(self, router, make_service_user, profile: Profile) -> None:
        router.add(TOKEN_PATH, {"access_token": "access-1", "token_type": "Bearer"})
        router.add(AUTHORIZE_PATH, lambda request: _authorized())
        service_user = make_service_user()

        service_user.auth_identity(profile)

        assert service_user.session_token == "id-token-1"
        assert service_user.session.headers["Authorization"] == "Bearer id-token-1"
        assert service_user.session_expiry is not None
        remaining = (service_user.session_expiry - utcnow()).total_seconds()
        assert 4 * 3600 - 60 < remaining <= 4 * 3600

        token_request = router.calls(TOKEN_PATH)[0]
        assert token_request.headers["Authorization"] == "Basic svc@acme:s3cret"
        assert json.loads(token_request.content) == {
            "grant_type": "client_credentials",
            "scope": "api",
        }
        authorize_request = router.calls(AUTHORIZE_PATH)[0]
        assert authorize_request.headers["Authorization"] == "Bearer access-1"
        assert authorize_request.url.params["client_id"] == DEFAULT_IDENTITY_APPLICATION
        assert authorize_request.url.params["response_type"] == "id_token"
        assert authorize_request.url.params["redirect_uri"] == AUTHORIZE_REDIRECT_URI

    def test_custom_application(self, router, make_service_user, profile: Profile) -> None:
        router.add("/Oauth2/Token/my_app", {"access_token": "access-1"})
        router.add("/OAuth2/Authorize/my_app", lambda request: _authorized())
        service_user = make_service_user(app_name="my_app")
        service_user.auth_identity(profile)
        assert service_user.session_token == "id-token-1"

    def test_session_is_cached(
        self, router, make_service_user, profile: Profile, identity_keyring: ArkKeyring
    ) -> None:
        router.add(TOKEN_PATH, {"access_token": "access-1"})
        router.add(AUTHORIZE_PATH, lambda request: _authorized())
        make_service_user().auth_identity(profile)

        cached = identity_keyring.load_token(profile, "svc@acme_identity_service_user")
        assert cached is not None
        assert cached.token == "id-token-1"

        requests_before = len(router.requests)
        again = make_service_user(load_cache=True, cache_profile=profile)
        again.auth_identity(profile)
        assert len(router.requests) == requests_before
        assert again.session_token == "id-token-1"

    def test_force_logs_in_again(self, router, make_service_user, profile: Profile) -> None:
        router.add(TOKEN_PATH, {"access_token": "access-1"})
        router.add(
            AUTHORIZE_PATH,
            lambda request: _authorized("first"),
            lambda request: _authorized("second"),
        )
        make_service_user().auth_identity(profile)
        service_user = make_service_user()
        service_user.auth_identity(profile, force=True)
        assert service_user.session_token == "second"


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestServiceUserFailures:
    def test_token_refused(self, router, make_service_user, profile: Profile) -> None:
        router.add(TOKEN_PATH, httpx.Response(401, json={"error": "invalid_client"}))
        with pytest.raises(AuthError, match="HTTP 401"):
            make_service_user().auth_identity(profile)
        assert router.calls(AUTHORIZE_PATH) == []

    def test_token_missing(self, router, make_service_user, profile: Profile) -> None:
        router.add(TOKEN_PATH, {"token_type": "Bearer"})
        with pytest.raises(ProtocolError, match="access token"):
            make_service_user().auth_identity(profile)

    def test_authorize_not_redirected(self, router, make_service_user, profile: Profile) -> None:
        router.add(TOKEN_PATH, {"access_token": "access-1"})
        router.add(AUTHORIZE_PATH, httpx.Response(200, json={}))
        with pytest.raises(AuthError, match="HTTP 200"):
            make_service_user().auth_identity(profile)

    def test_location_without_fragment(self, router, make_service_user, profile: Profile) -> None:
        router.add(TOKEN_PATH, {"access_token": "access-1"})
        router.add(
            AUTHORIZE_PATH,
            lambda request: httpx.Response(302, headers={"Location": AUTHORIZE_REDIRECT_URI}),
        )
        with pytest.raises(ProtocolError, match="location header"):
            make_service_user().auth_identity(profile)

    def test_fragment_without_id_token(self, router, make_service_user, profile: Profile) -> None:
        router.add(TOKEN_PATH, {"access_token": "access-1"})
        router.add(
            AUTHORIZE_PATH,
            lambda request: httpx.Response(
                302, headers={"Location": f"{AUTHORIZE_REDIRECT_URI}#state=abc"}
            ),
        )
        with pytest.raises(ProtocolError, match="id token"):
            make_service_user().auth_identity(profile)
