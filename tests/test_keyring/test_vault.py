"""Tests for ArkKeyring: backend selection, fallback, and expiry purge."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from arkauth.exceptions import CacheError
from arkauth.keyring import ArkKeyring, BasicKeyring
from arkauth.models import ArkToken, Profile, TokenType


NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class FailingBackend:
    """Native stand-in whose every call fails."""

    name = "native"

    def __init__(self) -> None:
        self.calls = 0

    def set_password(self, service: str, username: str, password: str) -> None:
        self.calls += 1
        raise CacheError("native store locked")

    def get_password(self, service: str, username: str) -> Optional[str]:
        self.calls += 1
        raise CacheError("native store locked")

    def delete_password(self, service: str, username: str) -> None:
        self.calls += 1
        raise CacheError("native store locked")

    def clear_all_passwords(self) -> None:
        raise CacheError("native store locked")


class MemoryBackend:
    """Working native stand-in."""

    name = "native"

    def __init__(self) -> None:
        self.records: dict[tuple[str, str], str] = {}

    def set_password(self, service: str, username: str, password: str) -> None:
        self.records[(service, username)] = password

    def get_password(self, service: str, username: str) -> Optional[str]:
        return self.records.get((service, username))

    def delete_password(self, service: str, username: str) -> None:
        self.records.pop((service, username), None)

    def clear_all_passwords(self) -> None:
        self.records.clear()


def _token(expires_in: Optional[datetime], **kwargs: object) -> ArkToken:
    return ArkToken(token="tok", username="me", expires_in=expires_in, **kwargs)  # type: ignore[arg-type]


@pytest.fixture
def vault(basic_keyring: BasicKeyring) -> ArkKeyring:
    return ArkKeyring("ark-isp", basic=basic_keyring, clock=lambda: NOW)


@pytest.fixture
def prof() -> Profile:
    return Profile(profile_name="prod")


@pytest.fixture
def native_allowed(monkeypatch: pytest.MonkeyPatch) -> None:
    """Let backend selection pick the native store."""
    monkeypatch.delenv("ARK_BASIC_KEYRING", raising=False)
    monkeypatch.setenv("DBUS_SESSION_BUS_ADDRESS", "unix:path=/run/user/1000/bus")
    monkeypatch.setattr("arkauth.keyring.vault.is_docker", lambda: False)
    monkeypatch.setattr("arkauth.keyring.vault.is_wsl", lambda: False)


# ---------------------------------------------------------------------------
# Keys and round trip
# ---------------------------------------------------------------------------


class TestTokens:
    def test_round_trip(self, vault: ArkKeyring, prof: Profile) -> None:
        token = _token(NOW + timedelta(hours=1), refresh_token="r", metadata={"env": "prod"})
        vault.save_token(prof, token, "me")
        loaded = vault.load_token(prof, "me")
        assert loaded == token

    def test_keys(self, vault: ArkKeyring, prof: Profile, basic_keyring: BasicKeyring) -> None:
        vault.save_token(prof, _token(NOW + timedelta(hours=1)), "me")
        assert basic_keyring.get_password("ark-isp-me", "prod") is not None

    def test_missing(self, vault: ArkKeyring, prof: Profile) -> None:
        assert vault.load_token(prof, "nobody") is None

    def test_clear(self, vault: ArkKeyring, prof: Profile) -> None:
        vault.save_token(prof, _token(NOW + timedelta(hours=1)), "me")
        vault.clear_token(prof, "me")
        assert vault.load_token(prof, "me") is None

    def test_unparseable_record(
        self, vault: ArkKeyring, prof: Profile, basic_keyring: BasicKeyring
    ) -> None:
        basic_keyring.set_password("ark-isp-me", "prod", "{not json")
        with pytest.raises(CacheError):
            vault.load_token(prof, "me")


# ---------------------------------------------------------------------------
# Expiry purge
# ---------------------------------------------------------------------------


class TestExpiry:
    def test_recently_expired_is_kept(self, vault: ArkKeyring, prof: Profile) -> None:
        vault.save_token(prof, _token(NOW - timedelta(seconds=59)), "me")
        assert vault.load_token(prof, "me") is not None

    def test_expired_past_grace_is_purged(
        self, vault: ArkKeyring, prof: Profile, basic_keyring: BasicKeyring
    ) -> None:
        vault.save_token(prof, _token(NOW - timedelta(seconds=61)), "me")
        assert vault.load_token(prof, "me") is None
        assert basic_keyring.get_password("ark-isp-me", "prod") is None

    def test_internal_tokens_are_kept(self, vault: ArkKeyring, prof: Profile) -> None:
        token = _token(NOW - timedelta(hours=1), token_type=TokenType.INTERNAL)
        vault.save_token(prof, token, "me")
        assert vault.load_token(prof, "me") is not None

    def test_refreshable_kept_for_twelve_hours(self, vault: ArkKeyring, prof: Profile) -> None:
        vault.save_token(prof, _token(NOW - timedelta(hours=11), refresh_token="r"), "me")
        assert vault.load_token(prof, "me") is not None

    def test_refreshable_purged_after_twelve_hours(self, vault: ArkKeyring, prof: Profile) -> None:
        vault.save_token(prof, _token(NOW - timedelta(hours=13), refresh_token="r"), "me")
        assert vault.load_token(prof, "me") is None

    def test_no_expiry_is_kept(self, vault: ArkKeyring, prof: Profile) -> None:
        vault.save_token(prof, _token(None), "me")
        assert vault.load_token(prof, "me") is not None

    def test_naive_expiry_is_utc(self, vault: ArkKeyring, prof: Profile) -> None:
        naive = (NOW - timedelta(minutes=5)).replace(tzinfo=None)
        vault.save_token(prof, _token(naive), "me")
        assert vault.load_token(prof, "me") is None


# ---------------------------------------------------------------------------
# Backend selection and fallback
# ---------------------------------------------------------------------------


class TestBackendSelection:
    def test_override_forces_basic(self, basic_keyring: BasicKeyring) -> None:
        vault = ArkKeyring("ark-isp", basic=basic_keyring, native=MemoryBackend())
        assert vault.get_keyring() is basic_keyring

    def test_enforce_basic(self, native_allowed: None, basic_keyring: BasicKeyring) -> None:
        vault = ArkKeyring("ark-isp", basic=basic_keyring, native=MemoryBackend())
        assert vault.get_keyring(enforce_basic=True) is basic_keyring

    def test_native_preferred(self, native_allowed: None, basic_keyring: BasicKeyring) -> None:
        native = MemoryBackend()
        vault = ArkKeyring("ark-isp", basic=basic_keyring, native=native)
        assert vault.get_keyring() is native

    def test_docker_forces_basic(
        self, native_allowed: None, basic_keyring: BasicKeyring, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr("arkauth.keyring.vault.is_docker", lambda: True)
        vault = ArkKeyring("ark-isp", basic=basic_keyring, native=MemoryBackend())
        assert vault.get_keyring() is basic_keyring

    def test_save_falls_back_to_basic(
        self, native_allowed: None, basic_keyring: BasicKeyring, prof: Profile
    ) -> None:
        native = FailingBackend()
        vault = ArkKeyring("ark-isp", basic=basic_keyring, native=native, clock=lambda: NOW)
        vault.save_token(prof, _token(NOW + timedelta(hours=1)), "me")
        assert native.calls == 1
        assert basic_keyring.get_password("ark-isp-me", "prod") is not None

    def test_load_falls_back_to_basic(
        self, native_allowed: None, basic_keyring: BasicKeyring, prof: Profile
    ) -> None:
        ArkKeyring("ark-isp", basic=basic_keyring, clock=lambda: NOW).save_token(
            prof, _token(NOW + timedelta(hours=1)), "me", enforce_basic=True
        )
        native = FailingBackend()
        vault = ArkKeyring("ark-isp", basic=basic_keyring, native=native, clock=lambda: NOW)
        loaded = vault.load_token(prof, "me")
        assert loaded is not None and loaded.token == "tok"
        assert native.calls == 1

    def test_clear_falls_back_to_basic(
        self, native_allowed: None, basic_keyring: BasicKeyring, prof: Profile
    ) -> None:
        ArkKeyring("ark-isp", basic=basic_keyring, clock=lambda: NOW).save_token(
            prof, _token(NOW + timedelta(hours=1)), "me", enforce_basic=True
        )
        native = FailingBackend()
        vault = ArkKeyring("ark-isp", basic=basic_keyring, native=native, clock=lambda: NOW)
        vault.clear_token(prof, "me")
        assert native.calls == 1
        assert basic_keyring.get_password("ark-isp-me", "prod") is None

    def test_basic_failure_surfaces(self, prof: Profile, tmp_path) -> None:
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        vault = ArkKeyring("ark-isp", basic=BasicKeyring(blocker / "sub"), clock=lambda: NOW)
        with pytest.raises(CacheError):
            vault.save_token(prof, _token(NOW + timedelta(hours=1)), "me")
