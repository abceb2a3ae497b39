"""Tests for the short-lived StartAuthentication response cache."""

from __future__ import annotations

import threading

from arkauth.auth.identity import LastStartAuthCache
from arkauth.auth.identity.schemas import StartAuthResponse
from arkauth.auth.identity.start_auth_cache import START_AUTH_TTL


URL = "https://aax1234.id.cyberark.cloud"


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def _response(session_id: str = "sess-1") -> StartAuthResponse:
    return StartAuthResponse.model_validate({"success": True, "Result": {"SessionId": session_id}})


class TestLastStartAuthCache:
    def test_pop_returns_fresh_entry(self) -> None:
        clock = FakeClock()
        cache = LastStartAuthCache(clock=clock)
        cache.put(URL, "user@acme.com", _response(), {"sid": "abc"})

        clock.now += START_AUTH_TTL - 1
        entry = cache.pop(URL, "user@acme.com")

        assert entry is not None
        assert entry.response.result.session_id == "sess-1"
        assert entry.cookies == {"sid": "abc"}
        assert entry.timestamp == 100.0

    def test_pop_consumes(self) -> None:
        cache = LastStartAuthCache(clock=FakeClock())
        cache.put(URL, "user@acme.com", _response())
        assert cache.pop(URL, "user@acme.com") is not None
        assert cache.pop(URL, "user@acme.com") is None
        assert len(cache) == 0

    def test_stale_entry_is_dropped(self) -> None:
        clock = FakeClock()
        cache = LastStartAuthCache(clock=clock)
        cache.put(URL, "user@acme.com", _response())
        clock.now += START_AUTH_TTL + 1
        assert cache.pop(URL, "user@acme.com") is None
        assert len(cache) == 0

    def test_keyed_by_url_and_user(self) -> None:
        cache = LastStartAuthCache(clock=FakeClock())
        cache.put(URL, "user@acme.com", _response("a"))
        cache.put(URL, "other@acme.com", _response("b"))
        cache.put("https://other.id.cyberark.cloud", "user@acme.com", _response("c"))
        assert len(cache) == 3

        entry = cache.pop(URL, "other@acme.com")
        assert entry is not None and entry.response.result.session_id == "b"
        assert cache.pop("https://nowhere", "user@acme.com") is None

    def test_put_replaces(self) -> None:
        cache = LastStartAuthCache(clock=FakeClock())
        cache.put(URL, "user@acme.com", _response("old"))
        cache.put(URL, "user@acme.com", _response("new"))
        entry = cache.pop(URL, "user@acme.com")
        assert entry is not None and entry.response.result.session_id == "new"

    def test_cookies_are_copied(self) -> None:
        cookies = {"sid": "abc"}
        cache = LastStartAuthCache(clock=FakeClock())
        cache.put(URL, "user@acme.com", _response(), cookies)
        cookies["sid"] = "changed"
        entry = cache.pop(URL, "user@acme.com")
        assert entry is not None and entry.cookies == {"sid": "abc"}

    def test_clear(self) -> None:
        cache = LastStartAuthCache(clock=FakeClock())
        cache.put(URL, "user@acme.com", _response())
        cache.clear()
        assert len(cache) == 0

    def test_concurrent_puts(self) -> None:
        cache = LastStartAuthCache(clock=FakeClock())

        def _put(index: int) -> None:
            cache.put(URL, f"user{index}@acme.com", _response(str(index)))

        threads = [threading.Thread(target=_put, args=(i,)) for i in range(20)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert len(cache) == 20

    def test_put_prunes_expired_entries(self) -> None:
        clock = FakeClock()
        cache = LastStartAuthCache(clock=clock)
        cache.put(URL, "probe@acme.com", _response("old"))
        clock.now += START_AUTH_TTL + 1
        cache.put(URL, "user@acme.com", _response("new"))

        assert len(cache) == 1
        assert cache.pop(URL, "probe@acme.com") is None
        entry = cache.pop(URL, "user@acme.com")
        assert entry is not None and entry.response.result.session_id == "new"
