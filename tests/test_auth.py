"""Tests for the auth retry wrapper and the OAuth2 refresh-token flow."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING
from urllib.parse import parse_qs

import httpx
import pytest

from mediaops._auth import (
    AuthRetryWrapper,
    OAuth2TokenRefresher,
    OAuthClientConfig,
    OAuthToken,
    TokenRefresher,
    with_auto_reauth,
)
from mediaops._errors import AuthenticationExpired, AuthenticationRequiredError, NotFound, RemoteConnectionError
from tests.fakes import FakeClock, StubRefresher

if TYPE_CHECKING:
    from collections.abc import Callable

TOKEN_URL = "https://auth.example/token"


def _flaky(failures: int, result: str = "ok") -> tuple[Callable[[], str], list[int]]:
    calls: list[int] = []

    def action() -> str:
        calls.append(1)
        if len(calls) <= failures:
            raise AuthenticationExpired(provider="dropbox", path="/a.jpg")
        return result

    return action, calls


class TestAuthRetryWrapper:
    def test_passes_through_non_cloud_calls(self) -> None:
        action, calls = _flaky(0)
        assert AuthRetryWrapper(StubRefresher()).call(None, action) == "ok"
        assert len(calls) == 1

    def test_refresh_then_replay(self) -> None:
        refresher = StubRefresher(succeeds=True)
        action, calls = _flaky(1)
        assert AuthRetryWrapper(refresher).call("dropbox", action) == "ok"
        assert len(calls) == 2
        assert refresher.calls == ["dropbox"]

    def test_failed_refresh_requires_auth(self) -> None:
        action, calls = _flaky(1)
        with pytest.raises(AuthenticationRequiredError) as exc_info:
            AuthRetryWrapper(StubRefresher()).call("dropbox", action)
        assert exc_info.value.provider == "dropbox"
        assert exc_info.value.path == "/a.jpg"
        assert len(calls) == 1

    def test_at_most_one_replay(self) -> None:
        refresher = StubRefresher(succeeds=True)
        action, calls = _flaky(5)
        with pytest.raises(AuthenticationRequiredError):
            AuthRetryWrapper(refresher).call("dropbox", action)
        assert len(calls) == 2
        assert refresher.calls == ["dropbox"]

    def test_no_refresher(self) -> None:
        action, _ = _flaky(1)
        with pytest.raises(AuthenticationRequiredError):
            with_auto_reauth("dropbox", action)

    def test_refresher_errors_count_as_failure(self) -> None:
        class Broken:
            def refresh(self, provider: str) -> bool:
                raise RemoteConnectionError("token endpoint down")

        action, _ = _flaky(1)
        with pytest.raises(AuthenticationRequiredError):
            AuthRetryWrapper(Broken()).call("dropbox", action)

    def test_other_errors_untouched(self) -> None:
        def action() -> str:
            raise NotFound("gone")

        with pytest.raises(NotFound):
            AuthRetryWrapper(StubRefresher(succeeds=True)).call("dropbox", action)

    def test_stub_is_a_token_refresher(self) -> None:
        assert isinstance(StubRefresher(), TokenRefresher)


class TestOAuthToken:
    def test_no_expiry_never_expires(self) -> None:
        assert not OAuthToken("a", "r").is_expired(1e12)

    def test_leeway(self) -> None:
        token = OAuthToken("a", "r", expires_at=1000.0)
        assert not token.is_expired(969.0)
        assert token.is_expired(970.0)


class TestOAuth2TokenRefresher:
    @pytest.fixture
    def requests(self) -> list[httpx.Request]:
        return []

    def _refresher(
        self, requests: list[httpx.Request], response: httpx.Response, clock: FakeClock
    ) -> OAuth2TokenRefresher:
        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return response

        return OAuth2TokenRefresher(
            {"dropbox": OAuthClientConfig(TOKEN_URL, "app-id", "app-secret", "files.read")},
            http=httpx.Client(transport=httpx.MockTransport(handler)),
            clock=clock,
        )

    def test_refresh_grant(self, requests: list[httpx.Request]) -> None:
        clock = FakeClock(1000.0)
        body = {"access_token": "new-access", "refresh_token": "new-refresh", "expires_in": 3600}
        refresher = self._refresher(requests, httpx.Response(200, json=body), clock)
        refresher.seed_refresh_token("dropbox", "old-refresh")

        with pytest.raises(AuthenticationExpired):
            refresher.access_token("dropbox")
        assert refresher.refresh("dropbox") is True
        assert refresher.access_token("dropbox") == "new-access"

        form = parse_qs(requests[0].content.decode())
        assert form["grant_type"] == ["refresh_token"]
        assert form["refresh_token"] == ["old-refresh"]
        assert form["client_secret"] == ["app-secret"]
        assert form["scope"] == ["files.read"]

        clock.advance(3600)
        with pytest.raises(AuthenticationExpired):
            refresher.access_token("dropbox")

    def test_keeps_refresh_token_when_not_rotated(self, requests: list[httpx.Request]) -> None:
        refresher = self._refresher(requests, httpx.Response(200, json={"access_token": "a1"}), FakeClock())
        refresher.seed_refresh_token("dropbox", "r0")
        refresher.refresh("dropbox")
        refresher.refresh("dropbox")
        assert parse_qs(requests[1].content.decode())["refresh_token"] == ["r0"]

    def test_rejected_refresh(self, requests: list[httpx.Request]) -> None:
        response = httpx.Response(400, content=json.dumps({"error": "invalid_grant"}).encode())
        refresher = self._refresher(requests, response, FakeClock())
        refresher.seed_refresh_token("dropbox", "revoked")
        assert refresher.refresh("dropbox") is False

    @pytest.mark.parametrize("body", [b"<html>oops</html>", b'{"token_type": "Bearer"}', b"[]"])
    def test_unusable_token_body(self, requests: list[httpx.Request], body: bytes) -> None:
        refresher = self._refresher(requests, httpx.Response(200, content=body), FakeClock())
        refresher.seed_refresh_token("dropbox", "r0")
        assert refresher.refresh("dropbox") is False
        with pytest.raises(AuthenticationExpired):
            refresher.access_token("dropbox")

    def test_nothing_to_refresh(self, requests: list[httpx.Request]) -> None:
        refresher = self._refresher(requests, httpx.Response(200, json={}), FakeClock())
        assert refresher.refresh("dropbox") is False
        assert refresher.refresh("onedrive") is False
        assert requests == []

    def test_seed_keeps_current_token(self, requests: list[httpx.Request]) -> None:
        refresher = self._refresher(requests, httpx.Response(200, json={}), FakeClock())
        refresher.set_token("dropbox", OAuthToken("live", "r0"))
        refresher.seed_refresh_token("dropbox", "r0")
        assert refresher.access_token("dropbox") == "live"
        refresher.seed_refresh_token("dropbox", "r1")
        with pytest.raises(AuthenticationExpired):
            refresher.access_token("dropbox")

    def test_unreachable_endpoint(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        refresher = OAuth2TokenRefresher(
            {"dropbox": OAuthClientConfig(TOKEN_URL, "app-id")},
            http=httpx.Client(transport=httpx.MockTransport(handler)),
        )
        refresher.seed_refresh_token("dropbox", "r0")
        with pytest.raises(RemoteConnectionError):
            refresher.refresh("dropbox")
