"""Authentication retry wrapper and OAuth token refresh.

Cloud adapters raise :class:`AuthenticationExpired` when a provider rejects
the access token. :class:`AuthRetryWrapper` turns that into at most one
silent refresh and one replay; anything beyond that surfaces as
:class:`AuthenticationRequiredError` for the caller to handle interactively.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
from typing import TYPE_CHECKING, Protocol, TypeVar, runtime_checkable

import httpx

from mediaops._errors import AuthenticationExpired, AuthenticationRequiredError, RemoteConnectionError

if TYPE_CHECKING:
    from collections.abc import Callable

    from mediaops._types import Clock

T = TypeVar("T")

log = logging.getLogger(__name__)


@runtime_checkable
class TokenRefresher(Protocol):
    """Performs a silent (non-interactive) token refresh for a provider."""

    def refresh(self, provider: str) -> bool:
        """Return ``True`` if a fresh access token is now available."""
        ...


class AuthRetryWrapper:
    """Wraps backend calls with a bounded refresh-and-replay policy.

    :param refresher: Silent refresh implementation; ``None`` means no refresh is possible.
    """

    def __init__(self, refresher: TokenRefresher | None = None) -> None:
        self._refresher = refresher

    def call(self, provider: str | None, action: Callable[[], T]) -> T:
        """Run ``action``; on an expired token refresh once and replay once.

        Calls for non-cloud backends (``provider is None``) pass through.

        :raises AuthenticationRequiredError: If the refresh fails or the replay is rejected again.
        """
        if provider is None:
            return action()
        try:
            return action()
        except AuthenticationExpired as exc:
            log.info("Token for %s rejected; attempting silent refresh", provider)
            if not self._try_refresh(provider):
                raise AuthenticationRequiredError(provider=provider, path=exc.path) from exc
        try:
            return action()
        except AuthenticationExpired as exc:
            log.warning("Token for %s rejected again after refresh", provider)
            raise AuthenticationRequiredError(provider=provider, path=exc.path) from exc

    def _try_refresh(self, provider: str) -> bool:
        if self._refresher is None:
            return False
        try:
            return bool(self._refresher.refresh(provider))
        except (AuthenticationExpired, AuthenticationRequiredError, RemoteConnectionError) as exc:
            log.warning("Silent refresh for %s failed: %s", provider, exc)
            return False


def with_auto_reauth(
    provider: str | None, action: Callable[[], T], *, refresher: TokenRefresher | None = None
) -> T:
    """Functional form of :meth:`AuthRetryWrapper.call`."""
    return AuthRetryWrapper(refresher).call(provider, action)


# region: OAuth2 refresh-token grant


@dataclasses.dataclass
class OAuthToken:
    """Access/refresh token pair for one provider."""

    access_token: str
    refresh_token: str
    expires_at: float = 0.0
    token_type: str = "Bearer"

    def is_expired(self, now: float, *, leeway: float = 30.0) -> bool:
        return bool(self.expires_at) and now >= self.expires_at - leeway


@dataclasses.dataclass(frozen=True)
class OAuthClientConfig:
    """Token endpoint and client registration of one provider."""

    token_url: str
    client_id: str
    client_secret: str | None = None
    scope: str | None = None


class OAuth2TokenRefresher:
    """Refreshes provider tokens with the standard ``refresh_token`` grant.

    Holds the current tokens in memory; cloud clients read the access token
    through :meth:`access_token`.

    :param clients: Provider id → OAuth client config.
    :param http: Optional ``httpx.Client`` (injected in tests).
    :param clock: Time source for token expiry.
    """

    def __init__(
        self,
        clients: dict[str, OAuthClientConfig],
        *,
        http: httpx.Client | None = None,
        clock: Clock = time.time,
        timeout: float = 15.0,
    ) -> None:
        self._clients = dict(clients)
        self._owns_http = http is None
        self._http = http or httpx.Client(timeout=timeout)
        self._clock = clock
        self._tokens: dict[str, OAuthToken] = {}
        self._lock = threading.Lock()

    def set_token(self, provider: str, token: OAuthToken) -> None:
        with self._lock:
            self._tokens[provider] = token

    def seed_refresh_token(self, provider: str, refresh_token: str) -> None:
        """Hold ``refresh_token`` for ``provider`` unless it is already the current one.

        No access token is held afterwards, so the next call refreshes.
        """
        with self._lock:
            current = self._tokens.get(provider)
            if current is None or current.refresh_token != refresh_token:
                self._tokens[provider] = OAuthToken(access_token="", refresh_token=refresh_token)

    def access_token(self, provider: str) -> str:
        """Current access token.

        :raises AuthenticationExpired: If no token is held or it has expired.
        """
        with self._lock:
            token = self._tokens.get(provider)
        if token is None or not token.access_token or token.is_expired(self._clock()):
            raise AuthenticationExpired(provider=provider)
        return token.access_token

    def refresh(self, provider: str) -> bool:
        client = self._clients.get(provider)
        with self._lock:
            token = self._tokens.get(provider)
        if client is None or token is None or not token.refresh_token:
            log.info("No refresh token available for %s", provider)
            return False
        data = {
            "grant_type": "refresh_token",
            "refresh_token": token.refresh_token,
            "client_id": client.client_id,
        }
        if client.client_secret:
            data["client_secret"] = client.client_secret
        if client.scope:
            data["scope"] = client.scope
        try:
            response = self._http.post(client.token_url, data=data)
        except httpx.TransportError as exc:
            raise RemoteConnectionError(f"Token endpoint unreachable: {exc}", backend=f"cloud:{provider}") from None
        if response.status_code != 200:
            log.warning("Token refresh for %s rejected with HTTP %d", provider, response.status_code)
            return False
        try:
            payload = response.json()
            expires_in = payload.get("expires_in")
            refreshed = OAuthToken(
                access_token=str(payload["access_token"]),
                refresh_token=str(payload.get("refresh_token") or token.refresh_token),
                expires_at=self._clock() + float(expires_in) if expires_in else 0.0,
                token_type=str(payload.get("token_type", "Bearer")),
            )
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            log.warning("Token endpoint for %s returned an unusable body: %s", provider, exc)
            return False
        self.set_token(provider, refreshed)
        log.info("Refreshed access token for %s", provider)
        return True

    def close(self) -> None:
        if self._owns_http:
            self._http.close()


# endregion
