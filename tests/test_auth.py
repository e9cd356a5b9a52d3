"""Tests for token lifecycle management."""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs

import httpx
import pytest

from restoreproof.api.auth import (
    AccessToken,
    OAuth2PasswordProvider,
    TokenManager,
    VSphereSessionProvider,
)
from restoreproof.api.errors import ApiError, ApiErrorKind

T0 = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class ScriptedProvider:
    """Records logins and refreshes; tokens expire an hour after issue."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.logins = 0
        self.refreshes = 0
        self._lock = threading.Lock()

    def _issue(self, prefix: str, count: int) -> AccessToken:
        return AccessToken(
            value=f"{prefix}-{count}",
            expires_at=self.clock() + timedelta(hours=1),
            refresh_token=f"refresh-{count}",
        )

    def authenticate(self) -> AccessToken:
        with self._lock:
            self.logins += 1
            return self._issue("login", self.logins)

    def refresh(self, token: AccessToken) -> AccessToken:
        with self._lock:
            self.refreshes += 1
            return self._issue("refreshed", self.refreshes)


class TestTokenManager:
    """Tests for TokenManager."""

    def test_authenticates_lazily_once(self) -> None:
        """Test that the first call logs in and later calls reuse the token."""
        clock = FakeClock(T0)
        provider = ScriptedProvider(clock)
        manager = TokenManager(provider, clock=clock)

        assert provider.logins == 0
        assert manager.current() == "login-1"
        assert manager.current() == "login-1"
        assert provider.logins == 1

    def test_refreshes_proactively_within_margin(self) -> None:
        """Test refresh when the token is about to expire."""
        clock = FakeClock(T0)
        provider = ScriptedProvider(clock)
        manager = TokenManager(provider, refresh_margin=timedelta(minutes=5), clock=clock)
        manager.current()

        clock.now = T0 + timedelta(minutes=54)
        assert manager.current() == "login-1"

        clock.now = T0 + timedelta(minutes=56)
        assert manager.current() == "refreshed-1"
        assert provider.refreshes == 1

    def test_invalidate_with_stale_value_refreshes_once(self) -> None:
        """Test that many workers rejecting the same token cause one refresh."""
        clock = FakeClock(T0)
        provider = ScriptedProvider(clock)
        manager = TokenManager(provider, clock=clock)
        stale = manager.current()

        barrier = threading.Barrier(8)
        seen: list[str] = []

        def worker() -> None:
            barrier.wait()
            seen.append(manager.invalidate(stale))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert provider.refreshes == 1
        assert set(seen) == {"refreshed-1"}

    def test_failed_refresh_falls_back_to_login(self) -> None:
        """Test re-authentication when the refresh grant is rejected."""
        clock = FakeClock(T0)
        provider = ScriptedProvider(clock)

        def reject(token: AccessToken) -> AccessToken:
            raise ApiError(ApiErrorKind.UNAUTHORIZED, "refresh token expired")

        provider.refresh = reject  # type: ignore[method-assign]
        manager = TokenManager(provider, clock=clock)
        stale = manager.current()

        assert manager.invalidate(stale) == "login-2"


class TestOAuth2PasswordProvider:
    """Tests for the OAuth2 password grant."""

    def test_password_grant(self) -> None:
        """Test the form body and the parsed token."""
        forms: list[dict[str, list[str]]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/oauth2/token"
            forms.append(parse_qs(request.content.decode()))
            return httpx.Response(
                200, json={"access_token": "abc", "expires_in": 900, "refresh_token": "r1"}
            )

        http = httpx.Client(base_url="https://vbr.test", transport=httpx.MockTransport(handler))
        provider = OAuth2PasswordProvider(http, "svc", "secret", clock=lambda: T0)

        token = provider.authenticate()

        assert forms[0]["grant_type"] == ["password"]
        assert forms[0]["username"] == ["svc"]
        assert token.value == "abc"
        assert token.refresh_token == "r1"
        assert token.expires_at == T0 + timedelta(seconds=900)

    def test_rejected_credentials_are_unauthorized(self) -> None:
        """Test that a 400 from the token endpoint maps to UNAUTHORIZED."""
        http = httpx.Client(
            base_url="https://vbr.test",
            transport=httpx.MockTransport(lambda request: httpx.Response(400, json={"error": "invalid_grant"})),
        )
        provider = OAuth2PasswordProvider(http, "svc", "wrong")

        with pytest.raises(ApiError) as exc_info:
            provider.authenticate()

        assert exc_info.value.kind == ApiErrorKind.UNAUTHORIZED

    def test_missing_access_token_is_decode_error(self) -> None:
        """Test a token response without access_token."""
        http = httpx.Client(
            base_url="https://vbr.test",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"token_type": "bearer"})),
        )

        with pytest.raises(ApiError) as exc_info:
            OAuth2PasswordProvider(http, "svc", "secret").authenticate()

        assert exc_info.value.kind == ApiErrorKind.DECODE


class TestVSphereSessionProvider:
    """Tests for vCenter session login."""

    def test_session_login_uses_basic_auth(self) -> None:
        """Test that the session id string becomes the token."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json="session-123")

        http = httpx.Client(base_url="https://vc.test", transport=httpx.MockTransport(handler))
        token = VSphereSessionProvider(http, "admin", "pw").authenticate()

        assert token.value == "session-123"
        assert token.expires_at is None
        assert seen[0].headers["Authorization"].startswith("Basic ")

    def test_non_string_session_is_decode_error(self) -> None:
        """Test that an unexpected session payload is rejected."""
        http = httpx.Client(
            base_url="https://vc.test",
            transport=httpx.MockTransport(lambda request: httpx.Response(201, json={"value": 1})),
        )

        with pytest.raises(ApiError) as exc_info:
            VSphereSessionProvider(http, "admin", "pw").authenticate()

        assert exc_info.value.kind == ApiErrorKind.DECODE
