"""Access token lifecycle for the recovery and hypervisor control planes.

This module provides:
- ``AccessToken``: a token value with optional expiry and refresh token
- ``TokenManager``: one shared token per endpoint, refreshed in place
- Providers for the Veeam OAuth2 password grant and vCenter sessions

Concurrency:
    A single token is shared by every worker thread. Refresh is the only
    mutation and happens under a lock. A caller that raced a refresh and
    sent the old value gets a 401, calls ``invalidate`` with that stale
    value, and finds the token already replaced, so no second refresh
    happens.

Security Notes:
- Never log credentials or token values
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Protocol

import httpx

from restoreproof.api.errors import ApiError, ApiErrorKind
from restoreproof.api.retry import classify_status

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_MARGIN = timedelta(minutes=5)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AccessToken:
    """A bearer or session token."""

    value: str
    expires_at: datetime | None = None
    refresh_token: str | None = None

    def expires_within(self, margin: timedelta, now: datetime) -> bool:
        """Whether the token expires within ``margin`` of ``now``."""
        if self.expires_at is None:
            return False
        return self.expires_at - now <= margin


class TokenProvider(Protocol):
    """Obtains tokens from an identity endpoint."""

    def authenticate(self) -> AccessToken:
        """Perform a full login."""
        ...

    def refresh(self, token: AccessToken) -> AccessToken:
        """Exchange ``token`` for a fresh one."""
        ...


class TokenManager:
    """Holds one shared token and keeps it fresh.

    Example:
        >>> manager = TokenManager(OAuth2PasswordProvider(http, user, password))
        >>> headers = {"Authorization": f"Bearer {manager.current()}"}
    """

    def __init__(
        self,
        provider: TokenProvider,
        refresh_margin: timedelta = DEFAULT_REFRESH_MARGIN,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._provider = provider
        self._refresh_margin = refresh_margin
        self._clock = clock
        self._lock = threading.Lock()
        self._token: AccessToken | None = None

    def current(self) -> str:
        """Return a token value, logging in or refreshing first if needed."""
        with self._lock:
            if self._token is None:
                logger.debug("[AUTH] No token yet, authenticating")
                self._token = self._provider.authenticate()
            elif self._token.expires_within(self._refresh_margin, self._clock()):
                logger.debug("[AUTH] Token within refresh margin, refreshing")
                self._token = self._renew(self._token)
            return self._token.value

    def invalidate(self, stale_value: str) -> str:
        """Replace the token after the server rejected ``stale_value``.

        Returns:
            The token value to retry with.
        """
        with self._lock:
            if self._token is not None and self._token.value != stale_value:
                # Another caller already refreshed.
                return self._token.value
            if self._token is None:
                self._token = self._provider.authenticate()
            else:
                logger.info("[AUTH] Token rejected, refreshing")
                self._token = self._renew(self._token)
            return self._token.value

    def _renew(self, token: AccessToken) -> AccessToken:
        if token.refresh_token:
            try:
                return self._provider.refresh(token)
            except ApiError as e:
                logger.warning("[AUTH] Token refresh failed, re-authenticating: %s", e)
        return self._provider.authenticate()


def _expiry_from(payload: dict, now: datetime) -> datetime | None:
    expires_in = payload.get("expires_in")
    if expires_in is None:
        return None
    try:
        return now + timedelta(seconds=float(expires_in))
    except (TypeError, ValueError):
        return None


class OAuth2PasswordProvider:
    """OAuth2 password and refresh-token grants against ``/api/oauth2/token``."""

    def __init__(
        self,
        http: httpx.Client,
        username: str,
        password: str,
        *,
        token_path: str = "/api/oauth2/token",
        extra_headers: dict[str, str] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._http = http
        self._username = username
        self._password = password
        self._token_path = token_path
        self._headers = dict(extra_headers or {})
        self._clock = clock

    def authenticate(self) -> AccessToken:
        return self._grant(
            {"grant_type": "password", "username": self._username, "password": self._password}
        )

    def refresh(self, token: AccessToken) -> AccessToken:
        return self._grant({"grant_type": "refresh_token", "refresh_token": token.refresh_token or ""})

    def _grant(self, form: dict[str, str]) -> AccessToken:
        try:
            response = self._http.post(self._token_path, data=form, headers=self._headers)
        except httpx.TransportError as e:
            raise ApiError(ApiErrorKind.NETWORK, f"Token endpoint unreachable: {e}") from e
        kind = classify_status(response.status_code)
        if kind is not None:
            if kind in (ApiErrorKind.FATAL, ApiErrorKind.UNAUTHORIZED):
                kind = ApiErrorKind.UNAUTHORIZED
            raise ApiError(
                kind,
                f"Token grant '{form['grant_type']}' rejected",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
            value = payload["access_token"]
        except (ValueError, KeyError) as e:
            raise ApiError(ApiErrorKind.DECODE, "Token response missing access_token") from e
        logger.debug("[AUTH] Obtained token via %s grant", form["grant_type"])
        return AccessToken(
            value=value,
            expires_at=_expiry_from(payload, self._clock()),
            refresh_token=payload.get("refresh_token"),
        )


class VSphereSessionProvider:
    """vCenter REST session login (basic auth, session id token)."""

    def __init__(self, http: httpx.Client, username: str, password: str) -> None:
        self._http = http
        self._auth = httpx.BasicAuth(username, password)

    def authenticate(self) -> AccessToken:
        try:
            response = self._http.post("/api/session", auth=self._auth)
        except httpx.TransportError as e:
            raise ApiError(ApiErrorKind.NETWORK, f"vCenter unreachable: {e}") from e
        kind = classify_status(response.status_code)
        if kind is not None:
            raise ApiError(
                ApiErrorKind.UNAUTHORIZED if kind == ApiErrorKind.FATAL else kind,
                "vCenter session login rejected",
                status_code=response.status_code,
            )
        try:
            value = response.json()
        except ValueError as e:
            raise ApiError(ApiErrorKind.DECODE, "vCenter session response not JSON") from e
        if not isinstance(value, str) or not value:
            raise ApiError(ApiErrorKind.DECODE, "vCenter session response missing session id")
        return AccessToken(value=value)

    def refresh(self, token: AccessToken) -> AccessToken:
        # vCenter sessions cannot be refreshed; log in again.
        return self.authenticate()
