"""Authenticated REST client with token lifecycle and bounded retry.

Each call runs a small state machine:

    Attempt -> Success
            -> Unauthorized (first time) -> invalidate token -> Attempt
            -> Retryable failure -> backoff -> Attempt (within budget)
            -> Fatal failure, or budget exhausted -> raise ApiError

Example:
    >>> http = httpx.Client(base_url="https://vbr:9419", verify=False)
    >>> tokens = TokenManager(OAuth2PasswordProvider(http, "svc", "secret"))
    >>> client = ResilientAPIClient(http, tokens, policy=RetryPolicy.for_profile("balanced"))
    >>> jobs = client.call("GET", "/api/v1/jobs")
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

import httpx

from restoreproof.api.auth import TokenManager
from restoreproof.api.errors import ApiError, ApiErrorKind
from restoreproof.api.retry import RetryPolicy, error_from_response

logger = logging.getLogger(__name__)


class ResilientAPIClient:
    """Executes authenticated requests against one control plane.

    Thread-safe: the underlying ``httpx.Client`` is shared and the token is
    guarded by ``TokenManager``.
    """

    def __init__(
        self,
        http: httpx.Client,
        tokens: TokenManager,
        *,
        policy: RetryPolicy | None = None,
        auth_header: str = "Authorization",
        auth_scheme: str | None = "Bearer",
        default_headers: dict[str, str] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        on_retry: Callable[[ApiError], None] | None = None,
    ) -> None:
        self._http = http
        self._tokens = tokens
        self._policy = policy or RetryPolicy()
        self._auth_header = auth_header
        self._auth_scheme = auth_scheme
        self._default_headers = dict(default_headers or {})
        self._sleep = sleep
        self._on_retry = on_retry

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def call(
        self,
        method: str,
        endpoint: str,
        body: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Execute a request and return the decoded JSON body.

        Args:
            method: HTTP method.
            endpoint: Path relative to the client's base URL.
            body: Optional JSON body.
            params: Optional query parameters.

        Returns:
            Decoded JSON, or None for an empty body.

        Raises:
            ApiError: On a fatal failure or once the attempt budget is spent.
        """
        response = self._execute(method, endpoint, body, params)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ApiError(
                ApiErrorKind.DECODE,
                f"{method} {endpoint} returned a non-JSON body",
                status_code=response.status_code,
            ) from e

    def _execute(
        self,
        method: str,
        endpoint: str,
        body: Any,
        params: dict[str, Any] | None,
    ) -> httpx.Response:
        attempt = 0
        reauthenticated = False
        while True:
            attempt += 1
            token: str | None = None
            try:
                token = self._tokens.current()
                response = self._http.request(
                    method,
                    endpoint,
                    json=body,
                    params=params,
                    headers=self._headers(token),
                )
            except httpx.TransportError as e:
                error = ApiError(
                    ApiErrorKind.NETWORK,
                    f"{method} {endpoint} transport failure: {e}",
                    attempts=attempt,
                )
            except ApiError as e:
                # Token acquisition failed.
                e.attempts = attempt
                error = e
            else:
                if response.status_code < 400:
                    return response
                error = error_from_response(response, attempts=attempt)

            if error.kind == ApiErrorKind.UNAUTHORIZED and token is not None and not reauthenticated:
                reauthenticated = True
                attempt -= 1
                logger.info("[API] %s %s unauthorized, refreshing token", method, endpoint)
                self._tokens.invalidate(token)
                continue

            if not error.retryable:
                if error.is_not_found:
                    logger.debug("[API] %s %s not found", method, endpoint)
                else:
                    logger.error("[API] %s %s failed: %s", method, endpoint, error)
                raise error

            if attempt >= self._policy.max_attempts:
                logger.error(
                    "[API] %s %s giving up after %s attempts: %s",
                    method,
                    endpoint,
                    attempt,
                    error,
                )
                raise error

            delay = self._policy.backoff(attempt, error.retry_after)
            logger.warning(
                "[API] Attempt %s/%s for %s %s failed (%s), retrying in %.1fs",
                attempt,
                self._policy.max_attempts,
                method,
                endpoint,
                error.kind.value,
                delay,
            )
            if self._on_retry is not None:
                self._on_retry(error)
            self._sleep(delay)

    def _headers(self, token: str) -> dict[str, str]:
        headers = {"Accept": "application/json", **self._default_headers}
        headers[self._auth_header] = f"{self._auth_scheme} {token}" if self._auth_scheme else token
        return headers
