"""API error taxonomy."""

from __future__ import annotations

from enum import StrEnum


class ApiErrorKind(StrEnum):
    """Typed API failure classes used for deterministic retry decisions."""

    FATAL = "fatal"
    UNAUTHORIZED = "unauthorized"
    RATE_LIMITED = "rate_limited"
    SERVER = "server"
    NETWORK = "network"
    DECODE = "decode"


RETRYABLE_KINDS = frozenset({ApiErrorKind.RATE_LIMITED, ApiErrorKind.SERVER, ApiErrorKind.NETWORK})


class ApiError(Exception):
    """Error raised by the API client once a call cannot succeed.

    Attributes:
        kind: Failure class.
        status_code: HTTP status, if a response was received.
        attempts: Attempts made before giving up.
        retry_after: Server retry hint in seconds, if one was sent.
    """

    def __init__(
        self,
        kind: ApiErrorKind,
        message: str,
        *,
        status_code: int | None = None,
        attempts: int = 1,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code
        self.attempts = attempts
        self.retry_after = retry_after

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404

    def __str__(self) -> str:
        base = super().__str__()
        status = f" (HTTP {self.status_code})" if self.status_code is not None else ""
        return f"[{self.kind.value}] {base}{status}"
