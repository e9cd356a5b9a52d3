"""API failure classification and bounded retry policies."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

import httpx

from restoreproof.api.errors import ApiError, ApiErrorKind

logger = logging.getLogger(__name__)

RETRY_AFTER_MAX_SECONDS = 300.0


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and backoff shape for API calls."""

    max_attempts: int = 4
    backoff_base: float = 2.0
    backoff_cap_seconds: float = 30.0
    retry_after_max_seconds: float = RETRY_AFTER_MAX_SECONDS

    @classmethod
    def for_profile(cls, profile: str) -> RetryPolicy:
        """Resolve a named retry profile to an attempt budget."""
        normalized = profile.strip().lower()
        if normalized == "conservative":
            return cls(max_attempts=3)
        if normalized == "aggressive":
            return cls(max_attempts=6)
        # Default "balanced"
        return cls()

    def backoff(self, attempt: int, retry_after: float | None = None) -> float:
        """Delay before the next attempt after ``attempt`` failed.

        Exponential in the attempt number and capped; a server retry hint
        widens the delay but is itself clamped.
        """
        delay = min(self.backoff_base**attempt, self.backoff_cap_seconds)
        if retry_after is not None and retry_after > 0:
            delay = max(delay, min(retry_after, self.retry_after_max_seconds))
        return delay


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header given as seconds or an HTTP date."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.debug("Ignoring unparseable Retry-After header: %r", value)
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


def classify_status(status_code: int) -> ApiErrorKind | None:
    """Map an HTTP status to a failure class, or None for success."""
    if status_code < 400:
        return None
    if status_code == 401:
        return ApiErrorKind.UNAUTHORIZED
    if status_code == 429:
        return ApiErrorKind.RATE_LIMITED
    if status_code >= 500:
        return ApiErrorKind.SERVER
    return ApiErrorKind.FATAL


def error_from_response(response: httpx.Response, attempts: int = 1) -> ApiError:
    """Build an ApiError describing a failed response."""
    kind = classify_status(response.status_code) or ApiErrorKind.FATAL
    detail = response.text[:300] if response.content else response.reason_phrase
    return ApiError(
        kind,
        f"{response.request.method} {response.request.url.path} failed: {detail}",
        status_code=response.status_code,
        attempts=attempts,
        retry_after=parse_retry_after(response.headers.get("Retry-After")),
    )
