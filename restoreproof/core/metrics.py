"""Metrics collection for a verification run.

This module provides metrics tracking for:
- Recovery outcomes and timing
- Verification test outcomes and timing
- Cleanup failures
- API retries
- Concurrent recoveries and their high-water mark

Example:
    >>> from restoreproof.core.metrics import MetricsCollector
    >>>
    >>> metrics = MetricsCollector()
    >>> metrics.start()
    >>> metrics.recovery_started()
    >>> metrics.recovery_finished(success=True, duration_s=42.0)
    >>>
    >>> stats = metrics.get_metrics()
    >>> print(f"Peak concurrency: {stats.peak_concurrent_recoveries}")
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class RunMetrics(BaseModel):
    """Snapshot of run metrics at a point in time.

    Immutable, so it can be embedded in the run summary.

    Attributes:
        recoveries_started: Sessions that reached submission.
        recoveries_succeeded: Sessions that reached RUNNING.
        recoveries_failed: Sessions that failed during recovery.
        avg_recovery_seconds: Mean submission-to-running time.
        tests_passed: Verification tests that passed.
        tests_failed: Verification tests that failed.
        avg_verification_seconds: Mean battery duration per workload.
        cleanups_succeeded: Sessions cleaned up.
        cleanups_failed: Sessions whose cleanup failed.
        api_retries: Retried API calls, by failure kind.
        active_recoveries: Sessions currently between submission and running.
        peak_concurrent_recoveries: Highest value of active_recoveries seen.
        started_at: When collection started.
    """

    recoveries_started: int = Field(default=0, ge=0)
    recoveries_succeeded: int = Field(default=0, ge=0)
    recoveries_failed: int = Field(default=0, ge=0)
    avg_recovery_seconds: float = Field(default=0.0, ge=0.0)

    tests_passed: int = Field(default=0, ge=0)
    tests_failed: int = Field(default=0, ge=0)
    avg_verification_seconds: float = Field(default=0.0, ge=0.0)

    cleanups_succeeded: int = Field(default=0, ge=0)
    cleanups_failed: int = Field(default=0, ge=0)

    api_retries: dict[str, int] = Field(default_factory=dict)

    active_recoveries: int = Field(default=0, ge=0)
    peak_concurrent_recoveries: int = Field(default=0, ge=0)

    started_at: datetime | None = Field(default=None)

    model_config = {"frozen": True}

    @property
    def recovery_success_rate(self) -> float:
        """Share of started recoveries that reached RUNNING (0.0 to 1.0)."""
        if self.recoveries_started == 0:
            return 0.0
        return self.recoveries_succeeded / self.recoveries_started

    @property
    def tests_total(self) -> int:
        return self.tests_passed + self.tests_failed


@dataclass
class _TimingStats:
    """Internal helper for tracking timing statistics."""

    total_s: float = 0.0
    count: int = 0

    def record(self, duration_s: float) -> None:
        """Record a timing measurement."""
        self.total_s += duration_s
        self.count += 1

    @property
    def average_s(self) -> float:
        """Get average duration in seconds."""
        if self.count == 0:
            return 0.0
        return self.total_s / self.count


class MetricsCollector:
    """Collects metrics while workers recover and verify workloads.

    Thread-safe; every worker in a group records into the same collector.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()

        self._recovery_timing = _TimingStats()
        self._verification_timing = _TimingStats()

        self._recoveries_started = 0
        self._recoveries_succeeded = 0
        self._recoveries_failed = 0

        self._tests_passed = 0
        self._tests_failed = 0

        self._cleanups_succeeded = 0
        self._cleanups_failed = 0

        self._api_retries: dict[str, int] = {}

        self._active = 0
        self._peak_active = 0

        self._started_at: datetime | None = None

    def start(self) -> None:
        """Mark the start of metrics collection."""
        with self._lock:
            self._started_at = datetime.now(timezone.utc)

    def recovery_started(self) -> None:
        """Record that a session was submitted and now holds a recovery slot."""
        with self._lock:
            self._recoveries_started += 1
            self._active += 1
            self._peak_active = max(self._peak_active, self._active)

    def recovery_finished(self, success: bool, duration_s: float | None = None) -> None:
        """Record that a submitted session left the recovery phase.

        Args:
            success: Whether the instance reached RUNNING.
            duration_s: Submission-to-running time, when successful.
        """
        with self._lock:
            self._active = max(0, self._active - 1)
            if success:
                self._recoveries_succeeded += 1
                if duration_s is not None:
                    self._recovery_timing.record(duration_s)
            else:
                self._recoveries_failed += 1

    def record_verification(self, passed: int, failed: int, duration_s: float) -> None:
        """Record one workload's verification battery."""
        with self._lock:
            self._tests_passed += passed
            self._tests_failed += failed
            self._verification_timing.record(duration_s)

    def record_cleanup(self, success: bool) -> None:
        with self._lock:
            if success:
                self._cleanups_succeeded += 1
            else:
                self._cleanups_failed += 1

    def record_api_retry(self, kind: str) -> None:
        with self._lock:
            self._api_retries[kind] = self._api_retries.get(kind, 0) + 1

    @property
    def peak_concurrent_recoveries(self) -> int:
        with self._lock:
            return self._peak_active

    def get_metrics(self) -> RunMetrics:
        """Get a snapshot of current metrics."""
        with self._lock:
            return RunMetrics(
                recoveries_started=self._recoveries_started,
                recoveries_succeeded=self._recoveries_succeeded,
                recoveries_failed=self._recoveries_failed,
                avg_recovery_seconds=self._recovery_timing.average_s,
                tests_passed=self._tests_passed,
                tests_failed=self._tests_failed,
                avg_verification_seconds=self._verification_timing.average_s,
                cleanups_succeeded=self._cleanups_succeeded,
                cleanups_failed=self._cleanups_failed,
                api_retries=dict(self._api_retries),
                active_recoveries=self._active,
                peak_concurrent_recoveries=self._peak_active,
                started_at=self._started_at,
            )
