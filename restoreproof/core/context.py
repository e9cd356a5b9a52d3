"""Per-run state shared explicitly between components."""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable
from datetime import datetime, timezone

from restoreproof.core.metrics import MetricsCollector
from restoreproof.models.results import RunEvent, VerificationResult
from restoreproof.models.session import RecoverySession

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RunContext:
    """State of one verification run, passed to every component.

    Holds the run identity, the evidence event log, the metrics collector,
    the sessions created so far and the verification results. All mutators
    are thread-safe. ``interrupt`` is set only by an operator (e.g. SIGINT);
    waits observe it and fail their own workload, whose cleanup still runs.

    Example:
        >>> context = RunContext()
        >>> context.event(logging.INFO, "Discovery started")
        >>> context.event(logging.WARNING, "No restore point", workload="APP01")
    """

    def __init__(
        self,
        run_id: str | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.run_id = run_id or uuid.uuid4().hex[:12]
        self.clock = clock
        self.started_at = clock()
        self.metrics = MetricsCollector()
        self.interrupt = threading.Event()
        self._lock = threading.Lock()
        self._events: list[RunEvent] = []
        self._sessions: list[RecoverySession] = []
        self._results: list[VerificationResult] = []
        self.metrics.start()

    def now(self) -> datetime:
        return self.clock()

    def event(self, level: int, message: str, workload: str | None = None) -> None:
        """Log ``message`` and append it to the run's evidence log."""
        prefix = f"[{workload}] " if workload else ""
        logger.log(level, "%s%s", prefix, message)
        entry = RunEvent(
            timestamp=self.clock(),
            level=logging.getLevelName(level),
            message=message,
            workload=workload,
        )
        with self._lock:
            self._events.append(entry)

    def add_session(self, session: RecoverySession) -> None:
        with self._lock:
            self._sessions.append(session)

    def add_results(self, results: list[VerificationResult]) -> None:
        with self._lock:
            self._results.extend(results)

    @property
    def events(self) -> list[RunEvent]:
        with self._lock:
            return list(self._events)

    @property
    def sessions(self) -> list[RecoverySession]:
        with self._lock:
            return list(self._sessions)

    @property
    def results(self) -> list[VerificationResult]:
        with self._lock:
            return list(self._results)
