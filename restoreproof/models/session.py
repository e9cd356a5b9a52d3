"""Recovery session state machine and recovery-control records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum

from pydantic import BaseModel, Field

from restoreproof.models.inventory import IsolatedNetwork, RestorePoint, Workload


class RecoveryStrategy(StrEnum):
    """Supported recovery strategies."""

    MOUNT = "mount"
    FULL_COPY = "full_copy"


class SessionState(StrEnum):
    """Lifecycle states of a single workload recovery."""

    PENDING = "pending"
    SUBMITTED = "submitted"
    AWAITING_NETWORK_SAFETY = "awaiting_network_safety"
    RUNNING = "running"
    VERIFICATION_IN_PROGRESS = "verification_in_progress"
    CLEANED_UP = "cleaned_up"
    FAILED = "failed"
    CLEANUP_FAILED = "cleanup_failed"


class JobState(StrEnum):
    """Normalised state of an asynchronous recovery job."""

    RUNNING = "running"
    FINISHED = "finished"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


class JobResult(StrEnum):
    """Normalised result of an asynchronous recovery job."""

    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    NONE = "none"
    UNKNOWN = "unknown"


class JobStatus(BaseModel):
    """Snapshot of an asynchronous recovery job."""

    job_id: str
    state: JobState = Field(default=JobState.UNKNOWN)
    result: JobResult = Field(default=JobResult.UNKNOWN)
    message: str = Field(default="")

    model_config = {"frozen": True}

    @property
    def is_terminal(self) -> bool:
        return self.state in (JobState.FINISHED, JobState.CANCELLED)


class MountHandle(BaseModel):
    """Identifiers returned when a mount-based recovery is submitted."""

    mount_id: str
    session_id: str | None = None

    model_config = {"frozen": True}


class NetworkMapping(BaseModel):
    """One entry of a full-copy network remap table."""

    adapter_key: str
    source_network_id: str | None = None
    source_network_name: str | None = None
    target_network_id: str
    target_network_name: str

    model_config = {"frozen": True}


class InvalidTransitionError(RuntimeError):
    """Raised when a session is moved along an edge the state machine forbids."""


_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.PENDING: frozenset({SessionState.SUBMITTED, SessionState.FAILED}),
    SessionState.SUBMITTED: frozenset(
        {SessionState.AWAITING_NETWORK_SAFETY, SessionState.FAILED}
    ),
    SessionState.AWAITING_NETWORK_SAFETY: frozenset(
        {SessionState.RUNNING, SessionState.FAILED}
    ),
    SessionState.RUNNING: frozenset(
        {
            SessionState.VERIFICATION_IN_PROGRESS,
            SessionState.FAILED,
            SessionState.CLEANED_UP,
            SessionState.CLEANUP_FAILED,
        }
    ),
    SessionState.VERIFICATION_IN_PROGRESS: frozenset(
        {SessionState.CLEANED_UP, SessionState.CLEANUP_FAILED, SessionState.FAILED}
    ),
    SessionState.FAILED: frozenset({SessionState.CLEANED_UP, SessionState.CLEANUP_FAILED}),
    SessionState.CLEANED_UP: frozenset(),
    SessionState.CLEANUP_FAILED: frozenset(),
}

# States in which a recovered instance may exist and count against the
# per-group concurrency cap.
ACTIVE_RECOVERY_STATES = frozenset(
    {
        SessionState.SUBMITTED,
        SessionState.AWAITING_NETWORK_SAFETY,
        SessionState.RUNNING,
    }
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RecoverySession:
    """Mutable record of one workload's recovery.

    Owned by a single worker until handed to cleanup. The record outlives the
    underlying instance so that it can be reported on.

    Attributes:
        restore_point: Restore point being recovered.
        strategy: Recovery strategy in use.
        network: Isolated network the instance must end up on.
        instance_name: Temporary instance name.
        instance_id: Hypervisor id once the instance is located.
        mount_id: Instant-recovery mount id (mount strategy only).
        restore_job_id: Asynchronous restore job id (full-copy strategy only).
        mount_released: Whether the mount has already been stopped.
        error: Error captured when recovery or verification failed.
        cleanup_error: Error captured when cleanup failed.
    """

    restore_point: RestorePoint
    strategy: RecoveryStrategy
    network: IsolatedNetwork
    instance_name: str = ""
    instance_id: str | None = None
    original_network_ids: set[str] = field(default_factory=set)
    mount_id: str | None = None
    restore_job_id: str | None = None
    mount_released: bool = False
    state: SessionState = SessionState.PENDING
    error: str | None = None
    cleanup_error: str | None = None
    reached_submitted: bool = False
    submitted_at: datetime | None = None
    running_at: datetime | None = None
    finished_at: datetime | None = None
    history: list[tuple[SessionState, datetime]] = field(default_factory=list)

    @property
    def workload(self) -> Workload:
        return self.restore_point.workload

    @property
    def recovery_failed(self) -> bool:
        return self.error is not None

    @property
    def recovery_seconds(self) -> float | None:
        """Time from submission to the instance running, if it got there."""
        if self.submitted_at is None or self.running_at is None:
            return None
        return (self.running_at - self.submitted_at).total_seconds()

    def can_transition(self, new_state: SessionState) -> bool:
        return new_state in _TRANSITIONS[self.state]

    def transition(self, new_state: SessionState) -> None:
        """Move to ``new_state``, enforcing the lifecycle graph."""
        if not self.can_transition(new_state):
            raise InvalidTransitionError(
                f"{self.workload.name}: cannot move from {self.state.value} to {new_state.value}"
            )
        now = _utcnow()
        self.state = new_state
        self.history.append((new_state, now))
        if new_state == SessionState.SUBMITTED:
            self.reached_submitted = True
            self.submitted_at = now
        elif new_state == SessionState.RUNNING:
            self.running_at = now
        elif new_state in (SessionState.CLEANED_UP, SessionState.CLEANUP_FAILED):
            self.finished_at = now

    def fail(self, error: str) -> None:
        """Record ``error`` and move to FAILED if the state machine allows it."""
        if self.error is None:
            self.error = error
        if self.can_transition(SessionState.FAILED):
            self.transition(SessionState.FAILED)
