"""Verification results, preflight findings and the run summary."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from restoreproof.models.inventory import RestorePoint
from restoreproof.models.session import RecoveryStrategy, SessionState


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TestCategory(StrEnum):
    """Grouping of verification tests."""

    __test__ = False

    POWER = "power"
    NETWORK = "network"
    SERVICE = "service"
    APPLICATION = "application"
    CUSTOM = "custom"


class VerificationResult(BaseModel):
    """Outcome of one verification test against one workload."""

    workload_id: str
    workload_name: str
    category: TestCategory
    test_name: str
    passed: bool
    detail: str = ""
    duration_seconds: float = Field(default=0.0, ge=0.0)
    timestamp: datetime = Field(default_factory=_utcnow)

    model_config = {"frozen": True}


class ExecutionGroup(BaseModel):
    """Workloads that recover together; groups run one after another."""

    key: int
    name: str
    members: list[RestorePoint] = Field(default_factory=list)
    synthetic: bool = Field(default=False, description="Catch-all group for unreferenced workloads")

    model_config = {"frozen": True}

    @property
    def workload_names(self) -> list[str]:
        return [rp.workload.name for rp in self.members]


class IssueSeverity(StrEnum):
    """Severity of a preflight finding."""

    OK = "ok"
    ADVISORY = "advisory"
    BLOCKING = "blocking"


class PreflightIssue(BaseModel):
    """A single preflight finding."""

    check: str
    severity: IssueSeverity
    message: str
    subject: str | None = Field(default=None, description="Workload, job or cluster concerned")

    model_config = {"frozen": True}


class PreflightReport(BaseModel):
    """Merged findings of every preflight check."""

    issues: list[PreflightIssue] = Field(default_factory=list)

    model_config = {"frozen": True}

    @property
    def blocking(self) -> list[PreflightIssue]:
        return [i for i in self.issues if i.severity == IssueSeverity.BLOCKING]

    @property
    def advisory(self) -> list[PreflightIssue]:
        return [i for i in self.issues if i.severity == IssueSeverity.ADVISORY]

    @property
    def success(self) -> bool:
        return not self.blocking


class RunEvent(BaseModel):
    """An entry of the run's evidence log."""

    timestamp: datetime = Field(default_factory=_utcnow)
    level: str
    message: str
    workload: str | None = None

    model_config = {"frozen": True}


class WorkloadVerdict(BaseModel):
    """Per-workload rollup."""

    workload_id: str
    workload_name: str
    restore_point_id: str
    restore_point_created_at: datetime
    group: str | None = None
    strategy: RecoveryStrategy
    final_state: SessionState
    passed: bool
    tests_total: int = 0
    tests_passed: int = 0
    recovery_seconds: float | None = None
    rto_met: bool | None = None
    error: str | None = None
    cleanup_error: str | None = None

    model_config = {"frozen": True}


class ComplianceScore(BaseModel):
    """Weighted 0-100 recoverability score."""

    overall_score: float = Field(..., ge=0.0, le=100.0)
    grade: str
    components: dict[str, float] = Field(default_factory=dict)
    weights: dict[str, float] = Field(default_factory=dict)

    model_config = {"frozen": True}


class RunSummary(BaseModel):
    """Everything the reporting collaborator needs about one run."""

    run_id: str
    started_at: datetime
    finished_at: datetime
    strategy: RecoveryStrategy
    dry_run: bool = False
    overall_success: bool
    workloads: list[WorkloadVerdict] = Field(default_factory=list)
    results: list[VerificationResult] = Field(default_factory=list)
    groups: list[list[str]] = Field(default_factory=list)
    cleanup_failures: list[str] = Field(default_factory=list)
    preflight: PreflightReport = Field(default_factory=PreflightReport)
    compliance: ComplianceScore | None = None
    metrics: dict[str, Any] = Field(default_factory=dict)
    events: list[RunEvent] = Field(default_factory=list)

    model_config = {"frozen": True}

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()
