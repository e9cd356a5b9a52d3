"""Shared data models for restoreproof.

Immutable records use frozen Pydantic models; the per-workload recovery
session is a mutable dataclass owned by one worker at a time.
"""

from restoreproof.models.inventory import (
    BackupJob,
    ClusterHealth,
    ClusterInfo,
    Consistency,
    GuestInfo,
    InstanceAdapter,
    InstanceInfo,
    IsolatedNetwork,
    JobLastResult,
    JobRunState,
    PowerState,
    RestorePoint,
    RestorePointMetadata,
    SourceAdapter,
    StorageTarget,
    ToolsState,
    Workload,
)
from restoreproof.models.results import (
    ComplianceScore,
    ExecutionGroup,
    IssueSeverity,
    PreflightIssue,
    PreflightReport,
    RunEvent,
    RunSummary,
    TestCategory,
    VerificationResult,
    WorkloadVerdict,
)
from restoreproof.models.session import (
    JobResult,
    JobState,
    JobStatus,
    MountHandle,
    NetworkMapping,
    RecoverySession,
    RecoveryStrategy,
    SessionState,
)

__all__ = [
    "BackupJob",
    "ClusterHealth",
    "ClusterInfo",
    "ComplianceScore",
    "Consistency",
    "ExecutionGroup",
    "GuestInfo",
    "InstanceAdapter",
    "InstanceInfo",
    "IsolatedNetwork",
    "IssueSeverity",
    "JobLastResult",
    "JobResult",
    "JobRunState",
    "JobState",
    "JobStatus",
    "MountHandle",
    "NetworkMapping",
    "PowerState",
    "PreflightIssue",
    "PreflightReport",
    "RecoverySession",
    "RecoveryStrategy",
    "RestorePoint",
    "RestorePointMetadata",
    "RunEvent",
    "RunSummary",
    "SessionState",
    "SourceAdapter",
    "StorageTarget",
    "TestCategory",
    "ToolsState",
    "VerificationResult",
    "Workload",
    "WorkloadVerdict",
]
