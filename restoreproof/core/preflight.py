"""Readiness checks run before any recovery is submitted.

Every check runs independently and contributes findings to one report. A
check that itself crashes is recorded as a finding rather than aborting the
others. Only blocking findings stop a run; advisories are always surfaced.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable

from restoreproof.core.context import RunContext
from restoreproof.models.inventory import (
    BackupJob,
    ClusterHealth,
    ClusterInfo,
    Consistency,
    IsolatedNetwork,
    JobLastResult,
    JobRunState,
    RestorePoint,
    StorageTarget,
)
from restoreproof.models.results import IssueSeverity, PreflightIssue, PreflightReport
from restoreproof.models.session import RecoveryStrategy

logger = logging.getLogger(__name__)

# Concurrent recoveries a single host is expected to absorb.
CONCURRENCY_PER_NODE = 3

PRODUCTION_NAME_PATTERN = re.compile(r"prod|corp|(^|[^a-z])live([^a-z]|$)", re.IGNORECASE)

Check = Callable[[], list[PreflightIssue]]


def _issue(check: str, severity: IssueSeverity, message: str, subject: str | None = None) -> PreflightIssue:
    return PreflightIssue(check=check, severity=severity, message=message, subject=subject)


class PreflightValidator:
    """Validates that a run can start safely.

    Args:
        context: Run context receiving the findings as events.
        reachability_probe: Checks the instant-recovery endpoint. Its outcome
            blocks only the mount strategy, which depends on it.
    """

    def __init__(
        self,
        context: RunContext,
        reachability_probe: Callable[[], bool] | None = None,
    ) -> None:
        self._context = context
        self._probe = reachability_probe

    def validate(
        self,
        clusters: list[ClusterInfo],
        network: IsolatedNetwork | None,
        restore_points: list[RestorePoint],
        jobs: list[BackupJob],
        concurrency_cap: int,
        max_age_days: float,
        strategy: RecoveryStrategy,
        storage: list[StorageTarget] | None = None,
        storage_target: str | None = None,
    ) -> PreflightReport:
        """Run all checks and merge their findings."""
        checks: list[tuple[str, IssueSeverity, Check]] = [
            ("control_plane_health", IssueSeverity.ADVISORY, lambda: self.check_cluster_health(clusters)),
            ("capacity", IssueSeverity.ADVISORY, lambda: self.check_capacity(clusters, concurrency_cap)),
            ("isolated_network", IssueSeverity.BLOCKING, lambda: self.check_network(network)),
            ("consistency", IssueSeverity.ADVISORY, lambda: self.check_consistency(restore_points)),
            (
                "recency",
                IssueSeverity.ADVISORY,
                lambda: self.check_recency(restore_points, max_age_days),
            ),
            ("backup_jobs", IssueSeverity.ADVISORY, lambda: self.check_jobs(jobs)),
            ("reachability", IssueSeverity.BLOCKING, lambda: self.check_reachability(strategy)),
        ]
        if strategy == RecoveryStrategy.FULL_COPY:
            checks.append(
                (
                    "storage_target",
                    IssueSeverity.BLOCKING,
                    lambda: self.check_storage(storage or [], storage_target, restore_points),
                )
            )

        issues: list[PreflightIssue] = []
        for name, failure_severity, check in checks:
            try:
                issues.extend(check())
            except Exception as e:
                logger.exception("[PREFLIGHT] Check %s crashed", name)
                issues.append(_issue(name, failure_severity, f"Check could not run: {e}"))

        report = PreflightReport(issues=issues)
        for issue in report.blocking:
            self._context.event(logging.ERROR, f"Preflight blocking: {issue.message}", workload=issue.subject)
        for issue in report.advisory:
            self._context.event(logging.WARNING, f"Preflight advisory: {issue.message}", workload=issue.subject)
        self._context.event(
            logging.INFO,
            f"Preflight finished: {len(report.blocking)} blocking, {len(report.advisory)} advisory",
        )
        return report

    def check_cluster_health(self, clusters: list[ClusterInfo]) -> list[PreflightIssue]:
        if not clusters:
            return [_issue("control_plane_health", IssueSeverity.ADVISORY, "No clusters reported by the hypervisor")]
        issues = []
        for cluster in clusters:
            if cluster.health in (ClusterHealth.CRITICAL, ClusterHealth.FAILED):
                severity = IssueSeverity.BLOCKING
            elif cluster.health in (ClusterHealth.DEGRADED, ClusterHealth.UNKNOWN):
                severity = IssueSeverity.ADVISORY
            else:
                continue
            issues.append(
                _issue(
                    "control_plane_health",
                    severity,
                    f"Cluster '{cluster.name}' health is {cluster.health.value}",
                    subject=cluster.name,
                )
            )
        return issues

    def check_capacity(self, clusters: list[ClusterInfo], concurrency_cap: int) -> list[PreflightIssue]:
        nodes = sum(c.node_count for c in clusters)
        limit = nodes * CONCURRENCY_PER_NODE
        if concurrency_cap > limit:
            return [
                _issue(
                    "capacity",
                    IssueSeverity.ADVISORY,
                    f"Concurrency cap {concurrency_cap} exceeds {limit} "
                    f"({nodes} node(s) x {CONCURRENCY_PER_NODE})",
                )
            ]
        return []

    def check_network(self, network: IsolatedNetwork | None) -> list[PreflightIssue]:
        if network is None or not network.id:
            return [_issue("isolated_network", IssueSeverity.BLOCKING, "Isolated network could not be resolved")]
        issues = []
        if not network.segment_id:
            issues.append(
                _issue(
                    "isolated_network",
                    IssueSeverity.ADVISORY,
                    f"Isolated network '{network.name}' has no segment id; isolation cannot be confirmed",
                )
            )
        if PRODUCTION_NAME_PATTERN.search(network.name):
            issues.append(
                _issue(
                    "isolated_network",
                    IssueSeverity.ADVISORY,
                    f"Isolated network name '{network.name}' looks like a production network",
                )
            )
        return issues

    def check_consistency(self, restore_points: list[RestorePoint]) -> list[PreflightIssue]:
        return [
            _issue(
                "consistency",
                IssueSeverity.ADVISORY,
                f"Restore point is {rp.consistency.value.replace('_', '-')}",
                subject=rp.workload.name,
            )
            for rp in restore_points
            if rp.consistency != Consistency.APPLICATION
        ]

    def check_recency(self, restore_points: list[RestorePoint], max_age_days: float) -> list[PreflightIssue]:
        now = self._context.now()
        issues = []
        for rp in restore_points:
            age = rp.age_days(now)
            if age > max_age_days:
                issues.append(
                    _issue(
                        "recency",
                        IssueSeverity.ADVISORY,
                        f"Restore point is {age:.1f} days old (limit {max_age_days:g})",
                        subject=rp.workload.name,
                    )
                )
        return issues

    def check_jobs(self, jobs: list[BackupJob]) -> list[PreflightIssue]:
        issues = []
        for job in jobs:
            if job.run_state == JobRunState.RUNNING:
                issues.append(
                    _issue("backup_jobs", IssueSeverity.ADVISORY, f"Backup job '{job.name}' is running", job.name)
                )
            if job.last_result == JobLastResult.FAILED:
                issues.append(
                    _issue(
                        "backup_jobs",
                        IssueSeverity.ADVISORY,
                        f"Backup job '{job.name}' last run failed",
                        job.name,
                    )
                )
        return issues

    def check_reachability(self, strategy: RecoveryStrategy) -> list[PreflightIssue]:
        if self._probe is None or self._probe():
            return []
        severity = IssueSeverity.BLOCKING if strategy == RecoveryStrategy.MOUNT else IssueSeverity.ADVISORY
        return [_issue("reachability", severity, "Instant-recovery endpoint is unreachable")]

    def check_storage(
        self,
        storage: list[StorageTarget],
        storage_target: str | None,
        restore_points: list[RestorePoint],
    ) -> list[PreflightIssue]:
        target = next((s for s in storage if s.name == storage_target), None)
        if target is None:
            return [
                _issue("storage_target", IssueSeverity.BLOCKING, f"Storage target '{storage_target}' not found")
            ]
        required = sum(rp.size_bytes or 0 for rp in restore_points)
        if target.free_bytes is not None and target.free_bytes < required:
            return [
                _issue(
                    "storage_target",
                    IssueSeverity.ADVISORY,
                    f"Storage target '{target.name}' has {target.free_bytes} bytes free, "
                    f"restore points need about {required}",
                )
            ]
        return []
