"""Restore point discovery."""

from __future__ import annotations

import fnmatch
import logging

from restoreproof.api.errors import ApiError
from restoreproof.core.context import RunContext
from restoreproof.core.errors import DiscoveryError
from restoreproof.interfaces.backup import BackupCatalogAPI
from restoreproof.models.inventory import BackupJob, RestorePoint, Workload

logger = logging.getLogger(__name__)


def matches_filter(value: str, patterns: list[str] | None) -> bool:
    """Case-insensitive name or shell-pattern match; no patterns matches all."""
    if not patterns:
        return True
    lowered = value.lower()
    return any(fnmatch.fnmatchcase(lowered, pattern.lower()) for pattern in patterns)


def latest_restore_point(points: list[RestorePoint]) -> RestorePoint | None:
    """Most recent point; ties on timestamp go to the highest id."""
    if not points:
        return None
    return max(points, key=lambda rp: (rp.created_at, rp.id))


class RestorePointCatalog:
    """Selects the latest restore point of every in-scope workload."""

    def __init__(self, api: BackupCatalogAPI, context: RunContext) -> None:
        self._api = api
        self._context = context
        self.jobs: list[BackupJob] = []
        self.known_workloads: list[Workload] = []

    def discover(
        self,
        job_filter: list[str] | None = None,
        workload_filter: list[str] | None = None,
    ) -> list[RestorePoint]:
        """Discover the latest restore point per matching workload.

        Args:
            job_filter: Job names or patterns; None or empty selects all jobs.
            workload_filter: Workload names or patterns; None or empty selects all.

        Returns:
            One restore point per workload, sorted by workload name.

        Raises:
            DiscoveryError: If jobs cannot be listed, no job matches, or no
                restore point exists in scope.
        """
        try:
            all_jobs = self._api.list_jobs()
        except ApiError as e:
            raise DiscoveryError(f"Could not list backup jobs: {e}") from e
        jobs = [job for job in all_jobs if matches_filter(job.name, job_filter)]
        if not jobs:
            raise DiscoveryError(
                f"No backup jobs match filter {job_filter or ['*']}"
            )
        self.jobs = jobs
        self._context.event(logging.INFO, f"Discovered {len(jobs)} backup job(s)")

        selected: dict[str, RestorePoint] = {}
        known: dict[str, Workload] = {}
        for job in jobs:
            try:
                workloads = self._api.list_job_workloads(job)
            except ApiError as e:
                self._context.event(logging.WARNING, f"Could not list workloads of job '{job.name}', skipping: {e}")
                continue
            for workload in workloads:
                if not matches_filter(workload.name, workload_filter):
                    continue
                known.setdefault(workload.id, workload)
                try:
                    latest = latest_restore_point(self._api.list_restore_points(workload))
                except ApiError as e:
                    self._context.event(
                        logging.WARNING,
                        f"Could not list restore points in job '{job.name}': {e}",
                        workload=workload.name,
                    )
                    continue
                if latest is None:
                    continue
                current = selected.get(workload.id)
                if current is None or (latest.created_at, latest.id) > (current.created_at, current.id):
                    selected[workload.id] = latest

        self.known_workloads = sorted(known.values(), key=lambda w: w.name.lower())
        for workload in self.known_workloads:
            if workload.id not in selected:
                self._context.event(
                    logging.WARNING, "No usable restore point found, excluding workload", workload=workload.name
                )
        if not selected:
            raise DiscoveryError("No restore points found across the selected scope")

        points = sorted(selected.values(), key=lambda rp: (rp.workload.name.lower(), rp.workload.id))
        for rp in points:
            self._context.event(
                logging.INFO,
                f"Selected restore point {rp.id} from {rp.created_at.isoformat()} ({rp.consistency.value})",
                workload=rp.workload.name,
            )
        return points
