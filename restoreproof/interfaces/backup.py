"""Backup server interfaces: catalog discovery and recovery control."""

from __future__ import annotations

from abc import ABC, abstractmethod

from restoreproof.models.inventory import (
    BackupJob,
    RestorePoint,
    RestorePointMetadata,
    Workload,
)
from restoreproof.models.session import JobStatus, MountHandle, NetworkMapping


class BackupCatalogAPI(ABC):
    """Read-only view of backup jobs, protected workloads and restore points."""

    @abstractmethod
    def list_jobs(self) -> list[BackupJob]:
        """List every backup job visible to the service account."""
        ...

    @abstractmethod
    def list_job_workloads(self, job: BackupJob) -> list[Workload]:
        """List the workloads protected by ``job``."""
        ...

    @abstractmethod
    def list_restore_points(self, workload: Workload) -> list[RestorePoint]:
        """List restore points of ``workload`` in any order."""
        ...


class RecoveryControlAPI(ABC):
    """Operations that create, observe and release recovered instances."""

    @abstractmethod
    def probe(self) -> bool:
        """Check that the recovery endpoint answers.

        Returns:
            True if the endpoint is reachable and authenticated.
        """
        ...

    @abstractmethod
    def start_instant_recovery(self, restore_point: RestorePoint, instance_name: str) -> MountHandle:
        """Mount ``restore_point`` as a new instance named ``instance_name``.

        The mount request has no target-network parameter: the instance is
        registered with its original adapter attachments. Implementations
        must request that the instance is not powered on.

        Raises:
            ApiError: If the request is rejected.
        """
        ...

    @abstractmethod
    def stop_instant_recovery(self, mount_id: str) -> None:
        """Stop a mount, unregistering the instance it created."""
        ...

    @abstractmethod
    def get_restore_point_metadata(self, restore_point: RestorePoint) -> RestorePointMetadata:
        """Fetch adapter, disk and placement metadata of a restore point."""
        ...

    @abstractmethod
    def start_full_restore(
        self,
        restore_point: RestorePoint,
        instance_name: str,
        network_map: list[NetworkMapping],
        storage_target: str | None,
    ) -> str:
        """Submit an asynchronous full-copy restore with a network remap.

        Returns:
            Identifier of the asynchronous restore job.
        """
        ...

    @abstractmethod
    def get_job_status(self, job_id: str) -> JobStatus:
        """Poll an asynchronous restore job."""
        ...
