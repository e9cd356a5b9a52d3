"""Abstract capabilities consumed by the recovery engine."""

from restoreproof.interfaces.backup import BackupCatalogAPI, RecoveryControlAPI
from restoreproof.interfaces.hypervisor import HypervisorAPI

__all__ = ["BackupCatalogAPI", "HypervisorAPI", "RecoveryControlAPI"]
