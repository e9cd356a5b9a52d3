"""Inventory models: workloads, backup jobs, restore points and infrastructure.

Every enumeration here carries an explicit ``UNKNOWN`` member. REST adapters
map vendor strings they do not recognise to it instead of guessing a default.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class Consistency(StrEnum):
    """How a restore point was captured."""

    APPLICATION = "application_consistent"
    CRASH = "crash_consistent"
    UNKNOWN = "unknown"


class JobRunState(StrEnum):
    """Current activity of a backup job."""

    IDLE = "idle"
    RUNNING = "running"
    UNKNOWN = "unknown"


class JobLastResult(StrEnum):
    """Outcome of the most recent backup job run."""

    SUCCESS = "success"
    WARNING = "warning"
    FAILED = "failed"
    NONE = "none"
    UNKNOWN = "unknown"


class ClusterHealth(StrEnum):
    """Control-plane health as reported by the hypervisor."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CRITICAL = "critical"
    FAILED = "failed"
    UNKNOWN = "unknown"


class PowerState(StrEnum):
    """Power state of a hypervisor instance."""

    ON = "on"
    OFF = "off"
    SUSPENDED = "suspended"
    UNKNOWN = "unknown"


class ToolsState(StrEnum):
    """Guest agent heartbeat state."""

    RUNNING = "running"
    NOT_RUNNING = "not_running"
    NOT_INSTALLED = "not_installed"
    UNKNOWN = "unknown"


class Workload(BaseModel):
    """A protected virtual machine."""

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    job_id: str = Field(default="")
    cluster: str | None = Field(default=None, description="Host cluster name")
    os_hint: str | None = Field(default=None, description="Guest OS family if known")

    model_config = {"frozen": True}


class BackupJob(BaseModel):
    """A backup job and its last known state."""

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    run_state: JobRunState = Field(default=JobRunState.UNKNOWN)
    last_result: JobLastResult = Field(default=JobLastResult.UNKNOWN)

    model_config = {"frozen": True}


class RestorePoint(BaseModel):
    """An immutable, timestamped recoverable state of a workload."""

    id: str = Field(..., min_length=1)
    workload: Workload
    created_at: datetime
    consistency: Consistency = Field(default=Consistency.UNKNOWN)
    size_bytes: int | None = Field(default=None, ge=0)
    job_id: str = Field(default="")

    model_config = {"frozen": True}

    @property
    def workload_id(self) -> str:
        return self.workload.id

    @property
    def workload_name(self) -> str:
        return self.workload.name

    def age_days(self, now: datetime) -> float:
        """Age of the restore point in fractional days relative to ``now``."""
        return (now - self.created_at).total_seconds() / 86400.0


class SourceAdapter(BaseModel):
    """A network adapter recorded in restore-point metadata."""

    key: str
    network_id: str | None = None
    network_name: str | None = None

    model_config = {"frozen": True}


class RestorePointMetadata(BaseModel):
    """Hardware layout captured with a restore point.

    ``adapters`` is ``None`` when the backup server did not report the adapter
    list; callers must treat that as unknown, not as "no adapters".
    """

    adapters: list[SourceAdapter] | None = None
    disks: list[str] = Field(default_factory=list)
    cluster_hint: str | None = None

    model_config = {"frozen": True}


class IsolatedNetwork(BaseModel):
    """The verification network segment, resolved once per run."""

    id: str = Field(..., min_length=1)
    name: str
    segment_id: str | None = Field(default=None, description="VLAN or segment identifier")
    network_type: str | None = Field(default=None, description="Port group type")

    model_config = {"frozen": True}


class ClusterInfo(BaseModel):
    """A compute cluster and its control-plane health."""

    id: str
    name: str
    node_count: int = Field(default=0, ge=0)
    health: ClusterHealth = Field(default=ClusterHealth.UNKNOWN)

    model_config = {"frozen": True}


class StorageTarget(BaseModel):
    """A datastore that full-copy restores can write to."""

    id: str
    name: str
    free_bytes: int | None = Field(default=None, ge=0)
    capacity_bytes: int | None = Field(default=None, ge=0)

    model_config = {"frozen": True}


class InstanceAdapter(BaseModel):
    """A network adapter attached to a running instance."""

    key: str
    network_id: str | None = None

    model_config = {"frozen": True}


class InstanceInfo(BaseModel):
    """A hypervisor instance as seen in inventory."""

    id: str
    name: str
    power_state: PowerState = Field(default=PowerState.UNKNOWN)
    adapters: list[InstanceAdapter] = Field(default_factory=list)

    model_config = {"frozen": True}

    @property
    def network_ids(self) -> set[str]:
        return {a.network_id for a in self.adapters if a.network_id}


class GuestInfo(BaseModel):
    """Guest agent view of an instance."""

    tools_state: ToolsState = Field(default=ToolsState.UNKNOWN)
    ip_addresses: list[str] = Field(default_factory=list)
    host_name: str | None = None

    model_config = {"frozen": True}
