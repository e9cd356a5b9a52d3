"""Shared fixtures: in-memory control planes and fast run settings."""

from __future__ import annotations

import itertools
import threading
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from restoreproof.api.errors import ApiError, ApiErrorKind
from restoreproof.config.loader import Config, RecoveryConfig, VerificationConfig
from restoreproof.core.context import RunContext
from restoreproof.core.probes import NetworkProbe, ProbeOutcome
from restoreproof.interfaces.backup import BackupCatalogAPI, RecoveryControlAPI
from restoreproof.interfaces.hypervisor import HypervisorAPI
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
from restoreproof.models.session import JobResult, JobState, JobStatus, MountHandle, NetworkMapping

NOW = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)
PRODUCTION_NETWORK = "network-prod"
ISOLATED_NETWORK = IsolatedNetwork(
    id="network-iso", name="Verify-Isolated", segment_id="vlan-999", network_type="STANDARD_PORTGROUP"
)


def make_workload(name: str, job_id: str = "job-1", os_hint: str | None = "linux") -> Workload:
    return Workload(id=f"wl-{name.lower()}", name=name, job_id=job_id, os_hint=os_hint)


def make_restore_point(
    workload: Workload,
    age_days: float = 1.0,
    consistency: Consistency = Consistency.APPLICATION,
    point_id: str | None = None,
    size_bytes: int | None = 10 * 1024**3,
) -> RestorePoint:
    return RestorePoint(
        id=point_id or f"rp-{workload.name.lower()}-{age_days:g}",
        workload=workload,
        created_at=NOW - timedelta(days=age_days),
        consistency=consistency,
        size_bytes=size_bytes,
        job_id=workload.job_id,
    )


class FakeCatalog(BackupCatalogAPI):
    """Backup catalog held in dictionaries."""

    def __init__(self) -> None:
        self.jobs: list[BackupJob] = []
        self.workloads: dict[str, list[Workload]] = {}
        self.points: dict[str, list[RestorePoint]] = {}

    def add_job(
        self,
        name: str,
        job_id: str | None = None,
        run_state: JobRunState = JobRunState.IDLE,
        last_result: JobLastResult = JobLastResult.SUCCESS,
    ) -> BackupJob:
        job = BackupJob(
            id=job_id or f"job-{len(self.jobs) + 1}", name=name, run_state=run_state, last_result=last_result
        )
        self.jobs.append(job)
        self.workloads.setdefault(job.id, [])
        return job

    def add_workload(self, job: BackupJob, name: str, *ages: float, os_hint: str | None = "linux") -> Workload:
        workload = Workload(id=f"wl-{name.lower()}", name=name, job_id=job.id, os_hint=os_hint)
        self.workloads[job.id].append(workload)
        self.points.setdefault(workload.id, [])
        for age in ages:
            self.points[workload.id].append(make_restore_point(workload, age))
        return workload

    def list_jobs(self) -> list[BackupJob]:
        return list(self.jobs)

    def list_job_workloads(self, job: BackupJob) -> list[Workload]:
        return list(self.workloads.get(job.id, []))

    def list_restore_points(self, workload: Workload) -> list[RestorePoint]:
        return list(self.points.get(workload.id, []))


class FakeHypervisor(HypervisorAPI):
    """Thread-safe in-memory inventory.

    Failure injection:
        fail_on: method name -> exception raised on every call.
        stuck_power: power states that requests never reach.
        ignore_attach: adapter rewiring calls are accepted but have no effect.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self.instances: dict[str, dict] = {}
        self.deleted: list[str] = []
        self.power_log: list[tuple[str, PowerState]] = []
        self.attach_log: list[tuple[str, str, str]] = []
        self.fail_on: dict[str, Exception] = {}
        self.stuck_power: set[PowerState] = set()
        self.ignore_attach = False
        self.guest_ips: list[str] = ["192.168.100.10"]
        self.tools_state = ToolsState.RUNNING
        self.power_on_delay = 0.0
        self.peak_instances = 0
        self.networks = {ISOLATED_NETWORK.name: ISOLATED_NETWORK}
        self.clusters = [ClusterInfo(id="domain-c1", name="Cluster-A", node_count=4, health=ClusterHealth.HEALTHY)]
        self.storage = [StorageTarget(id="datastore-1", name="DS-Verify", free_bytes=10**13, capacity_bytes=2 * 10**13)]

    def _check(self, method: str) -> None:
        error = self.fail_on.get(method)
        if error is not None:
            raise error

    def create(self, name: str, adapters: dict[str, str | None], power: PowerState = PowerState.OFF) -> str:
        with self._lock:
            instance_id = f"vm-{next(self._ids)}"
            self.instances[instance_id] = {"name": name, "power": power, "adapters": dict(adapters)}
            self.peak_instances = max(self.peak_instances, len(self.instances))
            return instance_id

    def remove(self, instance_id: str) -> None:
        with self._lock:
            self.instances.pop(instance_id, None)

    def id_for(self, name: str) -> str | None:
        with self._lock:
            return next((i for i, vm in self.instances.items() if vm["name"] == name), None)

    def _info(self, instance_id: str) -> InstanceInfo | None:
        vm = self.instances.get(instance_id)
        if vm is None:
            return None
        return InstanceInfo(
            id=instance_id,
            name=vm["name"],
            power_state=vm["power"],
            adapters=[InstanceAdapter(key=k, network_id=n) for k, n in vm["adapters"].items()],
        )

    def find_instance(self, name: str) -> InstanceInfo | None:
        self._check("find_instance")
        with self._lock:
            for instance_id, vm in self.instances.items():
                if vm["name"] == name:
                    return self._info(instance_id)
        return None

    def get_instance(self, instance_id: str) -> InstanceInfo | None:
        self._check("get_instance")
        with self._lock:
            return self._info(instance_id)

    def get_power_state(self, instance_id: str) -> PowerState:
        self._check("get_power_state")
        with self._lock:
            vm = self.instances.get(instance_id)
            return vm["power"] if vm else PowerState.UNKNOWN

    def set_power_state(self, instance_id: str, state: PowerState) -> None:
        self._check("set_power_state")
        if state == PowerState.ON and self.power_on_delay:
            time.sleep(self.power_on_delay)
        with self._lock:
            self.power_log.append((instance_id, state))
            vm = self.instances.get(instance_id)
            if vm is None:
                raise ApiError(ApiErrorKind.FATAL, f"No instance {instance_id}", status_code=404)
            if state not in self.stuck_power:
                vm["power"] = state

    def attach_adapter(self, instance_id: str, adapter_key: str, network: IsolatedNetwork) -> None:
        self._check("attach_adapter")
        with self._lock:
            self.attach_log.append((instance_id, adapter_key, network.id))
            vm = self.instances[instance_id]
            if vm["power"] == PowerState.ON:
                raise AssertionError("adapter rewired while powered on")
            if not self.ignore_attach:
                vm["adapters"][adapter_key] = network.id

    def delete_instance(self, instance_id: str) -> None:
        self._check("delete_instance")
        with self._lock:
            vm = self.instances.pop(instance_id, None)
            if vm is None:
                raise ApiError(ApiErrorKind.FATAL, f"No instance {instance_id}", status_code=404)
            self.deleted.append(instance_id)

    def get_guest_info(self, instance_id: str) -> GuestInfo:
        self._check("get_guest_info")
        return GuestInfo(tools_state=self.tools_state, ip_addresses=list(self.guest_ips), host_name="guest.local")

    def list_clusters(self) -> list[ClusterInfo]:
        self._check("list_clusters")
        return list(self.clusters)

    def find_network(self, name: str) -> IsolatedNetwork | None:
        self._check("find_network")
        return self.networks.get(name)

    def list_storage_targets(self) -> list[StorageTarget]:
        self._check("list_storage_targets")
        return list(self.storage)


class FakeRecovery(RecoveryControlAPI):
    """Backup-server recovery control that creates instances in a ``FakeHypervisor``.

    Mounted instances appear on the production network, as a real mount does.
    """

    def __init__(self, hypervisor: FakeHypervisor) -> None:
        self.hypervisor = hypervisor
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self.mounts: dict[str, str] = {}
        self.stopped: list[str] = []
        self.restores: list[tuple[str, list[NetworkMapping], str | None]] = []
        self.jobs: dict[str, JobStatus] = {}
        self.reachable = True
        self.instance_appears = True
        self.power_on_mount = False
        self.adapter_layout: list[SourceAdapter] | None = [
            SourceAdapter(key="4000", network_id=PRODUCTION_NETWORK, network_name="Production")
        ]
        self.ignore_network_map = False
        self.job_result = JobResult.SUCCESS
        self.fail_on: dict[str, Exception] = {}

    def _check(self, method: str) -> None:
        error = self.fail_on.get(method)
        if error is not None:
            raise error

    def probe(self) -> bool:
        return self.reachable

    def start_instant_recovery(self, restore_point: RestorePoint, instance_name: str) -> MountHandle:
        self._check("start_instant_recovery")
        with self._lock:
            mount_id = f"mount-{next(self._ids)}"
        instance_id = None
        if self.instance_appears:
            adapters = {a.key: a.network_id for a in self.adapter_layout or []}
            power = PowerState.ON if self.power_on_mount else PowerState.OFF
            instance_id = self.hypervisor.create(instance_name, adapters, power)
        with self._lock:
            self.mounts[mount_id] = instance_id or ""
        return MountHandle(mount_id=mount_id)

    def stop_instant_recovery(self, mount_id: str) -> None:
        self._check("stop_instant_recovery")
        with self._lock:
            self.stopped.append(mount_id)
            instance_id = self.mounts.pop(mount_id, None)
        if instance_id:
            self.hypervisor.remove(instance_id)

    def get_restore_point_metadata(self, restore_point: RestorePoint) -> RestorePointMetadata:
        self._check("get_restore_point_metadata")
        return RestorePointMetadata(adapters=self.adapter_layout, disks=["disk-0"])

    def start_full_restore(
        self,
        restore_point: RestorePoint,
        instance_name: str,
        network_map: list[NetworkMapping],
        storage_target: str | None,
    ) -> str:
        self._check("start_full_restore")
        with self._lock:
            job_id = f"session-{next(self._ids)}"
            self.restores.append((instance_name, network_map, storage_target))
        if self.ignore_network_map:
            adapters = {a.key: a.network_id for a in self.adapter_layout or []}
        else:
            adapters = {m.adapter_key: m.target_network_id for m in network_map}
        self.hypervisor.create(instance_name, adapters)
        with self._lock:
            self.jobs[job_id] = JobStatus(
                job_id=job_id, state=JobState.FINISHED, result=self.job_result, message="done"
            )
        return job_id

    def get_job_status(self, job_id: str) -> JobStatus:
        self._check("get_job_status")
        with self._lock:
            return self.jobs[job_id]


@pytest.fixture
def hypervisor() -> FakeHypervisor:
    return FakeHypervisor()


@pytest.fixture
def recovery(hypervisor: FakeHypervisor) -> FakeRecovery:
    return FakeRecovery(hypervisor)


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog()


@pytest.fixture
def context() -> RunContext:
    return RunContext(run_id="test-run", clock=lambda: NOW)


@pytest.fixture
def recovery_config() -> RecoveryConfig:
    return RecoveryConfig(
        isolated_network=ISOLATED_NETWORK.name,
        storage_target="DS-Verify",
        discovery_timeout_seconds=0.3,
        power_timeout_seconds=0.3,
        restore_timeout_seconds=0.3,
        poll_interval_seconds=0.01,
        locate_attempts=3,
    )


@pytest.fixture
def verification_config() -> VerificationConfig:
    return VerificationConfig(
        heartbeat_timeout_seconds=0.3,
        ip_timeout_seconds=0.3,
        poll_interval_seconds=0.01,
        ping=True,
        tcp_ports=[22],
    )


@pytest.fixture
def probes() -> MagicMock:
    fake = MagicMock(spec=NetworkProbe)
    fake.ping.return_value = ProbeOutcome(True, "reply")
    fake.tcp_connect.return_value = ProbeOutcome(True, "open")
    fake.resolve.return_value = ProbeOutcome(True, "resolved")
    fake.http_check.return_value = ProbeOutcome(True, "HTTP 200")
    fake.mysql_handshake.return_value = ProbeOutcome(True, "MySQL server 8.0.36")
    return fake


@pytest.fixture
def run_config(recovery_config: RecoveryConfig, verification_config: VerificationConfig) -> Config:
    return Config(recovery=recovery_config, verification=verification_config)
