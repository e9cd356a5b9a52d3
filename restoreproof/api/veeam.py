"""Veeam Backup & Replication REST adapter.

Implements the backup catalog and recovery control capabilities on top of
the ``/api/v1`` REST surface. Vendor strings are decoded into the closed
model enumerations here; nothing past this module sees them.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from restoreproof.api.auth import DEFAULT_REFRESH_MARGIN, OAuth2PasswordProvider, TokenManager
from restoreproof.api.client import ResilientAPIClient
from restoreproof.api.errors import ApiError, ApiErrorKind
from restoreproof.api.retry import RetryPolicy
from restoreproof.interfaces.backup import BackupCatalogAPI, RecoveryControlAPI
from restoreproof.models.inventory import (
    BackupJob,
    Consistency,
    JobLastResult,
    JobRunState,
    RestorePoint,
    RestorePointMetadata,
    SourceAdapter,
    Workload,
)
from restoreproof.models.session import (
    JobResult,
    JobState,
    JobStatus,
    MountHandle,
    NetworkMapping,
)

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = "1.1-rev2"
PAGE_SIZE = 200

_RUN_STATES = {
    "running": JobRunState.RUNNING,
    "starting": JobRunState.RUNNING,
    "stopping": JobRunState.RUNNING,
    "postprocessing": JobRunState.RUNNING,
    "inactive": JobRunState.IDLE,
    "idle": JobRunState.IDLE,
    "stopped": JobRunState.IDLE,
}

_LAST_RESULTS = {
    "success": JobLastResult.SUCCESS,
    "warning": JobLastResult.WARNING,
    "failed": JobLastResult.FAILED,
    "none": JobLastResult.NONE,
}

_CONSISTENCY = {
    "applicationconsistent": Consistency.APPLICATION,
    "application": Consistency.APPLICATION,
    "crashconsistent": Consistency.CRASH,
    "crash": Consistency.CRASH,
}

_SESSION_STATES = {
    "starting": JobState.RUNNING,
    "working": JobState.RUNNING,
    "pausing": JobState.RUNNING,
    "resuming": JobState.RUNNING,
    "waitingtape": JobState.RUNNING,
    "idle": JobState.RUNNING,
    "postprocessing": JobState.RUNNING,
    "waitingrepository": JobState.RUNNING,
    "stopping": JobState.RUNNING,
    "stopped": JobState.FINISHED,
    "canceled": JobState.CANCELLED,
    "cancelled": JobState.CANCELLED,
}

_SESSION_RESULTS = {
    "success": JobResult.SUCCESS,
    "warning": JobResult.WARNING,
    "failed": JobResult.ERROR,
    "error": JobResult.ERROR,
    "none": JobResult.NONE,
}


def _norm(value: Any) -> str:
    return str(value or "").replace("_", "").replace(" ", "").lower()


def decode_run_state(value: Any) -> JobRunState:
    return _RUN_STATES.get(_norm(value), JobRunState.UNKNOWN)


def decode_last_result(value: Any) -> JobLastResult:
    return _LAST_RESULTS.get(_norm(value), JobLastResult.UNKNOWN)


def decode_consistency(value: Any) -> Consistency:
    return _CONSISTENCY.get(_norm(value), Consistency.UNKNOWN)


def decode_session_state(value: Any) -> JobState:
    return _SESSION_STATES.get(_norm(value), JobState.UNKNOWN)


def decode_session_result(value: Any) -> JobResult:
    return _SESSION_RESULTS.get(_norm(value), JobResult.UNKNOWN)


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp, assuming UTC when no offset is given."""
    if not isinstance(value, str) or not value:
        raise ApiError(ApiErrorKind.DECODE, f"Invalid timestamp: {value!r}")
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as e:
        raise ApiError(ApiErrorKind.DECODE, f"Invalid timestamp: {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _data(payload: Any) -> list[dict[str, Any]]:
    if isinstance(payload, dict):
        items = payload.get("data", [])
    else:
        items = payload or []
    return [item for item in items if isinstance(item, dict)]


class VeeamRestAPI(BackupCatalogAPI, RecoveryControlAPI):
    """Backup catalog and recovery control over Veeam B&R REST."""

    def __init__(self, client: ResilientAPIClient) -> None:
        self._client = client

    @classmethod
    def connect(
        cls,
        url: str,
        username: str,
        password: str,
        *,
        verify_tls: bool = True,
        timeout: float = 30.0,
        api_version: str = DEFAULT_API_VERSION,
        policy: RetryPolicy | None = None,
        refresh_margin: timedelta = DEFAULT_REFRESH_MARGIN,
        on_retry: Any = None,
    ) -> VeeamRestAPI:
        """Build an adapter with its own HTTP client and token manager."""
        version_header = {"x-api-version": api_version}
        http = httpx.Client(base_url=url.rstrip("/"), verify=verify_tls, timeout=timeout)
        tokens = TokenManager(
            OAuth2PasswordProvider(http, username, password, extra_headers=version_header),
            refresh_margin=refresh_margin,
        )
        client = ResilientAPIClient(
            http,
            tokens,
            policy=policy,
            default_headers=version_header,
            on_retry=on_retry,
        )
        return cls(client)

    # ------------------------------------------------------------------
    # catalog
    # ------------------------------------------------------------------
    def _paged(self, endpoint: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        skip = 0
        while True:
            page_params = {**(params or {}), "skip": skip, "limit": PAGE_SIZE}
            payload = self._client.call("GET", endpoint, params=page_params)
            page = _data(payload)
            items.extend(page)
            total = payload.get("pagination", {}).get("total") if isinstance(payload, dict) else None
            skip += len(page)
            if not page or len(page) < PAGE_SIZE or (total is not None and skip >= total):
                return items

    def list_jobs(self) -> list[BackupJob]:
        states = {
            item.get("id"): item for item in self._paged("/api/v1/jobs/states") if item.get("id")
        }
        jobs = []
        for item in self._paged("/api/v1/jobs"):
            job_id = item.get("id")
            name = item.get("name")
            if not job_id or not name:
                logger.warning("[CATALOG] Skipping job without id or name: %r", item)
                continue
            state = states.get(job_id, {})
            jobs.append(
                BackupJob(
                    id=job_id,
                    name=name,
                    run_state=decode_run_state(state.get("status")),
                    last_result=decode_last_result(state.get("lastResult")),
                )
            )
        return jobs

    def list_job_workloads(self, job: BackupJob) -> list[Workload]:
        workloads: dict[str, Workload] = {}
        for backup in self._paged("/api/v1/backups", {"jobIdFilter": job.id}):
            backup_id = backup.get("id")
            if not backup_id:
                continue
            for obj in _data(self._client.call("GET", f"/api/v1/backups/{backup_id}/objects")):
                object_id = obj.get("id")
                name = obj.get("name")
                if not object_id or not name:
                    continue
                workloads[object_id] = Workload(
                    id=object_id,
                    name=name,
                    job_id=job.id,
                    cluster=obj.get("path") or obj.get("hostName"),
                    os_hint=obj.get("guestOs") or obj.get("platformName"),
                )
        return list(workloads.values())

    def list_restore_points(self, workload: Workload) -> list[RestorePoint]:
        points = []
        for item in self._paged("/api/v1/restorePoints", {"backupObjectIdFilter": workload.id}):
            point_id = item.get("id")
            if not point_id:
                continue
            try:
                created_at = parse_timestamp(item.get("creationTime"))
            except ApiError as e:
                logger.warning("[CATALOG] Skipping restore point %s: %s", point_id, e)
                continue
            size = item.get("dataSize", item.get("backupSize"))
            points.append(
                RestorePoint(
                    id=point_id,
                    workload=workload,
                    created_at=created_at,
                    consistency=decode_consistency(item.get("consistency")),
                    size_bytes=size if isinstance(size, int) and size >= 0 else None,
                    job_id=workload.job_id,
                )
            )
        return points

    # ------------------------------------------------------------------
    # recovery control
    # ------------------------------------------------------------------
    def probe(self) -> bool:
        try:
            self._client.call("GET", "/api/v1/serverInfo")
        except ApiError as e:
            logger.warning("[RECOVERY] Backup server probe failed: %s", e)
            return False
        return True

    def start_instant_recovery(self, restore_point: RestorePoint, instance_name: str) -> MountHandle:
        payload = {
            "restorePointId": restore_point.id,
            "type": "Customized",
            "vmTagsRestoreEnabled": False,
            "secureRestore": {"antivirusScanEnabled": False},
            "powerUp": False,
            "reason": "Automated recoverability verification",
            "destination": {"restoredVmName": instance_name},
        }
        response = self._client.call(
            "POST", "/api/v1/restore/instantRecovery/vSphere/vm", body=payload
        )
        if not isinstance(response, dict):
            raise ApiError(ApiErrorKind.DECODE, "Instant recovery response was empty")
        mount_id = response.get("mountId") or response.get("id")
        if not mount_id:
            raise ApiError(ApiErrorKind.DECODE, "Instant recovery response has no mount id")
        return MountHandle(mount_id=mount_id, session_id=response.get("sessionId"))

    def stop_instant_recovery(self, mount_id: str) -> None:
        self._client.call(
            "POST", f"/api/v1/restore/instantRecovery/vSphere/vm/{mount_id}/unmount"
        )

    def get_restore_point_metadata(self, restore_point: RestorePoint) -> RestorePointMetadata:
        payload = self._client.call("GET", f"/api/v1/restorePoints/{restore_point.id}/metadata")
        if not isinstance(payload, dict):
            return RestorePointMetadata()
        raw_adapters = payload.get("networkAdapters")
        adapters: list[SourceAdapter] | None = None
        if isinstance(raw_adapters, list):
            adapters = [
                SourceAdapter(
                    key=str(a.get("key") or a.get("id") or index),
                    network_id=a.get("networkId"),
                    network_name=a.get("networkName"),
                )
                for index, a in enumerate(raw_adapters)
                if isinstance(a, dict)
            ]
        disks = [str(d.get("name") or d.get("uid")) for d in payload.get("disks", []) if isinstance(d, dict)]
        return RestorePointMetadata(
            adapters=adapters,
            disks=disks,
            cluster_hint=payload.get("clusterName") or payload.get("hostName"),
        )

    def start_full_restore(
        self,
        restore_point: RestorePoint,
        instance_name: str,
        network_map: list[NetworkMapping],
        storage_target: str | None,
    ) -> str:
        destination: dict[str, Any] = {"restoredVmName": instance_name}
        if storage_target:
            destination["datastore"] = {"name": storage_target}
        payload = {
            "restorePointId": restore_point.id,
            "type": "Customized",
            "powerUp": False,
            "reason": "Automated recoverability verification",
            "destination": destination,
            "networkMapping": [
                {
                    "adapterKey": m.adapter_key,
                    "source": {"networkId": m.source_network_id, "name": m.source_network_name},
                    "target": {"networkId": m.target_network_id, "name": m.target_network_name},
                }
                for m in network_map
            ],
        }
        response = self._client.call("POST", "/api/v1/restore/vmRestore/vSphere", body=payload)
        job_id = response.get("id") if isinstance(response, dict) else None
        if not job_id:
            raise ApiError(ApiErrorKind.DECODE, "Restore response has no session id")
        return job_id

    def get_job_status(self, job_id: str) -> JobStatus:
        payload = self._client.call("GET", f"/api/v1/sessions/{job_id}")
        if not isinstance(payload, dict):
            return JobStatus(job_id=job_id)
        result = payload.get("result")
        result = result if isinstance(result, dict) else {}
        return JobStatus(
            job_id=job_id,
            state=decode_session_state(payload.get("state")),
            result=decode_session_result(result.get("result")),
            message=str(result.get("message") or ""),
        )
