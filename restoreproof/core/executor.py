"""Per-workload recovery state machine.

Two strategies bring a restore point up as a running instance on the
isolated network:

- ``MountRecovery`` mounts the restore point directly from backup storage.
  The mount request cannot choose a network, so the instance is registered
  on its original network. It is located, forced off, rewired to the
  isolated network while confirmed off, and only then powered on. Every
  abort path stops the mount before the session is failed.
- ``FullCopyRecovery`` restores a full copy with a network remap, so the
  instance is created already attached to the isolated network. Its
  adapters are still checked before power-on.

Either way the session ends the recovery phase in RUNNING or FAILED. A
failure is captured on the session and never propagates to sibling
workloads.
"""

from __future__ import annotations

import logging
import re
import secrets
from abc import ABC, abstractmethod
from datetime import datetime

from restoreproof.config.loader import RecoveryConfig
from restoreproof.core.context import RunContext
from restoreproof.core.errors import PollCancelledError, PollTimeoutError, RecoveryError
from restoreproof.core.polling import poll_until
from restoreproof.interfaces.backup import RecoveryControlAPI
from restoreproof.interfaces.hypervisor import HypervisorAPI
from restoreproof.models.inventory import (
    InstanceInfo,
    IsolatedNetwork,
    PowerState,
    RestorePoint,
    SourceAdapter,
)
from restoreproof.models.session import (
    JobResult,
    JobState,
    JobStatus,
    NetworkMapping,
    RecoverySession,
    RecoveryStrategy,
    SessionState,
)

logger = logging.getLogger(__name__)

MAX_INSTANCE_NAME = 80
_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")


def build_instance_name(prefix: str, workload_name: str, now: datetime) -> str:
    """Temporary instance name unique across runs: prefix, name, timestamp, random suffix."""
    suffix = f"_{now:%Y%m%d_%H%M%S}_{secrets.token_hex(3)}"
    base = _UNSAFE_NAME_CHARS.sub("-", f"{prefix}{workload_name}")
    return base[: MAX_INSTANCE_NAME - len(suffix)] + suffix


def build_network_map(adapters: list[SourceAdapter], network: IsolatedNetwork) -> list[NetworkMapping]:
    """Point every source adapter at the isolated network."""
    return [
        NetworkMapping(
            adapter_key=adapter.key,
            source_network_id=adapter.network_id,
            source_network_name=adapter.network_name,
            target_network_id=network.id,
            target_network_name=network.name,
        )
        for adapter in adapters
    ]


class StrategyRunner(ABC):
    """Base class for recovery strategies."""

    strategy: RecoveryStrategy

    def __init__(
        self,
        recovery: RecoveryControlAPI,
        hypervisor: HypervisorAPI,
        context: RunContext,
        config: RecoveryConfig,
    ) -> None:
        self._recovery = recovery
        self._hypervisor = hypervisor
        self._context = context
        self._config = config

    @abstractmethod
    def run(self, session: RecoverySession) -> None:
        """Drive ``session`` to RUNNING or raise."""
        ...

    def _event(self, level: int, session: RecoverySession, message: str) -> None:
        self._context.event(level, message, workload=session.workload.name)

    def _mark_submitted(self, session: RecoverySession) -> None:
        session.transition(SessionState.SUBMITTED)
        self._context.metrics.recovery_started()

    def _set_power_confirmed(self, instance_id: str, state: PowerState) -> None:
        """Request a power change and wait until the hypervisor reports it."""
        self._hypervisor.set_power_state(instance_id, state)
        try:
            poll_until(
                lambda: self._hypervisor.get_power_state(instance_id),
                lambda current: current == state,
                timeout=self._config.power_timeout_seconds,
                interval=self._config.poll_interval_seconds,
                description=f"power state {state.value} on {instance_id}",
                cancel=self._context.interrupt,
            )
        except PollTimeoutError as e:
            raise RecoveryError(f"Power {state.value} not confirmed: {e}") from e

    def _verify_isolated(self, instance_id: str, network: IsolatedNetwork) -> InstanceInfo:
        instance = self._hypervisor.get_instance(instance_id)
        if instance is None:
            raise RecoveryError(f"Instance {instance_id} disappeared from inventory")
        foreign = [a.key for a in instance.adapters if a.network_id != network.id]
        if foreign:
            raise RecoveryError(
                f"Adapter(s) {', '.join(foreign)} not attached to isolated network '{network.name}'"
            )
        return instance


class MountRecovery(StrategyRunner):
    """Instant recovery: mount, locate, power off, rewire, power on."""

    strategy = RecoveryStrategy.MOUNT

    def run(self, session: RecoverySession) -> None:
        handle = self._recovery.start_instant_recovery(session.restore_point, session.instance_name)
        session.mount_id = handle.mount_id
        self._mark_submitted(session)
        self._event(logging.INFO, session, f"Mount {handle.mount_id} submitted as {session.instance_name}")
        session.transition(SessionState.AWAITING_NETWORK_SAFETY)

        try:
            self._secure_and_start(session)
        except Exception as e:
            self._event(logging.ERROR, session, f"Aborting mount recovery: {e}")
            self._cancel_mount(session)
            raise

    def _secure_and_start(self, session: RecoverySession) -> None:
        network = session.network

        try:
            instance = poll_until(
                lambda: self._hypervisor.find_instance(session.instance_name),
                lambda found: found is not None,
                timeout=self._config.discovery_timeout_seconds,
                interval=self._config.poll_interval_seconds,
                description=f"instance {session.instance_name} in inventory",
                cancel=self._context.interrupt,
            )
        except PollTimeoutError as e:
            raise RecoveryError(f"Mounted instance never appeared in inventory: {e}") from e
        session.instance_id = instance.id
        session.original_network_ids = instance.network_ids
        self._event(logging.INFO, session, f"Located instance {instance.id}")

        if network.id in session.original_network_ids:
            raise RecoveryError(
                f"Isolated network '{network.name}' is also the original network; refusing to proceed"
            )

        self._set_power_confirmed(instance.id, PowerState.OFF)
        self._event(logging.INFO, session, "Power-off confirmed")

        for adapter in instance.adapters:
            self._hypervisor.attach_adapter(instance.id, adapter.key, network)
        self._verify_isolated(instance.id, network)
        if not instance.adapters:
            self._event(logging.WARNING, session, "Instance has no network adapters")
        else:
            self._event(
                logging.INFO,
                session,
                f"{len(instance.adapters)} adapter(s) moved to isolated network '{network.name}'",
            )

        self._set_power_confirmed(instance.id, PowerState.ON)
        session.transition(SessionState.RUNNING)

    def _cancel_mount(self, session: RecoverySession) -> None:
        if session.mount_id is None or session.mount_released:
            return
        try:
            self._recovery.stop_instant_recovery(session.mount_id)
        except Exception as e:
            self._event(logging.ERROR, session, f"Mount {session.mount_id} cancel failed, cleanup will retry: {e}")
            return
        session.mount_released = True
        self._event(logging.WARNING, session, f"Mount {session.mount_id} cancelled")


class FullCopyRecovery(StrategyRunner):
    """Full restore with a network remap straight onto the isolated network."""

    strategy = RecoveryStrategy.FULL_COPY

    def run(self, session: RecoverySession) -> None:
        network = session.network
        metadata = self._recovery.get_restore_point_metadata(session.restore_point)
        if metadata.adapters is None:
            raise RecoveryError("Restore point adapter layout is unknown; cannot build a safe network remap")
        network_map = build_network_map(metadata.adapters, network)

        job_id = self._recovery.start_full_restore(
            session.restore_point,
            session.instance_name,
            network_map,
            self._config.storage_target,
        )
        session.restore_job_id = job_id
        self._mark_submitted(session)
        self._event(
            logging.INFO,
            session,
            f"Restore job {job_id} submitted as {session.instance_name} ({len(network_map)} adapter(s) remapped)",
        )
        session.transition(SessionState.AWAITING_NETWORK_SAFETY)

        status = self._wait_for_job(session, job_id)
        if status.state == JobState.CANCELLED:
            raise RecoveryError(f"Restore job {job_id} was cancelled: {status.message}")
        if status.result not in (JobResult.SUCCESS, JobResult.WARNING):
            raise RecoveryError(f"Restore job {job_id} ended with {status.result.value}: {status.message}")
        if status.result == JobResult.WARNING:
            self._event(logging.WARNING, session, f"Restore job finished with warning: {status.message}")

        instance = self._locate(session)
        session.instance_id = instance.id
        self._verify_isolated(instance.id, network)
        self._event(logging.INFO, session, f"Instance {instance.id} attached only to '{network.name}'")

        self._set_power_confirmed(instance.id, PowerState.ON)
        session.transition(SessionState.RUNNING)

    def _wait_for_job(self, session: RecoverySession, job_id: str) -> JobStatus:
        try:
            return poll_until(
                lambda: self._recovery.get_job_status(job_id),
                lambda status: status.is_terminal,
                timeout=self._config.restore_timeout_seconds,
                interval=self._config.poll_interval_seconds,
                description=f"restore job {job_id}",
                cancel=self._context.interrupt,
            )
        except (PollTimeoutError, PollCancelledError) as e:
            # The server keeps restoring after we stop waiting.
            self._event(
                logging.WARNING,
                session,
                f"Restore job {job_id} may still be running; "
                f"remove {session.instance_name} manually once it completes",
            )
            raise RecoveryError(f"Restore job {job_id} did not finish: {e}") from e

    def _locate(self, session: RecoverySession) -> InstanceInfo:
        attempts = self._config.locate_attempts
        for attempt in range(1, attempts + 1):
            instance = self._hypervisor.find_instance(session.instance_name)
            if instance is not None:
                return instance
            logger.debug(
                "[RECOVERY] %s not in inventory yet (%s/%s)", session.instance_name, attempt, attempts
            )
            if attempt < attempts and self._context.interrupt.wait(self._config.poll_interval_seconds):
                break
        raise RecoveryError(f"Restored instance {session.instance_name} not found after {attempts} attempt(s)")


class RecoveryExecutor:
    """Creates sessions and runs them through the configured strategy."""

    def __init__(
        self,
        recovery: RecoveryControlAPI,
        hypervisor: HypervisorAPI,
        context: RunContext,
        config: RecoveryConfig,
    ) -> None:
        self._context = context
        self._config = config
        runners: list[StrategyRunner] = [
            MountRecovery(recovery, hypervisor, context, config),
            FullCopyRecovery(recovery, hypervisor, context, config),
        ]
        self._runners = {runner.strategy: runner for runner in runners}

    def new_session(self, restore_point: RestorePoint, network: IsolatedNetwork) -> RecoverySession:
        session = RecoverySession(
            restore_point=restore_point,
            strategy=self._config.strategy,
            network=network,
            instance_name=build_instance_name(
                self._config.name_prefix, restore_point.workload.name, self._context.now()
            ),
        )
        self._context.add_session(session)
        return session

    def recover(self, session: RecoverySession) -> RecoverySession:
        """Run the recovery phase; the session ends RUNNING or FAILED."""
        runner = self._runners[session.strategy]
        self._context.event(
            logging.INFO,
            f"Starting {session.strategy.value} recovery of restore point {session.restore_point.id}",
            workload=session.workload.name,
        )
        try:
            runner.run(session)
        except Exception as e:
            session.fail(str(e))
            self._context.event(logging.ERROR, f"Recovery failed: {e}", workload=session.workload.name)
        finally:
            if session.reached_submitted:
                self._context.metrics.recovery_finished(
                    success=session.state == SessionState.RUNNING,
                    duration_s=session.recovery_seconds,
                )
        if session.state == SessionState.RUNNING:
            self._context.event(
                logging.INFO,
                f"Running on isolated network after {session.recovery_seconds or 0:.0f}s",
                workload=session.workload.name,
            )
        return session
