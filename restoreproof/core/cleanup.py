"""Teardown of recovered instances.

Cleanup runs once for every session that reached submission, whatever
happened afterwards. It releases what the strategy created, then checks the
hypervisor inventory and force-removes anything left behind. Failures are
recorded on the session and never raised.
"""

from __future__ import annotations

import logging

from restoreproof.config.loader import RecoveryConfig
from restoreproof.core.context import RunContext
from restoreproof.core.errors import PollTimeoutError
from restoreproof.core.polling import poll_until
from restoreproof.interfaces.backup import RecoveryControlAPI
from restoreproof.interfaces.hypervisor import HypervisorAPI
from restoreproof.models.inventory import InstanceInfo, PowerState
from restoreproof.models.session import RecoverySession, RecoveryStrategy, SessionState

logger = logging.getLogger(__name__)


class CleanupManager:
    """Removes the temporary instance behind a session."""

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

    def cleanup(self, session: RecoverySession) -> SessionState:
        """Tear down ``session`` and return its final state.

        Returns:
            CLEANED_UP, or CLEANUP_FAILED with ``session.cleanup_error`` set.
        """
        errors: list[str] = []

        if session.strategy == RecoveryStrategy.MOUNT:
            self._release_mount(session, errors)
        elif session.instance_id is not None:
            try:
                self._power_off(session.instance_id)
                self._hypervisor.delete_instance(session.instance_id)
                self._context.event(
                    logging.INFO, f"Deleted instance {session.instance_id}", workload=session.workload.name
                )
            except Exception as e:
                errors.append(f"delete {session.instance_id}: {e}")

        try:
            self._remove_leftover(session)
        except Exception as e:
            errors.append(f"inventory re-check: {e}")

        final = SessionState.CLEANUP_FAILED if errors else SessionState.CLEANED_UP
        if not session.can_transition(final):
            session.fail(f"Cleanup started from {session.state.value}")
        if errors:
            session.cleanup_error = "; ".join(errors)
            self._context.event(
                logging.ERROR,
                f"Cleanup failed, {session.instance_name} may need manual removal: {session.cleanup_error}",
                workload=session.workload.name,
            )
        else:
            self._context.event(logging.INFO, "Cleanup complete", workload=session.workload.name)
        session.transition(final)
        self._context.metrics.record_cleanup(success=not errors)
        return final

    def _release_mount(self, session: RecoverySession, errors: list[str]) -> None:
        if session.mount_id is None or session.mount_released:
            return
        try:
            self._recovery.stop_instant_recovery(session.mount_id)
        except Exception as e:
            errors.append(f"stop mount {session.mount_id}: {e}")
            return
        session.mount_released = True
        self._context.event(logging.INFO, f"Mount {session.mount_id} stopped", workload=session.workload.name)

    def _lookup(self, session: RecoverySession) -> InstanceInfo | None:
        if session.instance_id is not None:
            instance = self._hypervisor.get_instance(session.instance_id)
            if instance is not None:
                return instance
        if session.instance_name:
            return self._hypervisor.find_instance(session.instance_name)
        return None

    def _remove_leftover(self, session: RecoverySession) -> None:
        """Force-remove the instance if it is still in inventory."""
        try:
            leftover = poll_until(
                lambda: self._lookup(session),
                lambda found: found is None,
                timeout=self._config.power_timeout_seconds,
                interval=self._config.poll_interval_seconds,
                description=f"{session.instance_name} to leave inventory",
            )
        except PollTimeoutError:
            leftover = self._lookup(session)
        if leftover is None:
            return

        self._context.event(
            logging.WARNING,
            f"Instance {leftover.id} still present, forcing removal",
            workload=session.workload.name,
        )
        self._power_off(leftover.id)
        self._hypervisor.delete_instance(leftover.id)

    def _power_off(self, instance_id: str) -> None:
        if self._hypervisor.get_power_state(instance_id) == PowerState.OFF:
            return
        self._hypervisor.set_power_state(instance_id, PowerState.OFF)
        poll_until(
            lambda: self._hypervisor.get_power_state(instance_id),
            lambda state: state == PowerState.OFF,
            timeout=self._config.power_timeout_seconds,
            interval=self._config.poll_interval_seconds,
            description=f"power off of {instance_id}",
        )
