"""Verification battery run against a recovered instance.

Tests run in a fixed order: heartbeat, IP assignment, ping, TCP ports, DNS,
HTTP, MySQL handshake and an optional custom probe. Every test produces one
``VerificationResult``; a test that errors is recorded as failed and the
battery carries on. Without an IP address nothing past the IP test can run,
so the battery stops there.
"""

from __future__ import annotations

import ipaddress
import logging
import time
from collections.abc import Callable

from restoreproof.config.loader import VerificationConfig
from restoreproof.core.context import RunContext
from restoreproof.core.errors import PollTimeoutError
from restoreproof.core.polling import poll_until
from restoreproof.core.probes import CustomProbe, NetworkProbe, ProbeOutcome, substitute_address
from restoreproof.interfaces.hypervisor import HypervisorAPI
from restoreproof.models.inventory import GuestInfo, PowerState, ToolsState
from restoreproof.models.results import TestCategory, VerificationResult
from restoreproof.models.session import RecoverySession, SessionState

logger = logging.getLogger(__name__)


def routable_ipv4(addresses: list[str]) -> str | None:
    """First IPv4 address that is not link-local, loopback or unspecified."""
    for raw in addresses:
        try:
            address = ipaddress.ip_address(raw.split("%", 1)[0])
        except ValueError:
            continue
        if address.version != 4:
            continue
        if address.is_link_local or address.is_loopback or address.is_unspecified:
            continue
        return str(address)
    return None


def _coerce_custom_outcome(value: object) -> ProbeOutcome:
    if isinstance(value, tuple) and len(value) == 2:
        passed, detail = value
        return ProbeOutcome(bool(passed), str(detail))
    return ProbeOutcome(bool(value), "")


class VerificationRunner:
    """Runs the verification battery for one session at a time.

    Args:
        hypervisor: Hypervisor control used for power and guest queries.
        context: Run context collecting results, events and metrics.
        probes: Network probe implementation.
        custom_probe: Optional ``(workload, address) -> bool | (bool, str)``.
    """

    def __init__(
        self,
        hypervisor: HypervisorAPI,
        context: RunContext,
        probes: NetworkProbe | None = None,
        custom_probe: CustomProbe | None = None,
    ) -> None:
        self._hypervisor = hypervisor
        self._context = context
        self._probes = probes or NetworkProbe()
        self._custom_probe = custom_probe

    def verify(self, session: RecoverySession, config: VerificationConfig) -> list[VerificationResult]:
        """Run the battery against a RUNNING session. Never raises."""
        started = time.monotonic()
        results: list[VerificationResult] = []
        try:
            session.transition(SessionState.VERIFICATION_IN_PROGRESS)
            self._run_battery(session, config, results)
        except Exception as e:
            logger.exception("[VERIFY] Battery aborted for %s", session.workload.name)
            results.append(self._result(session, TestCategory.CUSTOM, "Verification", False, str(e), 0.0))

        passed = sum(1 for r in results if r.passed)
        failed = len(results) - passed
        self._context.metrics.record_verification(passed, failed, time.monotonic() - started)
        self._context.add_results(results)
        level = logging.INFO if failed == 0 and results else logging.WARNING
        self._context.event(
            level,
            f"Verification: {passed}/{len(results)} test(s) passed",
            workload=session.workload.name,
        )
        return results

    def _run_battery(
        self,
        session: RecoverySession,
        config: VerificationConfig,
        results: list[VerificationResult],
    ) -> None:
        instance_id = session.instance_id or ""

        results.append(
            self._timed(session, TestCategory.POWER, "Heartbeat", lambda: self._heartbeat(instance_id, config))
        )

        ip_result = self._timed(
            session,
            TestCategory.NETWORK,
            "IP Address Assignment",
            lambda: self._wait_for_address(instance_id, config),
        )
        results.append(ip_result)
        if not ip_result.passed:
            return
        # A passing IP test carries the address as its detail.
        address = ip_result.detail

        if config.ping:
            results.append(
                self._timed(
                    session,
                    TestCategory.NETWORK,
                    "Ping",
                    lambda: self._probes.ping(address, attempts=config.ping_attempts),
                )
            )

        for port in config.tcp_ports:
            results.append(
                self._timed(
                    session,
                    TestCategory.SERVICE,
                    f"TCP Port {port}",
                    lambda port=port: self._probes.tcp_connect(
                        address, port, timeout=config.tcp_timeout_seconds
                    ),
                )
            )

        if config.dns:
            results.append(
                self._timed(
                    session,
                    TestCategory.NETWORK,
                    "DNS Resolution",
                    lambda: self._resolve(session, instance_id),
                )
            )

        for url in config.http_urls:
            target = substitute_address(url, address)
            results.append(
                self._timed(
                    session,
                    TestCategory.APPLICATION,
                    f"HTTP {url}",
                    lambda target=target: self._probes.http_check(
                        target,
                        timeout=config.http_timeout_seconds,
                        verify_tls=config.http_verify_tls,
                    ),
                )
            )

        if config.mysql:
            results.append(
                self._timed(
                    session,
                    TestCategory.APPLICATION,
                    "MySQL Handshake",
                    lambda: self._probes.mysql_handshake(
                        address, port=config.mysql_port, timeout=config.tcp_timeout_seconds
                    ),
                )
            )

        if self._custom_probe is not None:
            probe = self._custom_probe
            results.append(
                self._timed(
                    session,
                    TestCategory.CUSTOM,
                    "Custom Probe",
                    lambda: _coerce_custom_outcome(probe(session.workload, address)),
                )
            )

    def _heartbeat(self, instance_id: str, config: VerificationConfig) -> ProbeOutcome:
        power = self._hypervisor.get_power_state(instance_id)
        if power != PowerState.ON:
            return ProbeOutcome(False, f"Instance is {power.value}")
        try:
            guest = poll_until(
                lambda: self._hypervisor.get_guest_info(instance_id),
                lambda g: g.tools_state in (ToolsState.RUNNING, ToolsState.NOT_INSTALLED),
                timeout=config.heartbeat_timeout_seconds,
                interval=config.poll_interval_seconds,
                description="guest tools heartbeat",
                cancel=self._context.interrupt,
            )
        except PollTimeoutError:
            return ProbeOutcome(False, "Powered on but no guest tools heartbeat")
        if guest.tools_state == ToolsState.NOT_INSTALLED:
            return ProbeOutcome(True, "Powered on; guest tools unavailable, heartbeat not checked")
        return ProbeOutcome(True, "Powered on with guest tools heartbeat")

    def _wait_for_address(self, instance_id: str, config: VerificationConfig) -> ProbeOutcome:
        try:
            guest: GuestInfo = poll_until(
                lambda: self._hypervisor.get_guest_info(instance_id),
                lambda g: routable_ipv4(g.ip_addresses) is not None,
                timeout=config.ip_timeout_seconds,
                interval=config.poll_interval_seconds,
                description="guest IPv4 address",
                cancel=self._context.interrupt,
            )
        except PollTimeoutError:
            return ProbeOutcome(False, f"No routable IPv4 address within {config.ip_timeout_seconds:.0f}s")
        return ProbeOutcome(True, routable_ipv4(guest.ip_addresses) or "")

    def _resolve(self, session: RecoverySession, instance_id: str) -> ProbeOutcome:
        guest = self._hypervisor.get_guest_info(instance_id)
        return self._probes.resolve(guest.host_name or session.workload.name)

    def _timed(
        self,
        session: RecoverySession,
        category: TestCategory,
        name: str,
        test: Callable[[], ProbeOutcome],
    ) -> VerificationResult:
        start = time.monotonic()
        try:
            outcome = test()
        except Exception as e:
            logger.warning("[VERIFY] %s errored for %s: %s", name, session.workload.name, e)
            outcome = ProbeOutcome(False, f"{type(e).__name__}: {e}")
        result = self._result(session, category, name, outcome.passed, outcome.detail, time.monotonic() - start)
        logger.info(
            "[VERIFY] [%s] %s: %s %s",
            session.workload.name,
            name,
            "PASS" if result.passed else "FAIL",
            result.detail,
        )
        return result

    def _result(
        self,
        session: RecoverySession,
        category: TestCategory,
        name: str,
        passed: bool,
        detail: str,
        duration: float,
    ) -> VerificationResult:
        return VerificationResult(
            workload_id=session.workload.id,
            workload_name=session.workload.name,
            category=category,
            test_name=name,
            passed=passed,
            detail=detail,
            duration_seconds=duration,
            timestamp=self._context.now(),
        )
