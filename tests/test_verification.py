"""Tests for the verification battery."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from restoreproof.config.loader import VerificationConfig
from restoreproof.core.context import RunContext
from restoreproof.core.probes import ProbeOutcome
from restoreproof.core.scoring import ResultAggregator
from restoreproof.core.verification import VerificationRunner, routable_ipv4
from restoreproof.models.inventory import PowerState, ToolsState
from restoreproof.models.results import TestCategory
from restoreproof.models.session import RecoverySession, RecoveryStrategy, SessionState
from tests.conftest import ISOLATED_NETWORK, FakeHypervisor, make_restore_point, make_workload


def running_session(hypervisor: FakeHypervisor, name: str = "DB01") -> RecoverySession:
    """A session whose instance is already up on the isolated network."""
    instance_name = f"Verify_{name}_test"
    instance_id = hypervisor.create(instance_name, {"4000": ISOLATED_NETWORK.id}, PowerState.ON)
    session = RecoverySession(
        restore_point=make_restore_point(make_workload(name)),
        strategy=RecoveryStrategy.MOUNT,
        network=ISOLATED_NETWORK,
        instance_name=instance_name,
        instance_id=instance_id,
    )
    for state in (SessionState.SUBMITTED, SessionState.AWAITING_NETWORK_SAFETY, SessionState.RUNNING):
        session.transition(state)
    return session


class TestRoutableIPv4:
    """Tests for address selection."""

    @pytest.mark.parametrize(
        ("addresses", "expected"),
        [
            (["192.168.100.10"], "192.168.100.10"),
            (["fe80::1", "169.254.3.3", "10.0.0.4"], "10.0.0.4"),
            (["127.0.0.1", "0.0.0.0"], None),
            (["10.0.0.4%eth0"], "10.0.0.4"),
            (["garbage", "2001:db8::1"], None),
            ([], None),
        ],
    )
    def test_selection(self, addresses: list[str], expected: str | None) -> None:
        assert routable_ipv4(addresses) == expected


class TestVerificationRunner:
    """Tests for VerificationRunner.verify."""

    def test_all_tests_pass_in_order(
        self,
        hypervisor: FakeHypervisor,
        context: RunContext,
        probes: MagicMock,
        verification_config: VerificationConfig,
    ) -> None:
        """Test the fixed battery order with every test enabled."""
        config = verification_config.model_copy(
            update={
                "tcp_ports": [22, 443],
                "dns": True,
                "http_urls": ["http://{ip}:8080/health"],
                "mysql": True,
            }
        )
        session = running_session(hypervisor)
        custom = MagicMock(return_value=(True, "app ok"))

        results = VerificationRunner(hypervisor, context, probes=probes, custom_probe=custom).verify(session, config)

        assert [r.test_name for r in results] == [
            "Heartbeat",
            "IP Address Assignment",
            "Ping",
            "TCP Port 22",
            "TCP Port 443",
            "DNS Resolution",
            "HTTP http://{ip}:8080/health",
            "MySQL Handshake",
            "Custom Probe",
        ]
        assert all(r.passed for r in results)
        assert results[1].detail == "192.168.100.10"
        assert [r.category for r in results][:3] == [TestCategory.POWER, TestCategory.NETWORK, TestCategory.NETWORK]
        probes.http_check.assert_called_once_with(
            "http://192.168.100.10:8080/health", timeout=config.http_timeout_seconds, verify_tls=False
        )
        probes.tcp_connect.assert_any_call("192.168.100.10", 443, timeout=config.tcp_timeout_seconds)
        probes.resolve.assert_called_once_with("guest.local")
        custom.assert_called_once_with(session.workload, "192.168.100.10")
        assert session.state == SessionState.VERIFICATION_IN_PROGRESS
        assert context.results == results

    def test_address_timeout_stops_battery(
        self,
        hypervisor: FakeHypervisor,
        context: RunContext,
        probes: MagicMock,
        verification_config: VerificationConfig,
    ) -> None:
        """Test that without an address exactly one test fails and nothing follows."""
        hypervisor.guest_ips = []
        session = running_session(hypervisor)
        aggregator = ResultAggregator(context)

        results = VerificationRunner(hypervisor, context, probes=probes).verify(session, verification_config)

        failing = [r for r in results if not r.passed]
        assert [r.test_name for r in failing] == ["IP Address Assignment"]
        assert results[-1].test_name == "IP Address Assignment"
        probes.ping.assert_not_called()
        probes.tcp_connect.assert_not_called()
        assert not aggregator.verdict(session, results).passed

    def test_link_local_address_is_not_enough(
        self,
        hypervisor: FakeHypervisor,
        context: RunContext,
        probes: MagicMock,
        verification_config: VerificationConfig,
    ) -> None:
        hypervisor.guest_ips = ["169.254.10.10", "fe80::5"]
        session = running_session(hypervisor)

        results = VerificationRunner(hypervisor, context, probes=probes).verify(session, verification_config)

        assert not results[1].passed

    def test_powered_off_heartbeat_fails(
        self,
        hypervisor: FakeHypervisor,
        context: RunContext,
        probes: MagicMock,
        verification_config: VerificationConfig,
    ) -> None:
        session = running_session(hypervisor)
        hypervisor.instances[session.instance_id]["power"] = PowerState.OFF

        results = VerificationRunner(hypervisor, context, probes=probes).verify(session, verification_config)

        assert not results[0].passed
        assert results[0].detail == "Instance is off"

    def test_tools_not_running_fails_heartbeat(
        self,
        hypervisor: FakeHypervisor,
        context: RunContext,
        probes: MagicMock,
        verification_config: VerificationConfig,
    ) -> None:
        hypervisor.tools_state = ToolsState.NOT_RUNNING
        session = running_session(hypervisor)

        results = VerificationRunner(hypervisor, context, probes=probes).verify(session, verification_config)

        assert results[0].test_name == "Heartbeat"
        assert not results[0].passed

    def test_tools_not_installed_passes_on_power(
        self,
        hypervisor: FakeHypervisor,
        context: RunContext,
        probes: MagicMock,
        verification_config: VerificationConfig,
    ) -> None:
        hypervisor.tools_state = ToolsState.NOT_INSTALLED
        session = running_session(hypervisor)

        results = VerificationRunner(hypervisor, context, probes=probes).verify(session, verification_config)

        assert results[0].passed
        assert "heartbeat not checked" in results[0].detail

    def test_probe_error_is_recorded_and_battery_continues(
        self,
        hypervisor: FakeHypervisor,
        context: RunContext,
        probes: MagicMock,
        verification_config: VerificationConfig,
    ) -> None:
        """Test that a raising probe becomes a failed result."""
        probes.ping.side_effect = OSError("network unreachable")
        session = running_session(hypervisor)

        results = VerificationRunner(hypervisor, context, probes=probes).verify(session, verification_config)

        ping = next(r for r in results if r.test_name == "Ping")
        assert not ping.passed
        assert ping.detail == "OSError: network unreachable"
        assert results[-1].test_name == "TCP Port 22"
        assert results[-1].passed

    def test_custom_probe_outcomes(
        self,
        hypervisor: FakeHypervisor,
        context: RunContext,
        probes: MagicMock,
        verification_config: VerificationConfig,
    ) -> None:
        """Test bool results and raising custom probes."""
        config = verification_config.model_copy(update={"ping": False, "tcp_ports": []})

        def broken(workload, address):
            raise RuntimeError("login page missing")

        passing = VerificationRunner(hypervisor, context, probes=probes, custom_probe=lambda w, a: True).verify(
            running_session(hypervisor, "APP01"), config
        )
        failing = VerificationRunner(hypervisor, context, probes=probes, custom_probe=broken).verify(
            running_session(hypervisor, "APP02"), config
        )

        assert passing[-1].test_name == "Custom Probe" and passing[-1].passed
        assert not failing[-1].passed
        assert "login page missing" in failing[-1].detail

    def test_failing_probe_outcome(
        self,
        hypervisor: FakeHypervisor,
        context: RunContext,
        probes: MagicMock,
        verification_config: VerificationConfig,
    ) -> None:
        probes.tcp_connect.return_value = ProbeOutcome(False, "Port 22 unreachable: refused")
        session = running_session(hypervisor)

        results = VerificationRunner(hypervisor, context, probes=probes).verify(session, verification_config)

        assert results[-1].test_name == "TCP Port 22"
        assert not results[-1].passed

    def test_metrics_recorded(
        self,
        hypervisor: FakeHypervisor,
        context: RunContext,
        probes: MagicMock,
        verification_config: VerificationConfig,
    ) -> None:
        VerificationRunner(hypervisor, context, probes=probes).verify(running_session(hypervisor), verification_config)

        metrics = context.metrics.get_metrics()
        assert metrics.tests_passed == 4
        assert metrics.tests_failed == 0
