"""Tests for the vCenter REST adapter."""

from __future__ import annotations

import json

import httpx
import pytest

from restoreproof.api.auth import AccessToken, TokenManager
from restoreproof.api.client import ResilientAPIClient
from restoreproof.api.retry import RetryPolicy
from restoreproof.api.vsphere import (
    SESSION_HEADER,
    VSphereRestAPI,
    decode_health,
    decode_power_state,
    decode_tools_state,
)
from restoreproof.models.inventory import (
    ClusterHealth,
    IsolatedNetwork,
    PowerState,
    ToolsState,
)


class StaticProvider:
    def authenticate(self) -> AccessToken:
        return AccessToken(value="session-abc")

    def refresh(self, token: AccessToken) -> AccessToken:
        return self.authenticate()


class Router:
    def __init__(self, routes: dict[tuple[str, str], object]) -> None:
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"error_type": "NOT_FOUND"})
        if callable(route):
            return route(request)
        return httpx.Response(200, json=route)


def make_api(routes: dict[tuple[str, str], object]) -> tuple[VSphereRestAPI, Router]:
    router = Router(routes)
    http = httpx.Client(base_url="https://vc.test", transport=httpx.MockTransport(router))
    client = ResilientAPIClient(
        http,
        TokenManager(StaticProvider()),
        policy=RetryPolicy(max_attempts=2),
        auth_header=SESSION_HEADER,
        auth_scheme=None,
        sleep=lambda _: None,
    )
    return VSphereRestAPI(client), router


NETWORK = IsolatedNetwork(id="network-iso", name="Verify-Isolated", network_type="DISTRIBUTED_PORTGROUP")

VM_PAYLOAD = {
    "name": "Verify_DB01_x",
    "power_state": "POWERED_OFF",
    "nics": {"4000": {"backing": {"network": "network-prod"}}},
}


class TestDecoders:
    """Tests for vendor string normalisation."""

    def test_known_values(self) -> None:
        assert decode_power_state("POWERED_ON") == PowerState.ON
        assert decode_power_state("suspended") == PowerState.SUSPENDED
        assert decode_tools_state("EXECUTING_SCRIPTS") == ToolsState.RUNNING
        assert decode_health("orange") == ClusterHealth.DEGRADED
        assert decode_health("red") == ClusterHealth.CRITICAL

    @pytest.mark.parametrize("value", [None, "", "gray", "HALF_ON"])
    def test_unrecognised_values_are_unknown(self, value: object) -> None:
        """Test that unknown strings decode to UNKNOWN."""
        assert decode_power_state(value) == PowerState.UNKNOWN
        assert decode_tools_state(value) == ToolsState.UNKNOWN
        assert decode_health(value) == ClusterHealth.UNKNOWN


class TestInventory:
    """Tests for instance lookups."""

    def test_session_header_has_no_scheme(self) -> None:
        """Test the vCenter session header format."""
        api, router = make_api({("GET", "/api/vcenter/vm"): []})

        api.find_instance("nothing")

        assert router.requests[0].headers[SESSION_HEADER] == "session-abc"

    def test_find_instance_by_exact_name(self) -> None:
        """Test that name lookups resolve to full instance details."""
        api, router = make_api(
            {
                ("GET", "/api/vcenter/vm"): [
                    {"vm": "vm-9", "name": "Verify_DB01_xy"},
                    {"vm": "vm-7", "name": "Verify_DB01_x"},
                ],
                ("GET", "/api/vcenter/vm/vm-7"): VM_PAYLOAD,
            }
        )

        instance = api.find_instance("Verify_DB01_x")

        assert instance is not None
        assert instance.id == "vm-7"
        assert instance.power_state == PowerState.OFF
        assert instance.network_ids == {"network-prod"}
        assert router.requests[0].url.params["names"] == "Verify_DB01_x"

    def test_missing_instance_is_none(self) -> None:
        """Test that a 404 on a vm id is not an error."""
        api, _ = make_api({})

        assert api.get_instance("vm-404") is None
        assert api.get_power_state("vm-404") == PowerState.UNKNOWN

    def test_set_power_state_actions(self) -> None:
        """Test start and stop actions."""
        api, router = make_api({("POST", "/api/vcenter/vm/vm-7/power"): lambda r: httpx.Response(204)})

        api.set_power_state("vm-7", PowerState.ON)
        api.set_power_state("vm-7", PowerState.OFF)

        assert [r.url.params["action"] for r in router.requests] == ["start", "stop"]

    def test_already_in_state_is_success(self) -> None:
        """Test that an 'already powered off' 400 is tolerated."""
        api, _ = make_api(
            {
                ("POST", "/api/vcenter/vm/vm-7/power"): lambda r: httpx.Response(
                    400, json={"messages": [{"default_message": "Virtual machine is already powered off."}]}
                )
            }
        )

        api.set_power_state("vm-7", PowerState.OFF)

    def test_set_unsupported_power_state(self) -> None:
        api, _ = make_api({})

        with pytest.raises(ValueError):
            api.set_power_state("vm-7", PowerState.SUSPENDED)

    def test_attach_adapter_patches_backing(self) -> None:
        """Test the adapter rewiring request."""
        api, router = make_api(
            {("PATCH", "/api/vcenter/vm/vm-7/hardware/ethernet/4000"): lambda r: httpx.Response(204)}
        )

        api.attach_adapter("vm-7", "4000", NETWORK)

        body = json.loads(router.requests[0].content)
        assert body["backing"] == {"network": "network-iso", "type": "DISTRIBUTED_PORTGROUP"}


class TestGuestInfo:
    """Tests for guest tools and address discovery."""

    def test_addresses_from_identity_and_interfaces(self) -> None:
        """Test that addresses are merged without duplicates."""
        api, _ = make_api(
            {
                ("GET", "/api/vcenter/vm/vm-7/tools"): {"install_type": "OPEN_VM_TOOLS", "run_state": "RUNNING"},
                ("GET", "/api/vcenter/vm/vm-7/guest/identity"): {
                    "ip_address": "192.168.100.10",
                    "host_name": "db01",
                },
                ("GET", "/api/vcenter/vm/vm-7/guest/networking/interfaces"): [
                    {"ip": {"ip_addresses": [{"ip_address": "fe80::1"}, {"ip_address": "192.168.100.10"}]}}
                ],
            }
        )

        guest = api.get_guest_info("vm-7")

        assert guest.tools_state == ToolsState.RUNNING
        assert guest.ip_addresses == ["192.168.100.10", "fe80::1"]
        assert guest.host_name == "db01"

    def test_tools_not_installed(self) -> None:
        api, _ = make_api({("GET", "/api/vcenter/vm/vm-7/tools"): {"install_type": "NONE"}})

        assert api.get_guest_info("vm-7").tools_state == ToolsState.NOT_INSTALLED

    def test_tools_not_running_skips_identity(self) -> None:
        """Test that no identity call is made while tools are down."""
        api, router = make_api({("GET", "/api/vcenter/vm/vm-7/tools"): {"run_state": "NOT_RUNNING"}})

        guest = api.get_guest_info("vm-7")

        assert guest.tools_state == ToolsState.NOT_RUNNING
        assert guest.ip_addresses == []
        assert len(router.requests) == 1


class TestInfrastructure:
    """Tests for cluster, network and datastore listings."""

    def test_list_clusters_counts_connected_hosts(self) -> None:
        api, _ = make_api(
            {
                ("GET", "/api/appliance/health/system"): "yellow",
                ("GET", "/api/vcenter/cluster"): [{"cluster": "domain-c1", "name": "Cluster-A"}],
                ("GET", "/api/vcenter/host"): [
                    {"host": "h1", "connection_state": "CONNECTED"},
                    {"host": "h2", "connection_state": "NOT_RESPONDING"},
                ],
            }
        )

        clusters = api.list_clusters()

        assert clusters[0].node_count == 1
        assert clusters[0].health == ClusterHealth.DEGRADED

    def test_find_network(self) -> None:
        api, _ = make_api(
            {
                ("GET", "/api/vcenter/network"): [
                    {"network": "network-iso", "name": "Verify-Isolated", "type": "STANDARD_PORTGROUP"}
                ]
            }
        )

        network = api.find_network("Verify-Isolated")

        assert network is not None
        assert network.id == "network-iso"
        assert network.segment_id is None
        assert api.find_network("Other") is None

    def test_list_storage_targets(self) -> None:
        api, _ = make_api(
            {
                ("GET", "/api/vcenter/datastore"): [
                    {"datastore": "datastore-1", "name": "DS-Verify", "free_space": 500, "capacity": 1000}
                ]
            }
        )

        targets = api.list_storage_targets()

        assert targets[0].name == "DS-Verify"
        assert targets[0].free_bytes == 500
