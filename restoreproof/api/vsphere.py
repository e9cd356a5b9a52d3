"""vCenter REST adapter implementing hypervisor control."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

import httpx

from restoreproof.api.auth import DEFAULT_REFRESH_MARGIN, TokenManager, VSphereSessionProvider
from restoreproof.api.client import ResilientAPIClient
from restoreproof.api.errors import ApiError
from restoreproof.api.retry import RetryPolicy
from restoreproof.interfaces.hypervisor import HypervisorAPI
from restoreproof.models.inventory import (
    ClusterHealth,
    ClusterInfo,
    GuestInfo,
    InstanceAdapter,
    InstanceInfo,
    IsolatedNetwork,
    PowerState,
    StorageTarget,
    ToolsState,
)

logger = logging.getLogger(__name__)

SESSION_HEADER = "vmware-api-session-id"

_POWER_STATES = {
    "POWERED_ON": PowerState.ON,
    "POWERED_OFF": PowerState.OFF,
    "SUSPENDED": PowerState.SUSPENDED,
}

_TOOLS_STATES = {
    "RUNNING": ToolsState.RUNNING,
    "EXECUTING_SCRIPTS": ToolsState.RUNNING,
    "NOT_RUNNING": ToolsState.NOT_RUNNING,
}

# Appliance health colours.
_HEALTH = {
    "green": ClusterHealth.HEALTHY,
    "yellow": ClusterHealth.DEGRADED,
    "orange": ClusterHealth.DEGRADED,
    "red": ClusterHealth.CRITICAL,
}

_POWER_ACTIONS = {PowerState.ON: "start", PowerState.OFF: "stop"}


def decode_power_state(value: Any) -> PowerState:
    return _POWER_STATES.get(str(value or "").upper(), PowerState.UNKNOWN)


def decode_tools_state(value: Any) -> ToolsState:
    return _TOOLS_STATES.get(str(value or "").upper(), ToolsState.UNKNOWN)


def decode_health(value: Any) -> ClusterHealth:
    return _HEALTH.get(str(value or "").lower(), ClusterHealth.UNKNOWN)


def _decode_adapters(nics: Any) -> list[InstanceAdapter]:
    adapters = []
    if isinstance(nics, dict):
        nic_items = nics.items()
    elif isinstance(nics, list):
        nic_items = ((n.get("key"), n.get("value")) for n in nics if isinstance(n, dict))
    else:
        return adapters
    for key, nic in nic_items:
        backing = nic.get("backing", {}) if isinstance(nic, dict) else {}
        adapters.append(InstanceAdapter(key=str(key), network_id=backing.get("network")))
    return adapters


class VSphereRestAPI(HypervisorAPI):
    """Hypervisor control over the vCenter ``/api`` REST surface."""

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
        policy: RetryPolicy | None = None,
        refresh_margin: timedelta = DEFAULT_REFRESH_MARGIN,
        on_retry: Any = None,
    ) -> VSphereRestAPI:
        """Build an adapter with its own HTTP client and session manager."""
        http = httpx.Client(base_url=url.rstrip("/"), verify=verify_tls, timeout=timeout)
        tokens = TokenManager(VSphereSessionProvider(http, username, password), refresh_margin=refresh_margin)
        client = ResilientAPIClient(
            http,
            tokens,
            policy=policy,
            auth_header=SESSION_HEADER,
            auth_scheme=None,
            on_retry=on_retry,
        )
        return cls(client)

    def _get_or_none(self, endpoint: str) -> Any:
        try:
            return self._client.call("GET", endpoint)
        except ApiError as e:
            if e.is_not_found:
                return None
            raise

    def find_instance(self, name: str) -> InstanceInfo | None:
        matches = self._client.call("GET", "/api/vcenter/vm", params={"names": name}) or []
        for item in matches:
            if isinstance(item, dict) and item.get("name") == name and item.get("vm"):
                return self.get_instance(item["vm"])
        return None

    def get_instance(self, instance_id: str) -> InstanceInfo | None:
        payload = self._get_or_none(f"/api/vcenter/vm/{instance_id}")
        if not isinstance(payload, dict):
            return None
        return InstanceInfo(
            id=instance_id,
            name=str(payload.get("name") or instance_id),
            power_state=decode_power_state(payload.get("power_state")),
            adapters=_decode_adapters(payload.get("nics")),
        )

    def get_power_state(self, instance_id: str) -> PowerState:
        payload = self._get_or_none(f"/api/vcenter/vm/{instance_id}/power")
        if not isinstance(payload, dict):
            return PowerState.UNKNOWN
        return decode_power_state(payload.get("state"))

    def set_power_state(self, instance_id: str, state: PowerState) -> None:
        action = _POWER_ACTIONS.get(state)
        if action is None:
            raise ValueError(f"Unsupported power transition: {state}")
        try:
            self._client.call(
                "POST", f"/api/vcenter/vm/{instance_id}/power", params={"action": action}
            )
        except ApiError as e:
            # 400 "already in requested state" is success for our purposes.
            if e.status_code == 400 and "already" in str(e).lower():
                logger.debug("Instance %s already %s", instance_id, state.value)
                return
            raise

    def attach_adapter(self, instance_id: str, adapter_key: str, network: IsolatedNetwork) -> None:
        backing: dict[str, Any] = {"network": network.id}
        backing["type"] = network.network_type or "STANDARD_PORTGROUP"
        self._client.call(
            "PATCH",
            f"/api/vcenter/vm/{instance_id}/hardware/ethernet/{adapter_key}",
            body={"backing": backing, "start_connected": True},
        )

    def delete_instance(self, instance_id: str) -> None:
        self._client.call("DELETE", f"/api/vcenter/vm/{instance_id}")

    def get_guest_info(self, instance_id: str) -> GuestInfo:
        tools = self._get_or_none(f"/api/vcenter/vm/{instance_id}/tools")
        if not isinstance(tools, dict):
            return GuestInfo(tools_state=ToolsState.UNKNOWN)
        install_type = str(tools.get("install_type") or "").upper()
        if install_type == "NONE" or tools.get("version_status") == "NOT_INSTALLED":
            return GuestInfo(tools_state=ToolsState.NOT_INSTALLED)
        state = decode_tools_state(tools.get("run_state"))
        if state != ToolsState.RUNNING:
            return GuestInfo(tools_state=state)
        identity = self._get_or_none(f"/api/vcenter/vm/{instance_id}/guest/identity") or {}
        addresses = []
        if identity.get("ip_address"):
            addresses.append(identity["ip_address"])
        interfaces = self._get_or_none(f"/api/vcenter/vm/{instance_id}/guest/networking/interfaces") or []
        for interface in interfaces:
            ip_info = interface.get("ip", {}) if isinstance(interface, dict) else {}
            for entry in ip_info.get("ip_addresses", []):
                address = entry.get("ip_address")
                if address and address not in addresses:
                    addresses.append(address)
        return GuestInfo(
            tools_state=state,
            ip_addresses=addresses,
            host_name=identity.get("host_name"),
        )

    def list_clusters(self) -> list[ClusterInfo]:
        health_payload = self._get_or_none("/api/appliance/health/system")
        health = decode_health(health_payload)
        clusters = []
        for item in self._client.call("GET", "/api/vcenter/cluster") or []:
            cluster_id = item.get("cluster")
            if not cluster_id:
                continue
            hosts = self._client.call("GET", "/api/vcenter/host", params={"clusters": cluster_id}) or []
            connected = [h for h in hosts if h.get("connection_state") == "CONNECTED"]
            clusters.append(
                ClusterInfo(
                    id=cluster_id,
                    name=item.get("name") or cluster_id,
                    node_count=len(connected),
                    health=health,
                )
            )
        return clusters

    def find_network(self, name: str) -> IsolatedNetwork | None:
        for item in self._client.call("GET", "/api/vcenter/network", params={"names": name}) or []:
            if item.get("name") == name and item.get("network"):
                return IsolatedNetwork(
                    id=item["network"],
                    name=name,
                    network_type=item.get("type"),
                )
        return None

    def list_storage_targets(self) -> list[StorageTarget]:
        targets = []
        for item in self._client.call("GET", "/api/vcenter/datastore") or []:
            if not item.get("datastore"):
                continue
            targets.append(
                StorageTarget(
                    id=item["datastore"],
                    name=item.get("name") or item["datastore"],
                    free_bytes=item.get("free_space"),
                    capacity_bytes=item.get("capacity"),
                )
            )
        return targets
