"""Hypervisor control interface."""

from __future__ import annotations

from abc import ABC, abstractmethod

from restoreproof.models.inventory import (
    ClusterInfo,
    GuestInfo,
    InstanceInfo,
    IsolatedNetwork,
    PowerState,
    StorageTarget,
)


class HypervisorAPI(ABC):
    """Inventory, power and network control of hypervisor instances.

    Power changes are requests: callers confirm them by polling
    ``get_power_state``.
    """

    @abstractmethod
    def find_instance(self, name: str) -> InstanceInfo | None:
        """Find an instance by exact name.

        Returns:
            The instance, or None if it is not in inventory.
        """
        ...

    @abstractmethod
    def get_instance(self, instance_id: str) -> InstanceInfo | None:
        """Fetch an instance by id, or None if it no longer exists."""
        ...

    @abstractmethod
    def get_power_state(self, instance_id: str) -> PowerState:
        """Read the current power state."""
        ...

    @abstractmethod
    def set_power_state(self, instance_id: str, state: PowerState) -> None:
        """Request a hard power change to ``state`` (ON or OFF)."""
        ...

    @abstractmethod
    def attach_adapter(self, instance_id: str, adapter_key: str, network: IsolatedNetwork) -> None:
        """Rewrite one adapter's backing to ``network``."""
        ...

    @abstractmethod
    def delete_instance(self, instance_id: str) -> None:
        """Delete an instance and its disks."""
        ...

    @abstractmethod
    def get_guest_info(self, instance_id: str) -> GuestInfo:
        """Read guest agent heartbeat, addresses and host name."""
        ...

    @abstractmethod
    def list_clusters(self) -> list[ClusterInfo]:
        """List compute clusters with node counts and health."""
        ...

    @abstractmethod
    def find_network(self, name: str) -> IsolatedNetwork | None:
        """Resolve a network by name."""
        ...

    @abstractmethod
    def list_storage_targets(self) -> list[StorageTarget]:
        """List datastores with capacity information."""
        ...
