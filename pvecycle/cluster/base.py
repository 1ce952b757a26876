"""
Interface the workflows consume to talk to the cluster.
"""
from typing import List, Protocol

from .models import Guest, HealingFlagResult, Node


class ClusterGateway(Protocol):
    """
    Protocol for a hypervisor cluster API.

    Every method raises ``GatewayUnavailable`` on transport, authentication
    or malformed-response errors. An empty list or False is a real answer,
    never a masked failure.
    """

    async def is_reachable(self) -> bool:
        """True if the API answers an authenticated node listing."""
        ...

    async def list_nodes(self) -> List[Node]:
        """Cluster members in API-reported order."""
        ...

    async def list_guests(self, node: str) -> List[Guest]:
        """VMs and containers on ``node`` with their current state."""
        ...

    async def count_running_guests(self) -> int:
        """Running VMs and containers across the whole cluster."""
        ...

    async def start_guest(self, guest: Guest) -> str:
        """Request a guest start. Returns the task id; does not wait."""
        ...

    async def stop_guest(self, guest: Guest) -> str:
        """Request a graceful guest shutdown. Returns the task id; does not wait."""
        ...

    async def start_all(self, node: str) -> str:
        """Start every boot-enabled guest on ``node``."""
        ...

    async def shutdown_node(self, node: str) -> str:
        """Request a graceful node power-off; does not wait for it."""
        ...

    async def set_healing_flags(self, enabled: bool) -> HealingFlagResult:
        """Set (True) or clear (False) noout, norebalance and norecover."""
        ...

    async def cluster_health_ok(self) -> bool:
        """True if Ceph reports HEALTH_OK."""
        ...
