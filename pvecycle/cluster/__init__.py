"""
Cluster access for pvecycle: the gateway protocol, its Proxmox
implementation and the node/guest models.
"""

from pvecycle.cluster.base import ClusterGateway
from pvecycle.cluster.models import Guest, GuestKind, HealingFlagResult, Node, managed_nodes
from pvecycle.cluster.proxmox import ProxmoxGateway

__all__ = [
    "ClusterGateway",
    "Guest",
    "GuestKind",
    "HealingFlagResult",
    "Node",
    "ProxmoxGateway",
    "managed_nodes",
]
