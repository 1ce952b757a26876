"""
Data models for the Proxmox cluster as seen through its API.

State fields reflect the query that produced them and are never cached.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional

from pvecycle.config import CEPH_HEALING_FLAGS


class GuestKind(Enum):
    """Guest types, valued by their API path segment."""
    QEMU = "qemu"
    LXC = "lxc"

    @property
    def label(self) -> str:
        return "VM" if self is GuestKind.QEMU else "LXC"


@dataclass(frozen=True)
class Node:
    """A cluster member."""

    name: str
    status: Optional[str] = None

    @property
    def online(self) -> bool:
        return self.status == "online"


@dataclass(frozen=True)
class Guest:
    """A VM or container on a specific node."""

    vmid: int
    kind: GuestKind
    node: str
    status: Optional[str] = None
    name: Optional[str] = None

    @property
    def running(self) -> bool:
        return self.status == "running"

    def __str__(self) -> str:
        return f"{self.kind.label} {self.vmid} on {self.node}"


@dataclass
class HealingFlagResult:
    """Outcome of toggling the Ceph healing flags."""

    enabled: bool
    applied: Dict[str, bool] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return all(self.applied.get(flag, False) for flag in CEPH_HEALING_FLAGS)

    @property
    def failed_flags(self) -> List[str]:
        return [flag for flag in CEPH_HEALING_FLAGS if not self.applied.get(flag, False)]


def managed_nodes(
    nodes: Iterable[Node], excluded: Iterable[str], last_node: Optional[str] = None
) -> List[Node]:
    """
    Nodes eligible for power actions: everything reported minus exclusions.

    API order is preserved, except that ``last_node`` (the node serving the
    API endpoint) is moved to the end when it is managed.
    """
    excluded_set = set(excluded)
    result = [node for node in nodes if node.name not in excluded_set]
    if last_node:
        tail = [node for node in result if node.name == last_node]
        result = [node for node in result if node.name != last_node] + tail
    return result
