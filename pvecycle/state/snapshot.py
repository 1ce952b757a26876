"""
Persisted record of which guests were running before a shutdown.

On disk the snapshot is a JSON object::

    {"pve1": {"qemu": [100, 101], "lxc": [200]}, "pve2": {"qemu": [], "lxc": []}}

It is either absent or complete: writes go to a temporary file in the same
directory, are fsynced, and then atomically renamed over the target.
"""
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from pydantic import BaseModel, RootModel, ValidationError

from pvecycle.cluster.models import Guest, GuestKind
from pvecycle.errors import SnapshotError

logger = logging.getLogger(__name__)


class NodeWorkload(BaseModel):
    """Running guest ids on one node, VMs and containers kept apart."""

    qemu: List[int] = []
    lxc: List[int] = []

    def ids(self, kind: GuestKind) -> List[int]:
        return self.qemu if kind is GuestKind.QEMU else self.lxc


class WorkloadSnapshot(RootModel[Dict[str, NodeWorkload]]):
    """Mapping of node name to the guests that were running on it."""

    @classmethod
    def from_guests(cls, guests_by_node: Dict[str, Iterable[Guest]]) -> "WorkloadSnapshot":
        """Keep only running guests, preserving API order per kind."""
        nodes: Dict[str, NodeWorkload] = {}
        for node, guests in guests_by_node.items():
            workload = NodeWorkload()
            for guest in guests:
                if guest.running and guest.node == node:
                    workload.ids(guest.kind).append(guest.vmid)
            nodes[node] = workload
        return cls(nodes)

    @property
    def nodes(self) -> List[str]:
        return list(self.root.keys())

    def guests(self, node: str) -> Iterator[Guest]:
        """Guests recorded for ``node``: VMs first, then containers."""
        workload = self.root.get(node)
        if workload is None:
            return
        for kind in (GuestKind.QEMU, GuestKind.LXC):
            for vmid in workload.ids(kind):
                yield Guest(vmid=vmid, kind=kind, node=node, status="running")

    def guest_count(self) -> int:
        return sum(len(w.qemu) + len(w.lxc) for w in self.root.values())

    def summary(self) -> List[Tuple[str, int, int]]:
        return [(node, len(w.qemu), len(w.lxc)) for node, w in self.root.items()]


class SnapshotStore:
    """File-backed storage for a single ``WorkloadSnapshot``."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def save(self, snapshot: WorkloadSnapshot) -> None:
        """Write the snapshot atomically (temp file + fsync + rename)."""
        directory = self.path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=directory
            )
        except OSError as e:
            raise SnapshotError(f"Cannot write snapshot {self.path}: {e}") from e

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(snapshot.model_dump_json())
                fh.write("\n")
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self.path)
        except OSError as e:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise SnapshotError(f"Cannot write snapshot {self.path}: {e}") from e

        logger.info("Saved running guests (%d) to %s", snapshot.guest_count(), self.path)

    def load(self) -> Optional[WorkloadSnapshot]:
        """
        Read the snapshot.

        Returns:
            The snapshot, or None if no snapshot exists.

        Raises:
            SnapshotError: The file exists but cannot be read or parsed.
        """
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise SnapshotError(f"Cannot read snapshot {self.path}: {e}") from e

        try:
            return WorkloadSnapshot.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as e:
            raise SnapshotError(f"Snapshot {self.path} is unreadable: {e}") from e

    def delete(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            return
        logger.info("Removed %s", self.path)
