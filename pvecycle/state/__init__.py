"""
Durable state shared between the shutdown and startup workflows.
"""

from pvecycle.state.lock import AdvisoryLock, PidFileLock
from pvecycle.state.snapshot import NodeWorkload, SnapshotStore, WorkloadSnapshot

__all__ = ["AdvisoryLock", "NodeWorkload", "PidFileLock", "SnapshotStore", "WorkloadSnapshot"]
