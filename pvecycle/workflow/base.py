"""
Shared plumbing for the shutdown and startup sequencers.

A sequencer walks a fixed list of states. Any ``CycleError`` escaping a step
aborts the run: the error is logged, broadcast with wall, mailed once with
its reason tag, and the returned ``WorkflowReport`` is marked failed.
Any other exception is handled the same way under the ``unexpected`` tag.
Non-fatal problems (a Ceph flag that would not clear, a guest that would not
start) are collected as warnings and included in the completion message.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pvecycle.cluster.base import ClusterGateway
from pvecycle.cluster.models import HealingFlagResult
from pvecycle.config import Settings
from pvecycle.errors import CycleError, HealingFlagFailure
from pvecycle.net.ping import NetworkProbe
from pvecycle.net.wol import WakeSender
from pvecycle.notify.notifier import Notifier
from pvecycle.nut.client import PowerSource
from pvecycle.state.lock import AdvisoryLock
from pvecycle.state.snapshot import SnapshotStore
from pvecycle.utils.retry import Waiter

from .preconditions import PreconditionChecker

logger = logging.getLogger(__name__)


class WorkflowStatus(Enum):
    """Workflow run status."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class WorkflowReport:
    """Result of one workflow run."""

    action: str
    status: WorkflowStatus = WorkflowStatus.PENDING
    states: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    reason: Optional[str] = None
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def success(self) -> bool:
        return self.status == WorkflowStatus.SUCCESS

    @property
    def last_state(self) -> Optional[str]:
        return self.states[-1] if self.states else None

    def summary(self) -> str:
        if not self.warnings:
            return f"{self.action.capitalize()} completed without warnings."
        lines = [f"{self.action.capitalize()} completed with {len(self.warnings)} warning(s):"]
        lines.extend(f"  - {w}" for w in self.warnings)
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/storage."""
        return {
            "action": self.action,
            "status": self.status.value,
            "states": list(self.states),
            "warnings": list(self.warnings),
            "reason": self.reason,
            "error_message": self.error_message,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "success": self.success,
        }


@dataclass
class WorkflowContext:
    """Everything a sequencer talks to, built once per run."""

    settings: Settings
    gateway: ClusterGateway
    probe: NetworkProbe
    waker: WakeSender
    power: PowerSource
    snapshots: SnapshotStore
    lock: AdvisoryLock
    notifier: Notifier
    waiter: Waiter = field(default_factory=Waiter)


class Sequencer:
    """Base class for the two fixed workflows."""

    action: str = ""

    def __init__(self, context: WorkflowContext):
        self.context = context
        self.settings = context.settings
        self.gateway = context.gateway
        self.notifier = context.notifier
        self.waiter = context.waiter
        self.checker = PreconditionChecker(
            settings=context.settings,
            gateway=context.gateway,
            probe=context.probe,
            power=context.power,
            waiter=context.waiter,
        )
        self.report = WorkflowReport(action=self.action)

    async def run(self) -> WorkflowReport:
        """Execute the workflow; failures end up in the returned report."""
        self.report.status = WorkflowStatus.IN_PROGRESS
        self.report.started_at = datetime.now(timezone.utc)
        try:
            await self._run()
        except CycleError as e:
            await self._abort(e)
            return self.report
        except Exception as e:
            logger.exception("Unexpected error during %s", self.action)
            error = CycleError(f"Unexpected error: {e.__class__.__name__}: {e}", reason="unexpected")
            await self._abort(error)
            return self.report

        self.report.status = WorkflowStatus.SUCCESS
        self.report.finished_at = datetime.now(timezone.utc)
        self._enter_complete()
        await self.notifier.completed(self.report.summary())
        return self.report

    async def _run(self) -> None:
        raise NotImplementedError

    def _enter_complete(self) -> None:
        self.report.states.append("complete")

    async def _on_abort(self, error: CycleError) -> None:
        """Hook for workflow-specific cleanup before the failure notice."""

    async def _abort(self, error: CycleError) -> None:
        self.report.status = WorkflowStatus.FAILED
        self.report.reason = error.reason
        self.report.error_message = str(error)
        self.report.finished_at = datetime.now(timezone.utc)
        await self._on_abort(error)
        await self.notifier.broadcast(
            f"{self.action.capitalize()} aborted after '{self.report.last_state}': {error}",
            level=logging.ERROR,
        )
        await self.notifier.failed(error)

    def _enter(self, state: Enum) -> None:
        self.report.states.append(state.value)
        logger.debug("%s -> %s", self.action, state.value)

    def _warn(self, message: str) -> None:
        logger.warning(message)
        self.report.warnings.append(message)

    def _record_healing(self, result: HealingFlagResult) -> None:
        verb = "set" if result.enabled else "cleared"
        if result.ok:
            logger.info("Ceph flags %s: %s", verb, ", ".join(result.applied))
            return
        failure = HealingFlagFailure(result.enabled, result.failed_flags)
        logger.error(str(failure))
        self.report.warnings.append(str(failure))
