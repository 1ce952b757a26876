"""
Wires the real collaborators together and runs one workflow.
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Dict, Optional, Type

from pvecycle.cluster.proxmox import ProxmoxGateway
from pvecycle.config import Settings
from pvecycle.net.ping import PingProbe
from pvecycle.net.wol import WakeOnLan
from pvecycle.notify.notifier import Notifier
from pvecycle.nut.client import NUTClient, UPSPowerSource
from pvecycle.state.lock import PidFileLock
from pvecycle.state.snapshot import SnapshotStore

from .base import Sequencer, WorkflowContext, WorkflowReport
from .shutdown import ShutdownSequencer
from .startup import StartupSequencer

logger = logging.getLogger(__name__)

SEQUENCERS: Dict[str, Type[Sequencer]] = {
    "shutdown": ShutdownSequencer,
    "startup": StartupSequencer,
}


@asynccontextmanager
async def open_context(
    settings: Settings, action: str, log_file: Optional[Path] = None
) -> AsyncIterator[WorkflowContext]:
    """Build the production context; the API client is closed on exit."""
    async with ProxmoxGateway(settings) as gateway:
        yield WorkflowContext(
            settings=settings,
            gateway=gateway,
            probe=PingProbe(),
            waker=WakeOnLan(broadcast=settings.WOL_BROADCAST),
            power=UPSPowerSource(NUTClient.from_settings(settings), settings.UPS_NAME),
            snapshots=SnapshotStore(settings.SNAPSHOT_FILE),
            lock=PidFileLock(settings.LOCK_FILE),
            notifier=Notifier.from_settings(settings, action, log_file=log_file),
        )


async def run_workflow(
    settings: Settings, action: str, log_file: Optional[Path] = None
) -> WorkflowReport:
    """Run ``action`` ("shutdown" or "startup") to completion or abort."""
    try:
        sequencer_cls = SEQUENCERS[action]
    except KeyError:
        raise ValueError(f"Unknown action: {action}") from None

    async with open_context(settings, action, log_file) as context:
        report = await sequencer_cls(context).run()
    logger.debug("Workflow report: %s", report.to_dict())
    return report
