"""
The two fixed power workflows and the plumbing they share.
"""

from pvecycle.workflow.base import Sequencer, WorkflowContext, WorkflowReport, WorkflowStatus
from pvecycle.workflow.preconditions import PreconditionChecker
from pvecycle.workflow.runner import SEQUENCERS, open_context, run_workflow
from pvecycle.workflow.shutdown import ShutdownSequencer, ShutdownState
from pvecycle.workflow.startup import StartupSequencer, StartupState

__all__ = [
    "PreconditionChecker",
    "SEQUENCERS",
    "Sequencer",
    "ShutdownSequencer",
    "ShutdownState",
    "StartupSequencer",
    "StartupState",
    "WorkflowContext",
    "WorkflowReport",
    "WorkflowStatus",
    "open_context",
    "run_workflow",
]
