"""
Orchestration of test runs: step sequencing, frames and the runner.
"""

from stepengine.orchestration.communication import FrameMessageBus, InProcessChannel
from stepengine.orchestration.events import EventEmitter
from stepengine.orchestration.frame_runner import FrameRunner
from stepengine.orchestration.frame_sync import FrameSyncProtocol, FrameSyncState
from stepengine.orchestration.runner import RunnerBase
from stepengine.orchestration.step_iterator import StepIterator, current_shared_data
from stepengine.orchestration.steps import register_step, resolve_step, step_reference

__all__ = [
    "EventEmitter",
    "FrameMessageBus",
    "InProcessChannel",
    "FrameRunner",
    "FrameSyncProtocol",
    "FrameSyncState",
    "RunnerBase",
    "StepIterator",
    "current_shared_data",
    "register_step",
    "resolve_step",
    "step_reference",
]
