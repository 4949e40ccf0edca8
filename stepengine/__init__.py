"""
stepengine - step runner and gesture dispatch engine for in-page UI tests.
"""

from stepengine.actions import ActionDispatcher
from stepengine.api import TestController
from stepengine.config import Settings, get_settings
from stepengine.core import ElementCollection, ErrorRecord, ErrorType
from stepengine.error_handling import ActionFailure, StepEngineError
from stepengine.orchestration import (
    FrameRunner,
    InProcessChannel,
    RunnerBase,
    StepIterator,
    current_shared_data,
    register_step,
)

__version__ = "0.1.0"

__all__ = [
    "ActionDispatcher",
    "TestController",
    "Settings",
    "get_settings",
    "ElementCollection",
    "ErrorRecord",
    "ErrorType",
    "ActionFailure",
    "StepEngineError",
    "FrameRunner",
    "InProcessChannel",
    "RunnerBase",
    "StepIterator",
    "current_shared_data",
    "register_step",
]
