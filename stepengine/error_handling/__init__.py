"""
Error handling for the stepengine runner.

Exceptions unwind failing step bodies; the reporter turns failure conditions into
error records for the step iterator.
"""

from .exceptions import (
    ActionFailure,
    AutomationError,
    AutomationErrorCode,
    ConcurrentActionError,
    FrameProtocolError,
    InvalidActionArgument,
    NonRetryableError,
    StepEngineError,
    StepResolutionError,
)
from .reporter import ErrorReporter

__all__ = [
    # Exceptions
    "StepEngineError",
    "NonRetryableError",
    "ActionFailure",
    "AutomationError",
    "AutomationErrorCode",
    "ConcurrentActionError",
    "FrameProtocolError",
    "InvalidActionArgument",
    "StepResolutionError",
    # Reporting
    "ErrorReporter",
]
