"""
Exception hierarchy for the stepengine runner.

Test run failures travel as ``ErrorRecord`` values to the step iterator; the
exceptions here carry them out of the step body that failed, or describe engine
misuse and collaborator rejections.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from stepengine.core.types import ErrorRecord, ErrorType


class StepEngineError(Exception):
    """Base exception for all stepengine errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None
        }


class NonRetryableError(StepEngineError):
    """Base class for errors that end the test run."""
    pass


class ActionFailure(NonRetryableError):
    """
    A reported test run error unwinding the step body that caused it.

    The record has already been delivered to the step iterator when this is
    raised; handlers must not report it again.
    """

    def __init__(self, record: ErrorRecord, **kwargs):
        super().__init__(
            f"{record.type.value} in step {record.step_name!r}",
            error_code=record.type.value,
            **kwargs
        )
        self.record = record
        self.details.update(record.to_dict())

    @property
    def error_type(self) -> ErrorType:
        return self.record.type


class InvalidActionArgument(NonRetryableError):
    """Raised by argument parsing when a call's arguments have the wrong shape."""

    def __init__(self, error_type: ErrorType, message: Optional[str] = None, **kwargs):
        super().__init__(
            message or f"Invalid action arguments: {error_type.value}",
            error_code=error_type.value,
            **kwargs
        )
        self.error_type = error_type


class AutomationErrorCode(str, Enum):
    """Rejection codes of gesture simulators."""

    ELEMENT_INVISIBLE = "actionElementIsInvisibleError"
    ADDITIONAL_ELEMENT_INVISIBLE = "actionAdditionalElementIsInvisibleError"
    FAILED = "automationFailed"


class AutomationError(StepEngineError):
    """Rejection raised by an automation's run."""

    def __init__(
        self,
        message: str,
        code: AutomationErrorCode = AutomationErrorCode.FAILED,
        **kwargs
    ):
        super().__init__(message, error_code=code.value, **kwargs)
        self.code = code

    @property
    def is_visibility_loss(self) -> bool:
        return self.code in (
            AutomationErrorCode.ELEMENT_INVISIBLE,
            AutomationErrorCode.ADDITIONAL_ELEMENT_INVISIBLE,
        )


class ConcurrentActionError(NonRetryableError):
    """Raised when a second asynchronous action is registered while one is in flight."""

    def __init__(self, message: str, step_name: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.step_name = step_name
        self.details.update({"step_name": step_name})


class FrameProtocolError(StepEngineError):
    """Error raised when a frame request cannot be completed."""

    def __init__(
        self,
        message: str,
        command: str,
        timeout_ms: Optional[int] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.command = command
        self.timeout_ms = timeout_ms
        self.details.update({
            "command": command,
            "timeout_ms": timeout_ms
        })


class StepResolutionError(NonRetryableError):
    """Raised when a delegated step reference cannot be turned into a callable."""

    def __init__(self, message: str, reference: str, **kwargs):
        super().__init__(message, **kwargs)
        self.reference = reference
        self.details.update({"reference": reference})
