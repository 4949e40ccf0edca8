"""
Maps failure conditions into error records delivered to the step iterator.
"""

from typing import TYPE_CHECKING, Any

from stepengine.core.types import ErrorRecord, ErrorType
from stepengine.error_handling.exceptions import ActionFailure
from stepengine.monitoring.logger import get_logger

if TYPE_CHECKING:
    from stepengine.orchestration.step_iterator import StepIterator

logger = get_logger(__name__)


class ErrorReporter:
    """Builds error records with the current step context and reports them."""

    def __init__(self, step_iterator: "StepIterator") -> None:
        self._iterator = step_iterator

    def build(self, error_type: ErrorType, **context: Any) -> ErrorRecord:
        context.setdefault("step_name", self._iterator.get_current_step())
        step_num = self._iterator.get_current_step_num()
        context.setdefault("step_num", step_num if step_num >= 0 else None)
        context.setdefault("source_index", self._iterator.state.source_index)
        return ErrorRecord(type=error_type, **context)

    def report(self, error_type: ErrorType, **context: Any) -> ErrorRecord:
        """Deliver an error record without unwinding the caller."""
        record = self.build(error_type, **context)
        logger.debug(
            f"Reporting {error_type.value}",
            extra={"error_type": error_type.value, "step_name": record.step_name},
        )
        self._iterator.on_error(record)
        return record

    def fail(self, error_type: ErrorType, **context: Any) -> ActionFailure:
        """
        Deliver an error record and return the exception that unwinds the step.

        Usage: ``raise reporter.fail(ErrorType.EMPTY_FIRST_ARGUMENT, action="click")``
        """
        return ActionFailure(self.report(error_type, **context))
