"""
Monitoring module exports.
"""

from stepengine.monitoring.logger import (
    JSONFormatter,
    RunnerLogAdapter,
    get_logger,
    log_frame_message,
    log_step_event,
    setup_logging,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "log_step_event",
    "log_frame_message",
    "JSONFormatter",
    "RunnerLogAdapter",
]
