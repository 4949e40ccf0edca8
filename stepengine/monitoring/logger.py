"""
Logging configuration and utilities for the stepengine runner.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from rich.console import Console
from rich.logging import RichHandler

from stepengine.config.settings import get_settings

_STRUCTURED_FIELDS = (
    "step_name",
    "step_num",
    "action",
    "command",
    "frame",
    "error_type",
    "runner",
)


class JSONFormatter(logging.Formatter):
    """JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        # Add extra fields if present
        for field in _STRUCTURED_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class RunnerLogAdapter(logging.LoggerAdapter):
    """Log adapter that stamps runner context onto every record."""

    def process(
        self, msg: str, kwargs: Dict[str, Any]
    ) -> tuple[str, Dict[str, Any]]:
        """Add runner context to log records."""
        extra = kwargs.get("extra", {})
        extra.update(self.extra)
        kwargs["extra"] = extra
        return msg, kwargs


def setup_logging(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    log_file: Optional[str] = None,
) -> logging.Logger:
    """
    Set up logging configuration.

    Args:
        log_level: Logging level (defaults to settings)
        log_format: Log format 'json' or 'text' (defaults to settings)
        log_file: Optional log file path (defaults to settings)

    Returns:
        Root logger instance
    """
    settings = get_settings()

    level = log_level or settings.log_level
    format_type = log_format or settings.log_format
    file_path = log_file or settings.log_file

    numeric_level = getattr(logging, level.upper())

    # Remove existing handlers
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if format_type == "json":
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(JSONFormatter())
    else:
        console = Console(stderr=True)
        console_handler = RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
        )

    console_handler.setLevel(numeric_level)
    root_logger.addHandler(console_handler)

    if file_path:
        file_handler = logging.FileHandler(file_path)
        file_handler.setLevel(numeric_level)

        if format_type == "json":
            file_handler.setFormatter(JSONFormatter())
        else:
            file_handler.setFormatter(
                logging.Formatter(
                    "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
                )
            )

        root_logger.addHandler(file_handler)

    root_logger.setLevel(numeric_level)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    logger = logging.getLogger("stepengine")
    logger.info(
        "stepengine logging initialized",
        extra={
            "log_level": level,
            "log_format": format_type,
            "log_file": file_path,
        },
    )

    return root_logger


def get_logger(name: str, **context: Any) -> logging.Logger:
    """
    Get a logger instance with optional context.

    Args:
        name: Logger name
        **context: Additional context to include in logs

    Returns:
        Logger instance
    """
    logger = logging.getLogger(name)

    if context:
        return RunnerLogAdapter(logger, context)

    return logger


def log_step_event(
    event_type: str,
    step_name: Optional[str] = None,
    step_num: Optional[int] = None,
    data: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Log a step lifecycle event.

    Args:
        event_type: Type of event
        step_name: Name of the step the event belongs to
        step_num: Index of the step
        data: Additional event data
    """
    logger = logging.getLogger("stepengine.step_events")

    extra: Dict[str, Any] = {"event_type": event_type}
    if step_name is not None:
        extra["step_name"] = step_name
    if step_num is not None:
        extra["step_num"] = step_num
    if data:
        extra.update(data)

    logger.info(f"Step event: {event_type}", extra=extra)


def log_frame_message(
    direction: str,
    command: str,
    frame: Any,
    correlation_id: Optional[str] = None,
) -> None:
    """
    Log a cross-frame message.

    Args:
        direction: 'in' or 'out'
        command: Frame command tag
        frame: Peer window of the message
        correlation_id: Optional request correlation ID
    """
    logger = logging.getLogger("stepengine.frame_messages")

    extra = {
        "command": command,
        "frame": repr(frame),
    }
    if correlation_id:
        extra["correlation_id"] = correlation_id

    arrow = "<-" if direction == "in" else "->"
    logger.debug(f"Frame message {arrow} {command}", extra=extra)
