"""
Gesture dispatch for stepengine.
"""

from .arguments import (
    parse_drag_arguments,
    parse_press_arguments,
    parse_select_arguments,
    validate_upload_paths,
)
from .dispatcher import ActionDispatcher
from .resolver import TargetResolver
from .visibility import VisibilityGate

__all__ = [
    "ActionDispatcher",
    "TargetResolver",
    "VisibilityGate",
    "parse_drag_arguments",
    "parse_press_arguments",
    "parse_select_arguments",
    "validate_upload_paths",
]
