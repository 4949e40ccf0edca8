"""
Core module exports.
"""

from stepengine.core.interfaces import (
    Assertions,
    Automation,
    AutomationFactory,
    AutomationRegistry,
    ConfigProvider,
    KeySequenceParser,
    MessageChannel,
    NativeDialogs,
    PageAdapter,
    ScreenshotCapturer,
    Transport,
)
from stepengine.core.types import (
    ClickOptions,
    DragToElement,
    DragToOffset,
    ElementCollection,
    ErrorRecord,
    ErrorType,
    FrameCommand,
    FrameMessage,
    Modifiers,
    MouseOptions,
    PageError,
    ParsedKeySequence,
    ResolvedTarget,
    SelectAll,
    SelectByLines,
    SelectByOffset,
    SelectByPositions,
    SelectRange,
    StepState,
    TypeOptions,
)

__all__ = [
    # Interfaces
    "PageAdapter",
    "Automation",
    "AutomationFactory",
    "AutomationRegistry",
    "KeySequenceParser",
    "ScreenshotCapturer",
    "Transport",
    "NativeDialogs",
    "Assertions",
    "MessageChannel",
    "ConfigProvider",
    # Types
    "ErrorType",
    "ErrorRecord",
    "ElementCollection",
    "ResolvedTarget",
    "Modifiers",
    "MouseOptions",
    "ClickOptions",
    "TypeOptions",
    "DragToElement",
    "DragToOffset",
    "SelectAll",
    "SelectByOffset",
    "SelectByPositions",
    "SelectByLines",
    "SelectRange",
    "ParsedKeySequence",
    "PageError",
    "FrameCommand",
    "FrameMessage",
    "StepState",
]
