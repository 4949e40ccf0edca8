"""
Core data models and types for the stepengine runner.
"""

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


class ErrorType(str, Enum):
    """Kinds of test run errors the engine reports."""

    EMPTY_FIRST_ARGUMENT = "emptyFirstArgument"
    INVISIBLE_ACTION_ELEMENT = "invisibleActionElement"
    ACTION_ADDITIONAL_ELEMENT_IS_INVISIBLE = "actionAdditionalElementIsInvisibleError"
    INCORRECT_DRAGGING_SECOND_ARGUMENT = "incorrectDraggingSecondArgument"
    INCORRECT_SELECT_ACTION_ARGUMENTS = "incorrectSelectActionArguments"
    EMPTY_TYPE_ACTION_ARGUMENT = "emptyTypeActionArgument"
    INCORRECT_PRESS_ACTION_ARGUMENT = "incorrectPressActionArgument"
    INCORRECT_WAIT_ACTION_MILLISECONDS_ARGUMENT = "incorrectWaitActionMillisecondsArgument"
    INCORRECT_WAIT_FOR_ACTION_EVENT_ARGUMENT = "incorrectWaitForActionEventArgument"
    INCORRECT_WAIT_FOR_ACTION_TIMEOUT_ARGUMENT = "incorrectWaitForActionTimeoutArgument"
    WAIT_FOR_ACTION_TIMEOUT_EXCEEDED = "waitForActionTimeoutExceeded"
    UPLOAD_INVALID_FILE_PATH_ARGUMENT = "uploadInvalidFilePathArgument"
    UPLOAD_ELEMENT_IS_NOT_FILE_INPUT = "uploadElementIsNotFileInput"
    UPLOAD_CAN_NOT_FIND_FILE_TO_UPLOAD = "uploadCanNotFindFileToUpload"
    INCORRECT_IFRAME_ARGUMENT = "incorrectIFrameArgument"
    EMPTY_IFRAME_ARGUMENT = "emptyIFrameArgument"
    MULTIPLE_IFRAME_ARGUMENT = "multipleIFrameArgument"
    IFRAME_ARGUMENT_IS_NOT_IFRAME = "iframeArgumentIsNotIFrame"
    IN_IFRAME_TARGET_LOADING_TIMEOUT = "inIFrameTargetLoadingTimeout"
    UNCAUGHT_JS_ERROR = "uncaughtJSError"
    UNEXPECTED_DIALOG = "unexpectedDialog"
    EXPECTED_DIALOG_DOESNT_APPEAR = "expectedDialogDoesntAppear"


class ErrorRecord(BaseModel):
    """A single reported test run error. Carries no behavior."""

    type: ErrorType
    step_name: Optional[str] = None
    step_num: Optional[int] = None
    action: Optional[str] = None
    element: Optional[str] = None
    source_index: Optional[int] = None
    dialog: Optional[str] = None
    message: Optional[str] = None
    file_paths: Optional[List[str]] = None
    script_err: Optional[str] = None
    page_error: bool = False
    page_dest_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for the frame channel, leaving out unset context."""
        return self.model_dump(mode="json", exclude_defaults=True, exclude={"type"}) | {
            "type": self.type.value
        }


class ElementCollection(Sequence):
    """Collection-like wrapper around matched elements."""

    def __init__(self, elements: Optional[Sequence[Any]] = None) -> None:
        self._elements = tuple(elements or ())

    def __getitem__(self, index):
        return self._elements[index]

    def __len__(self) -> int:
        return len(self._elements)

    def __iter__(self) -> Iterator[Any]:
        return iter(self._elements)

    def __repr__(self) -> str:
        return f"ElementCollection({list(self._elements)!r})"


@dataclass(frozen=True)
class ResolvedTarget:
    """A concrete element plus the window its automations must run in."""

    element: Any
    window: Any
    frame: Any = None


class Modifiers(BaseModel):
    """Modifier keys held during a gesture."""

    ctrl: bool = False
    alt: bool = False
    shift: bool = False
    meta: bool = False


class MouseOptions(BaseModel):
    """Options shared by pointer gestures."""

    offset_x: int
    offset_y: int
    modifiers: Modifiers = Field(default_factory=Modifiers)


class ClickOptions(MouseOptions):
    """Options of click-like gestures."""

    caret_pos: Optional[int] = None


class TypeOptions(ClickOptions):
    """Options of the type gesture."""

    replace: bool = False


class DragToElement(BaseModel):
    """Drag destination given as an element."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    destination: Any


class DragToOffset(BaseModel):
    """Drag destination given as an offset from the start point."""

    model_config = ConfigDict(frozen=True)

    drag_offset_x: int
    drag_offset_y: int


DragDestination = Union[DragToElement, DragToOffset]


class SelectAll(BaseModel):
    """Select the whole content of the target."""

    model_config = ConfigDict(frozen=True)


class SelectByOffset(BaseModel):
    """Select from the start of the content to an offset (negative selects backwards)."""

    model_config = ConfigDict(frozen=True)

    offset: int


class SelectByPositions(BaseModel):
    """Select between two character positions."""

    model_config = ConfigDict(frozen=True)

    start_pos: int
    end_pos: int


class SelectByLines(BaseModel):
    """Select between two (line, position) points of a multiline field."""

    model_config = ConfigDict(frozen=True)

    start_line: int
    start_pos: int
    end_line: int
    end_pos: Optional[int] = None

    def as_positions(self) -> SelectByPositions:
        """Interpretation used by fields that have a single line."""
        return SelectByPositions(start_pos=self.start_line, end_pos=self.start_pos)


class SelectRange(BaseModel):
    """Select editable content between two nodes sharing a common parent."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    start_node: Any
    end_node: Any
    common_parent: Any


SelectArguments = Union[SelectAll, SelectByOffset, SelectByPositions, SelectByLines, SelectRange]


class ParsedKeySequence(BaseModel):
    """Result of parsing a key sequence string."""

    combinations: List[str] = Field(default_factory=list)
    error: bool = False


class PageError(BaseModel):
    """An uncaught script error raised by the page under test."""

    msg: str
    page_url: Optional[str] = None
    in_iframe: bool = False


class FrameCommand(str, Enum):
    """Commands exchanged between a document and its frames."""

    PING = "ping"
    PONG = "pong"
    RUN_STEP = "runStep"
    STEP_COMPLETED = "iframeStepCompleted"
    ERROR = "iframeError"
    FAILED_ASSERTION = "iframeFailedAssertion"
    GET_SHARED_DATA_REQUEST = "getSharedDataRequest"
    GET_SHARED_DATA_RESPONSE = "getSharedDataResponse"
    SET_SHARED_DATA = "setSharedData"
    NEXT_STEP_STARTED = "nextStepStarted"
    ACTION_TARGET_WAITING_STARTED = "actionTargetWaitingStarted"
    ACTION_RUN = "actionRun"
    TAKE_SCREENSHOT_REQUEST = "takeScreenshotRequest"
    TAKE_SCREENSHOT_RESPONSE = "takeScreenshotResponse"
    NATIVE_DIALOGS_INFO_CHANGED = "nativeDialogsInfoChanged"
    BEFORE_UNLOAD_REQUEST = "iframeBeforeUnloadRequest"
    BEFORE_UNLOAD_RESPONSE = "iframeBeforeUnloadResponse"
    WAITING_STEP_COMPLETION_REQUEST = "waitingStepCompletionRequest"
    WAITING_STEP_COMPLETION_RESPONSE = "waitingStepCompletionResponse"


class FrameMessage(BaseModel):
    """A tagged message addressed to a specific frame window."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    message_id: UUID = Field(default_factory=uuid4)
    command: FrameCommand
    payload: Dict[str, Any] = Field(default_factory=dict)
    source: Any = None
    correlation_id: Optional[UUID] = Field(
        None, description="Set on requests that expect a response"
    )
    reply_to: Optional[UUID] = Field(
        None, description="Correlation ID of the request this message answers"
    )
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class StepState:
    """Mutable state of one test run."""

    step: int = 0
    step_name: Optional[str] = None
    in_async_action: bool = False
    shared_data: Dict[str, Any] = field(default_factory=dict)
    step_delay_timer: Optional[asyncio.TimerHandle] = None
    waited_frame: Any = None
    page_unloading: bool = False
    stopped: bool = False
    source_index: Optional[int] = None

    def clear_step_delay(self) -> None:
        if self.step_delay_timer is not None:
            self.step_delay_timer.cancel()
            self.step_delay_timer = None
