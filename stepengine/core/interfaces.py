"""
Core interfaces for the collaborators the engine drives but does not implement.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from stepengine.core.types import (
    ClickOptions,
    FrameMessage,
    MouseOptions,
    ParsedKeySequence,
    SelectArguments,
    TypeOptions,
)


class PageAdapter(ABC):
    """Element query, geometry and document capabilities of one page."""

    @property
    @abstractmethod
    def window(self) -> Any:
        """Top window of the document this engine runs in."""
        pass

    @abstractmethod
    def query(self, selector: str) -> List[Any]:
        """Return the elements matching a selector, in document order."""
        pass

    @abstractmethod
    def is_element(self, obj: Any) -> bool:
        pass

    @abstractmethod
    def is_text_node(self, obj: Any) -> bool:
        pass

    @abstractmethod
    def tag_name(self, element: Any) -> str:
        """Lower-case tag name of an element."""
        pass

    @abstractmethod
    def is_element_visible(self, element: Any) -> bool:
        """Geometry based visibility of an element."""
        pass

    @abstractmethod
    def is_option_element_visible(self, element: Any) -> bool:
        """Visibility of an option or optgroup inside its (possibly collapsed) list."""
        pass

    @abstractmethod
    def is_not_visible_node(self, node: Any) -> bool:
        pass

    @abstractmethod
    def describe(self, element: Any) -> str:
        """Human readable description of an element for error messages."""
        pass

    @abstractmethod
    def is_file_input(self, element: Any) -> bool:
        pass

    @abstractmethod
    def is_content_editable(self, node: Any) -> bool:
        pass

    @abstractmethod
    def is_multiline(self, element: Any) -> bool:
        """Whether line based selection applies to the element (a textarea)."""
        pass

    @abstractmethod
    def nearest_common_ancestor(self, first: Any, second: Any) -> Optional[Any]:
        pass

    @abstractmethod
    def parent_element(self, node: Any) -> Optional[Any]:
        pass

    @abstractmethod
    def is_in_document(self, element: Any) -> bool:
        pass

    @abstractmethod
    def content_window(self, frame: Any) -> Any:
        """Window of a frame element."""
        pass

    @abstractmethod
    def owner_frame(self, element: Any) -> Optional[Any]:
        """Frame element hosting the element, or None for the top document."""
        pass

    @abstractmethod
    def get_offset_options(
        self, element: Any, offset_x: Optional[int], offset_y: Optional[int]
    ) -> Tuple[int, int]:
        """Resolve gesture offsets, defaulting to the element's centre."""
        pass

    @abstractmethod
    def navigate_to(self, url: str) -> None:
        pass

    @abstractmethod
    async def document_ready(self) -> None:
        pass

    @abstractmethod
    async def wait_for_initial_requests(
        self, collection_delay_ms: int, additional_collection_delay_ms: int
    ) -> None:
        """Wait until the requests the page issued while loading have settled."""
        pass


class Automation(ABC):
    """A single simulated gesture bound to its target and options."""

    @abstractmethod
    async def run(self) -> None:
        """
        Perform the gesture.

        Raises:
            AutomationError: If the gesture could not be completed
        """
        pass


class AutomationFactory(ABC):
    """Gesture simulators bound to one window."""

    @abstractmethod
    def click(self, element: Any, options: ClickOptions) -> Automation:
        pass

    @abstractmethod
    def select_child_click(self, element: Any, options: ClickOptions) -> Automation:
        pass

    @abstractmethod
    def rclick(self, element: Any, options: ClickOptions) -> Automation:
        pass

    @abstractmethod
    def dblclick(self, element: Any, options: ClickOptions) -> Automation:
        pass

    @abstractmethod
    def drag_to_element(
        self, element: Any, destination: Any, options: MouseOptions
    ) -> Automation:
        pass

    @abstractmethod
    def drag_to_offset(
        self, element: Any, offset_x: int, offset_y: int, options: MouseOptions
    ) -> Automation:
        pass

    @abstractmethod
    def select_text(self, element: Any, start_pos: int, end_pos: int) -> Automation:
        pass

    @abstractmethod
    def select_editable_content(self, start_node: Any, end_node: Any) -> Automation:
        pass

    @abstractmethod
    def select_text_positions(
        self, element: Any, arguments: SelectArguments
    ) -> Tuple[int, int]:
        """Translate select arguments into start and end caret positions."""
        pass

    @abstractmethod
    def type_text(self, element: Any, text: str, options: TypeOptions) -> Automation:
        pass

    @abstractmethod
    def hover(self, element: Any, options: MouseOptions) -> Automation:
        pass

    @abstractmethod
    def press(self, combinations: List[str]) -> Automation:
        pass

    @abstractmethod
    def upload(
        self,
        element: Any,
        paths: Optional[Sequence[str]],
        on_missing_files: Callable[[List[str]], None],
    ) -> Automation:
        pass


class AutomationRegistry(ABC):
    """Lookup of the automation factory for a window."""

    @abstractmethod
    def for_window(self, window: Any) -> AutomationFactory:
        pass


class KeySequenceParser(ABC):
    @abstractmethod
    def parse(self, key_sequence: str) -> ParsedKeySequence:
        pass


class ScreenshotCapturer(ABC):
    @abstractmethod
    async def capture(self, file_path: Optional[str] = None) -> None:
        pass


class Transport(ABC):
    """Service channel to the test run server."""

    @abstractmethod
    async def get_and_uncheck_file_downloading_flag(self) -> bool:
        pass


class NativeDialogs(ABC):
    """Native dialog interception."""

    @abstractmethod
    def init(
        self,
        info: Optional[Dict[str, Any]],
        on_unexpected_dialog: Callable[[str, Optional[str]], None],
        on_expected_dialog_missing: Callable[[str], None],
        on_info_changed: Callable[[Dict[str, Any]], None],
    ) -> None:
        pass

    @abstractmethod
    def reset_handlers(self) -> None:
        pass

    @abstractmethod
    def check_expected_dialogs(self) -> None:
        pass

    @abstractmethod
    def handle_alert(self) -> None:
        pass

    @abstractmethod
    def handle_confirm(self, value: bool) -> None:
        pass

    @abstractmethod
    def handle_prompt(self, text: Optional[str]) -> None:
        pass

    @abstractmethod
    def handle_before_unload(self) -> None:
        pass

    @abstractmethod
    def destroy(self) -> None:
        pass


class Assertions(ABC):
    """Assertion library; reports failures through the handler it is bound to."""

    @abstractmethod
    def bind(self, on_failed: Callable[[Dict[str, Any]], None]) -> None:
        pass

    @abstractmethod
    def ok(self, actual: Any, message: Optional[str] = None) -> None:
        pass

    @abstractmethod
    def not_ok(self, actual: Any, message: Optional[str] = None) -> None:
        pass

    @abstractmethod
    def eq(self, actual: Any, expected: Any, message: Optional[str] = None) -> None:
        pass

    @abstractmethod
    def not_eq(self, actual: Any, unexpected: Any, message: Optional[str] = None) -> None:
        pass


class MessageChannel(ABC):
    """Delivery of frame messages to another window."""

    @abstractmethod
    def send(self, message: FrameMessage, target_window: Any) -> None:
        pass


class ConfigProvider(ABC):
    """Abstract interface for configuration management."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value."""
        pass

    @abstractmethod
    def get_required(self, key: str) -> Any:
        """Get required configuration value, raise if missing."""
        pass

    @abstractmethod
    def get_all(self) -> Dict[str, Any]:
        """Get all configuration values."""
        pass
