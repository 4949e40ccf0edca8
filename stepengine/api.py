"""
Command surface handed to test step bodies.
"""

from typing import TYPE_CHECKING, Any, Callable, Dict, Mapping, Optional

if TYPE_CHECKING:
    from stepengine.orchestration.runner import RunnerBase


class TestController:
    """
    What a step body sees as its argument.

    Gestures are forwarded to the runner's dispatcher, frames to the runner,
    checks to the assertions library and dialog expectations to the native
    dialogs collaborator. Holds no state of its own.
    """

    # Not a pytest test class despite the name
    __test__ = False

    def __init__(self, runner: "RunnerBase") -> None:
        self._runner = runner

    @property
    def shared(self) -> Dict[str, Any]:
        """Shared data of the running test, visible to every step and frame."""
        return self._runner.step_iterator.get_shared_data()

    # Gestures

    async def click(self, what: Any, options: Optional[Mapping[str, Any]] = None) -> None:
        await self._runner.dispatcher.click(what, options)

    async def rclick(self, what: Any, options: Optional[Mapping[str, Any]] = None) -> None:
        await self._runner.dispatcher.rclick(what, options)

    async def dblclick(self, what: Any, options: Optional[Mapping[str, Any]] = None) -> None:
        await self._runner.dispatcher.dblclick(what, options)

    async def drag(
        self, what: Any, *args: Any, options: Optional[Mapping[str, Any]] = None
    ) -> None:
        await self._runner.dispatcher.drag(what, *args, options=options)

    async def select(self, what: Any, *args: Any) -> None:
        await self._runner.dispatcher.select(what, *args)

    async def type(
        self, what: Any, text: Any, options: Optional[Mapping[str, Any]] = None
    ) -> None:
        await self._runner.dispatcher.type(what, text, options)

    async def hover(self, what: Any, options: Optional[Mapping[str, Any]] = None) -> None:
        await self._runner.dispatcher.hover(what, options)

    async def press(self, *key_sequences: Any) -> None:
        await self._runner.dispatcher.press(*key_sequences)

    async def wait(self, ms: Any, condition: Optional[Callable[[], Any]] = None) -> None:
        await self._runner.dispatcher.wait(ms, condition)

    async def wait_for(self, event: Any, timeout: Any = None) -> None:
        await self._runner.dispatcher.wait_for(event, timeout)

    async def navigate_to(self, url: str) -> None:
        await self._runner.dispatcher.navigate_to(url)

    async def upload(self, what: Any, paths: Any = None) -> None:
        await self._runner.dispatcher.upload(what, paths)

    async def screenshot(self, file_path: Optional[str] = None) -> None:
        await self._runner.dispatcher.screenshot(file_path)

    # Frames

    def in_iframe(self, frame_getter: Any, step: Any):
        return self._runner.in_iframe(frame_getter, step)

    # Assertions

    def ok(self, actual: Any, message: Optional[str] = None) -> None:
        self._assertions().ok(actual, message)

    def not_ok(self, actual: Any, message: Optional[str] = None) -> None:
        self._assertions().not_ok(actual, message)

    def eq(self, actual: Any, expected: Any, message: Optional[str] = None) -> None:
        self._assertions().eq(actual, expected, message)

    def not_eq(self, actual: Any, unexpected: Any, message: Optional[str] = None) -> None:
        self._assertions().not_eq(actual, unexpected, message)

    def _assertions(self):
        if self._runner.assertions is None:
            raise RuntimeError("No assertions library configured")
        return self._runner.assertions

    # Native dialogs

    def handle_alert(self) -> None:
        self._dialogs().handle_alert()

    def handle_confirm(self, value: bool) -> None:
        self._dialogs().handle_confirm(value)

    def handle_prompt(self, text: Optional[str] = None) -> None:
        self._dialogs().handle_prompt(text)

    def handle_before_unload(self) -> None:
        self._dialogs().handle_before_unload()

    def _dialogs(self):
        if self._runner.dialogs is None:
            raise RuntimeError("No native dialogs handler configured")
        return self._runner.dialogs
