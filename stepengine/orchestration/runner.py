"""
Test run orchestration: page readiness, step execution, frames, dialogs and events.
"""

from typing import Any, Awaitable, Callable, Dict, Optional, Sequence

from stepengine.actions.dispatcher import ActionDispatcher
from stepengine.api import TestController
from stepengine.config.settings import Settings, get_settings
from stepengine.core.interfaces import (
    Assertions,
    AutomationRegistry,
    KeySequenceParser,
    NativeDialogs,
    PageAdapter,
    ScreenshotCapturer,
    Transport,
)
from stepengine.core.timing import sleep_ms
from stepengine.core.types import ElementCollection, ErrorRecord, ErrorType, PageError
from stepengine.error_handling.reporter import ErrorReporter
from stepengine.monitoring.logger import get_logger
from stepengine.orchestration.communication import FrameMessageBus
from stepengine.orchestration.events import EventEmitter, EventHandler
from stepengine.orchestration.frame_sync import FrameSyncProtocol
from stepengine.orchestration.step_iterator import StepIterator
from stepengine.orchestration.steps import step_reference

logger = get_logger(__name__)

FRAME_TAGS = ("iframe", "frame")

Step = Callable[[Any], Awaitable[None]]


class RunnerBase:
    """
    Orchestrates one test run in one document.

    Owns the step iterator, the gesture dispatcher and, when a message bus is
    given, the delegation of steps to frames. The ``controller`` attribute is the
    command surface step bodies receive.
    """

    TEST_STARTED_EVENT = "testStarted"
    TEST_COMPLETED_EVENT = "testCompleted"
    TEST_FAILED_EVENT = "testFailed"
    NEXT_STEP_STARTED_EVENT = "nextStepStarted"
    ACTION_TARGET_WAITING_STARTED_EVENT = "actionTargetWaitingStarted"
    ACTION_RUN_EVENT = "actionRun"
    ASSERTION_FAILED_EVENT = "assertionFailed"
    SCREENSHOT_CREATING_STARTED_EVENT = "screenshotCreatingStarted"
    SCREENSHOT_CREATING_FINISHED_EVENT = "screenshotCreatingFinished"
    DIALOGS_INFO_CHANGED_EVENT = "dialogsInfoChanged"

    def __init__(
        self,
        page: PageAdapter,
        automations: AutomationRegistry,
        key_parser: KeySequenceParser,
        bus: Optional[FrameMessageBus] = None,
        transport: Optional[Transport] = None,
        dialogs: Optional[NativeDialogs] = None,
        assertions: Optional[Assertions] = None,
        screenshots: Optional[ScreenshotCapturer] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        """
        Initialize the runner.

        Args:
            page: Page adapter of this document
            automations: Gesture simulators per window
            key_parser: Parser of press key sequences
            bus: Message bus of this document's window; required for frames
            transport: Service channel used to detect file downloads on unload
            dialogs: Native dialog interception
            assertions: Assertion library exposed to steps
            screenshots: Screenshot capture
            settings: Runner settings
        """
        self.settings = settings or get_settings()
        self.page = page
        self.bus = bus
        self.dialogs = dialogs
        self.assertions = assertions
        self.screenshots = screenshots
        self.events = EventEmitter()

        self.stopped = False
        self.listen_native_dialogs = False

        self.step_iterator = StepIterator(
            ping_iframe=self._ping_iframe if bus is not None else None,
            settings=self.settings,
        )
        self.reporter = ErrorReporter(self.step_iterator)
        self.dispatcher = ActionDispatcher(
            self.step_iterator, page, automations, key_parser, self.settings
        )
        self.frame_sync = (
            FrameSyncProtocol(
                self.step_iterator,
                bus,
                page,
                transport,
                self.settings,
                on_dialogs_info_changed=self._on_dialogs_info_changed,
            )
            if bus is not None
            else None
        )

        self.controller = TestController(self)
        self.step_iterator.set_step_argument(self.controller)
        self.step_iterator.set_screenshot_handler(self._take_screenshot)

        if assertions is not None:
            assertions.bind(self.step_iterator.on_assertion_failed)

        self._init_native_dialogs()
        self._subscribe_step_iterator()

    def on(self, event: str, handler: EventHandler) -> None:
        self.events.on(event, handler)

    def _subscribe_step_iterator(self) -> None:
        iterator = self.step_iterator
        iterator.on(StepIterator.TEST_COMPLETE_EVENT, self._on_test_complete)
        iterator.on(StepIterator.ERROR_EVENT, self._on_error)
        iterator.on(StepIterator.NEXT_STEP_STARTED_EVENT, self._on_next_step_started)
        iterator.on(
            StepIterator.ACTION_TARGET_WAITING_STARTED_EVENT,
            self._on_action_target_waiting_started,
        )
        iterator.on(StepIterator.ACTION_RUN_EVENT, self._on_action_run)
        iterator.on(StepIterator.ASSERTION_FAILED_EVENT, self._on_assertion_failed)

    # Running

    async def start(
        self,
        step_names: Sequence[str],
        steps: Sequence[Step],
        skip_page_waiting: bool = False,
        next_step: int = 0,
    ) -> bool:
        """
        Run a test once the page is ready.

        Args:
            step_names: Names of the steps, in order
            steps: Step bodies, each awaited with the test controller
            skip_page_waiting: Start without waiting for the page to settle
            next_step: Index of the step to start from (after a page reload)

        Returns:
            True if every step ran without error
        """
        if not skip_page_waiting:
            await self._prepare_steps_executing()

        if self.stopped:
            return False

        logger.info(
            f"Test started with {len(steps)} steps",
            extra={"step_num": next_step},
        )
        self.events.emit(self.TEST_STARTED_EVENT, {"next_step": next_step})
        self.listen_native_dialogs = True

        return await self.step_iterator.start(
            step_names,
            steps,
            self._reset_dialog_handlers,
            self._check_expected_dialogs,
            next_step,
        )

    async def run(
        self, step_names: Sequence[str], steps: Sequence[Step], next_step: int = 0
    ) -> bool:
        """Run steps right away, without page waiting or start and completion events."""
        return await self.step_iterator.run_steps(
            step_names,
            steps,
            self._reset_dialog_handlers,
            self._check_expected_dialogs,
            next_step,
        )

    async def _prepare_steps_executing(self) -> None:
        await self.page.document_ready()
        await sleep_ms(self.settings.animations_wait_delay_ms)
        await self.page.wait_for_initial_requests(
            self.settings.requests_collection_delay_ms,
            self.settings.additional_requests_collection_delay_ms,
        )

    def reset(self) -> None:
        """Clear run state so the runner can start another test."""
        self.step_iterator.reset()
        if self.frame_sync is not None:
            self.frame_sync.reset()
        self.stopped = False

    async def destroy(self) -> None:
        self.reset()
        if self.dialogs is not None:
            self.dialogs.destroy()
        await self.events.drain()
        if self.bus is not None:
            await self.bus.shutdown()

    # Frames

    async def _ping_iframe(self, frame: Any) -> None:
        await self.frame_sync.ping_frame(frame)

    def ensure_iframe(self, arg: Any) -> Any:
        """
        Resolve a frame argument to exactly one frame element.

        Raises:
            ActionFailure: emptyIFrameArgument, iframeArgumentIsNotIFrame,
                multipleIFrameArgument or incorrectIFrameArgument
        """
        if not _is_present(arg):
            raise self.reporter.fail(ErrorType.EMPTY_IFRAME_ARGUMENT)

        if self.page.is_element(arg):
            if self.page.tag_name(arg) in FRAME_TAGS:
                return arg
            raise self.reporter.fail(ErrorType.IFRAME_ARGUMENT_IS_NOT_IFRAME)

        if isinstance(arg, str):
            arg = ElementCollection(self.page.query(arg))

        if isinstance(arg, ElementCollection):
            if len(arg) == 0:
                raise self.reporter.fail(ErrorType.EMPTY_IFRAME_ARGUMENT)
            if len(arg) > 1:
                raise self.reporter.fail(ErrorType.MULTIPLE_IFRAME_ARGUMENT)
            return self.ensure_iframe(arg[0])

        if callable(arg):
            return self.ensure_iframe(arg())

        raise self.reporter.fail(ErrorType.INCORRECT_IFRAME_ARGUMENT)

    def in_iframe(self, frame_getter: Any, step: Any) -> Step:
        """
        Wrap a step so it runs in the engine of a frame.

        Args:
            frame_getter: Frame element, selector, collection or callable returning one
            step: Step callable importable by reference, or a ``module:qualname`` string
        """
        if self.frame_sync is None:
            raise RuntimeError("Running steps in frames requires a frame message bus")

        reference = step_reference(step)

        async def delegated_step(controller: Any) -> None:
            step_num = self.step_iterator.get_current_step_num()
            frame = self.ensure_iframe(frame_getter)
            await self.frame_sync.run_in_frame(
                frame, self.step_iterator.get_current_step(), reference, step_num
            )

        delegated_step.__qualname__ = f"in_iframe({reference})"
        return delegated_step

    # Page errors and dialogs

    def on_uncaught_js_error(self, err: PageError) -> None:
        """Handle a script error raised by the page under test."""
        if err.in_iframe and not self.settings.playback:
            self.step_iterator.stop()
        elif not self.settings.skip_js_errors or self.settings.recording:
            self.step_iterator.on_error(
                ErrorRecord(
                    type=ErrorType.UNCAUGHT_JS_ERROR,
                    script_err=err.msg,
                    page_error=True,
                    page_dest_url=err.page_url,
                    step_name=self.step_iterator.get_current_step(),
                )
            )

    def _init_native_dialogs(self) -> None:
        if self.dialogs is None:
            return

        info = self.settings.native_dialogs_info
        if info:
            self.listen_native_dialogs = True

        self.dialogs.init(
            info,
            self._on_unexpected_dialog,
            self._on_expected_dialog_missing,
            self._on_dialogs_info_changed,
        )

    def _reset_dialog_handlers(self) -> None:
        if self.dialogs is not None:
            self.dialogs.reset_handlers()

    def _check_expected_dialogs(self) -> None:
        if self.dialogs is not None:
            self.dialogs.check_expected_dialogs()

    def _on_unexpected_dialog(self, dialog: str, message: Optional[str]) -> None:
        if self.listen_native_dialogs:
            self.reporter.report(ErrorType.UNEXPECTED_DIALOG, dialog=dialog, message=message)

    def _on_expected_dialog_missing(self, dialog: str) -> None:
        if self.listen_native_dialogs:
            self.reporter.report(ErrorType.EXPECTED_DIALOG_DOESNT_APPEAR, dialog=dialog)

    def _on_dialogs_info_changed(self, info: Dict[str, Any]) -> None:
        self.events.emit(self.DIALOGS_INFO_CHANGED_EVENT, {"info": info})

    # Step iterator events

    def _on_test_complete(self, payload: Dict[str, Any]) -> None:
        self.stopped = True
        logger.info("Test completed")
        self.events.emit(self.TEST_COMPLETED_EVENT, {})

    def _on_error(self, payload: Dict[str, Any]) -> None:
        self.events.emit(
            self.TEST_FAILED_EVENT,
            {"step_num": self.step_iterator.get_current_step_num(), "err": payload["err"]},
        )

    def _on_next_step_started(self, payload: Dict[str, Any]) -> None:
        self.events.emit(self.NEXT_STEP_STARTED_EVENT, payload)

    def _on_action_target_waiting_started(self, payload: Dict[str, Any]) -> None:
        self.events.emit(self.ACTION_TARGET_WAITING_STARTED_EVENT, payload)

    def _on_action_run(self, payload: Dict[str, Any]) -> None:
        self.events.emit(self.ACTION_RUN_EVENT, {})

    def _on_assertion_failed(self, payload: Dict[str, Any]) -> None:
        self.events.emit(self.ASSERTION_FAILED_EVENT, payload)

    async def _take_screenshot(self, file_path: Optional[str] = None) -> None:
        self.events.emit(self.SCREENSHOT_CREATING_STARTED_EVENT, {"file_path": file_path})
        if self.screenshots is not None:
            await self.screenshots.capture(file_path)
        self.events.emit(self.SCREENSHOT_CREATING_FINISHED_EVENT, {"file_path": file_path})


def _is_present(arg: Any) -> bool:
    if isinstance(arg, (str, int, float)):
        return bool(arg) and arg == arg
    return arg is not None


