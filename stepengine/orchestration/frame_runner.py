"""
Engine of a nested frame, running the steps its parent document delegates.
"""

from typing import Any, Callable, Dict, Mapping, Optional

from stepengine.config.settings import Settings
from stepengine.core.interfaces import (
    Assertions,
    AutomationRegistry,
    KeySequenceParser,
    NativeDialogs,
    PageAdapter,
    ScreenshotCapturer,
)
from stepengine.core.timing import ms_to_seconds
from stepengine.core.types import ErrorRecord, ErrorType, FrameCommand, FrameMessage
from stepengine.error_handling.exceptions import FrameProtocolError, StepResolutionError
from stepengine.monitoring.logger import get_logger
from stepengine.orchestration.communication import FrameMessageBus
from stepengine.orchestration.runner import RunnerBase
from stepengine.orchestration.step_iterator import StepIterator
from stepengine.orchestration.steps import resolve_step

logger = get_logger(__name__)


class FrameRunner(RunnerBase):
    """
    Runner living in a frame.

    Answers pings, runs ``RUN_STEP`` requests with its own step iterator and
    relays everything the parent needs to know about them: step start, action
    notifications, errors, assertion failures, shared data, screenshots,
    before-unload and dialog changes.
    """

    def __init__(
        self,
        page: PageAdapter,
        automations: AutomationRegistry,
        key_parser: KeySequenceParser,
        bus: FrameMessageBus,
        parent_window: Any,
        steps: Optional[Mapping[str, Callable[..., Any]]] = None,
        dialogs: Optional[NativeDialogs] = None,
        assertions: Optional[Assertions] = None,
        screenshots: Optional[ScreenshotCapturer] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        """
        Initialize the frame runner.

        Args:
            page: Page adapter of the frame's document
            automations: Gesture simulators per window
            key_parser: Parser of press key sequences
            bus: Message bus of the frame's window
            parent_window: Window of the parent document
            steps: Steps resolvable by reference in addition to importable ones
            dialogs: Native dialog interception of the frame
            assertions: Assertion library exposed to steps
            screenshots: Unused in frames; screenshots are taken by the parent
            settings: Runner settings
        """
        self.parent_window = parent_window
        self._steps = steps
        super().__init__(
            page,
            automations,
            key_parser,
            bus=bus,
            dialogs=dialogs,
            assertions=assertions,
            screenshots=screenshots,
            settings=settings,
        )

        bus.subscribe(FrameCommand.PING, self._on_ping)
        bus.subscribe(FrameCommand.RUN_STEP, self._on_run_step)
        bus.subscribe(
            FrameCommand.WAITING_STEP_COMPLETION_RESPONSE,
            self._on_waiting_step_completion_response,
        )
        self.step_iterator.on(StepIterator.BEFORE_UNLOAD_EVENT_RAISED, self._on_before_unload)

    def connect(self) -> None:
        """
        Announce this engine to the parent.

        A frame that reloaded while running a delegated step finds out that the
        parent still waits for it and reports the step as completed.
        """
        self._send(FrameCommand.WAITING_STEP_COMPLETION_REQUEST)

    def _send(self, command: FrameCommand, payload: Optional[Dict[str, Any]] = None) -> None:
        self.bus.send(command, self.parent_window, payload)

    # Parent commands

    def _on_ping(self, message: FrameMessage) -> None:
        self.bus.respond(message, FrameCommand.PONG)

    async def _on_run_step(self, message: FrameMessage) -> None:
        step_name = message.payload.get("step_name")
        reference = message.payload.get("step")
        logger.info(
            f"Running delegated step {step_name!r}",
            extra={"step_name": step_name, "step_num": message.payload.get("step_num")},
        )

        self.reset()
        try:
            step = resolve_step(reference, self._steps)
        except StepResolutionError as exc:
            logger.error(f"Delegated step cannot be resolved: {exc.message}")
            self.step_iterator.on_error(
                ErrorRecord(
                    type=ErrorType.UNCAUGHT_JS_ERROR,
                    step_name=step_name,
                    script_err=exc.message,
                )
            )
            return

        response = await self.bus.request(
            FrameCommand.GET_SHARED_DATA_REQUEST,
            self.parent_window,
            timeout=ms_to_seconds(self.settings.iframe_ping_timeout_ms),
        )
        self.step_iterator.set_shared_data(response.payload.get("shared_data"))

        await self.start([step_name or reference], [step], skip_page_waiting=True)

    def _on_waiting_step_completion_response(self, message: FrameMessage) -> None:
        self._send(FrameCommand.STEP_COMPLETED)

    # Relays to the parent

    def _on_test_complete(self, payload: Dict[str, Any]) -> None:
        super()._on_test_complete(payload)
        self._send(
            FrameCommand.SET_SHARED_DATA,
            {"shared_data": self.step_iterator.get_shared_data()},
        )
        self._send(FrameCommand.STEP_COMPLETED)

    def _on_error(self, payload: Dict[str, Any]) -> None:
        super()._on_error(payload)
        record: ErrorRecord = payload["err"]
        # The parent files the error under its own step
        relayed = record.model_copy(update={"step_num": None})
        self._send(FrameCommand.ERROR, {"err": relayed.to_dict()})

    def _on_next_step_started(self, payload: Dict[str, Any]) -> None:
        super()._on_next_step_started(payload)
        self._send(FrameCommand.NEXT_STEP_STARTED)

    def _on_action_target_waiting_started(self, payload: Dict[str, Any]) -> None:
        super()._on_action_target_waiting_started(payload)
        self._send(
            FrameCommand.ACTION_TARGET_WAITING_STARTED,
            {"is_wait_action": payload.get("is_wait_action", False)},
        )

    def _on_action_run(self, payload: Dict[str, Any]) -> None:
        super()._on_action_run(payload)
        self._send(FrameCommand.ACTION_RUN)

    def _on_assertion_failed(self, payload: Dict[str, Any]) -> None:
        super()._on_assertion_failed(payload)
        self._send(FrameCommand.FAILED_ASSERTION, {"err": payload.get("err")})

    def _on_dialogs_info_changed(self, info: Dict[str, Any]) -> None:
        super()._on_dialogs_info_changed(info)
        self._send(FrameCommand.NATIVE_DIALOGS_INFO_CHANGED, {"info": info})

    async def _take_screenshot(self, file_path: Optional[str] = None) -> None:
        await self.bus.request(
            FrameCommand.TAKE_SCREENSHOT_REQUEST,
            self.parent_window,
            {"file_path": file_path},
        )

    async def _on_before_unload(self, payload: Dict[str, Any]) -> None:
        try:
            response = await self.bus.request(
                FrameCommand.BEFORE_UNLOAD_REQUEST,
                self.parent_window,
                timeout=ms_to_seconds(self.settings.page_unload_timeout_ms),
            )
        except FrameProtocolError:
            logger.warning("Parent did not answer the before-unload request")
            return
        if response.payload.get("res"):
            self.step_iterator.resume_after_unload()
