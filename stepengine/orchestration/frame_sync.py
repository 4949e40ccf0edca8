"""
Parent side of running test steps inside nested frames.
"""

import asyncio
from enum import Enum
from typing import Any, Callable, Dict, Optional

from stepengine.config.settings import Settings
from stepengine.core.interfaces import PageAdapter, Transport
from stepengine.core.timing import ms_to_seconds
from stepengine.core.types import ErrorRecord, ErrorType, FrameCommand, FrameMessage
from stepengine.error_handling.exceptions import ActionFailure, FrameProtocolError
from stepengine.error_handling.reporter import ErrorReporter
from stepengine.monitoring.logger import get_logger
from stepengine.orchestration.communication import FrameMessageBus
from stepengine.orchestration.step_iterator import StepIterator

logger = get_logger(__name__)


class FrameSyncState(str, Enum):
    """Phase of the current delegated step."""

    IDLE = "idle"
    PINGING = "pinging"
    AWAITING_FRAME_COMPLETION = "awaiting_frame_completion"
    RESUMED = "resumed"
    FRAME_LOST = "frame_lost"
    FAILED = "failed"


class FrameSyncProtocol:
    """
    Delegates steps to frame engines and reconciles their messages with the iterator.

    Two frames are tracked independently: ``StepIterator.state.waited_frame`` is
    the frame a local gesture is pinned to, ``executing_frame_window`` is the
    window running a delegated step. Messages are routed by comparing their
    source with either.
    """

    def __init__(
        self,
        step_iterator: StepIterator,
        bus: FrameMessageBus,
        page: PageAdapter,
        transport: Optional[Transport] = None,
        settings: Optional[Settings] = None,
        on_dialogs_info_changed: Optional[Callable[[Dict[str, Any]], None]] = None,
    ) -> None:
        self.iterator = step_iterator
        self.bus = bus
        self.page = page
        self.transport = transport
        self.settings = settings or step_iterator.settings
        self.reporter = ErrorReporter(step_iterator)
        self._on_dialogs_info_changed = on_dialogs_info_changed

        self.state = FrameSyncState.IDLE
        self.executing_frame_window: Any = None
        self.iframe_action_target_waiting_started = False

        self._completion: Optional[asyncio.Future] = None
        self._existence_watcher: Optional[asyncio.Task] = None
        self._file_downloading_poll: Optional[asyncio.Task] = None

        self._subscribe()

    def _subscribe(self) -> None:
        handlers = {
            FrameCommand.STEP_COMPLETED: self._on_step_completed,
            FrameCommand.ERROR: self._on_frame_error,
            FrameCommand.FAILED_ASSERTION: self._on_failed_assertion,
            FrameCommand.GET_SHARED_DATA_REQUEST: self._on_get_shared_data,
            FrameCommand.SET_SHARED_DATA: self._on_set_shared_data,
            FrameCommand.NEXT_STEP_STARTED: self._on_next_step_started,
            FrameCommand.ACTION_TARGET_WAITING_STARTED: self._on_action_target_waiting_started,
            FrameCommand.ACTION_RUN: self._on_action_run,
            FrameCommand.WAITING_STEP_COMPLETION_REQUEST: self._on_waiting_step_completion,
            FrameCommand.TAKE_SCREENSHOT_REQUEST: self._on_take_screenshot,
            FrameCommand.NATIVE_DIALOGS_INFO_CHANGED: self._on_native_dialogs_info_changed,
            FrameCommand.BEFORE_UNLOAD_REQUEST: self._on_before_unload_request,
        }
        for command, handler in handlers.items():
            self.bus.subscribe(command, handler)

        self.iterator.on(StepIterator.ERROR_EVENT, self._on_iterator_error)
        self.iterator.on(
            StepIterator.NEXT_STEP_STARTED_EVENT,
            lambda _: self.clear_file_downloading_poll(),
        )
        self.iterator.on(
            StepIterator.BEFORE_UNLOAD_EVENT_RAISED,
            lambda _: self.start_file_downloading_poll(),
        )
        self.iterator.on(
            StepIterator.UNLOAD_EVENT_RAISED,
            lambda _: self.clear_file_downloading_poll(),
        )

    # Delegation

    async def ping_frame(self, frame: Any) -> None:
        """Raises FrameProtocolError when the frame's engine does not answer in time."""
        await self.bus.ping(
            self.page.content_window(frame),
            self.settings.iframe_ping_timeout_ms,
            self.settings.iframe_ping_interval_ms,
        )

    async def run_in_frame(
        self, frame: Any, step_name: Optional[str], step: str, step_num: int
    ) -> FrameSyncState:
        """
        Run a step in a frame and wait until the frame finished or disappeared.

        Args:
            frame: Frame element whose engine runs the step
            step_name: Name of the delegated step
            step: Import reference of the step callable
            step_num: Index of the step in the parent's test

        Returns:
            RESUMED, or FRAME_LOST when the frame was removed meanwhile

        Raises:
            ActionFailure: If the frame never answered or reported an error
        """
        outcome = FrameSyncState.IDLE

        async def delegate() -> None:
            nonlocal outcome
            outcome = await self._delegate(frame, step_name, step, step_num)

        await self.iterator.async_action(delegate)
        return outcome

    async def _delegate(
        self, frame: Any, step_name: Optional[str], step: str, step_num: int
    ) -> FrameSyncState:
        self._clear_existence_watcher()
        self.state = FrameSyncState.PINGING
        window = self.page.content_window(frame)

        try:
            await self.ping_frame(frame)
        except FrameProtocolError as exc:
            self.state = FrameSyncState.FAILED
            raise self.reporter.fail(ErrorType.IN_IFRAME_TARGET_LOADING_TIMEOUT) from exc

        self._completion = asyncio.get_running_loop().create_future()
        self.state = FrameSyncState.AWAITING_FRAME_COMPLETION
        self.executing_frame_window = window
        watcher = asyncio.ensure_future(self._watch_frame_existence(frame))
        self._existence_watcher = watcher

        logger.info(
            f"Delegating step {step_name!r} to frame",
            extra={"step_name": step_name, "step_num": step_num},
        )
        self.bus.send(
            FrameCommand.RUN_STEP,
            window,
            {"step_name": step_name, "step": step, "step_num": step_num},
        )

        try:
            self.state = await self._completion
        except ActionFailure:
            self.state = FrameSyncState.FAILED
            raise
        finally:
            self._completion = None
            self._clear_existence_watcher()
            await asyncio.gather(watcher, return_exceptions=True)

        return self.state

    async def _watch_frame_existence(self, frame: Any) -> None:
        interval = ms_to_seconds(self.settings.iframe_existence_watching_interval_ms)
        while True:
            await asyncio.sleep(interval)
            if not self.page.is_in_document(frame):
                logger.warning("Frame removed while running a delegated step, resuming")
                self._existence_watcher = None
                self._on_frame_step_executed(FrameSyncState.FRAME_LOST)
                return

    def _clear_existence_watcher(self) -> None:
        if self._existence_watcher is not None:
            self._existence_watcher.cancel()
            self._existence_watcher = None

    def _on_frame_step_executed(
        self, outcome: FrameSyncState = FrameSyncState.RESUMED
    ) -> None:
        self.executing_frame_window = None

        if self.iframe_action_target_waiting_started:
            self.iframe_action_target_waiting_started = False
            self.iterator.on_action_run()

        if self._completion is not None and not self._completion.done():
            self._completion.set_result(outcome)

    def _on_iterator_error(self, payload: Dict[str, Any]) -> None:
        if self._completion is not None and not self._completion.done():
            self._completion.set_exception(ActionFailure(payload["err"]))

    # Routing

    def _is_waited_frame(self, source: Any) -> bool:
        frame = self.iterator.state.waited_frame
        return frame is not None and self.page.content_window(frame) is source

    def _is_executing_window(self, source: Any) -> bool:
        return self.executing_frame_window is not None and self.executing_frame_window is source

    def _on_step_completed(self, message: FrameMessage) -> None:
        if self._is_waited_frame(message.source):
            self.iterator.iframe_action_callback()
        elif self._is_executing_window(message.source):
            self._on_frame_step_executed()

        self._clear_existence_watcher()

    def _on_frame_error(self, message: FrameMessage) -> None:
        record = ErrorRecord.model_validate(message.payload.get("err", {}))
        if record.step_num is None:
            record = record.model_copy(
                update={
                    "step_num": self.iterator.get_current_step_num(),
                    "step_name": self.iterator.get_current_step(),
                }
            )
        self._clear_existence_watcher()
        self.iterator.on_error(record)

    def _on_failed_assertion(self, message: FrameMessage) -> None:
        if self.settings.playback:
            self.executing_frame_window = None

        err = dict(message.payload.get("err") or {})
        err["step_num"] = self.iterator.get_current_step_num()
        self.iterator.on_assertion_failed(err)

    def _on_get_shared_data(self, message: FrameMessage) -> None:
        self.bus.respond(
            message,
            FrameCommand.GET_SHARED_DATA_RESPONSE,
            {"shared_data": self.iterator.get_shared_data()},
        )

    def _on_set_shared_data(self, message: FrameMessage) -> None:
        self.iterator.set_shared_data(message.payload.get("shared_data"))

    def _on_next_step_started(self, message: FrameMessage) -> None:
        self.executing_frame_window = message.source
        self.clear_file_downloading_poll()

    def _on_action_target_waiting_started(self, message: FrameMessage) -> None:
        self.iframe_action_target_waiting_started = True
        self.iterator.on_action_target_waiting_started(
            bool(message.payload.get("is_wait_action"))
        )

    def _on_action_run(self, message: FrameMessage) -> None:
        self.iframe_action_target_waiting_started = False
        self.iterator.on_action_run()

    def _on_waiting_step_completion(self, message: FrameMessage) -> None:
        if self._is_waited_frame(message.source) or self._is_executing_window(message.source):
            self.bus.respond(message, FrameCommand.WAITING_STEP_COMPLETION_RESPONSE)

    async def _on_take_screenshot(self, message: FrameMessage) -> None:
        await self.iterator.take_screenshot(message.payload.get("file_path"))
        self.bus.respond(message, FrameCommand.TAKE_SCREENSHOT_RESPONSE)

    def _on_native_dialogs_info_changed(self, message: FrameMessage) -> None:
        if self._on_dialogs_info_changed is not None:
            self._on_dialogs_info_changed(message.payload.get("info") or {})

    def _on_before_unload_request(self, message: FrameMessage) -> None:
        self.iterator.on_action_run()
        self.start_file_downloading_poll(message)

    # Before unload

    def start_file_downloading_poll(self, request: Optional[FrameMessage] = None) -> None:
        """
        Watch the transport for a file download caused by the pending unload.

        Once a download is detected, local execution resumes, or the frame that
        raised the request gets a before-unload response.
        """
        if self.transport is None or self.iterator.state.stopped:
            return

        self.clear_file_downloading_poll()
        self._file_downloading_poll = asyncio.ensure_future(
            self._poll_file_downloading(request)
        )

    async def _poll_file_downloading(self, request: Optional[FrameMessage]) -> None:
        delay = ms_to_seconds(self.settings.file_downloading_check_delay_ms)
        while True:
            await asyncio.sleep(delay)
            if await self.transport.get_and_uncheck_file_downloading_flag():
                break

        self._file_downloading_poll = None
        logger.info("File download detected, page will not unload")

        if request is not None:
            self.bus.respond(request, FrameCommand.BEFORE_UNLOAD_RESPONSE, {"res": True})
        else:
            self.iterator.resume_after_unload()

    def clear_file_downloading_poll(self) -> None:
        if self._file_downloading_poll is not None:
            self._file_downloading_poll.cancel()
            self._file_downloading_poll = None

    def reset(self) -> None:
        """Drop delegation state between runs."""
        self._clear_existence_watcher()
        self.clear_file_downloading_poll()
        self.executing_frame_window = None
        self.iframe_action_target_waiting_started = False
        self.state = FrameSyncState.IDLE
