"""
Sequencing of test steps and the single in-flight asynchronous action.
"""

import asyncio
import inspect
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence

from stepengine.config.settings import Settings, get_settings
from stepengine.core.timing import ms_to_seconds
from stepengine.core.types import ErrorRecord, ErrorType, StepState
from stepengine.error_handling.exceptions import (
    ActionFailure,
    ConcurrentActionError,
    FrameProtocolError,
)
from stepengine.monitoring.logger import get_logger, log_step_event
from stepengine.orchestration.events import EventEmitter, EventHandler

logger = get_logger(__name__)

_shared_data: ContextVar[Optional[Dict[str, Any]]] = ContextVar(
    "stepengine_shared_data", default=None
)


def current_shared_data() -> Dict[str, Any]:
    """
    Shared data of the step being executed.

    Available inside step bodies, wait conditions and wait-for callbacks.
    """
    data = _shared_data.get()
    if data is None:
        raise LookupError("No step shared data context is active")
    return data


class StepIterator:
    """
    Runs test steps in order and tracks the asynchronous action of the current step.

    At most one asynchronous action is in flight at any time. Errors are reported
    once per run: the first ``on_error`` stops the iterator, later ones are
    dropped.
    """

    TEST_COMPLETE_EVENT = "testComplete"
    NEXT_STEP_STARTED_EVENT = "nextStepStarted"
    ACTION_TARGET_WAITING_STARTED_EVENT = "actionTargetWaitingStarted"
    ACTION_RUN_EVENT = "actionRun"
    ERROR_EVENT = "error"
    ASSERTION_FAILED_EVENT = "assertionFailed"
    BEFORE_UNLOAD_EVENT_RAISED = "beforeUnload"
    UNLOAD_EVENT_RAISED = "unload"

    def __init__(
        self,
        ping_iframe: Optional[Callable[[Any], Awaitable[None]]] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        """
        Initialize the step iterator.

        Args:
            ping_iframe: Coroutine function probing that a frame's engine is alive;
                raises FrameProtocolError when the frame does not answer
            settings: Runner settings
        """
        self.settings = settings or get_settings()
        self.state = StepState()
        self.events = EventEmitter()

        self._ping_iframe = ping_iframe
        self._step_names: List[str] = []
        self._steps: List[Callable[..., Any]] = []
        self._step_argument: Any = None
        self._screenshot_handler: Optional[Callable[[Optional[str]], Awaitable[None]]] = None
        self._reset_handlers: Optional[Callable[[], None]] = None
        self._check_expected_dialogs: Optional[Callable[[], None]] = None

        self._unload_outcome: Optional[asyncio.Future] = None
        self._unloaded = False
        self.frame_action_completed = asyncio.Event()

    def on(self, event: str, handler: EventHandler) -> None:
        self.events.on(event, handler)

    def set_step_argument(self, argument: Any) -> None:
        """Object passed to every step body (the test controller)."""
        self._step_argument = argument

    def set_screenshot_handler(
        self, handler: Callable[[Optional[str]], Awaitable[None]]
    ) -> None:
        self._screenshot_handler = handler

    # Running

    async def start(
        self,
        step_names: Sequence[str],
        steps: Sequence[Callable[..., Any]],
        reset_handlers: Optional[Callable[[], None]] = None,
        check_expected_dialogs: Optional[Callable[[], None]] = None,
        next_step: int = 0,
    ) -> bool:
        """
        Run the test from ``next_step`` and announce completion.

        Returns:
            True when every step ran, False when the run stopped or the page unloaded
        """
        completed = await self.run_steps(
            step_names, steps, reset_handlers, check_expected_dialogs, next_step
        )
        if completed:
            log_step_event("test_complete", step_num=self.state.step)
            self.events.emit(self.TEST_COMPLETE_EVENT, {})
        return completed

    async def run_steps(
        self,
        step_names: Sequence[str],
        steps: Sequence[Callable[..., Any]],
        reset_handlers: Optional[Callable[[], None]] = None,
        check_expected_dialogs: Optional[Callable[[], None]] = None,
        next_step: int = 0,
    ) -> bool:
        if len(step_names) != len(steps):
            raise ValueError("Every step needs exactly one name")

        self._step_names = list(step_names)
        self._steps = list(steps)
        self._reset_handlers = reset_handlers
        self._check_expected_dialogs = check_expected_dialogs
        self.state.step = next_step

        while self.state.step < len(self._steps):
            if self.state.stopped or self._unloaded:
                return False
            if not await self._run_step():
                return False

        return not self.state.stopped

    async def _run_step(self) -> bool:
        index = self.state.step
        step = self._steps[index]

        self.state.step_name = self._step_names[index]
        self.state.source_index = None
        self.state.step = index + 1

        log_step_event("step_started", step_name=self.state.step_name, step_num=index)
        self.events.emit(
            self.NEXT_STEP_STARTED_EVENT,
            {"step_name": self.state.step_name, "step_num": index},
        )

        if self._reset_handlers:
            self._reset_handlers()

        try:
            await self._call_step(step)
        except ActionFailure:
            return False
        except Exception as exc:
            logger.error(
                f"Uncaught error in step {self.state.step_name!r}: {exc}",
                exc_info=True,
                extra={"step_name": self.state.step_name},
            )
            self.on_error(
                ErrorRecord(
                    type=ErrorType.UNCAUGHT_JS_ERROR,
                    step_name=self.state.step_name,
                    source_index=self.state.source_index,
                    script_err=str(exc) or exc.__class__.__name__,
                )
            )
            return False

        if self.state.stopped:
            return False

        if self._check_expected_dialogs:
            self._check_expected_dialogs()
            if self.state.stopped:
                return False

        if self.state.page_unloading:
            return await self._wait_for_unload_outcome()

        return True

    async def _call_step(self, step: Callable[..., Any]) -> None:
        token = _shared_data.set(self.state.shared_data)
        try:
            result = step(self._step_argument)
            if inspect.isawaitable(result):
                await result
        finally:
            _shared_data.reset(token)

    async def _wait_for_unload_outcome(self) -> bool:
        loop = asyncio.get_running_loop()
        self._unload_outcome = loop.create_future()
        self.state.step_delay_timer = loop.call_later(
            ms_to_seconds(self.settings.page_unload_timeout_ms), self._on_unload_timeout
        )
        try:
            return await self._unload_outcome
        finally:
            self.state.clear_step_delay()
            self._unload_outcome = None

    def _on_unload_timeout(self) -> None:
        logger.warning(
            "Page did not unload after before-unload, continuing",
            extra={"step_name": self.state.step_name},
        )
        self.state.step_delay_timer = None
        self._settle_unload(True)

    def _settle_unload(self, resume: bool) -> None:
        self.state.page_unloading = False
        if self._unload_outcome is not None and not self._unload_outcome.done():
            self._unload_outcome.set_result(resume)

    def resume_after_unload(self) -> None:
        """Continue with the next step after a before-unload that did not navigate away."""
        self.state.clear_step_delay()
        self._settle_unload(True)

    def on_before_unload(self) -> None:
        self.state.page_unloading = True
        self.events.emit(self.BEFORE_UNLOAD_EVENT_RAISED, {})

    def on_unload(self) -> None:
        """The document is going away; the next page continues from ``state.step``."""
        self._unloaded = True
        self.events.emit(self.UNLOAD_EVENT_RAISED, {})
        self._settle_unload(False)

    def stop(self) -> None:
        self.state.stopped = True
        self._settle_unload(False)

    def reset(self) -> None:
        """Drop all run state so the next run starts clean."""
        self.state.clear_step_delay()
        self._settle_unload(False)
        self.state = StepState()
        self._unloaded = False
        self._step_names = []
        self._steps = []
        self.frame_action_completed = asyncio.Event()

    # Asynchronous actions

    async def async_action(self, action: Callable[[], Awaitable[None]]) -> None:
        """
        Run the single asynchronous action of the current statement.

        Raises:
            ConcurrentActionError: If another action is still in flight
        """
        if self.state.in_async_action:
            raise ConcurrentActionError(
                "An asynchronous action is already running",
                step_name=self.state.step_name,
            )

        self.state.in_async_action = True
        try:
            await action()
        finally:
            self.state.in_async_action = False

    async def async_action_series(
        self,
        items: Any,
        run_items: Callable[[Any, Callable[[Any], Awaitable[None]]], Awaitable[None]],
        action: Callable[[Any], Awaitable[None]],
    ) -> None:
        """Run ``action`` for every item ``run_items`` produces, one at a time."""
        await self.async_action(lambda: run_items(items, action))

    @asynccontextmanager
    async def pin_frame(self, frame: Any) -> AsyncIterator[None]:
        """
        Pin the current single-target wait to a frame whose engine must be alive.

        Raises:
            ActionFailure: With inIFrameTargetLoadingTimeout if the frame never answers
        """
        if self._ping_iframe is not None:
            try:
                await self._ping_iframe(frame)
            except FrameProtocolError as exc:
                record = ErrorRecord(
                    type=ErrorType.IN_IFRAME_TARGET_LOADING_TIMEOUT,
                    step_name=self.state.step_name,
                    source_index=self.state.source_index,
                )
                self.on_error(record)
                raise ActionFailure(record, cause=exc) from exc

        previous = self.state.waited_frame
        self.state.waited_frame = frame
        self.frame_action_completed.clear()
        try:
            yield
        finally:
            self.state.waited_frame = previous

    def iframe_action_callback(self) -> None:
        """The pinned frame reported that its side of the action completed."""
        logger.debug("Pinned frame reported completion")
        self.frame_action_completed.set()

    # Notifications

    def on_error(self, record: ErrorRecord) -> None:
        if self.state.stopped:
            logger.debug(
                f"Dropping {record.type.value}: run already stopped",
                extra={"error_type": record.type.value},
            )
            return

        self.state.stopped = True
        self.state.clear_step_delay()
        logger.error(
            f"Test run error: {record.type.value}",
            extra={"error_type": record.type.value, "step_name": record.step_name},
        )
        self.events.emit(
            self.ERROR_EVENT,
            {"err": record, "step_num": self.get_current_step_num()},
        )
        self._settle_unload(False)

    def on_assertion_failed(self, err: Dict[str, Any]) -> None:
        self.events.emit(
            self.ASSERTION_FAILED_EVENT,
            {"err": err, "step_num": self.get_current_step_num()},
        )

    def on_action_target_waiting_started(self, is_wait_action: bool = False) -> None:
        self.events.emit(
            self.ACTION_TARGET_WAITING_STARTED_EVENT, {"is_wait_action": is_wait_action}
        )

    def on_action_run(self) -> None:
        self.events.emit(self.ACTION_RUN_EVENT, {})

    # Shared data and context

    def call_with_shared_data_context(self, fn: Callable[..., Any], *args: Any) -> Any:
        token = _shared_data.set(self.state.shared_data)
        try:
            return fn(*args)
        finally:
            _shared_data.reset(token)

    def get_shared_data(self) -> Dict[str, Any]:
        return self.state.shared_data

    def set_shared_data(self, data: Optional[Dict[str, Any]]) -> None:
        # Updated in place so a step holding the mapping sees frame updates
        self.state.shared_data.clear()
        self.state.shared_data.update(data or {})

    def get_current_step(self) -> Optional[str]:
        return self.state.step_name

    def get_current_step_num(self) -> int:
        return self.state.step - 1

    async def take_screenshot(self, file_path: Optional[str] = None) -> None:
        if self._screenshot_handler is None:
            logger.warning("No screenshot handler configured, skipping screenshot")
            return
        await self._screenshot_handler(file_path)
