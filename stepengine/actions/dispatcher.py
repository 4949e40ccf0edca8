"""
Gesture dispatch: argument parsing, target resolution, visibility and automation runs.

Every gesture is an ``async`` method awaited from a step body. Targets of one
call go through the pipeline strictly one after another; a failure reports an
error record to the step iterator and unwinds the step with ``ActionFailure``.
"""

import asyncio
import inspect
from contextlib import aclosing, nullcontext
from typing import TYPE_CHECKING, Any, Awaitable, Callable, List, Mapping, Optional, Type

from stepengine.actions.arguments import (
    ensure_array,
    is_number,
    is_string_or_string_array,
    parse_drag_arguments,
    parse_press_arguments,
    parse_select_arguments,
    validate_upload_paths,
)
from stepengine.actions.resolver import TargetResolver
from stepengine.actions.visibility import VisibilityGate
from stepengine.config.settings import Settings
from stepengine.core.interfaces import (
    Automation,
    AutomationFactory,
    AutomationRegistry,
    KeySequenceParser,
    PageAdapter,
)
from stepengine.core.timing import poll_until, race, sleep_ms
from stepengine.core.types import (
    ClickOptions,
    DragToElement,
    ErrorType,
    Modifiers,
    MouseOptions,
    ResolvedTarget,
    SelectByLines,
    SelectRange,
    TypeOptions,
)
from stepengine.error_handling.exceptions import (
    ActionFailure,
    AutomationError,
    AutomationErrorCode,
    InvalidActionArgument,
)
from stepengine.error_handling.reporter import ErrorReporter
from stepengine.monitoring.logger import get_logger

if TYPE_CHECKING:
    from stepengine.orchestration.step_iterator import StepIterator

logger = get_logger(__name__)

MODIFIER_KEYS = ("ctrl", "alt", "shift", "meta")

TargetRunner = Callable[[Any, AutomationFactory], Awaitable[None]]
TargetCheck = Callable[[Any, str], Awaitable[None]]


class ActionDispatcher:
    """
    Runs gestures against page elements on behalf of the current step.

    Args:
        step_iterator: Iterator of the test run; owns the in-flight action
        page: Page adapter of the document this engine runs in
        automations: Lookup of gesture simulators per window
        key_parser: Parser of press key sequences
        settings: Runner settings, defaults to the iterator's
    """

    def __init__(
        self,
        step_iterator: "StepIterator",
        page: PageAdapter,
        automations: AutomationRegistry,
        key_parser: KeySequenceParser,
        settings: Optional[Settings] = None,
    ) -> None:
        self.iterator = step_iterator
        self.page = page
        self.automations = automations
        self.key_parser = key_parser
        self.settings = settings or step_iterator.settings

        self.reporter = ErrorReporter(step_iterator)
        self.resolver = TargetResolver(page, self.reporter, self.settings)
        self.gate = VisibilityGate(page, self.reporter, self.settings)

    # Pointer gestures

    async def click(self, what: Any, options: Optional[Mapping[str, Any]] = None) -> None:
        self._next_statement()

        async def run(element: Any, automations: AutomationFactory) -> None:
            click_options = self._build_options(ClickOptions, element, options)
            if self.gate.is_option_element(element):
                automation = automations.select_child_click(element, click_options)
            else:
                automation = automations.click(element, click_options)
            await self._run_automation(automation, element, "click")

        await self._dispatch(what, "click", run)

    async def rclick(self, what: Any, options: Optional[Mapping[str, Any]] = None) -> None:
        self._next_statement()

        async def run(element: Any, automations: AutomationFactory) -> None:
            click_options = self._build_options(ClickOptions, element, options)
            await self._run_automation(
                automations.rclick(element, click_options), element, "rclick"
            )

        await self._dispatch(what, "rclick", run)

    async def dblclick(self, what: Any, options: Optional[Mapping[str, Any]] = None) -> None:
        self._next_statement()

        async def run(element: Any, automations: AutomationFactory) -> None:
            click_options = self._build_options(ClickOptions, element, options)
            await self._run_automation(
                automations.dblclick(element, click_options), element, "dblclick"
            )

        await self._dispatch(what, "dblclick", run)

    async def drag(
        self, what: Any, *args: Any, options: Optional[Mapping[str, Any]] = None
    ) -> None:
        """
        Drag every target to a destination element or by an offset.

        ``drag(what, destination[, options])`` or
        ``drag(what, offset_x, offset_y[, options])``.
        """
        self._next_statement()
        try:
            destination, drag_options = parse_drag_arguments(self.page, args)
        except InvalidActionArgument as exc:
            raise self._invalid_argument(exc) from exc
        drag_options.update(options or {})

        async def run(element: Any, automations: AutomationFactory) -> None:
            mouse_options = self._build_options(MouseOptions, element, drag_options)
            if isinstance(destination, DragToElement):
                automation = automations.drag_to_element(
                    element, destination.destination, mouse_options
                )
            else:
                automation = automations.drag_to_offset(
                    element,
                    destination.drag_offset_x,
                    destination.drag_offset_y,
                    mouse_options,
                )
            await self._run_automation(automation, element, "drag")

        await self._dispatch(what, "drag", run)

    async def hover(self, what: Any, options: Optional[Mapping[str, Any]] = None) -> None:
        self._next_statement()

        async def run(element: Any, automations: AutomationFactory) -> None:
            mouse_options = self._build_options(MouseOptions, element, options)
            await self._run_automation(
                automations.hover(element, mouse_options), element, "hover"
            )

        await self._dispatch(what, "hover", run)

    # Text gestures

    async def select(self, what: Any, *args: Any) -> None:
        """
        Select text in every target, or editable content between two nodes.

        See ``parse_select_arguments`` for the accepted argument shapes.
        """
        self._next_statement()
        try:
            arguments = parse_select_arguments(self.page, what, args)
        except InvalidActionArgument as exc:
            raise self._invalid_argument(exc) from exc

        if isinstance(arguments, SelectRange):

            async def run(element: Any, automations: AutomationFactory) -> None:
                automation = automations.select_editable_content(
                    arguments.start_node, arguments.end_node
                )
                await self._run_automation(automation, element, "select")

            await self._dispatch(arguments.common_parent, "select", run)
            return

        async def run(element: Any, automations: AutomationFactory) -> None:
            target_arguments = arguments
            if isinstance(arguments, SelectByLines) and not self.page.is_multiline(element):
                target_arguments = arguments.as_positions()
            start_pos, end_pos = automations.select_text_positions(element, target_arguments)
            await self._run_automation(
                automations.select_text(element, start_pos, end_pos), element, "select"
            )

        await self._dispatch(what, "select", run)

    async def type(
        self, what: Any, text: Any, options: Optional[Mapping[str, Any]] = None
    ) -> None:
        self._next_statement()
        if not text:
            raise self.reporter.fail(ErrorType.EMPTY_TYPE_ACTION_ARGUMENT)
        text = str(text)

        async def run(element: Any, automations: AutomationFactory) -> None:
            type_options = self._build_options(TypeOptions, element, options)
            await self._run_automation(
                automations.type_text(element, text, type_options), element, "type"
            )

        await self._dispatch(what, "type", run)

    async def press(self, *key_sequences: Any) -> None:
        """Press key sequences on whatever element currently has focus."""
        self._next_statement()
        try:
            parsed = parse_press_arguments(self.key_parser, key_sequences)
        except InvalidActionArgument as exc:
            raise self._invalid_argument(exc) from exc

        async def run_item(key_sequence) -> None:
            automation = self.automations.for_window(self.page.window).press(
                key_sequence.combinations
            )
            await automation.run()

        async def run_items(items, action) -> None:
            for item in items:
                await action(item)

        await self.iterator.async_action_series(parsed, run_items, run_item)

    # Waiting

    async def wait(self, ms: Any, condition: Optional[Callable[[], Any]] = None) -> None:
        """
        Wait ``ms`` milliseconds, or less if ``condition`` becomes truthy first.

        The condition is evaluated in the shared data context of the step.
        """
        self._next_statement()
        condition = condition if callable(condition) else None
        if not is_number(ms) or ms < 0:
            raise self.reporter.fail(ErrorType.INCORRECT_WAIT_ACTION_MILLISECONDS_ARGUMENT)

        await self.iterator.async_action(lambda: self._wait(ms, condition))

    async def _wait(self, ms: float, condition: Optional[Callable[[], Any]]) -> None:
        if condition is None:
            await sleep_ms(ms)
            return

        index, _ = await race(
            sleep_ms(ms),
            poll_until(
                lambda: self.iterator.call_with_shared_data_context(condition),
                self.settings.check_condition_interval,
            ),
        )
        logger.debug(
            "Wait finished on " + ("timer" if index == 0 else "condition"),
            extra={"action": "wait"},
        )

    async def wait_for(self, event: Any, timeout: Any = None) -> None:
        """
        Wait until selectors match or a callback signals completion.

        Args:
            event: Selector, non-empty list of selectors, or a callable receiving a
                ``done`` callback. A callable may also return an awaitable; its
                completion counts as done.
            timeout: Milliseconds before waitForActionTimeoutExceeded is reported
        """
        self._next_statement()
        wait_for_elements = is_string_or_string_array(event, forbid_empty_array=True)
        if not callable(event) and not wait_for_elements:
            raise self.reporter.fail(ErrorType.INCORRECT_WAIT_FOR_ACTION_EVENT_ARGUMENT)

        if timeout is None:
            timeout = self.settings.wait_for_default_timeout_ms
        if not is_number(timeout) or timeout < 0:
            raise self.reporter.fail(ErrorType.INCORRECT_WAIT_FOR_ACTION_TIMEOUT_ARGUMENT)

        self.iterator.on_action_target_waiting_started(is_wait_action=True)
        await self.iterator.async_action(
            lambda: self._wait_for(event, timeout, wait_for_elements)
        )

    async def _wait_for(self, event: Any, timeout: float, wait_for_elements: bool) -> None:
        if wait_for_elements:
            selectors = ensure_array(event)
            condition = poll_until(
                lambda: all(self.page.query(selector) for selector in selectors),
                self.settings.check_condition_interval,
            )
        else:
            condition = self._wait_for_callback(event)

        index, _ = await race(condition, sleep_ms(timeout))
        if index == 1:
            raise self.reporter.fail(ErrorType.WAIT_FOR_ACTION_TIMEOUT_EXCEEDED)

        self.iterator.on_action_run()

    async def _wait_for_callback(self, event: Callable[..., Any]) -> None:
        done = asyncio.Event()
        result = self.iterator.call_with_shared_data_context(event, done.set)
        if inspect.isawaitable(result):
            await race(done.wait(), result)
        else:
            await done.wait()

    # Page level gestures

    async def navigate_to(self, url: str) -> None:
        self._next_statement()

        async def navigate() -> None:
            logger.info(f"Navigating to {url}", extra={"action": "navigate_to"})
            self.page.navigate_to(url)
            await sleep_ms(self.settings.navigation_delay_ms)

        await self.iterator.async_action(navigate)

    async def upload(self, what: Any, paths: Any = None) -> None:
        """
        Set the files of every target file input.

        An invalid ``paths`` argument is reported but does not stop the targets
        from being processed.
        """
        self._next_statement()
        try:
            file_paths = validate_upload_paths(paths)
        except InvalidActionArgument as exc:
            self.reporter.report(exc.error_type)
            file_paths = ensure_array(paths) if paths else None

        async def check_file_input(element: Any, action: str) -> None:
            if not self.page.is_file_input(element):
                raise self.reporter.fail(ErrorType.UPLOAD_ELEMENT_IS_NOT_FILE_INPUT)

        async def run(element: Any, automations: AutomationFactory) -> None:
            missing: List[List[str]] = []
            automation = automations.upload(element, file_paths, missing.append)
            await automation.run()
            if missing:
                raise self.reporter.fail(
                    ErrorType.UPLOAD_CAN_NOT_FIND_FILE_TO_UPLOAD,
                    file_paths=list(missing[0]),
                )

        await self._dispatch(what, "upload", run, check=check_file_input, in_frames=False)

    async def screenshot(self, file_path: Optional[str] = None) -> None:
        self._next_statement()
        await self.iterator.async_action(lambda: self.iterator.take_screenshot(file_path))

    # Pipeline

    def _next_statement(self) -> None:
        state = self.iterator.state
        state.source_index = 0 if state.source_index is None else state.source_index + 1

    async def _dispatch(
        self,
        what: Any,
        action: str,
        run: TargetRunner,
        check: Optional[TargetCheck] = None,
        in_frames: bool = True,
    ) -> None:
        """
        Run ``run`` once per resolved target, in series.

        ``check`` replaces the visibility gate; with ``in_frames`` False every
        target uses the automations of the top window.
        """
        check = check or self.gate.await_visible
        action_started = False

        async def run_items(items: Any, run_target: Callable[[Any], Awaitable[None]]) -> None:
            self.iterator.on_action_target_waiting_started()
            async with aclosing(self.resolver.iter_targets(items, action)) as targets:
                async for element in targets:
                    await run_target(element)

        async def run_target(element: Any) -> None:
            nonlocal action_started
            target = self._locate(element, in_frames)
            pinned = (
                nullcontext() if target.frame is None else self.iterator.pin_frame(target.frame)
            )

            async with pinned:
                await check(target.element, action)
                if not action_started:
                    action_started = True
                    self.iterator.on_action_run()
                gesture = run(target.element, self.automations.for_window(target.window))
                if target.frame is None:
                    await gesture
                else:
                    await self._run_in_pinned_frame(gesture, action)

        await self.iterator.async_action_series(what, run_items, run_target)

    def _locate(self, element: Any, in_frames: bool) -> ResolvedTarget:
        frame = self.page.owner_frame(element) if in_frames else None
        if frame is None:
            return ResolvedTarget(element=element, window=self.page.window)
        return ResolvedTarget(
            element=element, window=self.page.content_window(frame), frame=frame
        )

    async def _run_in_pinned_frame(self, gesture: Awaitable[None], action: str) -> None:
        # A gesture that reloads its frame never settles; the reloaded engine
        # reports completion instead.
        index, _ = await race(gesture, self.iterator.frame_action_completed.wait())
        if index == 1:
            logger.debug(
                "Pinned frame reported completion before the gesture settled",
                extra={"action": action},
            )

    async def _run_automation(self, automation: Automation, element: Any, action: str) -> None:
        try:
            await automation.run()
        except AutomationError as exc:
            if not exc.is_visibility_loss:
                raise
            error_type = (
                ErrorType.INVISIBLE_ACTION_ELEMENT
                if exc.code == AutomationErrorCode.ELEMENT_INVISIBLE
                else ErrorType.ACTION_ADDITIONAL_ELEMENT_IS_INVISIBLE
            )
            raise self.reporter.fail(
                error_type, element=self.page.describe(element), action=action
            ) from exc

    def _build_options(
        self,
        model: Type[MouseOptions],
        element: Any,
        options: Optional[Mapping[str, Any]],
    ) -> MouseOptions:
        options = dict(options or {})
        offset_x, offset_y = self.page.get_offset_options(
            element, options.get("offset_x"), options.get("offset_y")
        )
        modifiers = Modifiers(**{key: bool(options.get(key)) for key in MODIFIER_KEYS})
        extra = {
            name: options[name]
            for name in model.model_fields
            if name in options and name not in ("offset_x", "offset_y", "modifiers")
        }
        return model(offset_x=offset_x, offset_y=offset_y, modifiers=modifiers, **extra)

    def _invalid_argument(self, exc: InvalidActionArgument) -> ActionFailure:
        return self.reporter.fail(exc.error_type)
