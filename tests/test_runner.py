"""
Tests for the runner, the step controller and step references.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from stepengine.api import TestController
from stepengine.core.types import ElementCollection, ErrorType, PageError
from stepengine.error_handling.exceptions import ActionFailure, StepResolutionError
from stepengine.orchestration.communication import InProcessChannel
from stepengine.orchestration.runner import RunnerBase
from stepengine.orchestration.steps import (
    clear_registered_steps,
    register_step,
    resolve_step,
    step_reference,
)

from fakes import (
    EventLog,
    FakeAssertions,
    FakeAutomationRegistry,
    FakeDialogs,
    FakeElement,
    FakeKeyParser,
    FakePage,
    FakeScreenshots,
    fast_settings,
)


def module_level_step(t):
    t.shared["module"] = True


@pytest.fixture
def page():
    return FakePage()


@pytest.fixture
def automations():
    return FakeAutomationRegistry()


@pytest.fixture
def dialogs():
    return FakeDialogs()


@pytest.fixture
def runner(page, automations, dialogs):
    return RunnerBase(
        page,
        automations,
        FakeKeyParser(),
        dialogs=dialogs,
        assertions=FakeAssertions(),
        screenshots=FakeScreenshots(),
        settings=fast_settings(),
    )


@pytest.fixture
def events(runner):
    return EventLog().listen(
        runner,
        RunnerBase.TEST_STARTED_EVENT,
        RunnerBase.TEST_COMPLETED_EVENT,
        RunnerBase.TEST_FAILED_EVENT,
        RunnerBase.NEXT_STEP_STARTED_EVENT,
        RunnerBase.ASSERTION_FAILED_EVENT,
    )


def _fail_type(runner, arg) -> ErrorType:
    with pytest.raises(ActionFailure) as exc_info:
        runner.ensure_iframe(arg)
    return exc_info.value.error_type


class TestStart:
    """Test running a test."""

    @pytest.mark.asyncio
    async def test_waits_for_page_then_runs(self, runner, page, events):
        """Test the page settles before the first step."""
        ran = []

        async def first(t):
            ran.append(page.calls[:])

        completed = await runner.start(["first"], [first])

        assert completed is True
        assert ran == [["document_ready", ("requests", 0, 0)]]
        assert events.names() == [
            RunnerBase.TEST_STARTED_EVENT,
            RunnerBase.NEXT_STEP_STARTED_EVENT,
            RunnerBase.TEST_COMPLETED_EVENT,
        ]
        assert runner.stopped is True
        assert runner.listen_native_dialogs is True

    @pytest.mark.asyncio
    async def test_skip_page_waiting(self, runner, page):
        """Test skipping the page wait."""
        await runner.start(["a"], [AsyncMock()], skip_page_waiting=True)

        assert page.calls == []

    @pytest.mark.asyncio
    async def test_stopped_runner_does_not_start(self, runner, events):
        """Test a stopped runner."""
        runner.stopped = True

        assert await runner.start(["a"], [AsyncMock()], skip_page_waiting=True) is False
        assert events.names() == []

    @pytest.mark.asyncio
    async def test_failure_event(self, runner, events):
        """Test the failure event."""
        async def failing(t):
            await t.click("#missing")

        completed = await runner.start(["ok", "failing"], [AsyncMock(), failing], skip_page_waiting=True)

        assert completed is False
        [failed] = events.payloads(RunnerBase.TEST_FAILED_EVENT)
        assert failed["step_num"] == 1
        assert failed["err"].type == ErrorType.EMPTY_FIRST_ARGUMENT
        assert RunnerBase.TEST_COMPLETED_EVENT not in events.names()

    @pytest.mark.asyncio
    async def test_run_without_events(self, runner, events):
        """Test run emits no start or completion events."""
        assert await runner.run(["a"], [AsyncMock()]) is True
        assert events.names() == [RunnerBase.NEXT_STEP_STARTED_EVENT]

    @pytest.mark.asyncio
    async def test_dialog_handlers_reset_and_checked(self, runner, dialogs):
        """Test dialog handlers around a step."""
        await runner.start(["a"], [AsyncMock()], skip_page_waiting=True)

        assert dialogs.calls == ["reset_handlers", "check_expected_dialogs"]

    @pytest.mark.asyncio
    async def test_reset_allows_restart(self, runner):
        """Test restarting after reset."""
        await runner.start(["a"], [AsyncMock()], skip_page_waiting=True)
        runner.reset()

        assert runner.stopped is False
        assert await runner.start(["b"], [AsyncMock()], skip_page_waiting=True) is True

    @pytest.mark.asyncio
    async def test_destroy(self, runner, dialogs):
        """Test destroy."""
        await runner.destroy()

        assert "destroy" in dialogs.calls


class TestEnsureIframe:
    """Test frame argument resolution."""

    def test_frame_element(self, runner):
        """Test a frame element."""
        frame = FakeElement("f", tag="iframe")

        assert runner.ensure_iframe(frame) is frame
        assert runner.ensure_iframe(FakeElement("legacy", tag="frame")).tag == "frame"

    def test_selector(self, runner, page):
        """Test a selector matching one frame."""
        frame = FakeElement("f", tag="iframe")
        page.add("#f", frame)

        assert runner.ensure_iframe("#f") is frame

    def test_callable(self, runner):
        """Test a callable returning a frame."""
        frame = FakeElement("f", tag="iframe")

        assert runner.ensure_iframe(lambda: ElementCollection([frame])) is frame

    @pytest.mark.parametrize("arg", [None, False, "", 0, float("nan")])
    def test_empty(self, runner, arg):
        """Test empty frame arguments."""
        assert _fail_type(runner, arg) == ErrorType.EMPTY_IFRAME_ARGUMENT

    def test_selector_without_match(self, runner):
        """Test a selector without a match."""
        assert _fail_type(runner, "#none") == ErrorType.EMPTY_IFRAME_ARGUMENT

    def test_not_a_frame(self, runner):
        """Test an element that is not a frame."""
        assert _fail_type(runner, FakeElement("d")) == ErrorType.IFRAME_ARGUMENT_IS_NOT_IFRAME

    def test_multiple(self, runner, page):
        """Test a selector matching several frames."""
        page.add("iframe", FakeElement("a", tag="iframe"), FakeElement("b", tag="iframe"))

        assert _fail_type(runner, "iframe") == ErrorType.MULTIPLE_IFRAME_ARGUMENT

    @pytest.mark.parametrize("arg", [42, True, {"frame": 1}])
    def test_incorrect(self, runner, arg):
        """Test values that cannot name a frame."""
        assert _fail_type(runner, arg) == ErrorType.INCORRECT_IFRAME_ARGUMENT

    def test_in_iframe_requires_bus(self, runner):
        """Test delegation needs a message bus."""
        with pytest.raises(RuntimeError):
            runner.in_iframe("#f", "pkg.mod:step")

    def test_in_iframe_with_bus(self, page, automations):
        """Test wrapping a step for a frame."""
        channel = InProcessChannel()
        runner = RunnerBase(
            page, automations, FakeKeyParser(),
            bus=channel.connect(page.window), settings=fast_settings(),
        )

        delegated = runner.in_iframe("#f", module_level_step)

        assert callable(delegated)
        assert runner.frame_sync is not None


class TestPageErrors:
    """Test the uncaught page error policy."""

    def _runner(self, page, automations, **settings):
        return RunnerBase(page, automations, FakeKeyParser(), settings=fast_settings(**settings))

    def test_reported(self, page, automations):
        """Test an uncaught page error is reported."""
        runner = self._runner(page, automations)
        runner.step_iterator.state.step_name = "load"
        errors = EventLog().listen(runner, RunnerBase.TEST_FAILED_EVENT)

        runner.on_uncaught_js_error(PageError(msg="x is undefined", page_url="http://a/"))

        [failed] = errors.payloads(RunnerBase.TEST_FAILED_EVENT)
        record = failed["err"]
        assert record.type == ErrorType.UNCAUGHT_JS_ERROR
        assert record.script_err == "x is undefined"
        assert record.page_error is True
        assert record.page_dest_url == "http://a/"
        assert record.step_name == "load"

    def test_skipped(self, page, automations):
        """Test skipped page errors."""
        runner = self._runner(page, automations, skip_js_errors=True)

        runner.on_uncaught_js_error(PageError(msg="ignored"))

        assert runner.step_iterator.state.stopped is False

    def test_not_skipped_while_recording(self, page, automations):
        """Test recording reports skipped errors."""
        runner = self._runner(page, automations, skip_js_errors=True, recording=True)
        errors = EventLog().listen(runner, RunnerBase.TEST_FAILED_EVENT)

        runner.on_uncaught_js_error(PageError(msg="reported"))

        assert len(errors.events) == 1

    def test_frame_error_stops_silently(self, page, automations):
        """Test frame errors stop the run silently."""
        runner = self._runner(page, automations)
        errors = EventLog().listen(runner, RunnerBase.TEST_FAILED_EVENT)

        runner.on_uncaught_js_error(PageError(msg="in frame", in_iframe=True))

        assert runner.step_iterator.state.stopped is True
        assert errors.events == []

    def test_frame_error_reported_in_playback(self, page, automations):
        """Test frame errors are reported in playback."""
        runner = self._runner(page, automations, playback=True)
        errors = EventLog().listen(runner, RunnerBase.TEST_FAILED_EVENT)

        runner.on_uncaught_js_error(PageError(msg="in frame", in_iframe=True))

        assert len(errors.events) == 1


class TestNativeDialogs:
    """Test dialog callbacks."""

    def test_ignored_before_start(self, runner, dialogs, events):
        """Test dialogs before start are ignored."""
        dialogs.on_unexpected_dialog("alert", "hi")

        assert events.payloads(RunnerBase.TEST_FAILED_EVENT) == []

    @pytest.mark.asyncio
    async def test_unexpected_dialog_reported(self, runner, dialogs, events):
        """Test an unexpected dialog."""
        def step(t):
            dialogs.on_unexpected_dialog("confirm", "Sure?")

        assert await runner.start(["a"], [step], skip_page_waiting=True) is False

        [failed] = events.payloads(RunnerBase.TEST_FAILED_EVENT)
        assert failed["err"].type == ErrorType.UNEXPECTED_DIALOG
        assert failed["err"].dialog == "confirm"
        assert failed["err"].message == "Sure?"

    @pytest.mark.asyncio
    async def test_expected_dialog_missing(self, runner, dialogs, events):
        """Test an expected dialog that never appears."""
        runner.listen_native_dialogs = True

        dialogs.on_expected_dialog_missing("prompt")

        [failed] = events.payloads(RunnerBase.TEST_FAILED_EVENT)
        assert failed["err"].type == ErrorType.EXPECTED_DIALOG_DOESNT_APPEAR

    def test_dialogs_info_carried_over(self, page, automations, dialogs):
        """Test dialog info from settings."""
        RunnerBase(
            page, automations, FakeKeyParser(), dialogs=dialogs,
            settings=fast_settings(native_dialogs_info={"expected": ["alert"]}),
        )

        assert dialogs.info == {"expected": ["alert"]}


class TestControllerSurface:
    """Test the command surface of step bodies."""

    @pytest.mark.asyncio
    async def test_gestures_and_shared_data(self, runner, automations, page):
        """Test gestures and shared data from a step."""
        page.add("#ok", FakeElement("ok"))

        async def step(t):
            assert isinstance(t, TestController)
            t.shared["clicked"] = True
            await t.click("#ok")
            await t.type("#ok", "text")
            await t.press("enter")

        assert await runner.start(["a"], [step], skip_page_waiting=True)
        assert automations.gestures() == ["click", "type", "press"]
        assert runner.step_iterator.get_shared_data() == {"clicked": True}

    @pytest.mark.asyncio
    async def test_assertions(self, runner, events):
        """Test assertions from a step."""
        def step(t):
            t.ok(True)
            t.not_ok(True, "should be falsy")

        assert await runner.start(["a"], [step], skip_page_waiting=True)
        [failed] = events.payloads(RunnerBase.ASSERTION_FAILED_EVENT)
        assert failed["err"] == {"type": "notOk", "message": "should be falsy"}

    def test_dialog_expectations(self, runner, dialogs):
        """Test dialog expectations."""
        runner.controller.handle_confirm(True)
        runner.controller.handle_prompt("name")

        assert dialogs.calls == [("confirm", True), ("prompt", "name")]

    def test_missing_collaborators(self, page, automations):
        """Test missing assertions and dialogs."""
        bare = RunnerBase(page, automations, FakeKeyParser(), settings=fast_settings())

        with pytest.raises(RuntimeError):
            bare.controller.eq(1, 1)
        with pytest.raises(RuntimeError):
            bare.controller.handle_alert()

    @pytest.mark.asyncio
    async def test_screenshot_events(self, runner):
        """Test screenshot events."""
        events = EventLog().listen(
            runner,
            RunnerBase.SCREENSHOT_CREATING_STARTED_EVENT,
            RunnerBase.SCREENSHOT_CREATING_FINISHED_EVENT,
        )

        async def step(t):
            await t.screenshot("a.png")

        await runner.start(["a"], [step], skip_page_waiting=True)

        assert runner.screenshots.captured == ["a.png"]
        assert events.names() == [
            RunnerBase.SCREENSHOT_CREATING_STARTED_EVENT,
            RunnerBase.SCREENSHOT_CREATING_FINISHED_EVENT,
        ]


class TestStepReferences:
    """Test references used to delegate steps."""

    def teardown_method(self):
        clear_registered_steps()

    def test_module_level_function(self):
        """Test a module level function."""
        reference = step_reference(module_level_step)

        assert reference.endswith(":module_level_step")
        assert resolve_step(reference) is module_level_step

    def test_string_passes_through(self):
        """Test a string reference."""
        assert step_reference("pkg.mod:step") == "pkg.mod:step"

    def test_local_function_needs_registration(self):
        """Test local functions need registration."""
        def local(t):
            pass

        with pytest.raises(StepResolutionError):
            step_reference(local)

        registered = register_step()(local)
        assert resolve_step(step_reference(registered)) is local

    def test_named_registration(self):
        """Test a named registration."""
        @register_step("login")
        def login(t):
            pass

        assert step_reference(login) == "login"
        assert resolve_step("login") is login

    def test_mapping_first(self):
        """Test the step mapping comes first."""
        def other(t):
            pass

        assert resolve_step("json:dumps", {"json:dumps": other}) is other

    def test_importable_reference(self):
        """Test an importable reference."""
        import json

        assert resolve_step("json:dumps") is json.dumps

    @pytest.mark.parametrize("reference", ["no_such_module_xyz:step", "json:no_such_attr", "json:__doc__"])
    def test_unresolvable(self, reference):
        """Test unresolvable references."""
        with pytest.raises(StepResolutionError):
            resolve_step(reference)

    def test_not_callable(self):
        """Test values that are not callables."""
        with pytest.raises(StepResolutionError):
            step_reference(42)


@pytest.mark.asyncio
async def test_event_drain_after_async_handler(runner):
    done = asyncio.Event()

    async def handler(payload):
        done.set()

    runner.on(RunnerBase.TEST_COMPLETED_EVENT, handler)
    await runner.start(["a"], [AsyncMock()], skip_page_waiting=True)
    await runner.events.drain()

    assert done.is_set()
