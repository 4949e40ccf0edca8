"""
Tests for the frame message bus.
"""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from stepengine.core.types import FrameCommand, FrameMessage
from stepengine.error_handling.exceptions import FrameProtocolError
from stepengine.orchestration.communication import FrameMessageBus, InProcessChannel

from fakes import FakeWindow, other_tasks


async def flush(times: int = 5) -> None:
    """Let queued deliveries and handler tasks run."""
    for _ in range(times):
        await asyncio.sleep(0)


@pytest.fixture
def channel():
    return InProcessChannel()


@pytest.fixture
def parent_window():
    return FakeWindow("parent")


@pytest.fixture
def frame_window():
    return FakeWindow("frame")


@pytest.fixture
def parent_bus(channel, parent_window):
    return channel.connect(parent_window)


@pytest.fixture
def frame_bus(channel, frame_window):
    return channel.connect(frame_window)


class TestFrameMessageBus:
    """Test cases for FrameMessageBus."""

    def test_subscribe_unsubscribe(self, parent_bus):
        """Test command subscription and unsubscription."""
        handler = Mock()

        parent_bus.subscribe(FrameCommand.STEP_COMPLETED, handler)
        assert handler in parent_bus._subscribers[FrameCommand.STEP_COMPLETED]

        parent_bus.unsubscribe(FrameCommand.STEP_COMPLETED, handler)
        assert handler not in parent_bus._subscribers[FrameCommand.STEP_COMPLETED]

        # Unsubscribing twice does not raise
        parent_bus.unsubscribe(FrameCommand.STEP_COMPLETED, handler)

    @pytest.mark.asyncio
    async def test_send_delivers_asynchronously(self, parent_bus, frame_bus, parent_window, frame_window):
        """Test that a message reaches subscribers on a later loop iteration."""
        handler = Mock()
        frame_bus.subscribe(FrameCommand.RUN_STEP, handler)

        sent = parent_bus.send(FrameCommand.RUN_STEP, frame_window, {"step": "pkg:step"})
        handler.assert_not_called()

        await flush()

        handler.assert_called_once()
        received = handler.call_args[0][0]
        assert received is sent
        assert received.source is parent_window
        assert received.payload == {"step": "pkg:step"}

    @pytest.mark.asyncio
    async def test_messages_keep_order(self, parent_bus, frame_bus, parent_window):
        """Test that messages to one window arrive in sending order."""
        received = []
        parent_bus.subscribe(FrameCommand.SET_SHARED_DATA, lambda m: received.append(m.command))
        parent_bus.subscribe(FrameCommand.STEP_COMPLETED, lambda m: received.append(m.command))

        frame_bus.send(FrameCommand.SET_SHARED_DATA, parent_window, {"shared_data": {}})
        frame_bus.send(FrameCommand.STEP_COMPLETED, parent_window)
        await flush()

        assert received == [FrameCommand.SET_SHARED_DATA, FrameCommand.STEP_COMPLETED]

    @pytest.mark.asyncio
    async def test_async_handler_is_awaited(self, parent_bus, frame_bus, frame_window):
        """Test async handlers run as tasks."""
        handler = AsyncMock()
        frame_bus.subscribe(FrameCommand.PING, handler)

        parent_bus.send(FrameCommand.PING, frame_window)
        await flush()

        handler.assert_awaited_once()
        assert frame_bus._tasks == set()

    @pytest.mark.asyncio
    async def test_failing_handler_is_logged(self, parent_bus, frame_bus, frame_window, caplog):
        """Test a failing async handler does not break delivery."""
        other = Mock()
        frame_bus.subscribe(FrameCommand.PING, AsyncMock(side_effect=RuntimeError("boom")))
        frame_bus.subscribe(FrameCommand.PING, other)

        parent_bus.send(FrameCommand.PING, frame_window)
        await flush()

        other.assert_called_once()
        assert "Frame message handler failed" in caplog.text

    @pytest.mark.asyncio
    async def test_request_response(self, parent_bus, frame_bus, frame_window):
        """Test a request resolved by the message answering it."""
        frame_bus.subscribe(
            FrameCommand.GET_SHARED_DATA_REQUEST,
            lambda m: frame_bus.respond(m, FrameCommand.GET_SHARED_DATA_RESPONSE, {"shared_data": {"a": 1}}),
        )
        response_subscriber = Mock()
        parent_bus.subscribe(FrameCommand.GET_SHARED_DATA_RESPONSE, response_subscriber)

        response = await parent_bus.request(
            FrameCommand.GET_SHARED_DATA_REQUEST, frame_window, timeout=1
        )

        assert response.payload == {"shared_data": {"a": 1}}
        assert response.reply_to is not None
        response_subscriber.assert_not_called()
        assert parent_bus._pending_requests == {}

    @pytest.mark.asyncio
    async def test_request_timeout(self, parent_bus, frame_window):
        """Test a request nobody answers."""
        with pytest.raises(FrameProtocolError) as exc_info:
            await parent_bus.request(FrameCommand.TAKE_SCREENSHOT_REQUEST, frame_window, timeout=0.02)

        assert exc_info.value.command == FrameCommand.TAKE_SCREENSHOT_REQUEST.value
        assert exc_info.value.timeout_ms == 20
        assert parent_bus._pending_requests == {}

    @pytest.mark.asyncio
    async def test_ping_answered(self, parent_bus, frame_bus, frame_window):
        """Test pinging an engine that answers."""
        frame_bus.subscribe(FrameCommand.PING, lambda m: frame_bus.respond(m, FrameCommand.PONG))

        await parent_bus.ping(frame_window, timeout_ms=200, interval_ms=20)

    @pytest.mark.asyncio
    async def test_ping_retried_until_engine_appears(self, channel, parent_bus, frame_window):
        """Test a ping repeated until a late engine answers."""

        async def late_engine():
            await asyncio.sleep(0.03)
            bus = channel.connect(frame_window)
            bus.subscribe(FrameCommand.PING, lambda m: bus.respond(m, FrameCommand.PONG))

        starter = asyncio.ensure_future(late_engine())
        await parent_bus.ping(frame_window, timeout_ms=500, interval_ms=10)
        await starter

        pings = [m for m in channel._buses[frame_window].get_message_history(FrameCommand.PING)]
        assert len(pings) >= 1

    @pytest.mark.asyncio
    async def test_ping_timeout(self, parent_bus, frame_window):
        """Test pinging a window without an engine."""
        with pytest.raises(FrameProtocolError) as exc_info:
            await parent_bus.ping(frame_window, timeout_ms=50, interval_ms=10)

        assert exc_info.value.command == "ping"
        assert other_tasks() == []

    @pytest.mark.asyncio
    async def test_message_history(self, parent_bus, frame_bus, parent_window):
        """Test message history functionality."""
        frame_bus.send(FrameCommand.ACTION_RUN, parent_window)
        frame_bus.send(FrameCommand.NEXT_STEP_STARTED, parent_window)
        await flush()

        assert len(parent_bus.get_message_history()) == 2
        assert len(parent_bus.get_message_history(FrameCommand.ACTION_RUN)) == 1
        assert parent_bus.get_message_history(limit=1)[0].command == FrameCommand.NEXT_STEP_STARTED

        parent_bus.clear_history()
        assert parent_bus.get_message_history() == []

    @pytest.mark.asyncio
    async def test_message_history_limit(self, parent_bus, frame_bus, parent_window):
        """Test message history size limit."""
        parent_bus._history_limit = 5

        for i in range(10):
            frame_bus.send(FrameCommand.ACTION_RUN, parent_window, {"index": i})
        await flush()

        assert len(parent_bus._message_history) == 5
        assert parent_bus._message_history[-1].payload["index"] == 9

    @pytest.mark.asyncio
    async def test_statistics(self, parent_bus, frame_bus, parent_window):
        """Test message bus statistics."""
        parent_bus.subscribe(FrameCommand.ACTION_RUN, Mock())
        frame_bus.send(FrameCommand.ACTION_RUN, parent_window)
        await flush()

        stats = parent_bus.get_statistics()

        assert stats["total_messages"] == 1
        assert stats["message_counts"] == {"actionRun": 1}
        assert stats["history_size"] == 1
        assert stats["pending_requests"] == 0
        assert stats["active_subscriptions"] == {"actionRun": 1}

    @pytest.mark.asyncio
    async def test_shutdown(self, parent_bus, frame_window):
        """Test shutdown cancels pending requests and drops subscriptions."""
        parent_bus.subscribe(FrameCommand.ACTION_RUN, Mock())
        request = asyncio.ensure_future(parent_bus.request(FrameCommand.PING, frame_window))
        await flush()

        await parent_bus.shutdown()

        with pytest.raises(asyncio.CancelledError):
            await request
        assert len(parent_bus._subscribers) == 0


class TestInProcessChannel:
    """Test the in-process channel."""

    @pytest.mark.asyncio
    async def test_unknown_window_is_dropped(self, parent_bus):
        """Test messages to windows without a bus are dropped."""
        parent_bus.send(FrameCommand.PING, FakeWindow("nobody"))
        await flush()

    @pytest.mark.asyncio
    async def test_unregister(self, channel, parent_bus, frame_bus, frame_window):
        """Test an unregistered window receives nothing."""
        handler = Mock()
        frame_bus.subscribe(FrameCommand.PING, handler)
        channel.unregister(frame_window)

        parent_bus.send(FrameCommand.PING, frame_window)
        await flush()

        handler.assert_not_called()

    def test_register_existing_bus(self, channel, frame_window):
        """Test registering an existing bus."""
        bus = FrameMessageBus(frame_window, channel)
        channel.register(frame_window, bus)

        assert channel._buses[frame_window] is bus


class TestFrameMessage:
    def test_defaults(self):
        """Test message defaults."""
        message = FrameMessage(command=FrameCommand.PING)

        assert message.payload == {}
        assert message.correlation_id is None
        assert message.reply_to is None
        assert message.message_id is not None
