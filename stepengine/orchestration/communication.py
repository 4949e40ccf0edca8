"""
Message passing between a document's engine and the engines of its frames.
"""

import asyncio
import inspect
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Set
from uuid import UUID, uuid4

from stepengine.core.interfaces import MessageChannel
from stepengine.core.timing import ms_to_seconds
from stepengine.core.types import FrameCommand, FrameMessage
from stepengine.error_handling.exceptions import FrameProtocolError
from stepengine.monitoring.logger import get_logger, log_frame_message

logger = get_logger(__name__)

FrameMessageHandler = Callable[[FrameMessage], Any]


class FrameMessageBus:
    """
    Typed message bus of one window.

    Handlers subscribe per command. Requests carry a correlation ID and are
    answered by a message whose ``reply_to`` names it; such answers resolve the
    waiting request instead of reaching subscribers.
    """

    def __init__(self, window: Any, channel: MessageChannel):
        """
        Initialize the message bus.

        Args:
            window: Window this bus receives for; stamped as source of sent messages
            channel: Delivery mechanism to other windows
        """
        self.window = window
        self.channel = channel

        # Subscribers mapped by command
        self._subscribers: Dict[FrameCommand, List[FrameMessageHandler]] = defaultdict(list)

        # Requests waiting for their response
        self._pending_requests: Dict[UUID, asyncio.Future] = {}

        # Handler tasks still running
        self._tasks: Set[asyncio.Task] = set()

        # Message history for debugging and analysis
        self._message_history: List[FrameMessage] = []
        self._history_limit = 1000

        # Statistics
        self._message_count: Dict[str, int] = defaultdict(int)

    def subscribe(self, command: FrameCommand, handler: FrameMessageHandler) -> None:
        """
        Subscribe to messages carrying a command.

        Args:
            command: Command to handle
            handler: Callable receiving the message; may return an awaitable
        """
        self._subscribers[command].append(handler)
        logger.debug(f"Subscription added for {command.value}")

    def unsubscribe(self, command: FrameCommand, handler: FrameMessageHandler) -> None:
        if handler in self._subscribers[command]:
            self._subscribers[command].remove(handler)
            logger.debug(f"Subscription removed for {command.value}")

    def send(
        self,
        command: FrameCommand,
        target_window: Any,
        payload: Optional[Dict[str, Any]] = None,
        correlation_id: Optional[UUID] = None,
        reply_to: Optional[UUID] = None,
    ) -> FrameMessage:
        """Send a message to another window without waiting for an answer."""
        message = FrameMessage(
            command=command,
            payload=payload or {},
            source=self.window,
            correlation_id=correlation_id,
            reply_to=reply_to,
        )
        log_frame_message(
            "out", command.value, target_window, str(correlation_id or reply_to or "")
        )
        self.channel.send(message, target_window)
        return message

    async def request(
        self,
        command: FrameCommand,
        target_window: Any,
        payload: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> FrameMessage:
        """
        Send a request and wait for the message answering it.

        Args:
            command: Request command
            target_window: Window to ask
            payload: Request payload
            timeout: Seconds to wait, None to wait indefinitely

        Returns:
            The response message

        Raises:
            FrameProtocolError: If no response arrived in time
        """
        correlation_id = uuid4()
        future = asyncio.get_running_loop().create_future()
        self._pending_requests[correlation_id] = future

        try:
            self.send(command, target_window, payload, correlation_id=correlation_id)
            if timeout is None:
                return await future
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            raise FrameProtocolError(
                f"No response to {command.value}",
                command=command.value,
                timeout_ms=int(timeout * 1000),
            ) from None
        finally:
            self._pending_requests.pop(correlation_id, None)

    def respond(
        self,
        request: FrameMessage,
        command: FrameCommand,
        payload: Optional[Dict[str, Any]] = None,
    ) -> FrameMessage:
        """Answer a received message in the window it came from."""
        return self.send(command, request.source, payload, reply_to=request.correlation_id)

    async def ping(self, target_window: Any, timeout_ms: int, interval_ms: int) -> None:
        """
        Check that the engine of another window answers.

        A ping is repeated every ``interval_ms`` until a pong arrives.

        Raises:
            FrameProtocolError: If nothing answered within ``timeout_ms``
        """

        async def _ping_until_answered() -> None:
            while True:
                try:
                    await self.request(
                        FrameCommand.PING, target_window, timeout=ms_to_seconds(interval_ms)
                    )
                    return
                except FrameProtocolError:
                    logger.debug("Ping unanswered, retrying")

        try:
            await asyncio.wait_for(_ping_until_answered(), ms_to_seconds(timeout_ms))
        except asyncio.TimeoutError:
            raise FrameProtocolError(
                "Frame did not answer the ping",
                command=FrameCommand.PING.value,
                timeout_ms=timeout_ms,
            ) from None

    def receive(self, message: FrameMessage) -> None:
        """Deliver an incoming message to the waiting request or to subscribers."""
        self._add_to_history(message)
        self._message_count[message.command.value] += 1
        log_frame_message(
            "in",
            message.command.value,
            message.source,
            str(message.correlation_id or message.reply_to or ""),
        )

        if message.reply_to is not None:
            future = self._pending_requests.get(message.reply_to)
            if future is not None:
                if not future.done():
                    future.set_result(message)
                return

        for handler in list(self._subscribers.get(message.command, [])):
            result = handler(message)
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._on_handler_done)

    def _on_handler_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                f"Frame message handler failed: {task.exception()}",
                exc_info=task.exception(),
            )

    def _add_to_history(self, message: FrameMessage) -> None:
        """Add message to history with size limit."""
        self._message_history.append(message)

        if len(self._message_history) > self._history_limit:
            self._message_history = self._message_history[-self._history_limit:]

    def get_message_history(
        self,
        command: Optional[FrameCommand] = None,
        limit: int = 100,
    ) -> List[FrameMessage]:
        """
        Get received messages, most recent last.

        Args:
            command: Filter by command
            limit: Maximum number of messages to return
        """
        history = self._message_history
        if command:
            history = [m for m in history if m.command == command]
        return history[-limit:]

    def get_statistics(self) -> Dict[str, Any]:
        """Get message bus statistics."""
        return {
            "total_messages": sum(self._message_count.values()),
            "message_counts": dict(self._message_count),
            "history_size": len(self._message_history),
            "pending_requests": len(self._pending_requests),
            "active_subscriptions": {
                command.value: len(handlers)
                for command, handlers in self._subscribers.items()
            },
        }

    def clear_history(self) -> None:
        self._message_history.clear()

    async def shutdown(self) -> None:
        """Cancel pending requests and handler tasks and drop subscriptions."""
        logger.info("Shutting down frame message bus")

        for future in self._pending_requests.values():
            if not future.done():
                future.cancel()
        self._pending_requests.clear()

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

        self._subscribers.clear()


class InProcessChannel(MessageChannel):
    """
    Channel between buses living in the same event loop.

    Delivery is asynchronous: a message reaches its target on a later loop
    iteration, in the order it was sent. Messages to unknown windows are dropped.
    """

    def __init__(self) -> None:
        self._buses: Dict[Any, FrameMessageBus] = {}

    def connect(self, window: Any) -> FrameMessageBus:
        """Create and register the bus of a window."""
        bus = FrameMessageBus(window, self)
        self.register(window, bus)
        return bus

    def register(self, window: Any, bus: FrameMessageBus) -> None:
        self._buses[window] = bus

    def unregister(self, window: Any) -> None:
        self._buses.pop(window, None)

    def send(self, message: FrameMessage, target_window: Any) -> None:
        bus = self._buses.get(target_window)
        if bus is None:
            logger.debug(f"No engine listening in {target_window!r}, dropping {message.command.value}")
            return
        asyncio.get_running_loop().call_soon(bus.receive, message)
