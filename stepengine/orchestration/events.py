"""
Event subscription shared by the step iterator and the runner.
"""

import asyncio
import inspect
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Set

from stepengine.monitoring.logger import get_logger

logger = get_logger(__name__)

EventHandler = Callable[[Optional[Dict[str, Any]]], Any]


class EventEmitter:
    """
    Synchronous publish-subscribe registry.

    Handlers run in subscription order inside ``emit``. A handler that returns an
    awaitable has it scheduled as a task; ``drain`` waits for those.
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, List[EventHandler]] = defaultdict(list)
        self._pending: Set[asyncio.Future] = set()

    def on(self, event: str, handler: EventHandler) -> None:
        self._handlers[event].append(handler)
        logger.debug(f"Subscription added for {event}")

    def off(self, event: str, handler: EventHandler) -> None:
        if handler in self._handlers[event]:
            self._handlers[event].remove(handler)
            logger.debug(f"Subscription removed for {event}")

    def emit(self, event: str, payload: Optional[Dict[str, Any]] = None) -> None:
        for handler in list(self._handlers.get(event, [])):
            result = handler(payload)
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)

    def listener_count(self, event: str) -> int:
        return len(self._handlers.get(event, []))

    async def drain(self) -> None:
        """Wait for handler tasks scheduled by previous emits."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def clear(self) -> None:
        self._handlers.clear()
