"""
Resolution of a gesture's target argument into concrete page elements.
"""

import asyncio
from typing import Any, AsyncIterator, Callable, List, Optional

from stepengine.config.settings import Settings
from stepengine.core.interfaces import PageAdapter
from stepengine.core.timing import poll_until
from stepengine.core.types import ElementCollection, ErrorType
from stepengine.error_handling.reporter import ErrorReporter
from stepengine.monitoring.logger import get_logger

logger = get_logger(__name__)


class TargetResolver:
    """
    Turns element, collection, selector and producer arguments into elements.

    Selectors and producers that yield nothing yet are re-evaluated every
    ``element_availability_delay_ms`` until ``selector_timeout_ms`` runs out.
    """

    def __init__(self, page: PageAdapter, reporter: ErrorReporter, settings: Settings) -> None:
        self.page = page
        self.reporter = reporter
        self.settings = settings

    async def resolve(self, spec: Any, action: str) -> List[Any]:
        """
        Resolve a single target argument.

        Args:
            spec: Element, ElementCollection, selector string or zero-argument callable
            action: Gesture name used in error records

        Returns:
            Non-empty ordered list of elements

        Raises:
            ActionFailure: emptyFirstArgument if nothing was found in time
        """
        if callable(spec) and not self.page.is_element(spec):
            produced = await self._wait_for_elements(lambda: self._produce(spec), action)
            return self._flatten(produced, action)

        if isinstance(spec, str):
            return await self._wait_for_elements(lambda: self._query(spec), action)

        elements = self.parse_target(spec, action)
        if not elements:
            raise self.reporter.fail(ErrorType.EMPTY_FIRST_ARGUMENT, action=action)
        return elements

    async def iter_targets(self, what: Any, action: str) -> AsyncIterator[Any]:
        """
        Yield the elements of a gesture's target argument one at a time.

        A list is walked in order and each entry is resolved only after the
        elements of the previous entry were consumed, so resolution never runs
        ahead of the gesture pipeline.
        """
        items = list(what) if isinstance(what, (list, tuple)) else [what]
        if not items:
            raise self.reporter.fail(ErrorType.EMPTY_FIRST_ARGUMENT, action=action)

        for item in items:
            if isinstance(item, (list, tuple)):
                async for element in self.iter_targets(item, action):
                    yield element
                continue

            for element in await self.resolve(item, action):
                yield element

    def parse_target(self, item: Any, action: Optional[str] = None) -> Optional[List[Any]]:
        """Concrete elements of an already available argument, or None if it is not one."""
        if self.page.is_element(item):
            return [item]
        if action == "select" and self.page.is_text_node(item):
            return [item]
        if isinstance(item, str):
            return self._query(item)
        if isinstance(item, ElementCollection):
            return list(item)
        return None

    def _query(self, selector: str) -> List[Any]:
        return list(self.page.query(selector))

    def _produce(self, producer: Callable[[], Any]) -> Optional[Any]:
        result = producer()
        if result is None:
            return None
        if isinstance(result, (ElementCollection, list, tuple)):
            return result if len(result) else None
        return result

    def _flatten(self, produced: Any, action: str) -> List[Any]:
        if not isinstance(produced, (ElementCollection, list, tuple)):
            produced = [produced]

        elements: List[Any] = []
        for item in produced:
            if isinstance(item, (ElementCollection, list, tuple)):
                elements.extend(self._flatten(item, action))
                continue
            parsed = self.parse_target(item, action)
            if not parsed:
                raise self.reporter.fail(ErrorType.EMPTY_FIRST_ARGUMENT, action=action)
            elements.extend(parsed)

        if not elements:
            raise self.reporter.fail(ErrorType.EMPTY_FIRST_ARGUMENT, action=action)
        return elements

    async def _wait_for_elements(self, find: Callable[[], Any], action: str) -> Any:
        found = find()
        if found:
            return found

        logger.debug(f"Waiting for the target of {action} to appear", extra={"action": action})
        try:
            return await poll_until(
                find,
                self.settings.element_availability_delay,
                self.settings.selector_timeout,
            )
        except asyncio.TimeoutError:
            raise self.reporter.fail(ErrorType.EMPTY_FIRST_ARGUMENT, action=action) from None
