"""
Waiting for a resolved element to become interactable.
"""

import asyncio
from typing import Any

from stepengine.config.settings import Settings
from stepengine.core.interfaces import PageAdapter
from stepengine.core.timing import poll_until
from stepengine.core.types import ErrorType
from stepengine.error_handling.reporter import ErrorReporter
from stepengine.monitoring.logger import get_logger

logger = get_logger(__name__)

OPTION_TAGS = ("option", "optgroup")


class VisibilityGate:
    """Blocks a gesture until its target is visible, or fails it."""

    def __init__(self, page: PageAdapter, reporter: ErrorReporter, settings: Settings) -> None:
        self.page = page
        self.reporter = reporter
        self.settings = settings

    def is_option_element(self, element: Any) -> bool:
        return self.page.tag_name(element) in OPTION_TAGS

    async def await_visible(self, element: Any, action: str) -> None:
        """
        Return once the element is visible.

        List options are judged by their own rule immediately; anything else is
        polled until visible or until the selector timeout.

        Raises:
            ActionFailure: invisibleActionElement with the element description
        """
        if self.is_option_element(element):
            if not self.page.is_option_element_visible(element):
                raise self._invisible(element, action)
            return

        if self.page.is_element_visible(element):
            return

        logger.debug(
            f"Waiting for {self.page.describe(element)} to become visible",
            extra={"action": action},
        )
        try:
            await poll_until(
                lambda: self.page.is_element_visible(element),
                self.settings.element_availability_delay,
                self.settings.selector_timeout,
            )
        except asyncio.TimeoutError:
            raise self._invisible(element, action) from None

    def _invisible(self, element: Any, action: str):
        return self.reporter.fail(
            ErrorType.INVISIBLE_ACTION_ELEMENT,
            element=self.page.describe(element),
            action=action,
        )
