"""
Timer helpers shared by target waiting, wait conditions and frame watchers.

Every helper owns the tasks it creates and cancels them before returning,
whatever the outcome, so no poll outlives the call that started it.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional, Tuple


def ms_to_seconds(ms: float) -> float:
    return max(ms, 0) / 1000


async def sleep_ms(ms: float) -> None:
    await asyncio.sleep(ms_to_seconds(ms))


async def poll_until(
    check: Callable[[], Any],
    interval: float,
    timeout: Optional[float] = None,
) -> Any:
    """
    Re-evaluate a check every interval until it returns a truthy value.

    The first evaluation happens one interval after the call; callers that need
    an immediate answer check once before polling.

    Args:
        check: Zero-argument callable
        interval: Seconds between evaluations
        timeout: Overall limit in seconds, None for no limit

    Returns:
        The first truthy value returned by check

    Raises:
        asyncio.TimeoutError: If the timeout elapsed first
    """

    async def _poll() -> Any:
        while True:
            await asyncio.sleep(interval)
            result = check()
            if result:
                return result

    if timeout is None:
        return await _poll()
    return await asyncio.wait_for(_poll(), timeout)


async def race(*awaitables: Awaitable[Any]) -> Tuple[int, Any]:
    """
    Run awaitables concurrently and settle with the first one to finish.

    Losers are cancelled and awaited before this returns. If the winner raised,
    its exception propagates.

    Returns:
        Tuple of (index of the winner, its result)
    """
    tasks = [asyncio.ensure_future(aw) for aw in awaitables]
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    index = next(i for i, task in enumerate(tasks) if task in done)
    return index, tasks[index].result()
