"""
Tests for the timer helpers.
"""

import asyncio

import pytest

from stepengine.core.timing import ms_to_seconds, poll_until, race, sleep_ms

from fakes import other_tasks


class TestMsToSeconds:
    def test_conversion(self):
        """Test conversion to seconds."""
        assert ms_to_seconds(1500) == 1.5

    def test_negative_is_clamped(self):
        """Test negative values are clamped."""
        assert ms_to_seconds(-10) == 0


class TestPollUntil:
    """Test condition polling."""

    @pytest.mark.asyncio
    async def test_returns_first_truthy_value(self):
        """Test the first truthy value is returned."""
        values = iter([None, 0, "found"])

        result = await poll_until(lambda: next(values), 0.001)

        assert result == "found"

    @pytest.mark.asyncio
    async def test_first_check_waits_one_interval(self):
        """Test the first check waits one interval."""
        calls = []

        task = asyncio.ensure_future(poll_until(lambda: calls.append(1) or True, 0.05))
        await asyncio.sleep(0)
        assert calls == []

        await task
        assert calls == [1]

    @pytest.mark.asyncio
    async def test_timeout(self):
        """Test the timeout."""
        with pytest.raises(asyncio.TimeoutError):
            await poll_until(lambda: False, 0.005, timeout=0.03)

        assert other_tasks() == []


class TestRace:
    """Test racing awaitables."""

    @pytest.mark.asyncio
    async def test_first_finisher_wins_and_losers_are_cancelled(self):
        """Test losers are cancelled."""
        cancelled = asyncio.Event()

        async def slow():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        async def fast():
            await sleep_ms(5)
            return "fast"

        index, result = await race(slow(), fast())

        assert (index, result) == (1, "fast")
        assert cancelled.is_set()
        assert other_tasks() == []

    @pytest.mark.asyncio
    async def test_winner_exception_propagates(self):
        """Test the winner's exception propagates."""
        async def failing():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            await race(failing(), asyncio.sleep(10))

        assert other_tasks() == []
