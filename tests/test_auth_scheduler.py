"""Unit tests for the refresh scheduler."""

from __future__ import annotations

import asyncio

import pytest

from authwindow.auth.scheduler import RefreshScheduler


class _Counter:
    def __init__(self) -> None:
        self.calls = 0

    async def __call__(self) -> None:
        self.calls += 1


async def _wait_for(predicate, timeout: float = 1.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


class TestRefreshScheduler:
    """Tests for RefreshScheduler."""

    @pytest.mark.asyncio
    async def test_arm_repeats(self) -> None:
        """The callback runs repeatedly at the same interval."""
        counter = _Counter()
        scheduler = RefreshScheduler(counter, name="t")
        assert scheduler.arm(10) is True
        assert scheduler.interval_ms == 10
        await _wait_for(lambda: counter.calls >= 3)
        await scheduler.wait_closed()
        assert not scheduler.active

    @pytest.mark.asyncio
    async def test_second_arm_is_noop(self) -> None:
        """Arming a live timer keeps the existing one."""
        counter = _Counter()
        scheduler = RefreshScheduler(counter, name="t")
        scheduler.arm(50)
        assert scheduler.arm(10) is False
        assert scheduler.interval_ms == 50
        names = [t for t in asyncio.all_tasks() if t.get_name() == "authwindow-t"]
        assert len(names) == 1
        await scheduler.wait_closed()

    @pytest.mark.asyncio
    async def test_cancel_then_rearm(self) -> None:
        """A cancelled timer can be armed again."""
        scheduler = RefreshScheduler(_Counter(), name="t")
        scheduler.arm(1000)
        scheduler.cancel()
        assert not scheduler.active
        assert scheduler.interval_ms is None
        assert scheduler.arm(20) is True
        await scheduler.wait_closed()

    @pytest.mark.asyncio
    async def test_cancel_from_callback(self) -> None:
        """The callback may cancel its own timer."""
        calls = []

        async def callback() -> None:
            calls.append(1)
            scheduler.cancel()

        scheduler = RefreshScheduler(callback, name="t")
        scheduler.arm(5)
        await _wait_for(lambda: calls)
        await asyncio.sleep(0.05)
        assert calls == [1]
        assert not scheduler.active

    @pytest.mark.asyncio
    async def test_callback_errors_keep_timer(self) -> None:
        """A raising callback is logged and the timer keeps running."""
        calls = []

        async def callback() -> None:
            calls.append(1)
            raise RuntimeError("refresh failed")

        scheduler = RefreshScheduler(callback, name="t")
        scheduler.arm(5)
        await _wait_for(lambda: len(calls) >= 2)
        assert scheduler.active
        await scheduler.wait_closed()

    def test_arm_requires_running_loop(self) -> None:
        """Arming outside an event loop is an error."""
        scheduler = RefreshScheduler(_Counter())
        with pytest.raises(RuntimeError):
            scheduler.arm(10)
