"""Single-timer refresh scheduling.

A session owns exactly one :class:`RefreshScheduler`. The scheduler keeps
at most one live asyncio task, which awaits the refresh callback at a fixed
interval until cancelled.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import contextlib
import logging

from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable


logger = logging.getLogger("authwindow.auth")


class RefreshScheduler:
    """Recurring timer that re-invokes a refresh callback.

    Parameters
    ----------
    callback : callable
        Coroutine function awaited at every expiry boundary.
    name : str
        Name used for the task and in log lines.
    """

    def __init__(self, callback: Callable[[], Awaitable[None]], name: str = "refresh") -> None:
        """Initialize the scheduler."""
        self._callback = callback
        self._name = name
        self._task: asyncio.Task[None] | None = None
        self._interval_ms: int | None = None

    @property
    def active(self) -> bool:
        """Whether a timer is currently armed."""
        return self._task is not None and not self._task.done()

    @property
    def interval_ms(self) -> int | None:
        """Interval of the armed timer, or None."""
        return self._interval_ms if self.active else None

    def arm(self, interval_ms: int) -> bool:
        """Start the recurring timer unless one is already live.

        The same interval is reused for every subsequent tick.

        Parameters
        ----------
        interval_ms : int
            Milliseconds between callback invocations.

        Returns
        -------
        bool
            True if a new timer was started, False if one was already armed.
        """
        if self.active:
            logger.debug("Refresh timer %s already armed, keeping it", self._name)
            return False
        self._interval_ms = interval_ms
        self._task = asyncio.get_running_loop().create_task(
            self._run(interval_ms / 1000.0),
            name=f"authwindow-{self._name}",
        )
        logger.debug("Refresh timer %s armed every %d ms", self._name, interval_ms)
        return True

    def cancel(self) -> None:
        """Cancel the live timer, if any.

        Safe to call from inside the callback: the loop stops at its next
        suspension point.
        """
        task, self._task = self._task, None
        self._interval_ms = None
        if task is not None and not task.done():
            task.cancel()
            logger.debug("Refresh timer %s cancelled", self._name)

    async def wait_closed(self) -> None:
        """Cancel the timer and wait for its task to finish."""
        task = self._task
        self.cancel()
        if task is not None and task is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _run(self, delay: float) -> None:
        while True:
            await asyncio.sleep(delay)
            try:
                await self._callback()
            except Exception:
                logger.exception("Refresh callback %s failed", self._name)
