"""
Retry Countdown Scheduler

Runs the one-second "retry in N seconds" countdown that gates a tool's
generate action after a rate-limit response.

Each arm() starts a fresh asyncio task; that task is the cancellation token
for the countdown, so re-arming and cancel() never leave two countdowns
running for the same scheduler.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

from datamind.logging_utils import should_log_feature

logger = logging.getLogger(__name__)

TickCallback = Callable[[int], None]
ExpireCallback = Callable[[], None]
SleepFunc = Callable[[float], Awaitable[None]]


class RetryScheduler:
    """One-second-resolution countdown with explicit cancellation."""

    def __init__(self, interval: float = 1.0, sleep: SleepFunc | None = None) -> None:
        self.interval = interval
        self._sleep: SleepFunc = sleep or asyncio.sleep
        self._task: asyncio.Task[None] | None = None
        self._remaining = 0

    @property
    def active(self) -> bool:
        """True while a countdown is running."""
        return self._task is not None and not self._task.done()

    @property
    def remaining(self) -> int:
        """Seconds left before the gate opens (0 when idle)."""
        return self._remaining if self.active else 0

    def arm(self, delay_seconds: int, on_tick: TickCallback, on_expire: ExpireCallback) -> None:
        """Start a countdown of `delay_seconds`, replacing any running one.

        `on_tick` is called immediately with the full delay and then once per
        second with the new remaining value while it stays above zero;
        `on_expire` fires once when the countdown reaches zero.
        Must be called from a running event loop.
        """
        self.cancel()
        if delay_seconds <= 0:
            self._remaining = 0
            on_expire()
            return

        self._remaining = delay_seconds
        self._task = asyncio.get_running_loop().create_task(self._run(on_tick, on_expire))
        logger.info(f"⏳ Retry countdown armed for {delay_seconds}s")
        on_tick(delay_seconds)

    async def _run(self, on_tick: TickCallback, on_expire: ExpireCallback) -> None:
        while True:
            await self._sleep(self.interval)
            self._remaining -= 1
            if self._remaining <= 0:
                self._remaining = 0
                logger.info("✅ Retry countdown expired")
                on_expire()
                return
            if should_log_feature("generation", "retry_ticks"):
                logger.debug(f"Retry countdown: {self._remaining}s remaining")
            on_tick(self._remaining)

    def cancel(self) -> None:
        """Stop the running countdown, if any. Safe to call when idle."""
        task, self._task = self._task, None
        self._remaining = 0
        if task is not None and not task.done():
            task.cancel()
            logger.debug("Retry countdown cancelled")

    async def wait(self) -> None:
        """Wait until the current countdown expires or is cancelled."""
        task = self._task
        if task is None:
            return
        with contextlib.suppress(asyncio.CancelledError):
            await task
