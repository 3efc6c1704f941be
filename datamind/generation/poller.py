"""
Long-Running Operation Poller

Drives an asynchronous remote job (video generation) until it reports done,
rotating a human-readable progress message on every attempt. Transient
poll failures are logged and retried; only the attempt bound ends the loop
early, with OperationTimedOutError.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Generic, TypeVar

from datamind.errors import OperationTimedOutError
from datamind.logging_utils import should_log_feature

logger = logging.getLogger(__name__)

OperationT = TypeVar("OperationT")

DEFAULT_POLL_INTERVAL_SECONDS = 10.0
DEFAULT_MAX_ATTEMPTS = 30

VIDEO_PROGRESS_MESSAGES: tuple[str, ...] = (
    "Warming up the AI director...",
    "Rendering the first few frames...",
    "Compositing the digital scenes...",
    "Applying cinematic color grading...",
    "Adding special effects...",
    "Finalizing the video masterpiece...",
    "This can take a few minutes, good things take time!",
)


class OperationPoller(Generic[OperationT]):
    """Bounded poll loop with a cyclic progress message."""

    def __init__(
        self,
        interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        messages: Sequence[str] = VIDEO_PROGRESS_MESSAGES,
        on_progress: Callable[[str], None] | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if not messages:
            raise ValueError("messages must not be empty")
        self.interval_seconds = interval_seconds
        self.max_attempts = max_attempts
        self.messages = tuple(messages)
        self.on_progress = on_progress
        self._sleep = sleep or asyncio.sleep
        self.attempts = 0
        self.current_message = self.messages[0]

    @property
    def timeout_seconds(self) -> float:
        return self.interval_seconds * self.max_attempts

    def _advance_message(self, message_index: int) -> None:
        self.current_message = self.messages[message_index % len(self.messages)]
        if should_log_feature("generation", "poll_progress"):
            logger.info(f"🎬 Poll {self.attempts}/{self.max_attempts}: {self.current_message}")
        if self.on_progress is not None:
            self.on_progress(self.current_message)

    async def poll(
        self,
        operation: OperationT,
        poll_step: Callable[[OperationT], Awaitable[OperationT]],
        is_done: Callable[[OperationT], bool],
    ) -> OperationT:
        """Poll `operation` until `is_done` holds or the attempt bound is exceeded.

        Args:
            operation: The operation handle returned when the job was started
            poll_step: Fetches the latest state of an operation
            is_done: Tells whether an operation has finished

        Returns:
            The finished operation. Extracting its result is up to the caller.

        Raises:
            OperationTimedOutError: after `max_attempts` polls without completion
        """
        current = operation
        self.attempts = 0
        self.current_message = self.messages[0]
        message_index = 1

        while not is_done(current):
            if self.attempts >= self.max_attempts:
                minutes = self.timeout_seconds / 60
                logger.warning(f"⌛ Operation not done after {self.attempts} polls")
                raise OperationTimedOutError(f"Video generation timed out after {minutes:g} minutes.")
            self.attempts += 1

            self._advance_message(message_index)
            message_index += 1

            await self._sleep(self.interval_seconds)
            try:
                current = await poll_step(current)
            except Exception as e:  # transient; the attempt bound catches persistent failures
                logger.error(f"Polling failed (attempt {self.attempts}): {e}")

        logger.info(f"✅ Operation finished after {self.attempts} poll(s)")
        return current
