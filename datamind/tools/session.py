"""
Tool Session

Per-session context shared by every tool: the loading flag, the visible error
text, the retry countdown, the playback URLs handed out to the client and the
history item currently bound to the session.

Each concrete tool implements validate() and _generate(); submit() runs the
common lifecycle around them:

    validate → gate (loading / countdown) → reset retry, release old URL
    → _generate → on failure: classify, arm countdown, reset credential
    → always: clear loading flag
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from datamind.clients import GenerationBackend
from datamind.errors import GenerationRejectedError
from datamind.generation import ClassifiedError, RetryScheduler, classify
from datamind.history import HistoryItem, HistoryStore, ToolType
from datamind.logging_utils import log_performance, should_log_feature
from datamind.media import Blob, PlaybackResources

logger = logging.getLogger(__name__)

SessionListener = Callable[[str, dict[str, Any]], None]

API_KEY_MISSING_MESSAGE = "API key is not configured."


class ToolSession:
    """Lifecycle state for one open tool."""

    tool: ToolType

    def __init__(
        self,
        backend: GenerationBackend,
        store: HistoryStore,
        retry: RetryScheduler | None = None,
        listener: SessionListener | None = None,
    ) -> None:
        self.backend = backend
        self.store = store
        self.retry = retry or RetryScheduler()
        self.resources = PlaybackResources(namespace=self.tool)
        self.listener = listener

        self.current_item_id: str | None = None
        self.is_loading = False
        self.error: str | None = None
        self.last_error: ClassifiedError | None = None
        self.progress_message: str | None = None
        self.retry_after = 0
        self.current_url: str | None = None
        self.credential_selected = True
        self.pending_request: Any | None = None

    # ---------- Events ----------

    def emit(self, event: str, **data: Any) -> None:
        if self.listener is not None:
            self.listener(event, data)

    def _set_progress(self, message: str) -> None:
        self.progress_message = message
        self.emit("progress", message=message)

    def _on_retry_tick(self, remaining: int) -> None:
        self.retry_after = remaining
        self.emit("retry", remaining=remaining)

    def _on_retry_expire(self) -> None:
        self.retry_after = 0
        self.emit("retry", remaining=0)

    # ---------- Gate ----------

    @property
    def can_submit(self) -> bool:
        return not self.is_loading and not self.retry.active

    def validate(self, request: Any) -> str | None:
        """Return a user-facing message when the request must not be sent."""
        if not self.backend.has_api_key:
            return API_KEY_MISSING_MESSAGE
        return None

    def begin(self) -> None:
        """Enter the loading state for a new submission.

        Raises:
            GenerationRejectedError: while a request is in flight or the retry
                countdown is running
        """
        if self.is_loading:
            raise GenerationRejectedError("A request is already in progress.")
        if self.retry.active:
            raise GenerationRejectedError(f"Please wait {self.retry.remaining} seconds before retrying.")

        self.is_loading = True
        self.error = None
        self.last_error = None
        self.retry.cancel()
        self.retry_after = 0
        self.release_current()
        self.emit("processing", tool=self.tool)

    def finish(self) -> None:
        self.is_loading = False
        self.progress_message = None

    def _ensure_idle(self) -> None:
        # The in-flight request still writes to current_item_id when it finishes
        if self.is_loading:
            raise GenerationRejectedError("A request is already in progress.")

    def fail(self, error: Exception, request: Any | None = None) -> ClassifiedError:
        """Route a failure through the classifier and update the session."""
        classified = classify(error)
        if should_log_feature("generation", "classified_errors"):
            logger.warning(f"❌ {self.tool} generation failed [{classified.kind.value}]: {classified.user_message}")
        else:
            logger.debug(f"{self.tool} generation failed: {error!r}")

        self.last_error = classified
        self.error = self.format_error(classified)
        self.release_current()

        if classified.credential_invalid:
            self.credential_selected = False
            self.pending_request = request
        if classified.retry_delay_seconds:
            self.retry.arm(classified.retry_delay_seconds, self._on_retry_tick, self._on_retry_expire)

        self.emit(
            "error",
            message=self.error,
            kind=classified.kind.value,
            retry_after=classified.retry_delay_seconds,
            credential_invalid=classified.credential_invalid,
        )
        return classified

    def format_error(self, classified: ClassifiedError) -> str:
        return classified.user_message

    def reject(self, message: str) -> None:
        """Show a validation message without touching the rest of the state."""
        self.error = message
        self.emit("error", message=message, kind=None, retry_after=None, credential_invalid=False)

    # ---------- Submission ----------

    async def submit(self, request: Any) -> HistoryItem | None:
        """Run one generation request through the shared lifecycle.

        Returns:
            The history item written by the tool, or None when the request
            was refused by validation or failed.

        Raises:
            GenerationRejectedError: while loading or during the countdown
        """
        message = self.validate(request)
        if message:
            self.reject(message)
            return None

        self.begin()
        try:
            async with log_performance(f"{self.tool} generation"):
                item = await self._generate(request)
        except Exception as e:  # every remote failure ends up as a visible message
            self.fail(e, request)
            return None
        finally:
            self.finish()

        self.emit("completed", item_id=item.id if item else None, url=self.current_url)
        return item

    async def resubmit(self) -> HistoryItem | None:
        """Replay the request kept after a credential-not-provisioned failure."""
        if self.pending_request is None:
            return None
        if not self.credential_selected:
            raise GenerationRejectedError("Select an API key before resubmitting.")
        request, self.pending_request = self.pending_request, None
        return await self.submit(request)

    def select_credential(self) -> None:
        self.credential_selected = True

    async def _generate(self, request: Any) -> HistoryItem | None:
        raise NotImplementedError

    # ---------- History binding ----------

    async def save(self, data: Any) -> HistoryItem:
        """Create the bound history item, or update it in place once bound."""
        existing = self.store.get(self.current_item_id) if self.current_item_id else None
        if existing is not None:
            # Keep a title the user gave the item through rename
            title = getattr(existing.data, "title", None)
            if title and getattr(data, "title", None) is None:
                data = data.model_copy(update={"title": title})
            return await self.store.update(existing.id, data)

        item = await self.store.create(self.tool, data)
        self.current_item_id = item.id
        return item

    def load(self, item: HistoryItem) -> None:
        """Bind the session to a history item and restore its output.

        Raises:
            GenerationRejectedError: while a request is in flight
        """
        if item.type != self.tool:
            raise ValueError(f"Cannot open a {item.type!r} item in the {self.tool} tool")
        self._ensure_idle()
        self.release_current()
        self.current_item_id = item.id
        self.error = None
        self.restore(item)

    def restore(self, item: HistoryItem) -> None:
        """Rebuild tool state from a stored item. Tools override this."""

    # ---------- Playback resources ----------

    def show(self, blob: Blob) -> str:
        """Publish a playback URL for `blob`, releasing the previous one."""
        self.release_current()
        self.current_url = self.resources.create_url(blob)
        self.emit("ready", url=self.current_url, mime_type=blob.mime_type, size=blob.size)
        return self.current_url

    def release_current(self) -> None:
        if self.current_url is not None:
            self.resources.revoke(self.current_url)
            self.current_url = None

    def reset(self) -> None:
        """Start a fresh, unbound session (the "new" action)."""
        self._ensure_idle()
        self.retry.cancel()
        self.retry_after = 0
        self.release_current()
        self.current_item_id = None
        self.error = None
        self.last_error = None
        self.progress_message = None
        self.pending_request = None

    async def close(self) -> None:
        """Tear the session down, releasing every playback URL."""
        self.retry.cancel()
        self.current_url = None
        released = self.resources.release_all()
        logger.debug(f"Closed {self.tool} session, released {released} playback URL(s)")

    def snapshot(self) -> dict[str, Any]:
        return {
            "tool": self.tool,
            "item_id": self.current_item_id,
            "is_loading": self.is_loading,
            "error": self.error,
            "error_kind": self.last_error.kind.value if self.last_error else None,
            "retry_after": self.retry_after,
            "progress_message": self.progress_message,
            "url": self.current_url,
            "credential_selected": self.credential_selected,
        }
