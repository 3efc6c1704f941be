"""
Video tool: long-running generation driven by the operation poller.

The remote job is started, polled every interval until it reports done (or
the attempt bound is hit), then the finished artifact is downloaded, shown
as a playback URL and stored base64-encoded in the history item.
"""

from __future__ import annotations

import logging
from typing import Any, Literal

from pydantic import BaseModel

from datamind.clients import GenerationBackend, video_uri
from datamind.errors import NoArtifactError
from datamind.generation import VIDEO_PROGRESS_MESSAGES, OperationPoller, RetryScheduler
from datamind.history import HistoryItem, HistoryStore, VideoData, VideoItem
from datamind.media import Blob, base64_to_blob, blob_to_base64

from .session import SessionListener, ToolSession

logger = logging.getLogger(__name__)

VIDEO_MIME_TYPE = "video/mp4"
SELECT_KEY_MESSAGE = "Please select an API key to generate videos."


class VideoRequest(BaseModel):
    prompt: str
    aspect_ratio: Literal["16:9", "9:16"] = "16:9"


def operation_done(operation: dict[str, Any]) -> bool:
    return bool(operation.get("done"))


class VideoSession(ToolSession):
    tool = "video"

    def __init__(
        self,
        backend: GenerationBackend,
        store: HistoryStore,
        retry: RetryScheduler | None = None,
        listener: SessionListener | None = None,
        poller: OperationPoller[dict[str, Any]] | None = None,
    ) -> None:
        super().__init__(backend, store, retry, listener)
        self.poller: OperationPoller[dict[str, Any]] = poller or OperationPoller()
        self.poller.on_progress = self._set_progress

    def validate(self, request: VideoRequest) -> str | None:
        if not request.prompt.strip():
            return "Please enter a prompt to generate a video."
        if not self.credential_selected or not self.backend.has_api_key:
            self.credential_selected = False
            return SELECT_KEY_MESSAGE
        return None

    async def _generate(self, request: VideoRequest) -> HistoryItem:
        self._set_progress(VIDEO_PROGRESS_MESSAGES[0])
        operation = await self.backend.start_video(request.prompt, request.aspect_ratio)
        finished = await self.poller.poll(operation, self.backend.get_video_operation, operation_done)

        download_link = video_uri(finished)
        if not download_link:
            raise NoArtifactError("Video generation finished, but no download link was provided.")

        self._set_progress("Downloading video...")
        video = Blob(data=await self.backend.download(download_link), mime_type=VIDEO_MIME_TYPE)
        self.show(video)

        item = await self.save(
            VideoData(prompt=request.prompt, aspect_ratio=request.aspect_ratio, video_base64=blob_to_base64(video))
        )
        logger.info(f"← Video: downloaded {video.size} bytes for item {item.id}")
        return item

    def restore(self, item: VideoItem) -> None:
        if not item.data.video_base64:
            return
        try:
            blob = base64_to_blob(item.data.video_base64, VIDEO_MIME_TYPE)
        except ValueError as e:
            logger.error(f"Failed to decode video from history item {item.id}: {e}")
            self.error = "Could not load video from history."
            return
        self.show(blob)
