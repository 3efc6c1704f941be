"""Image tool: prompt-to-image, stored as a PNG data URI."""

from __future__ import annotations

import logging
from typing import Literal

from pydantic import BaseModel

from datamind.errors import NoArtifactError
from datamind.history import HistoryItem, ImageData, ImageItem
from datamind.media import data_uri_to_blob

from .session import ToolSession

logger = logging.getLogger(__name__)


class ImageRequest(BaseModel):
    prompt: str
    aspect_ratio: Literal["1:1", "16:9", "9:16"] = "1:1"


class ImageSession(ToolSession):
    tool = "image"

    def validate(self, request: ImageRequest) -> str | None:
        if not request.prompt.strip():
            return "Please enter a prompt to generate an image."
        return super().validate(request)

    async def _generate(self, request: ImageRequest) -> HistoryItem:
        image_base64 = await self.backend.generate_image(request.prompt, request.aspect_ratio)
        if not image_base64:
            raise NoArtifactError("No image data received from API.")

        image_url = f"data:image/png;base64,{image_base64}"
        item = await self.save(ImageData(prompt=request.prompt, aspect_ratio=request.aspect_ratio, image_url=image_url))
        self.show(data_uri_to_blob(image_url))
        logger.info(f"← Image: generated {request.aspect_ratio} image for item {item.id}")
        return item

    def restore(self, item: ImageItem) -> None:
        try:
            blob = data_uri_to_blob(item.data.image_url)
        except ValueError as e:
            logger.error(f"Failed to decode image from history item {item.id}: {e}")
            self.error = "Could not load image from history."
            return
        self.show(blob)
