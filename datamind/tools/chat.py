"""
Chat tool: multi-turn conversation with study/research modes and the
`/create <prompt>` image command.

The user's message is appended optimistically before the remote call and is
removed again only when that call fails.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict

from datamind.errors import NoArtifactError
from datamind.generation import ClassifiedError
from datamind.history import ChatData, ChatItem, ChatMessage, HistoryItem
from datamind.logging_utils import log_performance
from datamind.media import Blob, blob_to_data_uri

from .session import ToolSession

logger = logging.getLogger(__name__)

CREATE_COMMAND = "/create "
DEFAULT_INSTRUCTION = "You are Datamind AI, a friendly and helpful multimodal assistant."
STUDY_INSTRUCTION = "You are a helpful and patient tutor. Explain concepts clearly and encourage learning."


class ChatRequest(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    text: str
    image: Blob | None = None


def system_instruction(study_mode: bool) -> str:
    return STUDY_INSTRUCTION if study_mode else DEFAULT_INSTRUCTION


def chat_title(text: str) -> str:
    return text[:30] + ("..." if len(text) > 30 else "")


def image_chat_title(prompt: str) -> str:
    return "Image: " + prompt[:20] + "..."


class ChatSession(ToolSession):
    tool = "chat"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.messages: list[ChatMessage] = []
        self.study_mode = False
        self.research_mode = False

    def format_error(self, classified: ClassifiedError) -> str:
        return f"Failed to get response: {classified.user_message}"

    def set_modes(self, study_mode: bool | None = None, research_mode: bool | None = None) -> None:
        """Switch modes; the next turn uses the new instruction and tools."""
        if study_mode is not None:
            self.study_mode = study_mode
        if research_mode is not None:
            self.research_mode = research_mode

    async def submit(self, request: ChatRequest) -> HistoryItem | None:
        if not request.text.strip():
            return None
        message = self.validate(request)
        if message:
            self.reject(message)
            return None

        self.begin()
        user_message = ChatMessage(
            role="user",
            text=request.text,
            image_url=blob_to_data_uri(request.image) if request.image else None,
        )
        turn_start = len(self.messages)
        self.messages.append(user_message)
        self.emit("message", message=user_message.model_dump(by_alias=True, exclude_none=True))

        try:
            async with log_performance("chat turn"):
                if request.text.strip().lower().startswith(CREATE_COMMAND):
                    item = await self._create_image(request)
                else:
                    item = await self._generate(request)
        except Exception as e:  # the failed turn is rolled back and reported
            del self.messages[turn_start:]
            self.fail(e, request)
            return None
        finally:
            self.finish()

        self.emit("completed", item_id=item.id, url=None)
        return item

    async def _generate(self, request: ChatRequest) -> HistoryItem:
        reply = await self.backend.send_chat(self.messages, system_instruction(self.study_mode), self.research_mode)
        return await self._append_reply(reply, chat_title(request.text))

    async def _create_image(self, request: ChatRequest) -> HistoryItem:
        prompt = request.text.strip()[len(CREATE_COMMAND) :]
        image_base64 = await self.backend.create_chat_image(prompt, request.image)
        if not image_base64:
            raise NoArtifactError("Image generation failed to return an image.")

        reply = ChatMessage(
            role="model",
            text=f'Here is the image you requested for: "{prompt}"',
            image_url=f"data:image/png;base64,{image_base64}",
        )
        return await self._append_reply(reply, image_chat_title(prompt))

    async def _append_reply(self, reply: ChatMessage, new_title: str) -> HistoryItem:
        existing = self.store.get(self.current_item_id) if self.current_item_id else None
        title = existing.data.title if existing is not None else new_title
        messages = [*self.messages, reply]
        item = await self.save(
            ChatData(
                title=title,
                study_mode=self.study_mode,
                research_mode=self.research_mode,
                messages=list(messages),
            )
        )
        # The reply only joins the conversation once the turn is stored
        self.messages = messages
        self.emit("message", message=reply.model_dump(by_alias=True, exclude_none=True))
        return item

    def restore(self, item: ChatItem) -> None:
        self.messages = [message.model_copy(deep=True) for message in item.data.messages]
        self.study_mode = item.data.study_mode
        self.research_mode = item.data.research_mode

    def reset(self) -> None:
        super().reset()
        self.messages = []
        self.study_mode = False
        self.research_mode = False

    def snapshot(self) -> dict[str, Any]:
        state = super().snapshot()
        state.update(
            study_mode=self.study_mode,
            research_mode=self.research_mode,
            messages=[message.model_dump(by_alias=True, exclude_none=True) for message in self.messages],
        )
        return state
