#!/usr/bin/env python3
"""
History Data Models

Pydantic models for the heterogeneous history store. A HistoryItem is a
tagged union discriminated on `type`, so an item's type and the shape of its
data can never disagree. Field names are serialized in camelCase, which is
the persisted history schema.
"""

from __future__ import annotations

import time
import uuid
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from datamind.errors import HistoryFormatError, HistoryTypeMismatchError

# ---------- Type definitions ----------

ToolType = Literal["chat", "voice", "image", "video", "todo"]
Role = Literal["user", "model", "system"]

UNTITLED = "Untitled Session"


def _now_ms() -> int:
    return int(time.time() * 1000)


class HistoryModel(BaseModel):
    """Base for all persisted models: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
    )


# ---------- Variant payloads ----------


class VoiceData(HistoryModel):
    title: str | None = None
    text: str
    voice: str
    speed: float = Field(default=1.0, ge=0.5, le=1.5)
    audio_base64: str


class ImageData(HistoryModel):
    title: str | None = None
    prompt: str
    aspect_ratio: str
    image_url: str


class VideoData(HistoryModel):
    title: str | None = None
    prompt: str
    aspect_ratio: str
    video_base64: str


class Source(HistoryModel):
    uri: str
    title: str = ""


class ChatMessage(HistoryModel):
    role: Role
    text: str = ""
    image_url: str | None = None
    sources: list[Source] | None = None


class ChatData(HistoryModel):
    title: str
    study_mode: bool = False
    research_mode: bool = False
    messages: list[ChatMessage] = Field(default_factory=list)


class TodoItem(HistoryModel):
    id: str = Field(default_factory=lambda: f"task-{uuid.uuid4().hex}")
    text: str
    completed: bool = False


class TodoData(HistoryModel):
    title: str
    tasks: list[TodoItem] = Field(default_factory=list)

    @field_validator("tasks")
    @classmethod
    def validate_unique_task_ids(cls, v: list[TodoItem]) -> list[TodoItem]:
        """Task ids must be unique within one list."""
        seen: set[str] = set()
        for task in v:
            if task.id in seen:
                raise ValueError(f"Duplicate task id: {task.id}")
            seen.add(task.id)
        return v


HistoryData = VoiceData | ImageData | VideoData | ChatData | TodoData


# ---------- Items (tagged union) ----------


class _HistoryItemBase(HistoryModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: int = Field(default_factory=_now_ms)


class VoiceItem(_HistoryItemBase):
    type: Literal["voice"] = "voice"
    data: VoiceData


class ImageItem(_HistoryItemBase):
    type: Literal["image"] = "image"
    data: ImageData


class VideoItem(_HistoryItemBase):
    type: Literal["video"] = "video"
    data: VideoData


class ChatItem(_HistoryItemBase):
    type: Literal["chat"] = "chat"
    data: ChatData


class TodoListItem(_HistoryItemBase):
    type: Literal["todo"] = "todo"
    data: TodoData


HistoryItem = Annotated[
    VoiceItem | ImageItem | VideoItem | ChatItem | TodoListItem,
    Field(discriminator="type"),
]

ITEM_TYPES: dict[str, type[_HistoryItemBase]] = {
    "voice": VoiceItem,
    "image": ImageItem,
    "video": VideoItem,
    "chat": ChatItem,
    "todo": TodoListItem,
}

DATA_TYPES: dict[str, type[HistoryModel]] = {
    "voice": VoiceData,
    "image": ImageData,
    "video": VideoData,
    "chat": ChatData,
    "todo": TodoData,
}

_ITEM_ADAPTER: TypeAdapter[Any] = TypeAdapter(HistoryItem)
_HISTORY_ADAPTER: TypeAdapter[Any] = TypeAdapter(list[HistoryItem])


def coerce_data(tool_type: str, data: Any) -> HistoryData:
    """Validate `data` as the payload of `tool_type`.

    Accepts either the matching payload model or a plain mapping (camelCase or
    snake_case keys).

    Raises:
        HistoryTypeMismatchError: if the payload belongs to another tool or
            does not validate
    """
    data_type = DATA_TYPES.get(tool_type)
    if data_type is None:
        raise HistoryTypeMismatchError(f"Unknown history type: {tool_type!r}")
    if isinstance(data, data_type):
        return data  # type: ignore[return-value]
    if isinstance(data, HistoryModel):
        raise HistoryTypeMismatchError(
            f"{type(data).__name__} cannot be stored in a {tool_type!r} item"
        )
    try:
        return data_type.model_validate(data)  # type: ignore[return-value]
    except ValidationError as e:
        raise HistoryTypeMismatchError(f"Invalid {tool_type!r} data: {e}") from e


def make_item(tool_type: str, data: Any, item_id: str | None = None) -> HistoryItem:
    """Build a new history item of `tool_type` around `data`."""
    payload = coerce_data(tool_type, data)
    item_cls = ITEM_TYPES[tool_type]
    if item_id is None:
        return item_cls(data=payload)  # type: ignore[return-value]
    return item_cls(id=item_id, data=payload)  # type: ignore[return-value]


def display_title(item: HistoryItem) -> str:
    """Title shown in the history list."""
    title = getattr(item.data, "title", None)
    return title or UNTITLED


# ---------- Serialization ----------


def dump_item(item: HistoryItem) -> str:
    return _ITEM_ADAPTER.dump_json(item, by_alias=True, exclude_none=True).decode("utf-8")


def load_item(text: str | bytes) -> HistoryItem:
    try:
        return _ITEM_ADAPTER.validate_json(text)
    except ValidationError as e:
        raise HistoryFormatError(f"Invalid history item: {e}") from e


def dump_history(items: list[HistoryItem]) -> str:
    """Serialize an ordered list of items to the persisted JSON schema."""
    return _HISTORY_ADAPTER.dump_json(items, by_alias=True, exclude_none=True).decode("utf-8")


def load_history(text: str | bytes) -> list[HistoryItem]:
    """Parse persisted history text back into items, preserving order.

    Raises:
        HistoryFormatError: if the text is not a valid history document
    """
    try:
        return list(_HISTORY_ADAPTER.validate_json(text))
    except ValidationError as e:
        raise HistoryFormatError(f"Invalid history document: {e}") from e
