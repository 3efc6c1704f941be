#!/usr/bin/env python3
"""
History Module

Heterogeneous history store with multiple storage backends.
"""

from __future__ import annotations

from .export import export_item
from .factory import create_repository
from .models import (
    ChatData,
    ChatItem,
    ChatMessage,
    HistoryData,
    HistoryItem,
    ImageData,
    ImageItem,
    Source,
    TodoData,
    TodoItem,
    TodoListItem,
    ToolType,
    VideoData,
    VideoItem,
    VoiceData,
    VoiceItem,
    display_title,
    dump_history,
    load_history,
)
from .repository import HistoryRepository
from .store import HistoryStore

__all__ = [
    "ChatData",
    "ChatItem",
    "ChatMessage",
    "HistoryData",
    "HistoryItem",
    "HistoryRepository",
    "HistoryStore",
    "ImageData",
    "ImageItem",
    "Source",
    "TodoData",
    "TodoItem",
    "TodoListItem",
    "ToolType",
    "VideoData",
    "VideoItem",
    "VoiceData",
    "VoiceItem",
    "create_repository",
    "display_title",
    "dump_history",
    "export_item",
    "load_history",
]
