"""
Tools Module

Per-tool sessions wiring the generation client, the lifecycle helpers and
the history store together.
"""

from __future__ import annotations

from .chat import ChatRequest, ChatSession
from .image import ImageRequest, ImageSession
from .session import SessionListener, ToolSession
from .todo import TodoSession
from .video import VideoRequest, VideoSession
from .voice import VoiceRequest, VoiceSession

__all__ = [
    "ChatRequest",
    "ChatSession",
    "ImageRequest",
    "ImageSession",
    "SessionListener",
    "TodoSession",
    "ToolSession",
    "VideoRequest",
    "VideoSession",
    "VoiceRequest",
    "VoiceSession",
]
