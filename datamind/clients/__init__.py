"""Clients package containing the remote generation client."""

from __future__ import annotations

from .gemini_client import GeminiClient, GenerationBackend, video_uri

__all__ = ["GeminiClient", "GenerationBackend", "video_uri"]
