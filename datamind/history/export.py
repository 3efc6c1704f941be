#!/usr/bin/env python3
"""
History Item Export

Turns a stored item back into a downloadable file: media items are decoded
through the media codec, chat and to-do items are rendered as plain text.
"""

from __future__ import annotations

import re

from datamind.media import Blob, base64_decode, base64_to_blob, data_uri_to_blob, write_wav

from .models import ChatItem, HistoryItem, ImageItem, TodoListItem, VideoItem, VoiceItem, display_title

VOICE_SAMPLE_RATE = 24000
VOICE_CHANNELS = 1

_ROLE_LABELS = {"user": "You", "model": "Datamind AI", "system": "System"}


def _slug(text: str, fallback: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return slug[:40] or fallback


def _chat_transcript(item: ChatItem) -> str:
    data = item.data
    lines = [data.title, ""]
    for message in data.messages:
        lines.append(f"{_ROLE_LABELS.get(message.role, message.role)}: {message.text}")
        if message.image_url:
            lines.append("  [image attached]")
        for index, source in enumerate(message.sources or [], start=1):
            lines.append(f"  [{index}] {source.title or source.uri} - {source.uri}")
        lines.append("")
    return "\n".join(lines)


def _todo_checklist(item: TodoListItem) -> str:
    lines = [item.data.title, ""]
    lines.extend(f"[{'x' if task.completed else ' '}] {task.text}" for task in item.data.tasks)
    return "\n".join(lines) + "\n"


def export_item(
    item: HistoryItem,
    sample_rate: int = VOICE_SAMPLE_RATE,
    num_channels: int = VOICE_CHANNELS,
) -> tuple[str, Blob]:
    """Return `(filename, blob)` for downloading a history item."""
    base = _slug(display_title(item), item.type)

    if isinstance(item, VoiceItem):
        pcm = base64_decode(item.data.audio_base64)
        return f"{base}-{_slug(item.data.voice, 'voice')}.wav", write_wav(pcm, sample_rate, num_channels)
    if isinstance(item, ImageItem):
        blob = data_uri_to_blob(item.data.image_url)
        extension = blob.mime_type.split("/")[-1] or "png"
        return f"{base}.{extension}", blob
    if isinstance(item, VideoItem):
        return f"{base}.mp4", base64_to_blob(item.data.video_base64, "video/mp4")
    if isinstance(item, ChatItem):
        text = _chat_transcript(item)
        return f"{base}.txt", Blob(data=text.encode("utf-8"), mime_type="text/plain")
    if isinstance(item, TodoListItem):
        text = _todo_checklist(item)
        return f"{base}.txt", Blob(data=text.encode("utf-8"), mime_type="text/plain")

    raise TypeError(f"Cannot export history item of type {type(item).__name__}")
