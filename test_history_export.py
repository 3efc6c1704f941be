#!/usr/bin/env python3
"""
Tests for exporting history items as downloadable files.
"""

from datamind.history import (
    ChatData,
    ChatItem,
    ChatMessage,
    ImageData,
    ImageItem,
    Source,
    TodoData,
    TodoItem,
    TodoListItem,
    VideoData,
    VideoItem,
    VoiceData,
    VoiceItem,
    export_item,
)
from datamind.media import base64_encode, read_wav_header


def test_voice_item_exports_wav():
    pcm = b"\x00\x01" * 50
    item = VoiceItem(data=VoiceData(text="Hi", voice="Kore", audio_base64=base64_encode(pcm)))

    filename, blob = export_item(item)

    assert filename == "untitled-session-kore.wav"
    assert blob.mime_type == "audio/wav"
    header = read_wav_header(blob.data)
    assert header.sample_rate == 24000
    assert header.num_channels == 1
    assert blob.data[44:] == pcm
    print("✅ Voice item exported as WAV")


def test_voice_export_uses_configured_format():
    item = VoiceItem(data=VoiceData(text="Hi", voice="Puck", audio_base64=base64_encode(b"\x00" * 8)))

    _filename, blob = export_item(item, sample_rate=16000, num_channels=2)

    header = read_wav_header(blob.data)
    assert header.sample_rate == 16000
    assert header.num_channels == 2


def test_image_item_exports_decoded_png():
    item = ImageItem(
        data=ImageData(title="Red Cat", prompt="a red cat", aspect_ratio="1:1", image_url="data:image/png;base64,iVBORw==")
    )

    filename, blob = export_item(item)

    assert filename == "red-cat.png"
    assert blob.mime_type == "image/png"
    assert blob.data == b"\x89PNG"


def test_video_item_exports_mp4():
    item = VideoItem(data=VideoData(prompt="waves", aspect_ratio="16:9", video_base64=base64_encode(b"mp4-bytes")))

    filename, blob = export_item(item)

    assert filename == "untitled-session.mp4"
    assert blob.mime_type == "video/mp4"
    assert blob.data == b"mp4-bytes"


def test_chat_item_exports_transcript_with_sources():
    item = ChatItem(
        data=ChatData(
            title="Weather?",
            messages=[
                ChatMessage(role="user", text="Weather in Paris?"),
                ChatMessage(
                    role="model",
                    text="Mild and cloudy.",
                    sources=[Source(uri="https://example.com/paris", title="Paris forecast")],
                ),
                ChatMessage(role="model", text="Here is an image", image_url="data:image/png;base64,AA=="),
            ],
        )
    )

    filename, blob = export_item(item)
    text = blob.data.decode("utf-8")

    assert filename == "weather.txt"
    assert blob.mime_type == "text/plain"
    assert text.startswith("Weather?\n")
    assert "You: Weather in Paris?" in text
    assert "Datamind AI: Mild and cloudy." in text
    assert "[1] Paris forecast - https://example.com/paris" in text
    assert "[image attached]" in text


def test_todo_item_exports_checklist():
    item = TodoListItem(
        data=TodoData(
            title="Groceries",
            tasks=[TodoItem(text="Milk", completed=True), TodoItem(text="Eggs")],
        )
    )

    filename, blob = export_item(item)

    assert filename == "groceries.txt"
    assert blob.data.decode("utf-8") == "Groceries\n\n[x] Milk\n[ ] Eggs\n"


if __name__ == "__main__":
    test_voice_item_exports_wav()
    test_image_item_exports_decoded_png()
    test_chat_item_exports_transcript_with_sources()
    test_todo_item_exports_checklist()
    print("🎉 All export tests passed!")
