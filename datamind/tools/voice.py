"""Voice tool: text-to-speech with a playable WAV result."""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from datamind.clients import GenerationBackend
from datamind.errors import NoArtifactError
from datamind.generation import RetryScheduler
from datamind.history import HistoryItem, HistoryStore, VoiceData, VoiceItem
from datamind.media import base64_decode, write_wav

from .session import SessionListener, ToolSession

logger = logging.getLogger(__name__)

SAMPLE_RATE = 24000
NUM_CHANNELS = 1


class VoiceRequest(BaseModel):
    text: str
    voice: str = "Kore"
    speed: float = Field(default=1.0, ge=0.5, le=1.5)


def speed_prefix(speed: float) -> str:
    """Spoken instruction that approximates the requested speaking rate."""
    if speed <= 0.7:
        return "Speak very slowly. "
    if speed < 1.0:
        return "Speak slowly. "
    if speed >= 1.3:
        return "Speak very quickly. "
    if speed > 1.0:
        return "Speak quickly. "
    return ""


def speech_prompt(request: VoiceRequest) -> str:
    return f"{speed_prefix(request.speed)}Say in a clear, natural, and friendly voice: {request.text}"


class VoiceSession(ToolSession):
    tool = "voice"

    def __init__(
        self,
        backend: GenerationBackend,
        store: HistoryStore,
        retry: RetryScheduler | None = None,
        listener: SessionListener | None = None,
        sample_rate: int = SAMPLE_RATE,
        num_channels: int = NUM_CHANNELS,
    ) -> None:
        super().__init__(backend, store, retry, listener)
        self.sample_rate = sample_rate
        self.num_channels = num_channels

    def validate(self, request: VoiceRequest) -> str | None:
        if not request.text.strip():
            return "Please enter some text to generate audio."
        return super().validate(request)

    async def _generate(self, request: VoiceRequest) -> HistoryItem:
        audio_base64 = await self.backend.synthesize_speech(speech_prompt(request), request.voice)
        if not audio_base64:
            raise NoArtifactError("No audio data received from API.")

        item = await self.save(
            VoiceData(text=request.text, voice=request.voice, speed=request.speed, audio_base64=audio_base64)
        )
        self.show(write_wav(base64_decode(audio_base64), self.sample_rate, self.num_channels))
        logger.info(f"← Voice: {len(audio_base64)} base64 chars of audio for item {item.id}")
        return item

    def restore(self, item: VoiceItem) -> None:
        try:
            pcm = base64_decode(item.data.audio_base64)
        except ValueError as e:
            logger.error(f"Failed to decode audio from history item {item.id}: {e}")
            self.error = "Could not load audio from history."
            return
        self.show(write_wav(pcm, self.sample_rate, self.num_channels))
