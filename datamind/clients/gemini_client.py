"""
Event-driven Gemini REST client that automatically updates when configuration changes.

Implements the GenerationBackend protocol used by the tool sessions: speech,
image and video generation, artifact download and chat turns. Non-success
responses raise ApiCallError carrying the decoded JSON error body so the
error classifier can inspect it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Protocol

import httpx

from datamind.config import Configuration
from datamind.errors import ApiCallError, DownloadFailedError, GenerationError
from datamind.history.models import ChatMessage, Source
from datamind.logging_utils import should_log_feature
from datamind.media import Blob, blob_to_base64, data_uri_to_blob

logger = logging.getLogger(__name__)


class GenerationBackend(Protocol):
    """Remote generation capability consumed by the tool sessions."""

    @property
    def has_api_key(self) -> bool: ...

    async def synthesize_speech(self, text: str, voice: str) -> str | None:
        """Return base64 PCM audio, or None when the response has no audio."""
        ...

    async def generate_image(self, prompt: str, aspect_ratio: str) -> str | None:
        """Return base64 PNG bytes, or None when no image was generated."""
        ...

    async def start_video(self, prompt: str, aspect_ratio: str) -> dict[str, Any]: ...

    async def get_video_operation(self, operation: dict[str, Any]) -> dict[str, Any]: ...

    async def download(self, uri: str) -> bytes: ...

    async def send_chat(
        self,
        messages: list[ChatMessage],
        system_instruction: str,
        research_mode: bool = False,
    ) -> ChatMessage: ...

    async def create_chat_image(self, prompt: str, image: Blob | None = None) -> str | None:
        """Return base64 image bytes for a `/create` chat command."""
        ...


def video_uri(operation: dict[str, Any]) -> str | None:
    """Download link of the first generated sample of a finished operation."""
    try:
        samples = operation["response"]["generateVideoResponse"]["generatedSamples"]
        return samples[0]["video"]["uri"] or None
    except (KeyError, IndexError, TypeError):
        return None


def _first_inline_data(response_data: dict[str, Any]) -> str | None:
    for candidate in response_data.get("candidates") or []:
        for part in (candidate.get("content") or {}).get("parts") or []:
            inline = part.get("inlineData")
            if inline and inline.get("data"):
                return inline["data"]
    return None


def _response_text(response_data: dict[str, Any]) -> str:
    candidates = response_data.get("candidates") or []
    if not candidates:
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(part.get("text", "") for part in parts if not part.get("thought"))


def _grounding_sources(response_data: dict[str, Any]) -> list[Source] | None:
    candidates = response_data.get("candidates") or []
    if not candidates:
        return None
    chunks = (candidates[0].get("groundingMetadata") or {}).get("groundingChunks")
    if chunks is None:
        return None
    return [
        Source(uri=chunk["web"].get("uri", ""), title=chunk["web"].get("title", ""))
        for chunk in chunks
        if chunk.get("web")
    ]


def _message_to_content(message: ChatMessage, include_image: bool) -> dict[str, Any]:
    parts: list[dict[str, Any]] = []
    if include_image and message.image_url:
        blob = data_uri_to_blob(message.image_url)
        parts.append({"inlineData": {"mimeType": blob.mime_type, "data": blob_to_base64(blob)}})
    parts.append({"text": message.text})
    return {"role": message.role, "parts": parts}


class GeminiClient:
    """
    Gemini REST client that rebuilds its HTTP client when the API settings
    or the API key change.
    """

    def __init__(
        self,
        configuration: Configuration,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.configuration: Configuration = configuration
        self._transport = transport
        self._current_config: dict[str, Any] = {}
        self._current_api_key: str = ""
        self.client: httpx.AsyncClient | None = None
        self._background_tasks: set[asyncio.Task[Any]] = set()

        self._update_client_config()
        self.configuration.subscribe_to_changes(self._on_config_change)

    # ---------- Configuration ----------

    def _read_api_key(self) -> str:
        return self.configuration.api_key if self.configuration.has_api_key else ""

    def _build_client(self, api_config: dict[str, Any], api_key: str) -> httpx.AsyncClient:
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["x-goog-api-key"] = api_key
        return httpx.AsyncClient(
            base_url=api_config["base_url"],
            headers=headers,
            timeout=api_config.get("request_timeout_seconds", 120.0),
            transport=self._transport,
            follow_redirects=True,
            trust_env=False,
        )

    def _update_client_config(self) -> None:
        """Initialize client configuration (called once during __init__)."""
        api_config = self.configuration.get_api_config()
        api_key = self._read_api_key()

        self._current_config = api_config
        self._current_api_key = api_key
        self.client = self._build_client(api_config, api_key)

        logger.info(f"Gemini client initialized with base URL: {api_config['base_url']}")
        if not api_key:
            logger.warning("⚠️ No API key configured; generation requests will be rejected")

    def _on_config_change(self, new_config: dict[str, Any]) -> None:
        """Event handler for configuration changes."""
        task = asyncio.create_task(self._handle_config_change_async())
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _handle_config_change_async(self) -> None:
        try:
            api_config = self.configuration.get_api_config()
            api_key = self._read_api_key()
        except ValueError as e:
            logger.error(f"❌ Ignoring invalid API configuration: {e}")
            return

        connection_changed = api_key != self._current_api_key or any(
            api_config.get(key) != self._current_config.get(key) for key in ("base_url", "request_timeout_seconds")
        )
        if connection_changed:
            logger.info("🔄 Replacing HTTP client with new API configuration")
            old_client = self.client
            self.client = self._build_client(api_config, api_key)
            if old_client:
                await old_client.aclose()
        elif api_config != self._current_config:
            logger.info("⚡ Model settings updated without client replacement")

        self._current_config = api_config
        self._current_api_key = api_key

    @property
    def has_api_key(self) -> bool:
        return bool(self._current_api_key)

    def _model(self, name: str) -> str:
        return self._current_config["models"][name]

    # ---------- HTTP ----------

    def _log_http_request(self, method: str, url: str, status_code: int, duration_ms: float) -> None:
        if should_log_feature("clients", "http_requests"):
            logger.info(f"🔌 HTTP {method} {url} | Status: {status_code} | Duration: {duration_ms:.2f}ms")

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        if not self.client:
            raise GenerationError("Gemini client not initialized")

        start_time = time.monotonic()
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"HTTP error calling {url}: {e}")
            raise GenerationError(f"HTTP error: {e!s}") from e

        self._log_http_request(method, url, response.status_code, (time.monotonic() - start_time) * 1000)
        return response

    async def _call(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        response = await self._request(method, url, **kwargs)
        if response.is_error:
            logger.error(f"❌ Gemini API error {response.status_code}: {response.text[:500]}")
            raise ApiCallError(response.status_code, response.text)
        return response.json()

    # ---------- GenerationBackend ----------

    async def synthesize_speech(self, text: str, voice: str) -> str | None:
        payload = {
            "contents": [{"parts": [{"text": text}]}],
            "generationConfig": {
                "responseModalities": ["AUDIO"],
                "speechConfig": {"voiceConfig": {"prebuiltVoiceConfig": {"voiceName": voice}}},
            },
        }
        data = await self._call("POST", f"/models/{self._model('speech')}:generateContent", json=payload)
        return _first_inline_data(data)

    async def generate_image(self, prompt: str, aspect_ratio: str) -> str | None:
        payload = {
            "instances": [{"prompt": prompt}],
            "parameters": {"sampleCount": 1, "aspectRatio": aspect_ratio, "outputMimeType": "image/png"},
        }
        data = await self._call("POST", f"/models/{self._model('image')}:predict", json=payload)
        predictions = data.get("predictions") or []
        if not predictions:
            return None
        return predictions[0].get("bytesBase64Encoded") or None

    async def start_video(self, prompt: str, aspect_ratio: str) -> dict[str, Any]:
        payload = {
            "instances": [{"prompt": prompt}],
            "parameters": {
                "sampleCount": 1,
                "aspectRatio": aspect_ratio,
                "resolution": self._current_config.get("video_resolution", "720p"),
            },
        }
        operation = await self._call("POST", f"/models/{self._model('video')}:predictLongRunning", json=payload)
        logger.info(f"→ Gemini: started video operation {operation.get('name')}")
        return operation

    async def get_video_operation(self, operation: dict[str, Any]) -> dict[str, Any]:
        return await self._call("GET", f"/{operation['name']}")

    async def download(self, uri: str) -> bytes:
        response = await self._request("GET", uri, params={"key": self._current_api_key})
        if response.is_error:
            raise DownloadFailedError(
                f"Failed to download video: {response.reason_phrase}",
                status_code=response.status_code,
            )
        return response.content

    async def send_chat(
        self,
        messages: list[ChatMessage],
        system_instruction: str,
        research_mode: bool = False,
    ) -> ChatMessage:
        conversation = [m for m in messages if m.role in ("user", "model")]
        contents = [
            _message_to_content(message, include_image=index == len(conversation) - 1)
            for index, message in enumerate(conversation)
        ]
        payload: dict[str, Any] = {
            "contents": contents,
            "systemInstruction": {"parts": [{"text": system_instruction}]},
        }
        if research_mode:
            payload["tools"] = [{"google_search": {}}]

        data = await self._call("POST", f"/models/{self._model('chat')}:generateContent", json=payload)
        return ChatMessage(role="model", text=_response_text(data), sources=_grounding_sources(data))

    async def create_chat_image(self, prompt: str, image: Blob | None = None) -> str | None:
        parts: list[dict[str, Any]] = [{"text": prompt}]
        if image is not None:
            parts.insert(0, {"inlineData": {"mimeType": image.mime_type, "data": blob_to_base64(image)}})
        payload = {
            "contents": [{"parts": parts}],
            "generationConfig": {"responseModalities": ["IMAGE"]},
        }
        data = await self._call("POST", f"/models/{self._model('chat_image')}:generateContent", json=payload)
        return _first_inline_data(data)

    # ---------- Lifecycle ----------

    async def close(self) -> None:
        """Close the HTTP client and unsubscribe from config changes."""
        self.configuration.unsubscribe_from_changes(self._on_config_change)
        if self.client:
            await self.client.aclose()
            self.client = None

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Async context manager exit."""
        await self.close()
