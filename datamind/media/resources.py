"""
Playback Resource Registry

Hands out `blob:` URLs bound to Blob values and tracks them until they are
revoked. Each tool session owns one registry and must release its URLs when
they are superseded and when the session is torn down.
"""

from __future__ import annotations

import logging
import uuid

from datamind.logging_utils import should_log_feature

from .codec import Blob

logger = logging.getLogger(__name__)

BLOB_URL_PREFIX = "blob:"


class PlaybackResources:
    """Registry of live playback URLs."""

    def __init__(self, namespace: str = "datamind") -> None:
        self.namespace = namespace
        self._urls: dict[str, Blob] = {}

    def __len__(self) -> int:
        return len(self._urls)

    def __contains__(self, url: object) -> bool:
        return url in self._urls

    def create_url(self, blob: Blob) -> str:
        url = f"{BLOB_URL_PREFIX}{self.namespace}/{uuid.uuid4()}"
        self._urls[url] = blob
        if should_log_feature("tools", "resource_tracking"):
            logger.debug(f"Created playback URL {url} ({blob.size} bytes, {len(self._urls)} live)")
        return url

    def resolve(self, url: str) -> Blob | None:
        return self._urls.get(url)

    def revoke(self, url: str | None) -> bool:
        """Release a URL. Non-blob URLs (e.g. data URIs) are ignored."""
        if not url or not url.startswith(BLOB_URL_PREFIX):
            return False
        released = self._urls.pop(url, None) is not None
        if released and should_log_feature("tools", "resource_tracking"):
            logger.debug(f"Revoked playback URL {url} ({len(self._urls)} live)")
        return released

    def release_all(self) -> int:
        count = len(self._urls)
        self._urls.clear()
        if count:
            logger.debug(f"Released {count} playback URL(s)")
        return count
