#!/usr/bin/env python3
"""
JSON Document History Repository

Persists the whole ordered history as one JSON array, the same contract a
browser key-value store offers: every change rewrites the document.

CONFIG: history.storage.type = "json"
PURPOSE: Single-user persistence with a human-readable file
FEATURES: Atomic rewrite (temp file + fsync + rename), corrupted-file backup
"""

from __future__ import annotations

import asyncio
import logging
import os
import threading
from functools import partial

from datamind.errors import HistoryFormatError
from datamind.logging_utils import should_log_feature

from .models import HistoryItem, dump_history, load_history
from .repository import HistoryRepository

logger = logging.getLogger(__name__)


class JsonFileHistoryRepo(HistoryRepository):
    """Whole-document JSON persistence - configure with type='json'."""

    def __init__(self, path: str = "history.json"):
        self.path = path
        self._lock = threading.Lock()
        self._items: list[HistoryItem] | None = None

    def _read_sync(self) -> list[HistoryItem]:
        """Load the document, moving a corrupted file aside instead of failing startup."""
        if not os.path.exists(self.path):
            return []
        with open(self.path, encoding="utf-8") as f:
            text = f.read()
        if not text.strip():
            return []
        try:
            return load_history(text)
        except HistoryFormatError as e:
            backup_path = f"{self.path}.corrupt"
            os.replace(self.path, backup_path)
            logger.error(f"Corrupted history file moved to {backup_path}: {e}")
            return []

    def _write_sync(self, items: list[HistoryItem]) -> None:
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(dump_history(items))
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, self.path)
        if should_log_feature("history", "persistence"):
            logger.debug(f"Wrote {len(items)} history item(s) to {self.path}")

    def _ensure_loaded(self) -> list[HistoryItem]:
        """Must be called with self._lock held."""
        if self._items is None:
            self._items = self._read_sync()
        return self._items

    def _load_all_sync(self) -> list[HistoryItem]:
        with self._lock:
            return [item.model_copy(deep=True) for item in self._ensure_loaded()]

    def _save_item_sync(self, item: HistoryItem) -> None:
        with self._lock:
            items = list(self._ensure_loaded())
            stored = item.model_copy(deep=True)
            for index, existing in enumerate(items):
                if existing.id == item.id:
                    items[index] = stored
                    break
            else:
                items.insert(0, stored)
            # The cache only changes once the document is on disk
            self._write_sync(items)
            self._items = items

    def _delete_item_sync(self, item_id: str) -> bool:
        with self._lock:
            items = self._ensure_loaded()
            remaining = [item for item in items if item.id != item_id]
            if len(remaining) == len(items):
                return False
            self._write_sync(remaining)
            self._items = remaining
            return True

    def _clear_sync(self) -> None:
        with self._lock:
            self._write_sync([])
            self._items = []

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args))

    async def load_all(self) -> list[HistoryItem]:
        return await self._run(self._load_all_sync)

    async def save_item(self, item: HistoryItem) -> None:
        await self._run(self._save_item_sync, item)

    async def delete_item(self, item_id: str) -> bool:
        return await self._run(self._delete_item_sync, item_id)

    async def clear(self) -> None:
        await self._run(self._clear_sync)

    async def close(self) -> None:
        return None
