#!/usr/bin/env python3
"""
In-Memory History Repository Implementation

CONFIG: history.storage.type = "memory"
PURPOSE: Development/testing - all data lost on restart
"""

from __future__ import annotations

import logging

from .models import HistoryItem
from .repository import HistoryRepository

logger = logging.getLogger(__name__)


class InMemoryHistoryRepo(HistoryRepository):
    """Fast in-memory storage - configure with type='memory'. Data lost on restart."""

    def __init__(self, items: list[HistoryItem] | None = None):
        self._items: list[HistoryItem] = [item.model_copy(deep=True) for item in items or []]

    async def load_all(self) -> list[HistoryItem]:
        return [item.model_copy(deep=True) for item in self._items]

    async def save_item(self, item: HistoryItem) -> None:
        stored = item.model_copy(deep=True)
        for index, existing in enumerate(self._items):
            if existing.id == item.id:
                self._items[index] = stored
                return
        self._items.insert(0, stored)

    async def delete_item(self, item_id: str) -> bool:
        before = len(self._items)
        self._items = [item for item in self._items if item.id != item_id]
        return len(self._items) != before

    async def clear(self) -> None:
        self._items.clear()

    async def close(self) -> None:
        return None
