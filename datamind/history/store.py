#!/usr/bin/env python3
"""
History Store

Owns the ordered collection of HistoryItems shared by every tool. Tools never
mutate items directly: they submit new data and the store validates it,
updates the in-memory copy and persists it through a HistoryRepository.

Writes to the same item id are serialized with a per-id lock; items with
different ids can be created and updated concurrently.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any

from datamind.errors import HistoryFormatError, HistoryItemNotFoundError
from datamind.logging_utils import should_log_feature

from .memory_repo import InMemoryHistoryRepo
from .models import HistoryItem, coerce_data, dump_history, load_history, make_item
from .repository import HistoryRepository

logger = logging.getLogger(__name__)


class HistoryStore:
    """In-memory history collection backed by a repository."""

    def __init__(self, repository: HistoryRepository | None = None):
        self.repository: HistoryRepository = repository or InMemoryHistoryRepo()
        self._items: list[HistoryItem] = []
        self._active_id: str | None = None
        self._item_locks: dict[str, asyncio.Lock] = {}

    # ---------- Reads ----------

    def __len__(self) -> int:
        return len(self._items)

    def items(self) -> list[HistoryItem]:
        """Snapshot of all items, newest first."""
        return [item.model_copy(deep=True) for item in self._items]

    def get(self, item_id: str) -> HistoryItem | None:
        for item in self._items:
            if item.id == item_id:
                return item.model_copy(deep=True)
        return None

    @property
    def active_id(self) -> str | None:
        return self._active_id

    @property
    def active_item(self) -> HistoryItem | None:
        return self.get(self._active_id) if self._active_id else None

    def _find(self, item_id: str) -> HistoryItem:
        for item in self._items:
            if item.id == item_id:
                return item
        raise HistoryItemNotFoundError(item_id)

    def _lock_for(self, item_id: str) -> asyncio.Lock:
        lock = self._item_locks.get(item_id)
        if lock is None:
            lock = self._item_locks[item_id] = asyncio.Lock()
        return lock

    def _replace(self, updated: HistoryItem) -> None:
        for index, item in enumerate(self._items):
            if item.id == updated.id:
                self._items[index] = updated
                return

    def _new_id(self) -> str:
        existing = {item.id for item in self._items}
        while True:
            candidate = str(uuid.uuid4())
            if candidate not in existing:
                return candidate

    # ---------- Lifecycle ----------

    async def load(self) -> list[HistoryItem]:
        """Replace the in-memory collection with the repository contents."""
        self._items = await self.repository.load_all()
        self._item_locks.clear()
        if self._active_id is not None and all(item.id != self._active_id for item in self._items):
            self._active_id = None
        logger.info(f"← History: loaded {len(self._items)} item(s)")
        return self.items()

    async def close(self) -> None:
        await self.repository.close()

    # ---------- Writes ----------

    async def create(self, tool_type: str, data: Any) -> HistoryItem:
        """Add a new item at the top of the list and make it the active one."""
        item = make_item(tool_type, data, item_id=self._new_id())
        async with self._lock_for(item.id):
            # Persist first so a failed save leaves the collection untouched
            await self.repository.save_item(item)
            self._items.insert(0, item)
            self._active_id = item.id
        logger.info(f"→ History: created {item.type} item {item.id}")
        return item.model_copy(deep=True)

    async def update(self, item_id: str, data: Any) -> HistoryItem:
        """Replace the data of an existing item.

        Raises:
            HistoryItemNotFoundError: if no item has this id
            HistoryTypeMismatchError: if `data` is not a payload of the item's type
        """
        async with self._lock_for(item_id):
            current = self._find(item_id)
            payload = coerce_data(current.type, data)
            item = current.model_copy(update={"data": payload.model_copy(deep=True)})
            await self.repository.save_item(item)
            self._replace(item)
        if should_log_feature("history", "persistence"):
            logger.debug(f"→ History: updated {item.type} item {item_id}")
        return item.model_copy(deep=True)

    async def rename(self, item_id: str, title: str) -> HistoryItem:
        """Change only the display title of an item. Blank titles are ignored.

        Raises:
            HistoryItemNotFoundError: if no item has this id
        """
        new_title = title.strip()
        async with self._lock_for(item_id):
            current = self._find(item_id)
            if not new_title:
                return current.model_copy(deep=True)
            item = current.model_copy(update={"data": current.data.model_copy(update={"title": new_title})})
            await self.repository.save_item(item)
            self._replace(item)
        logger.info(f"→ History: renamed item {item_id} to {new_title!r}")
        return item.model_copy(deep=True)

    async def delete(self, item_id: str) -> bool:
        """Remove exactly one item. Unknown ids are a no-op returning False."""
        async with self._lock_for(item_id):
            if all(item.id != item_id for item in self._items):
                return False
            await self.repository.delete_item(item_id)
            self._items = [item for item in self._items if item.id != item_id]
            if self._active_id == item_id:
                self._active_id = None
        self._item_locks.pop(item_id, None)
        logger.info(f"→ History: deleted item {item_id}")
        return True

    def select(self, item_id: str) -> HistoryItem:
        """Make an item the active one and return it.

        Raises:
            HistoryItemNotFoundError: if no item has this id (the active item
                is left unchanged)
        """
        item = self._find(item_id)
        self._active_id = item_id
        if should_log_feature("history", "selection"):
            logger.info(f"History: selected {item.type} item {item_id}")
        return item.model_copy(deep=True)

    def clear_selection(self) -> None:
        self._active_id = None

    # ---------- Serialization ----------

    def dumps(self) -> str:
        """Serialize the whole collection to the persisted JSON schema."""
        return dump_history(self._items)

    async def loads(self, text: str) -> list[HistoryItem]:
        """Replace the collection with a serialized history and persist it.

        Raises:
            HistoryFormatError: if the text is not a valid history document
        """
        items = load_history(text)
        ids = [item.id for item in items]
        if len(set(ids)) != len(ids):
            raise HistoryFormatError("History document contains duplicate item ids")

        await self.repository.clear()
        # Repositories prepend new items, so save oldest first
        for item in reversed(items):
            await self.repository.save_item(item)

        self._items = items
        self._item_locks.clear()
        self._active_id = None
        logger.info(f"← History: imported {len(items)} item(s)")
        return self.items()
