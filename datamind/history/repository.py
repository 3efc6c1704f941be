#!/usr/bin/env python3
"""
History Repository Interface

Protocol implemented by every storage backend of the history store.
Repositories only persist; ordering and invariants are owned by HistoryStore.
"""

from __future__ import annotations

from typing import Protocol

from .models import HistoryItem


class HistoryRepository(Protocol):
    """Protocol defining the interface for history storage backends."""

    async def load_all(self) -> list[HistoryItem]:
        """Return all stored items, newest first."""
        ...

    async def save_item(self, item: HistoryItem) -> None:
        """Insert a new item or overwrite the stored copy with the same id."""
        ...

    async def delete_item(self, item_id: str) -> bool:
        """Remove an item. Returns False when nothing was stored under the id."""
        ...

    async def clear(self) -> None: ...

    async def close(self) -> None: ...
