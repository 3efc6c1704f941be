#!/usr/bin/env python3
"""
SQLite History Repository Implementation

CONFIG: history.storage.type = "sqlite"
PURPOSE: Durable storage for large media-heavy histories
FEATURES: WAL mode, async access via aiosqlite, one JSON document per item
"""

from __future__ import annotations

import asyncio
import logging

import aiosqlite

from datamind.logging_utils import should_log_feature

from .models import HistoryItem, dump_item, load_item
from .repository import HistoryRepository

logger = logging.getLogger(__name__)


class SQLiteHistoryRepo(HistoryRepository):
    """SQLite storage - configure with type='sqlite'."""

    def __init__(self, db_path: str = "history.db"):
        self.db_path = db_path
        self._lock = asyncio.Lock()
        self._initialized = False

    async def _ensure_initialized(self) -> None:
        """Initialize database schema if not already done."""
        if self._initialized:
            return

        async with self._lock:
            if self._initialized:
                return

            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("PRAGMA journal_mode=WAL")
                await db.execute("PRAGMA synchronous=NORMAL")

                await db.execute("""
                    CREATE TABLE IF NOT EXISTS history_items (
                        id TEXT PRIMARY KEY,
                        type TEXT NOT NULL,
                        timestamp INTEGER NOT NULL,
                        item TEXT NOT NULL,
                        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    )
                """)
                await db.execute("""
                    CREATE INDEX IF NOT EXISTS idx_history_timestamp
                    ON history_items(timestamp)
                """)
                await db.commit()

            self._initialized = True

    async def load_all(self) -> list[HistoryItem]:
        await self._ensure_initialized()

        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                "SELECT item FROM history_items ORDER BY timestamp DESC, rowid DESC"
            ) as cursor:
                rows = await cursor.fetchall()

        items = [load_item(row[0]) for row in rows]
        logger.debug(f"Loaded {len(items)} history item(s) from {self.db_path}")
        return items

    async def save_item(self, item: HistoryItem) -> None:
        await self._ensure_initialized()

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO history_items (id, type, timestamp, item)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    item = excluded.item,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (item.id, item.type, item.timestamp, dump_item(item)),
            )
            await db.commit()

        if should_log_feature("history", "persistence"):
            logger.debug(f"Persisted history item {item.id} ({item.type})")

    async def delete_item(self, item_id: str) -> bool:
        await self._ensure_initialized()

        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("DELETE FROM history_items WHERE id = ?", (item_id,))
            await db.commit()
            return cursor.rowcount > 0

    async def clear(self) -> None:
        await self._ensure_initialized()

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("DELETE FROM history_items")
            await db.commit()

    async def close(self) -> None:
        return None
