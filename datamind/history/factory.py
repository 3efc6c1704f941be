#!/usr/bin/env python3
"""
Repository Factory

Factory function to create the history repository selected in configuration.
"""

from __future__ import annotations

import logging
from typing import Any

from .json_repo import JsonFileHistoryRepo
from .memory_repo import InMemoryHistoryRepo
from .repository import HistoryRepository
from .sqlite_repo import SQLiteHistoryRepo

logger = logging.getLogger(__name__)


def create_repository(config: dict[str, Any]) -> HistoryRepository:
    """Create the history repository from the `history.storage` config section."""
    storage_config = config.get("history", {}).get("storage", {})
    storage_type = storage_config.get("type", "json")

    if storage_type == "memory":
        logger.info("Using in-memory history storage (data lost on restart)")
        return InMemoryHistoryRepo()
    if storage_type == "json":
        path = storage_config.get("path", "history.json")
        logger.info(f"Using JSON document history storage at {path}")
        return JsonFileHistoryRepo(path)
    if storage_type == "sqlite":
        db_path = storage_config.get("db_path", "history.db")
        logger.info(f"Using SQLite history storage at {db_path}")
        return SQLiteHistoryRepo(db_path)

    raise ValueError(f"Unknown history storage type: {storage_type!r}")
