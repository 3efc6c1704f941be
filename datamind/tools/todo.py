"""To-do tool: a task list persisted as one history item."""

from __future__ import annotations

import logging
from typing import Any

from datamind.history import HistoryItem, HistoryStore, TodoData, TodoItem, TodoListItem

from .session import SessionListener

logger = logging.getLogger(__name__)

NEW_LIST_TITLE = "New To-Do List"


class TodoSession:
    """Task list editor. Every change is written through to the history store."""

    tool = "todo"

    def __init__(self, store: HistoryStore, listener: SessionListener | None = None) -> None:
        self.store = store
        self.listener = listener
        self.current_item_id: str | None = None
        self.tasks: list[TodoItem] = []
        self.error: str | None = None

    def emit(self, event: str, **data: Any) -> None:
        if self.listener is not None:
            self.listener(event, data)

    async def _commit(self, tasks: list[TodoItem]) -> HistoryItem:
        self.tasks = tasks
        existing = self.store.get(self.current_item_id) if self.current_item_id else None
        if existing is not None:
            item = await self.store.update(existing.id, TodoData(title=existing.data.title, tasks=tasks))
        else:
            item = await self.store.create(self.tool, TodoData(title=NEW_LIST_TITLE, tasks=tasks))
            self.current_item_id = item.id
            logger.info(f"→ Todo: started list {item.id}")
        self.emit("completed", item_id=item.id, tasks=[t.model_dump(by_alias=True) for t in tasks])
        return item

    def _task_ids(self) -> set[str]:
        return {task.id for task in self.tasks}

    async def add(self, text: str) -> HistoryItem | None:
        """Append a task. Blank text is ignored."""
        text = text.strip()
        if not text:
            return None
        task = TodoItem(text=text)
        while task.id in self._task_ids():
            task = TodoItem(text=text)
        return await self._commit([*self.tasks, task])

    async def toggle(self, task_id: str) -> HistoryItem | None:
        if task_id not in self._task_ids():
            return None
        tasks = [
            task.model_copy(update={"completed": not task.completed}) if task.id == task_id else task
            for task in self.tasks
        ]
        return await self._commit(tasks)

    async def delete(self, task_id: str) -> HistoryItem | None:
        if task_id not in self._task_ids():
            return None
        return await self._commit([task for task in self.tasks if task.id != task_id])

    async def edit(self, task_id: str, text: str) -> HistoryItem | None:
        """Replace a task's text. Blank text cancels the edit."""
        text = text.strip()
        if not text or task_id not in self._task_ids():
            return None
        tasks = [task.model_copy(update={"text": text}) if task.id == task_id else task for task in self.tasks]
        return await self._commit(tasks)

    def load(self, item: TodoListItem) -> None:
        if item.type != self.tool:
            raise ValueError(f"Cannot open a {item.type!r} item in the todo tool")
        self.current_item_id = item.id
        self.tasks = [task.model_copy() for task in item.data.tasks]
        self.error = None

    def reset(self) -> None:
        self.current_item_id = None
        self.tasks = []
        self.error = None

    async def close(self) -> None:
        self.reset()

    def snapshot(self) -> dict[str, Any]:
        return {
            "tool": self.tool,
            "item_id": self.current_item_id,
            "tasks": [task.model_dump(by_alias=True) for task in self.tasks],
        }
