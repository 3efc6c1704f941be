#!/usr/bin/env python3
"""
Tests for the heterogeneous history store and its repositories.
"""

import asyncio
import json
import os

import pytest

from datamind.errors import HistoryFormatError, HistoryItemNotFoundError, HistoryTypeMismatchError
from datamind.history import (
    ChatData,
    ChatMessage,
    HistoryStore,
    ImageData,
    Source,
    TodoData,
    TodoItem,
    VoiceData,
    create_repository,
    display_title,
)
from datamind.history.json_repo import JsonFileHistoryRepo
from datamind.history.memory_repo import InMemoryHistoryRepo
from datamind.history.sqlite_repo import SQLiteHistoryRepo


def _voice(text="Hello"):
    return VoiceData(text=text, voice="Kore", speed=1.0, audio_base64="AAAA")


def _chat():
    return ChatData(
        title="Weather chat",
        study_mode=True,
        research_mode=False,
        messages=[
            ChatMessage(role="user", text="Weather today?"),
            ChatMessage(
                role="model",
                text="Sunny.",
                sources=[Source(uri="https://example.com/w", title="Forecast")],
            ),
        ],
    )


def _todo():
    return TodoData(
        title="Groceries",
        tasks=[TodoItem(id="task-1", text="Milk", completed=True), TodoItem(id="task-2", text="Eggs")],
    )


def test_create_lists_newest_first_and_activates():
    async def scenario():
        store = HistoryStore()
        first = await store.create("voice", _voice())
        second = await store.create("image", ImageData(prompt="cat", aspect_ratio="1:1", image_url="data:image/png;base64,AA=="))
        return store, first, second

    store, first, second = asyncio.run(scenario())

    assert [item.id for item in store.items()] == [second.id, first.id]
    assert store.active_id == second.id
    assert first.id != second.id
    assert second.type == "image"
    print("✅ New items are listed first and become active")


def test_concurrent_creates_get_unique_ids():
    async def scenario():
        store = HistoryStore()
        items = await asyncio.gather(*(store.create("voice", _voice(f"n{i}")) for i in range(20)))
        return store, items

    store, items = asyncio.run(scenario())

    assert len({item.id for item in items}) == 20
    assert len(store) == 20


def test_update_replaces_data_and_checks_type():
    async def scenario():
        store = HistoryStore()
        item = await store.create("voice", _voice())
        updated = await store.update(item.id, _voice("Updated"))
        with pytest.raises(HistoryTypeMismatchError):
            await store.update(item.id, _chat())
        with pytest.raises(HistoryItemNotFoundError):
            await store.update("missing", _voice())
        return store, item, updated

    store, item, updated = asyncio.run(scenario())

    assert updated.id == item.id
    assert updated.timestamp == item.timestamp
    assert store.get(item.id).data.text == "Updated"


def test_rename_trims_and_ignores_blank():
    async def scenario():
        store = HistoryStore()
        item = await store.create("chat", _chat())
        await store.rename(item.id, "  Trip planning  ")
        await store.rename(item.id, "   ")
        return store, item

    store, item = asyncio.run(scenario())

    renamed = store.get(item.id)
    assert renamed.data.title == "Trip planning"
    assert renamed.data.messages == _chat().messages
    assert display_title(renamed) == "Trip planning"


def test_display_title_falls_back():
    async def scenario():
        store = HistoryStore()
        return await store.create("voice", _voice())

    assert display_title(asyncio.run(scenario())) == "Untitled Session"


def test_delete_removes_one_item():
    async def scenario():
        store = HistoryStore()
        keep = await store.create("voice", _voice())
        drop = await store.create("todo", _todo())
        missing = await store.delete("does-not-exist")
        deleted = await store.delete(drop.id)
        return store, keep, missing, deleted

    store, keep, missing, deleted = asyncio.run(scenario())

    assert missing is False
    assert deleted is True
    assert [item.id for item in store.items()] == [keep.id]
    assert store.active_id is None


def test_select_unknown_id_raises_and_keeps_active():
    async def scenario():
        store = HistoryStore()
        item = await store.create("voice", _voice())
        return store, item

    store, item = asyncio.run(scenario())

    with pytest.raises(HistoryItemNotFoundError):
        store.select("nope")
    assert store.active_id == item.id

    store.clear_selection()
    assert store.select(item.id).id == item.id
    assert store.active_item.id == item.id


def test_store_returns_copies():
    async def scenario():
        store = HistoryStore()
        return store, await store.create("todo", _todo())

    store, item = asyncio.run(scenario())
    item.data.tasks.clear()

    assert len(store.get(item.id).data.tasks) == 2


class FailingRepo(InMemoryHistoryRepo):
    """Memory repository whose writes can be switched off to simulate a full disk."""

    def __init__(self):
        super().__init__()
        self.fail = False

    async def save_item(self, item):
        if self.fail:
            raise OSError("disk full")
        await super().save_item(item)

    async def delete_item(self, item_id):
        if self.fail:
            raise OSError("disk full")
        return await super().delete_item(item_id)


def test_failed_writes_leave_store_unchanged():
    repo = FailingRepo()

    async def scenario():
        store = HistoryStore(repo)
        kept = await store.create("chat", _chat())
        repo.fail = True
        with pytest.raises(OSError):
            await store.create("voice", _voice())
        with pytest.raises(OSError):
            await store.update(kept.id, _chat().model_copy(update={"title": "Changed"}))
        with pytest.raises(OSError):
            await store.rename(kept.id, "Renamed")
        with pytest.raises(OSError):
            await store.delete(kept.id)
        return store, kept, await repo.load_all()

    store, kept, persisted = asyncio.run(scenario())

    assert [item.id for item in store.items()] == [kept.id]
    assert store.active_id == kept.id
    assert store.get(kept.id).data.title == "Weather chat"
    assert [item.id for item in persisted] == [kept.id]
    assert persisted[0].data.title == "Weather chat"
    print("✅ Failed repository writes leave the store untouched")


def test_json_file_repo_cache_follows_disk(tmp_path, monkeypatch):
    path = tmp_path / "history.json"
    repo = JsonFileHistoryRepo(str(path))

    async def scenario():
        store = HistoryStore(repo)
        await store.load()
        kept = await store.create("voice", _voice())

        def broken_write(items):
            raise OSError("read-only filesystem")

        monkeypatch.setattr(repo, "_write_sync", broken_write)
        with pytest.raises(OSError):
            await store.create("todo", _todo())
        return kept, await repo.load_all()

    kept, cached = asyncio.run(scenario())

    assert [item.id for item in cached] == [kept.id]


def test_json_round_trip_is_lossless():
    async def scenario():
        store = HistoryStore()
        await store.create("voice", _voice())
        await store.create("chat", _chat())
        await store.create("todo", _todo())
        text = store.dumps()

        other = HistoryStore()
        await other.loads(text)
        return store, other, text

    store, other, text = asyncio.run(scenario())

    assert other.items() == store.items()
    assert other.dumps() == text

    document = json.loads(text)
    assert [entry["type"] for entry in document] == ["todo", "chat", "voice"]
    assert document[1]["data"]["studyMode"] is True
    assert document[1]["data"]["messages"][1]["sources"][0]["uri"] == "https://example.com/w"
    assert document[2]["data"]["audioBase64"] == "AAAA"
    print("✅ History JSON round-trip is lossless")


def test_loads_rejects_bad_documents():
    async def scenario():
        store = HistoryStore()
        with pytest.raises(HistoryFormatError):
            await store.loads("not json")
        with pytest.raises(HistoryFormatError):
            await store.loads(json.dumps([{"id": "1", "type": "video", "timestamp": 1, "data": {"title": "x", "messages": []}}]))
        duplicate = {"id": "1", "type": "todo", "timestamp": 1, "data": {"title": "t", "tasks": []}}
        with pytest.raises(HistoryFormatError):
            await store.loads(json.dumps([duplicate, duplicate]))

    asyncio.run(scenario())


def test_duplicate_task_ids_rejected():
    with pytest.raises(ValueError):
        TodoData(title="t", tasks=[TodoItem(id="a", text="1"), TodoItem(id="a", text="2")])


def test_json_file_repo_persists_across_stores(tmp_path):
    path = str(tmp_path / "history.json")

    async def scenario():
        store = HistoryStore(JsonFileHistoryRepo(path))
        first = await store.create("voice", _voice())
        second = await store.create("chat", _chat())
        await store.rename(first.id, "Greeting")

        reloaded = HistoryStore(JsonFileHistoryRepo(path))
        await reloaded.load()
        return first, second, reloaded

    first, second, reloaded = asyncio.run(scenario())

    assert [item.id for item in reloaded.items()] == [second.id, first.id]
    assert reloaded.get(first.id).data.title == "Greeting"
    with open(path, encoding="utf-8") as f:
        assert isinstance(json.load(f), list)


def test_json_file_repo_moves_corrupt_file_aside(tmp_path):
    path = tmp_path / "history.json"
    path.write_text("{broken", encoding="utf-8")

    async def scenario():
        store = HistoryStore(JsonFileHistoryRepo(str(path)))
        return await store.load()

    assert asyncio.run(scenario()) == []
    assert os.path.exists(f"{path}.corrupt")


def test_sqlite_repo_round_trip(tmp_path):
    db_path = str(tmp_path / "history.db")

    async def scenario():
        store = HistoryStore(SQLiteHistoryRepo(db_path))
        first = await store.create("todo", _todo())
        second = await store.create("voice", _voice())
        await store.update(first.id, TodoData(title="Groceries", tasks=[TodoItem(id="task-3", text="Bread")]))
        await store.delete(second.id)
        await store.close()

        reloaded = HistoryStore(SQLiteHistoryRepo(db_path))
        await reloaded.load()
        items = reloaded.items()
        await reloaded.close()
        return first, items

    first, items = asyncio.run(scenario())

    assert [item.id for item in items] == [first.id]
    assert items[0].data.tasks[0].text == "Bread"


def test_create_repository_from_config(tmp_path):
    assert isinstance(create_repository({"history": {"storage": {"type": "memory"}}}), InMemoryHistoryRepo)
    json_repo = create_repository({"history": {"storage": {"type": "json", "path": str(tmp_path / "h.json")}}})
    assert isinstance(json_repo, JsonFileHistoryRepo)
    sqlite_repo = create_repository({"history": {"storage": {"type": "sqlite", "db_path": str(tmp_path / "h.db")}}})
    assert isinstance(sqlite_repo, SQLiteHistoryRepo)
    with pytest.raises(ValueError):
        create_repository({"history": {"storage": {"type": "redis"}}})


if __name__ == "__main__":
    test_create_lists_newest_first_and_activates()
    test_concurrent_creates_get_unique_ids()
    test_update_replaces_data_and_checks_type()
    test_rename_trims_and_ignores_blank()
    test_delete_removes_one_item()
    test_select_unknown_id_raises_and_keeps_active()
    test_json_round_trip_is_lossless()
    print("🎉 All history store tests passed!")
