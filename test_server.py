#!/usr/bin/env python3
"""
Tests for the HTTP history endpoints and the tool WebSockets.
"""

import asyncio

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from datamind.config import Configuration
from datamind.history import ChatData, ChatMessage, HistoryStore, TodoData, TodoItem, VoiceData
from datamind.media import base64_encode
from datamind.server import DatamindServer, ToolConnection, ToolMessage

PCM = b"\x01\x00" * 32


class FakeBackend:
    has_api_key = True

    def __init__(self):
        self.prompts = []

    async def synthesize_speech(self, text, voice):
        self.prompts.append((text, voice))
        return base64_encode(PCM)


@pytest.fixture
def store():
    return HistoryStore()


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def client(tmp_path, store, backend):
    configuration = Configuration(config_dir=str(tmp_path))
    server = DatamindServer(backend, store, configuration)
    return TestClient(server.app)


def _seed(store):
    async def scenario():
        voice = await store.create("voice", VoiceData(text="Hi", voice="Kore", audio_base64=base64_encode(PCM)))
        chat = await store.create(
            "chat", ChatData(title="Hello chat", messages=[ChatMessage(role="user", text="Hello")])
        )
        return voice, chat

    return asyncio.run(scenario())


def _receive_until(websocket, status):
    """Collect responses up to and including the first one with `status`."""
    received = []
    while True:
        response = websocket.receive_json()
        received.append(response)
        if response["status"] == status:
            return received


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "api_key_configured": True}
    print("✅ Health endpoint")


def test_history_listing_and_item(client, store):
    voice, chat = _seed(store)

    listing = client.get("/history").json()
    assert [entry["id"] for entry in listing["items"]] == [chat.id, voice.id]
    assert listing["items"][1]["title"] == "Untitled Session"
    assert listing["active_id"] == chat.id

    item = client.get(f"/history/{chat.id}").json()
    assert item["type"] == "chat"
    assert item["data"]["studyMode"] is False
    assert item["data"]["messages"][0]["text"] == "Hello"

    assert client.get("/history/missing").status_code == 404


def test_select_rename_and_delete(client, store):
    voice, chat = _seed(store)

    assert client.post(f"/history/{voice.id}/select").status_code == 200
    assert store.active_id == voice.id
    assert client.post("/history/missing/select").status_code == 404
    assert store.active_id == voice.id

    renamed = client.patch(f"/history/{chat.id}", json={"title": "  Greetings "}).json()
    assert renamed["title"] == "Greetings"
    assert client.patch("/history/missing", json={"title": "x"}).status_code == 404

    deleted = client.delete(f"/history/{voice.id}").json()
    assert deleted == {"deleted": True, "active_id": None}
    assert client.delete(f"/history/{voice.id}").json()["deleted"] is False
    assert len(store) == 1


def test_download_voice_item(client, store):
    voice, _chat = _seed(store)

    response = client.get(f"/history/{voice.id}/download")

    assert response.status_code == 200
    assert response.headers["content-type"] == "audio/wav"
    assert response.headers["content-disposition"] == 'attachment; filename="untitled-session-kore.wav"'
    assert response.content[:4] == b"RIFF"
    assert response.content[44:] == PCM


def test_unknown_tool_socket_is_closed(client):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/ws/spreadsheet") as websocket:
            websocket.receive_json()


def test_todo_socket_persists_tasks(client, store):
    with client.websocket_connect("/ws/todo") as websocket:
        initial = websocket.receive_json()
        assert initial["status"] == "state"
        assert initial["chunk"]["tasks"] == []

        websocket.send_json({"action": "add", "request_id": "r1", "payload": {"text": "Buy milk"}})
        completed = websocket.receive_json()
        assert completed["status"] == "completed"
        assert completed["request_id"] == "r1"
        task_id = completed["chunk"]["tasks"][0]["id"]

        websocket.send_json({"action": "toggle", "request_id": "r2", "payload": {"task_id": task_id}})
        toggled = websocket.receive_json()
        assert toggled["chunk"]["tasks"][0]["completed"] is True

        websocket.send_json({"action": "fly", "request_id": "r3"})
        error = websocket.receive_json()
        assert error["status"] == "error"
        assert "fly" in error["chunk"]["message"]

    items = store.items()
    assert len(items) == 1
    assert items[0].data == TodoData(title="New To-Do List", tasks=[TodoItem(id=task_id, text="Buy milk", completed=True)])
    print("✅ To-do socket persisted tasks")


def test_voice_socket_streams_lifecycle(client, store, backend):
    with client.websocket_connect("/ws/voice") as websocket:
        assert websocket.receive_json()["status"] == "state"

        websocket.send_json({"action": "generate", "request_id": "gen-1", "payload": {"text": "Hello"}})
        responses = _receive_until(websocket, "completed")

    assert [r["status"] for r in responses] == ["processing", "ready", "completed"]
    assert all(r["request_id"] == "gen-1" for r in responses)
    assert responses[1]["chunk"]["mime_type"] == "audio/wav"
    assert responses[2]["chunk"]["item_id"] == store.items()[0].id
    assert backend.prompts == [("Say in a clear, natural, and friendly voice: Hello", "Kore")]
    print("✅ Voice socket streamed the generation lifecycle")


def test_voice_socket_reports_validation_error(client, store):
    with client.websocket_connect("/ws/voice") as websocket:
        websocket.receive_json()
        websocket.send_json({"action": "generate", "payload": {"text": "  "}})
        error = _receive_until(websocket, "error")[-1]

    assert error["chunk"]["message"] == "Please enter some text to generate audio."
    assert len(store) == 0


def test_load_action_opens_history_item(client, store):
    voice, _chat = _seed(store)

    with client.websocket_connect("/ws/voice") as websocket:
        websocket.receive_json()
        websocket.send_json({"action": "load", "payload": {"item_id": voice.id}})
        responses = _receive_until(websocket, "state")

        websocket.send_json({"action": "load", "payload": {"item_id": "missing"}})
        missing = websocket.receive_json()

    assert responses[-1]["chunk"]["item_id"] == voice.id
    assert responses[-1]["chunk"]["url"].startswith("blob:voice/")
    assert store.active_id == voice.id
    assert missing["status"] == "error"


def test_message_before_session_is_reported(tmp_path, store, backend):
    server = DatamindServer(backend, store, Configuration(config_dir=str(tmp_path)))

    async def scenario():
        connection = ToolConnection(websocket=None, tool="voice")
        await server._dispatch(connection, ToolMessage(action="state", request_id="early"))
        return connection.outgoing.get_nowait()

    response = asyncio.run(scenario())

    assert response.status == "error"
    assert response.request_id == "early"
    assert response.chunk == {"message": "Session not initialized"}


if __name__ == "__main__":
    print("Run with: pytest test_server.py")
