"""
HTTP and WebSocket Server for Datamind

Thin communication layer between the frontend and the tool sessions:
REST endpoints for the history sidebar and one WebSocket per open tool that
carries generation requests in and lifecycle events out.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Any

import uvicorn
from fastapi import APIRouter, FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel, Field, ValidationError

from datamind.clients import GenerationBackend
from datamind.config import Configuration
from datamind.errors import DatamindError, GenerationRejectedError, HistoryItemNotFoundError
from datamind.generation import OperationPoller, RetryScheduler
from datamind.history import HistoryItem, HistoryStore, display_title, export_item
from datamind.media import data_uri_to_blob
from datamind.tools import (
    ChatRequest,
    ChatSession,
    ImageRequest,
    ImageSession,
    TodoSession,
    ToolSession,
    VideoRequest,
    VideoSession,
    VoiceRequest,
    VoiceSession,
)

logger = logging.getLogger(__name__)

TOOLS = ("chat", "voice", "image", "video", "todo")
TODO_ACTIONS = ("add", "toggle", "delete", "edit")


# Pydantic models for WebSocket message validation
class ToolMessage(BaseModel):
    """Message sent by the frontend on a tool socket."""

    action: str
    request_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    payload: dict[str, Any] = Field(default_factory=dict)


class WebSocketResponse(BaseModel):
    """WebSocket response structure."""

    request_id: str
    status: str  # "processing", "progress", "retry", "ready", "message", "completed", "state", "error"
    chunk: dict[str, Any] = Field(default_factory=dict)


class RenameRequest(BaseModel):
    title: str


def item_summary(item: HistoryItem) -> dict[str, Any]:
    return {"id": item.id, "type": item.type, "timestamp": item.timestamp, "title": display_title(item)}


class ToolConnection:
    """One open tool socket: its session, outgoing queue and running requests."""

    def __init__(self, websocket: WebSocket, tool: str) -> None:
        self.websocket = websocket
        self.tool = tool
        self.request_id = "init"
        self.outgoing: asyncio.Queue[WebSocketResponse] = asyncio.Queue()
        self.tasks: set[asyncio.Task[Any]] = set()
        self.session: ToolSession | TodoSession | None = None

    def send(self, status: str, chunk: dict[str, Any] | None = None, request_id: str | None = None) -> None:
        self.outgoing.put_nowait(
            WebSocketResponse(request_id=request_id or self.request_id, status=status, chunk=chunk or {})
        )

    def on_session_event(self, event: str, data: dict[str, Any]) -> None:
        self.send(event, data)

    async def pump(self) -> None:
        """Forward queued responses to the socket in order."""
        while True:
            response = await self.outgoing.get()
            await self.websocket.send_text(response.model_dump_json())

    def spawn(self, coro: Any) -> None:
        task = asyncio.create_task(coro)
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)


class DatamindServer:
    """
    HTTP/WebSocket communication server.

    This class only handles:
    - History sidebar endpoints
    - Tool socket connections and message routing
    - Event streaming

    Generation logic lives in the tool sessions.
    """

    def __init__(self, backend: GenerationBackend, store: HistoryStore, configuration: Configuration):
        self.backend = backend
        self.store = store
        self.configuration = configuration
        self.app = self._create_app()
        self.active_connections: list[ToolConnection] = []

    # ---------- App ----------

    def _create_app(self) -> FastAPI:
        """Create and configure FastAPI app."""
        app = FastAPI(title="Datamind Server")
        router = APIRouter()

        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        @app.websocket("/ws/{tool}")
        async def websocket_endpoint(websocket: WebSocket, tool: str):  # type: ignore
            await self._handle_websocket_connection(websocket, tool)

        @app.get("/")
        async def root():  # type: ignore
            return {"message": "Datamind Server"}

        @app.get("/health")
        async def health():  # type: ignore
            return {"status": "healthy", "api_key_configured": self.backend.has_api_key}

        @router.get("/history")
        async def list_history() -> dict[str, Any]:  # type: ignore
            return {
                "items": [item_summary(item) for item in self.store.items()],
                "active_id": self.store.active_id,
            }

        @router.get("/history/{item_id}")
        async def get_history_item(item_id: str) -> dict[str, Any]:  # type: ignore
            return self._dump(self._get_or_404(item_id))

        @router.post("/history/{item_id}/select")
        async def select_history_item(item_id: str) -> dict[str, Any]:  # type: ignore
            try:
                item = self.store.select(item_id)
            except HistoryItemNotFoundError as e:
                raise HTTPException(status_code=404, detail=str(e)) from e
            return self._dump(item)

        @router.patch("/history/{item_id}")
        async def rename_history_item(item_id: str, body: RenameRequest) -> dict[str, Any]:  # type: ignore
            try:
                item = await self.store.rename(item_id, body.title)
            except HistoryItemNotFoundError as e:
                raise HTTPException(status_code=404, detail=str(e)) from e
            return item_summary(item)

        @router.delete("/history/{item_id}")
        async def delete_history_item(item_id: str) -> dict[str, Any]:  # type: ignore
            deleted = await self.store.delete(item_id)
            return {"deleted": deleted, "active_id": self.store.active_id}

        @router.get("/history/{item_id}/download")
        async def download_history_item(item_id: str) -> Response:  # type: ignore
            item = self._get_or_404(item_id)
            generation = self.configuration.get_generation_config()
            try:
                filename, blob = export_item(item, generation["sample_rate"], generation["num_channels"])
            except ValueError as e:
                raise HTTPException(status_code=422, detail=f"Cannot export item: {e}") from e
            return Response(
                content=blob.data,
                media_type=blob.mime_type,
                headers={"Content-Disposition": f'attachment; filename="{filename}"'},
            )

        # Prevent static analyzers from marking route handlers as unused
        __keep_for_pyright = (
            list_history,
            get_history_item,
            select_history_item,
            rename_history_item,
            delete_history_item,
            download_history_item,
        )
        del __keep_for_pyright

        app.include_router(router)

        return app

    def _get_or_404(self, item_id: str) -> HistoryItem:
        item = self.store.get(item_id)
        if item is None:
            raise HTTPException(status_code=404, detail=f"History item not found: {item_id}")
        return item

    @staticmethod
    def _dump(item: HistoryItem) -> dict[str, Any]:
        return item.model_dump(mode="json", by_alias=True, exclude_none=True)

    # ---------- Sessions ----------

    def create_session(self, tool: str, connection: ToolConnection) -> ToolSession | TodoSession:
        """Build the session for `tool` with the configured timings."""
        listener = connection.on_session_event
        if tool == "todo":
            return TodoSession(self.store, listener=listener)

        generation = self.configuration.get_generation_config()
        retry = RetryScheduler(interval=generation["tick_seconds"])
        if tool == "voice":
            return VoiceSession(
                self.backend,
                self.store,
                retry,
                listener,
                sample_rate=generation["sample_rate"],
                num_channels=generation["num_channels"],
            )
        if tool == "image":
            return ImageSession(self.backend, self.store, retry, listener)
        if tool == "video":
            poller: OperationPoller[dict[str, Any]] = OperationPoller(
                interval_seconds=generation["poll_interval_seconds"],
                max_attempts=generation["max_poll_attempts"],
            )
            return VideoSession(self.backend, self.store, retry, listener, poller=poller)
        return ChatSession(self.backend, self.store, retry, listener)

    def _parse_request(self, tool: str, payload: dict[str, Any]) -> Any:
        if tool == "voice":
            payload = {"voice": self.configuration.get_generation_config()["default_voice"], **payload}
            return VoiceRequest.model_validate(payload)
        if tool == "image":
            return ImageRequest.model_validate(payload)
        if tool == "video":
            return VideoRequest.model_validate(payload)
        image = payload.get("image")
        return ChatRequest(text=payload.get("text", ""), image=data_uri_to_blob(image) if image else None)

    # ---------- WebSocket ----------

    async def _handle_websocket_connection(self, websocket: WebSocket, tool: str) -> None:
        """Handle a tool WebSocket connection."""
        if tool not in TOOLS:
            await websocket.close(code=4404)
            return

        connection = await self._connect_websocket(websocket, tool)
        sender = asyncio.create_task(connection.pump())

        try:
            while True:
                data = await websocket.receive_text()
                try:
                    message = ToolMessage.model_validate(json.loads(data))
                except (ValueError, ValidationError) as e:
                    connection.send("error", {"message": f"Invalid message format: {e}"}, request_id="unknown")
                    continue
                await self._dispatch(connection, message)

        except WebSocketDisconnect:
            logger.info(f"WebSocket disconnected from {tool} tool")
        except Exception as e:
            logger.error(f"WebSocket error: {e}")
        finally:
            await self._disconnect_websocket(connection)
            sender.cancel()
            await asyncio.gather(sender, return_exceptions=True)

    async def _dispatch(self, connection: ToolConnection, message: ToolMessage) -> None:
        session = connection.session
        connection.request_id = message.request_id
        if session is None:
            logger.error(f"Message for {connection.tool} arrived before its session was created")
            connection.send("error", {"message": "Session not initialized"})
            return
        action = message.action
        payload = message.payload

        try:
            if action == "state":
                connection.send("state", session.snapshot())
            elif action == "load":
                item_id = str(payload.get("item_id", ""))
                item = self.store.get(item_id)
                if item is None:
                    raise HistoryItemNotFoundError(item_id)
                session.load(item)
                self.store.select(item_id)
                connection.send("state", session.snapshot())
            elif action == "new":
                session.reset()
                self.store.clear_selection()
                connection.send("state", session.snapshot())
            elif isinstance(session, TodoSession):
                if action not in TODO_ACTIONS:
                    raise ValueError(f"Unknown todo action: {action!r}")
                await self._handle_todo_action(session, action, payload)
            elif action == "generate":
                request = self._parse_request(connection.tool, payload)
                connection.spawn(self._run_submission(connection, session.submit(request)))
            elif action == "resubmit":
                connection.spawn(self._run_submission(connection, session.resubmit()))
            elif action == "select_credential":
                session.select_credential()
                connection.send("state", session.snapshot())
            elif action == "modes" and isinstance(session, ChatSession):
                session.set_modes(payload.get("study_mode"), payload.get("research_mode"))
                connection.send("state", session.snapshot())
            else:
                raise ValueError(
                    f"Unknown action {action!r}. Expected 'generate', 'load', 'new', 'resubmit' or 'state'"
                )
        except HistoryItemNotFoundError as e:
            connection.send("error", {"message": str(e)})
        except (ValueError, ValidationError, DatamindError) as e:
            logger.warning(f"Rejected {action!r} on {connection.tool} socket: {e}")
            connection.send("error", {"message": str(e)})

    async def _handle_todo_action(self, session: TodoSession, action: str, payload: dict[str, Any]) -> None:
        if action == "add":
            await session.add(str(payload.get("text", "")))
        elif action == "toggle":
            await session.toggle(str(payload.get("task_id", "")))
        elif action == "delete":
            await session.delete(str(payload.get("task_id", "")))
        else:
            await session.edit(str(payload.get("task_id", "")), str(payload.get("text", "")))

    async def _run_submission(self, connection: ToolConnection, submission: Any) -> None:
        request_id = connection.request_id
        try:
            await submission
        except GenerationRejectedError as e:
            connection.send("error", {"message": str(e), "rejected": True}, request_id=request_id)

    async def _connect_websocket(self, websocket: WebSocket, tool: str) -> ToolConnection:
        """Accept a socket and open a fresh session for its tool."""
        logger.info(f"WebSocket connection attempt from {websocket.client} for {tool} tool")
        await websocket.accept()
        connection = ToolConnection(websocket, tool)
        connection.session = self.create_session(tool, connection)
        self.active_connections.append(connection)
        connection.send("state", connection.session.snapshot())
        logger.info(f"WebSocket connection established. Total connections: {len(self.active_connections)}")
        return connection

    async def _disconnect_websocket(self, connection: ToolConnection) -> None:
        """Close a socket's session and release its resources."""
        for task in list(connection.tasks):
            task.cancel()
        if connection.session is not None:
            await connection.session.close()
        if connection in self.active_connections:
            self.active_connections.remove(connection)
        logger.info(f"WebSocket connection closed. Total connections: {len(self.active_connections)}")

    # ---------- Lifecycle ----------

    async def start_server(self) -> None:
        """Load history and serve until shutdown."""
        await self.store.load()

        server_config = self.configuration.get_server_config()
        host = server_config.get("host", "localhost")
        port = server_config.get("port", 8000)

        logger.info(f"Starting Datamind server on {host}:{port}")

        uvicorn_config = uvicorn.Config(self.app, host=host, port=port, log_level="info")
        server = uvicorn.Server(uvicorn_config)

        try:
            await server.serve()
        except Exception as e:
            logger.error(f"Server error: {e}")
            raise
        finally:
            logger.info("Shutting down server and cleaning up resources...")
            for connection in list(self.active_connections):
                await self._disconnect_websocket(connection)
            try:
                await self.store.close()
                logger.info("History store closed")
            except Exception as e:
                logger.error(f"Error closing history store: {e}")


async def run_server(backend: GenerationBackend, store: HistoryStore, configuration: Configuration) -> None:
    """Run the Datamind server."""
    server = DatamindServer(backend, store, configuration)
    await server.start_server()
