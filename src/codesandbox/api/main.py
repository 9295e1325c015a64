"""
FastAPI application for the sandbox service.

This module configures the FastAPI application, registers the WebSocket
endpoints for the host page and the learner's editor, exposes dataset
management for SQL exercises, and enforces authentication via an API key.

Each sandbox is addressed by a session id.  The host page connects to
``/v1/sessions/{session_id}/host`` and speaks the host protocol (see
:mod:`codesandbox.bridge`); the learner's editor connects to
``/v1/sessions/{session_id}/editor`` and acts as the terminal.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Set

from fastapi import FastAPI, File, HTTPException, UploadFile, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from ..bridge import HostBridge
from ..config import Config
from ..models import (
    ChangeNotice,
    CheckRequest,
    DatasetList,
    DatasetUploadResponse,
    EditorChange,
    InputReply,
    ResizeNotice,
    RunRequest,
    StopRequest,
    editor_message_adapter,
)
from ..orchestrator import Orchestrator
from ..plugins import build_languages
from ..session import SandboxSession
from ..storage import StorageBackend, build_storage
from ..terminal import BufferedTerminal, RemoteTerminal


logger = logging.getLogger("codesandbox")

if not logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter("[codesandbox] %(levelname)s - %(message)s")
    handler.setFormatter(formatter)
    logger.addHandler(handler)


config = Config.from_env()
logger.setLevel(config.log_level)

logger.info(
    "Loaded config: storage_backend=%s, storage_path=%s, allowed_langs=%s, exec_limit_ms=%s",
    config.storage_backend,
    config.storage_path,
    config.allowed_langs,
    config.exec_limit_ms,
)

storage: StorageBackend = build_storage(config)

orchestrator = Orchestrator(
    build_languages(
        exec_limit=config.exec_limit_ms,
        node_binary=config.node_binary,
        allowed=config.allowed_langs,
    ),
    storage=storage if "sql" in config.allowed_langs else None,
    exec_limit=config.exec_limit_ms,
)


class SessionRegistry:
    """Live sandbox sessions keyed by session id."""

    def __init__(self) -> None:
        self._sessions: Dict[str, SandboxSession] = {}

    def get_or_create(self, session_id: str) -> SandboxSession:
        session = self._sessions.get(session_id)
        if session is None:
            session = SandboxSession(session_id)
            self._sessions[session_id] = session
            logger.info("Created session %s", session_id)
        return session

    def get(self, session_id: str) -> Optional[SandboxSession]:
        return self._sessions.get(session_id)

    def release(self, session_id: str) -> None:
        """Forget a session once neither peer is connected and no run is active.

        Called on every disconnect and again when a run task finishes.
        """
        session = self._sessions.get(session_id)
        if session is None:
            return
        if session.host is None and session.editor is None and not session.is_running:
            del self._sessions[session_id]
            logger.info("Released session %s", session_id)

    def __len__(self) -> int:
        return len(self._sessions)


sessions = SessionRegistry()

app = FastAPI(title="Code Sandbox Service", version="0.1.0")


@app.middleware("http")
async def authenticate(request, call_next):
    """Middleware to enforce API key authentication on all requests."""
    path = request.url.path
    method = request.method
    client = getattr(request.client, "host", "unknown")

    logger.info("Incoming request: %s %s from %s", method, path, client)

    provided_key = request.headers.get("x-api-key")
    if config.api_key and provided_key != config.api_key:
        logger.warning("Invalid API key for %s %s from %s", method, path, client)
        return JSONResponse(status_code=401, content={"detail": "Invalid API key"})

    response = await call_next(request)
    logger.info("Response: %s %s -> %s", method, path, response.status_code)
    return response


async def _accept(websocket: WebSocket) -> bool:
    """Accept ``websocket`` if it carries the configured API key."""
    provided_key = websocket.headers.get("x-api-key") or websocket.query_params.get("api_key")
    if config.api_key and provided_key != config.api_key:
        client = getattr(websocket.client, "host", "unknown")
        logger.warning("Invalid API key for WebSocket %s from %s", websocket.url.path, client)
        await websocket.close(code=1008)
        return False
    await websocket.accept()
    return True


async def _receive_object(websocket: WebSocket) -> Optional[Any]:
    text = await websocket.receive_text()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        logger.warning("Ignoring non-JSON frame on %s", websocket.url.path)
        return None


class WebSocketHostChannel:
    """Host channel writing JSON frames to a WebSocket."""

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket
        self._lock = asyncio.Lock()

    async def send(self, message: Dict[str, Any]) -> None:
        async with self._lock:
            try:
                await self.websocket.send_json(message)
            except (WebSocketDisconnect, RuntimeError) as exc:
                logger.info("Host disconnected; dropping %s message: %s", message.get("type"), exc)


@app.get("/health")
async def health() -> Dict[str, str]:
    """Return a simple health check response."""
    return {"status": "ok"}


@app.websocket("/v1/sessions/{session_id}/host")
async def host_socket(websocket: WebSocket, session_id: str) -> None:
    """Host page connection for one sandbox session."""
    if not await _accept(websocket):
        return
    session = sessions.get_or_create(session_id)
    channel = WebSocketHostChannel(websocket)
    session.host = channel
    bridge = HostBridge(session)
    logger.info("Host connected to session %s", session_id)
    try:
        while True:
            data = await _receive_object(websocket)
            if data is not None:
                await bridge.receive(data)
    except WebSocketDisconnect:
        logger.info("Host disconnected from session %s", session_id)
    finally:
        if session.host is channel:
            session.host = None
        sessions.release(session_id)


@app.websocket("/v1/sessions/{session_id}/editor")
async def editor_socket(websocket: WebSocket, session_id: str) -> None:
    """Learner editor connection; doubles as the session's terminal."""
    if not await _accept(websocket):
        return
    session = sessions.get_or_create(session_id)
    frames: asyncio.Queue = asyncio.Queue()
    send_frame = frames.put_nowait
    terminal = RemoteTerminal(send_frame)
    session.terminal = terminal
    session.editor = send_frame
    remove_listener = session.token.on_stop(terminal.interrupt)
    bridge = HostBridge(session)
    runs: Set[asyncio.Task] = set()

    async def write_frames() -> None:
        while True:
            frame = await frames.get()
            await websocket.send_json(frame)

    def run_finished(task: asyncio.Task) -> None:
        runs.discard(task)
        # The peers may have left while the run was still active.
        sessions.release(session_id)

    writer = asyncio.create_task(write_frames())
    send_frame(session.editor_config())
    logger.info("Editor connected to session %s", session_id)
    try:
        while True:
            data = await _receive_object(websocket)
            if data is None:
                continue
            try:
                message = editor_message_adapter.validate_python(data)
            except ValidationError as exc:
                logger.warning("Session %s: ignoring invalid editor message: %s", session_id, exc.errors(include_url=False))
                continue

            if isinstance(message, (RunRequest, CheckRequest)):
                task = asyncio.create_task(
                    orchestrator.handle_run(session, message.code, do_checks=isinstance(message, CheckRequest))
                )
                runs.add(task)
                task.add_done_callback(run_finished)
            elif isinstance(message, StopRequest):
                session.stop_execution()
            elif isinstance(message, InputReply):
                if not terminal.provide_input(message.text):
                    logger.debug("Session %s: input reply with no pending request", session_id)
            elif isinstance(message, ChangeNotice):
                session.append_change(EditorChange(data=message.data))
            elif isinstance(message, ResizeNotice):
                await bridge.send_resize(message.height)
    except WebSocketDisconnect:
        logger.info("Editor disconnected from session %s", session_id)
    finally:
        if session.is_running:
            session.stop_execution()
        remove_listener()
        if session.editor is send_frame:
            session.editor = None
            session.terminal = BufferedTerminal()
        writer.cancel()
        sessions.release(session_id)


@app.post("/v1/datasets", response_model=DatasetUploadResponse)
async def upload_datasets(files: List[UploadFile] = File(...)) -> DatasetUploadResponse:
    """Upload one or more SQLite datasets for SQL exercises."""
    saved_paths: List[str] = []
    for file in files:
        content = await file.read()
        try:
            saved_paths.append(storage.save(file.filename or "", content))
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
    logger.info("Stored datasets: %s", saved_paths)
    return DatasetUploadResponse(paths=saved_paths)


@app.get("/v1/datasets", response_model=DatasetList)
async def list_datasets() -> DatasetList:
    """List the datasets available to SQL exercises."""
    return DatasetList(files=storage.list())


@app.delete("/v1/datasets/{file_path:path}")
async def delete_dataset(file_path: str) -> Dict[str, str]:
    """Delete a dataset."""
    try:
        storage.delete(file_path)
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail="Dataset not found")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"detail": "Dataset deleted"}
