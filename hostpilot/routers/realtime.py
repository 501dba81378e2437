"""Realtime socket: interactive terminals and streamed service installs.

Every frame in either direction is a JSON envelope
``{"event": <name>, "data": <payload>}``.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any
from uuid import uuid4

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from hostpilot.auth import websocket_authorized
from hostpilot.errors import HostError, RemoteError
from hostpilot.utils.logging import get_logger

log = get_logger(__name__)

router = APIRouter(tags=["realtime"])


class _Connection:
    """One accepted socket: serialised sends and its in-flight installs."""

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket
        self.key = uuid4().hex
        self.open = True
        self.installs: set[asyncio.Task] = set()
        self._send_lock = asyncio.Lock()

    async def emit(self, event: str, data: Any) -> None:
        if not self.open:
            return
        async with self._send_lock:
            try:
                await self.websocket.send_json({"event": event, "data": data})
            except Exception as exc:
                self.open = False
                log.debug("ws.send_dropped", key=self.key, event_name=event, error=str(exc))


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket) -> None:
    if not websocket_authorized(websocket):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    await websocket.accept()
    conn = _Connection(websocket)
    terminals = websocket.app.state.terminals
    log.info("ws.connected", key=conn.key)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
                event = message["event"]
                data = message.get("data")
            except (ValueError, KeyError, TypeError):
                await conn.emit("error", {"message": "malformed message"})
                continue
            await _dispatch(conn, event, data)
    except WebSocketDisconnect:
        pass
    finally:
        conn.open = False
        await terminals.close(conn.key)
        log.info("ws.disconnected", key=conn.key, pending_installs=len(conn.installs))


async def _dispatch(conn: _Connection, event: str, data: Any) -> None:
    state = conn.websocket.app.state
    if event == "start-terminal":
        await _start_terminal(conn, data if isinstance(data, dict) else {})
    elif event == "data":
        if isinstance(data, str):
            await state.terminals.write(conn.key, data)
    elif event == "resize":
        try:
            rows, cols = int(data["rows"]), int(data["cols"])
            await state.terminals.resize(conn.key, rows, cols)
        except (TypeError, KeyError, ValueError, HostError):
            await conn.emit("error", {"message": "invalid resize request"})
    elif event == "install-service":
        task = asyncio.create_task(_install(conn, data if isinstance(data, dict) else {}))
        conn.installs.add(task)
        task.add_done_callback(conn.installs.discard)
    else:
        await conn.emit("error", {"message": f"unknown event: {event}"})


async def _start_terminal(conn: _Connection, data: dict) -> None:
    state = conn.websocket.app.state
    try:
        server = state.servers.get(str(data.get("serverId", "")))
        await state.terminals.start(
            conn.key,
            server.id,
            server.credential(),
            conn.emit,
            cols=int(data.get("cols", 80)),
            rows=int(data.get("rows", 24)),
        )
    except HostError as exc:
        log.warning("ws.terminal_failed", key=conn.key, error=exc.message)
        await conn.emit("error", {"message": exc.message})
    except (TypeError, ValueError):
        await conn.emit("error", {"message": "invalid terminal size"})


async def _install(conn: _Connection, data: dict) -> None:
    state = conn.websocket.app.state
    service = str(data.get("service") or data.get("serviceName") or "")
    version = data.get("version")

    async def forward(text: str) -> None:
        await conn.emit("install-output", {"data": text})

    try:
        server = state.servers.get(str(data.get("serverId", "")))
        await forward(f">>> Connecting to server {server.ip}...\n")
        result = await state.services.install(
            server.credential(),
            service,
            forward,
            version=str(version) if version is not None else None,
        )
    except HostError as exc:
        log.warning("ws.install_failed", key=conn.key, service=service, error=exc.message)
        await conn.emit(
            "install-error",
            {
                "message": exc.message,
                "success": False,
                "exitCode": exc.exit_code if isinstance(exc, RemoteError) else None,
            },
        )
        return

    message = (
        f"{service} installed successfully!"
        if result.success
        else f"Installation exited with code {result.exit_code}"
    )
    await conn.emit(
        "install-complete",
        {"success": result.success, "exitCode": result.exit_code, "message": message},
    )
