"""WebSocket push channel: activity entries, operator notifications, run steps."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

import orjson
from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

from forwarder_core.models import ForwardingRun, LogEntry, LogLevel

logger = logging.getLogger(__name__)

# Seconds of client silence before the server sends a keepalive ping
KEEPALIVE_INTERVAL = 60.0


class WebSocketMessage(BaseModel):
    """Envelope for every frame pushed to clients."""

    type: str  # "connected", "log", "notification", "step", "status", "ping", "pong", "error"
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_json(self) -> str:
        return orjson.dumps(self.model_dump(mode="json")).decode("utf-8")


def notification_for(entry: LogEntry) -> WebSocketMessage:
    """Toast-style notification derived from an important activity entry."""
    return WebSocketMessage(
        type="notification",
        data={
            "title": entry.level.value.upper(),
            "description": entry.message,
            "variant": "destructive" if entry.level == LogLevel.ERROR else "default",
        },
    )


class ConnectionManager:
    """Track connected clients and fan messages out to them."""

    def __init__(self):
        self._clients: set[WebSocket] = set()
        self._lock = asyncio.Lock()
        # Pending fan-out tasks started from synchronous listeners
        self._pending: set[asyncio.Task] = set()

    @property
    def connection_count(self) -> int:
        return len(self._clients)

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._clients.add(websocket)
        logger.info("WebSocket client connected (%d open)", self.connection_count)

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._clients.discard(websocket)
        logger.info("WebSocket client disconnected (%d open)", self.connection_count)

    async def broadcast(self, message: WebSocketMessage) -> None:
        """Send to every client concurrently; clients that fail are dropped."""
        async with self._lock:
            clients = list(self._clients)
        if not clients:
            return

        text = message.to_json()
        results = await asyncio.gather(
            *(client.send_text(text) for client in clients),
            return_exceptions=True,
        )

        failed = [c for c, r in zip(clients, results) if isinstance(r, Exception)]
        if failed:
            logger.warning("Dropping %d WebSocket client(s) after send failure", len(failed))
            async with self._lock:
                self._clients.difference_update(failed)

    def publish(self, message: WebSocketMessage) -> None:
        """Fire-and-forget broadcast for callers that cannot await."""
        if not self._clients:
            return
        try:
            task = asyncio.get_running_loop().create_task(self.broadcast(message))
        except RuntimeError:
            # Called outside an event loop
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    # Listeners wired up in main.lifespan

    def on_log_entry(self, entry: LogEntry) -> None:
        self.publish(WebSocketMessage(type="log", data=entry.model_dump(mode="json")))
        if entry.is_notification:
            self.publish(notification_for(entry))

    def on_run_update(self, run: ForwardingRun) -> None:
        self.publish(WebSocketMessage(type="step", data=run.model_dump(mode="json")))

    async def send_status(self, status_data: dict) -> None:
        await self.broadcast(WebSocketMessage(type="status", data=status_data))


# Global connection manager
manager = ConnectionManager()


async def _reply(websocket: WebSocket, msg_type: str, **data: Any) -> None:
    await websocket.send_text(WebSocketMessage(type=msg_type, data=data).to_json())


async def websocket_endpoint(websocket: WebSocket):
    """
    Live updates for the operator console.

    Server frames (all ``{"type", "data", "timestamp"}``):
    - log: every activity entry as it is recorded
    - notification: error, success and detection entries
    - step: the active forwarding run after each step transition
    - status: monitor status change
    - ping: keepalive after a quiet period

    Clients may send ``{"type": "ping"}`` and receive a ``pong``.
    """
    await manager.connect(websocket)

    try:
        await _reply(websocket, "connected", message="Connected to multisig forwarder")

        while True:
            try:
                raw = await asyncio.wait_for(websocket.receive_text(), timeout=KEEPALIVE_INTERVAL)
            except asyncio.TimeoutError:
                await _reply(websocket, "ping")
                continue

            try:
                message = orjson.loads(raw)
            except orjson.JSONDecodeError:
                await _reply(websocket, "error", message="Invalid JSON")
                continue
            await handle_client_message(websocket, message)

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
    finally:
        await manager.disconnect(websocket)


async def handle_client_message(websocket: WebSocket, message: Any) -> None:
    """Answer a client frame."""
    msg_type = message.get("type", "") if isinstance(message, dict) else ""
    if msg_type == "ping":
        await _reply(websocket, "pong")
    else:
        await _reply(websocket, "error", message=f"Unknown message type: {msg_type}")
