"""API endpoints."""

from forwarder.api.routes import router
from forwarder.api.websocket import manager, websocket_endpoint, ConnectionManager

__all__ = [
    "router",
    "manager",
    "websocket_endpoint",
    "ConnectionManager",
]
