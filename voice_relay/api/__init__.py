"""API module for WebSocket and HTTP endpoints."""

from . import health, metrics, websocket

__all__ = [
    "health",
    "metrics",
    "websocket",
]
