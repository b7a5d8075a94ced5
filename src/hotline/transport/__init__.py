"""Transport layer between WebSocket peers and the relay core."""

from .websocket import WebSocketConnection

__all__ = ["WebSocketConnection"]
