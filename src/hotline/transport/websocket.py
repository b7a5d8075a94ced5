"""WebSocket transport for relay connections.

Wraps a Starlette WebSocket so the relay core can send frames to it from
any connection's task. Sends are serialized per connection.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from ..protocol.frames import encode_frame

logger = logging.getLogger(__name__)


class WebSocketConnection:
    """Server side of one relay connection."""

    def __init__(self, websocket: WebSocket):
        self._websocket = websocket
        self._connected = False
        self._send_lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        """Check if the WebSocket is still open in both directions."""
        return (
            self._connected
            and self._websocket.client_state == WebSocketState.CONNECTED
            and self._websocket.application_state == WebSocketState.CONNECTED
        )

    async def accept(self) -> None:
        await self._websocket.accept()
        self._connected = True

    async def send(self, frame: dict[str, Any]) -> None:
        """Send one frame. Silently skipped once the connection is gone."""
        async with self._send_lock:
            if not self.is_connected:
                return
            try:
                await self._websocket.send_text(encode_frame(frame))
            except (WebSocketDisconnect, RuntimeError) as e:
                logger.debug(f"Send on closed WebSocket dropped: {e}")
                self._connected = False

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        async with self._send_lock:
            if not self.is_connected:
                self._connected = False
                return
            self._connected = False
            try:
                await self._websocket.close(code=code, reason=reason)
            except RuntimeError as e:
                logger.debug(f"WebSocket already closed: {e}")

    async def receive_frames(self) -> AsyncIterator[str | bytes]:
        """Yield raw text or binary frames until the peer disconnects."""
        try:
            while True:
                message = await self._websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                text = message.get("text")
                if text is not None:
                    yield text
                    continue
                data = message.get("bytes")
                if data is not None:
                    yield data
        except WebSocketDisconnect:
            pass
        except RuntimeError as e:
            # receive() after a server-side close
            logger.debug(f"WebSocket receive stopped: {e}")
        finally:
            self._connected = False
