"""Command-issuing clients.

Each call opens its own short-lived connection to the relay, the way the
CLI uses it:

    client = RelayClient(ClientConfig(port=8675), app_id="com.example.shop")
    data = await client.call("get-state", {"key": "cart"})
    event_data = await client.wait_for_event("cart-updated")

    async for frame in client.watch():
        print(frame)
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from typing import Any
from urllib.parse import urlencode

import websockets
from websockets.exceptions import WebSocketException

from ..config import ClientConfig
from ..errors import CommandFailedError, HotlineError, RelayUnavailableError, RequestTimeoutError
from ..protocol.frames import encode_frame, parse_frame
from ..protocol.messages import EVENT_TYPE, LIST_APPS, LIST_HANDLERS, PING, Request, Response

logger = logging.getLogger(__name__)


class RelayClient:
    """Sends commands, waits for events and observes relay traffic."""

    def __init__(self, config: ClientConfig | None = None, app_id: str | None = None):
        self.config = config or ClientConfig.from_env()
        self.app_id = app_id

    def url(self, **params: str | None) -> str:
        query = {k: v for k, v in params.items() if v}
        if not query:
            return self.config.url
        return f"{self.config.url}/?{urlencode(query)}"

    @contextlib.asynccontextmanager
    async def _open(self, **params: str | None) -> AsyncIterator[Any]:
        url = self.url(**params)
        try:
            websocket = await websockets.connect(url, open_timeout=self.config.timeout)
        except (OSError, TimeoutError, WebSocketException) as e:
            raise RelayUnavailableError(self.config.url, str(e)) from e
        try:
            yield websocket
        finally:
            with contextlib.suppress(WebSocketException, OSError):
                await websocket.close()

    # =========================================================================
    # Commands
    # =========================================================================

    async def request(self, command: str, payload: Any = None) -> Response:
        """Send one command and return its response, whatever its outcome.

        Raises:
            RelayUnavailableError: If the relay cannot be reached
            RequestTimeoutError: If no reply arrives within the client timeout
        """
        request = Request(type=command, payload=payload)
        async with self._open(app=self.app_id) as websocket:
            await websocket.send(encode_frame(request.to_wire()))
            try:
                return await asyncio.wait_for(
                    self._await_response(websocket, request.id),
                    timeout=self.config.timeout,
                )
            except TimeoutError as e:
                raise RequestTimeoutError("Request timed out") from e

    async def _await_response(self, websocket: Any, request_id: str) -> Response:
        try:
            async for raw in websocket:
                frame = parse_frame(raw)
                if frame is not None and frame.get("id") == request_id and "ok" in frame:
                    return Response.model_validate(frame)
        except WebSocketException as e:
            raise RelayUnavailableError(self.config.url, str(e)) from e
        raise RelayUnavailableError(self.config.url, "connection closed before a reply arrived")

    async def call(self, command: str, payload: Any = None) -> Any:
        """Send a command and return its data.

        Raises:
            CommandFailedError: If the response has ok=false
        """
        response = await self.request(command, payload)
        if not response.ok:
            raise CommandFailedError(response)
        return response.data

    async def ping(self) -> bool:
        try:
            return (await self.request(PING)).ok
        except HotlineError:
            return False

    async def list_apps(self) -> dict[str, Any]:
        return await self.call(LIST_APPS)

    async def list_handlers(self, app_id: str | None = None) -> list[dict[str, Any]]:
        return await self.call(LIST_HANDLERS, {"appId": app_id} if app_id else None)

    # =========================================================================
    # Events and observation
    # =========================================================================

    async def wait_for_event(
        self,
        event: str,
        app_id: str | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Block until an application emits `event`, then return its data.

        Events emitted before this call are never replayed.
        """
        target = app_id or self.app_id
        async with self._open(role="waiter", event=event, app=target) as websocket:
            try:
                return await asyncio.wait_for(
                    self._await_event(websocket, event),
                    timeout=timeout if timeout is not None else self.config.timeout,
                )
            except TimeoutError as e:
                raise RequestTimeoutError(f"Timed out waiting for event: {event}") from e

    async def _await_event(self, websocket: Any, event: str) -> Any:
        with contextlib.suppress(WebSocketException):
            async for raw in websocket:
                frame = parse_frame(raw)
                if frame is not None and frame.get("type") == EVENT_TYPE:
                    return frame.get("data")
        raise HotlineError(f"Relay closed the connection before event '{event}' arrived")

    async def watch(self) -> AsyncIterator[dict[str, Any]]:
        """Yield every observer frame until the relay goes away."""
        async with self._open(role="observer") as websocket:
            with contextlib.suppress(WebSocketException):
                async for raw in websocket:
                    frame = parse_frame(raw)
                    if frame is not None:
                        yield frame
