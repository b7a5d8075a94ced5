"""Application-side relay session.

An instrumented application creates one HotlineApp, registers handlers and
connects. The session then:

- registers the app id and advertised handler schemas with the relay
- answers forwarded requests with the matching local handler
- reconnects with exponential backoff (1s doubling up to 30s, reset on a
  successful registration) until disconnect() is called
- pushes fire-and-forget events with emit()

State machine:

    disconnected -> connecting -> registered -> disconnected (retry) -> ...

connect() is a no-op when the interpreter runs optimized (python -O) or
HOTLINE_DISABLED is set, so production runs never open the channel.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Iterable
from enum import Enum
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..config import ClientConfig, env_flag
from ..protocol.frames import FrameKind, classify, encode_frame, parse_frame
from ..protocol.messages import EVENT_TYPE, HandlerField, Registration, Response
from .handlers import HandlerDefinition, HandlerFn, HandlerRegistry

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    """Connection state machine."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    REGISTERED = "registered"


class Backoff:
    """Exponential reconnect delay with a cap."""

    def __init__(self, initial: float, cap: float, factor: float = 2.0):
        self.initial = initial
        self.cap = cap
        self.factor = factor
        self.delay = initial

    def next(self) -> float:
        """Return the delay to wait now and grow the next one."""
        delay = self.delay
        self.delay = min(self.delay * self.factor, self.cap)
        return delay

    def reset(self) -> None:
        self.delay = self.initial


def development_mode() -> bool:
    return __debug__ and not env_flag("HOTLINE_DISABLED")


class HotlineApp:
    """Relay session owned by an instrumented application.

    Example:
        app = HotlineApp("com.example.shop")

        @app.handler("get-state", fields=[{"name": "key", "type": "string"}])
        def get_state(payload):
            return store[payload["key"]]

        async with app:
            await app.emit("cart-updated", {"items": 3})
            ...
    """

    def __init__(
        self,
        app_id: str,
        handlers: Iterable[HandlerDefinition] = (),
        config: ClientConfig | None = None,
        enabled: bool | None = None,
    ):
        if not app_id:
            raise ValueError("app_id cannot be empty")
        self.app_id = app_id
        self.config = config or ClientConfig.from_env()
        self.enabled = development_mode() if enabled is None else enabled
        self.handlers = HandlerRegistry()
        for definition in handlers:
            self.handlers.register(definition)

        self._state = ConnectionState.DISCONNECTED
        self._backoff = Backoff(
            self.config.reconnect_delay,
            self.config.max_reconnect_delay,
            self.config.reconnect_backoff,
        )
        self._websocket: Any = None
        self._connection_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._closing = False
        self._registered = asyncio.Event()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_registered(self) -> bool:
        return self._state == ConnectionState.REGISTERED

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    def registration(self) -> Registration:
        return Registration(app_id=self.app_id, handlers=self.handlers.schemas())

    # =========================================================================
    # Handler registration
    # =========================================================================

    def handle(
        self,
        name: str,
        handler: HandlerFn,
        description: str | None = None,
        fields: Iterable[HandlerField | dict[str, Any]] = (),
    ) -> None:
        """Register or replace a handler.

        While registered, the updated schema list is re-sent to the relay.
        """
        self.handlers.register(
            HandlerDefinition(
                name=name,
                handler=handler,
                description=description,
                fields=list(fields),
            )
        )
        if self.is_registered:
            self._spawn(self._send_registration())

    def handler(
        self,
        name: str | None = None,
        description: str | None = None,
        fields: Iterable[HandlerField | dict[str, Any]] = (),
    ) -> Callable[[HandlerFn], HandlerFn]:
        """Decorator form of handle(). Defaults to the function name."""

        def decorator(fn: HandlerFn) -> HandlerFn:
            command = name or getattr(fn, "__name__", "").replace("_", "-")
            self.handle(command, fn, description=description or fn.__doc__, fields=fields)
            return fn

        return decorator

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def connect(self) -> None:
        """Start the relay session in the background."""
        if not self.enabled:
            logger.debug("Hotline disabled, not connecting")
            return

        self._closing = False
        if self._connection_task is not None and not self._connection_task.done():
            return
        self._cancel_reconnect()
        self._connection_task = asyncio.create_task(self._run_connection())

    async def disconnect(self) -> None:
        """Close the session and suppress automatic reconnection."""
        self._closing = True
        self._cancel_reconnect()

        websocket = self._websocket
        if websocket is not None:
            with contextlib.suppress(WebSocketException, OSError):
                await websocket.close()

        task = self._connection_task
        self._connection_task = None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        for pending in list(self._tasks):
            pending.cancel()
        self._tasks.clear()
        self._set_state(ConnectionState.DISCONNECTED)

    async def wait_registered(self, timeout: float | None = None) -> None:
        """Block until the relay handshake completes."""
        await asyncio.wait_for(self._registered.wait(), timeout=timeout)

    async def __aenter__(self) -> HotlineApp:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.disconnect()

    async def _run_connection(self) -> None:
        self._set_state(ConnectionState.CONNECTING)
        cancelled = False
        try:
            async with websockets.connect(
                self.config.url, open_timeout=self.config.timeout
            ) as websocket:
                self._websocket = websocket
                await self._send_registration()
                self._set_state(ConnectionState.REGISTERED)
                self._backoff.reset()
                logger.info(f"Registered with relay at {self.config.url} as {self.app_id}")

                async for raw in websocket:
                    self._on_message(raw)
        except asyncio.CancelledError:
            cancelled = True
            raise
        except (OSError, TimeoutError, WebSocketException) as e:
            logger.debug(f"Relay connection lost: {e}")
        finally:
            self._websocket = None
            self._set_state(ConnectionState.DISCONNECTED)
            if not self._closing and not cancelled:
                self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self.reconnect_pending:
            return
        delay = self._backoff.next()
        logger.debug(f"Reconnecting to relay in {delay:.1f}s")
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._reconnect_task = None
        if self._closing:
            return
        self._connection_task = asyncio.create_task(self._run_connection())

    def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and not task.done():
            task.cancel()

    def _set_state(self, state: ConnectionState) -> None:
        self._state = state
        if state == ConnectionState.REGISTERED:
            self._registered.set()
        else:
            self._registered.clear()

    # =========================================================================
    # Messaging
    # =========================================================================

    async def emit(self, event: str, data: Any = None) -> bool:
        """Push an event to the relay. Returns False if not registered."""
        if not self.is_registered:
            return False
        return await self._send({"type": EVENT_TYPE, "event": event, "data": data})

    def _on_message(self, raw: str | bytes) -> None:
        frame = parse_frame(raw)
        if frame is None or classify(frame) != FrameKind.REQUEST:
            return
        self._spawn(self._dispatch(frame))

    async def _dispatch(self, frame: dict[str, Any]) -> None:
        response = await self.execute(frame["id"], frame["type"], frame.get("payload"))
        await self._send(response.to_wire())

    async def execute(self, request_id: str, command: str, payload: Any = None) -> Response:
        """Run the local handler for a request and build its response."""
        definition = self.handlers.get(command)
        if definition is None:
            return Response.failure(request_id, f"Unknown command: {command}")

        try:
            result = await definition.invoke(payload if payload is not None else {})
        except Exception as e:
            logger.warning(f"Handler '{command}' failed: {e}")
            return Response.failure(request_id, str(e) or "Handler error")

        response = Response.success(request_id, result)
        try:
            encode_frame(response.to_wire())
        except (TypeError, ValueError) as e:
            return Response.failure(request_id, f"Handler returned an unserializable result: {e}")
        return response

    async def _send_registration(self) -> None:
        await self._send(self.registration().to_wire())

    async def _send(self, frame: dict[str, Any]) -> bool:
        websocket = self._websocket
        if websocket is None:
            return False
        try:
            await websocket.send(encode_frame(frame))
        except ConnectionClosed:
            return False
        return True

    def _spawn(self, coro: Any) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
