"""Relay core: the routing engine.

Every inbound frame on every connection goes through `RelayCore.on_frame`.
In priority order a frame is:

1. undecodable           -> dropped, connection stays open
2. a registration        -> the session becomes an application
3. a response            -> routed back to the client that issued the id
4. an event              -> fanned out to observers and matching waiters
5. a request             -> answered locally (relay commands) or forwarded
6. anything else         -> dropped

Command-level failures (ambiguous target, no target, timeout, application
gone) are always answered with an `ok: false` response and never close a
connection.
"""

from __future__ import annotations

import inspect
import logging
import os
import time
from collections.abc import Callable
from typing import Any

from ..config import RelayConfig
from ..protocol.frames import FrameKind, classify, parse_frame
from ..protocol.messages import (
    LIST_APPS,
    LIST_HANDLERS,
    PING,
    Direction,
    EventFrame,
    ObserverFrame,
    Response,
)
from .correlation import CorrelationTable, DuplicateRequestError, PendingCorrelation
from .registry import Connection, Role, Session, SessionRegistry

logger = logging.getLogger(__name__)

# (session, payload) -> data, sync or async
RelayCommand = Callable[[Session, dict[str, Any]], Any]

APP_DISCONNECTED = "Application disconnected"
REQUEST_TIMED_OUT = "Request timed out"


class RelayCore:
    """Owns the session registry and the correlation table.

    No other component mutates either structure. Frames from one connection
    must be fed in arrival order; frames from different connections may
    interleave freely.
    """

    def __init__(self, config: RelayConfig | None = None):
        self.config = config or RelayConfig()
        self.registry = SessionRegistry()
        self.correlations = CorrelationTable(
            self.config.request_timeout,
            on_expire=self._on_request_expired,
        )
        self.started_at = time.monotonic()
        self._commands: dict[str, RelayCommand] = {}

        self.handle(PING, self._ping)
        self.handle(LIST_APPS, self._list_apps)
        self.handle(LIST_HANDLERS, self._list_handlers)

    def handle(self, name: str, fn: RelayCommand) -> None:
        """Register a relay-local command, answered without any application."""
        self._commands[name] = fn

    @property
    def uptime(self) -> int:
        return int(time.monotonic() - self.started_at)

    def stats(self) -> dict[str, Any]:
        return {
            "pid": os.getpid(),
            "port": self.config.port,
            "uptime": self.uptime,
            "applications": len(self.registry.app_ids()),
            "connections": self.registry.count,
            "pending": len(self.correlations),
        }

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    async def connect(
        self,
        connection: Connection,
        role: Role = Role.CLIENT,
        target_app_id: str | None = None,
        event_name: str | None = None,
    ) -> Session:
        """Track a new connection under its connect-time role."""
        if role == Role.APPLICATION:
            raise ValueError("Applications must register after connecting")
        if role == Role.WAITER and not event_name:
            raise ValueError("A waiter needs an event name")

        session = Session(
            connection=connection,
            role=role,
            target_app_id=target_app_id,
            event_name=event_name if role == Role.WAITER else None,
        )
        await self.registry.add(session)

        if role == Role.OBSERVER:
            logger.info(f"Observer connected ({session.id})")
        elif role == Role.WAITER:
            target = f" from {target_app_id}" if target_app_id else ""
            logger.info(f"Waiter connected for event '{event_name}'{target} ({session.id})")
        return session

    async def disconnect(self, session: Session) -> None:
        """Clean up after a connection ends."""
        await self.registry.unregister(session)

        if session.is_application:
            logger.info(f"App disconnected: {session.app_id}")
            await self._broadcast(
                ObserverFrame(
                    direction=Direction.REQUEST,
                    app_id=session.app_id,
                    message={"type": "disconnect", "appId": session.app_id},
                )
            )
            for entry in await self.correlations.pop_for_target(session):
                await self._send(
                    entry.source,
                    Response.failure(entry.request_id, APP_DISCONNECTED).to_wire(),
                )
        elif session.role == Role.OBSERVER:
            logger.info(f"Observer disconnected ({session.id})")
        elif session.role == Role.WAITER:
            logger.debug(f"Waiter disconnected ({session.id})")

    async def shutdown(self) -> None:
        """Cancel every pending deadline. Clients are not notified."""
        dropped = await self.correlations.clear()
        if dropped:
            logger.info(f"Dropped {dropped} pending request(s) on shutdown")

    # =========================================================================
    # Frame dispatch
    # =========================================================================

    async def on_frame(self, session: Session, raw: str | bytes) -> None:
        frame = parse_frame(raw)
        if frame is None:
            logger.debug(f"Dropping malformed frame from {session.describe()}")
            return

        kind = classify(frame)
        if kind == FrameKind.REGISTER:
            await self._on_register(session, frame)
        elif kind == FrameKind.RESPONSE:
            await self._on_response(frame)
        elif kind == FrameKind.EVENT:
            await self._on_event(session, frame)
        elif kind == FrameKind.REQUEST:
            await self._on_request(session, frame)
        else:
            logger.debug(f"Dropping unrecognized frame from {session.describe()}")

    async def _on_register(self, session: Session, frame: dict[str, Any]) -> None:
        app_id = frame["appId"]
        handlers = frame.get("handlers")
        if not isinstance(handlers, list):
            handlers = []

        await self.registry.register(session, Role.APPLICATION, app_id=app_id, handlers=handlers)
        suffix = f" ({len(handlers)} handlers)" if handlers else ""
        logger.info(f"App registered: {app_id}{suffix}")

        await self._broadcast(
            ObserverFrame(
                direction=Direction.REQUEST,
                app_id=app_id,
                message={"type": "register", "appId": app_id, "handlers": handlers},
            )
        )

    async def _on_response(self, frame: dict[str, Any]) -> None:
        entry = await self.correlations.pop(frame["id"])
        if entry is None:
            # Timed out, duplicate reply, or unsolicited
            logger.debug(f"Dropping response for unknown request {frame['id']}")
            return

        await self._send(entry.source, frame)
        await self._broadcast(
            ObserverFrame(direction=Direction.RESPONSE, app_id=entry.app_id, message=frame)
        )

    async def _on_event(self, session: Session, frame: dict[str, Any]) -> None:
        if not session.is_application:
            logger.debug(f"Dropping event from unregistered {session.describe()}")
            return

        event = EventFrame(event=frame["event"], data=frame.get("data"), app_id=session.app_id)
        wire = event.to_wire()

        for observer in self.registry.list_observers():
            await self._send(observer, wire)

        for waiter in await self.registry.claim_waiters(event.event, session.app_id):
            await self._send(waiter, wire)
            try:
                await waiter.close()
            except Exception:
                logger.exception(f"Error closing waiter {waiter.id}")

    async def _on_request(self, session: Session, frame: dict[str, Any]) -> None:
        request_id: str = frame["id"]
        command: str = frame["type"]
        payload = frame.get("payload")

        if command in self._commands:
            response = await self._run_command(session, request_id, command, payload)
            await self._send(session, response.to_wire())
            return

        resolution = await self.registry.resolve_application(session.target_app_id)
        if not resolution.resolved or resolution.session is None:
            await self._send(
                session, Response.failure(request_id, resolution.error_message()).to_wire()
            )
            return

        target = resolution.session
        try:
            await self.correlations.add(request_id, session, target)
        except DuplicateRequestError as e:
            await self._send(session, Response.failure(request_id, str(e)).to_wire())
            return

        message: dict[str, Any] = {"id": request_id, "type": command}
        if payload is not None:
            message["payload"] = payload
        await self._broadcast(
            ObserverFrame(direction=Direction.REQUEST, app_id=target.app_id, message=message)
        )
        await self._send(target, frame)

    async def _on_request_expired(self, entry: PendingCorrelation) -> None:
        await self._send(
            entry.source, Response.failure(entry.request_id, REQUEST_TIMED_OUT).to_wire()
        )

    # =========================================================================
    # Relay-local commands
    # =========================================================================

    async def _run_command(
        self,
        session: Session,
        request_id: str,
        command: str,
        payload: Any,
    ) -> Response:
        fn = self._commands[command]
        try:
            result = fn(session, payload if isinstance(payload, dict) else {})
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            logger.exception(f"Relay command '{command}' failed")
            return Response.failure(request_id, str(e) or "Relay command error")
        return Response.success(request_id, result)

    def _ping(self, session: Session, payload: dict[str, Any]) -> dict[str, Any]:
        return {}

    def _list_apps(self, session: Session, payload: dict[str, Any]) -> dict[str, Any]:
        return {
            "port": self.config.port,
            "pid": os.getpid(),
            "uptime": self.uptime,
            "apps": [
                {"appId": app["appId"], "connectedAt": app["connectedAt"]}
                for app in self.registry.list_applications()
            ],
        }

    def _list_handlers(self, session: Session, payload: dict[str, Any]) -> list[dict[str, Any]]:
        target_app_id = payload.get("appId")
        return [
            {"appId": app["appId"], "handlers": app["handlers"]}
            for app in self.registry.list_applications()
            if not target_app_id or app["appId"] == target_app_id
        ]

    # =========================================================================
    # Delivery
    # =========================================================================

    async def _send(self, session: Session, frame: dict[str, Any]) -> None:
        try:
            await session.send(frame)
        except Exception:
            logger.exception(f"Failed to deliver frame to {session.describe()}")

    async def _broadcast(self, frame: ObserverFrame) -> None:
        observers = self.registry.list_observers()
        if not observers:
            return
        wire = frame.to_wire()
        for observer in observers:
            await self._send(observer, wire)
