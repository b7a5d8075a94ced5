"""Relay WebSocket endpoint.

URL: ws://host:port/?role=<role>&app=<appId>&event=<name>

- role: client (default), observer, waiter; applications connect as
  clients and send a registration frame
- app: target application for clients and waiters
- event: event name a waiter blocks on (required for waiters)

Plain HTTP requests to / get 426 Upgrade Required.
"""

from __future__ import annotations

import logging

from starlette.requests import Request
from starlette.responses import PlainTextResponse
from starlette.routing import Route, WebSocketRoute
from starlette.websockets import WebSocket

from ..relay.core import RelayCore
from ..relay.registry import Role
from ..transport.websocket import WebSocketConnection

logger = logging.getLogger(__name__)


async def relay_endpoint(websocket: WebSocket) -> None:
    relay: RelayCore = websocket.app.state.relay
    params = websocket.query_params

    role = Role.from_selector(params.get("role"))
    target_app_id = params.get("app") or None
    event_name = params.get("event") or None

    if role == Role.WAITER and not event_name:
        await websocket.close(code=4000, reason="Missing event")
        return

    connection = WebSocketConnection(websocket)
    await connection.accept()
    session = await relay.connect(
        connection,
        role=role,
        target_app_id=target_app_id,
        event_name=event_name,
    )

    try:
        async for raw in connection.receive_frames():
            await relay.on_frame(session, raw)
    except Exception as e:
        logger.exception(f"Relay connection error for {session.describe()}: {e}")
    finally:
        await relay.disconnect(session)
        await connection.close()


async def upgrade_required(request: Request) -> PlainTextResponse:
    return PlainTextResponse("WebSocket upgrade required", status_code=426)


relay_routes = [
    WebSocketRoute("/", relay_endpoint),
    Route("/", upgrade_required, methods=["GET"]),
]
