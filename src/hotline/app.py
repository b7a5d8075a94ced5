"""Hotline relay application.

Creates the Starlette ASGI application.

Routes:
- /health - Health check (relay stats)
- /       - Relay WebSocket endpoint; plain HTTP gets 426
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncIterator

from starlette.applications import Starlette
from starlette.routing import BaseRoute

from .config import RelayConfig
from .relay.core import RelayCore
from .routes import health_routes, relay_routes

logger = logging.getLogger(__name__)


def create_app(config: RelayConfig | None = None) -> Starlette:
    """Create the relay application.

    Args:
        config: Relay settings (read from the environment if omitted)

    Returns:
        Configured Starlette application with its RelayCore on `app.state.relay`
    """
    config = config or RelayConfig.from_env()
    relay = RelayCore(config)

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        logger.info(f"Hotline relay listening on port {config.port}")
        try:
            yield
        finally:
            await relay.shutdown()
            logger.info("Hotline relay stopped")

    routes: list[BaseRoute] = []
    routes.extend(health_routes)
    routes.extend(relay_routes)

    app = Starlette(routes=routes, lifespan=lifespan)
    app.state.relay = relay
    app.state.config = config
    return app
