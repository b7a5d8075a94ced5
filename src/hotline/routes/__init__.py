"""HTTP and WebSocket routes."""

from .health import health_routes
from .relay import relay_routes

__all__ = ["health_routes", "relay_routes"]
