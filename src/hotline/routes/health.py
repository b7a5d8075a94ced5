"""Health check endpoint."""

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route


async def health_check(request: Request) -> JSONResponse:
    """Health check endpoint."""
    stats = request.app.state.relay.stats()
    return JSONResponse({"status": "ok", **stats})


health_routes = [
    Route("/health", health_check, methods=["GET"]),
]
