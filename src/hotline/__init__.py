"""Hotline: a local WebSocket relay between command-line tools and running apps.

An instrumented application connects with `HotlineApp`, registers its
command handlers and answers requests forwarded by the relay. Tools talk
to it through `RelayClient` or the `hotline` CLI.
"""

from .config import ClientConfig, RelayConfig
from .errors import CommandFailedError, HotlineError, RelayUnavailableError, RequestTimeoutError
from .sdk import HandlerDefinition, HotlineApp, RelayClient

__version__ = "0.1.0"

__all__ = [
    "ClientConfig",
    "CommandFailedError",
    "HandlerDefinition",
    "HotlineApp",
    "HotlineError",
    "RelayClient",
    "RelayConfig",
    "RelayUnavailableError",
    "RequestTimeoutError",
    "__version__",
]
