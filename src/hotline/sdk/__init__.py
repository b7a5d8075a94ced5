"""Hotline SDK.

Two sides of the relay:
- HotlineApp: embedded in an instrumented application; answers commands
  and emits events
- RelayClient: used by CLIs and automation; issues commands, waits for
  events, observes traffic
"""

from .app_client import Backoff, ConnectionState, HotlineApp
from .handlers import HandlerDefinition, HandlerFn, HandlerRegistry
from .relay_client import RelayClient

__all__ = [
    "Backoff",
    "ConnectionState",
    "HandlerDefinition",
    "HandlerFn",
    "HandlerRegistry",
    "HotlineApp",
    "RelayClient",
]
