"""Command handlers exposed by an instrumented application.

A handler is always described by one structured HandlerDefinition: its
command name, implementation, and the schema it advertises to browsing
tools. The relay never enforces the schema.

Usage:
    registry = HandlerRegistry()
    registry.register(HandlerDefinition(
        name="get-state",
        handler=lambda payload: store[payload["key"]],
        description="Read a value from the store",
        fields=[HandlerField(name="key", type=FieldType.STRING)],
    ))
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from ..protocol.messages import PING, HandlerField, HandlerSchema

logger = logging.getLogger(__name__)

# payload -> result, sync or async
HandlerFn = Callable[[dict[str, Any]], Any]


@dataclass
class HandlerDefinition:
    """A command an application answers.

    Attributes:
        name: Command type the handler answers
        handler: Callable taking the request payload; may return an awaitable
        description: Human-readable summary advertised to browsing tools
        fields: Advertised parameters (HandlerField or plain dicts)
    """

    name: str
    handler: HandlerFn
    description: str | None = None
    fields: list[HandlerField] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Handler name cannot be empty")
        if not callable(self.handler):
            raise ValueError("Handler must be callable")
        self.fields = [
            f if isinstance(f, HandlerField) else HandlerField.model_validate(f)
            for f in self.fields
        ]

    @property
    def schema(self) -> HandlerSchema:
        return HandlerSchema(type=self.name, description=self.description, fields=self.fields)

    async def invoke(self, payload: dict[str, Any]) -> Any:
        result = self.handler(payload)
        if inspect.isawaitable(result):
            result = await result
        return result


def _ping(payload: dict[str, Any]) -> dict[str, Any]:
    return {}


class HandlerRegistry:
    """Handlers keyed by command name, in registration order.

    The built-in `ping` handler is registered first, is not advertised and
    cannot be replaced.
    """

    def __init__(self) -> None:
        self._builtin = HandlerDefinition(name=PING, handler=_ping)
        self._handlers: dict[str, HandlerDefinition] = {}

    def register(self, definition: HandlerDefinition) -> bool:
        """Register a handler, replacing any existing one with the same name.

        Returns:
            True if an existing handler was replaced

        Raises:
            ValueError: If the name collides with the built-in liveness handler
        """
        if definition.name == PING:
            raise ValueError(f"'{PING}' is built in and cannot be replaced")
        replaced = definition.name in self._handlers
        self._handlers[definition.name] = definition
        action = "Replaced" if replaced else "Registered"
        logger.debug(f"{action} handler: {definition.name}")
        return replaced

    def unregister(self, name: str) -> bool:
        return self._handlers.pop(name, None) is not None

    def get(self, name: str) -> HandlerDefinition | None:
        if name == PING:
            return self._builtin
        return self._handlers.get(name)

    def schemas(self) -> list[HandlerSchema]:
        """Advertised schemas, one per handler name."""
        return [definition.schema for definition in self._handlers.values()]

    def names(self) -> list[str]:
        return [PING, *self._handlers]

    def __contains__(self, name: object) -> bool:
        return name == PING or name in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)
