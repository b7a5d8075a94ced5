"""Relay wire protocol.

Defines the frames exchanged between applications, command-issuing
clients, observers and waiters, and how inbound frames are classified.

Key concepts:
- Request/Response: correlated by an opaque, caller-generated id
- Registration: an application's identity plus its advertised handlers
- Event: fire-and-forget notification pushed by an application
"""

from .frames import FrameKind, classify, encode_frame, parse_frame
from .messages import (
    BUILTIN_COMMANDS,
    LIST_APPS,
    LIST_HANDLERS,
    PING,
    Direction,
    EventFrame,
    FieldType,
    HandlerField,
    HandlerSchema,
    ObserverFrame,
    Registration,
    Request,
    Response,
    new_request_id,
)

__all__ = [
    "BUILTIN_COMMANDS",
    "LIST_APPS",
    "LIST_HANDLERS",
    "PING",
    "Direction",
    "EventFrame",
    "FieldType",
    "FrameKind",
    "HandlerField",
    "HandlerSchema",
    "ObserverFrame",
    "Registration",
    "Request",
    "Response",
    "classify",
    "encode_frame",
    "new_request_id",
    "parse_frame",
]
