"""Wire vocabulary for the relay.

Every frame on a relay connection is a single JSON object. The shapes are:

    Request       {"id": "...", "type": "echo", "payload": {...}}
    Response      {"id": "...", "ok": true, "data": ...}
                  {"id": "...", "ok": false, "error": "..."}
    Registration  {"type": "register", "role": "application", "appId": "...",
                   "handlers": [...]}
    Event         {"type": "event", "event": "...", "data": ...}

Observers additionally receive ObserverFrame envelopes and tagged event
frames. The relay treats request ids as opaque correlation keys and never
validates payloads against advertised handler schemas.
"""

from __future__ import annotations

import uuid
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# Relay-local commands, answered without an application
PING = "ping"
LIST_APPS = "list-apps"
LIST_HANDLERS = "list-handlers"

BUILTIN_COMMANDS = (PING, LIST_APPS, LIST_HANDLERS)

REGISTER_TYPE = "register"
EVENT_TYPE = "event"
APPLICATION_ROLES = ("application", "app")


def new_request_id() -> str:
    """Generate a request id that is unique among outstanding requests."""
    return uuid.uuid4().hex


class FieldType(str, Enum):
    """Value types a handler field may advertise."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    JSON = "json"


class HandlerField(BaseModel):
    """One named parameter of an advertised handler."""

    name: str
    type: FieldType = FieldType.STRING
    optional: bool = False
    description: str | None = None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class HandlerSchema(BaseModel):
    """Advertised metadata for a command an application answers."""

    type: str
    description: str | None = None
    fields: list[HandlerField] = Field(default_factory=list)

    def to_wire(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type}
        if self.description is not None:
            data["description"] = self.description
        if self.fields:
            data["fields"] = [f.to_wire() for f in self.fields]
        return data


class Request(BaseModel):
    """A command sent by a client, forwarded to an application."""

    id: str = Field(default_factory=new_request_id)
    type: str
    payload: Any = None

    def to_wire(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "type": self.type}
        if self.payload is not None:
            data["payload"] = self.payload
        return data


class Response(BaseModel):
    """The single reply to a request id."""

    id: str
    ok: bool
    data: Any = None
    error: str | None = None

    @classmethod
    def success(cls, request_id: str, data: Any = None) -> Response:
        return cls(id=request_id, ok=True, data=data)

    @classmethod
    def failure(cls, request_id: str, error: str) -> Response:
        return cls(id=request_id, ok=False, error=error)

    def to_wire(self) -> dict[str, Any]:
        """Serialize with `data` only on success and `error` only on failure."""
        if self.ok:
            return {"id": self.id, "ok": True, "data": self.data}
        return {"id": self.id, "ok": False, "error": self.error or "Unknown error"}


class Registration(BaseModel):
    """Handshake sent by an application right after it connects."""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["register"] = REGISTER_TYPE
    role: Literal["application"] = "application"
    app_id: str = Field(alias="appId")
    handlers: list[HandlerSchema] = Field(default_factory=list)

    def to_wire(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": REGISTER_TYPE,
            "role": self.role,
            "appId": self.app_id,
        }
        if self.handlers:
            data["handlers"] = [h.to_wire() for h in self.handlers]
        return data


class EventFrame(BaseModel):
    """A fire-and-forget event.

    Applications send it without `appId`; the relay tags it with the
    originating application before handing it to observers and waiters.
    """

    model_config = ConfigDict(populate_by_name=True)

    event: str
    data: Any = None
    app_id: str | None = Field(default=None, alias="appId")

    def to_wire(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": EVENT_TYPE}
        if self.app_id is not None:
            data["appId"] = self.app_id
        data["event"] = self.event
        data["data"] = self.data
        return data


class Direction(str, Enum):
    """Which leg of a command an observer frame describes."""

    REQUEST = "request"
    RESPONSE = "response"


class ObserverFrame(BaseModel):
    """Copy of relay traffic delivered to passive observers."""

    model_config = ConfigDict(populate_by_name=True)

    direction: Direction
    app_id: str | None = Field(default=None, alias="appId")
    message: dict[str, Any]

    def to_wire(self) -> dict[str, Any]:
        data: dict[str, Any] = {"direction": self.direction.value}
        if self.app_id is not None:
            data["appId"] = self.app_id
        data["message"] = self.message
        return data
