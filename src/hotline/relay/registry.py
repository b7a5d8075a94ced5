"""Session registry.

Tracks every live relay connection and the role it plays, and resolves
which application a command should reach.

Resolution rules:
- no application registered             -> NONE
- no target, exactly one application     -> that application
- no target, several applications        -> AMBIGUOUS
- target given                           -> first application registered
                                            under that id, else NONE

Duplicate app ids are allowed. Only the earliest registration under an id
is ever addressed.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class Connection(Protocol):
    """Outbound side of a relay connection."""

    async def send(self, frame: dict[str, Any]) -> None: ...

    async def close(self, code: int = 1000, reason: str | None = None) -> None: ...


class Role(str, Enum):
    """What a connection is used for."""

    APPLICATION = "application"
    CLIENT = "client"
    OBSERVER = "observer"
    WAITER = "waiter"

    @classmethod
    def from_selector(cls, selector: str | None) -> Role:
        """Map the connect-time `role` query value to a role.

        Unknown or missing selectors default to a command-issuing client.
        Applications connect as clients and are promoted on registration.
        """
        if not selector:
            return cls.CLIENT
        return _ROLE_SELECTORS.get(selector.lower(), cls.CLIENT)


_ROLE_SELECTORS = {
    "client": Role.CLIENT,
    "cli": Role.CLIENT,
    "application": Role.CLIENT,
    "app": Role.CLIENT,
    "observer": Role.OBSERVER,
    "watch": Role.OBSERVER,
    "waiter": Role.WAITER,
    "wait": Role.WAITER,
}


@dataclass(eq=False)
class Session:
    """A live connection and its role-specific attributes."""

    connection: Connection
    role: Role = Role.CLIENT
    id: str = field(default_factory=lambda: f"conn_{uuid.uuid4().hex[:12]}")
    connected_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    # application role
    app_id: str | None = None
    handlers: list[Any] = field(default_factory=list)
    registered_at: datetime | None = None

    # client and waiter roles
    target_app_id: str | None = None

    # waiter role
    event_name: str | None = None

    @property
    def is_application(self) -> bool:
        return self.role == Role.APPLICATION

    def wants(self, event_name: str, app_id: str | None) -> bool:
        """Check whether a waiter is blocked on this event."""
        if self.role != Role.WAITER or self.event_name != event_name:
            return False
        return self.target_app_id is None or self.target_app_id == app_id

    async def send(self, frame: dict[str, Any]) -> None:
        await self.connection.send(frame)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        await self.connection.close(code=code, reason=reason)

    def describe(self) -> str:
        if self.is_application:
            return f"{self.role.value} {self.app_id} ({self.id})"
        return f"{self.role.value} ({self.id})"


class ResolutionStatus(str, Enum):
    RESOLVED = "resolved"
    AMBIGUOUS = "ambiguous"
    NONE = "none"


@dataclass
class Resolution:
    """Outcome of resolving a command's target application."""

    status: ResolutionStatus
    session: Session | None = None
    candidates: list[str] = field(default_factory=list)
    target_app_id: str | None = None

    @property
    def resolved(self) -> bool:
        return self.status == ResolutionStatus.RESOLVED

    def error_message(self) -> str:
        """Human-readable reason a command could not be routed."""
        if self.status == ResolutionStatus.AMBIGUOUS:
            available = ", ".join(self.candidates)
            return f"Multiple applications connected. Specify an app id. Available: {available}"
        if self.target_app_id:
            return f"No application connected with id: {self.target_app_id}"
        return "No application connected"


class SessionRegistry:
    """All live sessions, keyed by connection.

    Mutations are serialized through one asyncio.Lock so that
    insert/lookup/remove stay atomic across interleaved connections.
    Applications are kept in registration order.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._applications: list[Session] = []
        self._lock = asyncio.Lock()

    async def add(self, session: Session) -> None:
        """Track a freshly connected session under its connect-time role."""
        async with self._lock:
            self._sessions[session.id] = session

    async def register(
        self,
        session: Session,
        role: Role,
        app_id: str | None = None,
        handlers: list[Any] | None = None,
    ) -> Session:
        """Assign a role to a session.

        Registering as an application records its id and advertised handler
        list verbatim. A session that registers again keeps its original
        position in registration order.
        """
        async with self._lock:
            self._sessions[session.id] = session
            session.role = role
            if role != Role.APPLICATION:
                return session

            if not app_id:
                raise ValueError("Application registration requires an app id")
            session.app_id = app_id
            session.handlers = list(handlers or [])
            session.registered_at = datetime.now(UTC)
            if session not in self._applications:
                self._applications.append(session)
            return session

    async def unregister(self, session: Session) -> Session | None:
        """Forget a session. Returns it if it was still tracked."""
        async with self._lock:
            removed = self._sessions.pop(session.id, None)
            if session in self._applications:
                self._applications.remove(session)
            return removed

    async def resolve_application(self, target_app_id: str | None = None) -> Resolution:
        async with self._lock:
            applications = list(self._applications)

        if not applications:
            return Resolution(ResolutionStatus.NONE, target_app_id=target_app_id)

        if not target_app_id:
            if len(applications) == 1:
                return Resolution(ResolutionStatus.RESOLVED, session=applications[0])
            return Resolution(
                ResolutionStatus.AMBIGUOUS,
                candidates=_unique_app_ids(applications),
            )

        for app in applications:
            if app.app_id == target_app_id:
                return Resolution(
                    ResolutionStatus.RESOLVED,
                    session=app,
                    target_app_id=target_app_id,
                )
        return Resolution(ResolutionStatus.NONE, target_app_id=target_app_id)

    async def claim_waiters(self, event_name: str, app_id: str | None) -> list[Session]:
        """Remove and return every waiter blocked on this event.

        Claiming under the lock guarantees a waiter receives at most one
        event even when events from different applications race.
        """
        async with self._lock:
            claimed = [s for s in self._sessions.values() if s.wants(event_name, app_id)]
            for waiter in claimed:
                del self._sessions[waiter.id]
            return claimed

    def list_applications(self) -> list[dict[str, Any]]:
        return [
            {
                "appId": app.app_id,
                "connectedAt": (app.registered_at or app.connected_at).isoformat(),
                "handlers": app.handlers,
            }
            for app in self._applications
        ]

    def list_observers(self) -> list[Session]:
        return [s for s in self._sessions.values() if s.role == Role.OBSERVER]

    def list_waiters(
        self, event_name: str | None = None, app_id: str | None = None
    ) -> list[Session]:
        waiters = [s for s in self._sessions.values() if s.role == Role.WAITER]
        if event_name is None:
            return waiters
        return [s for s in waiters if s.wants(event_name, app_id)]

    def app_ids(self) -> list[str]:
        return _unique_app_ids(self._applications)

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    @property
    def count(self) -> int:
        return len(self._sessions)

    def __contains__(self, session: object) -> bool:
        return isinstance(session, Session) and session.id in self._sessions


def _unique_app_ids(applications: list[Session]) -> list[str]:
    return list(dict.fromkeys(app.app_id for app in applications if app.app_id))
