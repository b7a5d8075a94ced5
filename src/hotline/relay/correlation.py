"""Request correlation table.

Maps an in-flight request id to the client that must receive the reply and
the application the request was forwarded to. Each entry owns a deadline
timer; whichever comes first of reply, deadline or application disconnect
removes the entry, so at most one outcome is ever delivered per id.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from typing import Any

from .registry import Session

logger = logging.getLogger(__name__)


class DuplicateRequestError(ValueError):
    """A request id is already awaiting a reply."""


@dataclass(eq=False)
class PendingCorrelation:
    """One forwarded request awaiting its reply."""

    request_id: str
    source: Session
    target: Session
    deadline: float  # event loop time
    _timer: asyncio.Task[None] | None = field(default=None, repr=False)

    @property
    def app_id(self) -> str | None:
        return self.target.app_id

    def cancel_timer(self) -> None:
        timer = self._timer
        self._timer = None
        if timer is None or timer.done():
            return
        with contextlib.suppress(RuntimeError):
            if timer is asyncio.current_task():
                return
        timer.cancel()


ExpireCallback = Callable[[PendingCorrelation], Coroutine[Any, Any, None]]


class CorrelationTable:
    """Pending correlations keyed by request id.

    The table is the single source of truth for whether an id is still
    awaiting a reply. All mutations go through one asyncio.Lock.
    """

    def __init__(self, timeout: float, on_expire: ExpireCallback | None = None):
        self.timeout = timeout
        self._on_expire = on_expire
        self._entries: dict[str, PendingCorrelation] = {}
        self._lock = asyncio.Lock()

    async def add(
        self,
        request_id: str,
        source: Session,
        target: Session,
        timeout: float | None = None,
    ) -> PendingCorrelation:
        """Record a forwarded request and start its deadline timer.

        Raises:
            DuplicateRequestError: If the id is already pending
        """
        delay = self.timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()

        async with self._lock:
            if request_id in self._entries:
                raise DuplicateRequestError(f"Duplicate request id: {request_id}")
            entry = PendingCorrelation(
                request_id=request_id,
                source=source,
                target=target,
                deadline=loop.time() + delay,
            )
            self._entries[request_id] = entry
            entry._timer = asyncio.create_task(self._expire_after(entry, delay))
            return entry

    async def pop(self, request_id: str) -> PendingCorrelation | None:
        """Remove an entry and stop its timer. None if the id is not pending."""
        async with self._lock:
            entry = self._entries.pop(request_id, None)
        if entry is not None:
            entry.cancel_timer()
        return entry

    async def pop_for_target(self, target: Session) -> list[PendingCorrelation]:
        """Remove every entry forwarded to a given application session."""
        async with self._lock:
            matched = [e for e in self._entries.values() if e.target is target]
            for entry in matched:
                del self._entries[entry.request_id]
        for entry in matched:
            entry.cancel_timer()
        return matched

    async def clear(self) -> int:
        """Drop everything, cancelling all timers. Returns how many were dropped."""
        async with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()
        for entry in entries:
            entry.cancel_timer()
        return len(entries)

    def get(self, request_id: str) -> PendingCorrelation | None:
        return self._entries.get(request_id)

    def for_target(self, target: Session) -> list[PendingCorrelation]:
        return [e for e in self._entries.values() if e.target is target]

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    async def _expire_after(self, entry: PendingCorrelation, delay: float) -> None:
        await asyncio.sleep(delay)

        async with self._lock:
            if self._entries.get(entry.request_id) is not entry:
                return
            del self._entries[entry.request_id]
        entry._timer = None

        logger.info(f"Request {entry.request_id} to {entry.app_id} timed out after {delay}s")
        if self._on_expire is None:
            return
        try:
            await self._on_expire(entry)
        except Exception:
            logger.exception(f"Error reporting timeout for request {entry.request_id}")
