"""Client-side exceptions.

Command-level failures inside the relay are never raised; they travel as
`ok: false` responses. These exceptions are what SDK callers see when they
want a raising API on top of that.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .protocol.messages import Response


class HotlineError(Exception):
    """Base class for hotline client errors."""


class RelayUnavailableError(HotlineError, ConnectionError):
    """The relay could not be reached."""

    def __init__(self, url: str, reason: str | None = None):
        self.url = url
        message = f"Cannot connect to hotline relay at {url}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class RequestTimeoutError(HotlineError, TimeoutError):
    """No reply or event arrived within the client-side timeout."""


class CommandFailedError(HotlineError):
    """A command completed with `ok: false`."""

    def __init__(self, response: Response):
        self.response = response
        super().__init__(response.error or "Command failed")
