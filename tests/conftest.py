"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from typing import Any

import pytest
import pytest_asyncio

from hotline.config import RelayConfig
from hotline.relay.core import RelayCore


class FakeConnection:
    """In-memory relay connection that records what the relay sends."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self.close_code: int | None = None

    async def send(self, frame: dict[str, Any]) -> None:
        if not self.closed:
            self.sent.append(frame)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.closed = True
        self.close_code = code

    def responses(self) -> list[dict[str, Any]]:
        return [f for f in self.sent if "ok" in f]

    def requests(self) -> list[dict[str, Any]]:
        return [f for f in self.sent if "ok" not in f and "id" in f]


@pytest.fixture(scope="module")
def anyio_backend():
    """Configure anyio to use asyncio backend."""
    return "asyncio"


@pytest.fixture
def relay_config(tmp_path) -> RelayConfig:
    """Relay settings with a short deadline and an isolated state dir."""
    return RelayConfig(port=18675, request_timeout=0.2, state_dir=tmp_path)


@pytest_asyncio.fixture
async def relay(relay_config: RelayConfig):
    """Create a fresh relay core for each test, cancelling leftover deadlines."""
    core = RelayCore(relay_config)
    yield core
    await core.shutdown()


@pytest.fixture
def make_connection():
    """Factory for recording connections."""
    return FakeConnection
