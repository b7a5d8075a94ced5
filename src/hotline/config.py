"""Configuration for the relay and its clients.

Values come from environment variables, with CLI flags layered on top by
the click commands.

Environment:
    HOTLINE_HOST              Interface the relay binds to (default 127.0.0.1)
    HOTLINE_PORT              Relay port (default 8675)
    HOTLINE_REQUEST_TIMEOUT   Relay-side deadline per forwarded request, seconds
    HOTLINE_HOME              Directory for the PID marker and log file
    HOTLINE_DISABLED          Truthy value turns the application client off
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8675
DEFAULT_TIMEOUT = 5.0
DEFAULT_REQUEST_DEADLINE = 30.0

RECONNECT_INITIAL = 1.0
RECONNECT_CAP = 30.0
RECONNECT_BACKOFF = 2.0

TRUTHY = ("1", "true", "yes", "on")


def default_state_dir() -> Path:
    return Path.home() / ".hotline"


def env_flag(name: str) -> bool:
    """Read a boolean environment variable."""
    return os.environ.get(name, "").strip().lower() in TRUTHY


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}, using {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}, using {default}")
        return default


@dataclass
class RelayConfig:
    """Relay server settings."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    request_timeout: float = DEFAULT_REQUEST_DEADLINE
    state_dir: Path = field(default_factory=default_state_dir)

    @property
    def pid_file(self) -> Path:
        return self.state_dir / "server.pid"

    @property
    def log_file(self) -> Path:
        return self.state_dir / "server.log"

    @classmethod
    def from_env(cls) -> RelayConfig:
        home = os.environ.get("HOTLINE_HOME")
        return cls(
            host=os.environ.get("HOTLINE_HOST") or DEFAULT_HOST,
            port=_env_int("HOTLINE_PORT", DEFAULT_PORT),
            request_timeout=_env_float("HOTLINE_REQUEST_TIMEOUT", DEFAULT_REQUEST_DEADLINE),
            state_dir=Path(home).expanduser() if home else default_state_dir(),
        )


@dataclass
class ClientConfig:
    """Settings shared by the application client and command-issuing clients."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    timeout: float = DEFAULT_TIMEOUT

    # Reconnection (application client only)
    reconnect_delay: float = RECONNECT_INITIAL
    max_reconnect_delay: float = RECONNECT_CAP
    reconnect_backoff: float = RECONNECT_BACKOFF

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{self.port}"

    @classmethod
    def from_env(cls) -> ClientConfig:
        return cls(
            host=os.environ.get("HOTLINE_HOST") or DEFAULT_HOST,
            port=_env_int("HOTLINE_PORT", DEFAULT_PORT),
        )
