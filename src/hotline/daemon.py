"""Relay process supervision.

The running relay exposes its liveness through a PID marker file in the
state directory (~/.hotline/server.pid by default). This module reads and
writes that marker, starts the relay detached and stops it.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import sys
import time
from pathlib import Path

import httpx

from .config import RelayConfig

logger = logging.getLogger(__name__)


def write_pid(pid_file: Path) -> None:
    pid_file.parent.mkdir(parents=True, exist_ok=True)
    pid_file.write_text(str(os.getpid()))


def remove_pid(pid_file: Path) -> None:
    pid_file.unlink(missing_ok=True)


def read_pid(pid_file: Path) -> int | None:
    """Return the PID in the marker if that process is alive.

    A stale marker (unreadable or dead process) is removed.
    """
    if not pid_file.exists():
        return None
    try:
        pid = int(pid_file.read_text().strip())
        os.kill(pid, 0)
    except (ValueError, ProcessLookupError, OSError):
        logger.debug(f"Removing stale PID file {pid_file}")
        remove_pid(pid_file)
        return None
    return pid


def is_healthy(config: RelayConfig, timeout: float = 1.0) -> bool:
    """Check the relay's /health endpoint."""
    host = "127.0.0.1" if config.host in ("0.0.0.0", "") else config.host
    try:
        response = httpx.get(f"http://{host}:{config.port}/health", timeout=timeout)
    except httpx.HTTPError:
        return False
    return response.status_code == 200


def run_server(config: RelayConfig, log_level: str = "info") -> None:
    """Run the relay in the foreground until interrupted."""
    import uvicorn

    from .app import create_app

    write_pid(config.pid_file)
    try:
        uvicorn.run(
            create_app(config),
            host=config.host,
            port=config.port,
            log_level=log_level.lower(),
        )
    finally:
        remove_pid(config.pid_file)


def start_detached(config: RelayConfig, log_level: str = "info", wait: float = 5.0) -> int:
    """Start the relay in the background and wait until it answers /health.

    Returns:
        PID of the background process

    Raises:
        RuntimeError: If the relay does not become healthy in time
    """
    config.state_dir.mkdir(parents=True, exist_ok=True)
    env = {
        **os.environ,
        "HOTLINE_HOST": config.host,
        "HOTLINE_PORT": str(config.port),
        "HOTLINE_REQUEST_TIMEOUT": str(config.request_timeout),
        "HOTLINE_HOME": str(config.state_dir),
    }
    with open(config.log_file, "a") as log_file:
        process = subprocess.Popen(
            [sys.executable, "-m", "hotline", "start", "--log-level", log_level],
            stdin=subprocess.DEVNULL,
            stdout=log_file,
            stderr=log_file,
            env=env,
            start_new_session=True,
        )

    deadline = time.monotonic() + wait
    while time.monotonic() < deadline:
        if process.poll() is not None:
            raise RuntimeError(
                f"Relay exited with status {process.returncode}, see {config.log_file}"
            )
        if is_healthy(config):
            return process.pid
        time.sleep(0.1)
    raise RuntimeError(f"Relay did not become ready within {wait:.0f}s, see {config.log_file}")


def stop(config: RelayConfig) -> int | None:
    """Send SIGTERM to the running relay. Returns its PID, or None if none runs."""
    pid = read_pid(config.pid_file)
    if pid is None:
        return None
    os.kill(pid, signal.SIGTERM)
    return pid
