"""Hotline CLI.

Usage:
    hotline start [--daemon]            # Start the relay (foreground or background)
    hotline stop                        # Stop a background relay
    hotline status                      # Show connected apps
    hotline cmd <type> [--key value]    # Send a command (inline args or --payload)
    hotline query <key>                 # Shorthand for the get-state command
    hotline wait <event>                # Block until an app emits an event
    hotline watch                       # Stream all relay traffic

Connection flags (every command):
    --port <number>     Relay port (default 8675, or HOTLINE_PORT)
    --host <host>       Relay host (default 127.0.0.1, or HOTLINE_HOST)
    --timeout <secs>    Client-side timeout (default 5)
    --app <appId>       Target a specific application
"""

from __future__ import annotations

import asyncio
import difflib
import functools
import json
import logging
import re
import sys
from collections.abc import Callable
from datetime import datetime
from typing import Any, NoReturn

import click

from . import daemon
from .config import DEFAULT_TIMEOUT, ClientConfig, RelayConfig
from .errors import HotlineError
from .sdk.relay_client import RelayClient

NUMBER = re.compile(r"^-?\d+(\.\d+)?$")


class SuggestingGroup(click.Group):
    """Group that suggests the closest command name on a typo."""

    def resolve_command(
        self, ctx: click.Context, args: list[str]
    ) -> tuple[str | None, click.Command | None, list[str]]:
        try:
            return super().resolve_command(ctx, args)
        except click.UsageError as e:
            if args:
                matches = difflib.get_close_matches(args[0], self.list_commands(ctx), n=1)
                if matches:
                    raise click.UsageError(
                        f"Unknown command: {args[0]}. Did you mean \"{matches[0]}\"?", ctx
                    ) from e
            raise


# =============================================================================
# Helpers
# =============================================================================


def coerce_value(value: str) -> Any:
    """Coerce an inline flag value: booleans, numbers, JSON, else string."""
    if value == "true":
        return True
    if value == "false":
        return False
    if NUMBER.match(value):
        return float(value) if "." in value else int(value)
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


def parse_inline_payload(args: list[str]) -> dict[str, Any] | None:
    """Build a payload from `--key value` pairs.

    A flag followed by another flag (or nothing) is a boolean `true`.
    Bare words that do not follow a flag are ignored.
    """
    payload: dict[str, Any] = {}
    i = 0
    while i < len(args):
        arg = args[i]
        if arg.startswith("--") and len(arg) > 2:
            key = arg[2:]
            if "=" in key:
                key, value = key.split("=", 1)
                payload[key] = coerce_value(value)
            elif i + 1 >= len(args) or args[i + 1].startswith("--"):
                payload[key] = True
            else:
                payload[key] = coerce_value(args[i + 1])
                i += 1
        i += 1
    return payload or None


def format_uptime(seconds: int) -> str:
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m {seconds % 60}s"
    return f"{seconds // 3600}h {(seconds % 3600) // 60}m"


def format_observer_frame(frame: dict[str, Any], now: datetime | None = None) -> str:
    """Render one observer frame as a single terminal line."""
    time = click.style((now or datetime.now()).strftime("%H:%M:%S"), dim=True)
    app = click.style(frame.get("appId") or "", dim=True)

    if frame.get("type") == "event":
        data = frame.get("data")
        body = f" {click.style(json.dumps(data), dim=True)}" if data is not None else ""
        name = click.style(frame.get("event", "?"), fg="yellow")
        return f"{time} {click.style('*', fg='yellow')} {name} {app}{body}"

    message = frame.get("message") or {}
    if frame.get("direction") == "request":
        command = click.style(str(message.get("type", "?")), fg="cyan")
        payload = message.get("payload")
        body = f" {click.style(json.dumps(payload), dim=True)}" if payload is not None else ""
        return f"{time} {click.style('>', fg='cyan')} {command} {app}{body}"

    ok = bool(message.get("ok"))
    color = "green" if ok else "red"
    status = click.style("ok" if ok else "err", fg=color)
    body = f" {json.dumps(message['data'])}" if message.get("data") is not None else ""
    error = f" {click.style(message['error'], fg='red')}" if message.get("error") else ""
    return f"{time} {click.style('<', fg=color)} {status} {app}{body}{error}"


def die(message: str) -> NoReturn:
    click.echo(message, err=True)
    sys.exit(1)


def connection_options(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Add --port/--host/--timeout/--app and pass a RelayClient as `client`."""

    @click.option("--port", type=int, default=None, help="Relay port")
    @click.option("--host", default=None, help="Relay host")
    @click.option(
        "--timeout",
        type=float,
        default=DEFAULT_TIMEOUT,
        show_default=True,
        help="Timeout in seconds",
    )
    @click.option("--app", "app_id", default=None, help="Target a specific application")
    @functools.wraps(fn)
    def wrapper(
        port: int | None,
        host: str | None,
        timeout: float,
        app_id: str | None,
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        config = ClientConfig.from_env()
        if port is not None:
            config.port = port
        if host:
            config.host = host
        config.timeout = timeout
        return fn(*args, client=RelayClient(config, app_id=app_id), **kwargs)

    return wrapper


def print_result(data: Any) -> None:
    click.echo(json.dumps(data, ensure_ascii=False))


def run_command(client: RelayClient, command: str, payload: Any) -> None:
    try:
        response = asyncio.run(client.request(command, payload))
    except HotlineError as e:
        die(str(e))
    if not response.ok:
        die(response.error or "Command failed")
    print_result(response.data)


# =============================================================================
# Commands
# =============================================================================


@click.group(cls=SuggestingGroup)
@click.version_option(package_name="hotline-relay")
def main() -> None:
    """hotline - local WebSocket relay between CLIs and running apps."""


@main.command()
@click.option("--daemon", "detach", is_flag=True, help="Run in the background")
@click.option("--port", type=int, default=None, help="Port to listen on")
@click.option("--host", default=None, help="Interface to bind")
@click.option(
    "--request-timeout", type=float, default=None, help="Relay deadline per request (seconds)"
)
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default="info",
    show_default=True,
)
def start(
    detach: bool,
    port: int | None,
    host: str | None,
    request_timeout: float | None,
    log_level: str,
) -> None:
    """Start the relay."""
    config = RelayConfig.from_env()
    if port is not None:
        config.port = port
    if host:
        config.host = host
    if request_timeout is not None:
        config.request_timeout = request_timeout

    if daemon.read_pid(config.pid_file):
        die("Relay already running. Use `hotline stop` first.")

    if detach:
        try:
            pid = daemon.start_detached(config, log_level=log_level)
        except RuntimeError as e:
            die(str(e))
        click.echo(f"Hotline relay started (pid {pid}) on port {config.port}", err=True)
        return

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )
    daemon.run_server(config, log_level=log_level)


@main.command()
def stop() -> None:
    """Stop a background relay."""
    pid = daemon.stop(RelayConfig.from_env())
    if pid is None:
        die("No running relay found.")
    click.echo(f"Relay stopped (pid {pid}).", err=True)


@main.command()
@connection_options
def status(client: RelayClient) -> None:
    """Show relay uptime and connected apps."""
    try:
        data = asyncio.run(client.list_apps())
    except HotlineError as e:
        die(str(e))

    apps = data.get("apps", [])
    click.echo(
        f"Hotline running on port {data.get('port')} "
        f"(pid {data.get('pid')}, uptime {format_uptime(int(data.get('uptime', 0)))})",
        err=True,
    )
    if not apps:
        click.echo("No apps connected.", err=True)
    else:
        click.echo(f"{len(apps)} app{'s' if len(apps) > 1 else ''} connected:", err=True)
        for app in apps:
            click.echo(f"  - {app.get('appId')}", err=True)
    print_result(data)


@main.command(
    "cmd",
    context_settings={"ignore_unknown_options": True, "allow_extra_args": True},
)
@click.argument("command_type")
@click.option("--payload", default=None, help="JSON payload (overrides inline --key value args)")
@connection_options
@click.pass_context
def cmd(ctx: click.Context, command_type: str, payload: str | None, client: RelayClient) -> None:
    """Send a command to an app.

    Examples:

        hotline cmd navigate --screen settings

        hotline cmd set-state --payload '{"key": "user", "value": {"id": 1}}'
    """
    if payload is not None:
        try:
            body = json.loads(payload)
        except json.JSONDecodeError:
            die("Invalid JSON payload")
    else:
        body = parse_inline_payload(ctx.args)

    run_command(client, command_type, body)


@main.command()
@click.argument("key")
@connection_options
def query(key: str, client: RelayClient) -> None:
    """Read app state (shorthand for the get-state command)."""
    run_command(client, "get-state", {"key": key})


@main.command()
@click.argument("event")
@connection_options
def wait(event: str, client: RelayClient) -> None:
    """Block until an app emits EVENT, then print its data."""
    try:
        data = asyncio.run(client.wait_for_event(event))
    except HotlineError as e:
        die(str(e))
    print_result(data)


@main.command()
@connection_options
def watch(client: RelayClient) -> None:
    """Stream requests, responses and events passing through the relay."""
    click.echo(f"Watching hotline on {client.config.url}... (ctrl+c to stop)\n", err=True)

    async def stream() -> None:
        async for frame in client.watch():
            click.echo(format_observer_frame(frame), err=True)

    try:
        asyncio.run(stream())
    except HotlineError as e:
        die(str(e))
    except KeyboardInterrupt:
        pass
    click.echo("\nDisconnected.", err=True)


if __name__ == "__main__":
    main()
