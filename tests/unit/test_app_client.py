"""Tests for the application-side relay session.

Uses an in-memory stand-in for the websockets client connection so the
state machine, dispatch and reconnect logic run without a relay.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any
from unittest.mock import patch

import pytest

from hotline.config import ClientConfig
from hotline.sdk.app_client import Backoff, ConnectionState, HotlineApp, development_mode
from hotline.sdk.handlers import HandlerDefinition

CONNECT = "hotline.sdk.app_client.websockets.connect"

# =============================================================================
# Fixtures
# =============================================================================


class FakeWebSocket:
    """Client connection that replays queued frames until closed."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self._incoming: asyncio.Queue[str | None] = asyncio.Queue()

    def feed(self, frame: dict[str, Any]) -> None:
        self._incoming.put_nowait(json.dumps(frame))

    async def send(self, data: str) -> None:
        self.sent.append(json.loads(data))

    async def close(self) -> None:
        self.closed = True
        self._incoming.put_nowait(None)

    async def __aenter__(self) -> FakeWebSocket:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.closed = True

    def __aiter__(self):
        return self._frames()

    async def _frames(self):
        while True:
            raw = await self._incoming.get()
            if raw is None:
                return
            yield raw


@pytest.fixture
def config() -> ClientConfig:
    return ClientConfig(port=18675, timeout=1.0, reconnect_delay=0.01, max_reconnect_delay=0.05)


@pytest.fixture
def app(config: ClientConfig) -> HotlineApp:
    hotline = HotlineApp("com.example.shop", config=config, enabled=True)
    hotline.handle("echo", lambda payload: payload, description="Echo the payload")
    return hotline


async def settle() -> None:
    await asyncio.sleep(0.05)


# =============================================================================
# Unit Tests: Backoff
# =============================================================================


class TestBackoff:
    """Test reconnect delay growth."""

    def test_doubles_up_to_cap(self):
        backoff = Backoff(initial=1, cap=30)
        assert [backoff.next() for _ in range(7)] == [1, 2, 4, 8, 16, 30, 30]

    def test_reset(self):
        backoff = Backoff(initial=1, cap=30)
        backoff.next()
        backoff.next()

        backoff.reset()

        assert backoff.next() == 1


# =============================================================================
# Unit Tests: Construction and gating
# =============================================================================


class TestSetup:
    """Test construction, handler registration and development gating."""

    def test_empty_app_id_rejected(self):
        with pytest.raises(ValueError):
            HotlineApp("")

    def test_registration_frame(self, app: HotlineApp):
        assert app.registration().to_wire() == {
            "type": "register",
            "role": "application",
            "appId": "com.example.shop",
            "handlers": [{"type": "echo", "description": "Echo the payload"}],
        }

    def test_handlers_from_constructor(self, config: ClientConfig):
        hotline = HotlineApp(
            "a",
            handlers=[HandlerDefinition(name="reset", handler=lambda payload: None)],
            config=config,
        )
        assert "reset" in hotline.handlers

    def test_decorator_uses_function_name(self, app: HotlineApp):
        @app.handler(fields=[{"name": "key"}])
        def get_state(payload):
            """Read a value."""
            return payload["key"]

        schema = app.handlers.get("get-state").schema
        assert schema.description == "Read a value."
        assert schema.fields[0].name == "key"

    def test_disabled_env(self, monkeypatch):
        monkeypatch.setenv("HOTLINE_DISABLED", "1")
        assert not development_mode()
        assert not HotlineApp("a").enabled

    def test_enabled_by_default_in_development(self, monkeypatch):
        monkeypatch.delenv("HOTLINE_DISABLED", raising=False)
        assert development_mode() == __debug__

    @pytest.mark.asyncio
    async def test_disabled_connect_is_noop(self, config: ClientConfig):
        hotline = HotlineApp("a", config=config, enabled=False)

        with patch(CONNECT) as connect:
            await hotline.connect()

        connect.assert_not_called()
        assert hotline.state == ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_emit_when_not_registered(self, app: HotlineApp):
        assert await app.emit("ready") is False


# =============================================================================
# Unit Tests: Command execution
# =============================================================================


class TestExecute:
    """Test local handler dispatch."""

    @pytest.mark.asyncio
    async def test_success(self, app: HotlineApp):
        response = await app.execute("1", "echo", {"x": 1})
        assert response.to_wire() == {"id": "1", "ok": True, "data": {"x": 1}}

    @pytest.mark.asyncio
    async def test_builtin_ping(self, app: HotlineApp):
        response = await app.execute("1", "ping")
        assert response.to_wire() == {"id": "1", "ok": True, "data": {}}

    @pytest.mark.asyncio
    async def test_unknown_command(self, app: HotlineApp):
        response = await app.execute("1", "nope")
        assert response.to_wire() == {"id": "1", "ok": False, "error": "Unknown command: nope"}

    @pytest.mark.asyncio
    async def test_handler_failure(self, app: HotlineApp):
        def broken(payload):
            raise KeyError("missing")

        app.handle("broken", broken)

        response = await app.execute("1", "broken", {})

        assert not response.ok
        assert "missing" in response.error

    @pytest.mark.asyncio
    async def test_async_handler(self, app: HotlineApp):
        async def slow(payload):
            await asyncio.sleep(0.01)
            return {"done": True}

        app.handle("slow", slow)

        response = await app.execute("1", "slow")

        assert response.data == {"done": True}

    @pytest.mark.asyncio
    async def test_missing_payload_becomes_empty_dict(self, app: HotlineApp):
        response = await app.execute("1", "echo")
        assert response.data == {}

    @pytest.mark.asyncio
    async def test_unserializable_result(self, app: HotlineApp):
        app.handle("weird", lambda payload: object())

        response = await app.execute("1", "weird")

        assert not response.ok
        assert "unserializable" in response.error


# =============================================================================
# Integration Tests: Connection lifecycle
# =============================================================================


class TestConnection:
    """Test the connect/register/dispatch/reconnect cycle."""

    @pytest.mark.asyncio
    async def test_registers_on_connect(self, app: HotlineApp):
        websocket = FakeWebSocket()

        with patch(CONNECT, return_value=websocket) as connect:
            await app.connect()
            await app.wait_registered(timeout=1)

            assert app.is_registered
            assert websocket.sent == [app.registration().to_wire()]
            connect.assert_called_once_with("ws://127.0.0.1:18675", open_timeout=1.0)

            await app.disconnect()

        assert app.state == ConnectionState.DISCONNECTED
        assert websocket.closed

    @pytest.mark.asyncio
    async def test_answers_forwarded_requests(self, app: HotlineApp):
        websocket = FakeWebSocket()

        with patch(CONNECT, return_value=websocket):
            async with app:
                await app.wait_registered(timeout=1)
                websocket.feed({"id": "1", "type": "echo", "payload": {"x": 1}})
                websocket.feed({"id": "2", "type": "nope"})
                await settle()

        assert {"id": "1", "ok": True, "data": {"x": 1}} in websocket.sent
        assert {"id": "2", "ok": False, "error": "Unknown command: nope"} in websocket.sent

    @pytest.mark.asyncio
    async def test_ignores_garbage(self, app: HotlineApp):
        websocket = FakeWebSocket()

        with patch(CONNECT, return_value=websocket):
            async with app:
                await app.wait_registered(timeout=1)
                websocket._incoming.put_nowait("not json")
                websocket.feed({"id": "1", "ok": True})
                await settle()

                assert app.is_registered

        assert len(websocket.sent) == 1

    @pytest.mark.asyncio
    async def test_emit(self, app: HotlineApp):
        websocket = FakeWebSocket()

        with patch(CONNECT, return_value=websocket):
            async with app:
                await app.wait_registered(timeout=1)
                assert await app.emit("cart-updated", {"items": 3})

        assert websocket.sent[-1] == {"type": "event", "event": "cart-updated", "data": {"items": 3}}

    @pytest.mark.asyncio
    async def test_new_handler_reregisters(self, app: HotlineApp):
        websocket = FakeWebSocket()

        with patch(CONNECT, return_value=websocket):
            async with app:
                await app.wait_registered(timeout=1)
                app.handle("reset", lambda payload: None)
                await settle()

        registrations = [f for f in websocket.sent if f.get("type") == "register"]
        assert len(registrations) == 2
        assert [h["type"] for h in registrations[-1]["handlers"]] == ["echo", "reset"]

    @pytest.mark.asyncio
    async def test_reconnects_after_remote_close(self, app: HotlineApp):
        first, second = FakeWebSocket(), FakeWebSocket()

        with patch(CONNECT, side_effect=[first, second]):
            await app.connect()
            await app.wait_registered(timeout=1)

            await first.close()
            await settle()

            assert app.is_registered
            assert second.sent == [app.registration().to_wire()]
            await app.disconnect()

    @pytest.mark.asyncio
    async def test_retries_with_backoff_when_relay_down(self, app: HotlineApp):
        with patch(CONNECT, side_effect=OSError("refused")) as connect:
            await app.connect()
            await asyncio.sleep(0.15)

            assert connect.call_count >= 3
            assert app.state == ConnectionState.DISCONNECTED
            assert app._backoff.delay == app.config.max_reconnect_delay

            await app.disconnect()
            calls = connect.call_count
            await asyncio.sleep(0.1)

            assert connect.call_count == calls

    @pytest.mark.asyncio
    async def test_registration_resets_backoff(self, app: HotlineApp):
        app._backoff.next()
        app._backoff.next()
        websocket = FakeWebSocket()

        with patch(CONNECT, return_value=websocket):
            async with app:
                await app.wait_registered(timeout=1)
                assert app._backoff.delay == app.config.reconnect_delay

    @pytest.mark.asyncio
    async def test_disconnect_cancels_pending_reconnect(self, config: ClientConfig):
        config.reconnect_delay = 10
        hotline = HotlineApp("a", config=config, enabled=True)

        with patch(CONNECT, side_effect=OSError("refused")) as connect:
            await hotline.connect()
            await settle()
            assert hotline.reconnect_pending

            await hotline.disconnect()

        assert not hotline.reconnect_pending
        assert connect.call_count == 1

    @pytest.mark.asyncio
    async def test_connect_is_idempotent(self, app: HotlineApp):
        websocket = FakeWebSocket()

        with patch(CONNECT, return_value=websocket) as connect:
            await app.connect()
            await app.connect()
            await app.wait_registered(timeout=1)
            await app.connect()

            assert connect.call_count == 1
            await app.disconnect()
