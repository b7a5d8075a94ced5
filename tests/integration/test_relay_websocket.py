"""Integration tests for the relay over real WebSocket connections.

Runs the Starlette app in-process with TestClient, verifying:
- HTTP health and upgrade handling
- Registration, forwarding and reply routing end to end
- Timeouts and disconnects surfaced as error responses
- Observer and waiter delivery
"""

from __future__ import annotations

import pytest
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from hotline.app import create_app
from hotline.config import RelayConfig


@pytest.fixture
def client(tmp_path):
    """Test client sharing one event loop across all its WebSockets."""
    app = create_app(RelayConfig(port=18675, request_timeout=0.3, state_dir=tmp_path))
    with TestClient(app) as test_client:
        yield test_client


def register(websocket, app_id: str, handlers=None) -> None:
    """Register and wait until the relay has processed it."""
    frame = {"type": "register", "role": "application", "appId": app_id}
    if handlers is not None:
        frame["handlers"] = handlers
    websocket.send_json(frame)
    # Frames on one connection are handled in order, so a ping reply proves
    # the registration landed.
    websocket.send_json({"id": f"sync-{app_id}", "type": "ping"})
    assert websocket.receive_json() == {"id": f"sync-{app_id}", "ok": True, "data": {}}


# =============================================================================
# Tests: HTTP
# =============================================================================


class TestHttp:
    """Test plain HTTP endpoints."""

    def test_health(self, client: TestClient):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["port"] == 18675
        assert data["applications"] == 0

    def test_plain_http_needs_upgrade(self, client: TestClient):
        response = client.get("/")

        assert response.status_code == 426


# =============================================================================
# Tests: Commands
# =============================================================================


class TestCommands:
    """Test command routing through the relay."""

    def test_echo_round_trip(self, client: TestClient):
        with client.websocket_connect("/") as app, client.websocket_connect("/") as cli:
            register(app, "A")

            cli.send_json({"id": "1", "type": "echo", "payload": {"x": 1}})
            assert app.receive_json() == {"id": "1", "type": "echo", "payload": {"x": 1}}

            app.send_json({"id": "1", "ok": True, "data": {"x": 1}})
            assert cli.receive_json() == {"id": "1", "ok": True, "data": {"x": 1}}

    def test_ping_without_apps(self, client: TestClient):
        with client.websocket_connect("/") as cli:
            cli.send_json({"id": "1", "type": "ping"})

            assert cli.receive_json() == {"id": "1", "ok": True, "data": {}}

    def test_no_application(self, client: TestClient):
        with client.websocket_connect("/") as cli:
            cli.send_json({"id": "1", "type": "echo"})

            assert cli.receive_json() == {"id": "1", "ok": False, "error": "No application connected"}

    def test_ambiguous_target(self, client: TestClient):
        with (
            client.websocket_connect("/") as a,
            client.websocket_connect("/") as b,
            client.websocket_connect("/") as cli,
        ):
            register(a, "A")
            register(b, "B")

            cli.send_json({"id": "1", "type": "echo"})
            response = cli.receive_json()

            assert response["ok"] is False
            assert "A" in response["error"]
            assert "B" in response["error"]

    def test_targeted_client(self, client: TestClient):
        with (
            client.websocket_connect("/") as a,
            client.websocket_connect("/") as b,
            client.websocket_connect("/?app=B") as cli,
        ):
            register(a, "A")
            register(b, "B")

            cli.send_json({"id": "1", "type": "whoami"})
            assert b.receive_json() == {"id": "1", "type": "whoami"}
            b.send_json({"id": "1", "ok": True, "data": "B"})

            assert cli.receive_json() == {"id": "1", "ok": True, "data": "B"}

    def test_missing_target(self, client: TestClient):
        with client.websocket_connect("/") as a, client.websocket_connect("/?app=C") as cli:
            register(a, "A")

            cli.send_json({"id": "1", "type": "echo"})

            assert cli.receive_json() == {
                "id": "1",
                "ok": False,
                "error": "No application connected with id: C",
            }

    def test_garbage_keeps_connection_open(self, client: TestClient):
        with client.websocket_connect("/") as cli:
            cli.send_text("this is not json")
            cli.send_bytes(b"\x00\x01")
            cli.send_json({"id": "1", "type": "ping"})

            assert cli.receive_json() == {"id": "1", "ok": True, "data": {}}

    def test_timeout(self, client: TestClient):
        with client.websocket_connect("/") as app, client.websocket_connect("/") as cli:
            register(app, "A")

            cli.send_json({"id": "1", "type": "hang"})
            assert app.receive_json()["id"] == "1"

            assert cli.receive_json() == {"id": "1", "ok": False, "error": "Request timed out"}

            # A late reply goes nowhere; the next command still works
            app.send_json({"id": "1", "ok": True, "data": "late"})
            cli.send_json({"id": "2", "type": "ping"})
            assert cli.receive_json() == {"id": "2", "ok": True, "data": {}}

    def test_app_disconnect_mid_flight(self, client: TestClient):
        with client.websocket_connect("/") as cli:
            with client.websocket_connect("/") as app:
                register(app, "A")
                cli.send_json({"id": "1", "type": "hang"})
                assert app.receive_json()["id"] == "1"

            assert cli.receive_json() == {"id": "1", "ok": False, "error": "Application disconnected"}

    def test_handler_listing(self, client: TestClient):
        handlers = [{"type": "get-state", "fields": [{"name": "key", "type": "string"}]}]
        with client.websocket_connect("/") as app, client.websocket_connect("/") as cli:
            register(app, "A", handlers)

            cli.send_json({"id": "1", "type": "list-handlers"})

            assert cli.receive_json()["data"] == [{"appId": "A", "handlers": handlers}]

    def test_list_apps(self, client: TestClient):
        with client.websocket_connect("/") as app, client.websocket_connect("/") as cli:
            register(app, "A")

            cli.send_json({"id": "1", "type": "list-apps"})
            data = cli.receive_json()["data"]

            assert data["port"] == 18675
            assert [a["appId"] for a in data["apps"]] == ["A"]


# =============================================================================
# Tests: Observers and waiters
# =============================================================================


class TestObservers:
    """Test the live traffic copy."""

    def test_observer_sees_traffic(self, client: TestClient):
        with (
            client.websocket_connect("/?role=observer") as observer,
            client.websocket_connect("/") as app,
            client.websocket_connect("/") as cli,
        ):
            register(app, "A")
            assert observer.receive_json()["message"]["type"] == "register"

            cli.send_json({"id": "1", "type": "echo"})
            app.receive_json()
            app.send_json({"id": "1", "ok": True, "data": 1})
            cli.receive_json()

            assert observer.receive_json() == {
                "direction": "request",
                "appId": "A",
                "message": {"id": "1", "type": "echo"},
            }
            assert observer.receive_json() == {
                "direction": "response",
                "appId": "A",
                "message": {"id": "1", "ok": True, "data": 1},
            }

            app.send_json({"type": "event", "event": "ready", "data": {"n": 1}})
            assert observer.receive_json() == {
                "type": "event",
                "appId": "A",
                "event": "ready",
                "data": {"n": 1},
            }


class TestWaiters:
    """Test one-shot event waiters."""

    def test_waiter_receives_event_then_closed(self, client: TestClient):
        with client.websocket_connect("/") as app:
            register(app, "A")
            with client.websocket_connect("/?role=waiter&event=ready") as waiter:
                app.send_json({"type": "event", "event": "ready", "data": {"n": 1}})

                assert waiter.receive_json() == {
                    "type": "event",
                    "appId": "A",
                    "event": "ready",
                    "data": {"n": 1},
                }
                with pytest.raises(WebSocketDisconnect):
                    waiter.receive_json()

    def test_waiter_requires_event(self, client: TestClient):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/?role=waiter"):
                pass

        assert exc_info.value.code == 4000
