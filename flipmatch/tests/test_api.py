"""
Tests for the HTTP and WebSocket surface.

Tests:
- Health and info endpoints
- Session snapshot and teardown over REST
- A complete simulated game over the WebSocket
"""

import pytest
from fastapi.testclient import TestClient

from ..api import GameService, create_app
from ..engine_core.state import GameMode
from ..simulation import SimulatedArm, SimulatedTable, SimulatedClassifier
from .conftest import make_components


def simulated_factory(delay=0.0):
    def factory(mode, config):
        table = SimulatedTable.shuffled(mode, seed=11)
        components = make_components(table, SimulatedArm(table, delay=delay))
        components.classifier = SimulatedClassifier(table, mode)
        return components
    return factory


def receive_until(ws, message_type, limit=5000):
    """Collect messages up to and including the first of message_type."""
    received = []
    for _ in range(limit):
        message = ws.receive_json()
        received.append(message)
        if message["type"] == message_type:
            return received
    raise AssertionError(f"no {message_type} within {limit} messages")


@pytest.fixture
def client(fast_config):
    service = GameService(config=fast_config, component_factory=simulated_factory())
    with TestClient(create_app(service)) as test_client:
        yield test_client


@pytest.fixture
def slow_client(fast_config):
    fast_config.tick_interval = 0.01
    service = GameService(config=fast_config, component_factory=simulated_factory(delay=0.05))
    with TestClient(create_app(service)) as test_client:
        yield test_client


class TestSystemEndpoints:
    """Tests for health and info."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_root(self, client):
        data = client.get("/").json()

        assert data["websocket"] == "/ws"


class TestSessionEndpoints:
    """Tests for the REST session view."""

    def test_no_session(self, client):
        response = client.get("/api/v1/session")

        assert response.status_code == 404
        assert response.json()["error_code"] == "SESSION_NOT_FOUND"

    def test_delete_without_session(self, client):
        response = client.delete("/api/v1/session")

        assert response.status_code == 404

    def test_snapshot_and_teardown(self, slow_client):
        with slow_client.websocket_connect("/ws") as ws:
            ws.send_json({"mode": "color"})
            receive_until(ws, "game_state")

            snapshot = slow_client.get("/api/v1/session")
            assert snapshot.status_code == 200
            data = snapshot.json()
            assert data["mode"] == "color"
            assert data["status"] == "playing"
            assert data["subscribers"] == 1
            assert set(data["game_state"]["card_states"]) == {str(i) for i in range(8)}

            ack = slow_client.delete("/api/v1/session").json()
            assert ack["success"] is True
            assert ack["released"] is True
            assert ack["session_id"] == data["session_id"]

            closed = receive_until(ws, "message")
            while closed[-1]["payload"] != "Session closed. Select game version to start.":
                closed = receive_until(ws, "message")

        assert slow_client.get("/api/v1/session").status_code == 404


class TestWebSocketGame:
    """A full game driven over the push channel."""

    def test_prompt_on_connect(self, client):
        with client.websocket_connect("/ws") as ws:
            message = ws.receive_json()

        assert message == {"type": "message", "payload": "Select game version to start."}

    def test_full_game(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"mode": "color"})
            messages = receive_until(ws, "game_over")

        types = [m["type"] for m in messages]
        assert types.count("game_over") == 1
        assert "error" not in types
        assert "frame_update" in types
        assert "arm_status" in types

        final_state = [m for m in messages if m["type"] == "game_state"][-1]["payload"]
        assert final_state["pairs_found"] == 4
        assert final_state["status"] == "game_over"
        for card in final_state["card_states"].values():
            assert card["isMatched"] is True
            assert card["color"] is not None
            assert "object" not in card

    def test_mode_in_path(self, client):
        with client.websocket_connect("/ws/yolo") as ws:
            messages = receive_until(ws, "game_state")

        assert "Object game started. Robot is looking for the board..." in [
            m["payload"] for m in messages if m["type"] == "message"
        ]
        assert messages[-1]["payload"]["mode"] == GameMode.OBJECT.value

    def test_malformed_message_ignored(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_text("hello")
            ws.send_json({"mode": "color"})
            messages = receive_until(ws, "game_state")

        assert "error" not in [m["type"] for m in messages]

    def test_binary_frame_ignored(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_bytes(b"\x00\x01")
            ws.send_json({"mode": "color"})
            messages = receive_until(ws, "game_state")

        assert messages[-1]["payload"]["status"] == "playing"
        assert "error" not in [m["type"] for m in messages]
