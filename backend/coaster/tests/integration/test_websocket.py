"""Integration tests for WebSocket and HTTP endpoints.

These exercise the transport layer (HTTP endpoints, WebSocket protocol,
MessagePack framing) on top of a real SessionManager and a small catalog.
"""

from unittest.mock import patch

import pytest
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from coaster.messaging.types import SessionErrorCode, SessionMessageType
from coaster.server import websocket as ws_module
from coaster.server.app import create_app
from coaster.server.settings import GameServerSettings
from coaster.tests.helpers.catalog import spread_catalog
from coaster.tests.helpers.websocket import connect_as, recv_until, recv_ws, send_ws

GARBAGE = b"\xff\xff\xff"


def _fast_settings() -> GameServerSettings:
    return GameServerSettings(
        announcement_delay_ms=10,
        grace_period_ms=10,
        results_display_ms=10,
        selection_retry_ms=10,
    )


@pytest.fixture
def app():
    return create_app(settings=_fast_settings(), catalog=spread_catalog())


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


class TestWebSocketIntegration:
    def test_greeting_assigns_user_id(self, client):
        with client.websocket_connect("/ws") as ws:
            greeting = recv_ws(ws)
            assert greeting["type"] == SessionMessageType.USER_ID_ASSIGNED
            assert greeting["user_id"] >= 1

    def test_create_and_join_room(self, client):
        with client.websocket_connect("/ws") as alice, client.websocket_connect("/ws") as bob:
            connect_as(alice, "Alice")
            connect_as(bob, "Bob")

            send_ws(alice, {"type": "createRoom", "max_players": 4})
            created = recv_until(alice, SessionMessageType.ROOM_CREATED)[-1]
            code = created["room_code"]

            send_ws(bob, {"type": "joinRoom", "room_code": code})
            messages = recv_until(bob, SessionMessageType.JOINED_ROOM)
            snapshot = next(m for m in messages if m["type"] == SessionMessageType.ROOM_USERS_UPDATE)
            assert [u["username"] for u in snapshot["users"]] == ["Alice", "Bob"]
            assert snapshot["room_limit"] == 4

            chat = recv_until(bob, SessionMessageType.CHAT)[-1]
            assert chat["message"] == "+ Bob joined the room!"

    def test_game_runs_rounds_until_host_ends_it(self, client):
        with client.websocket_connect("/ws") as alice, client.websocket_connect("/ws") as bob:
            connect_as(alice, "Alice")
            connect_as(bob, "Bob")
            send_ws(alice, {"type": "quickQueue"})
            code = recv_until(alice, SessionMessageType.JOINED_ROOM)[-1]["room_code"]
            send_ws(bob, {"type": "quickQueue"})
            assert recv_until(bob, SessionMessageType.JOINED_ROOM)[-1]["room_code"] == code

            send_ws(alice, {"type": "startGame"})
            started = recv_until(bob, SessionMessageType.GAME_STARTED)[-1]
            assert started["message"] == f"Game started in room {code}!"
            new_round = recv_until(bob, SessionMessageType.NEW_ROUND)[-1]
            assert new_round["round_number"] == 1
            assert len(new_round["coasters"]) == 3

            send_ws(bob, {"type": "submitAnswer", "coaster_id": new_round["coasters"][0]["id"]})
            answered = recv_until(alice, SessionMessageType.PLAYER_ANSWERED)[-1]
            assert answered["username"] == "Bob"

            send_ws(alice, {"type": "endGame"})
            ended = recv_until(bob, SessionMessageType.GAME_ENDED)[-1]
            assert ended["message"] == "Game has been ended by the host."

    def test_invalid_message_keeps_connection(self, client):
        with client.websocket_connect("/ws") as ws:
            recv_ws(ws)
            send_ws(ws, {"type": "teleport"})
            assert recv_ws(ws)["code"] == SessionErrorCode.INVALID_MESSAGE

            send_ws(ws, {"type": "ping"})
            assert recv_ws(ws)["type"] == SessionMessageType.PONG

    def test_repeated_decode_errors_disconnect(self, client):
        with patch.object(ws_module, "_MAX_DECODE_ERRORS", 3), client.websocket_connect("/ws") as ws:
            recv_ws(ws)
            for _ in range(3):
                ws.send_bytes(GARBAGE)
                assert recv_ws(ws)["code"] == SessionErrorCode.INVALID_MESSAGE
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_bytes()
            assert exc_info.value.code == 4004

    def test_decode_error_counter_resets_on_valid_message(self, client):
        with patch.object(ws_module, "_MAX_DECODE_ERRORS", 3), client.websocket_connect("/ws") as ws:
            recv_ws(ws)
            for _ in range(2):
                ws.send_bytes(GARBAGE)
                recv_ws(ws)
            send_ws(ws, {"type": "ping"})
            assert recv_ws(ws)["type"] == SessionMessageType.PONG
            for _ in range(2):
                ws.send_bytes(GARBAGE)
                assert recv_ws(ws)["code"] == SessionErrorCode.INVALID_MESSAGE

    def test_rate_limited_message_returns_error(self, client):
        with (
            patch.object(ws_module, "_RATE_LIMIT_BURST", 2),
            patch.object(ws_module, "_RATE_LIMIT_RATE", 1.0),
            client.websocket_connect("/ws") as ws,
        ):
            recv_ws(ws)
            for _ in range(2):
                send_ws(ws, {"type": "ping"})
                recv_ws(ws)
            send_ws(ws, {"type": "ping"})
            assert recv_ws(ws)["code"] == SessionErrorCode.RATE_LIMITED

    def test_disconnect_leaves_room(self, app, client):
        manager = app.state.session_manager
        with client.websocket_connect("/ws") as alice:
            connect_as(alice, "Alice")
            with client.websocket_connect("/ws") as bob:
                connect_as(bob, "Bob")
                send_ws(alice, {"type": "createRoom"})
                code = recv_until(alice, SessionMessageType.ROOM_CREATED)[-1]["room_code"]
                send_ws(bob, {"type": "joinRoom", "room_code": code})
                recv_until(alice, SessionMessageType.CHAT)

            chat = recv_until(alice, SessionMessageType.CHAT)[-1]
            assert chat["message"] == "- Bob has disconnected! 😭"
            assert manager.registry.get_room(code).member_count == 1


class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert "version" in data
        assert "commit" in data


class TestStatusEndpoint:
    def test_status_on_idle_server(self, client):
        response = client.get("/status")
        assert response.status_code == 200
        data = response.json()
        assert data["rooms"] == 0
        assert data["public_rooms"] == 0
        assert data["connections"] == 0
        assert data["coasters"] == 6

    def test_status_counts_connections_and_rooms(self, client):
        with client.websocket_connect("/ws") as ws:
            connect_as(ws, "Alice")
            send_ws(ws, {"type": "quickQueue"})
            recv_until(ws, SessionMessageType.JOINED_ROOM)

            data = client.get("/status").json()
            assert data["connections"] == 1
            assert data["rooms"] == 1
            assert data["public_rooms"] == 1
