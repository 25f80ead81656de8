"""
End-to-end relay scenarios over real WebSocket sessions.
"""

import json
import time

import pytest
from fastapi.testclient import TestClient

from app import create_app
from fakes import make_loopback_backend


def join(ws, room_id):
    ws.send_text(json.dumps({"event": "join-chat", "data": room_id}))


def leave(ws, room_id):
    ws.send_text(json.dumps({"event": "leave-chat", "data": room_id}))


def typing(ws, room_id, user_id, is_typing):
    ws.send_text(json.dumps({
        "event": "typing",
        "data": {"conversationId": room_id, "userId": user_id, "isTyping": is_typing},
    }))


def wait_for(client, path, key, expected, timeout=2.0):
    """Poll a JSON endpoint until `key` equals `expected` (frames are processed asynchronously)."""
    deadline = time.monotonic() + timeout
    value = None
    while time.monotonic() < deadline:
        value = client.get(path).json()[key]
        if value == expected:
            return
        time.sleep(0.01)
    pytest.fail(f"{path} {key} was {value}, expected {expected}")


def wait_for_members(client, room_id, expected):
    wait_for(client, f"/rooms/{room_id}", "member_count", expected)


@pytest.fixture
def notifications():
    return []


@pytest.fixture
def client(notifications):
    app = create_app(redis_fanout=False, sink=lambda kind, fields: notifications.append((kind, fields)))
    with TestClient(app) as client:
        yield client


def test_health_reports_counts(client):
    assert client.get("/health").json() == {"status": "ok", "connections": 0, "rooms": 0}


def test_unknown_room_has_no_members(client):
    response = client.get("/rooms/nowhere")

    assert response.status_code == 200
    assert response.json() == {"room_id": "nowhere", "member_count": 0}


def test_connected_frame_carries_distinct_ids(client):
    with client.websocket_connect("/ws") as a, client.websocket_connect("/ws") as b:
        first = a.receive_json()["data"]["connectionId"]
        second = b.receive_json()["data"]["connectionId"]

    assert first != second


def test_typing_reaches_other_member_but_not_sender(client):
    with client.websocket_connect("/ws") as a, client.websocket_connect("/ws") as b:
        a.receive_json()
        b.receive_json()
        join(a, "room-1")
        join(b, "room-1")
        wait_for_members(client, "room-1", 2)

        typing(a, "room-1", "u1", True)
        assert b.receive_json() == {"event": "user-typing", "data": {"userId": "u1", "isTyping": True}}

        # A's next frame is B's broadcast, so A never got its own
        typing(b, "room-1", "u2", False)
        assert a.receive_json() == {"event": "user-typing", "data": {"userId": "u2", "isTyping": False}}


def test_join_leave_and_disconnect_update_presence(client, notifications):
    with client.websocket_connect("/ws") as a:
        a.receive_json()
        join(a, "room-1")
        join(a, "room-1")
        wait_for_members(client, "room-1", 1)

        leave(a, "room-1")
        wait_for_members(client, "room-1", 0)

        join(a, "room-2")
        wait_for_members(client, "room-2", 1)

    wait_for(client, "/health", "connections", 0)
    assert client.get("/health").json()["rooms"] == 0
    assert [kind for kind, _ in notifications] == ["connect", "join", "leave", "join", "disconnect"]


def test_typing_after_member_disconnects(client):
    with client.websocket_connect("/ws") as b, client.websocket_connect("/ws") as c:
        b.receive_json()
        c.receive_json()

        with client.websocket_connect("/ws") as a:
            a.receive_json()
            join(a, "room-1")
            join(b, "room-1")
            wait_for_members(client, "room-1", 2)

        wait_for_members(client, "room-1", 1)
        typing(b, "room-1", "u2", True)
        # B's frames are handled in order, so once it has left the typing was processed
        leave(b, "room-1")
        wait_for_members(client, "room-1", 0)

        # B's connection is still healthy afterwards
        join(b, "room-1")
        join(c, "room-1")
        wait_for_members(client, "room-1", 2)
        typing(b, "room-1", "u2", False)
        assert c.receive_json() == {"event": "user-typing", "data": {"userId": "u2", "isTyping": False}}


def test_non_member_typing_reaches_room_members(client):
    with client.websocket_connect("/ws") as a, client.websocket_connect("/ws") as b:
        a.receive_json()
        b.receive_json()
        join(b, "room-2")
        wait_for_members(client, "room-2", 1)

        typing(a, "room-2", "u1", True)

        assert b.receive_json() == {"event": "user-typing", "data": {"userId": "u1", "isTyping": True}}
        assert client.get("/rooms/room-2").json()["member_count"] == 1


def test_malformed_frames_do_not_close_connection(client):
    with client.websocket_connect("/ws") as a:
        a.receive_json()
        a.send_text("not json at all")
        a.send_text(json.dumps({"event": "join-chat", "data": 12}))
        a.send_text(json.dumps({"event": "self-destruct"}))
        a.send_bytes(b"\x00\x01")

        join(a, "room-1")
        wait_for_members(client, "room-1", 1)


def test_fanout_mode_relays_typing_through_backend():
    backend, pubsub = make_loopback_backend()

    with TestClient(create_app(backend=backend)) as client:
        with client.websocket_connect("/ws") as a, client.websocket_connect("/ws") as b:
            a.receive_json()
            b.receive_json()
            join(a, "room-1")
            join(b, "room-1")
            wait_for_members(client, "room-1", 2)

            typing(a, "room-1", "u1", True)

            assert b.receive_json() == {"event": "user-typing", "data": {"userId": "u1", "isTyping": True}}
            assert backend.publish_typing.call_count == 1

    # Listener cancelled and its subscription closed; a backend passed in stays open
    assert pubsub.closed
    backend.close.assert_not_called()


def test_shutdown_closes_backend_created_by_app(monkeypatch):
    backend, pubsub = make_loopback_backend()
    monkeypatch.setattr("app.RedisBackend", lambda: backend)

    with TestClient(create_app(redis_fanout=True)) as client:
        assert client.get("/health").json()["status"] == "ok"
        deadline = time.monotonic() + 2.0
        while not backend.subscribe_to_rooms.called and time.monotonic() < deadline:
            time.sleep(0.01)
        backend.subscribe_to_rooms.assert_called_once_with()

    assert pubsub.closed
    backend.close.assert_called_once_with()
