"""
Tests for the /ws realtime channel.

The websocket handler runs on the test client's event loop thread, so joins
are awaited by polling the hub before submitting.
"""

import time

import pytest
from fastapi.websockets import WebSocketDisconnect


def wait_until(predicate, timeout: float = 2.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        time.sleep(0.01)


def join(websocket, hub, code: str):
    before = len(hub.members(code))
    websocket.send_json({"event": "join_room", "data": code})
    wait_until(lambda: len(hub.members(code)) > before)


def submit(client, recipient_code: str, message: str) -> dict:
    response = client.post("/api/compliments", json={"recipientCode": recipient_code, "message": message})
    assert response.status_code == 201
    return response.json()["compliment"]


class TestRealtimeDelivery:

    def test_joined_connection_receives_new_compliment(self, client, hub):
        with client.websocket_connect("/ws") as websocket:
            join(websocket, hub, "XYZ789")

            compliment = submit(client, "XYZ789", "you rock")

            event = websocket.receive_json()
            assert event == {"event": "new_compliment", "data": compliment}

    def test_exactly_one_push_per_submission(self, client, hub):
        with client.websocket_connect("/ws") as websocket:
            join(websocket, hub, "XYZ789")

            first = submit(client, "XYZ789", "one")
            second = submit(client, "XYZ789", "two")

            assert websocket.receive_json()["data"] == first
            assert websocket.receive_json()["data"] == second

    def test_connection_without_join_receives_nothing(self, client, hub):
        with client.websocket_connect("/ws") as listener, client.websocket_connect("/ws") as idle:
            join(listener, hub, "XYZ789")
            submit(client, "XYZ789", "not for idle")
            assert listener.receive_json()["data"]["message"] == "not for idle"

            # The first event idle ever sees must be the one for the room it joins now
            join(idle, hub, "IDL234")
            submit(client, "IDL234", "for idle")
            assert idle.receive_json()["data"]["message"] == "for idle"

    def test_rooms_are_isolated(self, client, hub):
        with client.websocket_connect("/ws") as websocket:
            join(websocket, hub, "AAA111")

            submit(client, "BBB222", "for b")
            submit(client, "AAA111", "for a")

            event = websocket.receive_json()
            assert event["data"]["recipient_code"] == "AAA111"
            assert event["data"]["message"] == "for a"

    def test_connection_may_join_several_rooms(self, client, hub):
        with client.websocket_connect("/ws") as websocket:
            join(websocket, hub, "AAA111")
            join(websocket, hub, "BBB222")

            submit(client, "AAA111", "a")
            submit(client, "BBB222", "b")

            assert websocket.receive_json()["data"]["message"] == "a"
            assert websocket.receive_json()["data"]["message"] == "b"


class TestRealtimeConnections:

    def test_disconnect_leaves_all_rooms(self, client, hub):
        with client.websocket_connect("/ws") as websocket:
            join(websocket, hub, "AAA111")
            assert hub.connection_count() == 1

        wait_until(lambda: hub.connection_count() == 0)
        assert hub.members("AAA111") == set()

    def test_malformed_frames_are_ignored(self, client, hub):
        with client.websocket_connect("/ws") as websocket:
            websocket.send_text("not json")
            websocket.send_json({"event": "unknown", "data": "AAA111"})
            websocket.send_json({"event": "join_room", "data": 42})
            join(websocket, hub, "AAA111")

            submit(client, "AAA111", "still alive")
            assert websocket.receive_json()["data"]["message"] == "still alive"
            assert hub.members("42") == set()

    def test_binary_frames_are_ignored(self, client, hub):
        with client.websocket_connect("/ws") as websocket:
            websocket.send_bytes(b"\x00\x01binary")
            join(websocket, hub, "BIN456")

            submit(client, "BIN456", "after binary")
            assert websocket.receive_json()["data"]["message"] == "after binary"

    def test_foreign_origin_is_refused(self, client):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/ws", headers={"origin": "http://evil.example"}):
                pass

        assert exc_info.value.code == 1008

    def test_configured_origin_is_accepted(self, client, hub):
        with client.websocket_connect("/ws", headers={"origin": "http://localhost:5173"}):
            wait_until(lambda: hub.connection_count() == 1)
