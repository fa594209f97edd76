"""End-to-end tests for the /ws/chat WebSocket endpoint.

Every session is opened from the same TestClient so that all connections
share the application's event loop.
"""
import pytest
from fastapi import WebSocketDisconnect

from parley.messages.service import get_message_store


def connect(client, token):
    return client.websocket_connect(f"/ws/chat?token={token}")


def drain_join(ws):
    """Consume the frames every new connection receives; return `connected`."""
    frames = [ws.receive_json() for _ in range(4)]
    assert [f["type"] for f in frames] == ["connected", "user_list", "user_joined", "rooms_list"]
    return frames[0]["data"]


class TestAuthentication:
    def test_missing_token_closes_with_policy_violation(self, api_client):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with api_client.websocket_connect("/ws/chat") as ws:
                ws.receive_json()
        assert exc_info.value.code == 1008

    def test_bad_signature_is_rejected(self, api_client, token_for):
        token = token_for("mallory", "u-m", secret="not-the-server-secret")
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with connect(api_client, token) as ws:
                ws.receive_json()
        assert exc_info.value.code == 1008

    def test_bearer_header_is_accepted(self, api_client, token_for):
        headers = {"Authorization": f"Bearer {token_for('alice', 'u1')}"}
        with api_client.websocket_connect("/ws/chat", headers=headers) as ws:
            connected = drain_join(ws)
        assert connected["username"] == "alice"
        assert connected["userId"] == "u1"
        assert connected["room"] == "global"


class TestMessaging:
    def test_send_message_is_delivered_then_acked(self, api_client, token_for):
        with connect(api_client, token_for("alice", "u1")) as ws:
            drain_join(ws)
            ws.send_json({"type": "send_message", "data": {"message": "hi"}, "ackId": "a1"})

            delivered = ws.receive_json()
            ack = ws.receive_json()

        assert delivered["type"] == "receive_message"
        assert delivered["data"]["message"] == "hi"
        assert delivered["data"]["sender"] == "alice"
        assert ack["type"] == "ack"
        assert ack["ackId"] == "a1"
        assert ack["data"]["ok"] is True
        assert ack["data"]["id"] == delivered["data"]["id"]
        assert ack["data"]["timestamp"] == delivered["data"]["timestamp"]

    def test_two_clients_in_one_room(self, api_client, token_for):
        with connect(api_client, token_for("alice", "u1")) as alice:
            drain_join(alice)
            with connect(api_client, token_for("bob", "u2")) as bob:
                drain_join(bob)
                for expected in ("user_list", "user_joined", "rooms_list"):
                    assert alice.receive_json()["type"] == expected

                bob.send_json({"type": "send_message", "data": {"message": "hello alice"}})
                frame = alice.receive_json()
                assert frame["type"] == "receive_message"
                assert frame["data"]["message"] == "hello alice"

            # registry cleanup runs before the closing session yields
            assert [u["username"] for u in api_client.get("/api/users").json()] == ["alice"]

    def test_join_room_then_history_over_http(self, api_client, token_for):
        with connect(api_client, token_for("carol", "u3")) as ws:
            drain_join(ws)
            ws.send_json({"type": "join_room", "data": "dev"})
            assert ws.receive_json() == {"type": "rooms_list", "data": ["global", "dev"]}
            ws.send_json({"type": "send_message", "data": {"message": "dev talk"}, "ackId": "x"})
            ws.receive_json()
            ws.receive_json()

        response = api_client.get("/api/messages", params={"room": "dev"})
        assert response.status_code == 200
        assert [m["message"] for m in response.json()] == ["dev talk"]
        assert api_client.get("/api/messages").json() == []

    def test_reaction_round_trip(self, api_client, token_for):
        with connect(api_client, token_for("alice", "u1")) as ws:
            drain_join(ws)
            ws.send_json({"type": "send_message", "data": {"message": "like me"}, "ackId": "1"})
            ws.receive_json()
            message_id = ws.receive_json()["data"]["id"]

            ws.send_json({"type": "react_message", "data": {"messageId": message_id, "type": "like"}})
            first = ws.receive_json()
            ws.send_json({"type": "react_message", "data": {"messageId": message_id, "type": "like"}})
            second = ws.receive_json()

        assert first["type"] == "message_reaction"
        assert first["data"]["reactions"] == [{"type": "like", "userId": "u1"}]
        assert second["data"] == {"messageId": message_id, "reactions": []}


class TestBadInput:
    def test_invalid_json_gets_error_frame(self, api_client, token_for):
        with connect(api_client, token_for("alice", "u1")) as ws:
            drain_join(ws)
            ws.send_text("this is not json")
            reply = ws.receive_json()
        assert reply["type"] == "error"
        assert "Invalid frame" in reply["data"]["error"]

    def test_unknown_event_type(self, api_client, token_for):
        with connect(api_client, token_for("alice", "u1")) as ws:
            drain_join(ws)
            ws.send_json({"type": "user_join", "data": "someone-else"})
            reply = ws.receive_json()
        assert reply["type"] == "error"
        assert "user_join" in reply["data"]["error"]

    def test_invalid_payload_with_ack_gets_negative_ack(self, api_client, token_for):
        with connect(api_client, token_for("alice", "u1")) as ws:
            drain_join(ws)
            ws.send_json({"type": "send_message", "data": {"attachments": []}, "ackId": "a9"})
            error = ws.receive_json()
            ack = ws.receive_json()
        assert error["type"] == "error"
        assert ack["type"] == "ack"
        assert ack["ackId"] == "a9"
        assert ack["data"]["ok"] is False

    def test_connection_survives_bad_frames(self, api_client, token_for):
        with connect(api_client, token_for("alice", "u1")) as ws:
            drain_join(ws)
            ws.send_text("{")
            ws.receive_json()
            ws.send_json({"type": "send_message", "data": {"message": "still alive"}})
            assert ws.receive_json()["data"]["message"] == "still alive"


def test_users_endpoint_lists_connected(api_client, token_for):
    with connect(api_client, token_for("alice", "u1")) as ws:
        connected = drain_join(ws)
        users = api_client.get("/api/users").json()
    assert users == [{"username": "alice", "connectionId": connected["connectionId"], "userId": "u1"}]
    assert api_client.get("/api/users").json() == []


def test_health_reports_store_backend(api_client):
    response = api_client.get("/health")
    assert response.json() == {"status": "ok", "store": get_message_store().backend_name}


def test_root_banner(api_client):
    response = api_client.get("/")
    assert response.status_code == 200
    assert "running" in response.text
