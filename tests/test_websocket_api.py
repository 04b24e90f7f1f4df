"""
Integration: FastAPI app + WebSocket endpoint through TestClient.
"""
import time

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect


@pytest.fixture
def client(clean_db):
    from duolink.core.main import app
    with TestClient(app) as c:
        yield c


def _hello(ws) -> str:
    frame = ws.receive_json()
    assert frame["type"] == "connection-established"
    return frame["connectionId"]


def test_two_clients_pair_and_exchange_offer(client):
    with client.websocket_connect("/ws") as wx:
        x = _hello(wx)
        wx.send_json({"type": "join-room", "roomId": "r1"})
        assert wx.receive_json() == {"type": "room-joined", "roomId": "r1", "participantCount": 1}

        with client.websocket_connect("/ws") as wy:
            y = _hello(wy)
            wy.send_json({"type": "join-room", "roomId": "r1"})
            assert wy.receive_json() == {"type": "room-joined", "roomId": "r1", "participantCount": 2}
            assert wy.receive_json()["type"] == "room-ready"
            assert wx.receive_json() == {"type": "user-joined", "userId": y, "participantCount": 2}
            ready = wx.receive_json()
            assert ready["type"] == "room-ready" and ready["initiator"] == x

            wx.send_json({"type": "offer", "roomId": "r1", "offer": {"type": "offer", "sdp": "v=0"}})
            assert wy.receive_json() == {
                "type": "offer",
                "offer": {"type": "offer", "sdp": "v=0"},
                "fromUserId": x,
            }
            wy.send_json({"type": "answer", "roomId": "r1", "answer": {"type": "answer", "sdp": "v=0"}})
            assert wx.receive_json()["fromUserId"] == y

            health = client.get("/health").json()
            assert health["status"] == "ok"
            assert health["connectionCount"] == 2
            assert health["roomCount"] == 1

        assert wx.receive_json() == {"type": "user-left", "userId": y, "participantCount": 1}
        health = client.get("/health").json()
        assert health["connectionCount"] == 1
        assert health["roomCount"] == 1


def test_third_client_gets_room_full(client):
    with client.websocket_connect("/ws") as wa, client.websocket_connect("/ws") as wb:
        _hello(wa)
        _hello(wb)
        wa.send_json({"type": "join-room", "roomId": "busy"})
        wa.receive_json()
        wb.send_json({"type": "join-room", "roomId": "busy"})
        wb.receive_json()
        with client.websocket_connect("/ws") as wc:
            _hello(wc)
            wc.send_json({"type": "join-room", "roomId": "busy"})
            assert wc.receive_json() == {"type": "error", "message": "Room is full"}
            wc.send_json({"type": "ping"})
            assert wc.receive_json()["type"] == "pong"


def test_bad_frames_get_error_replies(client):
    with client.websocket_connect("/ws") as ws:
        _hello(ws)
        ws.send_text("definitely not json")
        assert ws.receive_json() == {"type": "error", "message": "Invalid JSON"}
        ws.send_json({"type": "shout"})
        assert ws.receive_json() == {"type": "error", "message": "Unknown message type: shout"}
        ws.send_json({"type": "join-room", "roomId": ""})
        assert ws.receive_json() == {"type": "error", "message": "Room ID is required"}
        ws.send_bytes(b'{"type": "ping"}')
        assert ws.receive_json()["type"] == "pong"


def test_auth_binds_registered_user(client):
    created = client.post("/api/users", json={"username": "alice", "display_name": "Alice"})
    assert created.status_code == 201
    user_id = created.json()["id"]

    with client.websocket_connect("/ws") as ws:
        conn_id = _hello(ws)
        ws.send_json({"type": "auth", "userId": "nobody"})
        assert ws.receive_json() == {"type": "error", "message": "User not found: nobody"}

        ws.send_json({"type": "auth", "userId": user_id})
        assert ws.receive_json() == {
            "type": "auth-success",
            "userId": user_id,
            "username": "alice",
            "displayName": "Alice",
        }
        active = client.get("/api/users/active").json()["users"]
        assert [(u["id"], u["connection_id"]) for u in active] == [(user_id, conn_id)]
        assert client.get(f"/api/users/{user_id}").json()["status"] == "online"

        stats = client.get("/api/stats").json()
        assert stats["relay"]["authenticatedCount"] == 1
        assert stats["directory"]["activeConnections"] == 1


def _active(client):
    return [(u["connection_id"], u["room_id"], u["status"]) for u in client.get("/api/users/active").json()["users"]]


def test_active_users_track_rooms_and_every_connection(client):
    user_id = client.post("/api/users", json={"username": "alice"}).json()["id"]

    with client.websocket_connect("/ws") as wa:
        a = _hello(wa)
        wa.send_json({"type": "auth", "userId": "alice"})
        assert wa.receive_json()["type"] == "auth-success"
        wa.send_json({"type": "join-room", "roomId": "r1"})
        assert wa.receive_json()["type"] == "room-joined"
        assert _active(client) == [(a, "r1", "online")]

        with client.websocket_connect("/ws") as wb:
            b = _hello(wb)
            wb.send_json({"type": "auth", "userId": user_id})
            assert wb.receive_json()["type"] == "auth-success"
            assert sorted(_active(client)) == sorted([(a, "r1", "online"), (b, None, "online")])

        # the newer connection closing must not hide the older one
        for _ in range(100):
            if len(_active(client)) == 1:
                break
            time.sleep(0.02)
        assert _active(client) == [(a, "r1", "online")]

        wa.send_json({"type": "leave-room"})
        wa.send_json({"type": "ping"})
        assert wa.receive_json()["type"] == "pong"
        assert _active(client) == [(a, None, "online")]


def test_handshake_refused_once_shutdown_began(client):
    client.app.state.relay._running = False
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws"):
            pass
    assert exc.value.code == 1001
