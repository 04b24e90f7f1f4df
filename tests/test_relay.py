"""
Relay scenarios driven end to end through SignalingRelay with fake transports.
"""
import asyncio
import json

from duolink.core.signaling.relay import SignalingRelay


def _relay(**kwargs) -> SignalingRelay:
    kwargs.setdefault("heartbeat_interval", 0)
    return SignalingRelay(**kwargs)


def _send(relay, conn_id, **frame):
    return relay.handle_frame(conn_id, json.dumps(frame))


def test_connect_greets_with_connection_id(transport_factory):
    async def scenario():
        relay = _relay()
        t = transport_factory()
        conn_id = await relay.connect(t)
        assert t.sent == [{"type": "connection-established", "connectionId": conn_id}]
        assert len(relay.registry) == 1
    asyncio.run(scenario())


def test_pairing_offer_and_disconnect_flow(transport_factory, invariants):
    async def scenario():
        relay = _relay()
        tx, ty = transport_factory(), transport_factory()
        x = await relay.connect(tx)
        y = await relay.connect(ty)
        tx.clear()
        ty.clear()

        # A: first join
        await _send(relay, x, type="join-room", roomId="r1")
        assert tx.sent == [{"type": "room-joined", "roomId": "r1", "participantCount": 1}]
        assert ty.sent == []
        invariants(relay)
        tx.clear()

        # B: second join
        await _send(relay, y, type="join-room", roomId="r1")
        assert ty.of_type("room-joined") == [{"type": "room-joined", "roomId": "r1", "participantCount": 2}]
        assert tx.of_type("user-joined") == [{"type": "user-joined", "userId": y, "participantCount": 2}]
        assert tx.of_type("room-ready")[0]["initiator"] == x
        assert ty.of_type("room-ready")[0]["initiator"] == x
        invariants(relay)
        tx.clear()
        ty.clear()

        # C: offer relayed with sender id
        await _send(relay, x, type="offer", roomId="r1", offer={"sdp": "v=0 offer"})
        assert ty.sent == [{"type": "offer", "offer": {"sdp": "v=0 offer"}, "fromUserId": x}]
        await _send(relay, y, type="answer", roomId="r1", answer={"sdp": "v=0 answer"})
        assert tx.sent == [{"type": "answer", "answer": {"sdp": "v=0 answer"}, "fromUserId": y}]
        await _send(relay, y, type="ice-candidate", candidate={"candidate": "cand"})
        assert tx.sent[-1] == {"type": "ice-candidate", "candidate": {"candidate": "cand"}, "fromUserId": y}
        tx.clear()
        ty.clear()

        # D: peer disconnects
        await relay.disconnect(y)
        assert tx.sent == [{"type": "user-left", "userId": y, "participantCount": 1}]
        assert relay.rooms.get("r1").members == [x]
        invariants(relay)
        tx.clear()

        # offer with no peer is dropped silently
        await _send(relay, x, type="offer", roomId="r1", offer={"sdp": "again"})
        assert tx.sent == []

        # E: last member leaves, room disappears, later join recreates it
        await _send(relay, x, type="leave-room", roomId="r1")
        assert "r1" not in relay.rooms
        assert relay.registry.lookup(x).room_id is None
        await _send(relay, x, type="join-room", roomId="r1")
        assert tx.sent[-1] == {"type": "room-joined", "roomId": "r1", "participantCount": 1}
        invariants(relay)
    asyncio.run(scenario())


def test_full_room_rejects_third_client(transport_factory, invariants):
    async def scenario():
        relay = _relay()
        tx, ty, tz = transport_factory(), transport_factory(), transport_factory()
        x = await relay.connect(tx)
        y = await relay.connect(ty)
        z = await relay.connect(tz)
        await _send(relay, x, type="join-room", roomId="r1")
        await _send(relay, y, type="join-room", roomId="r1")
        tx.clear()
        ty.clear()
        tz.clear()

        # F
        await _send(relay, z, type="join-room", roomId="r1")
        assert tz.sent == [{"type": "error", "message": "Room is full"}]
        assert tx.sent == [] and ty.sent == []
        assert relay.rooms.get("r1").members == [x, y]
        assert relay.registry.lookup(z).room_id is None
        invariants(relay)
    asyncio.run(scenario())


def test_offer_to_closed_peer_is_dropped_without_error(transport_factory):
    async def scenario():
        relay = _relay()
        tx, ty = transport_factory(), transport_factory()
        x = await relay.connect(tx)
        y = await relay.connect(ty)
        await _send(relay, x, type="join-room", roomId="r1")
        await _send(relay, y, type="join-room", roomId="r1")
        tx.clear()
        ty.closed = True

        await _send(relay, x, type="offer", roomId="r1", offer={"sdp": "x"})
        assert tx.sent == []
        assert ty.sent[-1]["type"] != "offer"
    asyncio.run(scenario())


def test_send_failure_is_swallowed(transport_factory):
    async def scenario():
        relay = _relay()
        tx, ty = transport_factory(), transport_factory()
        x = await relay.connect(tx)
        y = await relay.connect(ty)
        await _send(relay, x, type="join-room", roomId="r1")
        await _send(relay, y, type="join-room", roomId="r1")
        tx.clear()
        ty.fail_send = True

        await _send(relay, x, type="ice-candidate", roomId="r1", candidate={"c": 1})
        assert tx.sent == []
        assert await relay.send(y, {"type": "pong"}) is False
    asyncio.run(scenario())


def test_ice_candidate_before_peer_joins_is_dropped(transport_factory):
    async def scenario():
        relay = _relay()
        tx = transport_factory()
        x = await relay.connect(tx)
        await _send(relay, x, type="join-room", roomId="r1")
        tx.clear()
        await _send(relay, x, type="ice-candidate", roomId="r1", candidate={"c": 1})
        await _send(relay, x, type="ice-candidate", roomId="nowhere", candidate={"c": 2})
        assert tx.sent == []
    asyncio.run(scenario())


def test_outsider_cannot_inject_into_room(transport_factory):
    async def scenario():
        relay = _relay()
        tx, ty, tz = transport_factory(), transport_factory(), transport_factory()
        x = await relay.connect(tx)
        y = await relay.connect(ty)
        z = await relay.connect(tz)
        await _send(relay, x, type="join-room", roomId="r1")
        await _send(relay, y, type="join-room", roomId="r1")
        tx.clear()
        ty.clear()
        await _send(relay, z, type="offer", roomId="r1", offer={"sdp": "evil"})
        assert tx.sent == [] and ty.sent == []
    asyncio.run(scenario())


def test_ping_pong_and_heartbeat_ack(transport_factory):
    async def scenario():
        relay = _relay()
        t = transport_factory()
        conn_id = await relay.connect(t)
        t.clear()
        await _send(relay, conn_id, type="ping")
        assert t.types() == ["pong"]
        await _send(relay, conn_id, type="heartbeat-ack")
        assert t.types() == ["pong"]
    asyncio.run(scenario())


def test_errors_leave_connection_usable(transport_factory):
    async def scenario():
        relay = _relay()
        t = transport_factory()
        conn_id = await relay.connect(t)
        t.clear()
        await relay.handle_frame(conn_id, "{not json")
        await _send(relay, conn_id, type="teleport")
        await _send(relay, conn_id, type="join-room")
        await _send(relay, conn_id, type="join-room", roomId="  ")
        assert t.sent == [
            {"type": "error", "message": "Invalid JSON"},
            {"type": "error", "message": "Unknown message type: teleport"},
            {"type": "error", "message": "Room ID is required"},
            {"type": "error", "message": "Room ID is required"},
        ]
        assert len(relay.rooms) == 0
        await _send(relay, conn_id, type="join-room", roomId="ok")
        assert t.sent[-1]["type"] == "room-joined"
    asyncio.run(scenario())


def test_frame_too_large(transport_factory):
    async def scenario():
        relay = _relay(max_frame_size=64)
        t = transport_factory()
        conn_id = await relay.connect(t)
        t.clear()
        await _send(relay, conn_id, type="join-room", roomId="x" * 100)
        assert t.sent == [{"type": "error", "message": "Frame too large"}]
        assert len(relay.rooms) == 0
    asyncio.run(scenario())


def test_auth_without_directory_is_an_error(transport_factory):
    async def scenario():
        relay = _relay()
        t = transport_factory()
        conn_id = await relay.connect(t)
        t.clear()
        await _send(relay, conn_id, type="auth", userId=1)
        assert t.sent == [{"type": "error", "message": "Authentication is not available"}]
        assert relay.registry.lookup(conn_id).user_id is None
    asyncio.run(scenario())


def test_leave_without_room_is_noop(transport_factory):
    async def scenario():
        relay = _relay()
        t = transport_factory()
        conn_id = await relay.connect(t)
        t.clear()
        await _send(relay, conn_id, type="leave-room")
        await _send(relay, conn_id, type="leave-room", roomId="r9")
        assert t.sent == []
    asyncio.run(scenario())


def test_disconnect_is_idempotent_and_notifies_once(transport_factory, invariants):
    async def scenario():
        relay = _relay()
        tx, ty = transport_factory(), transport_factory()
        x = await relay.connect(tx)
        y = await relay.connect(ty)
        await _send(relay, x, type="join-room", roomId="r1")
        await _send(relay, y, type="join-room", roomId="r1")
        tx.clear()
        await relay.disconnect(y)
        await relay.disconnect(y)
        assert tx.of_type("user-left") == [{"type": "user-left", "userId": y, "participantCount": 1}]
        assert y not in relay.registry
        await relay.disconnect(x)
        assert len(relay.rooms) == 0
        assert len(relay.registry) == 0
        invariants(relay)
    asyncio.run(scenario())


def test_frames_from_disconnected_connection_are_ignored(transport_factory):
    async def scenario():
        relay = _relay()
        t = transport_factory()
        conn_id = await relay.connect(t)
        await relay.disconnect(conn_id)
        t.clear()
        await _send(relay, conn_id, type="join-room", roomId="r1")
        assert len(relay.rooms) == 0
        assert t.sent == []
    asyncio.run(scenario())


def test_shutdown_broadcasts_and_closes(transport_factory):
    async def scenario():
        relay = _relay()
        await relay.start()
        tx, ty = transport_factory(), transport_factory()
        x = await relay.connect(tx)
        y = await relay.connect(ty)
        await _send(relay, x, type="join-room", roomId="r1")
        await _send(relay, y, type="join-room", roomId="r1")
        tx.clear()
        ty.clear()
        await relay.shutdown()
        for t in (tx, ty):
            assert t.types() == ["server-shutdown"]
            assert t.closed and t.close_code == 1001
        assert len(relay.registry) == 0
        assert len(relay.rooms) == 0
        assert not relay.running
        # late disconnects from the transport layer are no-ops
        await relay.disconnect(x)
        assert tx.types() == ["server-shutdown"]
    asyncio.run(scenario())


def test_stats(transport_factory):
    async def scenario():
        relay = _relay()
        a = await relay.connect(transport_factory())
        b = await relay.connect(transport_factory())
        await relay.connect(transport_factory())
        await _send(relay, a, type="join-room", roomId="r1")
        await _send(relay, b, type="join-room", roomId="r2")
        stats = relay.stats()
        assert stats["connectionCount"] == 3
        assert stats["roomCount"] == 2
        assert stats["rooms"] == {"waiting": 2, "paired": 0}
        assert stats["authenticatedCount"] == 0
    asyncio.run(scenario())


def test_frame_limit_counts_bytes_not_characters(transport_factory):
    async def scenario():
        relay = _relay(max_frame_size=64)
        t = transport_factory()
        conn_id = await relay.connect(t)
        t.clear()
        ascii_frame = '{"type": "join-room", "roomId": "%s"}' % ("e" * 20)
        wide_frame = '{"type": "join-room", "roomId": "%s"}' % ("é" * 20)
        assert len(ascii_frame) == len(wide_frame) <= 64
        await relay.handle_frame(conn_id, wide_frame)
        assert t.sent == [{"type": "error", "message": "Frame too large"}]
        await relay.handle_frame(conn_id, ascii_frame)
        assert t.sent[-1] == {"type": "room-joined", "roomId": "e" * 20, "participantCount": 1}
    asyncio.run(scenario())
