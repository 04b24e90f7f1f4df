"""
Shared fixtures: throwaway SQLite database, fake transports, invariant checks.
"""
import os
import tempfile

import pytest

# Must be set before duolink.core.config is imported anywhere
os.environ.setdefault(
    "DATABASE_PATH",
    os.path.join(tempfile.mkdtemp(prefix="duolink_test_"), "duolink.db"),
)
os.environ.setdefault("HEARTBEAT_INTERVAL", "0")


class FakeTransport:
    """In-memory Transport that records every frame sent to it."""

    def __init__(self) -> None:
        self.sent = []
        self.closed = False
        self.close_code = None
        self.fail_send = False

    @property
    def is_open(self) -> bool:
        return not self.closed

    async def send(self, obj) -> None:
        if self.fail_send:
            raise ConnectionError("broken pipe")
        self.sent.append(obj)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed = True
        self.close_code = code

    def types(self):
        return [m["type"] for m in self.sent]

    def of_type(self, msg_type):
        return [m for m in self.sent if m["type"] == msg_type]

    def clear(self) -> None:
        self.sent.clear()


@pytest.fixture
def transport_factory():
    return FakeTransport


def check_invariants(relay_or_registry, rooms=None) -> None:
    """Assert the connection <-> room membership invariants."""
    if rooms is None:
        registry, rooms = relay_or_registry.registry, relay_or_registry.rooms
    else:
        registry = relay_or_registry
    for room in rooms.snapshot():
        assert 1 <= room["participantCount"] <= 2
        for member in room["members"]:
            conn = registry.lookup(member)
            assert conn is not None
            assert conn.room_id == room["roomId"]
    for conn in registry.all():
        if conn.room_id is not None:
            room = rooms.get(conn.room_id)
            assert room is not None
            assert conn.id in room.members


@pytest.fixture
def invariants():
    return check_invariants


@pytest.fixture
def clean_db():
    """Fresh schema for tests that touch the user directory."""
    from duolink.core.memory.db import engine, init_db
    from duolink.core.memory.models import Base
    Base.metadata.drop_all(bind=engine)
    init_db()
    yield engine
