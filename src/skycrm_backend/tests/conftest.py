"""Pytest configuration and fixtures for skycrm_backend tests."""

from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional

import jwt
import pytest

from skycrm_backend.websocket.connection_manager import Connection, ConnectionManager
from skycrm_backend.websocket.rooms import RoomRegistry
from skycrm_types.auth import Claims

TEST_SECRET = "test-secret-key-with-at-least-32-bytes!!"


# ============================================================================
# Fake WebSocket
# ============================================================================


class FakeWebSocket:
    """Records what the hub sends instead of talking to a real client."""

    def __init__(self, fail_on_send: bool = False):
        self.accepted = False
        self.closed_with: Optional[int] = None
        self.sent: List[dict] = []
        self.fail_on_send = fail_on_send

    async def accept(self):
        self.accepted = True

    async def send_json(self, data: Any):
        if self.fail_on_send:
            raise RuntimeError("socket is gone")
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: Optional[str] = None):
        self.closed_with = code

    def events(self, event_type: Optional[str] = None) -> List[dict]:
        if event_type is None:
            return list(self.sent)
        return [message for message in self.sent if message.get("type") == event_type]


def make_claims(user_id: str = "u1", tenant_id: str = "t1", role: str = "user") -> Claims:
    return Claims(user_id=user_id, tenant_id=tenant_id, role=role)


def make_token(secret: str = TEST_SECRET, expires_in: int = 3600, **claims) -> str:
    payload = {"userId": "u1", "tenantId": "t1", "role": "admin"}
    payload.update(claims)
    payload["exp"] = datetime.now(timezone.utc) + timedelta(seconds=expires_in)
    return jwt.encode(payload, secret, algorithm="HS256")


def detached_connection(user_id: str = "u1", tenant_id: str = "t1") -> Connection:
    """A connection object that is not registered with any hub."""
    return Connection(websocket=FakeWebSocket(), claims=make_claims(user_id, tenant_id))


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def registry():
    return RoomRegistry(max_rooms_per_connection=3, max_room_name_length=32)


@pytest.fixture
async def hub():
    manager = ConnectionManager(
        registry=RoomRegistry(max_rooms_per_connection=3, max_room_name_length=32),
        max_total_connections=10,
        max_connections_per_user=3,
        send_timeout=1.0,
        send_queue_size=16,
    )
    await manager.start()
    yield manager
    await manager.stop()


@pytest.fixture
def connect(hub):
    """Admit a fake client and return (connection, websocket)."""

    async def _connect(user_id: str = "u1", tenant_id: str = "t1", role: str = "user"):
        websocket = FakeWebSocket()
        connection = await hub.connect(websocket, make_claims(user_id, tenant_id, role))
        return connection, websocket

    return _connect
