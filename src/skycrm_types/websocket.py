"""
WebSocket event DTOs for the SkyCRM realtime layer.

Events follow a namespaced pattern: "namespace:action".
Client intents use the present tense ("task:update"), the broadcast
notice relayed to the rest of the tenant uses the past tense ("task:updated").

Namespaces:
- system: Core WebSocket operations (connected, ping, pong, error)
- room: Explicit room membership (join, leave)
- task / customer / invoice / support: Domain update relays
- typing: Typing indicators scoped to a room
- notification: Server-initiated notifications
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Literal, Optional, Any, Union
from datetime import datetime, timezone


# =============================================================================
# Event names
# =============================================================================

# Client intent -> broadcast notice, delivered to the sender's tenant room
RELAY_EVENTS = {
    "task:update": "task:updated",
    "customer:update": "customer:updated",
    "support:new": "support:created",
    "invoice:update": "invoice:updated",
}

# Typing intents are delivered to the room named in the payload
TYPING_EVENTS = {
    "typing:start": "typing:started",
    "typing:stop": "typing:stopped",
}

NOTIFICATION_EVENT = "notification"


# =============================================================================
# Base Event Types
# =============================================================================

class WSEventBase(BaseModel):
    """Base class for all WebSocket events."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    type: str

    def to_wire(self) -> dict:
        """Serialize the event the way clients receive it."""
        return self.model_dump(mode="json", by_alias=True)


# =============================================================================
# Client -> Server Events
# =============================================================================

class WSRelay(WSEventBase):
    """Domain update relayed to the rest of the tenant. Payload is opaque."""
    data: Any = Field(None, description="Opaque domain payload, relayed as-is")


class WSRoomPayload(BaseModel):
    """Payload of every client event scoped to a room."""
    room: str = Field(..., description="Room name as the client knows it, e.g. 'invoice-42'")


class WSTypingStart(WSEventBase):
    """User started typing in a room."""
    type: Literal["typing:start"] = "typing:start"
    data: WSRoomPayload


class WSTypingStop(WSEventBase):
    """User stopped typing in a room."""
    type: Literal["typing:stop"] = "typing:stop"
    data: WSRoomPayload


class WSRoomJoin(WSEventBase):
    """Join an explicit room."""
    type: Literal["room:join"] = "room:join"
    data: WSRoomPayload


class WSRoomLeave(WSEventBase):
    """Leave an explicit room."""
    type: Literal["room:leave"] = "room:leave"
    data: WSRoomPayload


class WSPing(WSEventBase):
    """Keep-alive ping from client."""
    type: Literal["system:ping"] = "system:ping"


# =============================================================================
# Server -> Client Events
# =============================================================================

class WSBroadcast(WSEventBase):
    """Envelope for relayed and server-pushed events."""
    data: Any = None


class WSTypingNotice(BaseModel):
    """Payload of typing:started / typing:stopped."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    user_id: str
    room: str


class Notification(BaseModel):
    """Structured notification delivered under the "notification" event."""
    type: str = Field(..., description="Domain of the notification: task, customer, invoice, ...")
    title: str
    message: str
    data: Any = None


class WSRoomJoined(WSEventBase):
    """Confirmation of a successful explicit join."""
    type: Literal["room:joined"] = "room:joined"
    room: str


class WSRoomLeft(WSEventBase):
    """Confirmation of a successful explicit leave."""
    type: Literal["room:left"] = "room:left"
    room: str


class WSRoomError(WSEventBase):
    """Join or leave refused for a specific room."""
    type: Literal["room:error"] = "room:error"
    room: str
    reason: str


class WSPong(WSEventBase):
    """Keep-alive pong response."""
    type: Literal["system:pong"] = "system:pong"
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class WSError(WSEventBase):
    """General error event."""
    type: Literal["system:error"] = "system:error"
    code: str = Field(..., description="Error code")
    message: str = Field(..., description="Human-readable error message")


class WSConnected(WSEventBase):
    """Connection established confirmation."""
    type: Literal["system:connected"] = "system:connected"
    user_id: str
    tenant_id: str
    role: str
    connection_id: str


# =============================================================================
# Union Types for Parsing
# =============================================================================

# All events that can be sent from client to server
ClientEvent = Union[
    WSRelay,
    WSTypingStart,
    WSTypingStop,
    WSRoomJoin,
    WSRoomLeave,
    WSPing,
]


CLIENT_EVENT_TYPES = {
    **{name: WSRelay for name in RELAY_EVENTS},
    "typing:start": WSTypingStart,
    "typing:stop": WSTypingStop,
    "room:join": WSRoomJoin,
    "room:leave": WSRoomLeave,
    "system:ping": WSPing,
}


def parse_client_event(data: Any) -> Optional[ClientEvent]:
    """
    Parse incoming client event data into a typed event object.

    Args:
        data: Decoded JSON frame from the client

    Returns:
        Parsed event object or None if the frame is not a known, valid event
    """
    if not isinstance(data, dict):
        return None

    event_type = data.get("type")
    if not isinstance(event_type, str) or event_type not in CLIENT_EVENT_TYPES:
        return None

    event_class = CLIENT_EVENT_TYPES[event_type]
    try:
        return event_class.model_validate(data)
    except Exception:
        return None
