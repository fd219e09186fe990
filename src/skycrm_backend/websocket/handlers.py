"""
WebSocket event handlers.

Handles incoming client events and dispatches appropriate actions.
Domain updates are relayed to the sender's tenant room, typing indicators
to the room named in their payload, always excluding the sender.
"""

import logging
from typing import Any

from skycrm_backend.exceptions import RoomError
from skycrm_backend.websocket.connection_manager import Connection, ConnectionManager
from skycrm_backend.websocket.rooms import resolve_room, tenant_room
from skycrm_types.websocket import (
    RELAY_EVENTS,
    TYPING_EVENTS,
    parse_client_event,
    WSRelay,
    WSTypingStart,
    WSTypingStop,
    WSRoomJoin,
    WSRoomLeave,
    WSPing,
    WSTypingNotice,
    WSRoomJoined,
    WSRoomLeft,
    WSRoomError,
    WSPong,
    WSError,
)

logger = logging.getLogger(__name__)


async def handle_client_message(hub: ConnectionManager, connection: Connection, raw_data: Any):
    """
    Handle an incoming message from a WebSocket client.

    Parses the event and dispatches to the appropriate handler.

    Args:
        hub: The connection manager owning the connection
        connection: The WebSocket connection
        raw_data: Decoded JSON frame from the client
    """
    hub.metrics.message_received()
    event = parse_client_event(raw_data)

    if event is None:
        event_type = raw_data.get("type", "missing") if isinstance(raw_data, dict) else "missing"
        hub.send_to_connection(connection, WSError(
            code="INVALID_EVENT",
            message=f"Unknown or invalid event type: {event_type}"
        ).to_wire())
        return

    try:
        if isinstance(event, WSRelay):
            relay(hub, connection, event.type, event.data)

        elif isinstance(event, (WSTypingStart, WSTypingStop)):
            handle_typing(hub, connection, event)

        elif isinstance(event, WSRoomJoin):
            handle_join(hub, connection, event)

        elif isinstance(event, WSRoomLeave):
            handle_leave(hub, connection, event)

        elif isinstance(event, WSPing):
            hub.send_to_connection(connection, WSPong().to_wire())

    except Exception as e:
        logger.error(f"Error handling event {event.type}: {e}")
        hub.send_to_connection(connection, WSError(
            code="HANDLER_ERROR",
            message="Event could not be processed"
        ).to_wire())


def relay(hub: ConnectionManager, connection: Connection, event_name: str, payload: Any) -> bool:
    """
    Relay a client update to the rest of the sender's tenant.

    ``task:update`` is re-broadcast as ``task:updated`` and so on. The payload
    is forwarded untouched.

    Returns:
        False if the event name has no relay mapping
    """
    broadcast_name = RELAY_EVENTS.get(event_name)
    if broadcast_name is None:
        return False

    hub.emit(
        tenant_room(connection.tenant_id),
        broadcast_name,
        payload,
        exclude=connection.connection_id,
    )
    hub.metrics.relay_forwarded()
    return True


def handle_typing(hub: ConnectionManager, connection: Connection, event):
    """
    Handle typing start/stop.

    The target room must be one the sender is in: its tenant or user room by
    full name, or one of its explicit rooms.
    """
    name = event.data.room
    room = resolve_room(connection, name)

    if room not in connection.rooms:
        if isinstance(event, WSTypingStart):
            hub.send_to_connection(connection, WSError(
                code="NOT_IN_ROOM",
                message=f"Not a member of room: {name}"
            ).to_wire())
        return

    notice = WSTypingNotice(user_id=connection.user_id, room=name)
    hub.emit(
        room,
        TYPING_EVENTS[event.type],
        notice.model_dump(by_alias=True),
        exclude=connection.connection_id,
    )


def handle_join(hub: ConnectionManager, connection: Connection, event: WSRoomJoin):
    """Handle an explicit room join. Joining twice is acknowledged like the first time."""
    room = event.data.room
    try:
        hub.registry.join_explicit(connection, room)
    except RoomError as e:
        logger.info(f"Room join refused for user {connection.user_id}: {e.error_code} {room!r}")
        hub.metrics.room_request_refused()
        hub.send_to_connection(connection, WSRoomError(room=room, reason=e.message).to_wire())
        return

    hub.send_to_connection(connection, WSRoomJoined(room=room).to_wire())


def handle_leave(hub: ConnectionManager, connection: Connection, event: WSRoomLeave):
    """Handle an explicit room leave. Leaving a room never joined is acknowledged too."""
    room = event.data.room
    try:
        hub.registry.leave_explicit(connection, room)
    except RoomError as e:
        hub.metrics.room_request_refused()
        hub.send_to_connection(connection, WSRoomError(room=room, reason=e.message).to_wire())
        return

    hub.send_to_connection(connection, WSRoomLeft(room=room).to_wire())
