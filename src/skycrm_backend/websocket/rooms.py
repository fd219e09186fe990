"""
Room membership for WebSocket connections.

A room is nothing more than the set of connections currently joined to it:
entries appear on first join and disappear with the last member, there is
no separate room record to create or delete.

Every connection sits in two implicit rooms for its whole lifetime:
``tenant-{tenant_id}`` and ``user-{user_id}``. Clients may additionally join
explicit rooms by name. Explicit rooms live in their own ``room:`` namespace
and are tenant-qualified (``room:{tenant_id}:{name}``), so no explicit room
id can equal an implicit one and the same name chosen by two tenants never
designates the same room. Tenant ids never contain ``:``. The implicit
prefixes are reserved for client room names.
"""

import logging
from typing import TYPE_CHECKING, Dict, FrozenSet, Optional, Set

from skycrm_backend.exceptions import InvalidRoomError, ReservedRoomError
from skycrm_backend.settings import settings

if TYPE_CHECKING:
    from skycrm_backend.websocket.connection_manager import Connection

logger = logging.getLogger(__name__)

TENANT_ROOM_PREFIX = "tenant-"
USER_ROOM_PREFIX = "user-"
EXPLICIT_ROOM_PREFIX = "room:"
RESERVED_PREFIXES = (TENANT_ROOM_PREFIX, USER_ROOM_PREFIX)


def tenant_room(tenant_id: str) -> str:
    return f"{TENANT_ROOM_PREFIX}{tenant_id}"


def user_room(user_id: str) -> str:
    return f"{USER_ROOM_PREFIX}{user_id}"


def explicit_room(tenant_id: str, name: str) -> str:
    return f"{EXPLICIT_ROOM_PREFIX}{tenant_id}:{name}"


def is_reserved(name: str) -> bool:
    return name.startswith(RESERVED_PREFIXES)


def resolve_room(connection: "Connection", name: str) -> str:
    """
    Map a room name used by a client to the room id it designates.

    The connection's own tenant and user rooms are addressed by their full
    name, anything else is the connection's tenant-qualified explicit room.
    """
    if name in (tenant_room(connection.tenant_id), user_room(connection.user_id)):
        return name
    return explicit_room(connection.tenant_id, name)


class RoomRegistry:
    """
    Room id -> connection ids table.

    Only the hub mutates it: on admission, on explicit join/leave requests
    and on disconnect. Everything else reads membership through ``members``.
    """

    def __init__(
        self,
        max_rooms_per_connection: Optional[int] = None,
        max_room_name_length: Optional[int] = None,
    ):
        self._rooms: Dict[str, Set[str]] = {}
        self.max_rooms_per_connection = (
            max_rooms_per_connection
            if max_rooms_per_connection is not None
            else settings.WS_MAX_ROOMS_PER_CONNECTION
        )
        self.max_room_name_length = (
            max_room_name_length
            if max_room_name_length is not None
            else settings.WS_MAX_ROOM_NAME_LENGTH
        )

    def add_connection(self, connection: "Connection"):
        """Place a freshly admitted connection in its tenant and user rooms."""
        self.join(connection, tenant_room(connection.tenant_id))
        self.join(connection, user_room(connection.user_id))

    def remove_connection(self, connection: "Connection"):
        """Release every membership of a connection."""
        for room in list(connection.rooms):
            self._discard(room, connection.connection_id)
        connection.rooms.clear()

    def join(self, connection: "Connection", room: str) -> bool:
        """
        Add a connection to a room.

        Returns:
            True if membership changed, False if it was already a member
        """
        if room in connection.rooms:
            return False

        self._rooms.setdefault(room, set()).add(connection.connection_id)
        connection.rooms.add(room)
        logger.debug(f"Connection {connection.connection_id} joined {room}")
        return True

    def leave(self, connection: "Connection", room: str) -> bool:
        """
        Remove a connection from a room.

        The connection's implicit rooms cannot be left.

        Returns:
            True if membership changed, False otherwise
        """
        if room in self.implicit_rooms(connection):
            return False
        if room not in connection.rooms:
            return False

        connection.rooms.discard(room)
        self._discard(room, connection.connection_id)
        logger.debug(f"Connection {connection.connection_id} left {room}")
        return True

    def join_explicit(self, connection: "Connection", name: str) -> bool:
        """
        Join an explicit room requested by the client.

        Raises:
            ReservedRoomError: If the name uses a tenant/user room prefix
            InvalidRoomError: If the name is invalid or the room limit is reached
        """
        self._validate_name(name)

        room = explicit_room(connection.tenant_id, name)
        if room in connection.rooms:
            return False

        if self.explicit_room_count(connection) >= self.max_rooms_per_connection:
            raise InvalidRoomError(
                name,
                f"Too many rooms (max {self.max_rooms_per_connection})",
            )

        return self.join(connection, room)

    def leave_explicit(self, connection: "Connection", name: str) -> bool:
        """
        Leave an explicit room. Leaving a room that was never joined is a no-op.

        Raises:
            ReservedRoomError: If the name designates a tenant/user room
            InvalidRoomError: If the name is invalid
        """
        self._validate_name(name)
        return self.leave(connection, explicit_room(connection.tenant_id, name))

    def members(self, room: str) -> FrozenSet[str]:
        """Snapshot of the connection ids currently in a room."""
        return frozenset(self._rooms.get(room, ()))

    def implicit_rooms(self, connection: "Connection") -> Set[str]:
        return {tenant_room(connection.tenant_id), user_room(connection.user_id)}

    def explicit_room_count(self, connection: "Connection") -> int:
        return len(connection.rooms - self.implicit_rooms(connection))

    def room_count(self) -> int:
        return len(self._rooms)

    def clear(self):
        self._rooms.clear()

    def __contains__(self, room: str) -> bool:
        return room in self._rooms

    def _validate_name(self, name: str):
        if not isinstance(name, str) or not name.strip():
            raise InvalidRoomError(str(name), "Room name must not be empty")
        if len(name) > self.max_room_name_length:
            raise InvalidRoomError(
                name,
                f"Room name too long (max {self.max_room_name_length} characters)",
            )
        if is_reserved(name):
            raise ReservedRoomError(name)

    def _discard(self, room: str, connection_id: str):
        members = self._rooms.get(room)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self._rooms[room]
