"""
WebSocket Connection Manager.

The hub of the realtime layer: admits authenticated connections, keeps the
room membership table and fans events out to room members.

Delivery is fire-and-forget. Each connection owns a FIFO outbound queue
drained by a dedicated writer task, so fan-out is a synchronous enqueue and
every recipient sees events from one sender in emission order. Anything that
cannot be delivered (hub stopped, empty room, connection gone, queue full,
send failure) is dropped without raising.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from fastapi import WebSocket

from skycrm_backend.exceptions import ConnectionLimitError, ServiceUnavailableError
from skycrm_backend.settings import settings
from skycrm_backend.websocket.pubsub import RedisPubSub
from skycrm_backend.websocket.rooms import RoomRegistry, tenant_room, user_room
from skycrm_types.auth import Claims
from skycrm_types.websocket import WSBroadcast

logger = logging.getLogger(__name__)


class WebSocketMetrics:
    """
    Counters for the realtime hub, exposed through ``GET /ws/metrics``.

    Tracks admissions, delivery outcomes per recipient, relays and refused
    room requests.
    """

    def __init__(self):
        self.total_connections = 0
        self.total_disconnections = 0
        self.total_connection_limit_hits = 0
        self.total_messages_received = 0
        self.total_relays = 0
        self.total_room_refusals = 0
        self.total_messages_sent = 0
        self.total_messages_dropped = 0
        self.total_send_errors = 0
        self.total_send_timeouts = 0

    def connection_opened(self):
        """Track a reserved connection slot."""
        self.total_connections += 1

    def connection_closed(self):
        """Track a released connection slot."""
        self.total_disconnections += 1

    def connection_limit_hit(self):
        self.total_connection_limit_hits += 1

    def message_received(self):
        self.total_messages_received += 1

    def relay_forwarded(self):
        """Track a client update re-broadcast to its tenant."""
        self.total_relays += 1

    def room_request_refused(self):
        """Track a room:join / room:leave answered with room:error."""
        self.total_room_refusals += 1

    def message_sent(self):
        self.total_messages_sent += 1

    def message_dropped(self):
        """Track an event dropped because the recipient queue was full."""
        self.total_messages_dropped += 1

    def send_error(self):
        self.total_send_errors += 1

    def send_timeout(self):
        self.total_send_timeouts += 1

    def get_metrics(self) -> dict:
        """Get all counters as a dictionary."""
        attempted = self.total_messages_sent + self.total_send_errors + self.total_send_timeouts
        return {
            "total_connections": self.total_connections,
            "total_disconnections": self.total_disconnections,
            "active_connections": self.total_connections - self.total_disconnections,
            "total_connection_limit_hits": self.total_connection_limit_hits,
            "total_messages_received": self.total_messages_received,
            "total_relays": self.total_relays,
            "total_room_refusals": self.total_room_refusals,
            "total_messages_sent": self.total_messages_sent,
            "total_messages_dropped": self.total_messages_dropped,
            "total_send_errors": self.total_send_errors,
            "total_send_timeouts": self.total_send_timeouts,
            # Share of delivery attempts that did not reach the client
            "delivery_failure_rate": (
                (self.total_send_errors + self.total_send_timeouts) / attempted
            ) if attempted else 0.0,
        }


@dataclass(eq=False)
class Connection:
    """Represents an admitted WebSocket connection."""
    websocket: WebSocket
    claims: Claims
    connection_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    rooms: Set[str] = field(default_factory=set)
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    closed: bool = False
    queue: Optional[asyncio.Queue] = field(default=None, repr=False)
    writer: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def user_id(self) -> str:
        return self.claims.user_id

    @property
    def tenant_id(self) -> str:
        return self.claims.tenant_id

    @property
    def role(self) -> str:
        return self.claims.role


class ConnectionManager:
    """
    Manages WebSocket connections, room membership and event fan-out.

    Constructed once at startup and handed to both the WebSocket endpoint and
    the code issuing server-side pushes. Pushes made while the manager is not
    running are silently dropped.
    """

    def __init__(
        self,
        registry: Optional[RoomRegistry] = None,
        pubsub: Optional[RedisPubSub] = None,
        max_total_connections: Optional[int] = None,
        max_connections_per_user: Optional[int] = None,
        send_timeout: Optional[float] = None,
        send_queue_size: Optional[int] = None,
    ):
        self.registry = registry or RoomRegistry()
        self.pubsub = pubsub
        self.metrics = WebSocketMetrics()
        self.max_total_connections = (
            max_total_connections if max_total_connections is not None else settings.WS_MAX_TOTAL_CONNECTIONS
        )
        self.max_connections_per_user = (
            max_connections_per_user if max_connections_per_user is not None else settings.WS_MAX_CONNECTIONS_PER_USER
        )
        self.send_timeout = send_timeout if send_timeout is not None else settings.WS_SEND_TIMEOUT
        self.send_queue_size = send_queue_size if send_queue_size is not None else settings.WS_SEND_QUEUE_SIZE
        self._connections: Dict[str, Connection] = {}  # connection_id -> connection
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        """Start the manager and, when configured, the Redis bridge."""
        if self._running:
            return

        if self.pubsub is not None:
            self.pubsub.register_handler("connection_manager", self._handle_pubsub_message)
            await self.pubsub.start()

        self._running = True
        logger.info("ConnectionManager started")

    async def stop(self):
        """Stop the manager and close every connection."""
        logger.info("Stopping ConnectionManager...")
        self._running = False

        if self.pubsub is not None:
            self.pubsub.unregister_handler("connection_manager")
            await self.pubsub.stop()

        connections = list(self._connections.values())
        if connections:
            try:
                await asyncio.wait_for(
                    asyncio.gather(
                        *(self._close_connection_safe(conn) for conn in connections),
                        return_exceptions=True,
                    ),
                    timeout=3.0,
                )
            except asyncio.TimeoutError:
                logger.warning(f"Timeout closing {len(connections)} WebSocket connections")

        for conn in connections:
            await self.disconnect(conn)

        self.registry.clear()
        logger.info("ConnectionManager stopped")

    async def _close_connection_safe(self, conn: Connection):
        try:
            await asyncio.wait_for(conn.websocket.close(code=1001), timeout=1.0)
        except asyncio.TimeoutError:
            pass
        except Exception:
            pass

    async def connect(self, websocket: WebSocket, claims: Claims) -> Connection:
        """
        Admit an authenticated WebSocket connection.

        The slot is reserved (connection registered and joined to its tenant
        and user rooms) before the socket is accepted, so concurrent
        handshakes cannot overrun the limits. The reservation is released if
        accepting fails or the manager stops meanwhile.

        Args:
            websocket: The WebSocket connection
            claims: Verified identity claims

        Returns:
            Connection object

        Raises:
            ServiceUnavailableError: If the manager is not running
            ConnectionLimitError: If connection limits are exceeded
        """
        if not self._running:
            raise ServiceUnavailableError()

        total_connections = self.get_connection_count()
        if total_connections >= self.max_total_connections:
            logger.warning(f"Total connection limit reached: {total_connections}/{self.max_total_connections}")
            self.metrics.connection_limit_hit()
            raise ConnectionLimitError("Server connection limit reached")

        user_connections = len(self.registry.members(user_room(claims.user_id)))
        if user_connections >= self.max_connections_per_user:
            logger.warning(f"User {claims.user_id} connection limit reached: {user_connections}/{self.max_connections_per_user}")
            self.metrics.connection_limit_hit()
            raise ConnectionLimitError(f"Too many connections (max {self.max_connections_per_user})")

        connection = Connection(websocket=websocket, claims=claims)
        connection.queue = asyncio.Queue(maxsize=self.send_queue_size)
        self._connections[connection.connection_id] = connection
        self.registry.add_connection(connection)
        self.metrics.connection_opened()

        try:
            await websocket.accept()
        except BaseException:
            await self.disconnect(connection)
            raise

        if connection.closed or not self._running:
            # stop() ran while the socket was being accepted
            await self.disconnect(connection)
            raise ServiceUnavailableError()

        connection.writer = asyncio.create_task(self._write_loop(connection))

        logger.info(
            f"WebSocket connected: user={claims.user_id}, tenant={claims.tenant_id}, "
            f"user_connections={user_connections + 1}, total={self.get_connection_count()}"
        )

        return connection

    async def disconnect(self, connection: Connection):
        """
        Remove a connection: leave every room and drop pending deliveries.

        Safe to call more than once.
        """
        if connection.closed:
            return
        connection.closed = True

        self.registry.remove_connection(connection)
        self._connections.pop(connection.connection_id, None)

        if connection.writer is not None and connection.writer is not asyncio.current_task():
            connection.writer.cancel()
            try:
                await connection.writer
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.debug(f"Writer of connection {connection.connection_id} ended with {e}")

        if connection.queue is not None:
            while not connection.queue.empty():
                connection.queue.get_nowait()
                connection.queue.task_done()

        self.metrics.connection_closed()

        logger.info(f"WebSocket disconnected: user={connection.user_id}, connection={connection.connection_id}")

    def get_connection(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    # -------------------------------------------------------------------------
    # Delivery
    # -------------------------------------------------------------------------

    def emit(self, room: Optional[str], event: str, data: Any = None, exclude: Optional[str] = None) -> None:
        """
        Broadcast an event to the members of a room.

        Args:
            room: Room id, or None for every live connection
            event: Event name delivered to clients
            data: Event payload, opaque to the hub
            exclude: Connection id that must not receive the event (the sender)
        """
        if not self._running:
            logger.debug(f"ConnectionManager not running, dropping {event} for {room}")
            return

        try:
            message = WSBroadcast(type=event, data=data).to_wire()
        except Exception as e:
            logger.error(f"Dropping {event} for {room}: payload is not JSON serializable ({e})")
            return

        if self.pubsub is not None:
            self.pubsub.publish_nowait(room, {"message": message, "exclude": exclude})
            return

        self._deliver_local(room, message, exclude)

    def push_to_tenant(self, tenant_id: str, event: str, data: Any = None) -> None:
        """Deliver an event to every connection of a tenant."""
        self.emit(tenant_room(tenant_id), event, data)

    def push_to_user(self, user_id: str, event: str, data: Any = None) -> None:
        """Deliver an event to every connection (device) of a user."""
        self.emit(user_room(user_id), event, data)

    def push_to_all(self, event: str, data: Any = None) -> None:
        """Deliver an event to every live connection."""
        self.emit(None, event, data)

    def send_to_connection(self, connection: Connection, event: dict) -> bool:
        """
        Queue an already serialized event for a single connection.

        Returns:
            True if the event was queued
        """
        if connection.closed or connection.queue is None:
            return False

        try:
            connection.queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            logger.warning(f"Send queue full for connection {connection.connection_id}, dropping {event.get('type')}")
            self.metrics.message_dropped()
            return False

    def _deliver_local(self, room: Optional[str], message: dict, exclude: Optional[str] = None) -> int:
        """
        Queue a message for the local members of a room.

        Returns:
            Number of connections the message was queued for
        """
        if room is None:
            targets: List[str] = list(self._connections)
        else:
            targets = list(self.registry.members(room))

        delivered = 0
        for connection_id in targets:
            if connection_id == exclude:
                continue
            connection = self._connections.get(connection_id)
            if connection is None:
                continue
            if self.send_to_connection(connection, message):
                delivered += 1

        logger.debug(f"Broadcast {message.get('type')} to {room or 'all'}: {delivered}/{len(targets)} queued")
        return delivered

    async def _handle_pubsub_message(self, room: Optional[str], data: dict):
        """Deliver a message received through the Redis bridge."""
        message = data.get("message")
        if not isinstance(message, dict):
            logger.warning(f"Dropping malformed bridge message for {room}")
            return
        self._deliver_local(room, message, data.get("exclude"))

    async def _write_loop(self, connection: Connection):
        """Drain a connection's outbound queue in order."""
        while True:
            message = await connection.queue.get()
            try:
                await self._send_with_timeout(connection, message)
            finally:
                connection.queue.task_done()

    async def _send_with_timeout(self, conn: Connection, data: dict) -> bool:
        try:
            await asyncio.wait_for(conn.websocket.send_json(data), timeout=self.send_timeout)
            self.metrics.message_sent()
            return True
        except asyncio.TimeoutError:
            logger.warning(f"Send timeout to user {conn.user_id}")
            self.metrics.send_timeout()
            return False
        except Exception as e:
            logger.error(f"Failed to send to user {conn.user_id}: {e}")
            self.metrics.send_error()
            return False

    async def drain(self):
        """Wait until every queued event has been written out."""
        queues = [conn.queue for conn in self._connections.values() if conn.queue is not None]
        if queues:
            await asyncio.gather(*(queue.join() for queue in queues))

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    def get_connection_count(self) -> int:
        """Get total number of active connections."""
        return len(self._connections)

    def get_user_count(self) -> int:
        """Get number of unique connected users."""
        return len({conn.user_id for conn in self._connections.values()})

    def get_metrics(self) -> dict:
        """
        Get comprehensive WebSocket metrics.

        Returns:
            Dictionary with connection and message metrics
        """
        metrics = self.metrics.get_metrics()
        metrics.update({
            "current_connections": self.get_connection_count(),
            "current_users": self.get_user_count(),
            "rooms": self.registry.room_count(),
            "running": self._running,
        })
        return metrics
