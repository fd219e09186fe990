"""
WebSocket Broadcast Service.

Provides an interface for REST API endpoints and background jobs to push
server-initiated events to WebSocket clients.

The service never couples its callers to the socket layer: when no hub is
attached, or the attached hub is not running, every push is a silent no-op.
"""

import logging
from typing import Any, Optional

from skycrm_backend.websocket.connection_manager import ConnectionManager

logger = logging.getLogger(__name__)


class WebSocketBroadcast:
    """
    Service for pushing events from the CRUD layer to WebSocket clients.

    Usage in API endpoints:
        from skycrm_backend.server import get_broadcast

        @router.put("/tasks/{id}")
        async def update_task(..., broadcast: WebSocketBroadcast = Depends(get_broadcast)):
            ...
            broadcast.push_to_tenant(tenant_id, "task:updated", task_data)
    """

    def __init__(self, hub: Optional[ConnectionManager] = None):
        self._hub = hub

    @property
    def hub(self) -> Optional[ConnectionManager]:
        return self._hub

    @property
    def available(self) -> bool:
        return self._hub is not None and self._hub.running

    def attach(self, hub: ConnectionManager):
        self._hub = hub

    def detach(self):
        self._hub = None

    def push_to_tenant(self, tenant_id: Any, event: str, data: Any = None):
        """
        Deliver an event to every connection of a tenant.

        Args:
            tenant_id: Tenant ID
            event: Event name (e.g., "notification")
            data: Event payload
        """
        if not self.available:
            logger.debug(f"Realtime layer unavailable, dropping {event} for tenant {tenant_id}")
            return
        self._hub.push_to_tenant(str(tenant_id), event, data)

    def push_to_user(self, user_id: Any, event: str, data: Any = None):
        """
        Deliver an event to every connection of a user (all devices).

        Args:
            user_id: User ID
            event: Event name
            data: Event payload
        """
        if not self.available:
            logger.debug(f"Realtime layer unavailable, dropping {event} for user {user_id}")
            return
        self._hub.push_to_user(str(user_id), event, data)

    def push_to_all(self, event: str, data: Any = None):
        """Deliver an event to every live connection, e.g. platform announcements."""
        if not self.available:
            logger.debug(f"Realtime layer unavailable, dropping {event} for all connections")
            return
        self._hub.push_to_all(event, data)
