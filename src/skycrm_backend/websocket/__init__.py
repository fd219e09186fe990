"""
WebSocket package for the SkyCRM realtime layer.

This package provides:
- Bearer token authentication at the connection gate
- Room membership (tenant room, user room, explicit rooms)
- Relay of client updates to the rest of the tenant, sender excluded
- Server-initiated pushes and domain notifications for the CRUD layer
- Optional Redis pub/sub bridge for multi-instance deployments
"""

from skycrm_backend.websocket.connection_manager import Connection, ConnectionManager, WebSocketMetrics
from skycrm_backend.websocket.broadcast import WebSocketBroadcast
from skycrm_backend.websocket.notifications import NotificationService
from skycrm_backend.websocket.rooms import RoomRegistry

__all__ = [
    "Connection",
    "ConnectionManager",
    "WebSocketMetrics",
    "WebSocketBroadcast",
    "NotificationService",
    "RoomRegistry",
]
