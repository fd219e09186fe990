"""SkyCRM Types - Pydantic DTOs for the SkyCRM realtime layer."""

__version__ = "0.1.0"

from .auth import Claims
from .websocket import (
    NOTIFICATION_EVENT,
    RELAY_EVENTS,
    TYPING_EVENTS,
    Notification,
    parse_client_event,
)

__all__ = [
    "Claims",
    "NOTIFICATION_EVENT",
    "RELAY_EVENTS",
    "TYPING_EVENTS",
    "Notification",
    "parse_client_event",
]
