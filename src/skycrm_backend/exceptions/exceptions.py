"""
Exceptions raised by the realtime layer.

Every exception carries a stable error code (used in logs and in the
``system:error`` frames sent to clients) and, for errors that end a
connection attempt, the WebSocket close code to use.
"""

from typing import Optional


class SkyCRMException(Exception):
    """
    Base exception class for all SkyCRM realtime exceptions.

    Provides:
    - Unique error code
    - Client-safe message
    """

    default_error_code = "INTERNAL_001"
    default_message = "Internal error"
    close_code = 1011

    def __init__(
        self,
        detail: Optional[str] = None,
        error_code: Optional[str] = None,
    ):
        self.error_code = error_code or self.default_error_code
        self.detail = detail or self.default_message
        super().__init__(self.detail)

    @property
    def message(self) -> str:
        return self.detail


# ============================================================================
# AUTHENTICATION EXCEPTIONS
# ============================================================================


class AuthenticationError(SkyCRMException):
    """Bearer credential could not be verified.

    The message is intentionally the same for every failure reason.
    """

    default_error_code = "AUTH_002"
    default_message = "Authentication error"
    close_code = 4001


class MissingCredentialError(AuthenticationError):
    """Handshake did not carry a bearer credential."""

    default_error_code = "AUTH_001"


# ============================================================================
# CONNECTION EXCEPTIONS
# ============================================================================


class ConnectionLimitError(SkyCRMException):
    """Raised when connection limits are exceeded."""

    default_error_code = "CONN_001"
    default_message = "Connection limit reached"
    close_code = 4008


class ServiceUnavailableError(SkyCRMException):
    """Hub is not running (not started yet, or shutting down)."""

    default_error_code = "CONN_002"
    default_message = "Realtime service unavailable"
    close_code = 1013


# ============================================================================
# ROOM EXCEPTIONS
# ============================================================================


class RoomError(SkyCRMException):
    """Explicit room join refused."""

    default_error_code = "ROOM_000"
    default_message = "Room request refused"

    def __init__(self, room: str, detail: Optional[str] = None, **kwargs):
        self.room = room
        super().__init__(detail=detail, **kwargs)


class ReservedRoomError(RoomError):
    """Room name uses a prefix reserved for tenant and user rooms."""

    default_error_code = "ROOM_001"
    default_message = "Room name is reserved"


class InvalidRoomError(RoomError):
    """Room name is empty, too long, or the connection holds too many rooms."""

    default_error_code = "ROOM_002"
    default_message = "Invalid room name"
