"""
Error handling package for the SkyCRM realtime layer.

Usage:
    from skycrm_backend.exceptions import (
        AuthenticationError,
        ConnectionLimitError,
        ReservedRoomError,
    )
"""

from skycrm_backend.exceptions.exceptions import (
    # Base exception
    SkyCRMException,

    # Authentication
    AuthenticationError,
    MissingCredentialError,

    # Connection
    ConnectionLimitError,
    ServiceUnavailableError,

    # Rooms
    RoomError,
    ReservedRoomError,
    InvalidRoomError,
)


__all__ = [
    "SkyCRMException",
    "AuthenticationError",
    "MissingCredentialError",
    "ConnectionLimitError",
    "ServiceUnavailableError",
    "RoomError",
    "ReservedRoomError",
    "InvalidRoomError",
]
