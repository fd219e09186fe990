"""
WebSocket router and endpoint.

Provides the FastAPI WebSocket endpoint for real-time communication.
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from skycrm_backend.exceptions import (
    AuthenticationError,
    ConnectionLimitError,
    ServiceUnavailableError,
    SkyCRMException,
)
from skycrm_backend.websocket.auth import authenticate_websocket_token, extract_bearer_token
from skycrm_backend.websocket.handlers import handle_client_message
from skycrm_types.websocket import WSConnected, WSError

logger = logging.getLogger(__name__)

ws_router = APIRouter()

REJECTION_CODES = {
    AuthenticationError: "AUTH_FAILED",
    ConnectionLimitError: "CONNECTION_LIMIT",
    ServiceUnavailableError: "SERVICE_UNAVAILABLE",
}


async def _reject(websocket: WebSocket, error: SkyCRMException):
    """Tell the client why the attempt failed, then close without admitting it."""
    code = next(
        (name for exc_type, name in REJECTION_CODES.items() if isinstance(error, exc_type)),
        "INTERNAL_ERROR",
    )
    try:
        if websocket.application_state == WebSocketState.CONNECTING:
            await websocket.accept()
        await websocket.send_json(WSError(code=code, message=error.message).to_wire())
        await websocket.close(code=error.close_code, reason=error.message)
    except Exception:
        pass


@ws_router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: Optional[str] = Query(None, description="Bearer token for authentication"),
):
    """
    Main WebSocket endpoint for real-time communication.

    Authentication:
        Pass the bearer token as a query parameter or an Authorization header.
        Example: ws://localhost:8000/ws?token=<your_bearer_token>

    Connection Flow:
        1. Client connects with token
        2. Server validates token and accepts connection
        3. Server joins the connection to its tenant and user rooms
        4. Server sends system:connected with the identity it admitted
        5. Client/server exchange events

    Client -> Server Events:
        - task:update / customer:update / invoice:update / support:new
          {"type": "task:update", "data": {...}}
          relayed to the rest of the tenant as task:updated, customer:updated,
          invoice:updated, support:created

        - typing:start / typing:stop
          {"type": "typing:start", "data": {"room": "invoice-42"}}
          relayed to the room as typing:started / typing:stopped

        - room:join / room:leave
          {"type": "room:join", "data": {"room": "invoice-42"}}

        - system:ping
          {"type": "system:ping"}

    Server -> Client Events:
        - system:connected, system:pong, system:error
        - room:joined, room:left, room:error
        - relayed events: {"type": "task:updated", "data": {...}}
        - notification: {"type": "notification", "data": {"type", "title", "message", "data"}}
    """
    hub = websocket.app.state.hub
    verifier = websocket.app.state.verifier
    connection = None

    try:
        claims = await authenticate_websocket_token(extract_bearer_token(websocket, token), verifier)

        if hub is None:
            raise ServiceUnavailableError()
        connection = await hub.connect(websocket, claims)

        hub.send_to_connection(connection, WSConnected(
            user_id=claims.user_id,
            tenant_id=claims.tenant_id,
            role=claims.role,
            connection_id=connection.connection_id,
        ).to_wire())

        # Events of one connection are handled one at a time, in order
        while True:
            message = await websocket.receive()

            if message["type"] == "websocket.disconnect":
                logger.info(f"WebSocket disconnected: user={claims.user_id}")
                break

            if message["type"] != "websocket.receive":
                continue

            raw = message.get("text")
            if raw is None and message.get("bytes") is not None:
                raw = message["bytes"].decode("utf-8", errors="replace")
            if raw is None:
                continue

            try:
                data = json.loads(raw)
            except json.JSONDecodeError as e:
                logger.warning(f"WebSocket invalid JSON from user={claims.user_id}: {e}")
                hub.send_to_connection(connection, WSError(
                    code="INVALID_JSON",
                    message="Message must be valid JSON"
                ).to_wire())
                continue

            await handle_client_message(hub, connection, data)

    except (AuthenticationError, ConnectionLimitError, ServiceUnavailableError) as e:
        logger.warning(f"WebSocket connection rejected: {e.error_code}")
        await _reject(websocket, e)

    except WebSocketDisconnect:
        logger.info("WebSocket disconnected")

    except Exception as e:
        logger.error(f"WebSocket error: {e}")
        try:
            await websocket.close(code=1011, reason="Internal error")
        except Exception:
            pass

    finally:
        if connection:
            await hub.disconnect(connection)
