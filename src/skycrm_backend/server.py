from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from skycrm_backend.settings import settings
from skycrm_backend.websocket.auth import JWTTokenVerifier, TokenVerifier
from skycrm_backend.websocket.broadcast import WebSocketBroadcast
from skycrm_backend.websocket.connection_manager import ConnectionManager
from skycrm_backend.websocket.notifications import NotificationService
from skycrm_backend.websocket.pubsub import RedisPubSub
from skycrm_backend.websocket.router import ws_router

logger = logging.getLogger(__name__)


def build_hub() -> ConnectionManager:
    """Create the connection manager, bridged through Redis when configured."""
    pubsub = RedisPubSub(settings.REDIS_URL) if settings.REDIS_URL else None
    return ConnectionManager(pubsub=pubsub)


def create_app(
    verifier: Optional[TokenVerifier] = None,
    hub: Optional[ConnectionManager] = None,
) -> FastAPI:
    """
    Build the application.

    The hub is created (unless given) and started in the lifespan, attached
    to the broadcast service for the duration of the process and stopped on
    shutdown. Before startup and after shutdown every push is a no-op.
    """
    broadcast = WebSocketBroadcast()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        active_hub = hub or build_hub()
        await active_hub.start()
        app.state.hub = active_hub
        broadcast.attach(active_hub)
        logger.info("Realtime hub ready")

        yield

        broadcast.detach()
        await active_hub.stop()

    app = FastAPI(lifespan=lifespan)
    app.state.hub = None
    app.state.verifier = verifier or JWTTokenVerifier()
    app.state.broadcast = broadcast
    app.state.notifications = NotificationService(broadcast)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.CLIENT_URL],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(ws_router)

    @app.get("/", response_class=PlainTextResponse)
    def root():
        return "SkyCRM Backend Running"

    @app.get("/ws/metrics")
    def websocket_metrics(request: Request):
        active_hub = request.app.state.hub
        if active_hub is None:
            return {"running": False}
        return active_hub.get_metrics()

    return app


def get_broadcast(request: Request) -> WebSocketBroadcast:
    """FastAPI dependency giving endpoints access to server-side pushes."""
    return request.app.state.broadcast


def get_notifications(request: Request) -> NotificationService:
    """FastAPI dependency giving endpoints access to domain notifications."""
    return request.app.state.notifications


app = create_app()
