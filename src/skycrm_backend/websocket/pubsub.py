"""
Redis Pub/Sub bridge for multi-instance WebSocket fan-out.

When several backend instances run behind a load balancer, a push issued on
one instance must reach connections held by the others. With the bridge
enabled the hub publishes every room emission to Redis instead of delivering
it directly; every instance (the publishing one included) receives it from
its pattern subscription and delivers to its local members.

Without ``REDIS_URL`` the bridge is not created and the hub delivers locally.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Callable, Awaitable, Optional, Any

import redis.asyncio as aioredis

from skycrm_backend.settings import settings

logger = logging.getLogger(__name__)

# Pub/Sub channel prefix, followed by the room id
CHANNEL_PREFIX = "ws:broadcast:"
# Channel suffix used for system-wide pushes
ALL_CONNECTIONS = "__all__"


@dataclass
class RawPubSubMessage:
    """Raw message received from Redis pub/sub."""
    channel: Any  # Full channel name with prefix
    data: Any  # Raw message data
    message_type: str  # Redis message type (e.g., "pmessage", "psubscribe")


@dataclass
class ParsedPubSubMessage:
    """Parsed and validated pub/sub message ready for handling."""
    room: Optional[str]  # Room id, None for system-wide pushes
    data: dict  # Parsed JSON data


def channel_for(room: Optional[str]) -> str:
    return f"{CHANNEL_PREFIX}{room if room is not None else ALL_CONNECTIONS}"


def parse_pubsub_message(raw: RawPubSubMessage) -> Optional[ParsedPubSubMessage]:
    """
    Parse and validate a raw pub/sub message.

    This function handles:
    - Filtering subscribe confirmations
    - Decoding bytes to strings
    - Removing channel prefix
    - Parsing JSON data

    Args:
        raw: Raw message from Redis pub/sub

    Returns:
        ParsedPubSubMessage if valid, None if should be skipped
    """
    if raw.message_type not in ("message", "pmessage"):
        return None

    channel = raw.channel
    if isinstance(channel, bytes):
        channel = channel.decode("utf-8")

    if not isinstance(channel, str) or not channel.startswith(CHANNEL_PREFIX):
        return None

    room = channel[len(CHANNEL_PREFIX):]
    if room == ALL_CONNECTIONS:
        room = None

    data = raw.data
    if isinstance(data, bytes):
        data = data.decode("utf-8")

    try:
        parsed_data = json.loads(data)
    except (TypeError, json.JSONDecodeError) as e:
        logger.error(f"Invalid JSON in pubsub message: {e}")
        return None

    if not isinstance(parsed_data, dict):
        logger.error("Invalid pubsub message: payload is not an object")
        return None

    return ParsedPubSubMessage(room=room, data=parsed_data)


class RedisPubSub:
    """
    Redis Pub/Sub manager for WebSocket event distribution.

    Publishing is fire-and-forget: ``publish_nowait`` queues the message and a
    single publisher task sends queued messages in order.

    Example:
        async def deliver(room: Optional[str], data: dict):
            ...

        bridge = RedisPubSub(redis_url="redis://localhost:6379/0")
        bridge.register_handler("hub", deliver)
        await bridge.start()
    """

    def __init__(self, redis_url: Optional[str] = None, client: Optional[aioredis.Redis] = None):
        self._redis_url = redis_url or settings.REDIS_URL
        self._client = client
        self._pubsub = None
        self._listener_task: Optional[asyncio.Task] = None
        self._publisher_task: Optional[asyncio.Task] = None
        self._outbox: Optional[asyncio.Queue] = None
        self._handlers: dict[str, Callable[[Optional[str], dict], Awaitable[None]]] = {}
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def register_handler(self, name: str, handler: Callable[[Optional[str], dict], Awaitable[None]]):
        """
        Register a message handler.

        Args:
            name: Unique name for this handler (for logging/debugging)
            handler: Async callback called with (room, data)
        """
        self._handlers[name] = handler
        logger.info(f"Registered pubsub handler: {name}")

    def unregister_handler(self, name: str):
        if name in self._handlers:
            del self._handlers[name]
            logger.info(f"Unregistered pubsub handler: {name}")

    async def start(self):
        """Connect, subscribe to every broadcast channel and start the loops."""
        if self._running:
            logger.warning("PubSub bridge already running")
            return

        if self._client is None:
            self._client = aioredis.from_url(self._redis_url, decode_responses=True)

        self._pubsub = self._client.pubsub()
        await self._pubsub.psubscribe(f"{CHANNEL_PREFIX}*")
        self._outbox = asyncio.Queue()
        self._running = True

        self._listener_task = asyncio.create_task(self._listen())
        self._publisher_task = asyncio.create_task(self._publish_loop())
        logger.info(f"Redis PubSub bridge started with {len(self._handlers)} handler(s)")

    async def stop(self):
        """Stop both loops and release the subscription."""
        logger.info("Stopping Redis PubSub bridge...")
        self._running = False

        for task in (self._publisher_task, self._listener_task):
            if task is None:
                continue
            task.cancel()
            try:
                await asyncio.wait_for(task, timeout=2.0)
            except asyncio.CancelledError:
                pass
            except asyncio.TimeoutError:
                logger.warning("PubSub task did not stop within timeout")
            except Exception as e:
                logger.warning(f"Error stopping PubSub task: {e}")
        self._publisher_task = None
        self._listener_task = None

        if self._pubsub:
            try:
                await asyncio.wait_for(self._pubsub.punsubscribe(), timeout=1.0)
            except asyncio.TimeoutError:
                logger.warning("PubSub unsubscribe timed out")
            except Exception as e:
                logger.warning(f"Error unsubscribing from PubSub: {e}")
            try:
                await asyncio.wait_for(self._pubsub.aclose(), timeout=1.0)
            except asyncio.TimeoutError:
                logger.warning("PubSub close timed out")
            except Exception as e:
                logger.warning(f"Error closing PubSub: {e}")
            self._pubsub = None

        self._outbox = None
        logger.info("Redis PubSub bridge stopped")

    def publish_nowait(self, room: Optional[str], data: dict) -> bool:
        """
        Queue a message for publication.

        Returns:
            False if the bridge is not running and the message was dropped
        """
        if not self._running or self._outbox is None:
            return False
        self._outbox.put_nowait((room, data))
        return True

    async def publish(self, room: Optional[str], data: dict):
        """Publish a message right away."""
        channel = channel_for(room)
        await self._client.publish(channel, json.dumps(data))
        logger.debug(f"Published to {channel}: {data.get('message', {}).get('type')}")

    async def _publish_loop(self):
        while self._running:
            room, data = await self._outbox.get()
            try:
                await self.publish(room, data)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Failed to publish to {channel_for(room)}: {e}")

    async def _listen(self):
        """
        Background task that listens for pub/sub messages.

        Uses polling with timeout to allow graceful shutdown.
        """
        logger.info("PubSub listener loop started")
        consecutive_errors = 0
        max_consecutive_errors = 10

        try:
            while self._running and self._pubsub:
                try:
                    raw_message = await self._pubsub.get_message(
                        ignore_subscribe_messages=True,
                        timeout=0.5,
                    )

                    if raw_message is None:
                        continue

                    await self._process_raw_message(raw_message)
                    consecutive_errors = 0

                except asyncio.CancelledError:
                    logger.info("PubSub listener received cancellation signal")
                    break
                except Exception as e:
                    consecutive_errors += 1
                    logger.error(f"PubSub listener error ({consecutive_errors}/{max_consecutive_errors}): {e}")

                    if consecutive_errors >= max_consecutive_errors:
                        logger.critical("PubSub listener exceeded max errors, stopping")
                        break

                    # Exponential backoff: 0.1s, 0.2s, 0.4s, ..., max 5s
                    backoff = min(0.1 * (2 ** (consecutive_errors - 1)), 5.0)
                    await asyncio.sleep(backoff)

        except asyncio.CancelledError:
            logger.info("PubSub listener cancelled")
        finally:
            logger.info("PubSub listener loop ended")

    async def _run_handler_with_timeout(
        self,
        handler_name: str,
        handler: Callable[[Optional[str], dict], Awaitable[None]],
        room: Optional[str],
        data: dict,
    ) -> bool:
        try:
            await asyncio.wait_for(handler(room, data), timeout=settings.WS_HANDLER_TIMEOUT)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"Handler '{handler_name}' timed out after {settings.WS_HANDLER_TIMEOUT}s on room {room}")
            return False
        except Exception as e:
            logger.error(f"Error in pubsub handler '{handler_name}': {e}")
            return False

    async def _process_raw_message(self, raw_message: dict):
        """
        Convert a raw Redis message, parse it and dispatch it to every handler.
        """
        raw = RawPubSubMessage(
            channel=raw_message.get("channel", ""),
            data=raw_message.get("data", ""),
            message_type=raw_message.get("type", ""),
        )

        parsed = parse_pubsub_message(raw)
        if parsed is None:
            return

        handler_tasks = [
            self._run_handler_with_timeout(handler_name, handler, parsed.room, parsed.data)
            for handler_name, handler in self._handlers.items()
        ]

        if handler_tasks:
            await asyncio.gather(*handler_tasks, return_exceptions=True)
