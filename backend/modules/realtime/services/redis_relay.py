# backend/modules/realtime/services/redis_relay.py

import asyncio
import json
import logging
import uuid
from typing import Optional

import redis.asyncio as redis

from core.config import settings
from .broadcast_channel import RealtimeEvent

logger = logging.getLogger(__name__)


class RedisEventRelay:
    """
    Redis pub/sub bridge so several server processes share one event stream.

    Locally published events are forwarded to Redis; events from other
    processes are delivered to this process's subscribers.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        channel_name: Optional[str] = None,
        client: Optional[redis.Redis] = None,
    ):
        self.redis_url = redis_url or settings.redis_url
        self.channel_name = channel_name or settings.broadcast_channel_name
        self.server_id = str(uuid.uuid4())
        self.redis_client: Optional[redis.Redis] = client
        self.pubsub = None
        self._channel = None
        self._subscription_task: Optional[asyncio.Task] = None
        self._pending: set = set()

    async def start(self, channel):
        """Connect, subscribe and start relaying events into ``channel``."""
        self._channel = channel
        try:
            if self.redis_client is None:
                self.redis_client = redis.from_url(
                    self.redis_url, decode_responses=True
                )
            await self.redis_client.ping()
            self.pubsub = self.redis_client.pubsub()
            await self.pubsub.subscribe(self.channel_name)
            self._subscription_task = asyncio.create_task(
                self._handle_subscriptions()
            )
            logger.info(
                f"Redis event relay started on {self.channel_name} "
                f"with server ID: {self.server_id}"
            )
        except Exception as e:
            logger.error(f"Failed to initialize Redis relay: {e}")
            raise

    async def close(self):
        """Close Redis connections"""
        if self._subscription_task:
            self._subscription_task.cancel()
            try:
                await self._subscription_task
            except asyncio.CancelledError:
                pass
            self._subscription_task = None

        if self.pubsub:
            await self.pubsub.unsubscribe()
            await self.pubsub.aclose()
            self.pubsub = None

        if self.redis_client:
            await self.redis_client.aclose()
            self.redis_client = None

    def forward(self, event: RealtimeEvent):
        """Schedule publication of a local event without blocking the caller."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running loop; {event.type.value} not relayed")
            return
        task = loop.create_task(self.publish(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def publish(self, event: RealtimeEvent):
        if self.redis_client is None:
            return
        message = json.dumps({"server_id": self.server_id, "event": event.to_wire()})
        try:
            await self.redis_client.publish(self.channel_name, message)
        except Exception as e:
            # Local subscribers already have the event; remote ones will resync
            logger.error(f"Failed to relay {event.type.value} to Redis: {e}")

    async def _handle_subscriptions(self):
        """Handle incoming Redis pub/sub messages"""
        try:
            async for message in self.pubsub.listen():
                if message["type"] == "message":
                    self.process_message(message["data"])
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in subscription handler: {e}")

    def process_message(self, data):
        """Deliver a relayed event unless it originated in this process."""
        try:
            message = json.loads(data)
            if message.get("server_id") == self.server_id:
                return
            event = RealtimeEvent.from_wire(
                message["event"], origin=message.get("server_id")
            )
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Error processing relayed message: {e}")
            return
        if self._channel is not None:
            self._channel.deliver_local(event)
