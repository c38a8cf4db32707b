"""Redis relay — optional fan-out across server processes.

Learn: The registry is in-process memory, so a client connected to worker A
never hears about an order changed on worker B. When ORDERPULSE_REDIS_ENABLED
is set, every bus event is also PUBLISHed to one Redis channel; each worker
listens on that channel and feeds events from OTHER workers into its own
Broadcaster (its own events were already broadcast locally).

Redis pub/sub is fire-and-forget, which matches the Broadcaster's
at-most-once contract — nothing here adds durability.

Channel: orderpulse:events (ORDERPULSE_REDIS_CHANNEL)
"""

import asyncio
import json
import uuid
from typing import Any, Optional

import redis.asyncio as aioredis
import structlog

from orderpulse.events.types import BusEvent, event_from_dict, event_to_dict
from orderpulse.realtime.broadcaster import Broadcaster

logger = structlog.get_logger()


async def connect_redis(url: str) -> aioredis.Redis:
    """Open a Redis connection pool and verify it answers."""
    client = aioredis.from_url(
        url,
        encoding="utf-8",
        decode_responses=True,
    )
    await client.ping()
    return client


class RedisEventRelay:
    """Mirrors local bus events to Redis and replays remote ones locally."""

    def __init__(
        self,
        redis: aioredis.Redis,
        channel: str,
        broadcaster: Broadcaster,
        instance_id: Optional[str] = None,
    ):
        self.redis = redis
        self.channel = channel
        self.broadcaster = broadcaster
        self.instance_id = instance_id or uuid.uuid4().hex
        self._running = False

    async def forward(self, event: BusEvent) -> None:
        """EventBus listener — publish a local event for the other workers."""
        payload = json.dumps({
            "origin": self.instance_id,
            "event": event_to_dict(event),
        })
        await self.redis.publish(self.channel, payload)

    async def handle_message(self, raw: Any) -> bool:
        """Broadcast one relayed event. Returns False if it was skipped."""
        try:
            msg = json.loads(raw)
            if msg.get("origin") == self.instance_id:
                return False
            event = event_from_dict(msg["event"])
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning("relay.invalid_message", error=str(e))
            return False
        await self.broadcaster.publish(event)
        return True

    async def run(self) -> None:
        """Listen on the channel until stopped or cancelled."""
        self._running = True
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(self.channel)
        logger.info("relay.started", channel=self.channel, instance_id=self.instance_id)
        try:
            async for message in pubsub.listen():
                if not self._running:
                    break
                if message["type"] == "message":
                    try:
                        await self.handle_message(message["data"])
                    except Exception:
                        logger.exception("relay.broadcast_failed")
        except asyncio.CancelledError:
            pass
        finally:
            await pubsub.unsubscribe(self.channel)
            await pubsub.aclose()

    def stop(self) -> None:
        """Signal the listener to stop after the next message."""
        self._running = False
        logger.info("relay.stopping")
