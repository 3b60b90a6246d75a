import asyncio
import logging
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from app.config.settings import Settings
from app.services.telemetry_service import TelemetryHub

logger = logging.getLogger(__name__)


class RedisSubscriber:
    """Feeds messages published on a Redis channel into the hub.

    The channel name is the configured topic. After a Redis error, or when
    the subscription ends, the subscriber waits
    ``redis_reconnect_delay_seconds`` and subscribes again; hub state is
    untouched by reconnects.
    """

    def __init__(
        self,
        settings: Settings,
        hub: TelemetryHub,
        client: Optional[redis.Redis] = None,
    ):
        self.settings = settings
        self.hub = hub
        self.channel = settings.mqtt_topic
        self._client = client
        self._task: Optional[asyncio.Task] = None

    async def start(self):
        if self._client is None:
            # pub/sub connections idle between messages, so no read timeout
            self._client = redis.Redis.from_url(
                self.settings.redis_url,
                socket_connect_timeout=self.settings.redis_socket_timeout,
                health_check_interval=30,
            )
        self._task = asyncio.create_task(self._run())
        logger.info(f"Redis subscriber started for channel {self.channel}")

    async def stop(self):
        if self._task:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        logger.info("Redis subscriber stopped")

    async def _run(self):
        delay = self.settings.redis_reconnect_delay_seconds
        while True:
            pubsub = self._client.pubsub(ignore_subscribe_messages=True)
            try:
                await pubsub.subscribe(self.channel)
                logger.info(f"Subscribed to Redis channel: {self.channel}")
                await self.consume(pubsub)
                logger.warning(
                    f"Redis subscription ended; resubscribing in {delay}s"
                )
            except (RedisError, OSError) as e:
                logger.error(f"Redis subscriber error: {e}; reconnecting in {delay}s")
            finally:
                await pubsub.aclose()
            await asyncio.sleep(delay)

    async def consume(self, pubsub) -> int:
        """Ingest every data message from ``pubsub`` until it is exhausted."""
        count = 0
        async for message in pubsub.listen():
            if message.get("type") != "message":
                continue
            self.hub.ingest(message["data"])
            count += 1
        return count
