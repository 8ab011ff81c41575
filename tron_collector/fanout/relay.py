"""Relay from the Redis pub/sub channel onto the local event bus."""

import asyncio
from typing import Optional

from redis.asyncio import Redis
from redis.asyncio.client import PubSub
from redis.exceptions import RedisError
import structlog

from tron_collector.fanout.bus import EventBus

logger = structlog.get_logger(__name__)


class RedisChannelRelay:
    """
    Subscribes to a Redis channel and re-emits every message on the bus.

    A lost subscription is re-established with exponential backoff
    (``retry_delay`` doubling up to ``max_retry_delay``) until the relay is
    cancelled. Messages published while the subscription is down are lost,
    as with any Redis pub/sub subscriber.
    """

    def __init__(self,
                 redis: Redis,
                 channel: str,
                 bus: EventBus,
                 retry_delay: float = 1.0,
                 max_retry_delay: float = 30.0,
                 sleep=asyncio.sleep):
        self.redis = redis
        self.channel = channel
        self.bus = bus
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        self._sleep = sleep
        self._pubsub: Optional[PubSub] = None
        self.relayed = 0
        self.resubscribes = 0
        self.logger = logger.bind(component="redis_relay", channel=channel)

    def backoff(self, failures: int) -> float:
        return min(self.retry_delay * (2 ** (failures - 1)), self.max_retry_delay)

    async def run(self):
        """Relay messages until cancelled or the subscription ends cleanly."""
        failures = 0
        while True:
            try:
                await self._subscribe()
                if failures:
                    self.resubscribes += 1
                    self.logger.info("Channel subscription restored", after_failures=failures)
                failures = 0
                await self._pump()
                self.logger.info("Channel subscription ended")
                return

            except RedisError as e:
                failures += 1
                delay = self.backoff(failures)
                self.logger.warning("Channel relay lost, resubscribing",
                                    error=str(e),
                                    attempt=failures,
                                    delay=delay)

            finally:
                await self.close()

            await self._sleep(delay)

    async def _subscribe(self):
        self._pubsub = self.redis.pubsub()
        await self._pubsub.subscribe(self.channel)
        self.logger.info("Subscribed to channel")

    async def _pump(self):
        async for message in self._pubsub.listen():
            if message.get("type") != "message":
                continue
            data = message.get("data")
            if isinstance(data, bytes):
                data = data.decode("utf-8")
            await self.bus.emit(data)
            self.relayed += 1

    async def close(self):
        if self._pubsub is None:
            return
        pubsub, self._pubsub = self._pubsub, None
        try:
            await pubsub.aclose()
        except RedisError as e:
            self.logger.debug("Error closing pubsub", error=str(e))
