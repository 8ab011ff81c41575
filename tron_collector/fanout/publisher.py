"""Fanout publisher: one entry point for broadcasting block records."""

import structlog

from tron_collector.fanout.bus import EventBus, MessageHandler
from tron_collector.models.blockchain import BlockRecord

logger = structlog.get_logger(__name__)


class FanoutPublisher:
    """
    Publishes records through the persistence router's active transport.

    With the primary store healthy the payload goes to the Redis channel and
    comes back to the bus through the channel relay. In degraded mode the
    memory backend emits it on the bus directly. Subscribers only ever see
    the bus.
    """

    def __init__(self, router, bus: EventBus):
        self.router = router
        self.bus = bus
        self.published = 0
        self.logger = logger.bind(component="fanout_publisher")

    def subscribe(self, handler: MessageHandler):
        """Register a live subscriber. Returns an unsubscribe function."""
        return self.bus.subscribe(handler)

    async def publish(self, record: BlockRecord):
        """Broadcast a record to every live subscriber."""
        await self.router.publish(record.to_json())
        self.published += 1
        self.logger.debug("Block published", height=record.height)
