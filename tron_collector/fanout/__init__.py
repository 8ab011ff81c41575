"""Fanout of block records to live subscribers."""

from tron_collector.fanout.bus import EventBus
from tron_collector.fanout.relay import RedisChannelRelay
from tron_collector.fanout.publisher import FanoutPublisher
from tron_collector.fanout.broadcaster import LiveBroadcaster

__all__ = [
    "EventBus",
    "RedisChannelRelay",
    "FanoutPublisher",
    "LiveBroadcaster",
]
