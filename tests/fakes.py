"""Test doubles and sample data shared across the test suite."""

import asyncio
from typing import Dict, List, Optional

from redis.exceptions import ConnectionError as RedisConnectionError

from tron_collector.core.rate_governor import RateGovernor
from tron_collector.core.trongrid_client import FetchExhaustedError, TronGridError
from tron_collector.models.blockchain import BlockRecord


# ============================================================================
# SAMPLE DATA
# ============================================================================

def make_hash(height: int) -> str:
    """Deterministic 64-char hex hash whose last digit is height % 10."""
    return f"{height:016x}abcdef" + "0" * 41 + str(height % 10)


def make_record(height: int, timestamp: Optional[int] = None) -> BlockRecord:
    return BlockRecord.create(height, make_hash(height), timestamp or 1700000000 + height * 3)


# ============================================================================
# FAKES
# ============================================================================

class FakeTronGridClient:
    """Stands in for TronGridClient; records every fetch."""

    def __init__(self, missing=(), head: int = 0, delay: float = 0.0):
        self.governor = RateGovernor(base_interval=0.0)
        self.missing = set(missing)
        self.head = head
        self.delay = delay
        self.fetched: List[int] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    async def fetch_block_by_height(self, height: int) -> BlockRecord:
        self.fetched.append(height)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            else:
                await asyncio.sleep(0)
            if height in self.missing:
                raise FetchExhaustedError(height, 5)
            return make_record(height)
        finally:
            self.in_flight -= 1

    async def get_chain_head(self) -> int:
        if self.head is None:
            raise TronGridError("chain head unavailable")
        return self.head

    async def close(self):
        self.closed = True


class FakePipeline:
    """Queues commands and runs them against FakeRedis on execute."""

    def __init__(self, redis: "FakeRedis"):
        self.redis = redis
        self.commands = []

    def __getattr__(self, name):
        def queue(*args, **kwargs):
            self.commands.append((name, args, kwargs))
            return self
        return queue

    async def execute(self):
        results = []
        for name, args, kwargs in self.commands:
            results.append(await getattr(self.redis, name)(*args, **kwargs))
        self.commands = []
        return results


def _redis_slice(items, start, end):
    if end < 0:
        end = len(items) + end
    return items[start:end + 1]


class FakeRedis:
    """Minimal in-memory subset of redis.asyncio.Redis with decode_responses=True."""

    def __init__(self):
        self.zsets: Dict[str, Dict[str, float]] = {}
        self.hashes: Dict[str, Dict[str, str]] = {}
        self.ttls: Dict[str, int] = {}
        self.published = []
        self.fail = False
        self.closed = False
        self.pubsub_failures = 0
        self.pubsub_calls = 0
        self.subscribers: List["FakePubSub"] = []

    def _check(self):
        if self.fail:
            raise RedisConnectionError("Connection refused")

    def _members(self, name):
        return [m for m, _ in sorted(self.zsets.get(name, {}).items(), key=lambda kv: kv[1])]

    def pipeline(self):
        return FakePipeline(self)

    async def zadd(self, name, mapping, nx=False):
        self._check()
        zset = self.zsets.setdefault(name, {})
        added = 0
        for member, score in mapping.items():
            if member in zset:
                if nx:
                    continue
            else:
                added += 1
            zset[member] = score
        return added

    async def zrange(self, name, start, end):
        self._check()
        return _redis_slice(self._members(name), start, end)

    async def zrevrange(self, name, start, end):
        self._check()
        return _redis_slice(list(reversed(self._members(name))), start, end)

    async def zcard(self, name):
        self._check()
        return len(self.zsets.get(name, {}))

    async def zremrangebyrank(self, name, start, end):
        self._check()
        doomed = _redis_slice(self._members(name), start, end)
        for member in doomed:
            del self.zsets[name][member]
        return len(doomed)

    async def hset(self, name, mapping=None):
        self._check()
        self.hashes.setdefault(name, {}).update({k: str(v) for k, v in mapping.items()})
        return len(mapping)

    async def hget(self, name, key):
        self._check()
        return self.hashes.get(name, {}).get(key)

    async def hgetall(self, name):
        self._check()
        return dict(self.hashes.get(name, {}))

    async def expire(self, name, seconds):
        self._check()
        self.ttls[name] = seconds
        return True

    async def delete(self, *names):
        self._check()
        removed = 0
        for name in names:
            removed += int(self.zsets.pop(name, None) is not None or self.hashes.pop(name, None) is not None)
        return removed

    async def publish(self, channel, message):
        self._check()
        self.published.append((channel, message))
        receivers = [s for s in self.subscribers if channel in s.channels]
        for subscriber in receivers:
            subscriber.queue.put_nowait({"type": "message", "channel": channel, "data": message})
        return len(receivers)

    def pubsub(self):
        """The first ``pubsub_failures`` calls raise a connection error."""
        self.pubsub_calls += 1
        if self.pubsub_calls <= self.pubsub_failures:
            raise RedisConnectionError("Connection reset by peer")
        return FakePubSub(self)

    async def ping(self):
        self._check()
        return True

    async def aclose(self):
        self.closed = True




class FakePubSub:
    """Channel subscription on a FakeRedis; ``drop()`` simulates a lost connection."""

    def __init__(self, redis: FakeRedis):
        self.redis = redis
        self.channels: List[str] = []
        self.queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    async def subscribe(self, channel):
        self.redis._check()
        self.channels.append(channel)
        self.redis.subscribers.append(self)
        self.queue.put_nowait({"type": "subscribe", "channel": channel, "data": 1})

    def drop(self):
        self.queue.put_nowait(RedisConnectionError("Connection lost"))

    async def listen(self):
        while True:
            message = await self.queue.get()
            if isinstance(message, Exception):
                raise message
            yield message

    async def aclose(self):
        self.closed = True
        if self in self.redis.subscribers:
            self.redis.subscribers.remove(self)
