"""
Storage backends for block records.

Both backends keep records ordered and unique by height and evict the lowest
heights once the configured capacity is exceeded.
"""

import bisect
import time
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError
import structlog

from tron_collector.fanout.bus import EventBus
from tron_collector.models.blockchain import BlockRecord, StoreStats
from tron_collector.models.config import CollectorConfig

logger = structlog.get_logger(__name__)


# Redis key layout
REDIS_KEYS = {
    'BLOCKS': 'tron:blocks',          # sorted set of heights
    'BLOCK_HASH': 'tron:block:',      # per-height record hash
    'CHANNEL': 'tron:new-block',      # pub/sub channel
    'STATS': 'tron:stats',            # latestHeight / lastUpdate
}


class StorageError(Exception):
    """Primary store operation failed."""
    pass


def _now_ms() -> int:
    return int(time.time() * 1000)


class StorageBackend(ABC):
    """Capability interface shared by the primary and fallback stores."""

    name: str = "abstract"

    @abstractmethod
    async def save(self, record: BlockRecord) -> bool:
        """Store a record. Returns False if the height already exists."""

    @abstractmethod
    async def publish(self, payload: str) -> None:
        """Publish a serialized record to live subscribers."""

    @abstractmethod
    async def query_range(self, limit: int) -> List[BlockRecord]:
        """Newest ``limit`` records, highest height first."""

    @abstractmethod
    async def all_heights(self) -> List[int]:
        """Every stored height, ascending."""

    @abstractmethod
    async def latest_height(self) -> int:
        """Highest stored height, 0 when empty."""

    @abstractmethod
    async def stats(self) -> StoreStats:
        """Store statistics."""

    @abstractmethod
    async def clear_all(self) -> None:
        """Delete every record and the stats."""

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class RedisBackend(StorageBackend):
    """
    Redis-backed store.

    Layout:
    - ZSET ``tron:blocks``: member and score are the height
    - HASH ``tron:block:{height}``: record fields plus JSON ``data``, with TTL
    - HASH ``tron:stats``: ``latestHeight`` and ``lastUpdate``
    """

    name = "redis"

    def __init__(self, config: CollectorConfig, client: Optional[Redis] = None):
        self.config = config
        self.max_blocks = config.max_blocks
        self.ttl_seconds = config.block_ttl_seconds
        self.redis = client or Redis(
            host=config.redis_host,
            port=config.redis_port,
            db=config.redis_db,
            password=config.redis_password,
            decode_responses=True,
            socket_connect_timeout=config.redis_connect_timeout,
        )
        self.logger = logger.bind(component="redis_backend")

    @staticmethod
    def _block_key(height) -> str:
        return f"{REDIS_KEYS['BLOCK_HASH']}{height}"

    async def save(self, record: BlockRecord) -> bool:
        try:
            added = await self.redis.zadd(REDIS_KEYS['BLOCKS'], {str(record.height): record.height}, nx=True)
            if not added:
                return False

            pipeline = self.redis.pipeline()
            pipeline.hset(self._block_key(record.height), mapping={
                'height': record.height,
                'hash': record.hash,
                'timestamp': record.timestamp,
                'parity': record.parity.value,
                'magnitude': record.magnitude.value,
                'data': record.to_json(),
            })
            pipeline.expire(self._block_key(record.height), self.ttl_seconds)
            pipeline.zcard(REDIS_KEYS['BLOCKS'])
            pipeline.zrevrange(REDIS_KEYS['BLOCKS'], 0, 0)
            results = await pipeline.execute()

            count = int(results[2])
            top = results[3]
            await self.redis.hset(REDIS_KEYS['STATS'], mapping={
                'latestHeight': int(top[0]) if top else record.height,
                'lastUpdate': _now_ms(),
            })

            if count > self.max_blocks:
                await self._evict(count - self.max_blocks)

            return True

        except RedisError as e:
            raise StorageError(f"Failed to save block {record.height}: {e}") from e

    async def _evict(self, to_remove: int):
        """Drop the ``to_remove`` lowest heights and their records."""
        old_heights = await self.redis.zrange(REDIS_KEYS['BLOCKS'], 0, to_remove - 1)

        pipeline = self.redis.pipeline()
        pipeline.zremrangebyrank(REDIS_KEYS['BLOCKS'], 0, to_remove - 1)
        for height in old_heights:
            pipeline.delete(self._block_key(height))
        await pipeline.execute()

        self.logger.info("Evicted old blocks", count=to_remove,
                         lowest=old_heights[0] if old_heights else None)

    async def publish(self, payload: str) -> None:
        try:
            await self.redis.publish(REDIS_KEYS['CHANNEL'], payload)
        except RedisError as e:
            raise StorageError(f"Failed to publish block: {e}") from e

    async def query_range(self, limit: int) -> List[BlockRecord]:
        if limit <= 0:
            return []

        try:
            heights = await self.redis.zrevrange(REDIS_KEYS['BLOCKS'], 0, limit - 1)
            if not heights:
                return []

            pipeline = self.redis.pipeline()
            for height in heights:
                pipeline.hget(self._block_key(height), 'data')
            results = await pipeline.execute()

        except RedisError as e:
            raise StorageError(f"Failed to query blocks: {e}") from e

        records = []
        for data in results:
            # Expired records leave their height behind in the sorted set
            if not data:
                continue
            try:
                records.append(BlockRecord.from_json(data))
            except (ValueError, KeyError) as e:
                self.logger.warning("Skipping unreadable record", error=str(e))
        return records

    async def all_heights(self) -> List[int]:
        try:
            heights = await self.redis.zrange(REDIS_KEYS['BLOCKS'], 0, -1)
        except RedisError as e:
            raise StorageError(f"Failed to read heights: {e}") from e
        return sorted(int(h) for h in heights)

    async def latest_height(self) -> int:
        try:
            top = await self.redis.zrevrange(REDIS_KEYS['BLOCKS'], 0, 0)
        except RedisError as e:
            raise StorageError(f"Failed to read latest height: {e}") from e
        return int(top[0]) if top else 0

    async def stats(self) -> StoreStats:
        try:
            stats = await self.redis.hgetall(REDIS_KEYS['STATS'])
            count = await self.redis.zcard(REDIS_KEYS['BLOCKS'])
        except RedisError as e:
            raise StorageError(f"Failed to read stats: {e}") from e

        return StoreStats(
            backend=self.name,
            total_blocks=int(count),
            latest_height=int(stats.get('latestHeight') or 0),
            last_update=int(stats.get('lastUpdate') or 0),
        )

    async def clear_all(self) -> None:
        try:
            heights = await self.redis.zrange(REDIS_KEYS['BLOCKS'], 0, -1)

            pipeline = self.redis.pipeline()
            pipeline.delete(REDIS_KEYS['BLOCKS'])
            pipeline.delete(REDIS_KEYS['STATS'])
            for height in heights:
                pipeline.delete(self._block_key(height))
            await pipeline.execute()

        except RedisError as e:
            raise StorageError(f"Failed to clear store: {e}") from e

        self.logger.warning("All blocks cleared", count=len(heights))

    async def ping(self) -> bool:
        try:
            return bool(await self.redis.ping())
        except RedisError as e:
            raise StorageError(f"Ping failed: {e}") from e

    async def close(self) -> None:
        await self.redis.aclose()
        self.logger.info("Redis connection closed")


class MemoryBackend(StorageBackend):
    """In-process fallback store. Same eviction rule, no TTL."""

    name = "memory"

    def __init__(self, max_blocks: int, bus: EventBus):
        self.max_blocks = max_blocks
        self.bus = bus
        self._blocks: Dict[int, BlockRecord] = {}
        self._heights: List[int] = []
        self._last_update = 0
        self.logger = logger.bind(component="memory_backend")

    async def save(self, record: BlockRecord) -> bool:
        if record.height in self._blocks:
            return False

        self._blocks[record.height] = record
        bisect.insort(self._heights, record.height)
        self._last_update = _now_ms()

        if len(self._heights) > self.max_blocks:
            to_remove = len(self._heights) - self.max_blocks
            for height in self._heights[:to_remove]:
                del self._blocks[height]
            del self._heights[:to_remove]
            self.logger.info("Evicted old blocks", count=to_remove)

        return True

    async def publish(self, payload: str) -> None:
        await self.bus.emit(payload)

    async def query_range(self, limit: int) -> List[BlockRecord]:
        if limit <= 0:
            return []
        return [self._blocks[h] for h in reversed(self._heights[-limit:])]

    async def all_heights(self) -> List[int]:
        return list(self._heights)

    async def latest_height(self) -> int:
        return self._heights[-1] if self._heights else 0

    async def stats(self) -> StoreStats:
        return StoreStats(
            backend=self.name,
            total_blocks=len(self._heights),
            latest_height=self._heights[-1] if self._heights else 0,
            last_update=self._last_update,
        )

    async def clear_all(self) -> None:
        count = len(self._heights)
        self._blocks.clear()
        self._heights.clear()
        self._last_update = 0
        self.logger.warning("All blocks cleared", count=count)
