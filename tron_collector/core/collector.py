"""Main TRON block collector orchestrator."""

import asyncio
from typing import Any, Awaitable, Dict, Optional, Set
import structlog

from tron_collector.core.backfill import BackfillEngine
from tron_collector.core.listener import TronBlockListener
from tron_collector.core.reconciler import FullScanReconciler, IntegrityMonitor
from tron_collector.core.trongrid_client import TronGridClient
from tron_collector.database.backends import REDIS_KEYS, MemoryBackend, RedisBackend
from tron_collector.database.router import PersistenceRouter
from tron_collector.fanout.bus import EventBus
from tron_collector.fanout.publisher import FanoutPublisher
from tron_collector.fanout.relay import RedisChannelRelay
from tron_collector.models.blockchain import BlockRecord
from tron_collector.models.config import CollectorConfig
from tron_collector.utils.metrics import metrics

logger = structlog.get_logger(__name__)


class TronCollector:
    """
    Wires the pipeline together and owns its background tasks.

    Live flow per block: close any gap since the last processed height,
    store the record, publish it if newly stored, advance the height.
    The first live block also schedules the one-time full scan.
    """

    def __init__(self,
                 config: CollectorConfig,
                 router: PersistenceRouter,
                 client: TronGridClient,
                 bus: EventBus,
                 relay: Optional[RedisChannelRelay] = None):
        self.config = config
        self.router = router
        self.client = client
        self.bus = bus
        self.relay = relay

        self.publisher = FanoutPublisher(router, bus)
        self.engine = BackfillEngine(client, router, self.publisher, config)
        self.reconciler = FullScanReconciler(self.engine, router, config)
        self.monitor = IntegrityMonitor(client, self.engine, router, config)
        self.listener = TronBlockListener(config, self.handle_block)

        self.last_processed_height = 0
        self.live_blocks = 0
        self._tasks: Set[asyncio.Task] = set()
        self._prepared = False

        self.logger = logger.bind(component="tron_collector")
        self.logger.info("TRON collector initialized")

    @classmethod
    def build(cls, config: CollectorConfig) -> "TronCollector":
        """Create a collector with the Redis store, memory fallback and TronGrid client."""
        bus = EventBus()
        primary = RedisBackend(config)
        fallback = MemoryBackend(config.max_blocks, bus)
        router = PersistenceRouter(primary, fallback)
        client = TronGridClient(config)
        relay = RedisChannelRelay(primary.redis, REDIS_KEYS['CHANNEL'], bus,
                                  retry_delay=config.reconnect_base_delay)
        return cls(config, router, client, bus, relay)

    # ========================================
    # Lifecycle
    # ========================================

    def supervise(self, coro: Awaitable[Any], name: str) -> asyncio.Task:
        """Run a coroutine as an owned background task."""
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.logger.error("Background task failed", task=task.get_name(), error=str(error))
        else:
            self.logger.debug("Background task finished", task=task.get_name())

    @property
    def active_tasks(self) -> Set[str]:
        return {t.get_name() for t in self._tasks}

    async def prepare(self) -> bool:
        """Probe the primary store. Returns False when running on the fallback."""
        if self._prepared:
            return not self.router.degraded
        self._prepared = True
        return await self.router.probe(self.config.redis_connect_timeout)

    async def start(self, listen: bool = True, monitor: bool = True):
        """Start the relay, integrity monitor and upstream listener."""
        primary_ok = await self.prepare()

        if self.relay is not None and primary_ok:
            self.supervise(self.relay.run(), "redis_relay")

        if monitor:
            self.supervise(self.monitor.run_forever(), "integrity_monitor")

        if listen:
            self.supervise(self.listener.run(), "block_listener")

        self.logger.info("TRON collector started",
                         storage_mode=self.router.mode.value,
                         tasks=sorted(self.active_tasks))

    async def stop(self):
        """Cancel background tasks, then close the listener, HTTP client and store."""
        self.logger.info("Stopping TRON collector", tasks=sorted(self.active_tasks))

        await self.listener.stop()

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        if self.relay is not None:
            await self.relay.close()
        await self.client.close()
        await self.router.close()

        self.logger.info("TRON collector stopped")

    # ========================================
    # Live path
    # ========================================

    async def handle_block(self, record: BlockRecord):
        """Process one live block from the upstream subscription."""
        if self.live_blocks == 0:
            store_latest = await self.router.latest_height()
            self.logger.info("First live block received",
                             height=record.height,
                             store_latest=store_latest)
            self.supervise(self.reconciler.run(record.height, store_latest), "full_scan")
        self.live_blocks += 1

        gap_result = await self.engine.close_live_gap(self.last_processed_height, record.height)
        if gap_result is not None and gap_result.deferred is not None:
            deferred = gap_result.deferred
            self.supervise(self.engine.run_large(deferred.start, deferred.end), "deferred_backfill")

        stored = await self.router.save(record)
        if stored:
            metrics.blocks_stored.labels(source="live").inc()
            await self.publisher.publish(record)

        self.last_processed_height = max(self.last_processed_height, record.height)
        metrics.last_processed_height.set(self.last_processed_height)

        self.logger.info("New block",
                         height=record.height,
                         parity=record.parity.value,
                         magnitude=record.magnitude.value,
                         stored=stored)

    # ========================================
    # Status
    # ========================================

    async def get_statistics(self) -> Dict[str, Any]:
        """Get pipeline statistics."""
        store = await self.router.stats()
        return {
            "last_processed_height": self.last_processed_height,
            "live_blocks": self.live_blocks,
            "connection_state": self.listener.state.value,
            "reconnect_attempts": self.listener.reconnect_attempts,
            "malformed_messages": self.listener.malformed_messages,
            "storage_mode": self.router.mode.value,
            "store": store.to_dict(),
            "rate_governor": self.client.governor.snapshot(),
            "backfill": self.engine.get_statistics(),
            "full_scan_completed": self.reconciler.completed,
            "integrity_checks": self.monitor.checks,
            "live_subscribers": self.bus.subscriber_count,
            "tasks": sorted(self.active_tasks),
        }
