"""Gap closing and large-scale backfill of missing block heights."""

import asyncio
from typing import List, Optional
import structlog

from tron_collector.core.trongrid_client import FetchExhaustedError, TronGridClient
from tron_collector.fanout.publisher import FanoutPublisher
from tron_collector.models.blockchain import BackfillResult, GapInterval
from tron_collector.models.config import CollectorConfig
from tron_collector.utils.metrics import metrics

logger = structlog.get_logger(__name__)

MIN_LOCK_WAIT = 0.01


class BackfillEngine:
    """
    Recovers missing heights from the REST upstream.

    Two paths share the same fetch primitive:

    - the live path closes small gaps found between consecutive live
      blocks, fetching concurrent batches of the newest heights;
    - the large path walks a range serially from newest to oldest, and at
      most one such run is active at any time.

    Recovered records are saved through the persistence router and
    published only when they were not already stored.
    """

    def __init__(self,
                 client: TronGridClient,
                 router,
                 publisher: FanoutPublisher,
                 config: CollectorConfig):
        self.client = client
        self.router = router
        self.publisher = publisher
        self.config = config

        self._large_lock = asyncio.Lock()
        self.succeeded = 0
        self.failed = 0
        self.skipped_runs = 0

        self.logger = logger.bind(component="backfill_engine")

    @property
    def is_busy(self) -> bool:
        """True while a large backfill holds the single-flight guard."""
        return self._large_lock.locked()

    async def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait until no large backfill is running. Returns False on timeout."""
        if not self.is_busy:
            return True

        timeout = self.config.backfill_wait_timeout if timeout is None else timeout
        if not await self._acquire_large(timeout):
            return False

        self._large_lock.release()
        return True

    async def _acquire_large(self, timeout: float) -> bool:
        # An unlocked lock can still have queued waiters ahead of us.
        try:
            await asyncio.wait_for(self._large_lock.acquire(), timeout=max(timeout, MIN_LOCK_WAIT))
        except asyncio.TimeoutError:
            return False
        return True

    async def recover_height(self, height: int, path: str) -> bool:
        """Fetch, store and publish a single height. Returns True on fetch success."""
        try:
            record = await self.client.fetch_block_by_height(height)
        except FetchExhaustedError as e:
            self.failed += 1
            metrics.backfill_failures.labels(path=path).inc()
            self.logger.error("Height left missing", height=height, path=path, error=str(e))
            return False

        stored = await self.router.save(record)
        if stored:
            metrics.blocks_stored.labels(source=path).inc()
            await self.publisher.publish(record)

        self.succeeded += 1
        return True

    # ========================================
    # Live path
    # ========================================

    async def close_live_gap(self, last_processed: int, height: int) -> Optional[BackfillResult]:
        """
        Close the gap between the last processed live height and a new one.

        Returns None when there is nothing to close. When the gap is larger
        than the live fill limit only the newest heights are fetched here and
        the older remainder is returned as ``deferred``.
        """
        if last_processed == 0 or height <= last_processed + 1:
            return None

        start, end = last_processed + 1, height - 1
        self.logger.warning("Gap detected in live stream",
                            last_processed=last_processed,
                            height=height,
                            missing=end - start + 1)

        return await self.fill_batched(start, end)

    async def fill_batched(self, start: int, end: int) -> BackfillResult:
        """Fetch [start, end] in concurrent batches, clamped to the newest heights."""
        max_fill = self.config.live_gap_max_fill
        deferred = None

        actual_start = start
        if end - start + 1 > max_fill:
            actual_start = end - max_fill + 1
            deferred = GapInterval.between(start, actual_start - 1)
            self.logger.warning("Gap too large for live fill, deferring older heights",
                                filling=f"{actual_start}-{end}",
                                deferred=f"{deferred.start}-{deferred.end}")

        heights = list(range(actual_start, end + 1))
        result = BackfillResult(start=actual_start, end=end, requested=len(heights), deferred=deferred)

        batch_size = self.config.live_gap_batch_size
        for i in range(0, len(heights), batch_size):
            batch = heights[i:i + batch_size]
            outcomes = await asyncio.gather(*(self.recover_height(h, "live") for h in batch))

            for ok in outcomes:
                if ok:
                    result.succeeded += 1
                else:
                    result.failed += 1

            if i + batch_size < len(heights):
                await asyncio.sleep(self.config.live_gap_batch_pause)

        self.logger.info("Batched fill complete",
                         start=actual_start,
                         end=end,
                         succeeded=result.succeeded,
                         failed=result.failed)
        return result

    # ========================================
    # Large path
    # ========================================

    async def run_large(self, start: int, end: int,
                        wait_timeout: Optional[float] = None) -> BackfillResult:
        """
        Backfill [start, end] serially from newest to oldest.

        Waits for any running large backfill to finish first. If it does
        not finish within ``wait_timeout`` the request is dropped.
        """
        result = BackfillResult(start=start, end=end)
        if start > end:
            return result

        timeout = self.config.backfill_wait_timeout if wait_timeout is None else wait_timeout
        if not await self._acquire_large(timeout):
            self.skipped_runs += 1
            result.skipped = True
            self.logger.warning("Large backfill already running, skipping request",
                                start=start, end=end, waited=timeout)
            return result

        try:
            heights: List[int] = list(range(end, start - 1, -1))
            result.requested = len(heights)
            self.logger.info("Large backfill started",
                             start=start,
                             end=end,
                             total=len(heights),
                             interval=self.client.governor.min_interval)

            progress_every = self.config.backfill_progress_every
            for height in heights:
                if await self.recover_height(height, "large"):
                    result.succeeded += 1
                    if result.succeeded == 1 or result.succeeded % progress_every == 0:
                        self.logger.info("Large backfill progress",
                                         done=result.succeeded,
                                         total=len(heights),
                                         height=height,
                                         interval=self.client.governor.min_interval)
                else:
                    result.failed += 1

            self.logger.info("Large backfill complete",
                             start=start,
                             end=end,
                             succeeded=result.succeeded,
                             failed=result.failed,
                             rate_limit_hits=self.client.governor.rate_limit_hits)
            if result.failed:
                self.logger.warning("Some heights still missing, integrity checks will retry",
                                    failed=result.failed)
            return result

        finally:
            self._large_lock.release()

    def get_statistics(self):
        return {
            "busy": self.is_busy,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped_runs": self.skipped_runs,
        }
