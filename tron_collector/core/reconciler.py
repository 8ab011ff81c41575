"""
Store reconciliation against the chain.

FullScanReconciler runs once per process, on the first live block, and fills
both the tail gap (store behind the live stream) and every internal gap.
IntegrityMonitor periodically compares the store with the chain head.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import structlog

from tron_collector.core.backfill import BackfillEngine
from tron_collector.core.trongrid_client import TronGridClient, TronGridError
from tron_collector.models.blockchain import BackfillResult, GapInterval
from tron_collector.models.config import CollectorConfig

logger = structlog.get_logger(__name__)


def find_gaps(heights: List[int]) -> List[GapInterval]:
    """Return every missing interval between consecutive ascending heights."""
    gaps = []
    for current, nxt in zip(heights, heights[1:]):
        if nxt - current > 1:
            gaps.append(GapInterval.between(current + 1, nxt - 1))
    return gaps


@dataclass
class ReconcileReport:
    """What a full scan found and recovered."""
    live_height: int
    store_latest: int
    tail_gap: Optional[GapInterval] = None
    gaps: List[GapInterval] = field(default_factory=list)
    results: List[BackfillResult] = field(default_factory=list)

    @property
    def missing(self) -> int:
        return sum(g.count for g in self.gaps)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "live_height": self.live_height,
            "store_latest": self.store_latest,
            "tail_gap": self.tail_gap.to_dict() if self.tail_gap else None,
            "gaps": [g.to_dict() for g in self.gaps],
            "results": [r.to_dict() for r in self.results],
        }


class FullScanReconciler:
    """One-shot startup sweep over the whole store."""

    def __init__(self, engine: BackfillEngine, router, config: CollectorConfig):
        self.engine = engine
        self.router = router
        self.config = config
        self.completed = False
        self._started = False
        self.logger = logger.bind(component="full_scan")

    async def scan(self) -> List[GapInterval]:
        """Find internal gaps in the store without filling them."""
        heights = await self.router.all_heights()
        gaps = find_gaps(heights)
        if gaps:
            self.logger.warning("Internal gaps found",
                                intervals=len(gaps),
                                missing=sum(g.count for g in gaps))
        else:
            self.logger.info("No internal gaps", stored=len(heights))
        return gaps

    async def _wait_idle(self):
        if not await self.engine.wait_idle(self.config.backfill_wait_timeout):
            self.logger.warning("Backfill still running after wait, continuing anyway",
                                waited=self.config.backfill_wait_timeout)

    async def run(self, live_height: int, store_latest: int) -> Optional[ReconcileReport]:
        """
        Reconcile the store once.

        ``store_latest`` must be sampled before the live block at
        ``live_height`` is saved. Subsequent calls return None.
        """
        if self._started:
            return None
        self._started = True

        report = ReconcileReport(live_height=live_height, store_latest=store_latest)
        self.logger.info("Full scan started", live_height=live_height, store_latest=store_latest)

        if store_latest > 0 and live_height - 1 > store_latest:
            report.tail_gap = GapInterval.between(store_latest + 1, live_height - 1)
            self.logger.warning("Store behind live stream",
                                start=report.tail_gap.start,
                                end=report.tail_gap.end,
                                missing=report.tail_gap.count)
            report.results.append(
                await self.engine.run_large(report.tail_gap.start, report.tail_gap.end))

        await self._wait_idle()

        report.gaps = await self.scan()

        # newest first
        for gap in reversed(report.gaps):
            await self._wait_idle()
            report.results.append(await self.engine.run_large(gap.start, gap.end))

        self.completed = True
        self.logger.info("Full scan complete",
                         intervals=len(report.gaps),
                         missing=report.missing)
        return report


class IntegrityMonitor:
    """Periodic check that the store keeps up with the chain head."""

    def __init__(self,
                 client: TronGridClient,
                 engine: BackfillEngine,
                 router,
                 config: CollectorConfig):
        self.client = client
        self.engine = engine
        self.router = router
        self.config = config
        self.checks = 0
        self.logger = logger.bind(component="integrity_monitor")

    async def check_once(self) -> Optional[BackfillResult]:
        """Run one check. Returns the fill result when heights were missing."""
        self.checks += 1

        if self.engine.is_busy:
            self.logger.debug("Backfill running, skipping integrity check")
            return None

        latest = await self.router.latest_height()
        if latest == 0:
            self.logger.debug("Store empty, skipping integrity check")
            return None

        try:
            head = await self.client.get_chain_head()
        except TronGridError as e:
            self.logger.warning("Chain head unavailable, skipping integrity check", error=str(e))
            return None

        if head <= latest:
            self.logger.debug("Store up to date", store=latest, chain=head)
            return None

        end = min(latest + self.config.integrity_max_fill, head)
        self.logger.warning("Store behind chain head",
                            store=latest,
                            chain=head,
                            missing=head - latest,
                            filling=f"{latest + 1}-{end}")
        return await self.engine.fill_batched(latest + 1, end)

    async def run_forever(self):
        """Check every ``integrity_check_interval`` seconds until cancelled."""
        self.logger.info("Integrity monitor started", interval=self.config.integrity_check_interval)
        while True:
            await asyncio.sleep(self.config.integrity_check_interval)
            try:
                await self.check_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.error("Integrity check failed", error=str(e))
