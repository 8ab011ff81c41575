"""Range query over the stored blocks."""

import math
import time
from typing import Any, Dict
import structlog

logger = structlog.get_logger(__name__)


class InvalidRangeQuery(ValueError):
    """Query parameters that can never match a block."""
    pass


def _elapsed_ms(start: float, end: float) -> float:
    return round((end - start) * 1000, 3)


class BlockService:
    """
    Serves step/offset filtered views of the newest stored blocks.

    Only ``limit * step * safety_factor`` raw records are loaded (capped at
    the store capacity); the filter then keeps heights with
    ``height % step == offset``.
    """

    def __init__(self, router, max_blocks: int, safety_factor: float = 1.5):
        self.router = router
        self.max_blocks = max_blocks
        self.safety_factor = safety_factor
        self.logger = logger.bind(component="block_service")

    def estimate_raw(self, limit: int, step: int) -> int:
        return math.ceil(limit * step * self.safety_factor)

    async def query(self, limit: int, step: int = 1, offset: int = 0) -> Dict[str, Any]:
        """Return up to ``limit`` filtered blocks, newest first, with load metadata."""
        if limit < 1:
            raise InvalidRangeQuery("limit must be at least 1")
        if step < 1:
            raise InvalidRangeQuery("step must be at least 1")
        if not 0 <= offset < step:
            raise InvalidRangeQuery(f"offset must be in [0, {step})")

        estimated_raw = self.estimate_raw(limit, step)
        actual_raw = min(estimated_raw, self.max_blocks)

        started = time.perf_counter()
        raw = await self.router.query_range(actual_raw)
        loaded = time.perf_counter()

        if step > 1:
            filtered = [r for r in raw if r.height % step == offset]
        else:
            filtered = raw
        filter_done = time.perf_counter()

        result = filtered[:limit]
        finished = time.perf_counter()

        self.logger.info("Range query served",
                         step=step,
                         offset=offset,
                         loaded=len(raw),
                         filtered=len(filtered),
                         returned=len(result))

        return {
            "data": [r.to_dict() for r in result],
            "count": len(result),
            "metadata": {
                "step": step,
                "offset": offset,
                "total_raw": len(raw),
                "total_filtered": len(filtered),
                "returned": len(result),
                "requested": limit,
                "estimated_raw": estimated_raw,
                "actual_raw": actual_raw,
                "performance": {
                    "store_load_ms": _elapsed_ms(started, loaded),
                    "filter_ms": _elapsed_ms(loaded, filter_done),
                    "total_ms": _elapsed_ms(started, finished),
                },
            },
        }
