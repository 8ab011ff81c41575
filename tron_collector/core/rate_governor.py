"""
Adaptive rate governor shared by every upstream block fetch.

Multiplicative backoff on HTTP 429, slow probabilistic recovery on success.
The governor holds no lock: callers issuing concurrent fetches can all pass
``acquire()`` within the same interval.
"""

import asyncio
import random
import time
from typing import Any, Awaitable, Callable, Dict, Optional
import structlog

from tron_collector.models.config import CollectorConfig
from tron_collector.utils.metrics import metrics

logger = structlog.get_logger(__name__)


class RateGovernor:
    """Process-wide throttle for upstream REST calls."""

    def __init__(self,
                 base_interval: float = 0.25,
                 backoff_factor: float = 1.5,
                 recovery_factor: float = 0.9,
                 recovery_probability: float = 0.1,
                 rng: Optional[random.Random] = None,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.base_interval = base_interval
        self.min_interval = base_interval
        self.backoff_factor = backoff_factor
        self.recovery_factor = recovery_factor
        self.recovery_probability = recovery_probability
        self.last_call_at: Optional[float] = None
        self.rate_limit_hits = 0

        self._rng = rng or random.Random()
        self._clock = clock
        self._sleep = sleep
        self.logger = logger.bind(component="rate_governor")

        metrics.rate_interval.set(self.min_interval)

    @classmethod
    def from_config(cls, config: CollectorConfig) -> "RateGovernor":
        return cls(
            base_interval=config.rate_base_interval,
            backoff_factor=config.rate_backoff_factor,
            recovery_factor=config.rate_recovery_factor,
            recovery_probability=config.rate_recovery_probability,
        )

    async def acquire(self) -> float:
        """
        Wait until ``min_interval`` has elapsed since the previous call.

        Returns the number of seconds spent waiting.
        """
        waited = 0.0
        if self.last_call_at is not None:
            elapsed = self._clock() - self.last_call_at
            if elapsed < self.min_interval:
                waited = self.min_interval - elapsed
                await self._sleep(waited)
        self.last_call_at = self._clock()
        return waited

    def report_rate_limited(self) -> float:
        """Grow the interval after a rejection. Returns the new interval."""
        old_interval = self.min_interval
        self.min_interval = self.min_interval * self.backoff_factor
        self.rate_limit_hits += 1

        metrics.rate_limit_hits.inc()
        metrics.rate_interval.set(self.min_interval)

        self.logger.warning("Rate limited, slowing down",
                            hits=self.rate_limit_hits,
                            old_interval=old_interval,
                            new_interval=self.min_interval,
                            requests_per_second=round(1 / self.min_interval, 2) if self.min_interval else None)
        return self.min_interval

    def report_success(self) -> bool:
        """Occasionally relax the interval after a success. Returns True if it changed."""
        if self.min_interval <= self.base_interval:
            return False

        if self._rng.random() >= self.recovery_probability:
            return False

        old_interval = self.min_interval
        self.min_interval = max(self.base_interval, self.min_interval * self.recovery_factor)
        metrics.rate_interval.set(self.min_interval)

        self.logger.info("Rate recovered",
                         old_interval=old_interval,
                         new_interval=self.min_interval,
                         requests_per_second=round(1 / self.min_interval, 2))
        return self.min_interval != old_interval

    def snapshot(self) -> Dict[str, Any]:
        """Get governor state."""
        return {
            "min_interval": self.min_interval,
            "base_interval": self.base_interval,
            "rate_limit_hits": self.rate_limit_hits,
            "requests_per_second": round(1 / self.min_interval, 2) if self.min_interval else None,
        }


# ============================================================
# Singleton Instance
# ============================================================

_governor: Optional[RateGovernor] = None


def get_rate_governor(config: Optional[CollectorConfig] = None) -> RateGovernor:
    """Get or create the process-wide rate governor."""
    global _governor
    if _governor is None:
        _governor = RateGovernor.from_config(config or CollectorConfig())
    return _governor
