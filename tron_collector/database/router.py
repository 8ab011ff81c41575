"""Persistence router with one-way failover from the primary to the fallback store."""

import asyncio
from enum import Enum
from typing import Any, List
import structlog

from tron_collector.database.backends import StorageBackend
from tron_collector.models.blockchain import BlockRecord, StoreStats
from tron_collector.utils.metrics import metrics

logger = structlog.get_logger(__name__)


class StorageMode(str, Enum):
    """Which backend the router currently uses."""
    PRIMARY = "primary"
    DEGRADED = "degraded"


class PersistenceRouter:
    """
    Routes every store operation to the primary backend first.

    The first exception from the primary flips the router into DEGRADED
    mode and the same call is retried on the fallback. From then on every
    call goes straight to the fallback for the life of the router.
    """

    def __init__(self, primary: StorageBackend, fallback: StorageBackend):
        self.primary = primary
        self.fallback = fallback
        self.mode = StorageMode.PRIMARY
        self.logger = logger.bind(component="persistence_router")

        self.logger.info("Persistence router initialized",
                         primary=primary.name,
                         fallback=fallback.name)

    @property
    def degraded(self) -> bool:
        return self.mode == StorageMode.DEGRADED

    @property
    def active_backend(self) -> StorageBackend:
        return self.fallback if self.degraded else self.primary

    def mark_degraded(self, operation: str, error: Exception):
        """Switch to the fallback store. Never reverted."""
        if self.degraded:
            return
        self.mode = StorageMode.DEGRADED
        metrics.storage_failovers.inc()
        self.logger.error("Primary store failed, switching to memory fallback",
                          operation=operation,
                          primary=self.primary.name,
                          fallback=self.fallback.name,
                          error=str(error))

    async def _route(self, operation: str, *args) -> Any:
        if not self.degraded:
            try:
                return await getattr(self.primary, operation)(*args)
            except Exception as e:
                self.mark_degraded(operation, e)

        return await getattr(self.fallback, operation)(*args)

    async def probe(self, timeout: float) -> bool:
        """Ping the primary once at startup; degrade if it is unreachable."""
        if self.degraded:
            return False
        try:
            await asyncio.wait_for(self.primary.ping(), timeout=timeout)
        except Exception as e:
            self.logger.warning("Primary store unreachable at startup", error=str(e))
            self.mark_degraded("ping", e)
            return False

        self.logger.info("Primary store reachable", backend=self.primary.name)
        return True

    async def save(self, record: BlockRecord) -> bool:
        return await self._route("save", record)

    async def publish(self, payload: str) -> None:
        await self._route("publish", payload)

    async def query_range(self, limit: int) -> List[BlockRecord]:
        return await self._route("query_range", limit)

    async def all_heights(self) -> List[int]:
        return await self._route("all_heights")

    async def latest_height(self) -> int:
        return await self._route("latest_height")

    async def stats(self) -> StoreStats:
        return await self._route("stats")

    async def clear_all(self) -> None:
        await self._route("clear_all")

    async def close(self):
        """Close both backends."""
        for backend in (self.primary, self.fallback):
            try:
                await backend.close()
            except Exception as e:
                self.logger.warning("Error closing backend", backend=backend.name, error=str(e))
