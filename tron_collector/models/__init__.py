"""Data models and configuration."""

from tron_collector.models.config import CollectorConfig
from tron_collector.models.blockchain import (
    BackfillResult,
    BlockRecord,
    Classification,
    GapInterval,
    Magnitude,
    Parity,
    StoreStats,
)

__all__ = [
    "CollectorConfig",
    "BackfillResult",
    "BlockRecord",
    "Classification",
    "GapInterval",
    "Magnitude",
    "Parity",
    "StoreStats",
]
