"""
TRON Block Collector

Ingests new TRON blocks, classifies each block hash into (Parity, Magnitude),
keeps a gap-free capacity-bounded record in Redis (with an in-memory fallback)
and republishes every record to live subscribers.
"""

__version__ = "1.0.0"
__description__ = "Gap-free TRON block collector with Redis storage and live fanout"

from tron_collector.core.collector import TronCollector
from tron_collector.core.trongrid_client import TronGridClient
from tron_collector.database.router import PersistenceRouter
from tron_collector.models.config import CollectorConfig

__all__ = [
    "TronCollector",
    "TronGridClient",
    "PersistenceRouter",
    "CollectorConfig",
]
