"""Core collection pipeline."""

from tron_collector.core.classifier import classify, last_digit
from tron_collector.core.rate_governor import RateGovernor, get_rate_governor
from tron_collector.core.trongrid_client import (
    TronGridClient,
    TronGridError,
    RateLimitError,
    TransientFetchError,
    FetchExhaustedError,
)
from tron_collector.core.backfill import BackfillEngine
from tron_collector.core.reconciler import FullScanReconciler, IntegrityMonitor, ReconcileReport, find_gaps
from tron_collector.core.listener import (
    ConnectionState,
    MessageParseError,
    TronBlockListener,
    UpstreamConnectionError,
    parse_block_message,
)
from tron_collector.core.collector import TronCollector

__all__ = [
    "classify",
    "last_digit",
    "RateGovernor",
    "get_rate_governor",
    "TronGridClient",
    "TronGridError",
    "RateLimitError",
    "TransientFetchError",
    "FetchExhaustedError",
    "BackfillEngine",
    "FullScanReconciler",
    "IntegrityMonitor",
    "ReconcileReport",
    "find_gaps",
    "ConnectionState",
    "MessageParseError",
    "TronBlockListener",
    "UpstreamConnectionError",
    "parse_block_message",
    "TronCollector",
]
