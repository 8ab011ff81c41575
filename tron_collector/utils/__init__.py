"""Utility functions and helpers."""

from tron_collector.utils.logging import setup_logging
from tron_collector.utils.metrics import metrics

__all__ = [
    "setup_logging",
    "metrics",
]
