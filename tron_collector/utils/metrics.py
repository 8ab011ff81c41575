"""Prometheus metrics for the TRON collector."""

from prometheus_client import Counter, Gauge


class Metrics:
    """Prometheus metrics collection."""

    def __init__(self):
        # Ingestion metrics
        self.blocks_stored = Counter(
            'tron_collector_blocks_stored_total',
            'Blocks newly written to the store',
            ['source']
        )

        self.backfill_failures = Counter(
            'tron_collector_backfill_failures_total',
            'Heights abandoned after exhausting their retry budget',
            ['path']
        )

        self.malformed_messages = Counter(
            'tron_collector_malformed_messages_total',
            'Upstream messages dropped because they could not be parsed'
        )

        self.last_processed_height = Gauge(
            'tron_collector_last_processed_height',
            'Height of the last live block processed'
        )

        # Upstream throttling
        self.rate_limit_hits = Counter(
            'tron_collector_rate_limit_hits_total',
            'HTTP 429 responses from the upstream REST API'
        )

        self.rate_interval = Gauge(
            'tron_collector_rate_interval_seconds',
            'Current minimum interval between upstream fetches'
        )

        # Storage and fanout
        self.storage_failovers = Counter(
            'tron_collector_storage_failovers_total',
            'Switches from the primary store to the memory fallback'
        )

        self.live_subscribers = Gauge(
            'tron_collector_live_subscribers',
            'Connected live WebSocket subscribers'
        )


# Global metrics instance
metrics = Metrics()
