"""Prometheus metrics for the TRON block API."""

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from fastapi import FastAPI, Response

RAW_LOAD_BUCKETS = (10, 100, 264, 500, 1000, 5000, 10000, 50000, 100000)


class Metrics:
    """HTTP, range query and live stream metrics."""

    def __init__(self):
        self.request_count = Counter(
            'tron_api_requests_total',
            'Total number of API requests',
            ['method', 'endpoint', 'status']
        )
        self.request_duration = Histogram(
            'tron_api_request_duration_seconds',
            'Request duration in seconds',
            ['method', 'endpoint']
        )

        # Range queries
        self.range_queries = Counter(
            'tron_api_range_queries_total',
            'Range queries served',
            ['filtered']
        )
        self.range_raw_loaded = Histogram(
            'tron_api_range_raw_loaded',
            'Raw records loaded from the store per range query',
            buckets=RAW_LOAD_BUCKETS
        )

        # Live stream
        self.ws_sessions = Counter(
            'tron_api_ws_sessions_total',
            'WebSocket sessions opened on /ws'
        )

    def observe_range_query(self, step: int, total_raw: int) -> None:
        self.range_queries.labels(filtered=str(step > 1).lower()).inc()
        self.range_raw_loaded.observe(total_raw)


metrics = Metrics()


def setup_metrics(app: FastAPI):
    """Expose the default registry on GET /metrics."""

    @app.get("/metrics", include_in_schema=False)
    async def get_metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
