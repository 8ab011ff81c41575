"""Pytest configuration and fixtures for TRON collector tests."""

import pytest

from fakes import FakeRedis, FakeTronGridClient
from tron_collector.core.backfill import BackfillEngine
from tron_collector.core.collector import TronCollector
from tron_collector.database.backends import MemoryBackend
from tron_collector.database.router import PersistenceRouter
from tron_collector.fanout.bus import EventBus
from tron_collector.fanout.publisher import FanoutPublisher
from tron_collector.models.config import CollectorConfig


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def config():
    """Collector configuration with every delay removed."""
    return CollectorConfig(
        alchemy_api_key="test-key",
        rate_base_interval=0.0,
        fetch_retry_base_delay=0.0,
        chain_head_retry_base_delay=0.0,
        reconnect_base_delay=0.0,
        live_gap_batch_pause=0.0,
        backfill_wait_timeout=2.0,
        integrity_check_interval=0.01,
        max_blocks=1000,
    )


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def router(config, bus):
    """Router whose primary and fallback are both in-memory."""
    return PersistenceRouter(MemoryBackend(config.max_blocks, bus), MemoryBackend(config.max_blocks, bus))


@pytest.fixture
def fake_client():
    return FakeTronGridClient()


@pytest.fixture
def publisher(router, bus):
    return FanoutPublisher(router, bus)


@pytest.fixture
def engine(fake_client, router, publisher, config):
    return BackfillEngine(fake_client, router, publisher, config)


@pytest.fixture
def collector(config, router, fake_client, bus):
    return TronCollector(config, router, fake_client, bus)


@pytest.fixture
def fake_redis():
    return FakeRedis()
