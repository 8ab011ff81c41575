"""Tests for live gap closing and large-scale backfill."""

import asyncio

import pytest

from fakes import FakeTronGridClient, make_record
from tron_collector.core.backfill import BackfillEngine


class TestCloseLiveGap:
    """Tests for the live-path gap fill."""

    @pytest.mark.asyncio
    async def test_no_gap_no_fetch(self, engine, fake_client):
        assert await engine.close_live_gap(100, 101) is None
        assert fake_client.fetched == []

    @pytest.mark.asyncio
    async def test_first_block_never_backfills(self, engine, fake_client):
        assert await engine.close_live_gap(0, 5000) is None
        assert fake_client.fetched == []

    @pytest.mark.asyncio
    async def test_gap_fetches_exactly_missing_heights(self, engine, fake_client, router):
        result = await engine.close_live_gap(105, 110)

        assert sorted(fake_client.fetched) == [106, 107, 108, 109]
        assert result.succeeded == 4
        assert result.failed == 0
        assert result.deferred is None
        assert await router.all_heights() == [106, 107, 108, 109]

    @pytest.mark.asyncio
    async def test_recovered_blocks_are_published(self, engine, bus):
        received = []

        async def handler(message):
            received.append(message)

        bus.subscribe(handler)
        await engine.close_live_gap(10, 13)

        assert len(received) == 2

    @pytest.mark.asyncio
    async def test_already_stored_height_not_republished(self, engine, bus, router):
        await router.save(make_record(11))
        received = []

        async def handler(message):
            received.append(message)

        bus.subscribe(handler)
        await engine.close_live_gap(10, 13)

        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_large_gap_is_clamped_and_deferred(self, engine, fake_client, config):
        result = await engine.close_live_gap(1000, 1501)

        assert len(fake_client.fetched) == config.live_gap_max_fill
        assert min(fake_client.fetched) == 1301
        assert max(fake_client.fetched) == 1500
        assert result.deferred.start == 1001
        assert result.deferred.end == 1300
        assert result.deferred.count == 300

    @pytest.mark.asyncio
    async def test_batches_bound_concurrency(self, router, publisher, config):
        client = FakeTronGridClient(delay=0.001)
        engine = BackfillEngine(client, router, publisher, config)

        await engine.close_live_gap(1, 50)

        assert 1 < client.max_in_flight <= config.live_gap_batch_size

    @pytest.mark.asyncio
    async def test_failed_heights_counted_and_left_absent(self, router, publisher, config):
        client = FakeTronGridClient(missing={3})
        engine = BackfillEngine(client, router, publisher, config)

        result = await engine.close_live_gap(1, 5)

        assert result.succeeded == 2
        assert result.failed == 1
        assert engine.failed == 1
        assert await router.all_heights() == [2, 4]


class TestRunLarge:
    """Tests for the single-flight large backfill."""

    @pytest.mark.asyncio
    async def test_fetches_serially_newest_first(self, engine, fake_client):
        result = await engine.run_large(10, 15)

        assert fake_client.fetched == [15, 14, 13, 12, 11, 10]
        assert fake_client.max_in_flight == 1
        assert result.succeeded == 6
        assert not engine.is_busy

    @pytest.mark.asyncio
    async def test_empty_range(self, engine, fake_client):
        result = await engine.run_large(10, 9)
        assert result.requested == 0
        assert fake_client.fetched == []

    @pytest.mark.asyncio
    async def test_never_two_runs_at_once(self, router, publisher, config):
        client = FakeTronGridClient(delay=0.001)
        engine = BackfillEngine(client, router, publisher, config)

        await asyncio.gather(
            engine.run_large(1, 10),
            engine.run_large(11, 20),
            engine.run_large(21, 30),
        )

        assert client.max_in_flight == 1
        assert sorted(client.fetched) == list(range(1, 31))

    @pytest.mark.asyncio
    async def test_second_caller_waits_for_first(self, router, publisher, config):
        client = FakeTronGridClient(delay=0.001)
        engine = BackfillEngine(client, router, publisher, config)

        first = asyncio.create_task(engine.run_large(1, 5))
        await asyncio.sleep(0)
        assert engine.is_busy

        await engine.run_large(6, 8)
        await first

        # the first run finished before the second started
        assert client.fetched == [5, 4, 3, 2, 1, 8, 7, 6]

    @pytest.mark.asyncio
    async def test_skip_after_wait_timeout(self, router, publisher, config):
        client = FakeTronGridClient(delay=0.05)
        engine = BackfillEngine(client, router, publisher, config)

        first = asyncio.create_task(engine.run_large(1, 5))
        await asyncio.sleep(0)

        skipped = await engine.run_large(6, 8, wait_timeout=0.01)
        await first

        assert skipped.skipped is True
        assert engine.skipped_runs == 1
        assert 6 not in client.fetched

    @pytest.mark.asyncio
    async def test_timeout_holds_behind_queued_waiter(self, router, publisher, config):
        """Test a just-released lock with a queued waiter still honours the timeout."""
        engine = BackfillEngine(FakeTronGridClient(), router, publisher, config)

        await engine._large_lock.acquire()
        waiter = asyncio.create_task(engine._acquire_large(5.0))
        await asyncio.sleep(0)
        engine._large_lock.release()

        result = await asyncio.wait_for(engine.run_large(1, 1, wait_timeout=0.05), timeout=1.0)

        assert result.skipped is True
        assert await waiter is True
        engine._large_lock.release()

    @pytest.mark.asyncio
    async def test_wait_idle(self, router, publisher, config):
        client = FakeTronGridClient(delay=0.001)
        engine = BackfillEngine(client, router, publisher, config)

        assert await engine.wait_idle(0.1) is True

        task = asyncio.create_task(engine.run_large(1, 3))
        await asyncio.sleep(0)
        assert await engine.wait_idle(1.0) is True
        assert task.done()
        assert not engine.is_busy

    @pytest.mark.asyncio
    async def test_wait_idle_timeout(self, router, publisher, config):
        client = FakeTronGridClient(delay=0.05)
        engine = BackfillEngine(client, router, publisher, config)

        task = asyncio.create_task(engine.run_large(1, 3))
        await asyncio.sleep(0)

        assert await engine.wait_idle(0.01) is False
        await task
