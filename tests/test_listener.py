"""Tests for the upstream block subscription."""

import json

import pytest

from tron_collector.core.listener import (
    SUBSCRIBE_REQUEST,
    ConnectionState,
    MessageParseError,
    TronBlockListener,
    parse_block_message,
)


def notification(height, block_hash="0x00ab3f", timestamp=1700000000):
    return json.dumps({
        "jsonrpc": "2.0",
        "method": "eth_subscription",
        "params": {
            "subscription": "0xsub",
            "result": {"number": hex(height), "hash": block_hash, "timestamp": hex(timestamp)},
        },
    })


SUBSCRIPTION_ACK = json.dumps({"jsonrpc": "2.0", "id": 1, "result": "0xsub"})


class FakeUpstream:
    """One upstream WebSocket session."""

    def __init__(self, messages):
        self.messages = list(messages)
        self.sent = []
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def send(self, data):
        self.sent.append(json.loads(data))

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for message in self.messages:
            if self.closed:
                return
            yield message

    async def close(self):
        self.closed = True


class FakeConnector:
    """Replays sessions; raises OSError once they run out."""

    def __init__(self, sessions=()):
        self.sessions = list(sessions)
        self.urls = []

    def __call__(self, url, **kwargs):
        self.urls.append(url)
        if not self.sessions:
            raise OSError("Connection refused")
        session = self.sessions.pop(0)
        if isinstance(session, Exception):
            raise session
        return session


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


class TestParseBlockMessage:
    """Tests for notification parsing."""

    def test_notification_parsed(self):
        record = parse_block_message(notification(62000000, "0x00ab3f", 1700000000))

        assert record.height == 62000000
        assert record.hash == "0x00ab3f"
        assert record.timestamp == 1700000000
        assert record.digit_value == 3

    def test_subscription_ack_ignored(self):
        assert parse_block_message(SUBSCRIPTION_ACK) is None

    def test_bytes_frame_accepted(self):
        assert parse_block_message(notification(5).encode()).height == 5

    @pytest.mark.parametrize("raw", [
        "not json",
        json.dumps({"method": "eth_subscription"}),
        json.dumps({"method": "eth_subscription", "params": {"result": {"number": "zz", "hash": "a", "timestamp": "0x1"}}}),
        json.dumps({"method": "eth_subscription", "params": {"result": {"number": "0x1", "timestamp": "0x1"}}}),
        json.dumps({"method": "eth_subscription", "params": {"result": {"number": "0x1", "hash": 5, "timestamp": "0x1"}}}),
    ])
    def test_malformed_frames_raise(self, raw):
        with pytest.raises(MessageParseError):
            parse_block_message(raw)


class TestTronBlockListener:
    """Tests for the connection lifecycle."""

    @pytest.fixture
    def received(self):
        return []

    @pytest.fixture
    def on_block(self, received):
        async def handler(record):
            received.append(record.height)
        return handler

    @pytest.mark.asyncio
    async def test_subscribes_and_delivers_in_order(self, config, received, on_block):
        config.reconnect_max_attempts = 0
        session = FakeUpstream([SUBSCRIPTION_ACK, notification(100), notification(101), notification(102)])
        connector = FakeConnector([session])
        listener = TronBlockListener(config, on_block, connect=connector, sleep=RecordingSleep())

        await listener.run()

        assert session.sent == [SUBSCRIBE_REQUEST]
        assert connector.urls == ["wss://tron-mainnet.g.alchemy.com/v2/test-key"]
        assert received == [100, 101, 102]
        assert listener.blocks_received == 3

    @pytest.mark.asyncio
    async def test_backoff_then_failed(self, config, on_block):
        config.reconnect_max_attempts = 3
        config.reconnect_base_delay = 1.0
        sleep = RecordingSleep()
        listener = TronBlockListener(config, on_block, connect=FakeConnector(), sleep=sleep)

        await listener.run()

        assert sleep.delays == [1.0, 2.0, 4.0]
        assert listener.state == ConnectionState.FAILED
        assert not listener.running

    @pytest.mark.asyncio
    async def test_attempts_reset_on_open(self, config, on_block):
        config.reconnect_max_attempts = 2
        config.reconnect_base_delay = 1.0
        sleep = RecordingSleep()
        connector = FakeConnector([OSError("refused"), FakeUpstream([])])
        listener = TronBlockListener(config, on_block, connect=connector, sleep=sleep)

        await listener.run()

        assert sleep.delays == [1.0, 1.0, 2.0]
        assert listener.state == ConnectionState.FAILED

    @pytest.mark.asyncio
    async def test_malformed_messages_dropped(self, config, received, on_block):
        config.reconnect_max_attempts = 0
        session = FakeUpstream(["garbage", notification(7),
                                json.dumps({"method": "eth_subscription", "params": {}}),
                                notification(8)])
        listener = TronBlockListener(config, on_block, connect=FakeConnector([session]), sleep=RecordingSleep())

        await listener.run()

        assert received == [7, 8]
        assert listener.malformed_messages == 2

    @pytest.mark.asyncio
    async def test_handler_errors_do_not_stop_listener(self, config, received):
        config.reconnect_max_attempts = 0

        async def flaky(record):
            if record.height == 2:
                raise RuntimeError("store down")
            received.append(record.height)

        session = FakeUpstream([notification(1), notification(2), notification(3)])
        listener = TronBlockListener(config, flaky, connect=FakeConnector([session]), sleep=RecordingSleep())

        await listener.run()

        assert received == [1, 3]

    @pytest.mark.asyncio
    async def test_stop_prevents_reconnect(self, config, received):
        session = FakeUpstream([notification(1), notification(2)])
        connector = FakeConnector([session])
        sleep = RecordingSleep()

        async def stop_after_first(record):
            received.append(record.height)
            await listener.stop()

        listener = TronBlockListener(config, stop_after_first, connect=connector, sleep=sleep)
        await listener.run()

        assert received == [1]
        assert session.closed
        assert sleep.delays == []
        assert listener.state == ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_missing_api_key_does_not_start(self, config, on_block):
        config.alchemy_api_key = ""
        connector = FakeConnector()
        listener = TronBlockListener(config, on_block, connect=connector, sleep=RecordingSleep())

        await listener.run()

        assert connector.urls == []
        assert listener.state == ConnectionState.DISCONNECTED
