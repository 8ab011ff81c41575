"""Upstream newHeads subscription with reconnect and backoff."""

import asyncio
import json
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import structlog
import websockets
from websockets.exceptions import WebSocketException

from tron_collector.models.blockchain import BlockRecord
from tron_collector.models.config import CollectorConfig
from tron_collector.utils.metrics import metrics

logger = structlog.get_logger(__name__)

SUBSCRIBE_REQUEST = {
    "jsonrpc": "2.0",
    "id": 1,
    "method": "eth_subscribe",
    "params": ["newHeads"],
}


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


class MessageParseError(Exception):
    """Upstream frame could not be turned into a block record."""
    pass


class UpstreamConnectionError(Exception):
    """The upstream subscription could not be opened or was dropped."""
    pass


def parse_block_message(raw: Any) -> Optional[BlockRecord]:
    """
    Parse a subscription frame.

    Returns None for frames that are not block notifications (such as the
    subscription acknowledgement).

    Raises:
        MessageParseError: when a frame is not JSON or a notification lacks
            the expected fields.
    """
    try:
        message = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MessageParseError(f"Invalid JSON frame: {e}") from e

    if not isinstance(message, dict) or message.get("method") != "eth_subscription":
        return None

    try:
        result = message["params"]["result"]
        height = int(result["number"], 16)
        block_hash = result["hash"]
        timestamp = int(result["timestamp"], 16)
    except (KeyError, TypeError, ValueError) as e:
        raise MessageParseError(f"Malformed block notification: {e}") from e

    if not isinstance(block_hash, str):
        raise MessageParseError("Block hash is not a string")

    return BlockRecord.create(height, block_hash, timestamp)


class TronBlockListener:
    """
    Maintains the upstream WebSocket subscription.

    Every parsed block is awaited through ``on_block`` before the next frame
    is read, so live blocks are handled in arrival order.
    """

    def __init__(self,
                 config: CollectorConfig,
                 on_block: Callable[[BlockRecord], Awaitable[None]],
                 connect=websockets.connect,
                 sleep=asyncio.sleep):
        self.config = config
        self.on_block = on_block
        self._connect = connect
        self._sleep = sleep

        self.state = ConnectionState.DISCONNECTED
        self.reconnect_attempts = 0
        self.blocks_received = 0
        self.malformed_messages = 0
        self._ws = None
        self._running = False

        self.logger = logger.bind(component="block_listener")

    @property
    def running(self) -> bool:
        return self._running

    def reconnect_delay(self, attempt: int) -> float:
        """Delay before reconnect attempt ``attempt`` (1-based)."""
        return self.config.reconnect_base_delay * (2 ** (attempt - 1))

    async def run(self):
        """Connect and keep the subscription alive until stopped or failed."""
        if not self.config.alchemy_api_key:
            self.logger.error("Missing Alchemy API key, listener not started")
            return

        self._running = True
        max_attempts = self.config.reconnect_max_attempts

        while self._running:
            try:
                await self._connect_once()
            except UpstreamConnectionError as e:
                self.logger.warning("Upstream connection lost", error=str(e))

            if not self._running:
                break

            if self.reconnect_attempts >= max_attempts:
                self.state = ConnectionState.FAILED
                self._running = False
                self.logger.error("Reconnect attempts exhausted, giving up",
                                  attempts=self.reconnect_attempts)
                return

            self.reconnect_attempts += 1
            delay = self.reconnect_delay(self.reconnect_attempts)
            self.state = ConnectionState.RECONNECTING
            self.logger.info("Reconnecting",
                             delay=delay,
                             attempt=self.reconnect_attempts,
                             max_attempts=max_attempts)
            await self._sleep(delay)

        self.state = ConnectionState.DISCONNECTED

    async def _connect_once(self):
        self.state = ConnectionState.CONNECTING
        try:
            async with self._connect(self.config.upstream_url,
                                     open_timeout=self.config.request_timeout) as ws:
                self._ws = ws
                self.state = ConnectionState.CONNECTED
                self.reconnect_attempts = 0
                self.logger.info("Connected to upstream")

                await ws.send(json.dumps(SUBSCRIBE_REQUEST))

                async for message in ws:
                    await self._handle_message(message)

        except (WebSocketException, OSError, asyncio.TimeoutError) as e:
            raise UpstreamConnectionError(str(e)) from e

        finally:
            self._ws = None

        if self._running:
            raise UpstreamConnectionError("Upstream closed the subscription")

    async def _handle_message(self, raw):
        try:
            record = parse_block_message(raw)
        except MessageParseError as e:
            self.malformed_messages += 1
            metrics.malformed_messages.inc()
            self.logger.warning("Dropping malformed message", error=str(e))
            return

        if record is None:
            return

        self.blocks_received += 1
        try:
            await self.on_block(record)
        except Exception as e:
            self.logger.error("Block handler failed", height=record.height, error=str(e))

    async def stop(self):
        """Close the socket and prevent reconnection."""
        self._running = False
        if self._ws is not None:
            try:
                await self._ws.close()
            except (WebSocketException, OSError) as e:
                self.logger.debug("Error closing upstream socket", error=str(e))
        self.state = ConnectionState.DISCONNECTED
        self.logger.info("Listener stopped")
