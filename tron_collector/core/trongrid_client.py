"""
TronGrid API client for backfill fetches and chain head queries.

API Documentation: https://developers.tron.network/reference
"""

import asyncio
from typing import Any, Dict, Optional
import httpx
import structlog

from tron_collector.core.rate_governor import RateGovernor, get_rate_governor
from tron_collector.models.blockchain import BlockRecord
from tron_collector.models.config import CollectorConfig

logger = structlog.get_logger(__name__)


class TronGridError(Exception):
    """TronGrid API specific error."""
    pass


class RateLimitError(TronGridError):
    """Upstream answered HTTP 429."""
    pass


class TransientFetchError(TronGridError):
    """Network failure, unexpected status or unusable payload."""
    pass


class FetchExhaustedError(TronGridError):
    """A height could not be fetched within its retry budget."""

    def __init__(self, height: int, attempts: int, last_error: Optional[Exception] = None):
        self.height = height
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Block {height} not fetched after {attempts} attempts: {last_error}")


class TronGridClient:
    """
    Async TronGrid client.

    Block fetches go through the shared rate governor and retry with
    exponential backoff. HTTP 429 grows the governor interval.
    """

    def __init__(self,
                 config: CollectorConfig,
                 governor: Optional[RateGovernor] = None,
                 http_client: Optional[httpx.AsyncClient] = None,
                 sleep=asyncio.sleep):
        self.config = config
        self._sleep = sleep
        self.governor = governor or get_rate_governor(config)
        self.logger = logger.bind(component="trongrid_client")

        headers = {
            'Accept': 'application/json',
            'Content-Type': 'application/json; charset=utf-8',
            'User-Agent': 'tron-collector/1.0.0',
        }
        if config.trongrid_api_key:
            headers['TRON-PRO-API-KEY'] = config.trongrid_api_key

        self._client = http_client or httpx.AsyncClient(
            base_url=config.trongrid_base_url,
            timeout=config.request_timeout,
        )
        self._client.headers.update(headers)

        self.logger.info("TronGrid client initialized",
                         base_url=config.trongrid_base_url,
                         has_api_key=bool(config.trongrid_api_key))

    async def _post(self, endpoint: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST a request and classify the failure modes."""
        try:
            response = await self._client.post(endpoint, json=payload)
        except httpx.HTTPError as e:
            raise TransientFetchError(f"Request to {endpoint} failed: {e}") from e

        if response.status_code == 429:
            raise RateLimitError(f"Rate limited on {endpoint}")

        if response.is_error:
            raise TransientFetchError(f"HTTP Error: {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise TransientFetchError(f"Invalid JSON from {endpoint}") from e

        if not isinstance(data, dict):
            raise TransientFetchError(f"Unexpected payload from {endpoint}")
        return data

    @staticmethod
    def parse_block(height: int, data: Dict[str, Any]) -> BlockRecord:
        """Convert a getblockbynum payload into a BlockRecord."""
        block_id = data.get("blockID")
        if not block_id:
            raise TransientFetchError(f"Block {height} not found")

        try:
            timestamp_ms = int(data["block_header"]["raw_data"]["timestamp"])
        except (KeyError, TypeError, ValueError) as e:
            raise TransientFetchError(f"Block {height} has no header timestamp") from e

        return BlockRecord.create(height, block_id, timestamp_ms // 1000)

    async def fetch_block_by_height(self, height: int) -> BlockRecord:
        """
        Fetch a single block by height.

        Raises:
            FetchExhaustedError: when the retry budget is used up.
        """
        max_retries = self.config.fetch_max_retries
        base_delay = self.config.fetch_retry_base_delay
        transient_failures = 0
        last_error: Optional[Exception] = None
        attempts = 0

        for attempt in range(max_retries):
            attempts = attempt + 1
            await self.governor.acquire()

            try:
                data = await self._post("/wallet/getblockbynum", {"num": height})
                block = self.parse_block(height, data)

            except RateLimitError as e:
                last_error = e
                self.governor.report_rate_limited()
                if attempts == max_retries:
                    break
                delay = base_delay * (2 ** attempt)
                self.logger.warning("Rate limited, retrying block",
                                    height=height,
                                    attempt=attempts,
                                    max_retries=max_retries,
                                    delay=delay)
                await self._sleep(delay)
                continue

            except TransientFetchError as e:
                last_error = e
                transient_failures += 1
                self.logger.warning("Block fetch failed",
                                    height=height,
                                    attempt=attempts,
                                    error=str(e))
                if transient_failures > self.config.fetch_transient_retries or attempts == max_retries:
                    break
                await self._sleep(base_delay * (2 ** attempt))
                continue

            self.governor.report_success()
            return block

        self.logger.error("Block fetch abandoned",
                          height=height,
                          attempts=attempts,
                          error=str(last_error))
        raise FetchExhaustedError(height, attempts, last_error)

    async def get_chain_head(self) -> int:
        """
        Get the current chain head height.

        Uses its own bounded retry and does not consume the rate governor.
        """
        max_retries = self.config.chain_head_max_retries
        base_delay = self.config.chain_head_retry_base_delay
        last_error: Optional[Exception] = None

        for attempt in range(max_retries):
            try:
                data = await self._post("/wallet/getnowblock", {})
                return int(data["block_header"]["raw_data"]["number"])

            except (TronGridError, KeyError, TypeError, ValueError) as e:
                last_error = e
                self.logger.warning("Chain head query failed",
                                    attempt=attempt + 1,
                                    max_retries=max_retries,
                                    error=str(e))
                if attempt < max_retries - 1:
                    await self._sleep(base_delay * (2 ** attempt))

        raise TronGridError(f"Chain head query failed after {max_retries} attempts: {last_error}")

    async def close(self):
        """Close the HTTP client."""
        await self._client.aclose()
        self.logger.info("TronGrid client closed")
