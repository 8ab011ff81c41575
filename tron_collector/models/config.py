"""Configuration management using Pydantic settings."""

from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CollectorConfig(BaseSettings):
    """Configuration for the TRON block collector."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="TRON_",
        case_sensitive=False,
        extra="ignore",
    )

    # Upstream Settings
    alchemy_api_key: str = Field(default="", description="Alchemy API key for the block subscription")
    upstream_ws_url: str = Field(
        default="wss://tron-mainnet.g.alchemy.com/v2/{api_key}",
        description="Upstream WebSocket URL template",
    )
    trongrid_base_url: str = Field(default="https://api.trongrid.io", description="TronGrid REST base URL")
    trongrid_api_key: Optional[str] = Field(default=None, description="TronGrid API key (TRON-PRO-API-KEY)")
    request_timeout: float = Field(default=30.0, description="HTTP request timeout in seconds")

    # Redis Settings
    redis_host: str = Field(default="localhost", description="Redis host")
    redis_port: int = Field(default=6379, description="Redis port")
    redis_db: int = Field(default=0, description="Redis database index")
    redis_password: Optional[str] = Field(default=None, description="Redis password")
    redis_connect_timeout: float = Field(default=5.0, description="Startup ping timeout in seconds")

    # Store Settings
    max_blocks: int = Field(default=30000, description="Maximum number of stored blocks")
    block_ttl_seconds: int = Field(default=7 * 24 * 60 * 60, description="Per-block TTL in the primary store")

    # Reconnect Settings
    reconnect_max_attempts: int = Field(default=10, description="Reconnect attempts before giving up")
    reconnect_base_delay: float = Field(default=1.0, description="Base reconnect delay in seconds")

    # Rate Governor Settings
    rate_base_interval: float = Field(default=0.25, description="Minimum interval between fetches in seconds")
    rate_backoff_factor: float = Field(default=1.5, description="Interval multiplier on HTTP 429")
    rate_recovery_factor: float = Field(default=0.9, description="Interval multiplier on recovery")
    rate_recovery_probability: float = Field(default=0.1, description="Recovery chance per successful fetch")

    # Fetch Retry Settings
    fetch_max_retries: int = Field(default=5, description="Attempts per height before abandoning it")
    fetch_transient_retries: int = Field(default=2, description="Retries allowed for non-429 errors")
    fetch_retry_base_delay: float = Field(default=1.0, description="Base retry backoff in seconds")
    chain_head_max_retries: int = Field(default=3, description="Attempts for the chain head query")
    chain_head_retry_base_delay: float = Field(default=0.5, description="Base chain head backoff in seconds")

    # Live Gap Settings
    live_gap_max_fill: int = Field(default=200, description="Newest heights closed inline on a live gap")
    live_gap_batch_size: int = Field(default=10, description="Concurrent fetches per live gap batch")
    live_gap_batch_pause: float = Field(default=0.5, description="Pause between live gap batches in seconds")

    # Large Backfill Settings
    backfill_wait_timeout: float = Field(default=300.0, description="Max wait for a running backfill in seconds")
    backfill_progress_every: int = Field(default=10, description="Log progress every N recovered blocks")

    # Integrity Monitor Settings
    integrity_check_interval: float = Field(default=30.0, description="Seconds between chain head checks")
    integrity_max_fill: int = Field(default=100, description="Max heights filled per integrity check")

    # Logging Settings
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="json", description="Log format (json|text)")
    log_file: Optional[str] = Field(default=None, description="Log file path")
    log_max_size_mb: int = Field(default=100, description="Max log file size in MB")
    log_backup_count: int = Field(default=5, description="Number of log backups")

    @property
    def upstream_url(self) -> str:
        """Resolve the upstream WebSocket URL."""
        return self.upstream_ws_url.format(api_key=self.alchemy_api_key)

    @property
    def redis_url(self) -> str:
        """Generate Redis connection URL."""
        auth = f":{self.redis_password}@" if self.redis_password else ""
        return f"redis://{auth}{self.redis_host}:{self.redis_port}/{self.redis_db}"
