"""Configuration settings for the TRON block API."""

from typing import List, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class APISettings(BaseSettings):
    """API configuration settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="TRON_API_",
        case_sensitive=False,
        extra="ignore",
    )

    # API Configuration
    api_title: str = Field(default="TRON Block API", description="API title")
    api_description: str = Field(default="Classified TRON blocks: range queries and live stream", description="API description")
    api_version: str = Field(default="1.0.0", description="API version")
    debug: bool = Field(default=False, description="Debug mode")

    # Server Configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=3001, description="Server port")
    cors_origins: List[str] = Field(default=["*"], description="CORS allowed origins")
    cors_methods: List[str] = Field(default=["GET", "DELETE"], description="CORS allowed methods")

    # Range Query
    default_limit: int = Field(default=264, description="Default number of filtered blocks returned")
    max_limit: int = Field(default=30000, description="Largest accepted limit")
    raw_safety_factor: float = Field(default=1.5, description="Over-fetch factor applied before filtering")

    # Live Stream
    ws_ping_interval: float = Field(default=30.0, description="WebSocket protocol ping interval in seconds")
    ws_heartbeat_interval: float = Field(default=30.0, description="Dead subscriber prune interval in seconds")

    # Collector
    start_collector: bool = Field(default=True, description="Run the block collector inside the API process")

    # Monitoring Configuration
    enable_metrics: bool = Field(default=True, description="Enable Prometheus metrics")

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="json", description="Log format (json|text)")
    log_file: Optional[str] = Field(default=None, description="Log file path")
    log_max_size_mb: int = Field(default=100, description="Max log file size in MB")
    log_backup_count: int = Field(default=5, description="Number of log backup files")

    @field_validator('raw_safety_factor')
    @classmethod
    def validate_safety_factor(cls, v):
        """The over-fetch factor can not shrink the load."""
        if v < 1.0:
            raise ValueError("raw_safety_factor must be at least 1.0")
        return v
