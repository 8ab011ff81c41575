"""Pydantic schemas for the TRON block API."""

from tron_api.schemas.responses import (
    BlockModel,
    BlocksResponse,
    ErrorResponse,
    HealthResponse,
    MessageResponse,
    QueryPerformance,
    RangeMetadata,
    StatsResponse,
)
