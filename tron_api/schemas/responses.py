"""Response schemas for the TRON block API."""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class BlockModel(BaseModel):
    """A classified block."""
    height: int = Field(..., description="Block height")
    hash: str = Field(..., description="Block hash")
    timestamp: int = Field(..., description="Block time (unix seconds)")
    digit_value: int = Field(..., ge=0, le=9, description="Last decimal digit of the hash")
    parity: str = Field(..., description="ODD or EVEN")
    magnitude: str = Field(..., description="BIG or SMALL")


class QueryPerformance(BaseModel):
    store_load_ms: float
    filter_ms: float
    total_ms: float


class RangeMetadata(BaseModel):
    """How a range query was served."""
    step: int
    offset: int
    total_raw: int = Field(..., description="Records loaded from the store")
    total_filtered: int = Field(..., description="Records matching the step/offset filter")
    returned: int
    requested: int
    estimated_raw: int = Field(..., description="limit * step * safety factor")
    actual_raw: int = Field(..., description="Estimated load capped at store capacity")
    performance: QueryPerformance


class BlocksResponse(BaseModel):
    success: bool = True
    data: List[BlockModel]
    count: int
    metadata: RangeMetadata


class StatsResponse(BaseModel):
    success: bool = True
    data: Dict[str, Any] = Field(..., description="Store statistics")
    pipeline: Optional[Dict[str, Any]] = Field(default=None, description="Collector statistics")


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class HealthResponse(BaseModel):
    status: str
    timestamp: int = Field(..., description="Epoch milliseconds")
    storage_mode: Optional[str] = None
    connection_state: Optional[str] = None
    live_subscribers: int = 0


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
