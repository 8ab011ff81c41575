"""Block query and store management endpoints."""

import time
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
import structlog

from tron_api.app.state import get_collector, get_settings
from tron_api.config.settings import APISettings
from tron_api.schemas.responses import BlocksResponse, HealthResponse, MessageResponse, StatsResponse
from tron_api.services.block_service import BlockService, InvalidRangeQuery
from tron_api.utils.metrics import metrics
from tron_collector.core.collector import TronCollector

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.get("/api/blocks", response_model=BlocksResponse)
async def get_blocks(
    limit: Optional[int] = Query(default=None, ge=1, description="Number of filtered blocks to return"),
    step: int = Query(default=1, ge=1, description="Keep heights where height % step == offset"),
    offset: int = Query(default=0, ge=0, description="Remainder kept by the step filter"),
    settings: APISettings = Depends(get_settings),
    collector: TronCollector = Depends(get_collector),
):
    """
    Get the newest blocks, optionally thinned to every ``step``-th height.

    Only as many raw blocks as the filter is expected to need are loaded
    from the store. The response metadata reports how many were loaded and
    how long each stage took.
    """
    if limit is None:
        limit = settings.default_limit
    if limit > settings.max_limit:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"limit must not exceed {settings.max_limit}"
        )

    service = BlockService(collector.router, collector.config.max_blocks, settings.raw_safety_factor)
    try:
        result = await service.query(limit=limit, step=step, offset=offset)
    except InvalidRangeQuery as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    metrics.observe_range_query(step, result["metadata"]["total_raw"])
    return result


@router.get("/api/stats", response_model=StatsResponse)
async def get_stats(collector: TronCollector = Depends(get_collector)):
    """Get store statistics and collector state."""
    pipeline = await collector.get_statistics()
    return {
        "data": pipeline.pop("store"),
        "pipeline": pipeline,
    }


@router.delete("/api/blocks", response_model=MessageResponse)
async def clear_blocks(collector: TronCollector = Depends(get_collector)):
    """Delete every stored block."""
    await collector.router.clear_all()
    logger.warning("Store cleared via API")
    return {"message": "All blocks cleared"}


@router.get("/health", response_model=HealthResponse)
async def health(collector: TronCollector = Depends(get_collector)):
    """Liveness check."""
    return {
        "status": "ok",
        "timestamp": int(time.time() * 1000),
        "storage_mode": collector.router.mode.value,
        "connection_state": collector.listener.state.value,
        "live_subscribers": collector.bus.subscriber_count,
    }
