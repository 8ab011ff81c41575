"""Application state shared by the app factory and routers."""

from fastapi import HTTPException, status

from tron_api.config.settings import APISettings
from tron_collector.core.collector import TronCollector


# Global application state
app_state = {
    "settings": None,
    "collector": None,
    "broadcaster": None,
    "startup_time": None,
}


def get_settings() -> APISettings:
    """Get API settings."""
    settings = app_state.get("settings")
    if not settings:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not ready"
        )
    return settings


def get_collector() -> TronCollector:
    """Get the block collector."""
    collector = app_state.get("collector")
    if not collector:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Collector not initialized"
        )
    return collector
