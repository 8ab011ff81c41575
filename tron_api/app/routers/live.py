"""Live block stream over WebSocket."""

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
import structlog

from tron_api.app.state import app_state
from tron_api.utils.metrics import metrics

router = APIRouter()
logger = structlog.get_logger(__name__)

# Try again later
CLOSE_NOT_READY = 1013


@router.websocket("/ws")
async def live_blocks(websocket: WebSocket):
    """Send a welcome frame, then every new block as it is stored."""
    broadcaster = app_state.get("broadcaster")
    if broadcaster is None:
        await websocket.close(code=CLOSE_NOT_READY)
        return

    await broadcaster.connect(websocket)
    metrics.ws_sessions.inc()
    try:
        # Inbound frames carry nothing; reading detects the disconnect.
        while True:
            message = await websocket.receive_text()
            logger.debug("Client message ignored", size=len(message))
    except WebSocketDisconnect as e:
        logger.debug("Client disconnected", code=e.code)
    finally:
        broadcaster.disconnect(websocket)
