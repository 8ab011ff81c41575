"""Broadcast of serialized records to connected WebSocket subscribers."""

import asyncio
import json
import time
from typing import Set

from starlette.websockets import WebSocket, WebSocketState
import structlog

from tron_collector.utils.metrics import metrics

logger = structlog.get_logger(__name__)


class LiveBroadcaster:
    """
    Keeps the set of live WebSocket subscribers.

    Delivery is fire-and-forget: a socket whose send fails is dropped from
    the active set, nothing is retried.
    """

    def __init__(self):
        self.clients: Set[WebSocket] = set()
        self.logger = logger.bind(component="live_broadcaster")

    @property
    def client_count(self) -> int:
        return len(self.clients)

    async def connect(self, websocket: WebSocket):
        """Accept a subscriber and send the welcome frame."""
        await websocket.accept()
        self.clients.add(websocket)
        metrics.live_subscribers.set(len(self.clients))

        await websocket.send_text(json.dumps({
            "type": "connected",
            "message": "WebSocket connected",
            "timestamp": int(time.time() * 1000),
        }))
        self.logger.info("Client connected", clients=len(self.clients))

    def disconnect(self, websocket: WebSocket):
        if websocket in self.clients:
            self.clients.discard(websocket)
            metrics.live_subscribers.set(len(self.clients))
            self.logger.info("Client disconnected", clients=len(self.clients))

    async def broadcast(self, message: str):
        """Send the message to every connected client."""
        clients = list(self.clients)
        sent = 0

        for client in clients:
            if client.client_state != WebSocketState.CONNECTED:
                self.disconnect(client)
                continue
            try:
                await client.send_text(message)
                sent += 1
            except Exception as e:
                self.logger.warning("Send failed, dropping client", error=str(e))
                self.disconnect(client)

        self.logger.debug("Block pushed", sent=sent, clients=len(clients))

    def prune(self) -> int:
        """Drop sockets that are no longer connected. Returns how many were dropped."""
        stale = [c for c in self.clients if c.client_state != WebSocketState.CONNECTED]
        for client in stale:
            self.disconnect(client)
        return len(stale)

    async def heartbeat(self, interval: float):
        """Periodically prune dead connections."""
        while True:
            await asyncio.sleep(interval)
            dropped = self.prune()
            if dropped:
                self.logger.info("Pruned dead clients", dropped=dropped, clients=len(self.clients))
