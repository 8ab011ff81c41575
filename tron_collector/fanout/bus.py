"""In-process event bus for serialized block messages."""

import asyncio
from typing import Awaitable, Callable, List
import structlog

logger = structlog.get_logger(__name__)

MessageHandler = Callable[[str], Awaitable[None]]


class EventBus:
    """Delivers each emitted message to every registered handler."""

    def __init__(self):
        self._handlers: List[MessageHandler] = []
        self.logger = logger.bind(component="event_bus")

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)

    def subscribe(self, handler: MessageHandler) -> Callable[[], None]:
        """Register a handler. Returns a function that unregisters it."""
        self._handlers.append(handler)
        self.logger.info("Subscriber added", subscribers=len(self._handlers))

        def unsubscribe():
            self.unsubscribe(handler)

        return unsubscribe

    def unsubscribe(self, handler: MessageHandler):
        if handler in self._handlers:
            self._handlers.remove(handler)
            self.logger.info("Subscriber removed", subscribers=len(self._handlers))

    async def emit(self, message: str) -> int:
        """
        Deliver a message to all handlers.

        A failing handler is logged and does not affect the others.
        Returns the number of handlers that completed.
        """
        handlers = list(self._handlers)
        if not handlers:
            return 0

        results = await asyncio.gather(*(h(message) for h in handlers), return_exceptions=True)

        delivered = 0
        for result in results:
            if isinstance(result, BaseException):
                self.logger.error("Subscriber failed", error=str(result))
            else:
                delivered += 1
        return delivered
