"""
In-Process Admin Feed

Delivers feed events to handlers registered in the same process. Used in
development mode (single uvicorn worker) and by the test suite.

Author: Bistro Engineering
Version: 1.0.0
"""

import itertools
import logging

from bistro.services.realtime.base import (
    BaseOrderFeed,
    EventHandler,
    FeedEvent,
    Subscription,
    deliver,
)

logger = logging.getLogger(__name__)


class InMemoryOrderFeed(BaseOrderFeed):
    """
    Example:
        >>> feed = InMemoryOrderFeed()
        >>> sub = await feed.on_order_created(handler)
        >>> await feed.publish_order_created(order)   # handler(order) awaited
        >>> await sub.unsubscribe()
    """

    def __init__(self):
        self._handlers: dict[int, EventHandler] = {}
        self._tokens = itertools.count(1)

    @property
    def provider_name(self) -> str:
        return "memory"

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)

    async def publish(self, event: FeedEvent) -> None:
        handlers = list(self._handlers.values())
        logger.debug(f"Feed: {event.event.value} ({event.subject}) -> {len(handlers)} subscriber(s)")
        for handler in handlers:
            await deliver(handler, event)

    async def subscribe(self, handler: EventHandler) -> Subscription:
        token = next(self._tokens)
        self._handlers[token] = handler
        logger.debug(f"Feed: subscriber {token} registered")

        async def cancel() -> None:
            self._handlers.pop(token, None)
            logger.debug(f"Feed: subscriber {token} removed")

        return Subscription(cancel)

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        self._handlers.clear()
