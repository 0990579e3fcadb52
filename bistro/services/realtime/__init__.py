"""
Realtime Admin Feed Factory

Usage:
    from bistro.services.realtime import get_order_feed

    feed = get_order_feed()
    subscription = await feed.subscribe(handler)
    ...
    await subscription.unsubscribe()

Environment Switching:
    - ENV_MODE=development → InMemoryOrderFeed (single process)
    - ENV_MODE=staging/production → RedisOrderFeed (shared across workers)

Author: Bistro Engineering
Version: 1.0.0
"""

import logging
from functools import lru_cache

from bistro.core.config import get_settings
from bistro.services.realtime.base import (
    BaseOrderFeed,
    EventHandler,
    FeedEvent,
    FeedEventType,
    OrderHandler,
    Subscription,
)
from bistro.services.realtime.memory import InMemoryOrderFeed
from bistro.services.realtime.redis_feed import RedisOrderFeed, FEED_CHANNEL

logger = logging.getLogger(__name__)


@lru_cache()
def get_order_feed() -> BaseOrderFeed:
    """Get the process-wide admin feed for the current ENV_MODE."""
    settings = get_settings()

    if settings.use_real_services:
        logger.info(f"Order Feed: Using RedisOrderFeed ({settings.env_mode.value} mode)")
        return RedisOrderFeed(settings.redis_url)

    logger.info("Order Feed: Using InMemoryOrderFeed (development mode)")
    return InMemoryOrderFeed()


def reset_order_feed() -> None:
    """Clear the cached feed instance."""
    get_order_feed.cache_clear()
    logger.debug("Order feed cache cleared")


__all__ = [
    "get_order_feed",
    "reset_order_feed",
    "BaseOrderFeed",
    "EventHandler",
    "FeedEvent",
    "FeedEventType",
    "OrderHandler",
    "Subscription",
    "InMemoryOrderFeed",
    "RedisOrderFeed",
    "FEED_CHANNEL",
]
