"""
Redis Admin Feed

Cross-process feed on Redis pub/sub, used in staging and production where
several API workers run side by side. Every subscription owns its own
PubSub connection and a reader task; disposing the subscription cancels the
task and closes the connection, even when the reader already died.

Channel:
    admin:feed   payload = FeedEvent JSON

Author: Bistro Engineering
Version: 1.0.0
"""

import asyncio
import logging

import redis.asyncio as aioredis
from pydantic import ValidationError as SchemaError
from redis.exceptions import RedisError

from bistro.services.realtime.base import (
    BaseOrderFeed,
    EventHandler,
    FeedEvent,
    Subscription,
    deliver,
)

logger = logging.getLogger(__name__)

FEED_CHANNEL = "admin:feed"


class RedisOrderFeed(BaseOrderFeed):
    """Redis pub/sub implementation of the admin feed."""

    def __init__(self, redis_url: str):
        self._redis = aioredis.from_url(redis_url, decode_responses=True)
        logger.info("RedisOrderFeed initialized")

    @property
    def provider_name(self) -> str:
        return "redis"

    async def publish(self, event: FeedEvent) -> None:
        receivers = await self._redis.publish(FEED_CHANNEL, event.model_dump_json())
        logger.debug(
            f"Redis feed: {event.event.value} ({event.subject}) "
            f"published to {receivers} receiver(s)"
        )

    async def subscribe(self, handler: EventHandler) -> Subscription:
        pubsub = self._redis.pubsub(ignore_subscribe_messages=True)
        await pubsub.subscribe(FEED_CHANNEL)

        async def reader() -> None:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    event = FeedEvent.model_validate_json(message["data"])
                except SchemaError as e:
                    logger.error(f"Redis feed: dropping malformed message - {e}")
                    continue
                await deliver(handler, event)

        async def cancel() -> None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                # Already reported by the done callback
                logger.debug(f"Redis feed: reader had stopped - {e!r}")
            try:
                await pubsub.unsubscribe(FEED_CHANNEL)
            except RedisError as e:
                logger.warning(f"Redis feed: unsubscribe failed - {e}")
            finally:
                await pubsub.aclose()
            logger.debug("Redis feed: subscription closed")

        subscription = Subscription(cancel)

        def on_reader_done(done: asyncio.Task) -> None:
            if done.cancelled():
                return
            error = done.exception()
            if error is None:
                error = RedisError("pub/sub stream ended")
            logger.error(f"Redis feed: reader stopped, subscriber gets no more events - {error!r}")
            subscription.mark_failed(error)

        task = asyncio.create_task(reader(), name="admin-feed-reader")
        task.add_done_callback(on_reader_done)

        return subscription

    async def health_check(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError as e:
            logger.error(f"Redis feed: health check failed - {e}")
            return False

    async def close(self) -> None:
        await self._redis.aclose()
