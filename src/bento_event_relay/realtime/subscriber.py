"""Subscription driver — the relay's single Redis PSUBSCRIBE.

Learn: Redis pub/sub is fire-and-forget and at-most-once. We subscribe to
one glob pattern for the whole process lifetime and hand each pmessage to
the dispatcher exactly once, in arrival order.

There is no resubscription: losing the Redis connection raises
UpstreamDisconnected and the app shuts the process down (see main.py), so
the supervisor restarts it with a fresh subscription.
"""

import asyncio
from typing import Optional

import redis.asyncio as aioredis
import structlog
from redis.asyncio.client import PubSub
from redis.exceptions import ConnectionError as RedisConnectionError

from bento_event_relay.realtime.dispatcher import FanOutDispatcher

logger = structlog.get_logger()


class UpstreamDisconnected(Exception):
    """The Redis pub/sub connection was lost."""


class SubscriptionDriver:
    def __init__(self, redis: aioredis.Redis, pattern: str, dispatcher: FanOutDispatcher):
        self.redis = redis
        self.pattern = pattern
        self.dispatcher = dispatcher
        self._pubsub: Optional[PubSub] = None

    async def subscribe(self) -> None:
        """Establish the subscription; runs once at startup."""
        if self._pubsub is not None:
            raise RuntimeError(f"already subscribed to {self.pattern}")
        self._pubsub = self.redis.pubsub()
        await self._pubsub.psubscribe(self.pattern)
        logger.info("relay.subscribed", pattern=self.pattern)

    async def run(self) -> None:
        """Forward messages until cancelled or Redis goes away."""
        if self._pubsub is None:
            await self.subscribe()

        try:
            async for message in self._pubsub.listen():
                self.handle(message)
        except RedisConnectionError as e:
            logger.critical("relay.upstream_disconnected", pattern=self.pattern, error=str(e))
            raise UpstreamDisconnected(str(e)) from e
        except asyncio.CancelledError:
            logger.info("relay.subscriber_cancelled", pattern=self.pattern)
            raise

    def handle(self, message: Optional[dict]) -> None:
        """Route one raw pub/sub message to the dispatcher."""
        if not message or message.get("type") != "pmessage":
            # psubscribe confirmations etc.
            return
        try:
            self.dispatcher.dispatch(message["channel"], message["data"])
        except Exception as e:
            logger.error(
                "relay.dispatch_failed",
                pattern=self.pattern,
                channel=message.get("channel"),
                error=str(e),
                exc_info=True,
            )

    async def close(self) -> None:
        if self._pubsub is None:
            return
        pubsub, self._pubsub = self._pubsub, None
        try:
            await pubsub.punsubscribe(self.pattern)
        except RedisConnectionError as e:
            logger.warning("relay.punsubscribe_failed", pattern=self.pattern, error=str(e))
        finally:
            await pubsub.aclose()
