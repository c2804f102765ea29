"""EventRelay — owns the relay's components and their lifecycle.

Learn: One instance per app, built by create_app() from the Settings and
stored on app.state. The lifespan calls start()/stop(); the WebSocket
endpoint and /health read from it. Nothing here is a module global.
"""

import asyncio
from typing import Optional

import httpx
import redis.asyncio as aioredis
import structlog

from bento_event_relay.auth.gate import AuthorizationGate, build_gate
from bento_event_relay.config import Settings, redact_url
from bento_event_relay.realtime.dispatcher import FanOutDispatcher
from bento_event_relay.realtime.normalizer import DeliveryMode
from bento_event_relay.realtime.registry import ConnectionRegistry
from bento_event_relay.realtime.subscriber import SubscriptionDriver

logger = structlog.get_logger()


class EventRelay:
    def __init__(
        self,
        settings: Settings,
        *,
        gate: Optional[AuthorizationGate] = None,
        http: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings
        self.registry = ConnectionRegistry()
        self.dispatcher = FanOutDispatcher(
            self.registry,
            DeliveryMode.from_json_messages(settings.json_messages),
            pattern=settings.redis_subscribe_pattern,
        )
        self.http = http or httpx.AsyncClient(timeout=settings.auth_timeout_seconds)
        self.gate = gate or build_gate(settings, self.http)
        self.redis: Optional[aioredis.Redis] = None
        self.driver: Optional[SubscriptionDriver] = None
        self.subscriber_task: Optional[asyncio.Task] = None

    async def start(self) -> asyncio.Task:
        """Connect to Redis, subscribe, and start forwarding.

        Raises if Redis is unreachable: the relay is useless without it.
        """
        self.redis = aioredis.from_url(
            self.settings.redis_connection,
            encoding="utf-8",
            decode_responses=True,
        )
        await self.redis.ping()
        logger.info("relay.redis_connected", url=redact_url(self.settings.redis_connection))

        self.driver = SubscriptionDriver(
            self.redis, self.settings.redis_subscribe_pattern, self.dispatcher
        )
        await self.driver.subscribe()
        self.subscriber_task = asyncio.create_task(self.driver.run(), name="relay-subscriber")
        return self.subscriber_task

    async def stop(self) -> None:
        if self.subscriber_task is not None:
            self.subscriber_task.cancel()
            try:
                await self.subscriber_task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning("relay.subscriber_failed_before_stop", error=str(e))
            self.subscriber_task = None

        for connection in self.registry.snapshot():
            self.registry.remove(connection.id)
            await connection.close(code=1001, reason="Server shutting down")

        if self.driver is not None:
            await self.driver.close()
            self.driver = None
        if self.redis is not None:
            await self.redis.aclose()
            self.redis = None
        await self.http.aclose()

    async def redis_status(self) -> str:
        """Return "ok", or a short description of what is wrong."""
        if self.redis is None:
            return "error: not connected"
        try:
            await self.redis.ping()
        except Exception as e:
            return f"error: {e}"
        return "ok"
