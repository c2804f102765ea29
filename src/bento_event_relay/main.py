"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. The Settings object is built once here and handed to the
EventRelay, which owns every relay component. Lifespan manages startup
and shutdown (Redis subscription, connected clients).

There is no in-process recovery from losing Redis. If the subscriber task
ever ends on its own, we log it and SIGTERM ourselves so uvicorn shuts
down cleanly and the supervisor restarts us with a fresh subscription.
"""

import asyncio
import signal
from contextlib import asynccontextmanager
from typing import Callable, Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from bento_event_relay import __version__
from bento_event_relay.api import api_router
from bento_event_relay.config import Settings
from bento_event_relay.logs import configure_logging
from bento_event_relay.realtime.relay import EventRelay

logger = structlog.get_logger()


def _terminate_process() -> None:
    signal.raise_signal(signal.SIGTERM)


def watch_subscriber(
    task: asyncio.Task,
    on_fatal: Callable[[], None] = _terminate_process,
) -> None:
    """Treat the subscriber ending (other than by cancellation) as fatal."""

    def _done(t: asyncio.Task) -> None:
        if t.cancelled():
            return
        error = t.exception()
        logger.critical(
            "relay.subscriber_stopped",
            error=str(error) if error else None,
            error_type=type(error).__name__ if error else None,
        )
        on_fatal()

    task.add_done_callback(_done)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs at
    shutdown. A Redis failure at startup propagates and uvicorn exits.
    """
    relay: EventRelay = app.state.relay
    settings = relay.settings

    logger.info("relay.starting", version=__version__, config=settings.summary())
    if settings.auth_strategy != "none" and not settings.auth_authority_configured:
        logger.warning(
            "relay.auth_authority_missing",
            strategy=settings.auth_strategy,
            detail="all connections will be refused",
        )

    subscriber_task = await relay.start()
    watch_subscriber(subscriber_task)

    yield

    logger.info("relay.shutdown", connections=len(relay.registry))
    await relay.stop()


def create_app(settings: Optional[Settings] = None, relay: Optional[EventRelay] = None) -> FastAPI:
    """Build and return the FastAPI application."""
    if relay is None:
        settings = settings or Settings()
        relay = EventRelay(settings)
    settings = relay.settings

    configure_logging(settings.bento_debug)

    app = FastAPI(
        title="Bento Event Relay",
        description="Event relay from Redis PubSub events to WebSocket clients",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.relay = relay

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: RequestId → Security → CORS → handler

    from bento_event_relay.middleware.request_id import RequestIdMiddleware
    from bento_event_relay.middleware.security import SecurityHeadersMiddleware

    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_credentials=True,
            allow_methods=["GET"],
            allow_headers=["*"],
        )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestIdMiddleware)

    base_path = settings.service_url_base_path
    app.include_router(api_router, prefix=base_path)

    from bento_event_relay.realtime.websocket import relay_websocket
    app.add_api_websocket_route(f"{base_path}{settings.ws_path}", relay_websocket)

    return app
