"""bento-event-relay CLI — run the relay, inspect config, publish test events.

Usage:
    bento-event-relay serve                              # Run the relay (uvicorn)
    bento-event-relay config                             # Effective configuration as JSON
    bento-event-relay publish bento.test '{"id": 42}'    # Publish one event to Redis

All settings come from the environment (REDIS_CONNECTION, JSON_MESSAGES,
SERVICE_LISTEN_ON, ...); see bento_event_relay.config.
"""

from __future__ import annotations

import asyncio
import json
import sys

import click
import redis.asyncio as aioredis
from pydantic import ValidationError

from bento_event_relay import __version__
from bento_event_relay.config import Settings


def _settings() -> Settings:
    try:
        return Settings()
    except ValidationError as e:
        click.secho(f"Error: invalid configuration\n{e}", fg="red", err=True)
        sys.exit(1)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="bento-event-relay")
def main():
    """Bento Event Relay — forward Redis pub/sub events to WebSocket clients."""


# ---------------------------------------------------------------------------
# bento-event-relay serve
# ---------------------------------------------------------------------------


@main.command()
def serve():
    """Run the relay on SERVICE_LISTEN_ON (a port or a unix socket path)."""
    import uvicorn

    settings = _settings()
    listen = {"port": settings.listen_port, "host": settings.service_host}
    if settings.listen_port is None:
        listen = {"uds": settings.service_listen_on}

    click.echo(f"bento_event_relay listening on {settings.service_listen_on}")
    uvicorn.run(
        "bento_event_relay.main:create_app",
        factory=True,
        log_level="debug" if settings.bento_debug else "info",
        **listen,
    )


# ---------------------------------------------------------------------------
# bento-event-relay config
# ---------------------------------------------------------------------------


@main.command()
def config():
    """Print the effective configuration."""
    click.echo(json.dumps(_settings().summary(), indent=2, default=str))


# ---------------------------------------------------------------------------
# bento-event-relay publish
# ---------------------------------------------------------------------------


async def _publish(redis_url: str, channel: str, message: str) -> int:
    r = aioredis.from_url(redis_url, encoding="utf-8", decode_responses=True)
    try:
        return await r.publish(channel, message)
    finally:
        await r.aclose()


@main.command()
@click.argument("channel")
@click.argument("message")
def publish(channel: str, message: str):
    """Publish MESSAGE on CHANNEL (handy for checking a running relay).

    The message is sent as-is; in JSON_MESSAGES mode it must be valid JSON
    or the relay will drop it.
    """
    settings = _settings()
    receivers = asyncio.run(_publish(settings.redis_connection, channel, message))
    click.echo(f"Published to {channel} ({receivers} subscriber(s))")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    main()
