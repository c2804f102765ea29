"""Test fixtures — a relay with no Redis and a scripted auth gate.

Learn: The relay's lifespan needs a live Redis, so tests never run it.
Instead we build an EventRelay by hand (gate injected) and talk to the app
directly:

1. HTTP routes through httpx's ASGITransport (no lifespan, no network)
2. WebSocket handshakes through Starlette's TestClient
3. Components (registry, dispatcher, connections) with FakeTransport
   standing in for a WebSocket
4. Log events through structlog.testing.capture_logs (log_events fixture)
"""

import httpx
import pytest
import pytest_asyncio
import structlog
from httpx import ASGITransport, AsyncClient
from structlog.testing import capture_logs

from bento_event_relay.auth import gate as gate_module
from bento_event_relay.auth import openid as openid_module
from bento_event_relay.config import Settings
from bento_event_relay.main import create_app
from bento_event_relay.realtime import dispatcher as dispatcher_module
from bento_event_relay.realtime.relay import EventRelay
from tests.helpers import StaticGate


@pytest.fixture()
def settings():
    return Settings(
        auth_strategy="none",
        redis_connection="redis://localhost:6379",
        redis_subscribe_pattern="bento.*",
        json_messages=True,
    )


@pytest.fixture()
def gate():
    return StaticGate(allowed=True)


@pytest.fixture()
def relay(settings, gate):
    return EventRelay(settings, gate=gate, http=httpx.AsyncClient())


@pytest.fixture()
def app(relay):
    return create_app(relay=relay)


@pytest_asyncio.fixture()
async def client(app):
    """HTTP client against the app, lifespan not started."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture()
def log_events(monkeypatch):
    """Structured log entries (event, log_level, ...) emitted during the test.

    create_app() turns on cache_logger_on_first_use, which pins a module's
    logger to the processors of the moment. The modules under test get a
    fresh, uncached logger so capture_logs() sees everything.
    """
    structlog.reset_defaults()
    for module in (gate_module, openid_module, dispatcher_module):
        monkeypatch.setattr(module, "logger", structlog.get_logger())
    with capture_logs() as entries:
        yield entries
