"""WebSocket endpoint tests — handshake authorization and registration.

Learn: Starlette's TestClient drives the real endpoint. The lifespan (and
so Redis) never starts; the relay is built in conftest with a scripted
gate. A refused handshake surfaces as WebSocketDisconnect with our 4003
close code.
"""

import httpx
import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from bento_event_relay.auth.gate import AuthzServiceGate
from bento_event_relay.config import Settings
from bento_event_relay.main import create_app
from bento_event_relay.realtime.relay import EventRelay
from bento_event_relay.realtime.websocket import FORBIDDEN_CLOSE_CODE
from tests.helpers import StaticGate


def test_authorized_client_is_registered(app, relay, gate):
    client = TestClient(app)
    with client.websocket_connect("/ws?token=good-token") as ws:
        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}
        assert len(relay.registry) == 1

    assert gate.credentials == ["good-token"]


def test_bearer_header_is_accepted(app, gate):
    client = TestClient(app)
    with client.websocket_connect("/ws", headers={"Authorization": "Bearer header-token"}) as ws:
        ws.send_json({"type": "ping"})
        ws.receive_json()

    assert gate.credentials == ["header-token"]


def test_non_ping_frames_are_ignored(app):
    client = TestClient(app)
    with client.websocket_connect("/ws?token=t") as ws:
        ws.send_text("hello")
        ws.send_text('{"type": "subscribe"}')
        ws.send_bytes(b"\x00\x01")
        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}


def test_denied_client_is_refused(settings):
    gate = StaticGate(allowed=False)
    relay = EventRelay(settings, gate=gate, http=httpx.AsyncClient())
    client = TestClient(create_app(relay=relay))

    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws?token=bad-token"):
            pass

    assert exc.value.code == FORBIDDEN_CLOSE_CODE
    assert len(relay.registry) == 0


def test_authority_error_status_refuses_connection(settings):
    """Authorization service answers 503 → handshake refused, registry untouched."""
    http = httpx.AsyncClient(
        transport=httpx.MockTransport(lambda r: httpx.Response(503, text="unavailable"))
    )
    gate = AuthzServiceGate(http, "https://authz.local", {"everything": True}, "view:private_portal")
    relay = EventRelay(settings, gate=gate, http=http)
    client = TestClient(create_app(relay=relay))

    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws?token=tok"):
            pass

    assert exc.value.code == FORBIDDEN_CLOSE_CODE
    assert len(relay.registry) == 0


def test_missing_token_with_authz_is_refused():
    settings = Settings(auth_strategy="authz", bento_authz_service_url="https://authz.local")
    relay = EventRelay(settings, http=httpx.AsyncClient())
    client = TestClient(create_app(relay=relay))

    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws"):
            pass
    assert exc.value.code == FORBIDDEN_CLOSE_CODE


def test_base_path_and_ws_path_are_applied(gate):
    settings = Settings(auth_strategy="none", service_url_base_path="/api/event-relay/", ws_path="/events")
    relay = EventRelay(settings, gate=gate, http=httpx.AsyncClient())
    client = TestClient(create_app(relay=relay))

    with client.websocket_connect("/api/event-relay/events?token=t") as ws:
        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}
