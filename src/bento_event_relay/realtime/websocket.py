"""WebSocket endpoint — real-time event delivery to frontend clients.

Learn: Each client connects to {SERVICE_URL_BASE_PATH}/ws?token=JWT. The
handler:
1. Authorizes the token through the relay's gate (fails closed)
2. Registers the connection so the dispatcher fans events out to it
3. Runs the connection's sender task alongside a client listener
4. Unregisters on disconnect, whichever side goes first

A refused client is closed before accept; it sees a failed handshake
with code 4003 and nothing about why.
"""

import asyncio
import json
from typing import Optional

import structlog
from fastapi import WebSocket

from bento_event_relay.realtime.connection import (
    ClientConnection,
    ConnectionClosed,
    SlowConsumer,
)
from bento_event_relay.realtime.relay import EventRelay

logger = structlog.get_logger()

FORBIDDEN_CLOSE_CODE = 4003


def _credential(websocket: WebSocket) -> Optional[str]:
    """Bearer token from ?token= (browsers) or the Authorization header."""
    token = websocket.query_params.get("token")
    if token:
        return token
    authorization = websocket.headers.get("authorization", "")
    if authorization.startswith("Bearer "):
        return authorization[7:]
    return None


async def relay_websocket(websocket: WebSocket):
    """WebSocket endpoint for relayed pub/sub events.

    Learn: Two concurrent tasks run per client:
    1. Sender — drains the connection's queue onto the socket
    2. Client listener — reads frames from the client (answers pings)

    When either finishes, the other is cancelled and the connection leaves
    the registry.
    """
    relay: EventRelay = websocket.app.state.relay

    connection = ClientConnection(
        relay.registry.next_id(),
        websocket,
        credential=_credential(websocket),
        queue_size=relay.settings.client_queue_size,
    )
    log = logger.bind(connection_id=connection.id)

    # ── Authorization ───────────────────────────────────────
    allowed = await relay.gate.authorize(connection.credential)
    connection.mark_authorized(allowed)
    if not allowed:
        log.info("relay.client_refused")
        await websocket.close(code=FORBIDDEN_CLOSE_CODE, reason="Forbidden")
        return

    # ── Connection accepted ─────────────────────────────────
    await websocket.accept()
    relay.registry.add(connection)
    sender_task = connection.start()
    log.info("relay.client_connected", connections=len(relay.registry))

    async def client_listener():
        """Handle incoming frames; only pings mean anything."""
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                return
            text = message.get("text")
            if not text:
                continue
            try:
                msg = json.loads(text)
            except json.JSONDecodeError:
                continue
            if isinstance(msg, dict) and msg.get("type") == "ping":
                try:
                    connection.send_frame({"type": "pong"})
                except (ConnectionClosed, SlowConsumer):
                    return

    client_task = asyncio.create_task(client_listener())

    try:
        done, pending = await asyncio.wait(
            [sender_task, client_task],
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                log.warning("relay.client_task_failed", error=str(task.exception()))
    finally:
        relay.registry.remove(connection.id)
        if not client_task.done():
            client_task.cancel()
        await connection.close()
        log.info("relay.client_disconnected", connections=len(relay.registry))
