"""Test doubles shared across test modules."""

import asyncio
from typing import Any, Optional

from bento_event_relay.auth.gate import AuthorizationGate
from bento_event_relay.realtime.connection import ClientConnection


class FakeTransport:
    """Records what would have gone down the WebSocket."""

    def __init__(self, fail: bool = False):
        self.sent: list[Any] = []
        self.closed: Optional[tuple[int, Optional[str]]] = None
        self.fail = fail

    async def send_json(self, data: Any, mode: str = "text") -> None:
        if self.fail:
            raise RuntimeError("Cannot call send once a close message has been sent")
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        self.closed = (code, reason)


class StaticGate(AuthorizationGate):
    """Gate with a fixed answer; remembers the credentials it saw."""

    strategy = "static"

    def __init__(self, allowed: bool):
        self.allowed = allowed
        self.credentials: list[Optional[str]] = []

    async def _check(self, credential: Optional[str]) -> bool:
        self.credentials.append(credential)
        return self.allowed


def allowed_connection(connection_id: int, transport=None, queue_size: int = 256) -> ClientConnection:
    conn = ClientConnection(connection_id, transport or FakeTransport(), queue_size=queue_size)
    conn.mark_authorized(True)
    return conn


async def wait_until(condition, timeout: float = 1.0) -> None:
    """Yield to the loop until condition() holds (sender tasks need a turn)."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0)
