"""Client connection — one authorized WebSocket and its outbound queue.

Learn: The dispatcher never awaits a client. It drops each event into the
connection's bounded queue and moves on; a per-connection sender task
drains the queue onto the socket. One queue + one sender means events reach
a client in exactly the order they were dispatched, and a slow client only
ever fills its own queue.
"""

import asyncio
import enum
from typing import Any, Optional, Protocol

import structlog
from starlette.websockets import WebSocketState

from bento_event_relay.realtime.normalizer import RelayEvent

logger = structlog.get_logger()


class AuthState(str, enum.Enum):
    PENDING = "pending"
    ALLOWED = "allowed"
    DENIED = "denied"


class ConnectionClosed(Exception):
    """Raised when delivering to a connection that has gone away."""


class SlowConsumer(Exception):
    """Raised when a connection's outbound queue is full."""


class Transport(Protocol):
    """The slice of starlette's WebSocket a connection needs."""

    async def send_json(self, data: Any, mode: str = "text") -> None: ...

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None: ...


class ClientConnection:
    """A connected client: id, credential, transport, auth state."""

    def __init__(
        self,
        connection_id: int,
        transport: Transport,
        credential: Optional[str] = None,
        queue_size: int = 256,
    ):
        self.id = connection_id
        self.transport = transport
        self.credential = credential
        self.state = AuthState.PENDING
        self._queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=queue_size)
        self._sender: Optional[asyncio.Task] = None
        self._closed = False

    def __repr__(self) -> str:
        return f"<ClientConnection id={self.id} state={self.state.value}>"

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending_events(self) -> int:
        return self._queue.qsize()

    def mark_authorized(self, allowed: bool) -> None:
        self.state = AuthState.ALLOWED if allowed else AuthState.DENIED

    def deliver(self, event: RelayEvent) -> None:
        """Queue an event for this client without waiting.

        Raises ConnectionClosed if the client is gone, SlowConsumer if it
        isn't keeping up.
        """
        self.send_frame(event.as_dict())

    def send_frame(self, frame: dict[str, Any]) -> None:
        if self._closed:
            raise ConnectionClosed(f"connection {self.id} is closed")
        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull:
            raise SlowConsumer(
                f"connection {self.id} has {self._queue.qsize()} undelivered events"
            )

    def start(self) -> asyncio.Task:
        """Start the sender task (must be called from the event loop)."""
        if self._sender is None:
            self._sender = asyncio.create_task(
                self._send_loop(), name=f"relay-sender-{self.id}"
            )
        return self._sender

    async def _send_loop(self) -> None:
        try:
            while True:
                frame = await self._queue.get()
                await self.transport.send_json(frame)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Socket went away mid-send; the endpoint's disconnect path cleans up
            logger.info("relay.client_send_failed", connection_id=self.id, error=str(e))
        finally:
            self._closed = True

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        """Stop sending and close the transport. Safe to call more than once."""
        self._closed = True
        if self._sender is not None and not self._sender.done():
            self._sender.cancel()
            try:
                await self._sender
            except asyncio.CancelledError:
                pass
        if getattr(self.transport, "client_state", WebSocketState.CONNECTED) != WebSocketState.CONNECTED:
            return
        try:
            await self.transport.close(code=code, reason=reason)
        except Exception as e:
            logger.debug("relay.client_close_failed", connection_id=self.id, error=str(e))
