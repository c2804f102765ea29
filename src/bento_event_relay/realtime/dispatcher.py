"""Fan-out dispatcher — one inbound message → every registered client.

Learn: dispatch() is synchronous and never awaits a client:
1. Normalize once (bad payload → log + drop, zero sends)
2. Snapshot the registry
3. Hand the event to each connection's outbound queue

A failure for one client (closed between snapshot and send, or too far
behind) is logged with its id and the pass carries on. Slow consumers are
evicted so one stalled browser tab can't pile up memory forever.
"""

import asyncio
from dataclasses import dataclass, asdict
from typing import Optional, Union

import structlog

from bento_event_relay.realtime.connection import (
    ClientConnection,
    ConnectionClosed,
    SlowConsumer,
)
from bento_event_relay.realtime.normalizer import (
    DeliveryMode,
    MessageParseError,
    normalize,
)
from bento_event_relay.realtime.registry import ConnectionRegistry

logger = structlog.get_logger()

# Close code sent to clients evicted for not keeping up
SLOW_CONSUMER_CLOSE_CODE = 1013  # "try again later"


@dataclass
class DispatchStats:
    """Runtime counters, reported by /health."""
    received: int = 0
    delivered: int = 0
    parse_errors: int = 0
    delivery_errors: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class FanOutDispatcher:
    def __init__(
        self,
        registry: ConnectionRegistry,
        mode: DeliveryMode,
        pattern: Optional[str] = None,
    ):
        self.registry = registry
        self.mode = mode
        self.pattern = pattern
        self.stats = DispatchStats()
        self._evictions: set[asyncio.Task] = set()

    def dispatch(self, channel: Union[str, bytes], raw_payload: Union[str, bytes]) -> int:
        """Relay one message; returns how many clients it was handed to."""
        self.stats.received += 1

        try:
            event = normalize(channel, raw_payload, self.mode)
        except MessageParseError as e:
            self.stats.parse_errors += 1
            logger.error(
                "relay.message_parse_failed",
                pattern=self.pattern,
                channel=e.channel,
                message=e.payload,
                error=e.reason,
            )
            return 0

        delivered = 0
        for connection in self.registry.snapshot():
            try:
                connection.deliver(event)
                delivered += 1
            except ConnectionClosed:
                # Disconnected after the snapshot was taken; expected under churn
                self.stats.delivery_errors += 1
                self.registry.remove(connection.id)
                logger.info(
                    "relay.client_gone",
                    connection_id=connection.id,
                    channel=event.channel,
                )
            except SlowConsumer as e:
                self.stats.delivery_errors += 1
                logger.warning(
                    "relay.client_too_slow",
                    connection_id=connection.id,
                    channel=event.channel,
                    error=str(e),
                )
                self._evict(connection)
            except Exception as e:
                self.stats.delivery_errors += 1
                logger.error(
                    "relay.delivery_failed",
                    connection_id=connection.id,
                    pattern=self.pattern,
                    channel=event.channel,
                    error=str(e),
                    exc_info=True,
                )

        self.stats.delivered += delivered
        return delivered

    def _evict(self, connection: ClientConnection) -> None:
        self.registry.remove(connection.id)
        try:
            task = asyncio.get_running_loop().create_task(
                connection.close(code=SLOW_CONSUMER_CLOSE_CODE, reason="Too slow")
            )
        except RuntimeError:
            # No loop (sync caller); the endpoint closes it on disconnect
            return
        self._evictions.add(task)
        task.add_done_callback(self._evictions.discard)
