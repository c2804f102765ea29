"""Message normalizer — raw pub/sub payload → RelayEvent.

Learn: The channel always travels with the payload. Once several channels
match the subscription pattern, the receiver would otherwise have no way
to tell them apart.

Two delivery modes, fixed at startup (JSON_MESSAGES):
- STRUCTURED: payload is JSON-decoded; bad JSON is an error, never
  delivered half-parsed.
- PASSTHROUGH: payload is forwarded as the raw string; never fails.
"""

import enum
import json
from dataclasses import dataclass
from typing import Any, Union


class DeliveryMode(str, enum.Enum):
    STRUCTURED = "structured"
    PASSTHROUGH = "passthrough"

    @classmethod
    def from_json_messages(cls, json_messages: bool) -> "DeliveryMode":
        return cls.STRUCTURED if json_messages else cls.PASSTHROUGH


class MessageParseError(Exception):
    """Raised when a structured-mode payload can't be decoded."""

    def __init__(self, channel: str, payload: Union[str, bytes], reason: str):
        self.channel = channel
        self.payload = payload
        self.reason = reason
        super().__init__(f"Could not decode message on {channel}: {reason}")


@dataclass(frozen=True)
class RelayEvent:
    """One unit pushed to a client: origin channel + payload."""

    channel: str
    message: Any

    def as_dict(self) -> dict[str, Any]:
        return {"channel": self.channel, "message": self.message}


def _text(value: Union[str, bytes], errors: str = "strict") -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors=errors)
    return value


def normalize(
    channel: Union[str, bytes],
    raw_payload: Union[str, bytes],
    mode: DeliveryMode,
) -> RelayEvent:
    """Build the RelayEvent for one inbound message.

    Raises MessageParseError in STRUCTURED mode if the payload isn't valid
    JSON (or isn't valid UTF-8).
    """
    channel = _text(channel, errors="replace")

    if mode is DeliveryMode.PASSTHROUGH:
        return RelayEvent(channel=channel, message=_text(raw_payload, errors="replace"))

    try:
        message = json.loads(_text(raw_payload))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MessageParseError(channel, raw_payload, str(e)) from e

    return RelayEvent(channel=channel, message=message)
