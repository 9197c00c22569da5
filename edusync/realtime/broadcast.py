"""
Broadcast Fan-out — local mutations out, remote payloads back in.

Behavioral Contract:
- publish() serializes an event to its tagged payload and sends it
  fire-and-forget on the channel
- Incoming payloads are decoded against the closed BroadcastEvent union
  and dispatched by kind
- Unknown tags and malformed payloads are dropped; local state is untouched
- No conflict resolution: events apply in arrival order (last-applied-wins).
  Two clients can diverge when arrival order differs.
"""

from typing import Callable, Dict, List, Optional

import structlog
from pydantic import ValidationError

from edusync.models.broadcast import (
    BroadcastEnvelope,
    BroadcastEvent,
    BroadcastKind,
    kind_of,
)
from edusync.realtime.channel import ChannelBinding

logger = structlog.get_logger(__name__)

_KNOWN_TAGS = {k.value for k in BroadcastKind}


def encode_event(event: BroadcastEvent) -> dict:
    """Tagged, JSON-safe payload for an event."""
    return event.model_dump(mode="json")


def decode_event(payload) -> Optional[BroadcastEvent]:
    """Parse a payload. Returns None for unknown tags or invalid bodies."""
    if not isinstance(payload, dict):
        return None
    tag = payload.get("type")
    if tag not in _KNOWN_TAGS:
        logger.debug("broadcast_unknown_tag", tag=tag)
        return None
    try:
        return BroadcastEnvelope.model_validate({"event": payload}).event
    except ValidationError as e:
        logger.warning("broadcast_malformed", tag=tag, errors=e.error_count())
        return None


class BroadcastFanout:
    """Typed broadcast dispatch over one channel event name."""

    def __init__(self, binding: ChannelBinding, channel_event: str = "draw"):
        self.binding = binding
        self.channel_event = channel_event
        self._handlers: Dict[BroadcastKind, List[Callable]] = {}
        binding.on_broadcast(channel_event, self._receive)

    def on(self, kind: BroadcastKind, handler: Callable) -> "BroadcastFanout":
        self._handlers.setdefault(BroadcastKind(kind), []).append(handler)
        return self

    def publish(self, event: BroadcastEvent) -> None:
        self.binding.send(self.channel_event, encode_event(event))

    def _receive(self, payload: dict) -> None:
        event = decode_event(payload)
        if event is None:
            return
        for handler in list(self._handlers.get(kind_of(event), [])):
            handler(event)
