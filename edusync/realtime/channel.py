"""
Channel Binding — one logical channel instance per room/topic.

Behavioral Contract:
- subscribe() opens the channel once; further calls are no-ops
- Handlers for broadcast, presence, row-change and status events are attached
  before or after subscribing
- unsubscribe() tears the channel down exactly once; a second call is a no-op
- After teardown no event reaches the binding's handlers. Calls already made
  on the transport are not undone.
- No retry and no reconnect: those belong to the transport

RealtimeClient is the explicit context that owns bindings, in place of
module-level channel registries.
"""

from typing import Callable, Dict, List, Optional

import structlog

from edusync.models.presence import PresenceEventKind, PresenceRecord
from edusync.models.realtime import RowChange
from edusync.realtime.transport import (
    CLOSED,
    ChannelSubscriber,
    RealtimeTransport,
)

logger = structlog.get_logger(__name__)

BroadcastHandler = Callable[[dict], None]
PresenceHandler = Callable[[object], None]
RowChangeHandler = Callable[[RowChange], None]
StatusHandler = Callable[[str], None]


class RowListener:
    def __init__(
        self,
        table: str,
        handler: RowChangeHandler,
        event: str = "*",
        filter: Optional[Dict[str, str]] = None,
    ):
        self.table = table
        self.handler = handler
        self.event = event
        self.filter = filter or {}

    def matches(self, change: RowChange) -> bool:
        if change.table != self.table:
            return False
        if self.event != "*" and change.event != self.event:
            return False
        row = change.new or change.old
        return all(str(row.get(col)) == str(value) for col, value in self.filter.items())


class ChannelBinding(ChannelSubscriber):
    """A subscription to one topic on a realtime transport."""

    def __init__(
        self,
        transport: RealtimeTransport,
        topic: str,
        presence_key: Optional[str] = None,
        broadcast_self: bool = False,
        on_close: Optional[Callable[["ChannelBinding"], None]] = None,
    ):
        self.transport = transport
        self.topic = topic
        self.presence_key = presence_key
        self.broadcast_self = broadcast_self
        self._on_close = on_close

        self._broadcast_handlers: Dict[str, List[BroadcastHandler]] = {}
        self._presence_handlers: Dict[PresenceEventKind, List[PresenceHandler]] = {}
        self._row_listeners: List[RowListener] = []
        self._status_handlers: List[StatusHandler] = []

        self._subscribed = False
        self._closed = False

    @property
    def is_open(self) -> bool:
        return self._subscribed and not self._closed

    @property
    def is_closed(self) -> bool:
        return self._closed

    # --- Handler registration ---

    def on_broadcast(self, event: str, handler: BroadcastHandler) -> "ChannelBinding":
        self._broadcast_handlers.setdefault(event, []).append(handler)
        return self

    def on_presence(self, kind: PresenceEventKind, handler: PresenceHandler) -> "ChannelBinding":
        self._presence_handlers.setdefault(PresenceEventKind(kind), []).append(handler)
        return self

    def on_row_change(
        self,
        table: str,
        handler: RowChangeHandler,
        event: str = "*",
        filter: Optional[Dict[str, str]] = None,
    ) -> "ChannelBinding":
        self._row_listeners.append(RowListener(table, handler, event, filter))
        return self

    def on_status(self, handler: StatusHandler) -> "ChannelBinding":
        self._status_handlers.append(handler)
        return self

    # --- Lifecycle ---

    def subscribe(self) -> "ChannelBinding":
        """Open the channel. Idempotent; a torn-down binding stays closed."""
        if self._subscribed or self._closed:
            return self
        self._subscribed = True
        self.transport.subscribe(self.topic, self)
        return self

    def unsubscribe(self) -> None:
        """Tear the channel down. Safe to call any number of times."""
        if self._closed:
            return
        was_subscribed = self._subscribed
        self._closed = True
        if was_subscribed:
            self.transport.unsubscribe(self.topic, self)
        for handler in list(self._status_handlers):
            try:
                handler(CLOSED)
            except Exception:
                logger.exception("close_handler_failed", topic=self.topic)
        logger.debug("channel_closed", topic=self.topic, key=self.presence_key)
        if self._on_close is not None:
            self._on_close(self)

    # --- Outbound ---

    def send(self, event: str, payload: dict) -> None:
        """Fire-and-forget broadcast on this channel."""
        if not self.is_open:
            logger.debug("send_on_closed_channel", topic=self.topic, event=event)
            return
        self.transport.broadcast(self.topic, event, payload, sender=self)

    def track(self, record: PresenceRecord) -> None:
        if not self.is_open:
            return
        self.transport.track(self.topic, self, record)

    def untrack(self) -> None:
        if not self.is_open:
            return
        self.transport.untrack(self.topic, self)

    def presence_state(self) -> Dict[str, PresenceRecord]:
        return self.transport.presence_state(self.topic)

    # --- Inbound (called by the transport) ---

    def deliver_status(self, status: str) -> None:
        if self._closed:
            return
        for handler in list(self._status_handlers):
            handler(status)

    def deliver_broadcast(self, event: str, payload: dict) -> None:
        if self._closed:
            return
        for handler in list(self._broadcast_handlers.get(event, [])):
            handler(payload)

    def deliver_presence(self, kind: PresenceEventKind, payload) -> None:
        if self._closed:
            return
        for handler in list(self._presence_handlers.get(kind, [])):
            handler(payload)

    def wants_row_change(self, change: RowChange) -> bool:
        if self._closed:
            return False
        return any(listener.matches(change) for listener in self._row_listeners)

    def deliver_row_change(self, change: RowChange) -> None:
        if self._closed:
            return
        for listener in list(self._row_listeners):
            if listener.matches(change):
                listener.handler(change)


class RealtimeClient:
    """
    Owns the channel bindings opened by one consumer.

    close() unsubscribes every binding that is still open, so a consumer
    cannot leak subscriptions past its own lifetime.
    """

    def __init__(self, transport: RealtimeTransport):
        self.transport = transport
        self._bindings: List[ChannelBinding] = []

    def channel(
        self,
        topic: str,
        presence_key: Optional[str] = None,
        broadcast_self: bool = False,
    ) -> ChannelBinding:
        binding = ChannelBinding(
            self.transport,
            topic,
            presence_key=presence_key,
            broadcast_self=broadcast_self,
            on_close=self._forget,
        )
        self._bindings.append(binding)
        return binding

    @property
    def bindings(self) -> List[ChannelBinding]:
        return list(self._bindings)

    def _forget(self, binding: ChannelBinding) -> None:
        if binding in self._bindings:
            self._bindings.remove(binding)

    def close(self) -> None:
        for binding in list(self._bindings):
            binding.unsubscribe()

    def __enter__(self) -> "RealtimeClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
