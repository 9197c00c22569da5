"""
Realtime Transport — named pub/sub channels with broadcast, presence and
row-change feeds.

RealtimeHub is the in-process implementation. It stands in for the managed
realtime service: bindings in the same process (tests, the WebSocket bridge)
meet on it by topic name.

Behavioral Contract:
- Subscribing delivers the SUBSCRIBED status, then a full presence sync.
- Broadcasts reach every other subscriber of the topic in call order.
  Delivery is at-most-once: no acknowledgement, no dedup, no retry.
- Track overwrites the caller's presence key and emits join + sync to all
  subscribers. Untrack/unsubscribe emits leave + sync to the remaining ones.
- A subscriber whose handler raises is logged and skipped; delivery to the
  others continues.
- Reconnection and backoff are not implemented here or by callers.
"""

import copy
import functools
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional
from uuid import uuid4

import structlog

from edusync.models.presence import PresenceDiff, PresenceEventKind, PresenceRecord
from edusync.models.realtime import RowChange

logger = structlog.get_logger(__name__)

SUBSCRIBED = "SUBSCRIBED"
CLOSED = "CLOSED"


class ChannelSubscriber(ABC):
    """The receiving side of a channel, as seen by the transport."""

    presence_key: Optional[str] = None
    broadcast_self: bool = False

    @abstractmethod
    def deliver_status(self, status: str) -> None:
        ...

    @abstractmethod
    def deliver_broadcast(self, event: str, payload: dict) -> None:
        ...

    @abstractmethod
    def deliver_presence(self, kind: PresenceEventKind, payload) -> None:
        ...

    def wants_row_change(self, change: RowChange) -> bool:
        return False

    def deliver_row_change(self, change: RowChange) -> None:
        pass


class RealtimeTransport(ABC):
    """Pub/sub primitive consumed by channel bindings."""

    @abstractmethod
    def subscribe(self, topic: str, subscriber: ChannelSubscriber) -> str:
        """Join a topic. Returns the subscriber's connection key."""

    @abstractmethod
    def unsubscribe(self, topic: str, subscriber: ChannelSubscriber) -> None:
        ...

    @abstractmethod
    def broadcast(
        self, topic: str, event: str, payload: dict,
        sender: Optional[ChannelSubscriber] = None,
    ) -> None:
        ...

    @abstractmethod
    def track(
        self, topic: str, subscriber: ChannelSubscriber, record: PresenceRecord
    ) -> None:
        ...

    @abstractmethod
    def untrack(self, topic: str, subscriber: ChannelSubscriber) -> None:
        ...

    @abstractmethod
    def presence_state(self, topic: str) -> Dict[str, PresenceRecord]:
        ...


class _Topic:
    def __init__(self, name: str):
        self.name = name
        self.subscribers: List[ChannelSubscriber] = []
        self.presence: Dict[str, PresenceRecord] = {}
        self.tracked_by: Dict[int, str] = {}   # id(subscriber) -> presence key


def _synchronized(method):
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)
    return wrapper


class RealtimeHub(RealtimeTransport):
    """In-process realtime service. Calls are serialized; delivery is synchronous."""

    def __init__(self):
        self._topics: Dict[str, _Topic] = {}
        self._lock = threading.RLock()

    def _topic(self, name: str) -> _Topic:
        topic = self._topics.get(name)
        if topic is None:
            topic = _Topic(name)
            self._topics[name] = topic
        return topic

    # --- Subscription ---

    @_synchronized
    def subscribe(self, topic: str, subscriber: ChannelSubscriber) -> str:
        t = self._topic(topic)
        if subscriber.presence_key is None:
            subscriber.presence_key = uuid4().hex
        if subscriber not in t.subscribers:
            t.subscribers.append(subscriber)
        logger.debug(
            "channel_subscribed", topic=topic, key=subscriber.presence_key,
            subscribers=len(t.subscribers),
        )
        self._deliver(subscriber, "deliver_status", SUBSCRIBED)
        if subscriber in t.subscribers:
            self._deliver(
                subscriber, "deliver_presence", PresenceEventKind.SYNC, self._snapshot(t)
            )
        return subscriber.presence_key

    @_synchronized
    def unsubscribe(self, topic: str, subscriber: ChannelSubscriber) -> None:
        t = self._topics.get(topic)
        if t is None or subscriber not in t.subscribers:
            return
        self._remove_presence(t, subscriber, notify_self=False)
        t.subscribers.remove(subscriber)
        logger.debug("channel_unsubscribed", topic=topic, key=subscriber.presence_key)
        if not t.subscribers and not t.presence:
            del self._topics[topic]

    @_synchronized
    def subscriber_count(self, topic: str) -> int:
        t = self._topics.get(topic)
        return len(t.subscribers) if t else 0

    # --- Broadcast ---

    @_synchronized
    def broadcast(
        self, topic: str, event: str, payload: dict,
        sender: Optional[ChannelSubscriber] = None,
    ) -> None:
        t = self._topics.get(topic)
        if t is None:
            return
        for subscriber in list(t.subscribers):
            if subscriber is sender and not subscriber.broadcast_self:
                continue
            self._deliver(subscriber, "deliver_broadcast", event, copy.deepcopy(payload))

    # --- Presence ---

    @_synchronized
    def track(
        self, topic: str, subscriber: ChannelSubscriber, record: PresenceRecord
    ) -> None:
        t = self._topics.get(topic)
        if t is None or subscriber not in t.subscribers:
            logger.debug("track_ignored_not_subscribed", topic=topic)
            return
        key = subscriber.presence_key
        t.presence[key] = record.model_copy(deep=True)
        t.tracked_by[id(subscriber)] = key
        diff = PresenceDiff(key=key, presences=[record])
        self._fan_presence(t, PresenceEventKind.JOIN, diff)
        self._fan_presence(t, PresenceEventKind.SYNC, None)

    @_synchronized
    def untrack(self, topic: str, subscriber: ChannelSubscriber) -> None:
        t = self._topics.get(topic)
        if t is None:
            return
        self._remove_presence(t, subscriber)

    @_synchronized
    def presence_state(self, topic: str) -> Dict[str, PresenceRecord]:
        t = self._topics.get(topic)
        if t is None:
            return {}
        return self._snapshot(t)

    def _remove_presence(
        self, t: _Topic, subscriber: ChannelSubscriber, notify_self: bool = True
    ) -> None:
        key = t.tracked_by.pop(id(subscriber), None)
        if key is None or key not in t.presence:
            return
        if key in t.tracked_by.values():
            # Another connection still holds this key
            return
        left = t.presence.pop(key)
        diff = PresenceDiff(key=key, presences=[left])
        remaining = [s for s in t.subscribers if notify_self or s is not subscriber]
        self._fan_presence(t, PresenceEventKind.LEAVE, diff, remaining)
        self._fan_presence(t, PresenceEventKind.SYNC, None, remaining)

    def _fan_presence(
        self,
        t: _Topic,
        kind: PresenceEventKind,
        diff: Optional[PresenceDiff],
        targets: Optional[List[ChannelSubscriber]] = None,
    ) -> None:
        for subscriber in list(targets if targets is not None else t.subscribers):
            payload = self._snapshot(t) if kind == PresenceEventKind.SYNC else diff.model_copy(deep=True)
            self._deliver(subscriber, "deliver_presence", kind, payload)

    @staticmethod
    def _snapshot(t: _Topic) -> Dict[str, PresenceRecord]:
        return {k: v.model_copy(deep=True) for k, v in t.presence.items()}

    # --- Row-change feed ---

    @_synchronized
    def publish_row_change(self, change: RowChange) -> None:
        """Deliver a store change to every subscriber listening for it."""
        for t in list(self._topics.values()):
            for subscriber in list(t.subscribers):
                if subscriber.wants_row_change(change):
                    self._deliver(subscriber, "deliver_row_change", change)

    # --- Delivery ---

    def _deliver(self, subscriber: ChannelSubscriber, method: str, *args) -> None:
        try:
            getattr(subscriber, method)(*args)
        except Exception:
            logger.exception(
                "subscriber_delivery_failed",
                method=method,
                key=subscriber.presence_key,
            )
