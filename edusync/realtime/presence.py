"""
Presence Aggregator — local view of who is on a channel.

State machine per channel: DISCONNECTED -> SUBSCRIBING -> SYNCED.

Behavioral Contract:
- On the SUBSCRIBED signal the local identity is resolved and tracked with a
  color drawn at random from a fixed palette (not unique across users)
- If the identity lookup fails, tracking is skipped and the channel stays
  subscribed
- While SYNCED: sync replaces the whole mapping, join adds keys, leave
  removes keys. After a sync the mapping equals the transport snapshot.
- Cursor and typing updates re-track the full record, merged into the last
  known record for the local key. There is no debounce.
- Ordering between a local track and remote observers is eventual only
"""

import random
from datetime import datetime
from typing import Callable, Dict, List, Optional

import structlog

from edusync.config import DEFAULT_PRESENCE_PALETTE
from edusync.models.identity import UserIdentity
from edusync.models.presence import (
    ChannelStatus,
    CursorPosition,
    PresenceDiff,
    PresenceEventKind,
    PresenceRecord,
)
from edusync.realtime.channel import ChannelBinding
from edusync.realtime.transport import CLOSED, SUBSCRIBED

logger = structlog.get_logger(__name__)

IdentityLookup = Callable[[], Optional[UserIdentity]]


class PresenceAggregator:
    """Maintains connection key -> PresenceRecord for one channel binding."""

    def __init__(
        self,
        binding: ChannelBinding,
        identity: Optional[IdentityLookup] = None,
        palette: Optional[List[str]] = None,
        rng: Optional[random.Random] = None,
    ):
        self.binding = binding
        self._identity = identity
        palette = palette or DEFAULT_PRESENCE_PALETTE
        self.color = (rng or random).choice(palette)

        self.state = ChannelStatus.DISCONNECTED
        self._members: Dict[str, PresenceRecord] = {}
        self._self_record: Optional[PresenceRecord] = None
        self._listeners: List[Callable[[Dict[str, PresenceRecord]], None]] = []

        binding.on_status(self._on_status)
        binding.on_presence(PresenceEventKind.SYNC, self._on_sync)
        binding.on_presence(PresenceEventKind.JOIN, self._on_join)
        binding.on_presence(PresenceEventKind.LEAVE, self._on_leave)

    @property
    def members(self) -> Dict[str, PresenceRecord]:
        """A copy of the current mapping."""
        return dict(self._members)

    @property
    def self_key(self) -> Optional[str]:
        return self.binding.presence_key

    @property
    def self_record(self) -> Optional[PresenceRecord]:
        return self._self_record

    def on_change(self, listener: Callable[[Dict[str, PresenceRecord]], None]) -> None:
        self._listeners.append(listener)

    # --- Lifecycle ---

    def open(self) -> "PresenceAggregator":
        if self.state != ChannelStatus.DISCONNECTED or self.binding.is_closed:
            return self
        self.state = ChannelStatus.SUBSCRIBING
        self.binding.subscribe()
        return self

    def close(self) -> None:
        self.binding.unsubscribe()
        self.state = ChannelStatus.DISCONNECTED
        self._members = {}

    # --- Local updates ---

    def update_cursor(self, x: float, y: float) -> None:
        """Re-publish the local record with a new cursor position."""
        self._retrack(cursor=CursorPosition(x=x, y=y))

    def set_typing(self, typing: bool) -> None:
        self._retrack(typing=typing)

    def _retrack(self, **changes) -> None:
        if self.state != ChannelStatus.SYNCED:
            return
        base = self._members.get(self.self_key) or self._self_record
        if base is None:
            return
        record = base.model_copy(update=changes)
        self._self_record = record
        self.binding.track(record)

    def build_self_record(self, identity: UserIdentity) -> Optional[PresenceRecord]:
        """Record published for the local user. None skips tracking."""
        return PresenceRecord(
            user_id=identity.id,
            display_name=identity.display_name,
            color=self.color,
            online_at=datetime.utcnow(),
        )

    # --- Transport events ---

    def _on_status(self, status: str) -> None:
        if status == SUBSCRIBED:
            self.state = ChannelStatus.SYNCED
            self._track_self()
        elif status == CLOSED:
            self.state = ChannelStatus.DISCONNECTED
            self._members = {}

    def _track_self(self) -> None:
        if self._identity is None:
            return
        try:
            identity = self._identity()
        except Exception as e:
            logger.info("presence_identity_unavailable", topic=self.binding.topic, error=str(e))
            return
        if identity is None:
            return
        record = self.build_self_record(identity)
        if record is None:
            return
        self._self_record = record
        self.binding.track(record)

    def _on_sync(self, snapshot: Dict[str, PresenceRecord]) -> None:
        if self.state != ChannelStatus.SYNCED:
            return
        self._members = dict(snapshot)
        self._notify()

    def _on_join(self, diff: PresenceDiff) -> None:
        if self.state != ChannelStatus.SYNCED or not diff.presences:
            return
        self._members[diff.key] = diff.presences[-1]
        self._notify()

    def _on_leave(self, diff: PresenceDiff) -> None:
        if self.state != ChannelStatus.SYNCED:
            return
        if self._members.pop(diff.key, None) is not None:
            self._notify()

    def _notify(self) -> None:
        snapshot = self.members
        for listener in list(self._listeners):
            listener(snapshot)
