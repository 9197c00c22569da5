"""Presence — who is connected to a channel and what they are pointing at."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel


class ChannelStatus(str, Enum):
    DISCONNECTED = "disconnected"
    SUBSCRIBING = "subscribing"
    SYNCED = "synced"


class PresenceEventKind(str, Enum):
    SYNC = "sync"
    JOIN = "join"
    LEAVE = "leave"


class CursorPosition(BaseModel):
    x: float
    y: float


class PresenceRecord(BaseModel):
    """
    Last-known metadata for one connection key.

    Created on track, overwritten on every re-track (cursor move, typing
    toggle), removed on untrack or disconnect.
    """

    user_id: str
    display_name: str = "Anonymous"
    color: str
    cursor: Optional[CursorPosition] = None
    typing: bool = False
    online_at: Optional[datetime] = None
    mentor_id: Optional[str] = None             # Set only by mentor presence


class PresenceDiff(BaseModel):
    """Incremental join/leave delta for a single connection key."""

    key: str
    presences: List[PresenceRecord] = []
