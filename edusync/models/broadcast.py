"""Broadcast events — the closed set of payloads exchanged on a channel."""

from datetime import datetime
from enum import Enum
from typing import Dict, Literal, Optional, Type, Union

from pydantic import BaseModel, Field


class BroadcastKind(str, Enum):
    PATH_DRAWN = "path_drawn"
    SHAPE_ADDED = "shape_added"
    CLEARED = "cleared"
    CHAT_MESSAGE = "chat_message"
    ACHIEVEMENT_UNLOCKED = "achievement_unlocked"


class PathDrawn(BaseModel):
    """A freehand stroke, serialized canvas path object."""
    type: Literal["path_drawn"] = "path_drawn"
    path: dict


class ShapeAdded(BaseModel):
    type: Literal["shape_added"] = "shape_added"
    shape: Literal["rect", "circle"]
    data: dict


class BoardCleared(BaseModel):
    type: Literal["cleared"] = "cleared"


class ChatMessage(BaseModel):
    type: Literal["chat_message"] = "chat_message"
    message_id: str
    user_id: str
    username: str
    content: str
    file_url: Optional[str] = None
    file_name: Optional[str] = None
    sent_at: datetime


class AchievementUnlocked(BaseModel):
    type: Literal["achievement_unlocked"] = "achievement_unlocked"
    achievement_id: str
    user_id: str
    name: str
    xp_reward: int = 0


BroadcastEvent = Union[PathDrawn, ShapeAdded, BoardCleared, ChatMessage, AchievementUnlocked]


class BroadcastEnvelope(BaseModel):
    """Wrapper used to validate an incoming payload against the union."""
    event: BroadcastEvent = Field(discriminator="type")


EVENT_MODELS: Dict[BroadcastKind, Type[BaseModel]] = {
    BroadcastKind.PATH_DRAWN: PathDrawn,
    BroadcastKind.SHAPE_ADDED: ShapeAdded,
    BroadcastKind.CLEARED: BoardCleared,
    BroadcastKind.CHAT_MESSAGE: ChatMessage,
    BroadcastKind.ACHIEVEMENT_UNLOCKED: AchievementUnlocked,
}

_missing = set(BroadcastKind) - set(EVENT_MODELS)
if _missing:
    raise TypeError(f"Broadcast kinds without a model: {sorted(k.value for k in _missing)}")


def kind_of(event: BroadcastEvent) -> BroadcastKind:
    """Tag of a broadcast event."""
    return BroadcastKind(event.type)
