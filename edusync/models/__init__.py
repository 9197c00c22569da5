"""EduSync data models."""

from edusync.models.achievement import Achievement, ActivityType
from edusync.models.broadcast import (
    AchievementUnlocked,
    BoardCleared,
    BroadcastEvent,
    BroadcastKind,
    ChatMessage,
    PathDrawn,
    ShapeAdded,
)
from edusync.models.certificate import Certificate
from edusync.models.identity import UserIdentity
from edusync.models.integrations import (
    CheckoutSession,
    CompletionMessage,
    CompletionResult,
    ToolSchema,
    VideoControlAction,
    VideoRoom,
)
from edusync.models.notification import NotificationRecord, NotificationType
from edusync.models.presence import (
    ChannelStatus,
    CursorPosition,
    PresenceDiff,
    PresenceEventKind,
    PresenceRecord,
)
from edusync.models.realtime import RowChange

__all__ = [
    "Achievement",
    "AchievementUnlocked",
    "ActivityType",
    "BoardCleared",
    "BroadcastEvent",
    "BroadcastKind",
    "Certificate",
    "ChannelStatus",
    "ChatMessage",
    "CheckoutSession",
    "CompletionMessage",
    "CompletionResult",
    "CursorPosition",
    "NotificationRecord",
    "NotificationType",
    "PathDrawn",
    "PresenceDiff",
    "PresenceEventKind",
    "PresenceRecord",
    "RowChange",
    "ShapeAdded",
    "ToolSchema",
    "UserIdentity",
    "VideoControlAction",
    "VideoRoom",
]
