"""
Realtime Sessions — state models for the collaborative surfaces.

Each session owns the channel bindings it opens and has explicit open() and
close(). Nothing here renders; callers read the state and register change
listeners.

Behavioral Contract:
- WhiteboardSession applies local and remote mutations to the same canvas
  model. Remote events apply in arrival order, so two boards can diverge.
- ChatRoom appends sent messages locally, persists them and broadcasts them.
  History is loaded from the store on open. The sender never receives its
  own broadcast.
- NotificationFeed keeps the latest notifications and an unread counter,
  fed by the store's row-change feed for the local user only
- MentorPresence derives the online mentor ids from presence metadata
- AchievementFeed collects unlock announcements for one user
"""

from datetime import datetime
from typing import Callable, List, Optional, Set
from uuid import uuid4

import structlog

from edusync.errors import ValidationError
from edusync.models.broadcast import (
    AchievementUnlocked,
    BoardCleared,
    BroadcastKind,
    ChatMessage,
    PathDrawn,
    ShapeAdded,
)
from edusync.models.identity import UserIdentity
from edusync.models.notification import NotificationRecord
from edusync.models.presence import PresenceRecord
from edusync.models.realtime import RowChange
from edusync.realtime.broadcast import BroadcastFanout
from edusync.realtime.channel import RealtimeClient
from edusync.realtime.presence import PresenceAggregator
from edusync.realtime.transport import CLOSED
from edusync.store.catalog import CatalogStore
from edusync.store.chat import ChatStore
from edusync.store.notifications import NotificationStore

logger = structlog.get_logger(__name__)

WHITEBOARD_EVENT = "draw"
CHAT_EVENT = "message"
ACHIEVEMENT_EVENT = "achievement"
MENTOR_PRESENCE_TOPIC = "mentor-presence"
NOTIFICATIONS_TOPIC = "notifications"
DEFAULT_BACKGROUND = "#ffffff"


def whiteboard_topic(room_id: str) -> str:
    return f"whiteboard-{room_id}"


def chat_topic(group_id: str) -> str:
    return f"group-chat-{group_id}"


def achievements_topic(user_id: str) -> str:
    return f"user-achievements:{user_id}"


# --- Whiteboard ---

class WhiteboardSession:
    """Shared canvas: a list of drawn objects plus a background color."""

    def __init__(self, client: RealtimeClient, room_id: str):
        self.room_id = room_id
        self.binding = client.channel(whiteboard_topic(room_id))
        self.fanout = BroadcastFanout(self.binding, WHITEBOARD_EVENT)
        self.objects: List[dict] = []
        self.background = DEFAULT_BACKGROUND

        self.fanout.on(BroadcastKind.PATH_DRAWN, self._apply_path)
        self.fanout.on(BroadcastKind.SHAPE_ADDED, self._apply_shape)
        self.fanout.on(BroadcastKind.CLEARED, self._apply_clear)

    def open(self) -> "WhiteboardSession":
        self.binding.subscribe()
        return self

    def close(self) -> None:
        self.binding.unsubscribe()

    def draw_path(self, path: dict) -> None:
        event = PathDrawn(path=path)
        self._apply_path(event)
        self.fanout.publish(event)

    def add_shape(self, shape: str, data: dict) -> None:
        event = ShapeAdded(shape=shape, data=data)
        self._apply_shape(event)
        self.fanout.publish(event)

    def clear(self) -> None:
        event = BoardCleared()
        self._apply_clear(event)
        self.fanout.publish(event)

    def _apply_path(self, event: PathDrawn) -> None:
        self.objects.append({"kind": "path", "data": event.path})

    def _apply_shape(self, event: ShapeAdded) -> None:
        self.objects.append({"kind": event.shape, "data": event.data})

    def _apply_clear(self, event: BoardCleared) -> None:
        self.objects = []
        self.background = DEFAULT_BACKGROUND


# --- Group chat ---

class ChatRoom:
    """
    Group chat with typing indicators carried in presence.

    Messages are persisted; open() loads the group's history. A live message
    can arrive both as a broadcast and as a row insert, so delivery is
    deduplicated by message id.
    """

    def __init__(
        self,
        client: RealtimeClient,
        store: ChatStore,
        group_id: str,
        identity: UserIdentity,
        palette: Optional[List[str]] = None,
    ):
        self.store = store
        self.group_id = group_id
        self.identity = identity
        self.binding = client.channel(chat_topic(group_id), presence_key=identity.id)
        self.presence = PresenceAggregator(
            self.binding, identity=lambda: identity, palette=palette
        )
        self.fanout = BroadcastFanout(self.binding, CHAT_EVENT)
        self.messages: List[ChatMessage] = []
        self._seen: Set[str] = set()
        self.fanout.on(BroadcastKind.CHAT_MESSAGE, self._receive)
        self.binding.on_row_change(
            "group_chat_messages", self._on_insert, event="INSERT",
            filter={"group_id": group_id},
        )

    def open(self) -> "ChatRoom":
        if not self.binding.is_open:
            self.messages = []
            self._seen = set()
            for message in self.store.history(self.group_id):
                self._receive(message)
        self.presence.open()
        return self

    def close(self) -> None:
        self.presence.close()

    def send(
        self,
        content: str,
        file_url: Optional[str] = None,
        file_name: Optional[str] = None,
    ) -> ChatMessage:
        content = (content or "").strip()
        if not content and not file_url:
            raise ValidationError("Message is empty")
        message = ChatMessage(
            message_id=str(uuid4()),
            user_id=self.identity.id,
            username=self.identity.display_name,
            content=content,
            file_url=file_url,
            file_name=file_name,
            sent_at=datetime.utcnow(),
        )
        self._receive(message)
        self.store.insert(self.group_id, message)
        self.fanout.publish(message)
        self.presence.set_typing(False)
        return message

    def set_typing(self, typing: bool) -> None:
        self.presence.set_typing(typing)

    def typing_users(self) -> List[PresenceRecord]:
        """Other members whose presence says they are typing."""
        return [
            record for record in self.presence.members.values()
            if record.typing and record.user_id != self.identity.id
        ]

    @property
    def online_count(self) -> int:
        return len(self.presence.members)

    def _receive(self, message: ChatMessage) -> None:
        if message.message_id in self._seen:
            return
        self._seen.add(message.message_id)
        self.messages.append(message)

    def _on_insert(self, change: RowChange) -> None:
        if change.new.get("id") in self._seen:
            return
        message = self.store.get(change.new["id"])
        if message is not None:
            self._receive(message)


# --- Notifications ---

class NotificationFeed:
    """Latest notifications for one user with a live unread counter."""

    def __init__(
        self,
        client: RealtimeClient,
        store: NotificationStore,
        user_id: str,
        limit: int = 50,
    ):
        self.store = store
        self.user_id = user_id
        self.limit = limit
        self.items: List[NotificationRecord] = []
        self.unread = 0
        self._listeners: List[Callable[[NotificationRecord], None]] = []

        self.binding = client.channel(NOTIFICATIONS_TOPIC)
        self.binding.on_row_change(
            "notifications", self._on_insert, event="INSERT", filter={"user_id": user_id}
        )

    def on_new(self, listener: Callable[[NotificationRecord], None]) -> None:
        self._listeners.append(listener)

    def open(self) -> "NotificationFeed":
        self.items = self.store.list_for_user(self.user_id, limit=self.limit)
        self.unread = sum(1 for n in self.items if not n.read)
        self.binding.subscribe()
        return self

    def close(self) -> None:
        self.binding.unsubscribe()

    def mark_read(self, notification_id: str) -> None:
        updated = self.store.mark_read(notification_id, self.user_id)
        if updated is None:
            return
        for index, item in enumerate(self.items):
            if item.id == notification_id:
                if not item.read:
                    self.unread = max(0, self.unread - 1)
                self.items[index] = updated

    def mark_all_read(self) -> None:
        self.store.mark_all_read(self.user_id)
        self.items = [n.model_copy(update={"read": True}) for n in self.items]
        self.unread = 0

    def _on_insert(self, change: RowChange) -> None:
        record = NotificationRecord.model_validate(change.new)
        self.items.insert(0, record)
        del self.items[self.limit:]
        if not record.read:
            self.unread += 1
        for listener in list(self._listeners):
            listener(record)


# --- Mentor presence ---

class MentorPresence(PresenceAggregator):
    """
    Presence on the shared mentor channel.

    Every user subscribes to learn which mentors are online; only users with
    a mentor profile track themselves, and doing so also marks their
    mentor_presence row online. Any teardown of the channel marks it offline
    again.
    """

    def __init__(
        self,
        client: RealtimeClient,
        catalog: CatalogStore,
        user: Optional[UserIdentity] = None,
        palette: Optional[List[str]] = None,
    ):
        binding = client.channel(
            MENTOR_PRESENCE_TOPIC, presence_key=user.id if user else None
        )
        super().__init__(
            binding, identity=(lambda: user) if user else None, palette=palette
        )
        self.catalog = catalog
        self.mentor_id: Optional[str] = None
        self._online_user_id: Optional[str] = None

    @property
    def online_mentors(self) -> Set[str]:
        return {r.mentor_id for r in self.members.values() if r.mentor_id}

    def is_mentor_online(self, mentor_id: str) -> bool:
        return mentor_id in self.online_mentors

    def build_self_record(self, identity: UserIdentity) -> Optional[PresenceRecord]:
        mentor_id = self.catalog.get_mentor_profile_id(identity.id)
        if mentor_id is None:
            return None
        self.mentor_id = mentor_id
        self._online_user_id = identity.id
        self.catalog.upsert_mentor_presence(mentor_id, identity.id, is_online=True)
        logger.info("mentor_online", mentor_id=mentor_id, user_id=identity.id)
        record = super().build_self_record(identity)
        return record.model_copy(update={"mentor_id": mentor_id})

    def _on_status(self, status: str) -> None:
        super()._on_status(status)
        if status == CLOSED and self._online_user_id is not None:
            user_id, self._online_user_id = self._online_user_id, None
            self.catalog.upsert_mentor_presence(self.mentor_id, user_id, is_online=False)
            logger.info("mentor_offline", mentor_id=self.mentor_id)


# --- Achievements ---

class AchievementFeed:
    """Unlock announcements for one user, in arrival order."""

    def __init__(self, client: RealtimeClient, user_id: str):
        self.user_id = user_id
        self.binding = client.channel(achievements_topic(user_id))
        self.fanout = BroadcastFanout(self.binding, ACHIEVEMENT_EVENT)
        self.unlocked: List[AchievementUnlocked] = []
        self._listeners: List[Callable[[AchievementUnlocked], None]] = []
        self.fanout.on(BroadcastKind.ACHIEVEMENT_UNLOCKED, self._on_unlocked)

    def on_unlock(self, listener: Callable[[AchievementUnlocked], None]) -> None:
        self._listeners.append(listener)

    def open(self) -> "AchievementFeed":
        self.binding.subscribe()
        return self

    def close(self) -> None:
        self.binding.unsubscribe()

    def _on_unlocked(self, event: AchievementUnlocked) -> None:
        if event.user_id != self.user_id:
            return
        self.unlocked.append(event)
        for listener in list(self._listeners):
            listener(event)
