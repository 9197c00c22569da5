"""Notification Store — per-user notifications with a read flag."""

import sqlite3
from datetime import datetime
from typing import List, Optional
from uuid import uuid4

from edusync.models.notification import NotificationRecord, NotificationType
from edusync.store.database import Database


class NotificationStore:
    """Insert, list and mark-read. Rows are never deleted."""

    def __init__(self, db: Database):
        self._db = db

    def insert(
        self,
        user_id: str,
        title: str,
        message: str,
        type: NotificationType,
        link: Optional[str] = None,
    ) -> NotificationRecord:
        record = NotificationRecord(
            id=str(uuid4()),
            user_id=user_id,
            title=title,
            message=message,
            type=type,
            link=link,
            created_at=datetime.utcnow(),
        )
        self._db.conn.execute(
            """
            INSERT INTO notifications (id, user_id, title, message, type, read, link, created_at)
            VALUES (?, ?, ?, ?, ?, 0, ?, ?)
            """,
            (
                record.id,
                record.user_id,
                record.title,
                record.message,
                record.type.value,
                record.link,
                record.created_at.isoformat(),
            ),
        )
        self._db.conn.commit()
        self._db.emit_change("notifications", "INSERT", record.model_dump(mode="json"))
        return record

    def _deserialize(self, row: sqlite3.Row) -> NotificationRecord:
        return NotificationRecord(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            message=row["message"],
            type=NotificationType(row["type"]),
            read=bool(row["read"]),
            link=row["link"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def get(self, notification_id: str) -> Optional[NotificationRecord]:
        row = self._db.conn.execute(
            "SELECT * FROM notifications WHERE id = ?", (notification_id,)
        ).fetchone()
        return self._deserialize(row) if row else None

    def list_for_user(self, user_id: str, limit: int = 50) -> List[NotificationRecord]:
        """Newest first."""
        rows = self._db.conn.execute(
            "SELECT * FROM notifications WHERE user_id = ? "
            "ORDER BY created_at DESC, rowid DESC LIMIT ?",
            (user_id, limit),
        ).fetchall()
        return [self._deserialize(r) for r in rows]

    def mark_read(self, notification_id: str, user_id: str) -> Optional[NotificationRecord]:
        """Set the read flag on one of the user's notifications."""
        old = self.get(notification_id)
        if old is None or old.user_id != user_id:
            return None
        self._db.conn.execute(
            "UPDATE notifications SET read = 1 WHERE id = ?", (notification_id,)
        )
        self._db.conn.commit()
        updated = old.model_copy(update={"read": True})
        if not old.read:
            self._db.emit_change(
                "notifications", "UPDATE",
                updated.model_dump(mode="json"), old.model_dump(mode="json"),
            )
        return updated

    def mark_all_read(self, user_id: str) -> int:
        """Mark every unread notification of a user read. Returns the count."""
        rows = self._db.conn.execute(
            "SELECT * FROM notifications WHERE user_id = ? AND read = 0",
            (user_id,),
        ).fetchall()
        unread = [self._deserialize(r) for r in rows]
        self._db.conn.executemany(
            "UPDATE notifications SET read = 1 WHERE id = ?",
            [(n.id,) for n in unread],
        )
        self._db.conn.commit()
        for old in unread:
            updated = old.model_copy(update={"read": True})
            self._db.emit_change(
                "notifications", "UPDATE",
                updated.model_dump(mode="json"), old.model_dump(mode="json"),
            )
        return len(unread)

    def unread_count(self, user_id: str) -> int:
        row = self._db.conn.execute(
            "SELECT COUNT(*) AS cnt FROM notifications WHERE user_id = ? AND read = 0",
            (user_id,),
        ).fetchone()
        return row["cnt"]
