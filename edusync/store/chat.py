"""Chat Store — persisted group chat messages."""

import sqlite3
from datetime import datetime
from typing import List, Optional

from edusync.models.broadcast import ChatMessage
from edusync.models.identity import UserIdentity
from edusync.store.database import Database

_SELECT = (
    "SELECT m.*, p.email, p.full_name FROM group_chat_messages m "
    "LEFT JOIN profiles p ON p.id = m.user_id "
)


class ChatStore:
    """Append-only message log per study group."""

    def __init__(self, db: Database):
        self._db = db

    def insert(self, group_id: str, message: ChatMessage) -> None:
        row = {
            "id": message.message_id,
            "group_id": group_id,
            "user_id": message.user_id,
            "content": message.content,
            "file_url": message.file_url,
            "file_name": message.file_name,
            "created_at": message.sent_at.isoformat(),
        }
        self._db.conn.execute(
            """
            INSERT INTO group_chat_messages
                (id, group_id, user_id, content, file_url, file_name, created_at)
            VALUES (:id, :group_id, :user_id, :content, :file_url, :file_name, :created_at)
            """,
            row,
        )
        self._db.conn.commit()
        self._db.emit_change("group_chat_messages", "INSERT", row)

    def _deserialize(self, row: sqlite3.Row) -> ChatMessage:
        # Sender name comes from the profile, as stored messages carry none
        author = UserIdentity(id=row["user_id"], email=row["email"], full_name=row["full_name"])
        return ChatMessage(
            message_id=row["id"],
            user_id=row["user_id"],
            username=author.display_name,
            content=row["content"],
            file_url=row["file_url"],
            file_name=row["file_name"],
            sent_at=datetime.fromisoformat(row["created_at"]),
        )

    def get(self, message_id: str) -> Optional[ChatMessage]:
        row = self._db.conn.execute(_SELECT + "WHERE m.id = ?", (message_id,)).fetchone()
        return self._deserialize(row) if row else None

    def history(self, group_id: str) -> List[ChatMessage]:
        """Oldest first."""
        rows = self._db.conn.execute(
            _SELECT + "WHERE m.group_id = ? ORDER BY m.created_at, m.rowid",
            (group_id,),
        ).fetchall()
        return [self._deserialize(r) for r in rows]
