"""Achievement Store — catalogue plus per-user awards."""

from datetime import datetime
from typing import List, Optional, Set

from edusync.models.achievement import Achievement
from edusync.store.database import Database


class AchievementStore:
    """
    Awards are unique per (user_id, achievement_id). The UNIQUE constraint
    is what makes concurrent checks for the same user safe; award()
    reports whether this call actually inserted the row.
    """

    def __init__(self, db: Database):
        self._db = db

    def get(self, achievement_id: str) -> Optional[Achievement]:
        row = self._db.conn.execute(
            "SELECT * FROM achievements WHERE id = ?", (achievement_id,)
        ).fetchone()
        return Achievement(**dict(row)) if row else None

    def list_catalogue(self) -> List[Achievement]:
        rows = self._db.conn.execute("SELECT * FROM achievements ORDER BY rowid").fetchall()
        return [Achievement(**dict(r)) for r in rows]

    def existing_ids(self, user_id: str) -> Set[str]:
        rows = self._db.conn.execute(
            "SELECT achievement_id FROM user_achievements WHERE user_id = ?", (user_id,)
        ).fetchall()
        return {r["achievement_id"] for r in rows}

    def award(self, user_id: str, achievement_id: str) -> bool:
        """Insert the award unless the user already holds it."""
        earned_at = datetime.utcnow().isoformat()
        cur = self._db.conn.execute(
            "INSERT OR IGNORE INTO user_achievements (user_id, achievement_id, earned_at) "
            "VALUES (?, ?, ?)",
            (user_id, achievement_id, earned_at),
        )
        self._db.conn.commit()
        inserted = cur.rowcount == 1
        if inserted:
            self._db.emit_change(
                "user_achievements", "INSERT",
                {"user_id": user_id, "achievement_id": achievement_id, "earned_at": earned_at},
            )
        return inserted

    def list_for_user(self, user_id: str) -> List[Achievement]:
        rows = self._db.conn.execute(
            """
            SELECT a.* FROM achievements a
            JOIN user_achievements ua ON ua.achievement_id = a.id
            WHERE ua.user_id = ? ORDER BY ua.id
            """,
            (user_id,),
        ).fetchall()
        return [Achievement(**dict(r)) for r in rows]
